"""Runpad - Output Stream

WebSocket /ws/output pushes every consoleOutput payload of the session to
the connected client, in emission order:

    {"method": "log", "data": ["hi"], "line": 1, "timestamp": ..., "run_id": "..."}

Any number of clients can be connected at once; each gets every event.
Each client has a bounded queue; when a slow client falls behind, its
oldest undelivered events are dropped. Messages sent by the client are
ignored.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from runpad.auth import key_is_valid
from runpad.session import Session, get_session

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PENDING_EVENTS = 1000


def _offer(queue: asyncio.Queue, payload) -> None:
    """Enqueue without blocking, dropping the oldest event when full"""
    if queue.full():
        queue.get_nowait()
        logger.warning("Output subscriber is falling behind; dropped oldest event")
    queue.put_nowait(payload)


async def _pump(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        payload = await queue.get()
        await websocket.send_json(payload)


@router.websocket("/ws/output")
async def output_stream(websocket: WebSocket, session: Session = Depends(get_session)):
    api_key = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
    if not key_is_valid(api_key):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_PENDING_EVENTS)
    # Subscribe before accepting so no event emitted after the handshake is missed
    unsubscribe = session.channel.subscribe(lambda payload: _offer(queue, payload))
    await websocket.accept()
    logger.info(f"Output subscriber connected ({session.channel.subscriber_count} total)")

    sender = asyncio.create_task(_pump(websocket, queue))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        logger.info(f"Output subscriber disconnected ({session.channel.subscriber_count} left)")

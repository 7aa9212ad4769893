"""Runpad - Health Route"""

from fastapi import APIRouter, Depends

from runpad import __version__
from runpad.session import Session, get_session

router = APIRouter()


@router.get("/health")
async def health(session: Session = Depends(get_session)):
    return {
        "status": "ok",
        "version": __version__,
        "active_runs": len(session.active_runs),
        "subscribers": session.channel.subscriber_count,
    }

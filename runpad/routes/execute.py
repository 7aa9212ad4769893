"""Runpad - Execution Routes

POST /run          run a script, wait for it to settle, return the result
POST /run/cancel   cancel the active run (or a named one)

Console output produced while the script runs is pushed on /ws/output,
not returned here.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from runpad.session import Session, get_session

logger = logging.getLogger(__name__)

router = APIRouter()


class RunRequest(BaseModel):
    """Submit a script"""
    source: str = Field(..., description="Python source to execute")


class RunResponse(BaseModel):
    success: bool
    run_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    execution_time_ms: int = 0
    superseded: bool = False


class CancelRequest(BaseModel):
    run_id: Optional[str] = Field(default=None, description="Run to cancel; all active runs if omitted")


class CancelResponse(BaseModel):
    cancelled: bool


@router.post("/run", response_model=RunResponse, response_model_exclude_unset=True)
async def run_script(request: RunRequest, session: Session = Depends(get_session)):
    """Execute a script and return its terminal result"""
    logger.info(f"run: {len(request.source)} chars")
    return RunResponse(**await session.run(request.source))


@router.post("/run/cancel", response_model=CancelResponse)
async def cancel_run(request: CancelRequest, session: Session = Depends(get_session)):
    return CancelResponse(cancelled=session.cancel(request.run_id))

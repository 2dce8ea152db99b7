from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from core.config import STALE_SHIFT_THRESHOLD_HOURS
from core.deps import get_session, require_manager_role
from services.shift_guard import (
    expire_pending_requests,
    mark_stale_shifts,
    run_shift_guard_once_async,
)

router = APIRouter()


@router.post("/mark-stale-shifts")
def run_stale_shift_sweep(
    threshold_hours: Optional[float] = Query(None, gt=0),
    session: Session = Depends(get_session),
    manager: dict = Depends(require_manager_role),
):
    """
    One-shot execution of the staleness sweep. Manager-only (Bearer token with manager role).

    Query params:
    - threshold_hours: optional override; defaults to env STALE_SHIFT_THRESHOLD_HOURS or 16
    """
    effective_threshold = (
        float(threshold_hours) if threshold_hours is not None else STALE_SHIFT_THRESHOLD_HOURS
    )
    flagged = mark_stale_shifts(session, effective_threshold)
    return {
        "status": "ok",
        "threshold_hours": effective_threshold,
        "marked_stale": len(flagged),
        "shift_ids": flagged,
    }


@router.post("/expire-requests")
def run_request_expiry_sweep(
    session: Session = Depends(get_session),
    manager: dict = Depends(require_manager_role),
):
    expired = expire_pending_requests(session)
    return {
        "status": "ok",
        "expired": len(expired),
        "request_ids": expired,
        "ran_at": datetime.now(timezone.utc).isoformat(),
    }


# Both sweeps in one pass, off the event loop
@router.post("/run-shift-guard")
async def run_shift_guard_single_execution(
    threshold_hours: Optional[float] = Query(None, gt=0),
    manager: dict = Depends(require_manager_role),
):
    effective_threshold = (
        float(threshold_hours) if threshold_hours is not None else STALE_SHIFT_THRESHOLD_HOURS
    )
    result = await run_shift_guard_once_async(effective_threshold)
    return {"status": "ok", "threshold_hours": effective_threshold, **result}

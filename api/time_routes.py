from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import get_current_user
from db.session import get_session
from models.shift import PunchRequest
from services.shift_service import ShiftService
from utils.shift_duration import format_duration_from_minutes

# --- Pydantic Models for Request Payloads ---


class ProposeRevisionPayload(BaseModel):
    estimated_clock_out: datetime
    reason: Optional[str] = None


# Defines API Endpoints
router = APIRouter()


# Clock In Endpoint
@router.post("/clock-in")
def clock_in(
    data: PunchRequest,
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    shift = ShiftService.clock_in(
        session,
        user,
        data.location,
        note=data.note,
        was_offline=data.was_offline,
        occurred_at=data.occurred_at,
        offline_event_id=data.offline_event_id,
    )
    return {
        "status": "success",
        "shift_id": shift.id,
        "location_status": shift.clock_in_location_status,
        "data": shift,
    }


# Clock Out Endpoint
@router.post("/clock-out")
def clock_out(
    data: PunchRequest,
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    shift = ShiftService.clock_out(
        session,
        user,
        data.location,
        note=data.note,
        was_offline=data.was_offline,
        occurred_at=data.occurred_at,
        offline_event_id=data.offline_event_id,
    )
    return {
        "status": "success",
        "shift_id": shift.id,
        "duration_minutes": shift.duration_minutes,
        "net_duration_minutes": shift.net_duration_minutes,
        "formatted": format_duration_from_minutes(shift.net_duration_minutes or 0),
        "location_status": shift.clock_out_location_status,
        "data": shift,
    }


# Current Open Shift (None when clocked out)
@router.get("/current")
def get_current_shift(
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    shift = ShiftService.get_current_open_shift(session, user["uid"])
    return {"status": "success", "data": shift}


@router.get("/history")
def get_shift_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    shifts = ShiftService.get_shift_history(session, user["uid"], limit=limit, offset=offset)
    return {"status": "success", "data": shifts}


@router.get("/weekly-summary")
def get_weekly_summary(
    reference: Optional[datetime] = None,
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    """Hours and overtime for the organization-local week containing ``reference`` (default now)."""
    return {"status": "success", "data": ShiftService.weekly_summary(session, user, reference)}


# Employee proposes the clock-out of a shift the sweep flagged stale
@router.post("/shifts/{shift_id}/propose-revision")
def propose_revision(
    shift_id: int,
    payload: ProposeRevisionPayload,
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    shift = ShiftService.propose_revision(
        session,
        user,
        shift_id,
        estimated_clock_out=payload.estimated_clock_out,
        reason=payload.reason,
    )
    return {"status": "success", "data": shift}

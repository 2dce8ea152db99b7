from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import require_manager_role
from db.session import get_session
from services.shift_service import ShiftService, StaleResolution

router = APIRouter()


class StaleShiftResolutionPayload(BaseModel):
    resolution: StaleResolution
    # Required for "actual_hours"
    actual_clock_out: Optional[datetime] = None
    note: Optional[str] = None


@router.get("")
def get_stale_shifts(
    session: Session = Depends(get_session),
    manager: dict = Depends(require_manager_role),
):
    items = ShiftService.list_stale_shifts(session, manager["organization_id"])
    return {"status": "success", "data": items}


@router.post("/{shift_id}/resolve")
def resolve_stale_shift(
    shift_id: int,
    payload: StaleShiftResolutionPayload,
    session: Session = Depends(get_session),
    manager: dict = Depends(require_manager_role),
):
    shift = ShiftService.resolve_stale_shift(
        session,
        manager,
        shift_id,
        payload.resolution,
        actual_clock_out=payload.actual_clock_out,
        note=payload.note,
    )
    return {"status": "success", "data": shift}

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import get_current_user
from db.session import get_session
from models.check_in_request import RequestTypeEnum
from models.shift import LocationPayload
from services.request_service import RequestService

router = APIRouter()


# --- Pydantic Models for Request Payloads ---


class CheckInRequestPayload(BaseModel):
    location: LocationPayload
    reason: str
    is_historical: bool = False
    # Only honoured for historical requests
    request_type: Optional[RequestTypeEnum] = None
    requested_time: Optional[datetime] = None
    # Set by the offline queue when replaying a request captured without signal
    was_offline: bool = False
    offline_event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None


# Employee asks a manager to accept a clock event the geofence rejected
@router.post("", status_code=201)
def submit_check_in_request(
    payload: CheckInRequestPayload,
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    request = RequestService.submit(
        session,
        user,
        payload.location,
        payload.reason,
        is_historical=payload.is_historical,
        request_type=payload.request_type,
        requested_time=payload.requested_time,
        was_offline=payload.was_offline,
        occurred_at=payload.occurred_at,
        offline_event_id=payload.offline_event_id,
    )
    return {"status": "success", "request_id": request.id, "data": request}


@router.get("")
def get_my_requests(
    limit: int = Query(50, ge=1, le=200),
    session: Session = Depends(get_session),
    user: dict = Depends(get_current_user),
):
    return {"status": "success", "data": RequestService.list_my_requests(session, user, limit=limit)}

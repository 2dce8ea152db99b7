from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import require_manager_role
from db.session import get_session
from models.check_in_request import ReviewAction
from services.request_service import RequestService

router = APIRouter()


# --- Pydantic Models for Admin Actions ---
class ClockRequestReviewPayload(BaseModel):
    action: ReviewAction
    note: Optional[str] = None
    # Required when denying
    denial_reason: Optional[str] = None


# --- Admin Endpoints ---


@router.get("")
def get_clock_requests(
    status_filter: Literal["pending", "resolved", "all"] = "pending",
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(get_session),
    manager: dict = Depends(require_manager_role),
):
    """Review queue for the manager's organization; overdue requests are expired first."""
    requests = RequestService.list_requests(
        session, manager, status_filter=status_filter, limit=limit
    )
    return {"status": "success", "data": requests}


@router.post("/{request_id}/review")
def review_clock_request(
    request_id: int,
    payload: ClockRequestReviewPayload,
    session: Session = Depends(get_session),
    manager: dict = Depends(require_manager_role),
):
    request = RequestService.review(
        session,
        manager,
        request_id,
        payload.action,
        note=payload.note,
        denial_reason=payload.denial_reason,
    )
    return {"status": "success", "data": request}

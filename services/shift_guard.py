import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from core.config import STALE_SHIFT_THRESHOLD_HOURS
from db.session import get_session
from models.audit_log import AuditAction
from models.shift import Shift, ShiftStatus
from services.request_service import expire_requests
from services.shift_service import record_audit
from utils.timezone_helpers import to_utc

logger = logging.getLogger(__name__)


def mark_stale_shifts(
    session: Session,
    threshold_hours: float = STALE_SHIFT_THRESHOLD_HOURS,
    now: Optional[datetime] = None,
) -> List[int]:
    """Flag shifts left open longer than ``threshold_hours`` as ``stale``.

    A single conditional update, so a shift closed concurrently is never
    touched and re-running the sweep changes nothing. Returns the ids that
    this call flagged.
    """
    now = to_utc(now) if now else datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=threshold_hours)

    candidate_ids = session.exec(
        select(Shift.id)
        .where(Shift.status == ShiftStatus.OPEN)
        .where(Shift.clock_in_at < cutoff)
    ).all()
    if not candidate_ids:
        return []

    session.execute(
        update(Shift)
        .where(Shift.id.in_(candidate_ids))
        .where(Shift.status == ShiftStatus.OPEN)
        .where(Shift.clock_in_at < cutoff)
        .values(status=ShiftStatus.STALE, marked_stale_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    # Audit exactly the rows this sweep flagged
    flagged = session.exec(
        select(Shift)
        .where(Shift.id.in_(candidate_ids))
        .where(Shift.status == ShiftStatus.STALE)
        .where(Shift.marked_stale_at == now)
    ).all()

    for shift in flagged:
        record_audit(
            session,
            actor_id="system",
            action=AuditAction.SHIFT_MARKED_STALE,
            resource_type="shift",
            resource_id=shift.id,
            organization_id=shift.organization_id,
            description=f"Open longer than {threshold_hours:g} hours",
        )

    session.commit()
    flagged_ids = [shift.id for shift in flagged]
    if flagged_ids:
        logger.info(f"[SHIFT_GUARD] Marked {len(flagged_ids)} shift(s) stale")
    return flagged_ids


def expire_pending_requests(session: Session, now: Optional[datetime] = None) -> List[int]:
    return expire_requests(session, now=now)


def _process_once(threshold_hours: float) -> dict:
    """Blocking DB work for a single sweep iteration (run off the event loop)."""
    session: Session | None = None
    try:
        session = next(get_session())
        stale_ids = mark_stale_shifts(session, threshold_hours)
        expired_ids = expire_pending_requests(session)
        return {"stale_shift_ids": stale_ids, "expired_request_ids": expired_ids}
    except Exception as e:
        logger.error(f"[SHIFT_GUARD] Error in iteration: {e}")
        if session is not None:
            session.rollback()
        raise
    finally:
        if session is not None:
            session.close()


async def run_shift_guard_once_async(
    threshold_hours: float = STALE_SHIFT_THRESHOLD_HOURS,
) -> dict:
    """Async wrapper to run a single iteration off the event loop."""
    return await asyncio.to_thread(_process_once, threshold_hours)

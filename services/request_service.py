import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from core.config import HISTORICAL_REQUEST_MAX_DAYS, MIN_REASON_LENGTH, REQUEST_EXPIRY_HOURS
from core.errors import (
    AlreadyOpen,
    AlreadyReviewed,
    InvalidHistoricalRange,
    InvalidReason,
    MissingDenialReason,
    NoOpenShift,
    RequestNotFound,
)
from models.audit_log import AuditAction
from models.check_in_request import (
    CheckInRequest,
    RequestStatusEnum,
    RequestTypeEnum,
    ReviewAction,
)
from models.shift import LocationPayload, LocationStatus, Shift, ShiftStatus
from services.shift_service import (
    build_geofences,
    close_open_shift,
    find_open_shift,
    insert_open_shift,
    load_organization,
    resolve_event_time,
    location_record,
    record_audit,
    to_location_sample,
)
from utils.geofence import check_multiple_geofences
from utils.timezone_helpers import to_utc

logger = logging.getLogger(__name__)

RESOLVED_STATUSES = [
    RequestStatusEnum.APPROVED,
    RequestStatusEnum.DENIED,
    RequestStatusEnum.AUTO_EXPIRED,
]


def expire_requests(
    session: Session,
    now: Optional[datetime] = None,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[int]:
    """Move overdue ``pending`` requests to ``auto_expired`` and commit.

    Idempotent: a second run over the same data finds nothing to do. Returns
    the ids that were expired by this call.
    """
    now = to_utc(now) if now else datetime.now(timezone.utc)

    query = (
        select(CheckInRequest)
        .where(CheckInRequest.status == RequestStatusEnum.PENDING)
        .where(CheckInRequest.expires_at < now)
    )
    if organization_id:
        query = query.where(CheckInRequest.organization_id == organization_id)
    if user_id:
        query = query.where(CheckInRequest.user_id == user_id)

    overdue = session.exec(query).all()
    expired_ids = []

    for request in overdue:
        result = session.execute(
            update(CheckInRequest)
            .where(CheckInRequest.id == request.id)
            .where(CheckInRequest.status == RequestStatusEnum.PENDING)
            .values(status=RequestStatusEnum.AUTO_EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        record_audit(
            session,
            actor_id="system",
            action=AuditAction.REQUEST_EXPIRED,
            resource_type="check_in_request",
            resource_id=request.id,
            organization_id=request.organization_id,
            description=f"Auto-expired after {REQUEST_EXPIRY_HOURS:g}h without review",
        )
        expired_ids.append(request.id)

    if expired_ids:
        session.commit()
        logger.info(f"[REQUESTS] Auto-expired {len(expired_ids)} request(s)")

    return expired_ids


class RequestService:

    @staticmethod
    def submit(
        session: Session,
        actor: dict,
        location: LocationPayload,
        reason: str,
        is_historical: bool = False,
        request_type: Optional[RequestTypeEnum] = None,
        requested_time: Optional[datetime] = None,
        was_offline: bool = False,
        occurred_at: Optional[datetime] = None,
        offline_event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckInRequest:
        now = to_utc(now) if now else datetime.now(timezone.utc)
        user_id = actor["uid"]

        # A replayed offline request that already landed is a success
        if offline_event_id:
            replayed = session.exec(
                select(CheckInRequest)
                .where(CheckInRequest.user_id == user_id)
                .where(CheckInRequest.offline_event_id == offline_event_id)
            ).first()
            if replayed:
                logger.info(f"[REQUESTS] Offline request {offline_event_id} already applied")
                return replayed

        reason = (reason or "").strip()
        if len(reason) < MIN_REASON_LENGTH:
            raise InvalidReason(min_length=MIN_REASON_LENGTH)

        org = load_organization(session, actor["organization_id"])
        open_shift = find_open_shift(session, user_id)

        # Explicit type only counts for historical requests; live requests
        # follow the user's current state.
        if is_historical and request_type is not None:
            resolved_type = request_type
        else:
            resolved_type = RequestTypeEnum.CLOCK_OUT if open_shift else RequestTypeEnum.CLOCK_IN

        shift_id = None
        if resolved_type == RequestTypeEnum.CLOCK_OUT and open_shift:
            shift_id = open_shift.id

        if is_historical:
            if requested_time is None:
                raise InvalidHistoricalRange("Historical requests need a requested time.")
            requested_at = to_utc(requested_time)
            oldest = now - timedelta(days=HISTORICAL_REQUEST_MAX_DAYS)
            if requested_at >= now or requested_at < oldest:
                raise InvalidHistoricalRange(
                    requested_time=requested_at.isoformat(),
                    max_days=HISTORICAL_REQUEST_MAX_DAYS,
                )
            reason = f"[HISTORICAL REQUEST for {requested_at.isoformat()}] {reason}"
        else:
            requested_at = resolve_event_time(now, occurred_at, was_offline)

        # Distance to the nearest work location, for the reviewer
        distance = None
        geofences = build_geofences(session, org)
        if geofences:
            match = check_multiple_geofences(to_location_sample(location), geofences)
            distance = match.closest.distance_meters

        request = CheckInRequest(
            organization_id=org.id,
            user_id=user_id,
            shift_id=shift_id,
            request_type=resolved_type,
            status=RequestStatusEnum.PENDING,
            requested_location=location_record(location, requested_at),
            distance_from_geofence=distance,
            reason=reason,
            is_historical=is_historical,
            requested_timestamp=requested_at,
            expires_at=now + timedelta(hours=REQUEST_EXPIRY_HOURS),
            was_offline=was_offline,
            offline_event_id=offline_event_id,
            created_at=now,
            updated_at=now,
        )

        try:
            session.add(request)
            session.flush()
            record_audit(
                session,
                actor_id=user_id,
                action=AuditAction.REQUEST_SUBMITTED,
                resource_type="check_in_request",
                resource_id=request.id,
                organization_id=org.id,
                description=f"{resolved_type.value} request"
                + (f", {distance}m from nearest location" if distance is not None else ""),
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(request)
        logger.info(
            f"[REQUESTS] {user_id} submitted {resolved_type.value} request {request.id}"
            + (" (historical)" if is_historical else "")
        )
        return request

    @staticmethod
    def review(
        session: Session,
        manager: dict,
        request_id: int,
        action: ReviewAction,
        note: Optional[str] = None,
        denial_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckInRequest:
        """Approve or deny a pending request.

        The request status change, any shift mutation and the audit row are
        committed together; on any failure all of them are rolled back and
        the request stays ``pending``.
        """
        now = to_utc(now) if now else datetime.now(timezone.utc)

        request = session.get(CheckInRequest, request_id)
        if not request or request.organization_id != manager["organization_id"]:
            raise RequestNotFound(request_id=request_id)

        denial_reason = (denial_reason or "").strip() or None
        if action == ReviewAction.DENY and not denial_reason:
            raise MissingDenialReason()

        if request.status != RequestStatusEnum.PENDING:
            raise AlreadyReviewed(request_id=request_id, status=request.status.value)

        new_status = (
            RequestStatusEnum.APPROVED
            if action == ReviewAction.APPROVE
            else RequestStatusEnum.DENIED
        )

        try:
            result = session.execute(
                update(CheckInRequest)
                .where(CheckInRequest.id == request.id)
                .where(CheckInRequest.status == RequestStatusEnum.PENDING)
                .values(
                    status=new_status,
                    reviewed_by=manager["uid"],
                    reviewed_at=now,
                    reviewer_note=note,
                    denial_reason=denial_reason if action == ReviewAction.DENY else None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyReviewed(request_id=request_id)

            if action == ReviewAction.APPROVE:
                RequestService._apply_approval(session, manager, request)

            record_audit(
                session,
                actor_id=manager["uid"],
                action=(
                    AuditAction.REQUEST_APPROVED
                    if action == ReviewAction.APPROVE
                    else AuditAction.REQUEST_DENIED
                ),
                resource_type="check_in_request",
                resource_id=request.id,
                organization_id=request.organization_id,
                description=note if action == ReviewAction.APPROVE else denial_reason,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(request)
        logger.info(
            f"[REQUESTS] Request {request.id} {new_status.value} by {manager['uid']}"
        )
        return request

    @staticmethod
    def _apply_approval(session: Session, manager: dict, request: CheckInRequest) -> None:
        org = load_organization(session, request.organization_id)
        reviewer_note = f"Approved by manager {manager['uid']}: {request.reason}"

        if request.request_type == RequestTypeEnum.CLOCK_IN:
            # insert_open_shift raises AlreadyOpen through the unique index too
            existing = find_open_shift(session, request.user_id)
            if existing:
                raise AlreadyOpen(shift_id=existing.id)

            insert_open_shift(
                session,
                org,
                request.user_id,
                clock_in_at=request.requested_timestamp,
                location=request.requested_location,
                location_status=LocationStatus.OUT_OF_RANGE,
                note=reviewer_note,
            )
            return

        # clock_out: the linked shift, else whatever is open now
        shift = session.get(Shift, request.shift_id) if request.shift_id else None
        if shift is None:
            shift = find_open_shift(session, request.user_id)
        if shift is not None and shift.status in (ShiftStatus.STALE, ShiftStatus.PENDING_REVISION):
            raise NoOpenShift(
                f"Shift {shift.id} was marked {shift.status.value}; "
                f"resolve it via /admin/stale-shifts/{shift.id}/resolve instead.",
                shift_id=shift.id,
                shift_status=shift.status.value,
            )
        if shift is None or shift.status != ShiftStatus.OPEN:
            raise NoOpenShift(shift_id=request.shift_id)

        close_open_shift(
            session,
            org,
            shift,
            clock_out_at=request.requested_timestamp,
            location=request.requested_location,
            location_status=LocationStatus.OUT_OF_RANGE,
            note=reviewer_note,
        )

    @staticmethod
    def list_requests(
        session: Session,
        manager: dict,
        status_filter: Optional[str] = "pending",
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> List[CheckInRequest]:
        organization_id = manager["organization_id"]
        expire_requests(session, now=now, organization_id=organization_id)

        query = select(CheckInRequest).where(CheckInRequest.organization_id == organization_id)
        if status_filter == "pending":
            query = query.where(CheckInRequest.status == RequestStatusEnum.PENDING)
        elif status_filter == "resolved":
            query = query.where(CheckInRequest.status.in_(RESOLVED_STATUSES))

        return session.exec(query.order_by(CheckInRequest.created_at.desc()).limit(limit)).all()

    @staticmethod
    def list_my_requests(
        session: Session, actor: dict, limit: int = 50, now: Optional[datetime] = None
    ) -> List[CheckInRequest]:
        expire_requests(session, now=now, user_id=actor["uid"])
        return session.exec(
            select(CheckInRequest)
            .where(CheckInRequest.user_id == actor["uid"])
            .order_by(CheckInRequest.created_at.desc())
            .limit(limit)
        ).all()

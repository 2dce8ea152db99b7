import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.config import DEFAULT_ACCURACY_METERS, DEFAULT_GEOFENCE_RADIUS_METERS
from core.errors import (
    AlreadyOpen,
    InvalidCoordinates,
    InvalidRange,
    LocationUnverified,
    NoOpenShift,
    OrganizationNotFound,
    OutOfRange,
    ShiftNotFound,
    ShiftNotStale,
)
from models.audit_log import AuditAction, AuditLog
from models.organization import Organization
from models.shift import LocationPayload, LocationStatus, Shift, ShiftStatus
from models.work_location import WorkLocation
from utils.breaks import effective_break_minutes
from utils.geofence import (
    Geofence,
    LocationSample,
    VerificationFlag,
    VerificationResult,
    format_distance,
    verify_location,
)
from utils.shift_duration import (
    attributed_shift_date,
    calculate_overtime,
    calculate_shift_duration,
    get_open_shift_hours,
    validate_shift_duration,
)
from utils.timezone_helpers import get_week_range, resolve_timezone, to_utc

logger = logging.getLogger(__name__)

ORG_PRIMARY_GEOFENCE_ID = "org-primary"


class StaleResolution(str, Enum):
    FORGOT = "forgot"  # Close with 0 hours at the clock-in time
    ACTUAL_HOURS = "actual_hours"  # Manager supplies the real clock-out
    ACCEPT_PROPOSAL = "accept_proposal"  # Use the employee's proposed clock-out


# --- Shared helpers (also used by the request arbiter and the sweeps) ---


def load_organization(session: Session, organization_id: str) -> Organization:
    org = session.get(Organization, organization_id)
    if not org:
        raise OrganizationNotFound(organization_id=organization_id)
    return org


def build_geofences(session: Session, org: Organization) -> List[Geofence]:
    """Active work locations of the org, else its single primary point."""
    locations = session.exec(
        select(WorkLocation)
        .where(WorkLocation.organization_id == org.id)
        .where(WorkLocation.is_active == True)  # noqa: E712
    ).all()

    geofences = [
        Geofence(
            id=loc.id,
            latitude=loc.center_lat,
            longitude=loc.center_lng,
            radius_meters=loc.radius_meters or DEFAULT_GEOFENCE_RADIUS_METERS,
        )
        for loc in locations
    ]

    if not geofences and org.latitude is not None and org.longitude is not None:
        geofences.append(
            Geofence(
                id=ORG_PRIMARY_GEOFENCE_ID,
                latitude=org.latitude,
                longitude=org.longitude,
                radius_meters=org.geofence_radius_meters or DEFAULT_GEOFENCE_RADIUS_METERS,
            )
        )

    return geofences


def to_location_sample(location: LocationPayload) -> LocationSample:
    return LocationSample(
        latitude=location.latitude,
        longitude=location.longitude,
        accuracy_meters=(
            location.accuracy if location.accuracy is not None else DEFAULT_ACCURACY_METERS
        ),
        captured_at=location.timestamp,
    )


def location_record(location: LocationPayload, fallback_time: datetime) -> dict:
    """JSON snapshot of a location as stored on shift / request rows."""
    captured_at = to_utc(location.timestamp) if location.timestamp else fallback_time
    return {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "accuracy": (
            location.accuracy if location.accuracy is not None else DEFAULT_ACCURACY_METERS
        ),
        "timestamp": captured_at.isoformat(),
    }


def sample_from_record(record: Optional[dict]) -> Optional[LocationSample]:
    if not record:
        return None
    return LocationSample(
        latitude=record["latitude"],
        longitude=record["longitude"],
        accuracy_meters=record.get("accuracy") or 0.0,
        captured_at=record.get("timestamp"),
    )


def verify_sample(
    session: Session,
    org: Organization,
    sample: LocationSample,
    previous: Optional[LocationSample] = None,
    require_recent_timestamp: bool = True,
    now: Optional[datetime] = None,
) -> Optional[VerificationResult]:
    """Run server verification against the org's geofences.

    Returns None when the org has no geofence at all. Invalid coordinates
    raise ``InvalidCoordinates``.
    """
    geofences = build_geofences(session, org)
    if not geofences:
        return None

    verification = verify_location(
        sample,
        geofences,
        max_acceptable_accuracy=org.max_acceptable_accuracy_meters,
        max_age_seconds=org.max_location_age_seconds,
        require_recent_timestamp=require_recent_timestamp,
        previous=previous,
        now=now,
    )

    if VerificationFlag.INVALID_COORDINATES in verification.flags:
        raise InvalidCoordinates(
            latitude=sample.latitude, longitude=sample.longitude
        )

    return verification


def verification_context(
    verification: Optional[VerificationResult], sample: LocationSample
) -> dict:
    """Details a client needs to choose between retrying and submitting a request."""
    context = {"accuracy_meters": round(sample.accuracy_meters)}
    if verification and verification.result:
        context.update(
            distance_meters=verification.result.distance_meters,
            radius_meters=verification.result.radius_meters,
            nearest_location_id=verification.result.geofence_id,
            geofence_status=verification.result.status.value,
        )
    if verification:
        context["flags"] = [flag.value for flag in verification.flags]
    return context


def find_open_shift(session: Session, user_id: str) -> Optional[Shift]:
    return session.exec(
        select(Shift)
        .where(Shift.user_id == user_id)
        .where(Shift.status == ShiftStatus.OPEN)
        .order_by(Shift.clock_in_at.desc())
    ).first()


def record_audit(
    session: Session,
    actor_id: str,
    action: AuditAction,
    resource_type: str,
    resource_id: Optional[int],
    organization_id: Optional[str] = None,
    description: Optional[str] = None,
) -> AuditLog:
    entry = AuditLog(
        organization_id=organization_id,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        description=description,
    )
    session.add(entry)
    return entry


def insert_open_shift(
    session: Session,
    org: Organization,
    user_id: str,
    clock_in_at: datetime,
    location: Optional[dict],
    location_status: LocationStatus,
    location_id: Optional[str] = None,
    verification: Optional[dict] = None,
    note: Optional[str] = None,
    was_offline: bool = False,
    offline_event_id: Optional[str] = None,
) -> Shift:
    """Add a new open shift and flush it. Does not commit.

    The flush hits the partial unique index, so a concurrent clock-in for the
    same user surfaces here as ``AlreadyOpen`` (after rolling back).
    """
    tz = resolve_timezone(org.timezone)
    clock_in_at = to_utc(clock_in_at)

    shift = Shift(
        organization_id=org.id,
        user_id=user_id,
        location_id=location_id if location_id != ORG_PRIMARY_GEOFENCE_ID else None,
        status=ShiftStatus.OPEN,
        clock_in_at=clock_in_at,
        clock_in_location=location,
        clock_in_location_status=location_status,
        clock_in_verification=verification,
        shift_date=attributed_shift_date(clock_in_at, tz),
        clock_in_note=note,
        break_minutes=0,
        was_offline=was_offline,
        clock_in_offline_event_id=offline_event_id,
        synced_at=datetime.now(timezone.utc) if was_offline else None,
    )
    session.add(shift)

    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        existing = find_open_shift(session, user_id)
        if existing is None:
            raise
        logger.warning(f"[SHIFTS] Concurrent clock-in rejected for user {user_id}")
        raise AlreadyOpen(shift_id=existing.id)

    return shift


def close_open_shift(
    session: Session,
    org: Organization,
    shift: Shift,
    clock_out_at: datetime,
    location: Optional[dict],
    location_status: LocationStatus,
    verification: Optional[dict] = None,
    note: Optional[str] = None,
    was_offline: bool = False,
    offline_event_id: Optional[str] = None,
) -> None:
    """Close ``shift`` with a conditional update. Does not commit.

    Only a row still ``open`` is touched, so two devices racing a clock-out
    cannot both close it: the loser gets ``NoOpenShift``.
    """
    tz = resolve_timezone(org.timezone)
    clock_in_at = to_utc(shift.clock_in_at)
    clock_out_at = to_utc(clock_out_at)

    raw = calculate_shift_duration(clock_in_at, clock_out_at, 0, tz)
    break_minutes = effective_break_minutes(
        raw.total_minutes,
        shift.break_minutes or 0,
        org.auto_break_threshold_hours,
        org.auto_break_minutes,
    )
    duration = calculate_shift_duration(clock_in_at, clock_out_at, break_minutes, tz)

    values = dict(
        status=ShiftStatus.CLOSED,
        clock_out_at=clock_out_at,
        clock_out_location=location,
        clock_out_location_status=location_status,
        clock_out_verification=verification,
        clock_out_note=note,
        duration_minutes=duration.total_minutes,
        break_minutes=duration.break_minutes,
        net_duration_minutes=duration.net_minutes,
        updated_at=datetime.now(timezone.utc),
    )
    if was_offline:
        values.update(
            was_offline=True,
            clock_out_offline_event_id=offline_event_id,
            synced_at=datetime.now(timezone.utc),
        )

    result = session.execute(
        update(Shift)
        .where(Shift.id == shift.id)
        .where(Shift.status == ShiftStatus.OPEN)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NoOpenShift(shift_id=shift.id)


def resolve_event_time(
    now: datetime, occurred_at: Optional[datetime], was_offline: bool
) -> datetime:
    """Offline replays keep the time the event happened, never a future one."""
    if was_offline and occurred_at is not None:
        return min(to_utc(occurred_at), now)
    return now


class ShiftService:

    @staticmethod
    def clock_in(
        session: Session,
        actor: dict,
        location: LocationPayload,
        note: Optional[str] = None,
        was_offline: bool = False,
        occurred_at: Optional[datetime] = None,
        offline_event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = to_utc(now) if now else datetime.now(timezone.utc)
        user_id = actor["uid"]

        # 0) A replayed offline clock-in that already landed is a success
        if offline_event_id:
            replayed = session.exec(
                select(Shift)
                .where(Shift.user_id == user_id)
                .where(Shift.clock_in_offline_event_id == offline_event_id)
            ).first()
            if replayed:
                logger.info(f"[SHIFTS] Offline clock-in {offline_event_id} already applied")
                return replayed

        org = load_organization(session, actor["organization_id"])

        # 1) One open shift per user
        existing = find_open_shift(session, user_id)
        if existing:
            raise AlreadyOpen(shift_id=existing.id)

        clock_in_at = resolve_event_time(now, occurred_at, was_offline)

        # 2) Verify location against the org's geofences
        sample = to_location_sample(location)
        last_closed = session.exec(
            select(Shift)
            .where(Shift.user_id == user_id)
            .where(Shift.clock_out_at != None)  # noqa: E711
            .order_by(Shift.clock_out_at.desc())
        ).first()
        previous = sample_from_record(last_closed.clock_out_location) if last_closed else None

        verification = verify_sample(
            session,
            org,
            sample,
            previous=previous,
            require_recent_timestamp=not was_offline,
            now=now,
        )

        if verification and verification.failed_closed:
            logger.warning(
                f"[SHIFTS] Clock-in for {user_id} failed verification: "
                f"{verification.rejection_reason}"
            )
            raise LocationUnverified(
                reason=verification.rejection_reason,
                **verification_context(verification, sample),
            )

        in_range = bool(verification and verification.verified)
        location_status = LocationStatus.IN_RANGE if in_range else LocationStatus.OUT_OF_RANGE

        # 3) Strict orgs route out-of-range clock-ins through a check-in request
        if not in_range and org.strict_mode:
            message = None
            if verification and verification.result:
                message = (
                    f"You are {format_distance(verification.result.distance_meters)} from the "
                    "nearest work location. Please submit a check-in request instead."
                )
            raise OutOfRange(message, **verification_context(verification, sample))

        shift = insert_open_shift(
            session,
            org,
            user_id,
            clock_in_at=clock_in_at,
            location=location_record(location, clock_in_at),
            location_status=location_status,
            location_id=verification.geofence.id if in_range else None,
            verification=verification.to_record() if verification else None,
            note=note,
            was_offline=was_offline,
            offline_event_id=offline_event_id,
        )

        record_audit(
            session,
            actor_id=user_id,
            action=AuditAction.CLOCK_IN,
            resource_type="shift",
            resource_id=shift.id,
            organization_id=org.id,
            description=f"Clock-in ({location_status.value})"
            + (" replayed from offline queue" if was_offline else ""),
        )
        session.commit()
        session.refresh(shift)

        logger.info(f"[SHIFTS] User {user_id} clocked in (shift {shift.id}, {location_status.value})")
        return shift

    @staticmethod
    def clock_out(
        session: Session,
        actor: dict,
        location: LocationPayload,
        note: Optional[str] = None,
        was_offline: bool = False,
        occurred_at: Optional[datetime] = None,
        offline_event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = to_utc(now) if now else datetime.now(timezone.utc)
        user_id = actor["uid"]

        if offline_event_id:
            replayed = session.exec(
                select(Shift)
                .where(Shift.user_id == user_id)
                .where(Shift.clock_out_offline_event_id == offline_event_id)
            ).first()
            if replayed:
                logger.info(f"[SHIFTS] Offline clock-out {offline_event_id} already applied")
                return replayed

        org = load_organization(session, actor["organization_id"])

        shift = find_open_shift(session, user_id)
        if not shift:
            raise NoOpenShift()

        clock_out_at = resolve_event_time(now, occurred_at, was_offline)

        # Geofence status is recorded for audit only; clock-out is never
        # blocked, not even in strict mode or on failed verification.
        sample = to_location_sample(location)
        verification = verify_sample(
            session,
            org,
            sample,
            previous=sample_from_record(shift.clock_in_location),
            require_recent_timestamp=not was_offline,
            now=now,
        )

        if verification is None:
            location_status = LocationStatus.OUT_OF_RANGE
        elif verification.failed_closed:
            location_status = LocationStatus.SPOOFING_DETECTED
        elif verification.verified:
            location_status = LocationStatus.IN_RANGE
        else:
            location_status = LocationStatus.OUT_OF_RANGE

        try:
            close_open_shift(
                session,
                org,
                shift,
                clock_out_at=clock_out_at,
                location=location_record(location, clock_out_at),
                location_status=location_status,
                verification=verification.to_record() if verification else None,
                note=note,
                was_offline=was_offline,
                offline_event_id=offline_event_id,
            )
            record_audit(
                session,
                actor_id=user_id,
                action=AuditAction.CLOCK_OUT,
                resource_type="shift",
                resource_id=shift.id,
                organization_id=org.id,
                description=f"Clock-out ({location_status.value})",
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(shift)
        logger.info(
            f"[SHIFTS] User {user_id} clocked out (shift {shift.id}, "
            f"{shift.duration_minutes} min, {location_status.value})"
        )
        return shift

    @staticmethod
    def get_current_open_shift(session: Session, user_id: str) -> Optional[Shift]:
        return find_open_shift(session, user_id)

    @staticmethod
    def get_shift_history(
        session: Session, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[Shift]:
        return session.exec(
            select(Shift)
            .where(Shift.user_id == user_id)
            .order_by(Shift.clock_in_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()

    @staticmethod
    def weekly_summary(
        session: Session, actor: dict, reference: Optional[datetime] = None
    ) -> dict:
        """Hours for the org-local Monday-Sunday week containing ``reference``.

        Shifts count toward the week of their attributed date, so a Sunday
        night shift ending Monday morning stays in the earlier week.
        """
        org = load_organization(session, actor["organization_id"])
        tz = resolve_timezone(org.timezone)
        reference = to_utc(reference) if reference else datetime.now(timezone.utc)
        week_start, week_end, _, _ = get_week_range(reference, tz)

        shifts = session.exec(
            select(Shift)
            .where(Shift.user_id == actor["uid"])
            .where(Shift.shift_date >= week_start)
            .where(Shift.shift_date <= week_end)
            .where(Shift.status.in_([ShiftStatus.CLOSED, ShiftStatus.REVISED]))
            .order_by(Shift.clock_in_at)
        ).all()

        weekly_minutes = sum(
            (s.net_duration_minutes if s.net_duration_minutes is not None else s.duration_minutes)
            or 0
            for s in shifts
        )
        split = calculate_overtime(weekly_minutes, org.overtime_threshold_hours)

        return {
            "week_start": week_start.isoformat(),
            "week_end": week_end.isoformat(),
            "timezone": tz,
            "shift_count": len(shifts),
            "total_minutes": weekly_minutes,
            "regular_hours": split.regular_hours,
            "overtime_hours": split.overtime_hours,
            "total_hours": split.total_hours,
        }

    # --- Stale shift resolution ---

    @staticmethod
    def propose_revision(
        session: Session,
        actor: dict,
        shift_id: int,
        estimated_clock_out: datetime,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        """Employee proposes the clock-out they forgot: stale -> pending_revision."""
        now = to_utc(now) if now else datetime.now(timezone.utc)
        shift = session.get(Shift, shift_id)
        if not shift or shift.user_id != actor["uid"]:
            raise ShiftNotFound(shift_id=shift_id)
        if shift.status != ShiftStatus.STALE:
            raise ShiftNotStale(shift_id=shift_id, status=shift.status.value)

        estimated_clock_out = to_utc(estimated_clock_out)
        if estimated_clock_out <= to_utc(shift.clock_in_at) or estimated_clock_out > now:
            raise InvalidRange(
                "Estimated clock-out must be after clock-in and not in the future."
            )

        result = session.execute(
            update(Shift)
            .where(Shift.id == shift.id)
            .where(Shift.status == ShiftStatus.STALE)
            .values(
                status=ShiftStatus.PENDING_REVISION,
                proposed_clock_out_at=estimated_clock_out,
                revision_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            raise ShiftNotStale(shift_id=shift_id)

        record_audit(
            session,
            actor_id=actor["uid"],
            action=AuditAction.SHIFT_REVISION_PROPOSED,
            resource_type="shift",
            resource_id=shift.id,
            organization_id=shift.organization_id,
            description=f"Proposed clock-out {estimated_clock_out.isoformat()}",
        )
        session.commit()
        session.refresh(shift)
        return shift

    @staticmethod
    def list_stale_shifts(
        session: Session, organization_id: str, now: Optional[datetime] = None
    ) -> List[dict]:
        """Shifts needing manager attention: stale, pending revision, or
        still open past the org's threshold (sweep not yet run)."""
        now = to_utc(now) if now else datetime.now(timezone.utc)
        org = load_organization(session, organization_id)
        cutoff = now - timedelta(hours=org.max_shift_hours)

        shifts = session.exec(
            select(Shift)
            .where(Shift.organization_id == organization_id)
            .where(
                Shift.status.in_([ShiftStatus.STALE, ShiftStatus.PENDING_REVISION])
                | ((Shift.status == ShiftStatus.OPEN) & (Shift.clock_in_at < cutoff))
            )
            .order_by(Shift.clock_in_at)
        ).all()

        return [
            {
                "shift": shift,
                "hours_open": get_open_shift_hours(shift.clock_in_at, now),
            }
            for shift in shifts
        ]

    @staticmethod
    def resolve_stale_shift(
        session: Session,
        manager: dict,
        shift_id: int,
        resolution: StaleResolution,
        actual_clock_out: Optional[datetime] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        """Manager closes a stale shift: stale | pending_revision -> revised."""
        now = to_utc(now) if now else datetime.now(timezone.utc)
        shift = session.get(Shift, shift_id)
        if not shift or shift.organization_id != manager["organization_id"]:
            raise ShiftNotFound(shift_id=shift_id)

        org = load_organization(session, shift.organization_id)
        current_status = shift.status
        clock_in_at = to_utc(shift.clock_in_at)

        resolvable = current_status in (ShiftStatus.STALE, ShiftStatus.PENDING_REVISION) or (
            current_status == ShiftStatus.OPEN
            and get_open_shift_hours(clock_in_at, now) >= org.max_shift_hours
        )
        if not resolvable:
            raise ShiftNotStale(shift_id=shift_id, status=current_status.value)

        if resolution == StaleResolution.FORGOT:
            clock_out_at = clock_in_at
            description = "Employee forgot to clock out"
        elif resolution == StaleResolution.ACTUAL_HOURS:
            if actual_clock_out is None:
                raise InvalidRange("Actual clock-out time is required.")
            clock_out_at = to_utc(actual_clock_out)
            if clock_out_at <= clock_in_at:
                raise InvalidRange("Clock-out must be after clock-in.")
            description = "Actual hours recorded"
        else:
            if shift.proposed_clock_out_at is None:
                raise InvalidRange("Shift has no proposed clock-out to accept.")
            clock_out_at = to_utc(shift.proposed_clock_out_at)
            description = "Employee's proposed clock-out accepted"

        tz = resolve_timezone(org.timezone)
        if resolution == StaleResolution.FORGOT:
            duration = calculate_shift_duration(clock_in_at, clock_out_at, 0, tz)
        else:
            raw = calculate_shift_duration(clock_in_at, clock_out_at, 0, tz)
            duration = calculate_shift_duration(
                clock_in_at,
                clock_out_at,
                effective_break_minutes(
                    raw.total_minutes,
                    shift.break_minutes or 0,
                    org.auto_break_threshold_hours,
                    org.auto_break_minutes,
                ),
                tz,
            )
            valid, problem = validate_shift_duration(duration.total_minutes, min_minutes=0)
            if not valid:
                raise InvalidRange(problem)

        result = session.execute(
            update(Shift)
            .where(Shift.id == shift.id)
            .where(Shift.status == current_status)
            .values(
                status=ShiftStatus.REVISED,
                clock_out_at=clock_out_at,
                duration_minutes=duration.total_minutes,
                break_minutes=duration.break_minutes,
                net_duration_minutes=duration.net_minutes,
                is_revised=True,
                revised_by=manager["uid"],
                revised_at=now,
                clock_out_note=f"Stale shift resolved by manager: {description}",
                revision_reason=note or shift.revision_reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            raise ShiftNotStale(shift_id=shift_id)

        record_audit(
            session,
            actor_id=manager["uid"],
            action=AuditAction.SHIFT_REVISED,
            resource_type="shift",
            resource_id=shift.id,
            organization_id=shift.organization_id,
            description=description,
        )
        session.commit()
        session.refresh(shift)

        logger.info(f"[SHIFTS] Stale shift {shift.id} resolved by {manager['uid']} ({resolution.value})")
        return shift

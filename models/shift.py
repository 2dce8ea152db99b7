from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field as PydanticField, field_serializer
from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from models.columns import enum_column, json_column, utc_datetime_column
from utils.timezone_helpers import format_utc_datetime


class ShiftStatus(str, Enum):
    OPEN = "open"  # Currently clocked in
    CLOSED = "closed"  # Properly clocked out
    STALE = "stale"  # Open past the threshold, needs resolution
    PENDING_REVISION = "pending_revision"  # Employee proposed a clock-out
    REVISED = "revised"  # Manager resolved the stale shift


class LocationStatus(str, Enum):
    IN_RANGE = "in_range"
    OUT_OF_RANGE = "out_of_range"
    UNKNOWN = "unknown"
    SPOOFING_DETECTED = "spoofing_detected"


# Location payload sent by clients on clock-in / clock-out / requests
class LocationPayload(BaseModel):
    latitude: float = PydanticField(..., ge=-90, le=90)
    longitude: float = PydanticField(..., ge=-180, le=180)
    accuracy: Optional[float] = PydanticField(default=None, ge=0)
    timestamp: Optional[datetime] = None


# Defines the Structure of Data for a Clock in / Clock out Call
class PunchRequest(BaseModel):
    location: LocationPayload
    note: Optional[str] = None
    # Set by the offline queue when replaying an event captured without signal
    was_offline: bool = False
    offline_event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None


OPEN_SHIFT_PREDICATE = text("status = 'open'")


class Shift(SQLModel, table=True):
    __tablename__ = "shifts"

    __table_args__ = (
        # Single-open-shift-per-user guard; a concurrent second clock-in for
        # the same user fails at insert time instead of slipping through.
        Index(
            "uq_shifts_user_open",
            "user_id",
            unique=True,
            postgresql_where=OPEN_SHIFT_PREDICATE,
            sqlite_where=OPEN_SHIFT_PREDICATE,
        ),
        # Composite index for the open-shift lookup
        Index("ix_shifts_user_id_status", "user_id", "status"),
        # Reporting queries
        Index("ix_shifts_organization_id_shift_date", "organization_id", "shift_date"),
        Index("ix_shifts_clock_in_at", "clock_in_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: str = Field(index=True)
    user_id: str = Field(index=True)
    location_id: Optional[str] = Field(default=None)

    status: ShiftStatus = Field(
        default=ShiftStatus.OPEN, sa_column=enum_column(ShiftStatus, index=True)
    )

    # Clock in data - ALL times in UTC
    clock_in_at: datetime = Field(sa_column=utc_datetime_column(nullable=False))
    clock_in_location: Optional[dict] = Field(default=None, sa_column=json_column())
    clock_in_location_status: LocationStatus = Field(
        default=LocationStatus.UNKNOWN, sa_column=enum_column(LocationStatus)
    )
    clock_in_verification: Optional[dict] = Field(default=None, sa_column=json_column())

    # Clock out data
    clock_out_at: Optional[datetime] = Field(default=None, sa_column=utc_datetime_column())
    clock_out_location: Optional[dict] = Field(default=None, sa_column=json_column())
    clock_out_location_status: Optional[LocationStatus] = Field(
        default=None, sa_column=enum_column(LocationStatus, nullable=True)
    )
    clock_out_verification: Optional[dict] = Field(default=None, sa_column=json_column())

    # Calculated on clock out
    duration_minutes: Optional[int] = Field(default=None)
    break_minutes: int = Field(default=0)
    net_duration_minutes: Optional[int] = Field(default=None)

    # Calendar day (org timezone) of clock_in_at; hours are credited here
    shift_date: date

    clock_in_note: Optional[str] = Field(default=None)
    clock_out_note: Optional[str] = Field(default=None)

    # Stale / revision tracking
    marked_stale_at: Optional[datetime] = Field(default=None, sa_column=utc_datetime_column())
    proposed_clock_out_at: Optional[datetime] = Field(
        default=None, sa_column=utc_datetime_column()
    )
    is_revised: bool = Field(default=False)
    revised_by: Optional[str] = Field(default=None)
    revised_at: Optional[datetime] = Field(default=None, sa_column=utc_datetime_column())
    revision_reason: Optional[str] = Field(default=None)

    # Offline replay
    was_offline: bool = Field(default=False)
    clock_in_offline_event_id: Optional[str] = Field(default=None, index=True)
    clock_out_offline_event_id: Optional[str] = Field(default=None, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_column=utc_datetime_column())

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=utc_datetime_column(nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=utc_datetime_column(nullable=False),
    )

    @field_serializer(
        "clock_in_at",
        "clock_out_at",
        "marked_stale_at",
        "proposed_clock_out_at",
        "revised_at",
        "synced_at",
        "created_at",
        "updated_at",
    )
    def serialize_timestamp(self, dt: Optional[datetime]) -> Optional[str]:
        """Ensure timestamps are formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)

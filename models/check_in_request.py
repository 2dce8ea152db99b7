from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import field_serializer
from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from models.columns import enum_column, json_column, utc_datetime_column
from utils.timezone_helpers import format_utc_datetime


class RequestTypeEnum(str, Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


class RequestStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    AUTO_EXPIRED = "auto_expired"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


# Manager-arbitrated override for clock events that fail geofence checks
class CheckInRequest(SQLModel, table=True):
    __tablename__ = "check_in_requests"

    __table_args__ = (
        # Manager review queues
        Index("ix_check_in_requests_org_status", "organization_id", "status"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: str = Field(index=True)
    user_id: str = Field(index=True)
    # Open shift being closed, for clock_out requests
    shift_id: Optional[int] = Field(default=None, foreign_key="shifts.id")

    request_type: RequestTypeEnum = Field(sa_column=enum_column(RequestTypeEnum))
    status: RequestStatusEnum = Field(
        default=RequestStatusEnum.PENDING,
        sa_column=enum_column(RequestStatusEnum, index=True),
    )

    requested_location: dict = Field(sa_column=json_column(nullable=False))
    distance_from_geofence: Optional[int] = Field(default=None)

    reason: str
    is_historical: bool = Field(default=False)
    requested_timestamp: datetime = Field(sa_column=utc_datetime_column(nullable=False))
    expires_at: datetime = Field(sa_column=utc_datetime_column(nullable=False))
    was_offline: bool = Field(default=False)
    offline_event_id: Optional[str] = Field(default=None, index=True)

    reviewed_by: Optional[str] = Field(default=None, index=True)
    reviewed_at: Optional[datetime] = Field(default=None, sa_column=utc_datetime_column())
    reviewer_note: Optional[str] = Field(default=None)
    denial_reason: Optional[str] = Field(default=None)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=utc_datetime_column(nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=utc_datetime_column(nullable=False),
    )

    @field_serializer(
        "requested_timestamp", "expires_at", "reviewed_at", "created_at", "updated_at"
    )
    def serialize_timestamp(self, dt: Optional[datetime]) -> Optional[str]:
        return format_utc_datetime(dt)

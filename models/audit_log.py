from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from models.columns import enum_column, utc_datetime_column


class AuditAction(str, Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_APPROVED = "request_approved"
    REQUEST_DENIED = "request_denied"
    REQUEST_EXPIRED = "request_expired"
    SHIFT_MARKED_STALE = "shift_marked_stale"
    SHIFT_REVISION_PROPOSED = "shift_revision_proposed"
    SHIFT_REVISED = "shift_revised"


# Immutable trail of every ledger change; written in the same transaction
class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)

    organization_id: Optional[str] = Field(default=None, index=True)

    # Who made the change ("system" for sweeps)
    actor_id: str = Field(index=True)

    action: AuditAction = Field(sa_column=enum_column(AuditAction, index=True))

    # e.g. "shift", "check_in_request"
    resource_type: str
    resource_id: Optional[int] = Field(default=None)

    description: Optional[str] = Field(default=None)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=utc_datetime_column(nullable=False, index=True),
    )

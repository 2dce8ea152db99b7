from typing import Optional

from sqlmodel import Field, SQLModel


# Organization settings the shift engine reads. Organization CRUD lives
# outside this service; rows are provisioned by the admin app.
class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(primary_key=True, description="Unique organization identifier")
    name: Optional[str] = Field(default=None)
    timezone: str = Field(default="UTC", description="IANA timezone for shift dates")

    # Primary point used when the organization has no explicit work locations
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)

    # Geofence policy
    geofence_radius_meters: float = Field(default=200)
    strict_mode: bool = Field(
        default=False, description="Reject out-of-range clock-ins instead of flagging"
    )
    max_acceptable_accuracy_meters: float = Field(default=100)
    max_location_age_seconds: float = Field(default=60)

    # Shift policy
    max_shift_hours: float = Field(default=16, description="Open longer than this -> stale")
    auto_break_threshold_hours: float = Field(default=6)
    auto_break_minutes: int = Field(default=30)
    overtime_threshold_hours: float = Field(default=40)

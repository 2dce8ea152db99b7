from typing import Optional

from sqlmodel import Field, SQLModel

# Defines the Structure of Data for Comparing an Employee Clock In/Out to Expected Location


# Work site w/ Circular Geofence
class WorkLocation(SQLModel, table=True):
    __tablename__ = "work_locations"

    id: str = Field(primary_key=True, description="Unique location identifier")
    organization_id: str = Field(index=True, foreign_key="organizations.id")
    name: Optional[str] = Field(default=None, description="Human-friendly location name")
    center_lat: float = Field(..., description="Latitude of location center")
    center_lng: float = Field(..., description="Longitude of location center")
    radius_meters: Optional[float] = Field(
        default=None, description="Allowed clock-in radius in meters (default 200)"
    )
    is_active: bool = Field(default=True)

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from core.deps import get_current_user
from db.session import get_session
from models.work_location import WorkLocation
from services.shift_service import build_geofences, load_organization

router = APIRouter()

# --- Pydantic Models for Response ---


class GeofenceResponse(BaseModel):
    location_id: str
    name: Optional[str] = None
    center_lat: float
    center_lng: float
    radius_meters: float


class OrganizationGeofencesResponse(BaseModel):
    organization_id: str
    strict_mode: bool
    geofences: List[GeofenceResponse]


# --- API Endpoints ---


@router.get("/geofences", response_model=OrganizationGeofencesResponse)
def get_my_geofences(
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    """
    Geofences the caller's clock events are checked against, so the app can
    show the zone and pre-check before punching. Falls back to the
    organization's primary point when it has no active work locations.
    """
    org = load_organization(session, current_user["organization_id"])
    locations = session.exec(
        select(WorkLocation).where(WorkLocation.organization_id == org.id)
    ).all()
    names = {loc.id: loc.name for loc in locations}

    return OrganizationGeofencesResponse(
        organization_id=org.id,
        strict_mode=org.strict_mode,
        geofences=[
            GeofenceResponse(
                location_id=fence.id,
                name=names.get(fence.id, org.name),
                center_lat=fence.latitude,
                center_lng=fence.longitude,
                radius_meters=fence.radius_meters,
            )
            for fence in build_geofences(session, org)
        ],
    )

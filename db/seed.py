# Insert Sample Organization + Work Locations
import logging

from sqlmodel import Session, SQLModel

from db.session import engine
from models.organization import Organization
from models.work_location import WorkLocation

logger = logging.getLogger(__name__)

DEMO_ORG_ID = "demo-org"


def seed_organization(session: Session) -> Organization:
    # Check if the organization already exists to avoid duplicates
    org = session.get(Organization, DEMO_ORG_ID)
    if not org:
        org = Organization(
            id=DEMO_ORG_ID,
            name="Demo Detailing Co.",
            timezone="America/New_York",
            latitude=38.9931538759034,
            longitude=-76.9428334513501,
            geofence_radius_meters=200,
        )
        session.add(org)
        logger.info("Added demo organization")
    else:
        logger.info("Demo organization already exists")

    locations = [
        WorkLocation(
            id="SPH",
            organization_id=DEMO_ORG_ID,
            name="SPH",
            center_lat=38.9931538759034,
            center_lng=-76.9428334513501,
            radius_meters=100.0,  # 100 m radius
        ),
        WorkLocation(
            id="OFFICE",
            organization_id=DEMO_ORG_ID,
            name="Office",
            center_lat=38.9869214,
            center_lng=-76.9426011,
            radius_meters=150.0,  # Slightly larger radius for office
        ),
    ]
    for location in locations:
        if session.get(WorkLocation, location.id):
            logger.info(f"{location.name} location already exists")
            continue
        session.add(location)
        logger.info(f"Added {location.name} location")

    session.commit()
    session.refresh(org)
    return org


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        seed_organization(session)

import os

# Point the app at SQLite before db.session builds its engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import db.session as db_session
from core.deps import get_current_user, get_session
from main import app
from models import Organization, WorkLocation

# Work site used throughout the tests (lower Manhattan)
SITE_LAT = 40.712776
SITE_LNG = -74.005974

# ~1 m of latitude
METER_LAT = 1 / 111_195


def offset_north(meters: float) -> float:
    """Latitude ``meters`` north of the site, kept at six decimals."""
    return round(SITE_LAT + meters * METER_LAT, 6)


def location_payload(meters_north: float = 0.0, accuracy: float = 10.0) -> dict:
    return {
        "latitude": offset_north(meters_north),
        "longitude": SITE_LNG,
        "accuracy": accuracy,
    }


EMPLOYEE = {
    "uid": "employee-1",
    "name": "Alex Worker",
    "email": "alex@example.com",
    "organization_id": "org-1",
    "role": "employee",
}

OTHER_EMPLOYEE = {**EMPLOYEE, "uid": "employee-2", "name": "Sam Worker"}

MANAGER = {
    "uid": "manager-1",
    "name": "Morgan Manager",
    "email": "morgan@example.com",
    "organization_id": "org-1",
    "role": "org_manager",
}

OTHER_ORG_MANAGER = {**MANAGER, "uid": "manager-2", "organization_id": "org-2"}


@pytest.fixture
def engine(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    # Sweeps open their own session from db.session
    monkeypatch.setattr(db_session, "engine", engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def org(session):
    org = Organization(
        id="org-1",
        name="Downtown Detailing",
        timezone="UTC",
        latitude=SITE_LAT,
        longitude=SITE_LNG,
        geofence_radius_meters=200,
    )
    session.add(org)
    session.add(Organization(id="org-2", name="Elsewhere", timezone="UTC"))
    session.commit()
    session.refresh(org)
    return org


@pytest.fixture
def strict_org(session, org):
    org.strict_mode = True
    session.add(org)
    session.commit()
    session.refresh(org)
    return org


@pytest.fixture
def work_location(session, org):
    location = WorkLocation(
        id="SITE",
        organization_id=org.id,
        name="Main Site",
        center_lat=SITE_LAT,
        center_lng=SITE_LNG,
        radius_meters=200,
    )
    session.add(location)
    session.commit()
    session.refresh(location)
    return location


@pytest.fixture
def actor():
    """Mutable holder for the identity the test client authenticates as."""
    return {"current": EMPLOYEE}


@pytest.fixture
def client(engine, actor):
    def override_get_session():
        with Session(engine) as session:
            yield session

    def override_get_current_user():
        return actor["current"]

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()

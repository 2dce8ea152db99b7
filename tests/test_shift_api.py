from datetime import datetime, timedelta, timezone

from sqlmodel import select

from conftest import MANAGER, OTHER_EMPLOYEE, location_payload
from models import AuditAction, AuditLog, Organization, Shift, ShiftStatus
from utils.timezone_helpers import to_utc


def clock_in(client, meters_north=20.0, accuracy=10.0, **extra):
    return client.post(
        "/time/clock-in",
        json={"location": location_payload(meters_north, accuracy), **extra},
    )


def clock_out(client, meters_north=20.0, accuracy=10.0, **extra):
    return client.post(
        "/time/clock-out",
        json={"location": location_payload(meters_north, accuracy), **extra},
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_clock_in_inside_geofence(client, org, session):
    response = clock_in(client)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["location_status"] == "in_range"
    assert body["data"]["status"] == "open"
    # Org primary point is not a work location row
    assert body["data"]["location_id"] is None
    assert body["data"]["clock_in_at"].endswith("Z")

    audit = session.exec(select(AuditLog)).all()
    assert [entry.action for entry in audit] == [AuditAction.CLOCK_IN]


def test_clock_in_records_matched_work_location(client, org, work_location):
    response = clock_in(client)

    assert response.status_code == 200
    assert response.json()["data"]["location_id"] == "SITE"


def test_second_clock_in_fails_already_open(client, org, session):
    first = clock_in(client)
    second = clock_in(client)

    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["error"] == "already_open"
    assert detail["shift_id"] == first.json()["shift_id"]

    session.expire_all()
    open_shifts = session.exec(select(Shift).where(Shift.status == ShiftStatus.OPEN)).all()
    assert len(open_shifts) == 1


def test_users_are_independent(client, org, actor):
    assert clock_in(client).status_code == 200

    actor["current"] = OTHER_EMPLOYEE
    assert clock_in(client).status_code == 200


def test_out_of_range_is_recorded_when_not_strict(client, org):
    response = clock_in(client, meters_north=1000)

    assert response.status_code == 200
    assert response.json()["location_status"] == "out_of_range"
    verification = response.json()["data"]["clock_in_verification"]
    assert verification["status"] == "out_of_range"
    assert verification["distance_meters"] >= 990


def test_strict_mode_rejects_out_of_range_clock_in(client, strict_org, session):
    response = clock_in(client, meters_north=1000)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "out_of_range"
    assert detail["requires_request"] is True
    assert 990 <= detail["distance_meters"] <= 1010
    assert detail["radius_meters"] == 200
    assert detail["accuracy_meters"] == 10
    assert "from the nearest work location" in detail["message"]

    session.expire_all()
    assert session.exec(select(Shift)).all() == []


def test_strict_mode_accepts_in_range_clock_in(client, strict_org):
    response = clock_in(client, meters_north=50)
    assert response.status_code == 200


def test_uncertain_low_accuracy_fails_closed(client, org):
    # 180 m out with 150 m accuracy straddles the 200 m edge; org accepts up to 100 m
    response = clock_in(client, meters_north=180, accuracy=150)

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["error"] == "location_unverified"
    assert detail["requires_request"] is True
    assert "low_accuracy" in detail["flags"]


def test_invalid_coordinates_rejected_by_payload_validation(client, org):
    response = client.post(
        "/time/clock-in", json={"location": {"latitude": 123.0, "longitude": 0.0}}
    )
    assert response.status_code == 422


def test_clock_in_without_any_geofence_is_out_of_range(client, session):
    session.add(Organization(id="org-1", name="No Site Yet"))
    session.commit()

    response = clock_in(client)

    assert response.status_code == 200
    assert response.json()["location_status"] == "out_of_range"


def test_unknown_organization(client):
    response = clock_in(client)

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "organization_not_found"


def test_clock_out_without_open_shift(client, org):
    response = clock_out(client)

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "no_open_shift"


def test_clock_out_closes_shift(client, org, session):
    shift_id = clock_in(client).json()["shift_id"]

    response = clock_out(client)

    assert response.status_code == 200
    body = response.json()
    assert body["shift_id"] == shift_id
    assert body["data"]["status"] == "closed"
    assert body["duration_minutes"] == 0
    assert body["location_status"] == "in_range"

    assert client.get("/time/current").json()["data"] is None


def test_clock_out_is_never_blocked_in_strict_mode(client, strict_org, session):
    clock_in(client)

    response = clock_out(client, meters_north=5000)

    assert response.status_code == 200
    assert response.json()["location_status"] == "out_of_range"


def test_clock_out_with_failed_verification_is_flagged(client, strict_org):
    clock_in(client)

    response = clock_out(client, meters_north=180, accuracy=150)

    assert response.status_code == 200
    assert response.json()["location_status"] == "spoofing_detected"


def test_current_and_history(client, org):
    assert client.get("/time/current").json()["data"] is None

    shift_id = clock_in(client).json()["shift_id"]
    assert client.get("/time/current").json()["data"]["id"] == shift_id

    clock_out(client)
    clock_in(client)

    history = client.get("/time/history", params={"limit": 10}).json()["data"]
    assert len(history) == 2
    assert history[-1]["id"] == shift_id


def test_offline_clock_in_uses_event_time_and_is_idempotent(client, org, session):
    occurred_at = datetime.now(timezone.utc) - timedelta(hours=2)
    payload = {
        "was_offline": True,
        "offline_event_id": "offline_abc",
        "occurred_at": occurred_at.isoformat(),
    }

    first = clock_in(client, **payload)
    replay = clock_in(client, **payload)

    assert first.status_code == 200
    assert replay.status_code == 200
    assert replay.json()["shift_id"] == first.json()["shift_id"]

    session.expire_all()
    shifts = session.exec(select(Shift)).all()
    assert len(shifts) == 1
    assert shifts[0].was_offline is True
    assert abs((to_utc(shifts[0].clock_in_at) - occurred_at).total_seconds()) < 1


def test_offline_event_time_never_in_future(client, org, session):
    future = datetime.now(timezone.utc) + timedelta(hours=3)

    response = clock_in(
        client, was_offline=True, offline_event_id="offline_future", occurred_at=future.isoformat()
    )

    assert response.status_code == 200
    session.expire_all()
    shift = session.exec(select(Shift)).one()
    assert to_utc(shift.clock_in_at) <= datetime.now(timezone.utc)


def test_offline_clock_out_replay(client, org):
    clock_in(client)
    payload = {"was_offline": True, "offline_event_id": "offline_out_1"}

    first = clock_out(client, **payload)
    replay = clock_out(client, **payload)

    assert first.status_code == 200
    assert replay.status_code == 200
    assert replay.json()["shift_id"] == first.json()["shift_id"]


def test_weekly_summary(client, org):
    clock_in(client)
    clock_out(client)

    response = client.get("/time/weekly-summary")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["shift_count"] == 1
    assert data["overtime_hours"] == 0
    assert data["timezone"] == "UTC"


def test_geofences_endpoint(client, org, work_location):
    response = client.get("/locations/geofences")

    assert response.status_code == 200
    body = response.json()
    assert body["organization_id"] == "org-1"
    assert body["geofences"][0]["location_id"] == "SITE"
    assert body["geofences"][0]["name"] == "Main Site"


def test_geofences_endpoint_falls_back_to_primary_point(client, org):
    body = client.get("/locations/geofences").json()

    assert [g["location_id"] for g in body["geofences"]] == ["org-primary"]
    assert body["geofences"][0]["radius_meters"] == 200


def test_admin_routes_require_manager(client, org, actor):
    assert client.get("/admin/clock-requests").status_code == 403
    assert client.get("/admin/stale-shifts").status_code == 403

    actor["current"] = MANAGER
    assert client.get("/admin/clock-requests").status_code == 200

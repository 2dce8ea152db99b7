from datetime import datetime, timedelta, timezone

import pytest

from utils.geofence import (
    Geofence,
    GeofenceStatus,
    LocationSample,
    VerificationFlag,
    check_geofence,
    check_multiple_geofences,
    detect_potential_spoofing,
    format_distance,
    haversine_dist,
    verify_location,
)

SITE = Geofence(id="SITE", latitude=40.712776, longitude=-74.005974, radius_meters=200)
METER_LAT = 1 / 111_195


def sample_at(meters_north: float, accuracy: float = 10.0, **kwargs) -> LocationSample:
    return LocationSample(
        latitude=round(SITE.latitude + meters_north * METER_LAT, 6),
        longitude=SITE.longitude,
        accuracy_meters=accuracy,
        **kwargs,
    )


def test_haversine_known_distance():
    # One degree of latitude is ~111.2 km
    assert haversine_dist(0, 0, 1, 0) == pytest.approx(111_195, rel=1e-3)
    assert haversine_dist(SITE.latitude, SITE.longitude, SITE.latitude, SITE.longitude) == 0


@pytest.mark.parametrize("radius", [0.5, 1, 50, 200, 10_000])
def test_center_with_zero_accuracy_is_definitely_in_range(radius):
    fence = SITE.model_copy(update={"radius_meters": radius})
    sample = LocationSample(latitude=SITE.latitude, longitude=SITE.longitude, accuracy_meters=0)

    result = check_geofence(sample, fence)

    assert result.status == GeofenceStatus.IN_RANGE
    assert result.is_within_range
    assert result.is_definitive
    assert result.distance_meters == 0


def test_definitely_outside():
    result = check_geofence(sample_at(1000, accuracy=20), SITE)

    assert result.status == GeofenceStatus.OUT_OF_RANGE
    assert not result.is_within_range
    assert result.is_definitive
    assert result.distance_meters == pytest.approx(1000, abs=2)


def test_uncertain_zone_resolves_on_raw_distance():
    # 180 m away with 50 m accuracy: could be either side of the 200 m edge
    inside = check_geofence(sample_at(180, accuracy=50), SITE)
    assert inside.status == GeofenceStatus.UNCERTAIN
    assert inside.is_within_range
    assert not inside.is_definitive

    # 220 m away with 50 m accuracy: uncertain, raw distance is outside
    outside = check_geofence(sample_at(220, accuracy=50), SITE)
    assert outside.status == GeofenceStatus.UNCERTAIN
    assert not outside.is_within_range
    assert outside.margin_of_error == 50


def test_accuracy_sweep_never_flips_definitive_results():
    # Growing the accuracy radius can only move a result toward uncertain
    for accuracy in [0, 10, 30, 45, 60, 100, 200, 349]:
        result = check_geofence(sample_at(150, accuracy=accuracy), SITE)
        if accuracy <= 45:
            assert result.status == GeofenceStatus.IN_RANGE
        else:
            assert result.status == GeofenceStatus.UNCERTAIN
            assert result.is_within_range


def test_multiple_geofences_reports_nearest():
    far = Geofence(id="FAR", latitude=SITE.latitude + 0.05, longitude=SITE.longitude, radius_meters=5000)
    near = Geofence(id="NEAR", latitude=SITE.latitude, longitude=SITE.longitude, radius_meters=100)

    match = check_multiple_geofences(sample_at(300), [far, near])

    assert match.closest_geofence.id == "NEAR"
    assert match.closest.status == GeofenceStatus.OUT_OF_RANGE
    assert [r.geofence_id for r in match.all_results] == ["NEAR", "FAR"]


def test_multiple_geofences_requires_one():
    with pytest.raises(ValueError):
        check_multiple_geofences(sample_at(0), [])


def test_spoofing_indicators():
    report = detect_potential_spoofing(
        LocationSample(latitude=40.0, longitude=-74.0, accuracy_meters=0)
    )
    assert report.suspicious
    assert "Integer coordinates detected" in report.reasons
    assert "Zero accuracy reported" in report.reasons
    assert "Unrealistically high accuracy" in report.reasons


def test_impossible_speed_is_flagged():
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    previous = sample_at(0, captured_at=now - timedelta(minutes=1))
    # ~55 km north one minute later
    current = LocationSample(
        latitude=41.207531, longitude=SITE.longitude, accuracy_meters=10, captured_at=now
    )

    report = detect_potential_spoofing(current, previous)

    assert report.suspicious
    assert report.reasons[0].startswith("Impossible speed detected")


def test_verify_location_in_range_is_high_confidence():
    verification = verify_location(sample_at(20), [SITE])

    assert verification.verified
    assert not verification.failed_closed
    assert VerificationFlag.HIGH_CONFIDENCE in verification.flags
    assert verification.geofence.id == "SITE"


def test_verify_location_uncertain_with_low_accuracy_fails_closed():
    verification = verify_location(sample_at(180, accuracy=150), [SITE], max_acceptable_accuracy=100)

    assert not verification.verified
    assert verification.failed_closed
    assert VerificationFlag.LOW_ACCURACY in verification.flags
    assert verification.result.status == GeofenceStatus.UNCERTAIN


def test_verify_location_uncertain_with_low_precision_fails_closed():
    sample = LocationSample(latitude=40.713, longitude=-74.006, accuracy_meters=300)

    verification = verify_location(sample, [SITE], max_acceptable_accuracy=500)

    assert VerificationFlag.LOW_PRECISION in verification.flags
    assert verification.failed_closed
    assert verification.rejection_reason == "Location precision too low for uncertain result"


def test_verify_location_rejects_invalid_coordinates():
    sample = LocationSample(latitude=95.0, longitude=0.0, accuracy_meters=5)

    verification = verify_location(sample, [SITE])

    assert not verification.verified
    assert verification.flags == [VerificationFlag.INVALID_COORDINATES]
    assert verification.result is None


def test_verify_location_flags_stale_fix():
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    stale = sample_at(10, captured_at=now - timedelta(minutes=5))

    assert VerificationFlag.STALE_LOCATION in verify_location(stale, [SITE], now=now).flags
    assert VerificationFlag.STALE_LOCATION not in verify_location(
        stale, [SITE], require_recent_timestamp=False, now=now
    ).flags


def test_verification_record_is_json_safe():
    record = verify_location(sample_at(500), [SITE]).to_record()

    assert record["verified"] is False
    assert record["status"] == "out_of_range"
    assert record["geofence_id"] == "SITE"
    assert isinstance(record["flags"], list)


def test_format_distance():
    assert format_distance(85.4) == "85m"
    assert format_distance(1520) == "1.5km"

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from math import radians, sin, cos, sqrt, atan2
from typing import List, Optional

from pydantic import BaseModel, Field

from utils.timezone_helpers import ensure_timezone_aware

EARTH_RADIUS_METERS = 6371000

# Real GPS (even on a plane) never implies more than ~900 km/h
MAX_REALISTIC_SPEED_KMH = 1000

# Coordinates with fewer decimals than this look hand-entered
MIN_COORDINATE_DECIMALS = 4


class GeofenceStatus(str, Enum):
    IN_RANGE = "in_range"
    OUT_OF_RANGE = "out_of_range"
    UNCERTAIN = "uncertain"


class VerificationFlag(str, Enum):
    INVALID_COORDINATES = "invalid_coordinates"
    LOW_PRECISION = "low_precision"
    LOW_ACCURACY = "low_accuracy"
    STALE_LOCATION = "stale_location"
    POSSIBLE_SPOOFING = "possible_spoofing"
    HIGH_CONFIDENCE = "high_confidence"


# A single GPS fix reported by a device
class LocationSample(BaseModel):
    latitude: float
    longitude: float
    accuracy_meters: float = 0.0
    captured_at: Optional[datetime] = None


# Circular work zone
class Geofence(BaseModel):
    id: str
    latitude: float
    longitude: float
    radius_meters: float


class GeofenceResult(BaseModel):
    status: GeofenceStatus
    is_within_range: bool
    is_definitive: bool
    distance_meters: int
    radius_meters: float
    margin_of_error: int
    geofence_id: Optional[str] = None


class MultiGeofenceResult(BaseModel):
    closest: GeofenceResult
    closest_geofence: Geofence
    all_results: List[GeofenceResult]


class SpoofingReport(BaseModel):
    suspicious: bool
    reasons: List[str] = Field(default_factory=list)


class VerificationResult(BaseModel):
    verified: bool
    result: Optional[GeofenceResult] = None
    geofence: Optional[Geofence] = None
    flags: List[VerificationFlag] = Field(default_factory=list)
    spoofing_reasons: List[str] = Field(default_factory=list)
    rejection_reason: Optional[str] = None

    @property
    def failed_closed(self) -> bool:
        """True when the sample was rejected rather than merely out of range."""
        return self.rejection_reason is not None

    def to_record(self) -> dict:
        """Compact JSON-safe summary stored on the shift row."""
        return {
            "verified": self.verified,
            "status": self.result.status.value if self.result else None,
            "distance_meters": self.result.distance_meters if self.result else None,
            "geofence_id": self.geofence.id if self.geofence else None,
            "flags": [flag.value for flag in self.flags],
            "spoofing_reasons": self.spoofing_reasons,
            "rejection_reason": self.rejection_reason,
            "verified_at": datetime.now(timezone.utc).isoformat(),
        }


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    R = EARTH_RADIUS_METERS
    φ1, φ2 = radians(lat1), radians(lat2)
    Δφ = radians(lat2 - lat1)
    Δλ = radians(lng2 - lng1)

    a = sin(Δφ/2)**2 + cos(φ1) * cos(φ2) * sin(Δλ/2)**2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return R * c


def check_geofence(sample: LocationSample, geofence: Geofence) -> GeofenceResult:
    """Classify a sample against one geofence, accounting for GPS accuracy.

    The accuracy radius is treated as a margin of error around the fix:

    - ``distance + accuracy <= radius``: definitely inside (``in_range``)
    - ``distance - accuracy > radius``: definitely outside (``out_of_range``)
    - anything else: ``uncertain``

    Uncertain results are resolved leniently on the raw distance
    (``is_within_range = distance <= radius``) but are marked non-definitive,
    so callers that need certainty (server verification) can fail closed.
    """
    distance = haversine_dist(
        sample.latitude, sample.longitude, geofence.latitude, geofence.longitude
    )
    margin = max(sample.accuracy_meters, 0.0)

    definitely_inside = distance + margin <= geofence.radius_meters
    definitely_outside = distance - margin > geofence.radius_meters

    if definitely_inside:
        status = GeofenceStatus.IN_RANGE
        within = True
    elif definitely_outside:
        status = GeofenceStatus.OUT_OF_RANGE
        within = False
    else:
        status = GeofenceStatus.UNCERTAIN
        within = distance <= geofence.radius_meters

    return GeofenceResult(
        status=status,
        is_within_range=within,
        is_definitive=definitely_inside or definitely_outside,
        distance_meters=round(distance),
        radius_meters=geofence.radius_meters,
        margin_of_error=round(margin),
        geofence_id=geofence.id,
    )


def check_multiple_geofences(
    sample: LocationSample, geofences: List[Geofence]
) -> MultiGeofenceResult:
    """Evaluate every geofence and report the nearest one.

    The nearest result is returned even when a farther zone would also match,
    so "you are Xm from your location" is always the true closest distance.
    """
    if not geofences:
        raise ValueError("At least one geofence is required")

    results = sorted(
        (check_geofence(sample, geofence) for geofence in geofences),
        key=lambda r: r.distance_meters,
    )
    by_id = {geofence.id: geofence for geofence in geofences}
    closest = results[0]

    return MultiGeofenceResult(
        closest=closest,
        closest_geofence=by_id[closest.geofence_id],
        all_results=results,
    )


def coordinates_are_valid(latitude: float, longitude: float) -> bool:
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def _decimal_places(value: float) -> int:
    exponent = Decimal(repr(float(value))).normalize().as_tuple().exponent
    return max(0, -exponent)


def detect_potential_spoofing(
    sample: LocationSample, previous: Optional[LocationSample] = None
) -> SpoofingReport:
    """Look for the usual signs of a mocked GPS provider.

    Integer coordinates, an accuracy of exactly zero or under a metre, and an
    implied speed over 1,000 km/h since the previous sample.
    """
    reasons = []

    if float(sample.latitude).is_integer() or float(sample.longitude).is_integer():
        reasons.append("Integer coordinates detected")

    if sample.accuracy_meters == 0:
        reasons.append("Zero accuracy reported")

    if sample.accuracy_meters < 1:
        reasons.append("Unrealistically high accuracy")

    if previous and previous.captured_at and sample.captured_at:
        elapsed = (
            ensure_timezone_aware(sample.captured_at)
            - ensure_timezone_aware(previous.captured_at)
        ).total_seconds()
        if elapsed > 0:
            distance = haversine_dist(
                previous.latitude, previous.longitude, sample.latitude, sample.longitude
            )
            speed_kmh = distance / elapsed * 3.6
            if speed_kmh > MAX_REALISTIC_SPEED_KMH:
                reasons.append(f"Impossible speed detected: {round(speed_kmh)} km/h")

    return SpoofingReport(suspicious=bool(reasons), reasons=reasons)


def verify_location(
    sample: LocationSample,
    geofences: List[Geofence],
    max_acceptable_accuracy: float = 100,
    max_age_seconds: float = 60,
    require_recent_timestamp: bool = True,
    previous: Optional[LocationSample] = None,
    now: Optional[datetime] = None,
) -> VerificationResult:
    """Authoritative server-side check of a client-reported location.

    Invalid coordinates are a hard rejection. Low precision, low accuracy,
    stale timestamps and spoofing indicators are recorded as flags; an
    ``uncertain`` geofence result combined with low precision or low accuracy
    is rejected outright.
    """
    if not coordinates_are_valid(sample.latitude, sample.longitude):
        return VerificationResult(
            verified=False,
            flags=[VerificationFlag.INVALID_COORDINATES],
            rejection_reason="Invalid coordinate values",
        )

    flags: List[VerificationFlag] = []

    if (
        _decimal_places(sample.latitude) < MIN_COORDINATE_DECIMALS
        or _decimal_places(sample.longitude) < MIN_COORDINATE_DECIMALS
    ):
        flags.append(VerificationFlag.LOW_PRECISION)

    if sample.accuracy_meters > max_acceptable_accuracy:
        flags.append(VerificationFlag.LOW_ACCURACY)

    if require_recent_timestamp and sample.captured_at:
        now = now or datetime.now(timezone.utc)
        age = (
            ensure_timezone_aware(now) - ensure_timezone_aware(sample.captured_at)
        ).total_seconds()
        if age > max_age_seconds:
            flags.append(VerificationFlag.STALE_LOCATION)

    spoofing = detect_potential_spoofing(sample, previous)
    if spoofing.suspicious:
        flags.append(VerificationFlag.POSSIBLE_SPOOFING)

    match = check_multiple_geofences(sample, geofences)
    result = match.closest

    verified = result.is_within_range
    rejection_reason = None

    if result.status == GeofenceStatus.UNCERTAIN:
        if VerificationFlag.LOW_PRECISION in flags:
            verified = False
            rejection_reason = "Location precision too low for uncertain result"
        elif VerificationFlag.LOW_ACCURACY in flags:
            verified = False
            rejection_reason = "GPS accuracy too low for uncertain result"

    if result.is_definitive and result.status == GeofenceStatus.IN_RANGE:
        flags.append(VerificationFlag.HIGH_CONFIDENCE)

    return VerificationResult(
        verified=verified,
        result=result,
        geofence=match.closest_geofence,
        flags=flags,
        spoofing_reasons=spoofing.reasons,
        rejection_reason=rejection_reason,
    )


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"

from typing import Any, Optional

from fastapi import HTTPException, status


# Base for every rejection raised by the shift engine. The detail is always a
# dict with a machine-readable "error" code so clients (and the offline
# queue) can tell a conflict from a validation problem without parsing text.
class ShiftEngineError(HTTPException):
    code = "shift_engine_error"
    category = "validation"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be processed."

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        detail = {"error": self.code, "message": self.message}
        detail.update({k: v for k, v in context.items() if v is not None})
        super().__init__(status_code=type(self).status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# --- Validation (malformed input, rejected before touching state) ---


class ValidationFailed(ShiftEngineError):
    code = "validation_failed"
    category = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidReason(ValidationFailed):
    code = "invalid_reason"
    default_message = "Please provide a detailed reason (at least 10 characters)."


class InvalidHistoricalRange(ValidationFailed):
    code = "invalid_historical_range"
    default_message = "Historical requests must be in the past and no more than 30 days old."


class MissingDenialReason(ValidationFailed):
    code = "missing_denial_reason"
    default_message = "Denial reason is required when denying a request."


class InvalidRange(ValidationFailed):
    code = "invalid_range"
    default_message = "Clock in time cannot be after clock out time."


class InvalidCoordinates(ValidationFailed):
    code = "invalid_coordinates"
    default_message = "Invalid coordinate values."


# --- State conflicts (no retry can help) ---


class StateConflict(ShiftEngineError):
    code = "state_conflict"
    category = "state_conflict"
    status_code = status.HTTP_409_CONFLICT


class AlreadyOpen(StateConflict):
    code = "already_open"
    default_message = "You already have an open shift. Please clock out first."


class NoOpenShift(StateConflict):
    code = "no_open_shift"
    default_message = "No open shift found."


class AlreadyReviewed(StateConflict):
    code = "already_reviewed"
    default_message = "Request has already been reviewed."


class ShiftNotStale(StateConflict):
    code = "shift_not_stale"
    default_message = "Shift is not awaiting stale resolution."


# --- Policy rejection ---


class OutOfRange(ShiftEngineError):
    code = "out_of_range"
    category = "policy_rejection"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = (
        "You are outside all work locations. Please submit a check-in request instead."
    )

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("requires_request", True)
        super().__init__(message, **context)


# --- Verification failure (anti-spoofing / uncertain location) ---


class LocationUnverified(ShiftEngineError):
    code = "location_unverified"
    category = "verification_failure"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Could not verify location."

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("requires_request", True)
        super().__init__(message, **context)


# --- Not found ---


class NotFound(ShiftEngineError):
    code = "not_found"
    category = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class RequestNotFound(NotFound):
    code = "request_not_found"
    default_message = "Request not found."


class ShiftNotFound(NotFound):
    code = "shift_not_found"
    default_message = "Shift not found."


class OrganizationNotFound(NotFound):
    code = "organization_not_found"
    default_message = "Organization not found."

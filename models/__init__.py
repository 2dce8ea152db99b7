from .audit_log import AuditAction, AuditLog
from .check_in_request import CheckInRequest, RequestStatusEnum, RequestTypeEnum, ReviewAction
from .organization import Organization
from .shift import LocationPayload, LocationStatus, PunchRequest, Shift, ShiftStatus
from .work_location import WorkLocation

import os

from dotenv import load_dotenv

# Load environment variables from .env file, if it exists
load_dotenv()

# Shifts left open longer than this are flagged stale by the sweep
STALE_SHIFT_THRESHOLD_HOURS = float(os.getenv("STALE_SHIFT_THRESHOLD_HOURS", "16"))

# Check-in requests auto-expire when left unreviewed this long
REQUEST_EXPIRY_HOURS = float(os.getenv("REQUEST_EXPIRY_HOURS", "24"))

# Oldest backdated (historical) request an employee may submit
HISTORICAL_REQUEST_MAX_DAYS = int(os.getenv("HISTORICAL_REQUEST_MAX_DAYS", "30"))

# Minimum length of a check-in request reason
MIN_REASON_LENGTH = int(os.getenv("MIN_REASON_LENGTH", "10"))

# Accuracy assumed when a client does not report one
DEFAULT_ACCURACY_METERS = float(os.getenv("DEFAULT_ACCURACY_METERS", "50"))

# Radius used for locations / org primary points with no explicit radius
DEFAULT_GEOFENCE_RADIUS_METERS = float(os.getenv("DEFAULT_GEOFENCE_RADIUS_METERS", "200"))

# Roles allowed to review requests and resolve stale shifts
MANAGER_ROLES = [
    role.strip()
    for role in os.getenv("MANAGER_ROLES", "org_admin,org_manager,super_admin").split(",")
    if role.strip()
]

# Offline replay
OFFLINE_MAX_RETRIES = int(os.getenv("OFFLINE_MAX_RETRIES", "3"))
OFFLINE_SYNC_TIMEOUT_SECONDS = float(os.getenv("OFFLINE_SYNC_TIMEOUT_SECONDS", "15"))

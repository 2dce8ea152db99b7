import logging

from fastapi import Depends, HTTPException, Request, status
from typing import Annotated

from core.config import MANAGER_ROLES
from core.firebase import get_firestore_client, verify_id_token
from db.session import get_session  # re-exported for routers

logger = logging.getLogger(__name__)

# Standard credentials exception
CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")

    # Make Sure Formatting Valid
    if not auth_header.startswith("Bearer "):
        raise CREDENTIALS_EXCEPTION

    return auth_header.split(" ", 1)[1]


# Resolves the authenticated actor (user id, organization id, role)
async def get_current_user(request: Request):

    # 1) Verify This Points to a Real User Account
    token = _bearer_token(request)
    try:
        decoded = verify_id_token(token)
    except Exception:
        raise CREDENTIALS_EXCEPTION

    uid = decoded.get("uid")
    if not uid:
        raise CREDENTIALS_EXCEPTION

    # 2) Fetch the Firestore user profile
    try:
        snapshot = get_firestore_client().collection("users").document(uid).get()
    except Exception as e:
        logger.error(f"[AUTH] Firestore error fetching profile for {uid}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not fetch user profile.",
        )

    if not snapshot.exists:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User profile not found",
        )
    profile = snapshot.to_dict()

    # 3) Every shift operation is scoped to the user's organization
    organization_id = profile.get("organizationId")
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User not associated with an organization",
        )

    return {
        "uid": uid,
        "name": profile.get("displayName", ""),
        "email": profile.get("email", ""),
        "organization_id": organization_id,
        "role": profile.get("role", "employee"),
    }


# Manager Role Check Dependency
async def require_manager_role(
    current_user: Annotated[dict, Depends(get_current_user)]
):
    # Check That User Has Adequate Permissions
    if current_user.get("role") not in MANAGER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User doesn't have sufficient privileges for this action",
        )

    # Passes Check Endpoint
    return current_user

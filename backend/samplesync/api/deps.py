"""FastAPI dependencies for the admin sample endpoints.

Sample management is restricted to operators. A request is accepted when it
carries a Supabase access token whose user has an admin role in
``user_profiles``; the sync service itself performs no authorization.
"""

import logging
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from samplesync.core.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from samplesync.db.supabase import SupabaseClient

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"admin"})

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Any:
    """Resolve the Supabase user behind the bearer token.

    Raises:
        HTTPException: 401 when the token is missing or rejected.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    try:
        response = SupabaseClient.get_client().auth.get_user(credentials.credentials)
        if response is None or response.user is None:
            raise AuthenticationError("Invalid authentication token")
    except AuthenticationError as e:
        logger.warning("Rejected sample admin token: %s", e.message)
        raise _unauthorized("Invalid authentication token") from e
    except Exception as e:
        logger.exception("Token validation failed")
        raise _unauthorized("Could not validate credentials") from e

    return response.user


async def get_current_admin(
    current_user: Annotated[Any, Depends(get_current_user)],
) -> Any:
    """Require an admin role for the authenticated user.

    A user without a profile row is treated as a non-admin.

    Raises:
        HTTPException: 403 for non-admins, 500 if the profile lookup fails.
    """
    try:
        profile = await SupabaseClient.get_user_by_id(current_user.id)
        role = profile.get("role", "user")
        if role not in ADMIN_ROLES:
            raise AuthorizationError("Sample administration requires an admin role")
    except (AuthorizationError, NotFoundError) as e:
        logger.info(
            "Sample admin access denied",
            extra={"user_id": current_user.id, "reason": str(e)},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions for this action",
        ) from e
    except Exception as e:
        logger.exception("Admin role lookup failed", extra={"user_id": current_user.id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error checking permissions",
        ) from e

    return current_user


CurrentUser = Annotated[Any, Depends(get_current_user)]
AdminUser = Annotated[Any, Depends(get_current_admin)]

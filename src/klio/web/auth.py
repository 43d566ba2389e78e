"""
Bearer-token auth for the onboarding routes.

Every rejection is a 401 with the same body, {"error": "Unauthorized"};
the reason is only logged.
"""

import logging

from fastapi import Header, HTTPException
from pydantic import BaseModel

from klio.db.client import get_service_client

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


class AuthenticatedUser(BaseModel):
    """Session owner resolved from a Supabase access token."""
    id: str
    email: str | None
    access_token: str


def _unauthorized(reason: str) -> HTTPException:
    logger.info(f"Rejected request: {reason}")
    return HTTPException(status_code=401, detail="Unauthorized")


def bearer_token(authorization: str | None) -> str | None:
    """Token from an `Authorization: Bearer <token>` header (scheme case-insensitive)."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


async def get_current_user(authorization: str | None = Header(None)) -> AuthenticatedUser:
    """Resolve the caller's Supabase session or fail with 401."""
    if not authorization:
        raise _unauthorized("no Authorization header")

    access_token = bearer_token(authorization)
    if access_token is None:
        raise _unauthorized("Authorization header is not a bearer token")

    try:
        user_response = get_service_client().auth.get_user(access_token)
    except Exception as e:
        raise _unauthorized(f"token lookup failed: {e}")

    user = getattr(user_response, "user", None)
    if user is None:
        raise _unauthorized("token has no session")

    return AuthenticatedUser(id=user.id, email=user.email, access_token=access_token)

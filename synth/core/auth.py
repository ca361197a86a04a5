"""
Auth utilities for the Synth API.

Verifies HS256 session tokens signed with AUTH_SECRET and extracts the
user id from the 'sub' claim. Outside production an X-User-Id header is
accepted instead (local development and tests).
"""
from fastapi import Header, Request
from typing import Optional
import jwt
import logging

from synth.core.config import settings
from synth.core.errors import UnauthorizedError
from synth.core.logging import user_id_ctx_var

logger = logging.getLogger(__name__)

ALGORITHMS = ["HS256"]


def verify_session_token(token: str, secret: Optional[str] = None) -> str:
    """
    Verify a session JWT and return its subject.

    Raises:
        UnauthorizedError: missing secret, bad signature, expired token or no 'sub'
    """
    key = secret or settings.AUTH_SECRET
    if not key:
        logger.warning("AUTH_SECRET not configured, rejecting bearer token")
        raise UnauthorizedError("Token verification unavailable")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=ALGORITHMS,
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token")
    return str(user_id)


def _header_fallback_allowed() -> bool:
    return (settings.ENV or "development").lower() != "production"


def _ensure_user(user_id: str) -> None:
    from synth.features.users.service import get_or_create_user

    try:
        get_or_create_user(user_id)
    except Exception as e:
        logger.warning(f"Failed to upsert user {user_id}: {e}")


def _identify(request: Request, user_id: str) -> str:
    _ensure_user(user_id)
    request.state.user_id = user_id
    user_id_ctx_var.set(user_id)
    return user_id


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (non-production only)
    3. 401 Unauthorized
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return _identify(request, verify_session_token(auth_header[7:]))

    if x_user_id and _header_fallback_allowed():
        return _identify(request, x_user_id)

    raise UnauthorizedError("Missing Authorization (Bearer JWT) or X-User-Id header")

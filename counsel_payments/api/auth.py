"""
Session authentication.

Tokens are issued by the marketplace's auth service: HS256 JWTs carrying the
user id in `sub` and the user's role in `role`. Browsers send them in the
session cookie, API clients as a Bearer token.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
import structlog
from fastapi import Request

from counsel_payments.config import get_settings
from counsel_payments.core.errors import AuthenticationError
from counsel_payments.database.models import UserRole

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a session token.

    Raises:
        jwt.PyJWTError: If the token is invalid or expired
    """
    settings = get_settings()
    return jwt.decode(
        token,
        settings.auth_jwt_secret,
        algorithms=[settings.auth_jwt_algorithm],
    )


def _extract_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(get_settings().auth_cookie_name) or None


async def get_current_user(request: Request) -> CurrentUser:
    """
    FastAPI dependency resolving the authenticated caller.

    Raises:
        AuthenticationError: No token, or a token that does not verify
    """
    token = _extract_token(request)
    if token is None:
        raise AuthenticationError()

    try:
        payload = decode_token(token)
    except jwt.PyJWTError as e:
        logger.info("session_token_rejected", error=str(e))
        raise AuthenticationError() from e

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in {r.value for r in UserRole}:
        logger.info("session_token_incomplete", has_sub=bool(user_id), role=role)
        raise AuthenticationError()

    structlog.contextvars.bind_contextvars(user_id=str(user_id))
    return CurrentUser(id=str(user_id), role=role)

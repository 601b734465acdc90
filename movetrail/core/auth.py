"""
Identity resolution for the streak API.

Validates HS256 bearer tokens and extracts the user id from the `sub` claim.
When no signing secret is configured (local development, tests) the
X-User-Id header is trusted instead.
"""
import logging
from typing import Optional

import jwt
from fastapi import Header, Request

from movetrail.core.config import settings
from movetrail.core.errors import AuthenticationError

logger = logging.getLogger(__name__)


def verify_bearer_token(token: str, secret: Optional[str] = None, audience: Optional[str] = None) -> str:
    """
    Verify a bearer JWT and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})
        secret: Override for AUTH_JWT_SECRET
        audience: Override for AUTH_JWT_AUDIENCE

    Returns:
        user_id: Extracted from JWT's 'sub' claim

    Raises:
        AuthenticationError: Invalid, expired or subject-less token
    """
    signing_secret = secret or settings.AUTH_JWT_SECRET
    expected_audience = audience or settings.AUTH_JWT_AUDIENCE
    if not signing_secret:
        raise AuthenticationError("Bearer tokens are not accepted: no signing secret configured")

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(expected_audience)}
    try:
        payload = jwt.decode(
            token,
            signing_secret,
            algorithms=["HS256"],
            audience=expected_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid token: %s", e)
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return str(user_id)


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> str:
    """
    Resolve the acting user for a request.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header, only while no signing secret is configured
    3. Raise AuthenticationError (401)
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return verify_bearer_token(auth_header[7:])

    if x_user_id and not settings.AUTH_JWT_SECRET:
        return x_user_id.strip() or _missing_identity()

    return _missing_identity()


def _missing_identity() -> str:
    raise AuthenticationError("Missing Authorization (Bearer JWT) or X-User-Id header")

"""JWT creation and verification.

Tokens carry the user in ``sub`` and the organization in
``organization_id``. Verification failures raise AuthError, which the app
maps to 401.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from src.app.config import get_settings
from src.equipment_rag.errors import AuthError

logger = logging.getLogger(__name__)

# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with organization-scoped claims.

    The data dict should contain at minimum:
    - sub: user_id (str)
    - organization_id: organization UUID (str)
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected token type.

    Returns:
        The decoded payload dict.

    Raises:
        AuthError: If the token is invalid, expired, of the wrong type, or
            has no subject.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.info("Rejected token: %s", exc)
        raise AuthError("Could not validate credentials") from exc

    if payload.get("type") != token_type or not payload.get("sub"):
        raise AuthError("Could not validate credentials")
    return payload

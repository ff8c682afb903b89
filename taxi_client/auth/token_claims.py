"""
Read claims from access tokens without verifying them.

Used for diagnostics only; whether a token is still valid is decided by the
server (a 401 triggers the refresh path).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError

logger = logging.getLogger(__name__)


def get_unverified_claims(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Claims of a JWT, or None for opaque or malformed tokens."""
    if not token:
        return None
    try:
        return jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.debug(f"Token is not a readable JWT: {e}")
        return None


def get_token_expiration(token: Optional[str]) -> Optional[datetime]:
    """
    Parse the ``exp`` claim.

    Returns:
        Timezone-aware expiration time or None if unavailable
    """
    claims = get_unverified_claims(token)
    if not claims:
        return None

    exp = claims.get('exp')
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def is_token_expired(token: Optional[str], now: Optional[datetime] = None) -> Optional[bool]:
    """True/False when the token carries ``exp``, None when unknown."""
    expires_at = get_token_expiration(token)
    if expires_at is None:
        return None
    return (now or datetime.now(timezone.utc)) >= expires_at


def get_token_user_id(token: Optional[str]) -> Optional[str]:
    claims = get_unverified_claims(token)
    if not claims or claims.get('user_id') is None:
        return None
    return str(claims['user_id'])

"""Signed API session tokens issued after identity-provider sync."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "career_session"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    external_id: Optional[str]
    expires_at: int


def _ttl(expires_hours: Optional[int]) -> timedelta:
    hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    return timedelta(hours=max(hours, 1))


def create_session_token(
    user_id: str,
    external_id: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Sign a session for a principal; returns ``{"token", "expires_at"}``."""
    issued_at = datetime.now(timezone.utc)
    expires_at = int((issued_at + _ttl(expires_hours)).timestamp())
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": expires_at,
    }
    if external_id:
        claims["ext"] = external_id
    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": expires_at,
    }


def decode_session_token(token: str) -> SessionClaims:
    """Verify signature, expiry and token type. Raises ValueError when unusable."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if payload.get("type") != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise ValueError("Session token missing subject.")

    return SessionClaims(
        user_id=user_id,
        external_id=payload.get("ext") or None,
        expires_at=int(payload.get("exp") or 0),
    )

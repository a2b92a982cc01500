"""
Password hashing, JWT tokens and OAuth state signing.
"""
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from zapsocial.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + expires_delta,
        "type": token_type,
    })
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a short-lived access token."""
    return _create_token(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a long-lived refresh token."""
    return _create_token(
        data,
        "refresh",
        expires_delta or timedelta(days=settings.refresh_token_expire_days),
    )


def verify_token(token: str, token_type: str = "access") -> dict[str, Any] | None:
    """
    Decode a JWT and check its type.

    Returns:
        The token payload, or None if the token is invalid, expired or of
        another type
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    if payload.get("type") != token_type:
        return None

    return payload


def sign_oauth_state(user_id: str, platform: str) -> str:
    """Create a signed, expiring OAuth state carrying the initiating user."""
    return _create_token(
        {"sub": user_id, "platform": platform},
        "oauth_state",
        timedelta(minutes=settings.oauth_state_expire_minutes),
    )


def decode_oauth_state(state: str, platform: str) -> str | None:
    """Return the user id from a valid state issued for ``platform``."""
    payload = verify_token(state, token_type="oauth_state")
    if payload is None or payload.get("platform") != platform:
        return None
    return payload.get("sub")

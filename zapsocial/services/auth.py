"""
Authentication dependencies.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from zapsocial.database import get_db
from zapsocial.models.user import User
from zapsocial.utils.security import verify_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_active_user(db: AsyncSession, user_id: str | None) -> User | None:
    """Load a user by id, returning None if missing or deactivated."""
    if not user_id:
        return None
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active user; integrations are scoped to it."""
    payload = verify_token(token, token_type="access")
    user = await get_active_user(db, payload.get("sub") if payload else None)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user

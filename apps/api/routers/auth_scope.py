"""Request principal resolution for protected routes."""

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from services.principals import get_principal
from services.session_token import SessionClaims, decode_session_token


auth_scheme = HTTPBearer(auto_error=False)

AuthContext = SessionClaims


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")
    try:
        return decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the principal row; a valid token for a deleted user is a 404."""
    user = await get_principal(db, auth.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user

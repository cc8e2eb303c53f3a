"""
Authentication router: identity-provider session sync and profile retrieval.
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_auth_context, get_current_user
from services.principals import ensure_principal
from services.session_token import create_session_token

router = APIRouter()


class SyncSessionRequest(BaseModel):
    external_id: str = Field(min_length=1, max_length=128)
    email: Optional[str] = None
    name: Optional[str] = None
    image_url: Optional[str] = None


class SyncSessionResponse(BaseModel):
    user_id: str
    external_id: str
    tokens: int
    session_token: str
    session_expires_at: int


class CurrentUserResponse(BaseModel):
    user_id: str
    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    image_url: Optional[str] = None
    tokens: int


def _require_sync_secret(supplied: Optional[str]) -> None:
    expected = (settings.AUTH_SYNC_SECRET or "").encode("utf-8")
    if not expected or not supplied or not hmac.compare_digest(expected, supplied.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid auth sync secret.")


@router.post("/sync", response_model=SyncSessionResponse)
async def sync_session(
    request: SyncSessionRequest,
    x_auth_sync_secret: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """
    Exchange an identity verified by the hosted auth provider for an API session.

    Called server-to-server by the web app after its own sign-in check; new
    principals are created with the free-tier token grant.
    """
    _require_sync_secret(x_auth_sync_secret)
    user = await ensure_principal(
        db,
        external_id=request.external_id,
        email=request.email,
        name=request.name,
        image_url=request.image_url,
    )
    session = create_session_token(user.id, user.external_id)
    return SyncSessionResponse(
        user_id=user.id,
        external_id=user.external_id,
        tokens=user.token_balance,
        session_token=session["token"],
        session_expires_at=session["expires_at"],
    )


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Get the current principal and token balance."""
    return CurrentUserResponse(
        user_id=user.id,
        external_id=user.external_id,
        email=user.email,
        name=user.name,
        image_url=user.image_url,
        tokens=user.token_balance,
    )


@router.post("/logout")
async def logout(_auth: AuthContext = Depends(get_auth_context)):
    """Frontend-managed logout acknowledgment endpoint."""
    return {"message": "Logged out successfully"}

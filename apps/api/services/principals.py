"""Principal provisioning for identities resolved by the auth provider."""

from __future__ import annotations

import logging
from typing import Optional
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.user import User
from services.ledger import FEATURE_SIGNUP_GRANT, credit_tokens

logger = logging.getLogger(__name__)


async def get_principal(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_principal_by_external_id(db: AsyncSession, external_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.external_id == external_id))
    return result.scalar_one_or_none()


async def ensure_principal(
    db: AsyncSession,
    *,
    external_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    image_url: Optional[str] = None,
) -> User:
    """Return the user for an identity reference, creating it on first sight.

    A new user receives the free-tier grant through the ledger in the same
    commit as the user row.
    """
    external_id = (external_id or "").strip()
    if not external_id:
        raise ValueError("external_id is required")

    user = await get_principal_by_external_id(db, external_id)
    if user:
        changed = False
        if email and user.email != email:
            user.email = email
            changed = True
        if name and user.name != name:
            user.name = name
            changed = True
        if image_url and user.image_url != image_url:
            user.image_url = image_url
            changed = True
        if changed:
            await db.commit()
        return user

    user = User(
        id=str(uuid.uuid4()),
        external_id=external_id,
        email=email,
        name=name or email or "User",
        image_url=image_url,
        token_balance=0,
    )
    db.add(user)
    try:
        await db.flush()
        free_tokens = max(int(settings.FREE_TIER_TOKENS), 0)
        if free_tokens:
            await credit_tokens(
                user.id,
                db,
                amount=free_tokens,
                description="Welcome tokens",
                feature_type=FEATURE_SIGNUP_GRANT,
                reference_type="user",
                reference_id=user.id,
                commit=False,
            )
        await db.commit()
    except IntegrityError:
        # Concurrent first sign-in for the same identity; the other insert won.
        await db.rollback()
        existing = await get_principal_by_external_id(db, external_id)
        if existing is None:
            raise
        return existing

    await db.refresh(user)
    logger.info("principal_created user=%s external_id=%s", user.id, external_id)
    return user

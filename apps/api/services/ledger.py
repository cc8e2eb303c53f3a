"""Token ledger and balance accounting helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.token_ledger import TokenLedgerEntry
from models.user import User
from services.catalog import list_packages

logger = logging.getLogger(__name__)

FEATURE_PURCHASE = "purchase"
FEATURE_SIGNUP_GRANT = "signup_grant"


class InsufficientBalanceError(RuntimeError):
    """Raised when a debit exceeds the principal's balance."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient tokens. Required: {required}, available: {available}. "
            "Purchase a token package to continue."
        )
        self.required = required
        self.available = available


class PrincipalNotFoundError(LookupError):
    """Raised when a ledger operation targets an unknown user."""


async def get_token_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.token_balance).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise PrincipalNotFoundError(f"User {user_id} not found")
    return int(balance)


async def get_ledger_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(TokenLedgerEntry.delta), 0)).where(TokenLedgerEntry.user_id == user_id)
    )
    return int(result.scalar() or 0)


async def ledger_is_consistent(user_id: str, db: AsyncSession) -> bool:
    """True when the balance column equals the sum of ledger deltas."""
    return await get_token_balance(user_id, db) == await get_ledger_balance(user_id, db)


async def _append_entry(
    user_id: str,
    db: AsyncSession,
    *,
    delta: int,
    balance_after: int,
    description: Optional[str],
    feature_type: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> TokenLedgerEntry:
    entry = TokenLedgerEntry(
        id=str(uuid.uuid4()),
        user_id=user_id,
        delta=int(delta),
        balance_after=int(balance_after),
        description=description,
        feature_type=feature_type,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(entry)
    await db.flush()
    return entry


async def credit_tokens(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    description: str,
    feature_type: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> TokenLedgerEntry:
    """Increment the balance and append a positive entry in one unit.

    With ``commit=False`` the caller owns the transaction, which is how the
    payment completion procedure folds the credit into its own unit.
    """
    grant = int(amount)
    if grant <= 0:
        raise ValueError("credit amount must be greater than 0")

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(token_balance=User.token_balance + grant)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PrincipalNotFoundError(f"User {user_id} not found")

    balance_after = await get_token_balance(user_id, db)
    entry = await _append_entry(
        user_id,
        db,
        delta=grant,
        balance_after=balance_after,
        description=description,
        feature_type=feature_type,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    if commit:
        await db.commit()
    return entry


async def debit_tokens(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    description: str,
    feature_type: str,
) -> Dict[str, Any]:
    """Decrement the balance and append a negative entry in one transaction."""
    cost = int(amount)
    if cost < 0:
        raise ValueError("debit amount must not be negative")
    if cost == 0:
        return {"charged": 0, "balance_after": await get_token_balance(user_id, db)}

    # Guarded decrement: the balance check and the write are one statement.
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.token_balance >= cost)
        .values(token_balance=User.token_balance - cost)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        available = await get_token_balance(user_id, db)
        raise InsufficientBalanceError(required=cost, available=available)

    balance_after = await get_token_balance(user_id, db)
    await _append_entry(
        user_id,
        db,
        delta=-cost,
        balance_after=balance_after,
        description=description,
        feature_type=feature_type,
    )
    await db.commit()
    logger.info("token_debit user=%s feature=%s cost=%s balance_after=%s", user_id, feature_type, cost, balance_after)
    return {"charged": cost, "balance_after": balance_after}


async def has_enough_tokens(user_id: str, db: AsyncSession, needed: int = 1) -> bool:
    return await get_token_balance(user_id, db) >= int(needed)


async def list_ledger_entries(user_id: str, db: AsyncSession, limit: int = 50) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(TokenLedgerEntry)
        .where(TokenLedgerEntry.user_id == user_id)
        .order_by(TokenLedgerEntry.created_at.desc(), TokenLedgerEntry.id.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    return [
        {
            "id": entry.id,
            "delta": entry.delta,
            "balance_after": entry.balance_after,
            "description": entry.description,
            "feature_type": entry.feature_type,
            "reference_id": entry.reference_id,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]


async def get_token_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    return {
        "tokens": await get_token_balance(user_id, db),
        "packages": [package.to_dict() for package in list_packages()],
        "recent_entries": await list_ledger_entries(user_id, db, limit=5),
    }

"""Order issuance: pending payment intents backed by gateway orders."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.payment_intent import STATUS_PENDING, PaymentIntent
from services.catalog import TokenPackage, require_package, to_minor_units
from services.payments.gateway import RazorpayClient
from services.payments.types import GatewayUnavailableError, OrderIssue

logger = logging.getLogger(__name__)


async def find_reusable_intent(
    user_id: str,
    package: TokenPackage,
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> Optional[PaymentIntent]:
    """Newest PENDING intent of the same user and package inside the reuse window."""
    window_minutes = max(int(settings.PENDING_ORDER_REUSE_MINUTES), 0)
    if window_minutes == 0:
        return None
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=window_minutes)
    result = await db.execute(
        select(PaymentIntent)
        .where(
            PaymentIntent.user_id == user_id,
            PaymentIntent.package_id == package.id,
            PaymentIntent.status == STATUS_PENDING,
            PaymentIntent.created_at >= cutoff,
        )
        .order_by(PaymentIntent.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _order_notes(user_id: str, package: TokenPackage) -> Dict[str, str]:
    # Echoed back unmodified by the gateway on fetch_order.
    return {"userId": user_id, "packageId": package.id, "tokens": str(package.tokens)}


async def create_order(
    user_id: str,
    package_id: str,
    db: AsyncSession,
    gateway: RazorpayClient,
) -> OrderIssue:
    """Create (or reuse) a gateway order for a token package."""
    package = require_package(package_id)

    existing = await find_reusable_intent(user_id, package, db)
    if existing:
        logger.info(
            "order_reused user=%s package=%s order=%s", user_id, package.id, existing.gateway_order_id
        )
        return OrderIssue(
            gateway_order_id=existing.gateway_order_id,
            amount=to_minor_units(existing.price),
            currency=existing.currency or package.currency,
            package_id=package.id,
            key_id=gateway.key_id,
            reused=True,
        )

    amount_minor = to_minor_units(package.price)
    try:
        order = await gateway.create_order(
            amount=amount_minor,
            currency=package.currency,
            receipt=f"rcpt_{uuid.uuid4().hex[:12]}_{int(time.time())}",
            notes=_order_notes(user_id, package),
        )
    except GatewayUnavailableError:
        logger.exception("Gateway order creation failed user=%s package=%s", user_id, package.id)
        raise

    gateway_order_id = str(order.get("id") or "")
    if not gateway_order_id:
        raise GatewayUnavailableError("Payment gateway did not return an order id. Please retry.")

    intent = PaymentIntent(
        id=str(uuid.uuid4()),
        gateway_order_id=gateway_order_id,
        user_id=user_id,
        package_id=package.id,
        price=package.price,
        currency=package.currency,
        token_grant=package.tokens,
        status=STATUS_PENDING,
    )
    try:
        db.add(intent)
        await db.commit()
    except SQLAlchemyError:
        # The webhook path can still rebuild the intent from the gateway order.
        await db.rollback()
        logger.exception(
            "Payment intent persistence failed; gateway order still returned order=%s user=%s",
            gateway_order_id,
            user_id,
        )

    logger.info("order_created user=%s package=%s order=%s", user_id, package.id, gateway_order_id)
    return OrderIssue(
        gateway_order_id=gateway_order_id,
        amount=int(order.get("amount") or amount_minor),
        currency=str(order.get("currency") or package.currency),
        package_id=package.id,
        key_id=gateway.key_id,
    )


async def list_payment_intents(user_id: str, db: AsyncSession, limit: int = 50) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(PaymentIntent)
        .where(PaymentIntent.user_id == user_id)
        .order_by(PaymentIntent.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    return [
        {
            "id": intent.id,
            "gateway_order_id": intent.gateway_order_id,
            "package_id": intent.package_id,
            "price": str(intent.price),
            "currency": intent.currency,
            "tokens": intent.token_grant,
            "status": intent.status,
            "gateway_payment_id": intent.gateway_payment_id,
            "created_at": intent.created_at.isoformat() if intent.created_at else None,
            "completed_at": intent.completed_at.isoformat() if intent.completed_at else None,
        }
        for intent in result.scalars().all()
    ]

"""Reconcile stale PENDING intents against the gateway's record of payments."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.payment_intent import STATUS_PENDING, PaymentIntent
from services.catalog import from_minor_units
from services.payments.gateway import RazorpayClient
from services.payments.types import CompletionRequest, PaymentError
from services.payments.verification import complete_payment

logger = logging.getLogger(__name__)


async def reconcile_pending_intents(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    older_than_minutes: Optional[int] = None,
    limit: int = 100,
) -> Dict[str, Any]:
    """Complete stale PENDING intents whose order has a captured payment."""
    minutes = int(older_than_minutes if older_than_minutes is not None else settings.RECONCILE_PENDING_AFTER_MINUTES)
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(minutes, 0))
    result = await db.execute(
        select(PaymentIntent.gateway_order_id, PaymentIntent.user_id, PaymentIntent.package_id)
        .where(PaymentIntent.status == STATUS_PENDING, PaymentIntent.created_at <= cutoff)
        .order_by(PaymentIntent.created_at.asc())
        .limit(max(1, int(limit)))
    )
    candidates = result.all()

    summary: Dict[str, Any] = {"checked": 0, "completed": 0, "unpaid": 0, "errors": []}
    for order_id, user_id, package_id in candidates:
        summary["checked"] += 1
        try:
            payments = await gateway.fetch_order_payments(order_id)
            captured = next((p for p in payments if p.get("status") == "captured"), None)
            if captured is None:
                summary["unpaid"] += 1
                continue
            completion = await complete_payment(
                CompletionRequest(
                    gateway_order_id=order_id,
                    gateway_payment_id=str(captured.get("id") or ""),
                    package_id=package_id,
                    claimed_user_id=user_id,
                    amount_paid=from_minor_units(captured.get("amount") or 0),
                ),
                db,
            )
            if completion.credited:
                summary["completed"] += 1
        except PaymentError as exc:
            logger.warning("Reconciliation failed order=%s code=%s: %s", order_id, exc.code, exc)
            summary["errors"].append({"order_id": order_id, "code": exc.code, "message": str(exc)})

    logger.info(
        "Reconciliation finished checked=%s completed=%s unpaid=%s errors=%s",
        summary["checked"],
        summary["completed"],
        summary["unpaid"],
        len(summary["errors"]),
    )
    return summary

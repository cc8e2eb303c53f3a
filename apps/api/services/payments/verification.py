"""Payment verification engine.

Both entry points (the client callback after checkout and the gateway
webhook) converge on :func:`complete_payment`, which credits a user's
token balance exactly once per gateway order. Exactly-once rests on the
database, not on in-process locks: the intent status is re-read inside a
serializable transaction and flipped with a guarded ``UPDATE ... WHERE
status != 'COMPLETED'`` so only one concurrent completion can win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.payment_intent import STATUS_COMPLETED, STATUS_FAILED, PaymentIntent
from services.catalog import TokenPackage, amounts_match, from_minor_units, require_package
from services.ledger import FEATURE_PURCHASE, credit_tokens
from services.payments.gateway import RazorpayClient
from services.payments.signatures import verify_payment_signature
from services.payments.types import (
    AmountMismatchError,
    CompletionRequest,
    CompletionResult,
    GatewayRequestError,
    InvalidSignatureError,
    OrderNotFoundError,
    OwnershipMismatchError,
    PaymentNotCapturedError,
    PaymentOrderMismatchError,
    TransactionConflictError,
)

logger = logging.getLogger(__name__)

CLIENT_ACCEPTED_PAYMENT_STATUSES = ("captured", "authorized")

POSTGRES_TIMEOUT_SQLSTATES = ("57014", "55P03")


@dataclass(frozen=True)
class VerifyPaymentInput:
    gateway_order_id: str
    gateway_payment_id: str
    signature: str
    package_id: str


async def _load_intent(db: AsyncSession, gateway_order_id: str) -> Optional[PaymentIntent]:
    result = await db.execute(select(PaymentIntent).where(PaymentIntent.gateway_order_id == gateway_order_id))
    return result.scalar_one_or_none()


async def _settled_status(db: AsyncSession, intent_id: str) -> Optional[str]:
    """Fresh read of the intent status after a failed credit unit."""
    try:
        result = await db.execute(select(PaymentIntent.status).where(PaymentIntent.id == intent_id))
    except SQLAlchemyError:
        logger.exception("Could not re-read payment intent status intent=%s", intent_id)
        return None
    return result.scalar_one_or_none()


def _is_timeout(exc: SQLAlchemyError) -> bool:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) in POSTGRES_TIMEOUT_SQLSTATES


async def _apply_credit(
    db: AsyncSession,
    *,
    intent_id: str,
    request: CompletionRequest,
    package: TokenPackage,
) -> Optional[int]:
    """Serializable unit: status flip, balance credit and ledger append.

    Returns the new balance, or None when another completion already won.
    """
    conn = await db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    if conn.dialect.name == "postgresql":
        # Enforced by the server; the task is never cancelled mid-statement.
        timeout_ms = max(int(float(settings.PAYMENT_TRANSACTION_TIMEOUT_SECONDS) * 1000), 1)
        await db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
        await db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))

    current = await db.execute(
        select(PaymentIntent.status).where(PaymentIntent.id == intent_id).with_for_update()
    )
    if current.scalar_one() == STATUS_COMPLETED:
        await db.rollback()
        return None

    flipped = await db.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent_id, PaymentIntent.status != STATUS_COMPLETED)
        .values(
            status=STATUS_COMPLETED,
            gateway_payment_id=request.gateway_payment_id,
            completed_at=datetime.now(timezone.utc),
            failure_reason=None,
        )
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        await db.rollback()
        return None

    entry = await credit_tokens(
        request.claimed_user_id,
        db,
        amount=package.tokens,
        description=f"Purchased {package.description} (Order: {request.gateway_order_id})",
        feature_type=FEATURE_PURCHASE,
        reference_type="payment_intent",
        reference_id=request.gateway_order_id,
        commit=False,
    )
    await db.commit()
    return entry.balance_after


async def complete_payment(request: CompletionRequest, db: AsyncSession) -> CompletionResult:
    """Shared completion procedure for a verified gateway payment."""
    order_id = request.gateway_order_id
    package = require_package(request.package_id)

    if not amounts_match(request.amount_paid, package.price):
        logger.error(
            "Amount mismatch order=%s payment=%s user=%s expected=%s received=%s",
            order_id,
            request.gateway_payment_id,
            request.claimed_user_id,
            package.price,
            request.amount_paid,
        )
        raise AmountMismatchError("Payment amount does not match package")

    intent = await _load_intent(db, order_id)
    if intent is None:
        raise OrderNotFoundError(f"Payment record not found for order {order_id}")

    if intent.user_id != request.claimed_user_id:
        logger.error(
            "security_event ownership_mismatch order=%s payment=%s owner=%s claimed_by=%s",
            order_id,
            request.gateway_payment_id,
            intent.user_id,
            request.claimed_user_id,
        )
        raise OwnershipMismatchError("Payment does not belong to authenticated user")

    if intent.package_id != package.id or not amounts_match(intent.price, package.price):
        logger.error(
            "Stored intent mismatch order=%s stored_package=%s stored_price=%s package=%s price=%s",
            order_id,
            intent.package_id,
            intent.price,
            package.id,
            package.price,
        )
        raise AmountMismatchError("Payment amount mismatch")

    if intent.status == STATUS_COMPLETED:
        logger.warning(
            "Payment already processed order=%s payment=%s user=%s",
            order_id,
            request.gateway_payment_id,
            request.claimed_user_id,
        )
        return CompletionResult(outcome="already_processed", gateway_order_id=order_id)

    if intent.status == STATUS_FAILED:
        # Terminal; a capture on a failed intent is left for reconciliation.
        logger.warning(
            "Completion attempted on FAILED intent order=%s payment=%s user=%s; needs reconciliation",
            order_id,
            request.gateway_payment_id,
            request.claimed_user_id,
        )
        return CompletionResult(outcome="intent_failed", gateway_order_id=order_id)

    intent_id = intent.id
    # End the read snapshot so the credit runs in a fresh serializable unit.
    await db.rollback()

    try:
        balance_after = await _apply_credit(db, intent_id=intent_id, request=request, package=package)
    except SQLAlchemyError as exc:
        await db.rollback()
        if await _settled_status(db, intent_id) == STATUS_COMPLETED:
            # Serialization failure or ledger uniqueness hit: the concurrent completion committed.
            logger.info("Completion conflict resolved as already processed order=%s: %s", order_id, exc)
            return CompletionResult(outcome="already_processed", gateway_order_id=order_id)
        if _is_timeout(exc):
            logger.error(
                "Payment transaction timed out after %ss order=%s",
                settings.PAYMENT_TRANSACTION_TIMEOUT_SECONDS,
                order_id,
            )
            raise TransactionConflictError("Payment processing timed out. Please retry.") from exc
        if isinstance(exc, IntegrityError):
            logger.warning("Payment credit hit a uniqueness conflict order=%s: %s", order_id, exc)
            raise TransactionConflictError("Payment is being processed concurrently. Please retry.") from exc
        logger.exception("Payment transaction failed order=%s", order_id)
        raise TransactionConflictError("Payment processing failed. Please retry.") from exc

    if balance_after is None:
        logger.info("Lost completion race; already processed order=%s", order_id)
        return CompletionResult(outcome="already_processed", gateway_order_id=order_id)

    logger.info(
        "Payment processed order=%s payment=%s user=%s tokens=%s balance_after=%s",
        order_id,
        request.gateway_payment_id,
        request.claimed_user_id,
        package.tokens,
        balance_after,
    )
    return CompletionResult(
        outcome="completed",
        gateway_order_id=order_id,
        tokens_added=package.tokens,
        balance_after=balance_after,
    )


async def verify_client_payment(
    payload: VerifyPaymentInput,
    user_id: str,
    db: AsyncSession,
    gateway: RazorpayClient,
) -> CompletionResult:
    """Client callback adapter: signature, authoritative status, then completion."""
    if not verify_payment_signature(
        payload.gateway_order_id,
        payload.gateway_payment_id,
        payload.signature,
        gateway.key_secret,
    ):
        logger.warning(
            "security_event invalid_payment_signature order=%s payment=%s user=%s",
            payload.gateway_order_id,
            payload.gateway_payment_id,
            user_id,
        )
        raise InvalidSignatureError("Invalid payment signature")

    try:
        payment = await gateway.fetch_payment(payload.gateway_payment_id)
    except GatewayRequestError as exc:
        logger.warning(
            "Gateway has no usable payment payment=%s user=%s: %s", payload.gateway_payment_id, user_id, exc
        )
        raise PaymentNotCapturedError("Payment not found at the gateway") from exc

    status = str(payment.get("status") or "")
    if status not in CLIENT_ACCEPTED_PAYMENT_STATUSES:
        logger.error(
            "Payment not captured payment=%s status=%s user=%s", payload.gateway_payment_id, status, user_id
        )
        raise PaymentNotCapturedError("Payment not completed")

    if payment.get("order_id") != payload.gateway_order_id:
        logger.error(
            "security_event payment_order_mismatch payment=%s payment_order=%s submitted_order=%s user=%s",
            payload.gateway_payment_id,
            payment.get("order_id"),
            payload.gateway_order_id,
            user_id,
        )
        raise PaymentOrderMismatchError("Payment order mismatch")

    return await complete_payment(
        CompletionRequest(
            gateway_order_id=payload.gateway_order_id,
            gateway_payment_id=payload.gateway_payment_id,
            package_id=payload.package_id,
            claimed_user_id=user_id,
            amount_paid=from_minor_units(payment.get("amount") or 0),
        ),
        db,
    )

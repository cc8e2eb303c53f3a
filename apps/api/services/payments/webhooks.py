"""Gateway webhook adapter.

The signature is computed over the raw request bytes before any parsing.
Once a delivery is authentic, processing failures are logged for manual
reconciliation and still acknowledged so the gateway does not retry-storm.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.payment_intent import STATUS_FAILED, STATUS_PENDING, PaymentIntent
from services.catalog import amounts_match, from_minor_units, get_package
from services.payments.gateway import RazorpayClient
from services.payments.signatures import verify_webhook_signature
from services.payments.types import (
    CompletionRequest,
    GatewayNotConfiguredError,
    InvalidSignatureError,
    MalformedWebhookError,
    PaymentError,
    WebhookAck,
)
from services.payments.verification import complete_payment

logger = logging.getLogger(__name__)


class WebhookEventKind(str, Enum):
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    UNHANDLED = "unhandled"

    @classmethod
    def from_event_name(cls, name: str) -> "WebhookEventKind":
        for kind in cls:
            if kind is not cls.UNHANDLED and kind.value == name:
                return kind
        return cls.UNHANDLED


@dataclass(frozen=True)
class WebhookEvent:
    kind: WebhookEventKind
    name: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    payment: Dict[str, Any] = field(default_factory=dict)


class WebhookProcessingError(RuntimeError):
    """Authentic delivery that could not be applied; acknowledged, not retried."""


def parse_webhook_event(raw_body: bytes) -> WebhookEvent:
    """Parse an authenticated webhook body into a closed event variant."""
    try:
        document = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise MalformedWebhookError("Webhook body is not valid JSON") from exc
    if not isinstance(document, dict) or not isinstance(document.get("event"), str):
        raise MalformedWebhookError("Webhook body has no event name")

    name = document["event"]
    kind = WebhookEventKind.from_event_name(name)
    if kind is WebhookEventKind.UNHANDLED:
        return WebhookEvent(kind=kind, name=name)

    payment = ((document.get("payload") or {}).get("payment") or {}).get("entity")
    if not isinstance(payment, dict) or not payment.get("id") or not payment.get("order_id"):
        raise MalformedWebhookError(f"{name} webhook is missing the payment entity")
    return WebhookEvent(
        kind=kind,
        name=name,
        payment_id=str(payment["id"]),
        order_id=str(payment["order_id"]),
        payment=payment,
    )


async def _recover_missing_intent(
    order: Dict[str, Any],
    *,
    user_id: str,
    package_id: str,
    db: AsyncSession,
) -> None:
    """Rebuild a PENDING intent from gateway order data when the local write was lost."""
    order_id = str(order.get("id") or "")
    existing = await db.execute(select(PaymentIntent.id).where(PaymentIntent.gateway_order_id == order_id))
    if existing.scalar_one_or_none():
        return

    package = get_package(package_id)
    if package is None or not amounts_match(from_minor_units(order.get("amount") or 0), package.price):
        # Leave it to the completion procedure to reject with a precise error.
        return

    db.add(
        PaymentIntent(
            id=str(uuid.uuid4()),
            gateway_order_id=order_id,
            user_id=user_id,
            package_id=package.id,
            price=package.price,
            currency=str(order.get("currency") or package.currency),
            token_grant=package.tokens,
            status=STATUS_PENDING,
        )
    )
    try:
        await db.commit()
        logger.warning("Recovered missing payment intent from gateway order order=%s user=%s", order_id, user_id)
    except IntegrityError:
        await db.rollback()


async def _handle_payment_captured(event: WebhookEvent, db: AsyncSession, gateway: RazorpayClient) -> WebhookAck:
    order = await gateway.fetch_order(event.order_id)
    notes = order.get("notes") or {}
    user_id = notes.get("userId") if isinstance(notes, dict) else None
    package_id = notes.get("packageId") if isinstance(notes, dict) else None
    if not user_id or not package_id:
        raise WebhookProcessingError(f"Order {event.order_id} has no userId/packageId notes")

    payment = await gateway.fetch_payment(event.payment_id)
    status = str(payment.get("status") or "")
    if status != "captured":
        logger.warning("Webhook payment not captured yet payment=%s status=%s", event.payment_id, status)
        return WebhookAck(event=event.name, processed=False, message="Payment not captured yet")
    if payment.get("order_id") != event.order_id:
        raise WebhookProcessingError(
            f"Payment {event.payment_id} belongs to order {payment.get('order_id')}, not {event.order_id}"
        )

    await _recover_missing_intent(order, user_id=str(user_id), package_id=str(package_id), db=db)

    result = await complete_payment(
        CompletionRequest(
            gateway_order_id=event.order_id,
            gateway_payment_id=event.payment_id,
            package_id=str(package_id),
            claimed_user_id=str(user_id),
            amount_paid=from_minor_units(payment.get("amount") or 0),
        ),
        db,
    )
    logger.info(
        "Webhook payment processed order=%s payment=%s user=%s outcome=%s",
        event.order_id,
        event.payment_id,
        user_id,
        result.outcome,
    )
    return WebhookAck(event=event.name, processed=True, message="Payment processed", outcome=result.outcome)


async def _handle_payment_failed(event: WebhookEvent, db: AsyncSession, gateway: RazorpayClient) -> WebhookAck:
    error_description = event.payment.get("error_description")
    result = await db.execute(
        update(PaymentIntent)
        .where(PaymentIntent.gateway_order_id == event.order_id, PaymentIntent.status == STATUS_PENDING)
        .values(status=STATUS_FAILED, failure_reason=str(error_description)[:500] if error_description else None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info(
        "Payment marked as failed order=%s payment=%s rows=%s", event.order_id, event.payment_id, result.rowcount
    )
    return WebhookAck(event=event.name, processed=True, message="Payment marked as failed")


async def _acknowledge_unhandled(event: WebhookEvent, db: AsyncSession, gateway: RazorpayClient) -> WebhookAck:
    logger.info("Webhook event acknowledged without action event=%s", event.name)
    return WebhookAck(event=event.name, processed=False, message="Event received")


WebhookHandler = Callable[[WebhookEvent, AsyncSession, RazorpayClient], Awaitable[WebhookAck]]

_HANDLERS: Dict[WebhookEventKind, WebhookHandler] = {
    WebhookEventKind.PAYMENT_CAPTURED: _handle_payment_captured,
    WebhookEventKind.PAYMENT_FAILED: _handle_payment_failed,
    WebhookEventKind.UNHANDLED: _acknowledge_unhandled,
}


async def handle_webhook(
    raw_body: bytes,
    signature: Optional[str],
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    secret: Optional[str] = None,
) -> WebhookAck:
    """Authenticate, parse and dispatch one webhook delivery."""
    webhook_secret = secret if secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
    if not webhook_secret:
        logger.error("RAZORPAY_WEBHOOK_SECRET not configured")
        raise GatewayNotConfiguredError("Webhook secret not configured")

    if not verify_webhook_signature(raw_body, signature, webhook_secret):
        logger.warning(
            "security_event invalid_webhook_signature signature_present=%s body_bytes=%s",
            bool(signature),
            len(raw_body),
        )
        raise InvalidSignatureError("Invalid webhook signature")

    event = parse_webhook_event(raw_body)
    handler = _HANDLERS[event.kind]
    try:
        return await handler(event, db, gateway)
    except PaymentError as exc:
        log = logger.error if exc.security_event else logger.warning
        log(
            "Webhook processing rejected event=%s order=%s payment=%s code=%s: %s",
            event.name,
            event.order_id,
            event.payment_id,
            exc.code,
            exc,
        )
        return WebhookAck(event=event.name, processed=False, message=f"Error processing payment: {exc.code}")
    except (WebhookProcessingError, SQLAlchemyError) as exc:
        await db.rollback()
        logger.exception(
            "Webhook processing failed event=%s order=%s payment=%s: %s",
            event.name,
            event.order_id,
            event.payment_id,
            exc,
        )
        return WebhookAck(event=event.name, processed=False, message="Error processing payment")
    except Exception as exc:
        await db.rollback()
        logger.exception(
            "Unexpected webhook processing error event=%s order=%s payment=%s: %s",
            event.name,
            event.order_id,
            event.payment_id,
            exc,
        )
        return WebhookAck(event=event.name, processed=False, message="Error processing payment")

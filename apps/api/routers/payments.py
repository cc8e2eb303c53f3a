"""Payments router: token packages, order issuance, verification and webhook."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.catalog import list_packages
from services.ledger import get_token_balance
from services.payments.gateway import RazorpayClient, get_gateway_client
from services.payments.orders import create_order, list_payment_intents
from services.payments.types import PaymentError
from services.payments.verification import VerifyPaymentInput, verify_client_payment
from services.payments.webhooks import handle_webhook

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateOrderRequest(BaseModel):
    package_id: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("package_id", "packageId"))


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(min_length=1, max_length=128)
    razorpay_payment_id: str = Field(min_length=1, max_length=128)
    razorpay_signature: str = Field(min_length=1, max_length=256)
    package_id: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("package_id", "packageId"))


def _payment_http_error(exc: PaymentError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.get("/packages")
async def token_packages():
    return {
        "currency": settings.PAYMENT_CURRENCY,
        "key_id": settings.RAZORPAY_KEY_ID,
        "packages": [package.to_dict() for package in list_packages()],
    }


@router.post("/create-order")
async def create_payment_order(
    request: CreateOrderRequest,
    _rate_limit: None = Depends(rate_limit("payments_create_order", limit=20, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway_client),
):
    try:
        issue = await create_order(user.id, request.package_id, db, gateway)
    except PaymentError as exc:
        raise _payment_http_error(exc) from exc

    payload = {
        "order_id": issue.gateway_order_id,
        "amount": issue.amount,
        "currency": issue.currency,
        "package_id": issue.package_id,
        "key_id": issue.key_id,
    }
    if issue.reused:
        payload["message"] = "Using existing pending order"
    return payload


@router.post("/verify")
async def verify_payment(
    request: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway_client),
):
    # Completion rolls the session back, which expires the loaded user row.
    user_id = user.id
    try:
        result = await verify_client_payment(
            VerifyPaymentInput(
                gateway_order_id=request.razorpay_order_id,
                gateway_payment_id=request.razorpay_payment_id,
                signature=request.razorpay_signature,
                package_id=request.package_id,
            ),
            user_id,
            db,
            gateway,
        )
    except PaymentError as exc:
        raise _payment_http_error(exc) from exc

    if result.outcome == "intent_failed":
        return {
            "success": False,
            "status": result.outcome,
            "message": "This order was already closed as failed. Contact support if you were charged.",
            "tokens_added": 0,
        }
    return {
        "success": True,
        "status": result.outcome,
        "message": (
            "Payment verified and processed successfully"
            if result.credited
            else "Payment already processed"
        ),
        "tokens_added": result.tokens_added,
        "balance_after": (
            result.balance_after if result.credited else await get_token_balance(user_id, db)
        ),
    }


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway_client),
):
    # Raw bytes first: the signature covers the body exactly as delivered.
    raw_body = await request.body()
    signature = request.headers.get(settings.RAZORPAY_WEBHOOK_SIGNATURE_HEADER)
    try:
        ack = await handle_webhook(raw_body, signature, db, gateway)
    except PaymentError as exc:
        raise _payment_http_error(exc) from exc
    return ack.to_dict()


@router.get("/history")
async def payment_history(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"items": await list_payment_intents(user.id, db, limit=limit)}

"""Payment pipeline contracts: error taxonomy and result records."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Literal, Optional


CompletionOutcome = Literal["completed", "already_processed", "intent_failed"]


class PaymentError(RuntimeError):
    """Base class for payment pipeline failures surfaced to callers."""

    code = "PAYMENT_ERROR"
    status_code = 400
    retryable = False
    security_event = False

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "retryable": self.retryable}


class InvalidSignatureError(PaymentError):
    code = "INVALID_SIGNATURE"
    security_event = True


class MalformedWebhookError(PaymentError):
    code = "MALFORMED_WEBHOOK"


class InvalidPackageError(PaymentError):
    code = "INVALID_PACKAGE"


class AmountMismatchError(PaymentError):
    code = "AMOUNT_MISMATCH"
    security_event = True


class OwnershipMismatchError(PaymentError):
    code = "OWNERSHIP_MISMATCH"
    status_code = 403
    security_event = True


class OrderNotFoundError(PaymentError):
    code = "ORDER_NOT_FOUND"
    status_code = 404


class PaymentNotCapturedError(PaymentError):
    code = "PAYMENT_NOT_CAPTURED"


class PaymentOrderMismatchError(PaymentError):
    code = "PAYMENT_ORDER_MISMATCH"
    security_event = True


class GatewayNotConfiguredError(PaymentError):
    code = "GATEWAY_NOT_CONFIGURED"
    status_code = 503


class GatewayUnavailableError(PaymentError):
    code = "GATEWAY_UNAVAILABLE"
    status_code = 502
    retryable = True


class GatewayRequestError(PaymentError):
    """Gateway answered with a client error (unknown id, bad request)."""

    code = "GATEWAY_REJECTED"

    def __init__(self, message: str, *, http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class TransactionConflictError(PaymentError):
    code = "TRANSACTION_CONFLICT"
    status_code = 503
    retryable = True


@dataclass(frozen=True)
class OrderIssue:
    gateway_order_id: str
    amount: int  # minor units, as the checkout widget expects
    currency: str
    package_id: str
    key_id: str
    reused: bool = False


@dataclass(frozen=True)
class CompletionRequest:
    gateway_order_id: str
    gateway_payment_id: str
    package_id: str
    claimed_user_id: str
    amount_paid: Decimal  # major units


@dataclass(frozen=True)
class CompletionResult:
    outcome: CompletionOutcome
    gateway_order_id: str
    tokens_added: int = 0
    balance_after: Optional[int] = None

    @property
    def credited(self) -> bool:
        return self.outcome == "completed"


@dataclass(frozen=True)
class WebhookAck:
    event: str
    processed: bool
    message: str
    outcome: Optional[CompletionOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": True,
            "event": self.event,
            "processed": self.processed,
            "message": self.message,
        }
        if self.outcome:
            payload["outcome"] = self.outcome
        return payload

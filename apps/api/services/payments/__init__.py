"""Public payment pipeline contracts."""

from services.payments.types import (
    AmountMismatchError,
    CompletionOutcome,
    CompletionRequest,
    CompletionResult,
    GatewayNotConfiguredError,
    GatewayRequestError,
    GatewayUnavailableError,
    InvalidPackageError,
    InvalidSignatureError,
    MalformedWebhookError,
    OrderIssue,
    OrderNotFoundError,
    OwnershipMismatchError,
    PaymentError,
    PaymentNotCapturedError,
    PaymentOrderMismatchError,
    TransactionConflictError,
    WebhookAck,
)

__all__ = [
    "AmountMismatchError",
    "CompletionOutcome",
    "CompletionRequest",
    "CompletionResult",
    "GatewayNotConfiguredError",
    "GatewayRequestError",
    "GatewayUnavailableError",
    "InvalidPackageError",
    "InvalidSignatureError",
    "MalformedWebhookError",
    "OrderIssue",
    "OrderNotFoundError",
    "OwnershipMismatchError",
    "PaymentError",
    "PaymentNotCapturedError",
    "PaymentOrderMismatchError",
    "TransactionConflictError",
    "WebhookAck",
]

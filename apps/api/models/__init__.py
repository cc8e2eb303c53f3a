"""Models package."""

from .user import User
from .payment_intent import PaymentIntent
from .token_ledger import TokenLedgerEntry

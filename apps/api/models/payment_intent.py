"""PaymentIntent model: local record of a gateway order in progress."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentIntent(Base):
    """Payment intent keyed by the gateway order id. Never deleted."""

    __tablename__ = "payment_intents"
    __table_args__ = (
        Index("ix_payment_intents_user_status_created", "user_id", "status", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    gateway_order_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)  # major currency units
    currency = Column(String, nullable=False, default="INR")
    token_grant = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    gateway_payment_id = Column(String, nullable=True, index=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="payment_intents")

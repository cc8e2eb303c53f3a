"""User model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Authenticated principal with a metered token balance."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_users_token_balance_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id = Column(String, unique=True, nullable=False, index=True)  # identity provider user id
    email = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    # Written only by services.ledger.
    token_balance = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    payment_intents = relationship("PaymentIntent", back_populates="user")
    ledger_entries = relationship("TokenLedgerEntry", back_populates="user")

"""TokenLedgerEntry model for metered token accounting."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class TokenLedgerEntry(Base):
    """Immutable token ledger entry."""

    __tablename__ = "token_ledger"
    __table_args__ = (
        # At most one purchase credit per gateway order.
        UniqueConstraint("feature_type", "reference_id", name="uq_token_ledger_feature_reference"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=True)
    description = Column(String, nullable=True)
    feature_type = Column(String, nullable=False, index=True)
    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        index=True,
    )

    user = relationship("User", back_populates="ledger_entries")

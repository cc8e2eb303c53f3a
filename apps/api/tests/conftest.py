import uuid
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.user import User
from routers import rate_limit
from services.ledger import FEATURE_SIGNUP_GRANT, credit_tokens
from services.payments.types import GatewayRequestError, GatewayUnavailableError


TEST_KEY_ID = "rzp_test_key_id"
TEST_KEY_SECRET = "rzp_test_key_secret"
TEST_WEBHOOK_SECRET = "rzp_test_webhook_secret"


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "billing.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest.fixture
def create_user(session_maker):
    """Factory inserting a principal whose starting balance is backed by a ledger entry."""

    async def _create(user_id: Optional[str] = None, *, tokens: int = 0, email: str = "user@example.com") -> str:
        user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
        async with session_maker() as session:
            session.add(User(id=user_id, external_id=f"ext-{user_id}", email=email, token_balance=0))
            await session.flush()
            if tokens:
                await credit_tokens(
                    user_id,
                    session,
                    amount=tokens,
                    description="Seed tokens",
                    feature_type=FEATURE_SIGNUP_GRANT,
                    reference_type="user",
                    reference_id=user_id,
                    commit=False,
                )
            await session.commit()
        return user_id

    return _create


class FakeGateway:
    """In-memory gateway with the RazorpayClient call surface."""

    def __init__(self, key_id: str = TEST_KEY_ID, key_secret: str = TEST_KEY_SECRET):
        self.key_id = key_id
        self.key_secret = key_secret
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.created: List[Dict[str, Any]] = []
        self.create_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None

    async def create_order(self, *, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        if self.create_error is not None:
            raise self.create_error
        order_id = f"order_fake_{len(self.orders) + 1}"
        order = {
            "id": order_id,
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": dict(notes),
            "status": "created",
        }
        self.orders[order_id] = order
        self.created.append(order)
        return dict(order)

    def add_order(self, order_id: str, *, amount: int, user_id: str, package_id: str, currency: str = "INR") -> None:
        self.orders[order_id] = {
            "id": order_id,
            "amount": amount,
            "currency": currency,
            "notes": {"userId": user_id, "packageId": package_id},
            "status": "attempted",
        }

    def add_payment(self, payment_id: str, *, order_id: str, amount: int, status: str = "captured") -> None:
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": order_id,
            "amount": amount,
            "currency": "INR",
            "status": status,
        }

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        if self.fetch_error is not None:
            raise self.fetch_error
        if order_id not in self.orders:
            raise GatewayRequestError("The id provided does not exist", http_status=400)
        return dict(self.orders[order_id])

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        if self.fetch_error is not None:
            raise self.fetch_error
        if payment_id not in self.payments:
            raise GatewayRequestError("The id provided does not exist", http_status=400)
        return dict(self.payments[payment_id])

    async def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        if self.fetch_error is not None:
            raise self.fetch_error
        return [dict(payment) for payment in self.payments.values() if payment["order_id"] == order_id]


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def gateway_down():
    return GatewayUnavailableError("Payment gateway timed out. Please retry.")

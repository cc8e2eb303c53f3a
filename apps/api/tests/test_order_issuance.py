from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from models.payment_intent import STATUS_COMPLETED, STATUS_PENDING, PaymentIntent
from services.payments.orders import create_order, list_payment_intents
from services.payments.types import GatewayUnavailableError, InvalidPackageError


async def _intents(session_maker, user_id):
    async with session_maker() as session:
        result = await session.execute(select(PaymentIntent).where(PaymentIntent.user_id == user_id))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_create_order_persists_pending_intent_with_gateway_notes(session_maker, create_user, fake_gateway):
    user_id = await create_user()
    async with session_maker() as session:
        issue = await create_order(user_id, "basic", session, fake_gateway)

    assert issue.amount == 49900
    assert issue.currency == "INR"
    assert issue.package_id == "basic"
    assert issue.key_id == fake_gateway.key_id
    assert issue.reused is False

    created = fake_gateway.created[0]
    assert created["notes"] == {"userId": user_id, "packageId": "basic", "tokens": "10000"}
    assert len(created["receipt"]) <= 40

    intents = await _intents(session_maker, user_id)
    assert len(intents) == 1
    assert intents[0].gateway_order_id == issue.gateway_order_id
    assert intents[0].status == STATUS_PENDING
    assert intents[0].price == Decimal("499")
    assert intents[0].token_grant == 10000


@pytest.mark.asyncio
async def test_create_order_reuses_recent_pending_intent_for_same_package(session_maker, create_user, fake_gateway):
    user_id = await create_user()
    async with session_maker() as session:
        first = await create_order(user_id, "standard", session, fake_gateway)
    async with session_maker() as session:
        second = await create_order(user_id, "standard", session, fake_gateway)
    async with session_maker() as session:
        other_package = await create_order(user_id, "premium", session, fake_gateway)

    assert second.reused is True
    assert second.gateway_order_id == first.gateway_order_id
    assert second.amount == 99900
    assert other_package.gateway_order_id != first.gateway_order_id
    assert len(fake_gateway.created) == 2


@pytest.mark.asyncio
async def test_create_order_ignores_stale_or_closed_intents(session_maker, create_user, fake_gateway):
    user_id = await create_user()
    async with session_maker() as session:
        session.add_all(
            [
                PaymentIntent(
                    gateway_order_id="order_stale",
                    user_id=user_id,
                    package_id="basic",
                    price=Decimal("499"),
                    currency="INR",
                    token_grant=10000,
                    status=STATUS_PENDING,
                    created_at=datetime.now(timezone.utc) - timedelta(minutes=31),
                ),
                PaymentIntent(
                    gateway_order_id="order_done",
                    user_id=user_id,
                    package_id="basic",
                    price=Decimal("499"),
                    currency="INR",
                    token_grant=10000,
                    status=STATUS_COMPLETED,
                ),
            ]
        )
        await session.commit()

    async with session_maker() as session:
        issue = await create_order(user_id, "basic", session, fake_gateway)

    assert issue.reused is False
    assert issue.gateway_order_id not in {"order_stale", "order_done"}
    assert len(fake_gateway.created) == 1


@pytest.mark.asyncio
async def test_create_order_rejects_unknown_package_before_calling_gateway(session_maker, create_user, fake_gateway):
    user_id = await create_user()
    async with session_maker() as session:
        with pytest.raises(InvalidPackageError):
            await create_order(user_id, "platinum", session, fake_gateway)
    assert fake_gateway.created == []


@pytest.mark.asyncio
async def test_gateway_failure_creates_no_intent(session_maker, create_user, fake_gateway, gateway_down):
    user_id = await create_user()
    fake_gateway.create_error = gateway_down
    async with session_maker() as session:
        with pytest.raises(GatewayUnavailableError) as exc_info:
            await create_order(user_id, "basic", session, fake_gateway)
    assert exc_info.value.retryable is True
    assert await _intents(session_maker, user_id) == []


@pytest.mark.asyncio
async def test_order_is_returned_even_when_intent_persistence_fails(
    session_maker, create_user, fake_gateway, monkeypatch
):
    user_id = await create_user()
    async with session_maker() as session:
        async def failing_commit():
            raise OperationalError("INSERT INTO payment_intents", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session, "commit", failing_commit)
        issue = await create_order(user_id, "premium", session, fake_gateway)

    assert issue.gateway_order_id == fake_gateway.created[0]["id"]
    assert issue.amount == 179900
    assert await _intents(session_maker, user_id) == []


@pytest.mark.asyncio
async def test_list_payment_intents_returns_newest_first(session_maker, create_user, fake_gateway):
    user_id = await create_user()
    async with session_maker() as session:
        await create_order(user_id, "basic", session, fake_gateway)
        await create_order(user_id, "premium", session, fake_gateway)
        items = await list_payment_intents(user_id, session)

    assert [item["package_id"] for item in items] == ["premium", "basic"]
    assert items[0]["price"] in {"1799", "1799.00"}
    assert items[0]["status"] == STATUS_PENDING

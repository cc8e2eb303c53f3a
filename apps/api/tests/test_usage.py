import pytest

from config import settings
from services.ledger import InsufficientBalanceError, get_token_balance, ledger_is_consistent, list_ledger_entries
from services.usage import calculate_token_usage, estimate_tokens, track_usage


def test_estimate_tokens_by_word_length():
    assert estimate_tokens("") == 0
    assert estimate_tokens("   ") == 0
    assert estimate_tokens(None) == 0
    assert estimate_tokens("hi") == 1
    # 5 chars -> ceil(5 / 3.5) = 2
    assert estimate_tokens("hello") == 2
    # 12 chars -> ceil(12 / 3) = 4
    assert estimate_tokens("optimization") == 4
    # 1 + 2 words plus ceil(1 * 0.1) for the single space
    assert estimate_tokens("hi hello") == 4


def test_calculate_token_usage_sums_input_and_output():
    usage = calculate_token_usage("Review my resume", "Your resume looks strong")
    assert usage.input_tokens == estimate_tokens("Review my resume")
    assert usage.output_tokens == estimate_tokens("Your resume looks strong")
    assert usage.total_tokens == usage.input_tokens + usage.output_tokens


@pytest.mark.asyncio
async def test_track_usage_debits_estimated_tokens(session_maker, create_user):
    user_id = await create_user(tokens=1000)
    async with session_maker() as session:
        result = await track_usage(
            user_id,
            session,
            input_text="Draft a cover letter for a data analyst role",
            output_text="Dear hiring manager, I am excited to apply",
            feature_type="cover_letter",
            description="Cover letter draft",
        )

        assert result["charged"] == result["total_tokens"]
        assert result["balance_after"] == 1000 - result["total_tokens"]
        entries = await list_ledger_entries(user_id, session, limit=1)
        assert entries[0]["feature_type"] == "cover_letter"
        assert "input +" in entries[0]["description"]
        assert await ledger_is_consistent(user_id, session)


@pytest.mark.asyncio
async def test_track_usage_falls_back_to_default_charge(session_maker, create_user, monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_USAGE_TOKENS", 100)
    user_id = await create_user(tokens=500)
    async with session_maker() as session:
        result = await track_usage(
            user_id,
            session,
            input_text="",
            output_text="something",
            feature_type="interview",
            description="Mock interview",
        )
        assert result["charged"] == 100
        assert result["total_tokens"] == 100
        assert await get_token_balance(user_id, session) == 400
        entries = await list_ledger_entries(user_id, session, limit=1)
        assert entries[0]["description"] == "Mock interview (default token count)"


@pytest.mark.asyncio
async def test_track_usage_refuses_when_balance_is_short(session_maker, create_user):
    user_id = await create_user(tokens=1)
    async with session_maker() as session:
        with pytest.raises(InsufficientBalanceError):
            await track_usage(
                user_id,
                session,
                input_text="A fairly long prompt that will exceed one token",
                output_text="And a fairly long answer as well",
                feature_type="chat",
                description="Career chat",
            )
        assert await get_token_balance(user_id, session) == 1

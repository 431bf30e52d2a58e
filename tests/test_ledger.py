"""Tests for the atomic credit ledger and credit summaries."""

import asyncio

import pytest

from moral_story_maker.backend.services import credits
from moral_story_maker.common.errors import LedgerUpdateError
from moral_story_maker.common.utils import month_key


async def test_concurrent_increments_are_not_lost(db):
    n = 25
    results = await asyncio.gather(
        *(credits.increment_credits(db, "user-1", 1, "2026-10") for _ in range(n))
    )
    assert await db.get_credits_used("user-1", "2026-10") == n
    assert sorted(results) == list(range(1, n + 1))


async def test_increment_creates_row_with_delta(db):
    assert await credits.increment_credits(db, "user-1", 5, "2026-01") == 5
    assert await credits.increment_credits(db, "user-1", 3, "2026-01") == 8
    assert await db.get_credits_used("user-1", "2026-02") == 0


async def test_months_are_separate_rows(db):
    await credits.increment_credits(db, "user-1", 2, "2026-01")
    await credits.increment_credits(db, "user-1", 4, "2026-02")
    assert await db.total_credits_used("user-1") == 6


async def test_negative_delta_grants_credits(db):
    await credits.increment_credits(db, "user-1", 10, "2026-03")
    assert await credits.increment_credits(db, "user-1", -4, "2026-03") == 6


@pytest.mark.parametrize("month", ["2026-13", "2026-1", "26-01", "2026/01", ""])
async def test_rejects_bad_month_keys(db, month):
    with pytest.raises(LedgerUpdateError):
        await credits.increment_credits(db, "user-1", 1, month or "bad")


@pytest.mark.parametrize("delta", [0, 1.5, True])
async def test_rejects_bad_deltas(db, delta):
    with pytest.raises(LedgerUpdateError):
        await credits.increment_credits(db, "user-1", delta, "2026-01")


async def test_default_month_is_current(db):
    await credits.increment_credits(db, "user-1", 1)
    assert await db.get_credits_used("user-1", month_key()) == 1


async def test_credit_cost_uses_configuration(db, seed_row):
    assert await credits.get_credit_cost(db, "audio") == 3
    seed_row(
        "INSERT INTO api_configurations (key_name, is_active, audio_credits_cost) VALUES (?, 1, ?)",
        ("AUDIO_STORY_CREDITS", 7),
    )
    assert await credits.get_credit_cost(db, "audio") == 7
    assert await credits.get_credit_cost(db, "video") == 5


async def test_credit_summary(db, user, seed_row):
    seed_row("INSERT INTO subscription_tiers (level, monthly_credits) VALUES ('free', 10)")
    await credits.increment_credits(db, user.user_id, 4)
    summary = await credits.credit_summary(db, user.user_id)
    assert summary.subscription_level == "free"
    assert summary.credits_used == 4
    assert summary.monthly_credits == 10
    assert summary.remaining == 6

from __future__ import annotations

import sqlite3
from typing import Any, Optional

from moral_story_maker.common.errors import LedgerUpdateError, StorageError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import (
    CREDIT_COST_CONFIG,
    DEFAULT_CREDIT_COSTS,
    CreditSummary,
)
from moral_story_maker.common.utils import MONTH_KEY_RE, month_key

log = get_logger(__name__)


async def increment_credits(
    db: Any, user_id: str, delta: int, month_year: Optional[str] = None
) -> int:
    """Atomically add ``delta`` to the (user, month) row, creating it if absent.

    Returns the new cumulative value. Negative deltas grant credits back.
    """
    month_year = month_year or month_key()
    if not user_id:
        raise LedgerUpdateError("Ledger update needs a user id.")
    if not MONTH_KEY_RE.match(month_year):
        raise LedgerUpdateError(f"Invalid month key '{month_year}', expected YYYY-MM.")
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise LedgerUpdateError(f"Credit delta must be a non-zero integer, got {delta!r}.")
    try:
        total = await db.increment_credits(user_id, month_year, delta)
    except (StorageError, sqlite3.Error, OSError, ValueError) as e:
        log.error("Ledger update failed for {} {}: {}", user_id, month_year, e)
        raise LedgerUpdateError(f"Error incrementing credit count: {e}") from e
    log.info("Ledger {} {} {:+d} -> {}", user_id, month_year, delta, total)
    return total


async def get_credit_cost(db: Any, action: str) -> int:
    default = DEFAULT_CREDIT_COSTS[action]
    if action not in CREDIT_COST_CONFIG:
        return default
    key_name, column = CREDIT_COST_CONFIG[action]
    config = await db.get_api_config(key_name)
    value = (config or {}).get(column)
    try:
        cost = int(value)
    except (TypeError, ValueError):
        return default
    return cost if cost > 0 else default


async def credit_summary(db: Any, user_id: str) -> CreditSummary:
    month_year = month_key()
    used = await db.get_credits_used(user_id, month_year)
    total = await db.total_credits_used(user_id)
    profile = await db.get_profile(user_id) or {}
    level = profile.get("subscription_level") or "free"
    tier = await db.get_tier(level)
    monthly = tier.get("monthly_credits") if tier else None
    return CreditSummary(
        month_year=month_year,
        credits_used=used,
        monthly_credits=int(monthly) if monthly is not None else None,
        subscription_level=level,
        total_credits_used=total,
    )

"""Prop-firm drawdown limits.

Two policies:
- static: limits are fixed percentages below the starting balance and
  never move. Computed at display time, nothing is persisted.
- trailing: limits are fixed percentages below the peak balance, the
  highest current balance the account has ever reached. The peak only
  rises. Peak and both limits are persisted on the account row.

Limits are informational. Nothing here detects breaches or blocks trades.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from tradelog.shell import queries
from tradelog.shell.contract import Account, DrawdownLimits, PropRules, Trade
from tradelog.shell.database import Database

log = structlog.get_logger()


def limits_below(reference_balance: float, rules: PropRules) -> DrawdownLimits:
    return DrawdownLimits(
        reference_balance=reference_balance,
        daily_limit=reference_balance * (1 - (rules.daily_drawdown_pct or 0.0) / 100),
        max_limit=reference_balance * (1 - (rules.max_drawdown_pct or 0.0) / 100),
    )


def next_peak(stored_peak: float | None, starting_balance: float, current_balance: float) -> float:
    """Peak starts at the starting balance, not zero, and never decreases."""
    peak = stored_peak if stored_peak else starting_balance
    return max(peak, current_balance)


async def update_trailing_drawdown(
    db: Database, account_id: str, user_id: str, current_balance: float
) -> None:
    """Raise the stored peak if ``current_balance`` is a new high and rewrite both limits."""
    account = await queries.get_account(db, account_id, user_id)
    if not account.is_trailing:
        log.warning("drawdown.not_trailing", account_id=account_id,
                    drawdown_type=account.drawdown_type.value if account.drawdown_type else None)
        return

    peak = next_peak(account.peak_balance, account.starting_balance, current_balance)
    limits = limits_below(peak, account.rules)

    await queries.write_drawdown_state(
        db, account_id, user_id, peak, limits.daily_limit, limits.max_limit
    )

    if account.peak_balance is None or peak > account.peak_balance:
        log.info("drawdown.peak_raised", account_id=account_id,
                 previous=account.peak_balance, peak=round(peak, 2))
    log.debug("drawdown.limits_updated", account_id=account_id,
              daily_limit=round(limits.daily_limit, 2), max_limit=round(limits.max_limit, 2))


def drawdown_limits(account: Account) -> DrawdownLimits | None:
    """Limits to draw on the equity chart. None for non-prop accounts."""
    if account.rules is None:
        return None
    if account.is_trailing:
        return limits_below(account.peak_balance or account.starting_balance, account.rules)
    return limits_below(account.starting_balance, account.rules)


def drawdown_series(starting_balance: float, trades: Iterable[Trade]) -> list[float]:
    """Percent below the running peak after each completed trade, oldest first.

    Values are <= 0 and rounded to 2 decimals. Open trades are skipped.
    """
    completed = sorted(
        (t for t in trades if t.is_completed), key=lambda t: t.created_at or ""
    )
    balance = peak = starting_balance
    series = []
    for trade in completed:
        balance += trade.pnl
        peak = max(peak, balance)
        series.append(round((balance - peak) / peak * 100, 2) if peak else 0.0)
    return series

"""Account summary derived from the raw trade ledger.

Stats are always recomputed from the full trade set; nothing is
maintained incrementally.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from tradelog.ledger.drawdown import update_trailing_drawdown
from tradelog.shell import queries
from tradelog.shell.contract import AccountStats
from tradelog.shell.database import Database

log = structlog.get_logger()


def summarize(
    starting_balance: float,
    manual_adjustments: float | None,
    pnls: Iterable[float | None],
) -> AccountStats:
    """Derive balance, P&L, trade count and win rate from stored values.

    ``pnls`` holds one entry per trade, None for trades not yet realized.
    Open trades count toward ``total_trades`` but contribute nothing to
    P&L. Win rate is wins over all completed trades, breakevens included,
    rounded half-up to a whole percent.
    """
    pnls = list(pnls)
    completed = [p for p in pnls if p is not None]
    wins = sum(1 for p in completed if p > 0)

    total_pnl = float(sum(completed))
    current_balance = starting_balance + (manual_adjustments or 0.0) + total_pnl
    win_rate = _round_half_up(100 * wins / len(completed)) if completed else 0

    return AccountStats(
        current_balance=current_balance,
        total_pnl=total_pnl,
        total_trades=len(pnls),
        win_rate=win_rate,
    )


def _round_half_up(value: float) -> int:
    # round() rounds half to even
    return int(value + 0.5)


async def compute_stats(db: Database, account_id: str, user_id: str) -> AccountStats:
    """Compute the summary for one account. Raises NotFoundError if it doesn't exist."""
    account = await queries.get_account(db, account_id, user_id)
    pnls = await queries.get_trade_pnls(db, account_id, user_id)
    return summarize(account.starting_balance, account.manual_adjustments, pnls)


async def update_stats(db: Database, account_id: str, user_id: str) -> AccountStats:
    """Recompute and persist an account's summary, then its trailing drawdown state.

    The two writes are separate commits. If the drawdown write fails the
    stats write stands; the next recompute repairs the drawdown fields.
    """
    account = await queries.get_account(db, account_id, user_id)
    pnls = await queries.get_trade_pnls(db, account_id, user_id)
    stats = summarize(account.starting_balance, account.manual_adjustments, pnls)

    await queries.write_account_stats(db, account_id, user_id, stats)
    log.info(
        "ledger.stats_updated",
        account_id=account_id,
        balance=round(stats.current_balance, 2),
        total_pnl=round(stats.total_pnl, 2),
        trades=stats.total_trades,
        win_rate=stats.win_rate,
    )

    if account.is_trailing:
        await update_trailing_drawdown(db, account_id, user_id, stats.current_balance)

    return stats

"""Tests for the ledger aggregator.

Pure summary math, full recomputes against SQLite, persistence of the
summary fields, tenant scoping and error propagation.
"""

from __future__ import annotations

import os
import random
import tempfile
from unittest.mock import AsyncMock, patch

import pytest

from tradelog.ledger.aggregator import compute_stats, summarize, update_stats
from tradelog.shell import queries
from tradelog.shell.contract import Account, AccountType, Side, Trade
from tradelog.shell.database import Database
from tradelog.shell.errors import NotFoundError, StorageError

USER = "user-1"


# --- Helpers ---

async def _make_db():
    f = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_path = f.name
    f.close()
    db = Database(db_path)
    await db.connect()
    return db, db_path


async def _make_account(db, starting_balance=10000.0, user_id=USER, **kwargs) -> Account:
    account = Account(
        user_id=user_id, name="Main", type=AccountType.LIVE, currency="USD",
        starting_balance=starting_balance, **kwargs,
    )
    await queries.insert_account(db, account)
    return account


def _trade(account_id, pnl, n=0, user_id=USER) -> Trade:
    return Trade(
        user_id=user_id, account_id=account_id, symbol="eurusd", side=Side.LONG,
        entry_price=1.1, size=1.0, pnl=pnl, created_at=f"2024-01-01 10:00:{n:02d}",
    )


# --- summarize ---

def test_summarize_mixed_trades():
    """Open trades count toward total_trades but not P&L or win rate."""
    stats = summarize(10000.0, 0.0, [500.0, -200.0, None])
    assert stats.total_trades == 3
    assert stats.total_pnl == 300.0
    assert stats.current_balance == 10300.0
    assert stats.win_rate == 50


def test_summarize_no_trades():
    stats = summarize(5000.0, 250.0, [])
    assert stats.total_trades == 0
    assert stats.total_pnl == 0.0
    assert stats.current_balance == 5250.0
    assert stats.win_rate == 0


def test_summarize_only_open_trades():
    stats = summarize(5000.0, 0.0, [None, None])
    assert stats.total_trades == 2
    assert stats.win_rate == 0
    assert stats.current_balance == 5000.0


def test_summarize_breakeven_counts_as_completed():
    """A zero-P&L trade is in the denominator but is not a win."""
    stats = summarize(1000.0, 0.0, [100.0, 0.0])
    assert stats.win_rate == 50

    stats = summarize(1000.0, 0.0, [100.0, 0.0, -50.0])
    assert stats.win_rate == 33


def test_summarize_rounds_half_up():
    # 1 win out of 8 = 12.5%
    stats = summarize(1000.0, 0.0, [10.0] + [-1.0] * 7)
    assert stats.win_rate == 13


def test_summarize_null_adjustments_treated_as_zero():
    stats = summarize(1000.0, None, [25.0])
    assert stats.current_balance == 1025.0


def test_summarize_win_rate_bounds():
    rng = random.Random(7)
    for _ in range(200):
        pnls = [rng.choice([None, 0.0, rng.uniform(-500, 500)]) for _ in range(rng.randint(0, 30))]
        stats = summarize(1000.0, 0.0, pnls)
        assert 0 <= stats.win_rate <= 100
        if all(p is None for p in pnls):
            assert stats.win_rate == 0


# --- compute_stats ---

@pytest.mark.asyncio
async def test_compute_stats_from_db():
    db, db_path = await _make_db()
    try:
        account = await _make_account(db)
        for i, pnl in enumerate([500.0, -200.0, None]):
            await queries.insert_trade(db, _trade(account.id, pnl, i))

        stats = await compute_stats(db, account.id, USER)
        assert stats.total_trades == 3
        assert stats.total_pnl == pytest.approx(300.0)
        assert stats.current_balance == pytest.approx(10300.0)
        assert stats.win_rate == 50

        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_compute_stats_idempotent():
    """Two recomputes with no trade changes in between give identical output."""
    db, db_path = await _make_db()
    try:
        account = await _make_account(db)
        for i, pnl in enumerate([120.5, -40.25, 0.0, None, 77.0]):
            await queries.insert_trade(db, _trade(account.id, pnl, i))

        first = await compute_stats(db, account.id, USER)
        second = await compute_stats(db, account.id, USER)
        assert first == second

        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_compute_stats_independent_of_insertion_order():
    db, db_path = await _make_db()
    try:
        rng = random.Random(3)
        pnls = [round(rng.uniform(-300, 300), 2) for _ in range(25)]
        a = await _make_account(db)
        b = await _make_account(db)
        for i, pnl in enumerate(pnls):
            await queries.insert_trade(db, _trade(a.id, pnl, i))
        for i, pnl in enumerate(reversed(pnls)):
            await queries.insert_trade(db, _trade(b.id, pnl, i))

        stats_a = await compute_stats(db, a.id, USER)
        stats_b = await compute_stats(db, b.id, USER)
        assert stats_a.total_trades == stats_b.total_trades == len(pnls)
        assert stats_a.total_pnl == pytest.approx(sum(pnls))
        assert stats_b.total_pnl == pytest.approx(sum(pnls))
        assert stats_a.win_rate == stats_b.win_rate

        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_compute_stats_unknown_account():
    db, db_path = await _make_db()
    try:
        with pytest.raises(NotFoundError):
            await compute_stats(db, "missing", USER)
        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_compute_stats_scoped_to_user():
    """Another user's account id is treated as missing, their trades are never counted."""
    db, db_path = await _make_db()
    try:
        account = await _make_account(db)
        await queries.insert_trade(db, _trade(account.id, 100.0))
        # A stray trade under another user pointing at the same account
        await queries.insert_trade(db, _trade(account.id, 9999.0, 1, user_id="intruder"))

        with pytest.raises(NotFoundError):
            await compute_stats(db, account.id, "intruder")

        stats = await compute_stats(db, account.id, USER)
        assert stats.total_trades == 1
        assert stats.total_pnl == pytest.approx(100.0)

        await db.close()
    finally:
        os.unlink(db_path)


# --- update_stats ---

@pytest.mark.asyncio
async def test_update_stats_persists_summary():
    db, db_path = await _make_db()
    try:
        account = await _make_account(db)
        for i, pnl in enumerate([500.0, -200.0, None]):
            await queries.insert_trade(db, _trade(account.id, pnl, i))

        await update_stats(db, account.id, USER)

        row = await db.fetchone("SELECT * FROM accounts WHERE id = ?", (account.id,))
        assert row["current_balance"] == pytest.approx(10300.0)
        assert row["total_pnl"] == pytest.approx(300.0)
        assert row["total_trades"] == 3
        assert row["win_rate"] == 50
        # Non-trailing accounts get no drawdown state
        assert row["peak_balance"] is None

        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_deposit_raises_balance_only():
    """A 1000 deposit moves the balance by exactly 1000 and nothing else."""
    db, db_path = await _make_db()
    try:
        account = await _make_account(db)
        for i, pnl in enumerate([250.0, -100.0]):
            await queries.insert_trade(db, _trade(account.id, pnl, i))
        before = await update_stats(db, account.id, USER)

        await queries.adjust_balance(db, account.id, USER, 1000.0)
        after = await update_stats(db, account.id, USER)

        stored = await queries.get_account(db, account.id, USER)
        assert stored.manual_adjustments == pytest.approx(1000.0)
        assert after.current_balance - before.current_balance == pytest.approx(1000.0)
        assert after.total_pnl == before.total_pnl
        assert after.win_rate == before.win_rate

        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_balance_identity_after_trade_changes():
    """current_balance == starting + adjustments + realized P&L after every mutation."""
    db, db_path = await _make_db()
    try:
        account = await _make_account(db, starting_balance=2500.0)
        await queries.adjust_balance(db, account.id, USER, -300.0)

        async def check():
            await update_stats(db, account.id, USER)
            stored = await queries.get_account(db, account.id, USER)
            trades = await queries.get_trades_for_account(db, account.id, USER)
            realized = sum(t.pnl for t in trades if t.pnl is not None)
            assert stored.current_balance == pytest.approx(
                stored.starting_balance + stored.manual_adjustments + realized
            )

        t1 = _trade(account.id, 150.0, 1)
        t2 = _trade(account.id, None, 2)
        await queries.insert_trade(db, t1)
        await queries.insert_trade(db, t2)
        await check()

        t2.pnl = -75.0
        t2.exit_price = 1.09
        await queries.update_trade(db, t2)
        await check()

        await queries.delete_trade(db, t1.id, USER)
        await check()

        await db.close()
    finally:
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_update_stats_no_write_when_read_fails():
    """A failing trade read surfaces as StorageError and leaves the account row untouched."""
    db, db_path = await _make_db()
    try:
        account = await _make_account(db)
        await queries.insert_trade(db, _trade(account.id, 400.0))

        with patch(
            "tradelog.ledger.aggregator.queries.get_trade_pnls",
            AsyncMock(side_effect=StorageError("connection lost")),
        ):
            with pytest.raises(StorageError):
                await update_stats(db, account.id, USER)

        row = await db.fetchone("SELECT current_balance, total_trades FROM accounts WHERE id = ?",
                                (account.id,))
        assert row["current_balance"] == pytest.approx(10000.0)
        assert row["total_trades"] == 0

        await db.close()
    finally:
        os.unlink(db_path)

"""SQL query functions for accounts, trades and playbooks.

Every statement is scoped by ``user_id``; a row belonging to another user
is indistinguishable from a missing row.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from tradelog.shell.contract import (
    Account,
    AccountStats,
    AccountType,
    ChallengeRules,
    DrawdownType,
    Playbook,
    PropRules,
    Side,
    Trade,
)
from tradelog.shell.database import Database
from tradelog.shell.errors import NotFoundError


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


# -- Accounts --

def _rules_from_row(account_type: AccountType, row: dict) -> PropRules | None:
    if not account_type.is_prop:
        return None
    common = dict(
        daily_drawdown_pct=row["daily_drawdown"] or 0.0,
        max_drawdown_pct=row["max_drawdown"] or 0.0,
        drawdown_type=DrawdownType(row["drawdown_type"] or DrawdownType.STATIC.value),
    )
    if account_type is AccountType.PROP_CHALLENGE:
        return ChallengeRules(**common, profit_target=row["profit_target"], phase=row["phase"] or 1)
    return PropRules(**common)


def _rule_columns(account: Account) -> tuple:
    """(daily_drawdown, max_drawdown, drawdown_type, profit_target, phase)"""
    rules = account.rules
    if rules is None:
        return (None, None, None, None, None)
    if isinstance(rules, ChallengeRules):
        return (rules.daily_drawdown_pct, rules.max_drawdown_pct, rules.drawdown_type.value,
                rules.profit_target, rules.phase)
    return (rules.daily_drawdown_pct, rules.max_drawdown_pct, rules.drawdown_type.value, None, None)


def account_from_row(row: dict) -> Account:
    account_type = AccountType(row["type"])
    return Account(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=account_type,
        broker=row["broker"] or "",
        currency=row["currency"],
        starting_balance=row["starting_balance"],
        rules=_rules_from_row(account_type, row),
        manual_adjustments=row["manual_adjustments"] or 0.0,
        current_balance=row["current_balance"],
        total_pnl=row["total_pnl"] or 0.0,
        total_trades=row["total_trades"] or 0,
        win_rate=row["win_rate"] or 0,
        peak_balance=row["peak_balance"],
        daily_drawdown_limit=row["daily_drawdown_limit"],
        max_drawdown_limit=row["max_drawdown_limit"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def insert_account(db: Database, account: Account) -> str:
    account.id = account.id or _new_id()
    now = _now()
    account.created_at = account.created_at or now
    account.updated_at = now
    await db.write(
        """INSERT INTO accounts
           (id, user_id, name, type, broker, currency, starting_balance, manual_adjustments,
            current_balance, daily_drawdown, max_drawdown, drawdown_type, profit_target, phase,
            is_active, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (account.id, account.user_id, account.name, account.type.value, account.broker,
         account.currency, account.starting_balance, account.manual_adjustments,
         account.current_balance, *_rule_columns(account),
         int(account.is_active), account.created_at, account.updated_at),
    )
    return account.id


async def get_account(db: Database, account_id: str, user_id: str) -> Account:
    row = await db.fetchone(
        "SELECT * FROM accounts WHERE id = ? AND user_id = ?", (account_id, user_id)
    )
    if row is None:
        raise NotFoundError("account", account_id)
    return account_from_row(row)


async def list_accounts(db: Database, user_id: str) -> list[Account]:
    rows = await db.fetchall(
        "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at DESC, rowid DESC", (user_id,)
    )
    return [account_from_row(r) for r in rows]


async def count_accounts(db: Database, user_id: str) -> int:
    row = await db.fetchone("SELECT COUNT(*) AS n FROM accounts WHERE user_id = ?", (user_id,))
    return row["n"]


async def update_account_settings(db: Database, account: Account) -> None:
    """Rewrite the user-editable columns. Starting balance is fixed at creation."""
    updated = await db.write(
        """UPDATE accounts SET name = ?, type = ?, broker = ?, currency = ?,
             daily_drawdown = ?, max_drawdown = ?, drawdown_type = ?, profit_target = ?, phase = ?,
             updated_at = datetime('now')
           WHERE id = ? AND user_id = ?""",
        (account.name, account.type.value, account.broker, account.currency,
         *_rule_columns(account), account.id, account.user_id),
    )
    if updated == 0:
        raise NotFoundError("account", account.id or "")


async def delete_account(db: Database, account_id: str, user_id: str) -> None:
    """Delete an account; its trades go with it (ON DELETE CASCADE)."""
    deleted = await db.write(
        "DELETE FROM accounts WHERE id = ? AND user_id = ?", (account_id, user_id)
    )
    if deleted == 0:
        raise NotFoundError("account", account_id)


async def set_active_account(db: Database, account_id: str, user_id: str) -> None:
    """Mark exactly one of the user's accounts active in a single statement."""
    async with db.transaction():
        row = await db.fetchone(
            "SELECT id FROM accounts WHERE id = ? AND user_id = ?", (account_id, user_id)
        )
        if row is None:
            raise NotFoundError("account", account_id)
        await db.execute(
            """UPDATE accounts SET is_active = CASE WHEN id = ? THEN 1 ELSE 0 END
               WHERE user_id = ?""",
            (account_id, user_id),
        )


async def adjust_balance(db: Database, account_id: str, user_id: str, delta: float) -> None:
    """Add a signed deposit (+) or withdrawal (-) to manual_adjustments."""
    updated = await db.write(
        """UPDATE accounts SET manual_adjustments = COALESCE(manual_adjustments, 0) + ?,
             updated_at = datetime('now')
           WHERE id = ? AND user_id = ?""",
        (delta, account_id, user_id),
    )
    if updated == 0:
        raise NotFoundError("account", account_id)


async def write_account_stats(
    db: Database, account_id: str, user_id: str, stats: AccountStats
) -> None:
    updated = await db.write(
        """UPDATE accounts SET current_balance = ?, total_pnl = ?, total_trades = ?, win_rate = ?,
             updated_at = datetime('now')
           WHERE id = ? AND user_id = ?""",
        (stats.current_balance, stats.total_pnl, stats.total_trades, stats.win_rate,
         account_id, user_id),
    )
    if updated == 0:
        raise NotFoundError("account", account_id)


async def write_drawdown_state(
    db: Database, account_id: str, user_id: str,
    peak_balance: float, daily_limit: float, max_limit: float,
) -> None:
    updated = await db.write(
        """UPDATE accounts SET peak_balance = ?, daily_drawdown_limit = ?, max_drawdown_limit = ?,
             updated_at = datetime('now')
           WHERE id = ? AND user_id = ?""",
        (peak_balance, daily_limit, max_limit, account_id, user_id),
    )
    if updated == 0:
        raise NotFoundError("account", account_id)


# -- Trades --

_TRADE_COLUMNS = (
    "id", "user_id", "account_id", "symbol", "side", "entry_price", "exit_price",
    "stop_loss", "take_profit", "size", "pnl", "commission", "initial_r2r", "actual_r2r",
    "playbook_id", "exit_type", "mistake", "notes", "created_at",
)


def trade_from_row(row: dict) -> Trade:
    data = {k: row[k] for k in _TRADE_COLUMNS}
    data["side"] = Side(data["side"])
    data["commission"] = data["commission"] or 0.0
    return Trade(**data)


def _trade_params(trade: Trade) -> tuple:
    return (
        trade.id, trade.user_id, trade.account_id, trade.symbol, trade.side.value,
        trade.entry_price, trade.exit_price, trade.stop_loss, trade.take_profit, trade.size,
        trade.pnl, trade.commission, trade.initial_r2r, trade.actual_r2r,
        trade.playbook_id, trade.exit_type, trade.mistake, trade.notes, trade.created_at,
    )


_INSERT_TRADE = (
    f"INSERT INTO trades ({', '.join(_TRADE_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _TRADE_COLUMNS)})"
)


def _prepare(trade: Trade) -> Trade:
    trade.id = trade.id or _new_id()
    trade.created_at = trade.created_at or _now()
    return trade


async def insert_trade(db: Database, trade: Trade) -> str:
    await db.write(_INSERT_TRADE, _trade_params(_prepare(trade)))
    return trade.id


async def insert_trades(db: Database, trades: list[Trade]) -> list[str]:
    """Insert a batch of trades in one transaction (all or nothing)."""
    params = [_trade_params(_prepare(t)) for t in trades]
    async with db.transaction():
        await db.executemany(_INSERT_TRADE, params)
    return [t.id for t in trades]


async def get_trade(db: Database, trade_id: str, user_id: str) -> Trade:
    row = await db.fetchone(
        "SELECT * FROM trades WHERE id = ? AND user_id = ?", (trade_id, user_id)
    )
    if row is None:
        raise NotFoundError("trade", trade_id)
    return trade_from_row(row)


async def update_trade(db: Database, trade: Trade) -> None:
    """Rewrite every editable column of a logged trade."""
    updated = await db.write(
        """UPDATE trades SET account_id = ?, symbol = ?, side = ?, entry_price = ?, exit_price = ?,
             stop_loss = ?, take_profit = ?, size = ?, pnl = ?, commission = ?,
             initial_r2r = ?, actual_r2r = ?, playbook_id = ?, exit_type = ?, mistake = ?,
             notes = ?, created_at = COALESCE(?, created_at)
           WHERE id = ? AND user_id = ?""",
        (trade.account_id, trade.symbol, trade.side.value, trade.entry_price, trade.exit_price,
         trade.stop_loss, trade.take_profit, trade.size, trade.pnl, trade.commission,
         trade.initial_r2r, trade.actual_r2r, trade.playbook_id, trade.exit_type,
         trade.mistake, trade.notes, trade.created_at, trade.id, trade.user_id),
    )
    if updated == 0:
        raise NotFoundError("trade", trade.id or "")


async def delete_trade(db: Database, trade_id: str, user_id: str) -> None:
    deleted = await db.write(
        "DELETE FROM trades WHERE id = ? AND user_id = ?", (trade_id, user_id)
    )
    if deleted == 0:
        raise NotFoundError("trade", trade_id)


async def get_trades_for_account(db: Database, account_id: str, user_id: str) -> list[Trade]:
    rows = await db.fetchall(
        """SELECT * FROM trades WHERE account_id = ? AND user_id = ?
           ORDER BY created_at, rowid""",
        (account_id, user_id),
    )
    return [trade_from_row(r) for r in rows]


async def get_trade_pnls(db: Database, account_id: str, user_id: str) -> list[float | None]:
    """P&L of every trade on the account, NULL for trades not yet realized."""
    rows = await db.fetchall(
        "SELECT pnl FROM trades WHERE account_id = ? AND user_id = ?", (account_id, user_id)
    )
    return [r["pnl"] for r in rows]


# -- Playbooks --

async def insert_playbook(db: Database, playbook: Playbook) -> str:
    playbook.id = playbook.id or _new_id()
    playbook.created_at = playbook.created_at or _now()
    await db.write(
        """INSERT INTO playbooks (id, user_id, name, description, entry_rules, exit_rules,
             risk_rules, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (playbook.id, playbook.user_id, playbook.name, playbook.description,
         playbook.entry_rules, playbook.exit_rules, playbook.risk_rules, playbook.created_at),
    )
    return playbook.id


async def list_playbooks(db: Database, user_id: str) -> list[Playbook]:
    rows = await db.fetchall(
        "SELECT * FROM playbooks WHERE user_id = ? ORDER BY name", (user_id,)
    )
    return [Playbook(**r) for r in rows]

"""Account and trade mutations for one storage backend.

Every change to an account's trade set or to its deposits/withdrawals
ends with a full ledger recompute so the persisted summary always
matches the trade table. Input checks live here, not in the ledger.
"""

from __future__ import annotations

import math

import structlog

from tradelog.fx.pips import calculate_pip_value
from tradelog.fx.rates import RateProvider
from tradelog.ledger.aggregator import compute_stats, update_stats
from tradelog.ledger.drawdown import drawdown_limits, drawdown_series
from tradelog.shell import queries
from tradelog.shell.contract import (
    Account,
    AccountStats,
    DrawdownReport,
    PipCalculation,
    Playbook,
    Side,
    Trade,
)
from tradelog.shell.database import Database
from tradelog.shell.errors import ValidationError

log = structlog.get_logger()


def _check_amount(amount: float) -> None:
    if amount is None or not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f"Amount must be a positive number, got {amount}")


def _check_trade(trade: Trade) -> None:
    missing = [
        name for name, value in (
            ("symbol", trade.symbol),
            ("side", trade.side),
            ("entry_price", trade.entry_price),
            ("size", trade.size),
        )
        if value is None or value == ""
    ]
    if missing:
        raise ValidationError(f"Missing required trade fields: {', '.join(missing)}")
    if not isinstance(trade.side, Side):
        raise ValidationError(f"Side must be Long or Short, got {trade.side!r}")
    if trade.size <= 0:
        raise ValidationError(f"Size must be positive, got {trade.size}")


class Journal:
    """Caller-facing operations over accounts, trades and playbooks."""

    def __init__(self, db: Database, rates: RateProvider | None = None) -> None:
        self._db = db
        self._rates = rates

    # --- Accounts ---

    async def create_account(self, account: Account) -> Account:
        """Store a new account. The user's first account becomes the active one."""
        if not account.name.strip():
            raise ValidationError("Account name is required")
        if account.starting_balance is None or account.starting_balance < 0:
            raise ValidationError(f"Starting balance must be >= 0, got {account.starting_balance}")

        account.manual_adjustments = 0.0
        account.current_balance = account.starting_balance
        account.is_active = await queries.count_accounts(self._db, account.user_id) == 0
        await queries.insert_account(self._db, account)
        log.info("journal.account_created", account_id=account.id, type=account.type.value,
                 currency=account.currency, active=account.is_active)
        return account

    async def update_account(self, account: Account) -> AccountStats:
        """Save edited settings. Switching drawdown policy takes effect on the recompute."""
        await queries.update_account_settings(self._db, account)
        log.info("journal.account_updated", account_id=account.id)
        return await update_stats(self._db, account.id, account.user_id)

    async def delete_account(self, account_id: str, user_id: str) -> None:
        await queries.delete_account(self._db, account_id, user_id)
        log.info("journal.account_deleted", account_id=account_id)

    async def select_account(self, account_id: str, user_id: str) -> None:
        await queries.set_active_account(self._db, account_id, user_id)
        log.info("journal.account_selected", account_id=account_id)

    async def accounts(self, user_id: str) -> list[Account]:
        return await queries.list_accounts(self._db, user_id)

    async def active_account(self, user_id: str) -> Account | None:
        """The active account, else the most recently created one, else None."""
        accounts = await queries.list_accounts(self._db, user_id)
        for account in accounts:
            if account.is_active:
                return account
        return accounts[0] if accounts else None

    # --- Deposits / withdrawals ---

    async def deposit(self, account_id: str, user_id: str, amount: float) -> AccountStats:
        _check_amount(amount)
        await queries.adjust_balance(self._db, account_id, user_id, amount)
        log.info("journal.deposit", account_id=account_id, amount=round(amount, 2))
        return await update_stats(self._db, account_id, user_id)

    async def withdraw(self, account_id: str, user_id: str, amount: float) -> AccountStats:
        _check_amount(amount)
        stats = await compute_stats(self._db, account_id, user_id)
        if amount > stats.current_balance:
            raise ValidationError(
                f"Insufficient balance for withdrawal: {amount:.2f} > {stats.current_balance:.2f}"
            )
        await queries.adjust_balance(self._db, account_id, user_id, -amount)
        log.info("journal.withdrawal", account_id=account_id, amount=round(amount, 2))
        return await update_stats(self._db, account_id, user_id)

    # --- Trades ---

    async def add_trade(self, trade: Trade) -> AccountStats:
        _check_trade(trade)
        await queries.get_account(self._db, trade.account_id, trade.user_id)
        await queries.insert_trade(self._db, trade)
        log.info("journal.trade_added", trade_id=trade.id, account_id=trade.account_id,
                 symbol=trade.symbol, pnl=trade.pnl)
        return await update_stats(self._db, trade.account_id, trade.user_id)

    async def import_trades(
        self, account_id: str, user_id: str, trades: list[Trade]
    ) -> AccountStats:
        """Bulk-insert parsed trades into one account, then recompute once."""
        for trade in trades:
            trade.account_id = account_id
            trade.user_id = user_id
            _check_trade(trade)
        await queries.get_account(self._db, account_id, user_id)
        if trades:
            await queries.insert_trades(self._db, trades)
        log.info("journal.trades_imported", account_id=account_id, count=len(trades))
        return await update_stats(self._db, account_id, user_id)

    async def edit_trade(self, trade: Trade) -> AccountStats:
        """Overwrite a logged trade and recompute the account(s) it touches."""
        _check_trade(trade)
        existing = await queries.get_trade(self._db, trade.id, trade.user_id)
        moved = trade.account_id != existing.account_id
        if moved:
            await queries.get_account(self._db, trade.account_id, trade.user_id)
        await queries.update_trade(self._db, trade)
        if moved:
            await update_stats(self._db, existing.account_id, trade.user_id)
        log.info("journal.trade_edited", trade_id=trade.id, account_id=trade.account_id)
        return await update_stats(self._db, trade.account_id, trade.user_id)

    async def delete_trade(self, trade_id: str, user_id: str) -> AccountStats:
        trade = await queries.get_trade(self._db, trade_id, user_id)
        await queries.delete_trade(self._db, trade_id, user_id)
        log.info("journal.trade_deleted", trade_id=trade_id, account_id=trade.account_id)
        return await update_stats(self._db, trade.account_id, user_id)

    async def trades(self, account_id: str, user_id: str) -> list[Trade]:
        return await queries.get_trades_for_account(self._db, account_id, user_id)

    async def open_trades(self, account_id: str, user_id: str) -> list[Trade]:
        """Positions with no exit price recorded yet."""
        trades = await queries.get_trades_for_account(self._db, account_id, user_id)
        return [t for t in trades if t.is_open]

    async def drawdown(self, account_id: str, user_id: str) -> DrawdownReport:
        """Limit lines and drawdown curve for the account's equity chart."""
        account = await queries.get_account(self._db, account_id, user_id)
        trades = await queries.get_trades_for_account(self._db, account_id, user_id)
        return DrawdownReport(
            limits=drawdown_limits(account),
            series=drawdown_series(account.starting_balance, trades),
        )

    async def risk_preview(self, trade: Trade) -> PipCalculation:
        """Stop-loss and take-profit amounts for a trade in its account's currency."""
        account = await queries.get_account(self._db, trade.account_id, trade.user_id)
        return calculate_pip_value(
            trade.symbol, trade.entry_price, trade.stop_loss, trade.take_profit,
            trade.size, account.currency, rates=self._rates,
        )

    # --- Playbooks ---

    async def add_playbook(self, playbook: Playbook) -> Playbook:
        if not playbook.name.strip():
            raise ValidationError("Playbook name is required")
        await queries.insert_playbook(self._db, playbook)
        return playbook

    async def playbooks(self, user_id: str) -> list[Playbook]:
        return await queries.list_playbooks(self._db, user_id)

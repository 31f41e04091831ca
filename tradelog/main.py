"""tradelog command line.

    python -m tradelog.main recompute --user USER [--account ACCOUNT]
    python -m tradelog.main limits --user USER --account ACCOUNT
    python -m tradelog.main pips EURUSD 1.1000 100000 --sl 1.0950 --tp 1.1100 --currency USD

``recompute`` re-runs the ledger (and trailing drawdown) for one or all of
a user's accounts, e.g. after trades were edited outside the journal.
``limits`` shows an account's drawdown lines, its worst drawdown so far
and how many positions are still open.
``pips`` prints the money at risk for a hypothetical position.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from tradelog.fx.pips import calculate_pip_value, format_currency
from tradelog.fx.rates import StaticRateProvider
from tradelog.journal.service import Journal
from tradelog.ledger.aggregator import update_stats
from tradelog.shell import queries
from tradelog.shell.config import Config, load_config
from tradelog.shell.database import Database
from tradelog.shell.errors import TradelogError
from tradelog.utils.logging import setup_logging, user_context

log = structlog.get_logger()


async def recompute(config: Config, user_id: str, account_id: str | None = None) -> int:
    """Recompute stats for the given account, or every account the user owns."""
    db = Database(config.db_path)
    await db.connect()
    try:
        with user_context(user_id):
            if account_id:
                account_ids = [account_id]
            else:
                account_ids = [a.id for a in await queries.list_accounts(db, user_id)]
            for acc_id in account_ids:
                stats = await update_stats(db, acc_id, user_id)
                print(f"{acc_id}  balance={stats.current_balance:.2f}  pnl={stats.total_pnl:.2f}  "
                      f"trades={stats.total_trades}  win_rate={stats.win_rate}%")
            log.info("cli.recompute_done", accounts=len(account_ids))
        return len(account_ids)
    finally:
        await db.close()


async def limits(config: Config, user_id: str, account_id: str) -> None:
    db = Database(config.db_path)
    await db.connect()
    try:
        with user_context(user_id):
            journal = Journal(db)
            account = await queries.get_account(db, account_id, user_id)
            report = await journal.drawdown(account_id, user_id)
            open_trades = await journal.open_trades(account_id, user_id)
    finally:
        await db.close()

    currency = account.currency
    print(f"{account.name} ({account.type.value})")
    print(f"balance:      {format_currency(account.current_balance, currency)}")
    if report.limits is None:
        print("drawdown:     no prop-firm rules")
    else:
        print(f"reference:    {format_currency(report.limits.reference_balance, currency)}"
              f"  ({account.drawdown_type.value})")
        print(f"daily limit:  {format_currency(report.limits.daily_limit, currency)}")
        print(f"max limit:    {format_currency(report.limits.max_limit, currency)}")
    print(f"worst drawdown: {report.worst_pct:.2f}%")
    print(f"open trades:  {len(open_trades)}")


def pips(config: Config, args: argparse.Namespace) -> None:
    currency = (args.currency or config.default_currency).upper()
    result = calculate_pip_value(
        args.symbol, args.entry, args.sl, args.tp, args.size, currency,
        rates=StaticRateProvider.from_config(config),
    )
    print(f"pip value:   {format_currency(result.pip_value, currency)}")
    print(f"stop loss:   {format_currency(result.stop_loss_value, currency)}")
    print(f"take profit: {format_currency(result.take_profit_value, currency)}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="tradelog")
    sub = ap.add_subparsers(dest="command", required=True)

    rc = sub.add_parser("recompute", help="recompute account balances and drawdown state")
    rc.add_argument("--user", required=True)
    rc.add_argument("--account")

    lm = sub.add_parser("limits", help="drawdown limits and open positions for an account")
    lm.add_argument("--user", required=True)
    lm.add_argument("--account", required=True)

    pp = sub.add_parser("pips", help="stop-loss / take-profit value of a position")
    pp.add_argument("symbol")
    pp.add_argument("entry", type=float)
    pp.add_argument("size", type=float)
    pp.add_argument("--sl", type=float)
    pp.add_argument("--tp", type=float)
    pp.add_argument("--currency")
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    setup_logging(config)

    try:
        if args.command == "recompute":
            asyncio.run(recompute(config, args.user, args.account))
        elif args.command == "limits":
            asyncio.run(limits(config, args.user, args.account))
        else:
            pips(config, args)
    except TradelogError as e:
        log.error("cli.failed", command=args.command, error=str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


def run() -> None:
    """Entry point for pyproject.toml script."""
    sys.exit(main())


if __name__ == "__main__":
    run()

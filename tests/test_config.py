"""Tests for configuration loading and the command line."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

import pytest
import structlog

from tradelog.main import main
from tradelog.shell import queries
from tradelog.shell.config import DEFAULT_RATES, Config, load_config
from tradelog.shell.contract import Account, AccountType, DrawdownType, PropRules, Side, Trade
from tradelog.shell.database import Database
from tradelog.utils.logging import setup_logging, user_context


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("TRADELOG_DB_PATH", raising=False)
    monkeypatch.delenv("TRADELOG_LOG_LEVEL", raising=False)
    monkeypatch.delenv("JSON_LOGS", raising=False)
    # Cached loggers would keep writing to the captured stream after it closes
    monkeypatch.setattr("tradelog.main.setup_logging", lambda config: None)


def _write_settings(text: str) -> Path:
    config_dir = Path(tempfile.mkdtemp())
    (config_dir / "settings.toml").write_text(text)
    return config_dir


# --- load_config ---

def test_defaults_without_settings_file():
    config = load_config(Path(tempfile.mkdtemp()))
    assert config.log_level == "INFO"
    assert config.default_currency == "USD"
    assert config.fx.rates == DEFAULT_RATES
    assert config.db_path.endswith("tradelog.db")


def test_settings_file_overrides():
    config_dir = _write_settings(
        '[general]\nlog_level = "DEBUG"\ndefault_currency = "eur"\n'
        '[storage]\ndb_path = "/tmp/journal.db"\n'
        '[fx.rates]\nEUR = 0.9\nsek = 10.5\n'
    )
    config = load_config(config_dir)
    assert config.log_level == "DEBUG"
    assert config.default_currency == "EUR"
    assert config.db_path == "/tmp/journal.db"
    assert config.fx.rates["EUR"] == 0.9
    assert config.fx.rates["SEK"] == 10.5
    assert config.fx.rates["JPY"] == DEFAULT_RATES["JPY"]


def test_env_overrides_settings(monkeypatch):
    config_dir = _write_settings('[storage]\ndb_path = "/tmp/journal.db"\n')
    monkeypatch.setenv("TRADELOG_DB_PATH", "/tmp/other.db")
    monkeypatch.setenv("TRADELOG_LOG_LEVEL", "WARNING")

    config = load_config(config_dir)
    assert config.db_path == "/tmp/other.db"
    assert config.log_level == "WARNING"


def test_default_rates_not_shared_between_configs():
    first = load_config(_write_settings('[fx.rates]\nEUR = 0.5\n'))
    second = load_config(Path(tempfile.mkdtemp()))
    assert first.fx.rates["EUR"] == 0.5
    assert second.fx.rates["EUR"] == DEFAULT_RATES["EUR"]


@pytest.mark.parametrize("settings", [
    '[fx.rates]\nEUR = -1.0\n',
    '[fx.rates]\nUSD = 2.0\n',
    '[fx.rates]\nEURO = 1.1\n',
    '[general]\nlog_level = "LOUD"\n',
    '[general]\ndefault_currency = "DOLLARS"\n',
])
def test_invalid_settings_rejected(settings):
    with pytest.raises(ValueError, match="Config validation failed"):
        load_config(_write_settings(settings))


# --- CLI ---

def test_cli_pips(capsys):
    code = main(["pips", "EURUSD", "1.1000", "100000", "--sl", "1.0950", "--tp", "1.1100",
                 "--currency", "usd"])
    assert code == 0
    out = capsys.readouterr().out
    assert "pip value:   $10.00" in out
    assert "stop loss:   $500.00" in out
    assert "take profit: $1000.00" in out


def test_cli_pips_linear_symbol(capsys):
    assert main(["pips", "AAPL", "150", "10", "--sl", "145", "--currency", "USD"]) == 0
    out = capsys.readouterr().out
    assert "pip value:   $0.00" in out
    assert "stop loss:   $50.00" in out
    assert "take profit: $0.00" in out


async def _seed(db_path: str) -> str:
    db = Database(db_path)
    await db.connect()
    account = Account(user_id="u1", name="Main", type=AccountType.LIVE, currency="USD",
                      starting_balance=10000.0)
    await queries.insert_account(db, account)
    for pnl in (700.0, -200.0):
        await queries.insert_trade(db, Trade(
            user_id="u1", account_id=account.id, symbol="EURUSD", side=Side.SHORT,
            entry_price=1.1, size=1000.0, pnl=pnl,
        ))
    await db.close()
    return account.id


def test_cli_recompute(monkeypatch, capsys):
    f = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_path = f.name
    f.close()
    try:
        account_id = asyncio.run(_seed(db_path))
        monkeypatch.setenv("TRADELOG_DB_PATH", db_path)

        assert main(["recompute", "--user", "u1"]) == 0
        out = capsys.readouterr().out
        assert account_id in out
        assert "balance=10500.00" in out
        assert "win_rate=50%" in out

        assert main(["recompute", "--user", "u1", "--account", "missing"]) == 1
        assert "account not found: missing" in capsys.readouterr().err
    finally:
        os.unlink(db_path)


async def _seed_prop(db_path: str) -> str:
    db = Database(db_path)
    await db.connect()
    account = Account(
        user_id="u1", name="Funded", type=AccountType.PROP_FUNDED, currency="USD",
        starting_balance=10000.0,
        rules=PropRules(daily_drawdown_pct=5.0, max_drawdown_pct=10.0,
                        drawdown_type=DrawdownType.TRAILING),
    )
    await queries.insert_account(db, account)
    for pnl, exit_price, day in ((800.0, 1.11, 1), (-500.0, 1.095, 2), (None, None, 3)):
        await queries.insert_trade(db, Trade(
            user_id="u1", account_id=account.id, symbol="EURUSD", side=Side.LONG,
            entry_price=1.1, size=1000.0, pnl=pnl, exit_price=exit_price,
            created_at=f"2024-05-0{day} 09:00:00",
        ))
    await db.close()
    return account.id


def test_cli_limits(monkeypatch, capsys):
    f = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_path = f.name
    f.close()
    try:
        account_id = asyncio.run(_seed_prop(db_path))
        monkeypatch.setenv("TRADELOG_DB_PATH", db_path)

        # One recompute after all three trades: the peak is the balance at that moment
        assert main(["recompute", "--user", "u1"]) == 0
        capsys.readouterr()

        assert main(["limits", "--user", "u1", "--account", account_id]) == 0
        out = capsys.readouterr().out
        assert "balance:      $10300.00" in out
        assert "reference:    $10300.00  (trailing)" in out
        assert "daily limit:  $9785.00" in out
        assert "max limit:    $9270.00" in out
        assert "worst drawdown: -4.63%" in out
        assert "open trades:  1" in out

        assert main(["limits", "--user", "other", "--account", account_id]) == 1
    finally:
        os.unlink(db_path)


# --- Logging ---

def test_json_logs_from_settings_and_env(monkeypatch):
    config_dir = _write_settings('[general]\njson_logs = true\n')
    assert load_config(config_dir).json_logs is True

    monkeypatch.setenv("JSON_LOGS", "0")
    assert load_config(config_dir).json_logs is False


def test_setup_logging_uses_config():
    try:
        setup_logging(Config(log_level="DEBUG", json_logs=True))
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert logging.getLogger("aiosqlite").level == logging.WARNING
    finally:
        structlog.reset_defaults()


def test_user_context_binds_and_clears():
    with user_context("u42"):
        assert structlog.contextvars.get_contextvars()["user_id"] == "u42"
    assert "user_id" not in structlog.contextvars.get_contextvars()

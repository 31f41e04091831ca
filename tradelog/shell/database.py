"""SQLite database, the storage boundary for accounts, trades and playbooks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite
import structlog

from tradelog.shell.errors import StorageError

log = structlog.get_logger()

SCHEMA = """
-- Trading accounts (one row per brokerage / prop-firm account)
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK(type IN ('Live', 'Demo', 'Backtesting', 'Prop Firm Challenge', 'Prop Funded/Live')),
    broker TEXT DEFAULT '',
    currency TEXT NOT NULL DEFAULT 'USD',
    starting_balance REAL NOT NULL,
    manual_adjustments REAL DEFAULT 0,  -- deposits minus withdrawals
    current_balance REAL NOT NULL,      -- derived, rewritten by the ledger
    total_pnl REAL DEFAULT 0,
    total_trades INTEGER DEFAULT 0,
    win_rate INTEGER DEFAULT 0,
    daily_drawdown REAL,                -- percent, prop accounts only
    max_drawdown REAL,                  -- percent, prop accounts only
    drawdown_type TEXT CHECK(drawdown_type IN ('static', 'trailing')),
    profit_target REAL,                 -- challenge accounts only
    phase INTEGER,                      -- challenge accounts only
    peak_balance REAL,                  -- trailing accounts only
    daily_drawdown_limit REAL,
    max_drawdown_limit REAL,
    is_active INTEGER DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Strategy descriptions trades can be grouped by
CREATE TABLE IF NOT EXISTS playbooks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    entry_rules TEXT DEFAULT '',
    exit_rules TEXT DEFAULT '',
    risk_rules TEXT DEFAULT '',
    created_at TEXT DEFAULT (datetime('now'))
);

-- Logged trades (manually entered or imported, never executed here)
CREATE TABLE IF NOT EXISTS trades (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    symbol TEXT NOT NULL,
    side TEXT NOT NULL CHECK(side IN ('Long', 'Short')),
    entry_price REAL NOT NULL,
    exit_price REAL,                    -- NULL while the position is open
    stop_loss REAL,
    take_profit REAL,
    size REAL NOT NULL CHECK(size > 0),
    pnl REAL,                           -- NULL until realized
    commission REAL DEFAULT 0,
    initial_r2r REAL,
    actual_r2r REAL,
    playbook_id TEXT REFERENCES playbooks(id) ON DELETE SET NULL,
    exit_type TEXT,
    mistake TEXT,
    notes TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);
CREATE INDEX IF NOT EXISTS idx_trades_account ON trades(account_id, user_id);
CREATE INDEX IF NOT EXISTS idx_trades_created ON trades(user_id, created_at);
"""

# Migrations for existing databases (columns added after initial schema)
MIGRATIONS = [
    ("accounts", "manual_adjustments", "ALTER TABLE accounts ADD COLUMN manual_adjustments REAL DEFAULT 0"),
    ("accounts", "peak_balance", "ALTER TABLE accounts ADD COLUMN peak_balance REAL"),
    ("accounts", "daily_drawdown_limit", "ALTER TABLE accounts ADD COLUMN daily_drawdown_limit REAL"),
    ("accounts", "max_drawdown_limit", "ALTER TABLE accounts ADD COLUMN max_drawdown_limit REAL"),
    ("trades", "mistake", "ALTER TABLE trades ADD COLUMN mistake TEXT"),
]


class Database:
    def __init__(self, db_path: str):
        self._path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self._path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
            await self._conn.executescript(SCHEMA)
            await self._run_migrations()
            await self._conn.commit()
        except aiosqlite.Error as e:
            log.error("database.connect_failed", path=self._path, error=str(e))
            raise StorageError(f"Could not open database {self._path}: {e}") from e
        log.info("database.connected", path=self._path)

    async def _run_migrations(self) -> None:
        """Apply column additions to existing databases."""
        for table, column, sql in MIGRATIONS:
            cursor = await self._conn.execute(f"PRAGMA table_info({table})")
            columns = [row[1] for row in await cursor.fetchall()]
            if column not in columns:
                await self._conn.execute(sql)
                log.info("database.migration", table=table, column=column)

    async def close(self) -> None:
        if self._conn:
            await self._conn.commit()
            await self._conn.close()
            self._conn = None
            log.info("database.closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Database not connected")
        return self._conn

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        try:
            return await self.conn.execute(sql, params)
        except aiosqlite.Error as e:
            log.error("database.execute_failed", sql=_verb(sql), error=str(e))
            raise StorageError(str(e)) from e

    async def executemany(self, sql: str, params: list[tuple]) -> aiosqlite.Cursor:
        try:
            return await self.conn.executemany(sql, params)
        except aiosqlite.Error as e:
            log.error("database.execute_failed", sql=_verb(sql), rows=len(params), error=str(e))
            raise StorageError(str(e)) from e

    async def fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = await self.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def commit(self) -> None:
        try:
            await self.conn.commit()
        except aiosqlite.Error as e:
            log.error("database.commit_failed", error=str(e))
            raise StorageError(str(e)) from e

    async def write(self, sql: str, params: tuple = ()) -> int:
        """Execute a single write and commit. Returns the affected row count."""
        cursor = await self.execute(sql, params)
        await self.commit()
        return cursor.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Database]:
        """Group several writes into one commit; roll all of them back on error."""
        try:
            yield self
            await self.commit()
        except BaseException:
            await self.conn.rollback()
            raise


def _verb(sql: str) -> str:
    parts = sql.split(None, 1)
    return parts[0].upper() if parts else ""

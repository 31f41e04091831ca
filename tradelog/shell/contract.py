"""Record types passed between the storage boundary, the ledger and callers.

Accounts carry prop-firm drawdown rules only when their type is one of the
two prop categories; the shape of ``Account.rules`` is checked on
construction so a rule set can never hang off a live or demo account.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tradelog.shell.errors import ValidationError


# --- Enums ---

class AccountType(Enum):
    LIVE = "Live"
    DEMO = "Demo"
    BACKTESTING = "Backtesting"
    PROP_CHALLENGE = "Prop Firm Challenge"
    PROP_FUNDED = "Prop Funded/Live"

    @property
    def is_prop(self) -> bool:
        return self in (AccountType.PROP_CHALLENGE, AccountType.PROP_FUNDED)


class DrawdownType(Enum):
    STATIC = "static"
    TRAILING = "trailing"


class Side(Enum):
    LONG = "Long"
    SHORT = "Short"


# --- Drawdown rules (prop accounts only) ---

@dataclass(frozen=True)
class PropRules:
    daily_drawdown_pct: float = 0.0
    max_drawdown_pct: float = 0.0
    drawdown_type: DrawdownType = DrawdownType.STATIC


@dataclass(frozen=True)
class ChallengeRules(PropRules):
    profit_target: Optional[float] = None
    phase: int = 1

    def __post_init__(self) -> None:
        if self.phase not in (1, 2):
            raise ValidationError(f"Challenge phase must be 1 or 2, got {self.phase}")


# --- Entities ---

@dataclass
class Account:
    user_id: str
    name: str
    type: AccountType
    currency: str
    starting_balance: float
    id: str | None = None
    broker: str = ""
    rules: PropRules | None = None
    manual_adjustments: float = 0.0
    current_balance: float | None = None
    total_pnl: float = 0.0
    total_trades: int = 0
    win_rate: int = 0
    # Trailing drawdown state, written by the drawdown tracker
    peak_balance: float | None = None
    daily_drawdown_limit: float | None = None
    max_drawdown_limit: float | None = None
    is_active: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    def __post_init__(self) -> None:
        if self.type is AccountType.PROP_CHALLENGE:
            if not isinstance(self.rules, ChallengeRules):
                raise ValidationError("Prop Firm Challenge accounts require ChallengeRules")
        elif self.type is AccountType.PROP_FUNDED:
            if self.rules is None or isinstance(self.rules, ChallengeRules):
                raise ValidationError("Prop Funded/Live accounts require PropRules")
        elif self.rules is not None:
            raise ValidationError(f"{self.type.value} accounts carry no drawdown rules")
        self.currency = self.currency.upper()
        if self.current_balance is None:
            self.current_balance = self.starting_balance

    @property
    def drawdown_type(self) -> DrawdownType | None:
        return self.rules.drawdown_type if self.rules else None

    @property
    def is_trailing(self) -> bool:
        return self.drawdown_type is DrawdownType.TRAILING


@dataclass
class Trade:
    user_id: str
    account_id: str
    symbol: str
    side: Side
    entry_price: float
    size: float
    id: str | None = None
    exit_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    pnl: float | None = None
    commission: float = 0.0
    initial_r2r: float | None = None
    actual_r2r: float | None = None
    playbook_id: str | None = None
    exit_type: str | None = None
    mistake: str | None = None
    notes: str | None = None
    created_at: str | None = None  # the trade date, user-editable

    def __post_init__(self) -> None:
        if isinstance(self.symbol, str):
            self.symbol = self.symbol.strip().upper()

    @property
    def is_completed(self) -> bool:
        """Realized: a P&L has been recorded, whatever the exit price says."""
        return self.pnl is not None

    @property
    def is_open(self) -> bool:
        return self.exit_price is None


@dataclass
class Playbook:
    user_id: str
    name: str
    id: str | None = None
    description: str = ""
    entry_rules: str = ""
    exit_rules: str = ""
    risk_rules: str = ""
    created_at: str | None = None


# --- Results ---

@dataclass(frozen=True)
class AccountStats:
    current_balance: float
    total_pnl: float
    total_trades: int
    win_rate: int


@dataclass(frozen=True)
class DrawdownLimits:
    reference_balance: float   # starting balance (static) or peak (trailing)
    daily_limit: float
    max_limit: float


@dataclass(frozen=True)
class DrawdownReport:
    limits: DrawdownLimits | None  # None for non-prop accounts
    series: list[float]            # percent below running peak, per completed trade

    @property
    def worst_pct(self) -> float:
        return min(self.series, default=0.0)


@dataclass(frozen=True)
class PipCalculation:
    stop_loss_value: float
    take_profit_value: float
    pip_value: float


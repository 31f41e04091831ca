"""Pip-value converter: stop-loss and take-profit distance as money.

Known forex pairs are priced in pips and converted into the account
currency. Everything else (equities, crypto, indices, unknown symbols,
INR-denominated accounts) uses plain price distance times size. The
linear path is an approximation, not pip mechanics, and never raises.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from tradelog.fx.rates import RateProvider, StaticRateProvider
from tradelog.shell.contract import PipCalculation

log = structlog.get_logger()


@dataclass(frozen=True)
class ForexPair:
    base: str
    quote: str
    pip_location: int  # decimal place of one pip: 4 for most pairs, 2 for JPY quotes

    @property
    def pip_size(self) -> float:
        return 10 ** -self.pip_location


FOREX_PAIRS: dict[str, ForexPair] = {
    "EURUSD": ForexPair("EUR", "USD", 4),
    "GBPUSD": ForexPair("GBP", "USD", 4),
    "AUDUSD": ForexPair("AUD", "USD", 4),
    "NZDUSD": ForexPair("NZD", "USD", 4),
    "USDCAD": ForexPair("USD", "CAD", 4),
    "USDCHF": ForexPair("USD", "CHF", 4),
    "USDJPY": ForexPair("USD", "JPY", 2),
    "EURJPY": ForexPair("EUR", "JPY", 2),
    "GBPJPY": ForexPair("GBP", "JPY", 2),
    "AUDJPY": ForexPair("AUD", "JPY", 2),
    "EURGBP": ForexPair("EUR", "GBP", 4),
    "EURAUD": ForexPair("EUR", "AUD", 4),
    "GBPAUD": ForexPair("GBP", "AUD", 4),
}

# Accounts in these currencies always use price distance
LINEAR_ONLY_CURRENCIES = frozenset({"INR"})

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "AUD": "A$",
    "NZD": "NZ$",
    "CAD": "C$",
    "CHF": "CHF",
    "INR": "₹",
}

_default_rates = StaticRateProvider()


def _linear(
    entry_price: float, stop_loss: float | None, take_profit: float | None, position_size: float
) -> PipCalculation:
    return PipCalculation(
        stop_loss_value=abs(entry_price - stop_loss) * position_size if stop_loss else 0.0,
        take_profit_value=abs(take_profit - entry_price) * position_size if take_profit else 0.0,
        pip_value=0.0,
    )


def calculate_pip_value(
    symbol: str,
    entry_price: float,
    stop_loss: float | None,
    take_profit: float | None,
    position_size: float,
    account_currency: str,
    rates: RateProvider | None = None,
) -> PipCalculation:
    """Money at risk to the stop and to the target, in the account currency.

    ``pip_value`` is the account-currency value of one pip for the given
    size, or 0 when the linear fallback was used.
    """
    account_currency = account_currency.upper()
    pair = FOREX_PAIRS.get(symbol.strip().upper())

    if pair is None or account_currency in LINEAR_ONLY_CURRENCIES:
        return _linear(entry_price, stop_loss, take_profit, position_size)

    pip_size = pair.pip_size
    pip_value = pip_size * position_size

    if pair.quote == account_currency:
        pass
    elif pair.base == account_currency:
        if not entry_price:
            log.debug("pips.zero_entry", symbol=symbol, account_currency=account_currency)
            return _linear(entry_price, stop_loss, take_profit, position_size)
        pip_value /= entry_price
    else:
        factor = (rates or _default_rates).factor(pair.quote, account_currency)
        if factor is None:
            log.debug("pips.no_rate", symbol=symbol, quote=pair.quote, account_currency=account_currency)
            return _linear(entry_price, stop_loss, take_profit, position_size)
        pip_value *= factor

    return PipCalculation(
        stop_loss_value=abs(entry_price - stop_loss) / pip_size * pip_value if stop_loss else 0.0,
        take_profit_value=abs(take_profit - entry_price) / pip_size * pip_value if take_profit else 0.0,
        pip_value=pip_value,
    )


def format_currency(amount: float, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())
    return f"{symbol}{amount:.2f}"

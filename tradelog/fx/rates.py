"""Exchange-rate providers for pip-value conversion.

Rates are expressed as units of a currency per 1 USD, so the factor to
move an amount from currency A into currency B is ``rate(B) / rate(A)``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from tradelog.shell.config import DEFAULT_RATES, Config


class RateProvider(ABC):
    """Source of currency-per-USD rates."""

    @abstractmethod
    def rate(self, currency: str) -> float | None:
        """Units of ``currency`` per 1 USD, or None when the currency is unknown."""

    def factor(self, from_currency: str, to_currency: str) -> float | None:
        """Multiplier converting an amount in ``from_currency`` to ``to_currency``."""
        src = self.rate(from_currency)
        dst = self.rate(to_currency)
        if not src or not dst:
            return None
        return dst / src


class StaticRateProvider(RateProvider):
    """Fixed rate table. Drifts from the market; fine for risk display, not settlement."""

    def __init__(self, rates: dict[str, float] | None = None) -> None:
        self._rates = {k.upper(): float(v) for k, v in (rates or DEFAULT_RATES).items()}

    @classmethod
    def from_config(cls, config: Config) -> StaticRateProvider:
        return cls(config.fx.rates)

    def rate(self, currency: str) -> float | None:
        return self._rates.get(currency.upper())

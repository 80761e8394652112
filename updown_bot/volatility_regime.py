"""Volatility regime labels for post-trade performance analysis.

Buckets a trade's 5-minute rolling volatility (stdev of 1-minute returns)
into low / mid / high using per-asset bands.  Bands are roughly the 25th
and 75th percentiles of historical 5-minute volatility; by typical
volatility the assets rank BTC < ETH < XRP < SOL.

    volatility <= low   -> "low"
    volatility >= high  -> "high"
    otherwise           -> "mid"
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional

from updown_bot.model_loader import extract_asset

LOW = "low"
MID = "mid"
HIGH = "high"

ALL_REGIMES = (LOW, MID, HIGH)

MAX_SYMBOL_LENGTH = 20


@dataclass(frozen=True)
class VolatilityThresholds:
    low: float
    high: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.low) and math.isfinite(self.high)):
            raise ValueError("Volatility thresholds must be finite")
        if self.low < 0 or self.high < self.low:
            raise ValueError(
                f"Volatility thresholds must satisfy 0 <= low <= high, got "
                f"low={self.low} high={self.high}"
            )


VOLATILITY_THRESHOLDS: Mapping[str, VolatilityThresholds] = MappingProxyType({
    "BTC": VolatilityThresholds(low=0.0005, high=0.0015),
    "ETH": VolatilityThresholds(low=0.0007, high=0.0020),
    "SOL": VolatilityThresholds(low=0.0015, high=0.0040),
    "XRP": VolatilityThresholds(low=0.0010, high=0.0030),
})

DEFAULT_THRESHOLDS = VolatilityThresholds(low=0.001, high=0.003)

KNOWN_VOLATILITY_SYMBOLS = tuple(VOLATILITY_THRESHOLDS)


def normalize_symbol(symbol: str) -> str:
    """Upper-case and strip one quote-currency suffix: ``btcusdt`` -> ``BTC``."""
    return extract_asset(symbol[:MAX_SYMBOL_LENGTH].upper())


def _validate_volatility(value: Any) -> float:
    if (
        not isinstance(value, numbers.Real)
        or isinstance(value, bool)
        or not math.isfinite(value)
        or value < 0
    ):
        raise ValueError(
            f"Invalid volatility value {value!r}. Must be a finite non-negative number."
        )
    return float(value)


class VolatilityRegimeClassifier:
    """Stateless classifier over an injectable threshold table.

    Parameters
    ----------
    thresholds:
        Base asset -> VolatilityThresholds.  Defaults to
        ``VOLATILITY_THRESHOLDS``.
    default:
        Bands used for symbols missing from *thresholds*.
    """

    def __init__(
        self,
        thresholds: Optional[Mapping[str, VolatilityThresholds]] = None,
        default: VolatilityThresholds = DEFAULT_THRESHOLDS,
    ) -> None:
        table = VOLATILITY_THRESHOLDS if thresholds is None else thresholds
        self._thresholds: Mapping[str, VolatilityThresholds] = MappingProxyType(
            {normalize_symbol(k): v for k, v in table.items()}
        )
        self._default = default

    def thresholds_for(self, symbol: str) -> VolatilityThresholds:
        return self._thresholds.get(normalize_symbol(symbol), self._default)

    def has_custom_thresholds(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self._thresholds

    def classify(self, volatility_5m: float, symbol: str) -> str:
        """Return ``"low"``, ``"mid"`` or ``"high"``.

        Raises ValueError when *volatility_5m* is NaN, infinite, or
        negative.
        """
        vol = _validate_volatility(volatility_5m)
        bands = self.thresholds_for(symbol)
        if vol <= bands.low:
            return LOW
        if vol >= bands.high:
            return HIGH
        return MID


_DEFAULT_CLASSIFIER = VolatilityRegimeClassifier()


def classify_volatility_regime(volatility_5m: float, symbol: str) -> str:
    """Classify with the built-in bands, e.g. ``(0.0003, "BTC") -> "low"``."""
    return _DEFAULT_CLASSIFIER.classify(volatility_5m, symbol)


def get_volatility_thresholds(symbol: str) -> VolatilityThresholds:
    return _DEFAULT_CLASSIFIER.thresholds_for(symbol)


def has_custom_thresholds(symbol: str) -> bool:
    return _DEFAULT_CLASSIFIER.has_custom_thresholds(symbol)

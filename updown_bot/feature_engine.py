"""Minute-boundary feature engine for the 15-minute up/down strategy.

One engine per asset.  Ticks arrive at whatever rate the feed delivers;
the engine only does work on the first tick of each UTC minute, when it
records the close into the continuous price buffer, rolls the window
state if a new 15-minute window has started, and emits a FeatureVector.
Every other tick returns None without touching state.

Anything that needs more history than is buffered comes back as NaN:
the model imputes it, so sparsity is never an error here.

Default up/down hit thresholds (fraction of the window open price):

- BTC: 8 bps
- ETH: 10 bps
- SOL: 20 bps
- XRP: 15 bps
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

import numpy as np

from updown_bot.price_buffer import (
    BUFFER_SIZE,
    MINUTE_MS,
    WINDOW_MINUTES,
    PriceBuffer,
    PriceSample,
    WindowState,
    simple_return,
)

LOGGER = logging.getLogger(__name__)

# ── Asset tables ─────────────────────────────────────────────────

BTC = "BTC"
ETH = "ETH"
SOL = "SOL"
XRP = "XRP"

ASSET_THRESHOLDS: Mapping[str, float] = MappingProxyType({
    BTC: 0.0008,
    ETH: 0.0010,
    SOL: 0.0020,
    XRP: 0.0015,
})

# Ordinal encoding the model was trained with.
ASSET_ORDINALS: Mapping[str, int] = MappingProxyType({
    BTC: 0,
    ETH: 1,
    SOL: 2,
    XRP: 3,
})

_HOUR_MS = 60 * MINUTE_MS
_DAY_MS = 24 * _HOUR_MS
# 1970-01-01 was a Thursday (0=Sunday numbering).
_EPOCH_DAY_OF_WEEK = 4

# 5 one-minute returns need 6 closes.
VOLATILITY_RETURNS = 5
LAGS_MINUTES = (1, 3, 5)

FeatureMap = Dict[str, Union[float, bool]]


@dataclass(frozen=True)
class FeatureVector:
    """Features emitted at a minute boundary."""

    # Time
    state_minute: int               # 0-14 within the window
    minutes_remaining: int          # 15 - state_minute
    hour_of_day: int                # UTC
    day_of_week: int                # UTC, 0=Sunday

    # Window-relative returns
    return_since_open: float
    max_run_up: float
    max_run_down: float

    # Lagged returns (buffer based, may cross into the previous window)
    return_1m: float
    return_3m: float
    return_5m: float

    volatility_5m: float            # sample stdev of last 5 1-min returns

    # Threshold hits
    has_up_hit: bool
    has_down_hit: bool
    first_up_hit_minute: float      # NaN until hit
    first_down_hit_minute: float

    asset: str
    timestamp: int                  # unix ms


def to_feature_map(features: FeatureVector) -> FeatureMap:
    """Flat snake_case projection consumed by the model.

    Key names are shared with the training pipeline; do not rename.
    """
    return {
        "state_minute": features.state_minute,
        "minutes_remaining": features.minutes_remaining,
        "hour_of_day": features.hour_of_day,
        "day_of_week": features.day_of_week,
        "return_since_open": features.return_since_open,
        "max_run_up": features.max_run_up,
        "max_run_down": features.max_run_down,
        "return_1m": features.return_1m,
        "return_3m": features.return_3m,
        "return_5m": features.return_5m,
        "volatility_5m": features.volatility_5m,
        "has_up_hit": features.has_up_hit,
        "has_down_hit": features.has_down_hit,
        "first_up_hit_minute": features.first_up_hit_minute,
        "first_down_hit_minute": features.first_down_hit_minute,
        "asset": ASSET_ORDINALS[features.asset],
        "timestamp": features.timestamp,
    }


@dataclass
class EngineState:
    """Everything an engine mutates, in one place."""

    buffer: PriceBuffer = field(default_factory=lambda: PriceBuffer(BUFFER_SIZE))
    window: Optional[WindowState] = None
    last_minute: int = -1

    def reset(self) -> None:
        self.buffer.clear()
        self.window = None
        self.last_minute = -1


@dataclass(frozen=True)
class EngineSnapshot:
    """Read-only view of an engine for monitoring and tests."""

    asset: str
    threshold: float
    buffer_size: int
    window: Optional[WindowState]
    last_minute: int


class FeatureEngine:
    """Per-asset streaming feature computation.

    Parameters
    ----------
    asset:
        One of BTC, ETH, SOL, XRP.
    thresholds:
        Optional asset -> hit threshold (fraction) map; defaults to
        ``ASSET_THRESHOLDS``.
    """

    def __init__(
        self,
        asset: str,
        thresholds: Optional[Mapping[str, float]] = None,
    ) -> None:
        table = ASSET_THRESHOLDS if thresholds is None else thresholds
        if asset not in ASSET_ORDINALS:
            raise ValueError(f"Invalid asset: {asset!r}")
        if asset not in table:
            raise ValueError(f"No hit threshold configured for asset {asset!r}")
        threshold = float(table[asset])
        if not math.isfinite(threshold) or threshold <= 0:
            raise ValueError(f"Hit threshold for {asset} must be positive, got {threshold}")

        self._asset = asset
        self._threshold = threshold
        self._state = EngineState()

    @property
    def asset(self) -> str:
        return self._asset

    @property
    def threshold(self) -> float:
        return self._threshold

    def snapshot(self) -> EngineSnapshot:
        window = self._state.window
        return EngineSnapshot(
            asset=self._asset,
            threshold=self._threshold,
            buffer_size=len(self._state.buffer),
            window=None if window is None else replace(window),
            last_minute=self._state.last_minute,
        )

    def reset(self) -> None:
        """Forget all history, e.g. between disjoint backtest series."""
        self._state.reset()

    def ingest_price(self, price: float, timestamp_ms: int) -> Optional[FeatureVector]:
        """Feed one tick; returns features on the first tick of a new minute.

        Raises ValueError for a non-positive or non-finite price, or a
        negative or non-finite timestamp.
        """
        if not _is_real(price) or not math.isfinite(price) or price <= 0:
            raise ValueError(f"Invalid price {price!r}: must be a positive finite number")
        if not _is_real(timestamp_ms) or not math.isfinite(timestamp_ms) or timestamp_ms < 0:
            raise ValueError(
                f"Invalid timestamp {timestamp_ms!r}: must be a non-negative finite number"
            )

        timestamp_ms = int(timestamp_ms)
        state = self._state
        minute = timestamp_ms // MINUTE_MS
        if minute == state.last_minute:
            return None
        state.last_minute = minute

        state.buffer.append(PriceSample(price=float(price), timestamp_ms=timestamp_ms))

        window = state.window
        if window is None or not window.contains(timestamp_ms):
            window = WindowState.open(float(price), timestamp_ms)
            state.window = window
            LOGGER.debug(
                "FeatureEngine[%s]: new window %d open=%.8g buffer=%d",
                self._asset, window.window_start_ms, price, len(state.buffer),
            )

        state_minute = (timestamp_ms - window.window_start_ms) // MINUTE_MS
        return_since_open = window.observe(float(price), state_minute, self._threshold)

        lagged = {k: self._lagged_return(k) for k in LAGS_MINUTES}

        return FeatureVector(
            state_minute=state_minute,
            minutes_remaining=WINDOW_MINUTES - state_minute,
            hour_of_day=(timestamp_ms % _DAY_MS) // _HOUR_MS,
            day_of_week=(timestamp_ms // _DAY_MS + _EPOCH_DAY_OF_WEEK) % 7,
            return_since_open=return_since_open,
            max_run_up=window.max_run_up,
            max_run_down=window.max_run_down,
            return_1m=lagged[1],
            return_3m=lagged[3],
            return_5m=lagged[5],
            volatility_5m=self._volatility_5m(),
            has_up_hit=window.has_up_hit,
            has_down_hit=window.has_down_hit,
            first_up_hit_minute=window.first_up_hit_minute,
            first_down_hit_minute=window.first_down_hit_minute,
            asset=self._asset,
            timestamp=timestamp_ms,
        )

    # ── internals ──────────────────────────────────────────────────

    def _lagged_return(self, minutes_ago: int) -> float:
        past = self._state.buffer.lookback(minutes_ago)
        if past is None:
            return math.nan
        current = self._state.buffer.lookback(0)
        return simple_return(current, past)

    def _volatility_5m(self) -> float:
        returns = self._state.buffer.recent_returns(VOLATILITY_RETURNS)
        if returns is None:
            return math.nan
        valid = [r for r in returns if not math.isnan(r)]
        if len(valid) < 2:
            return math.nan
        std = float(np.std(np.array(valid, dtype=np.float64), ddof=1))
        return std if std > 0 else 0.0


def _is_real(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)

"""Minute-close history buffer and per-window state.

The buffer is continuous: it keeps the last 32 minute closes and is never
cleared on a window rollover, so lagged returns early in a window read
back into the previous window.  The window state is the opposite: it is
replaced wholesale the first time a tick lands in a new 15-minute window.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, List, Optional

MINUTE_MS = 60 * 1000
WINDOW_MINUTES = 15
WINDOW_MS = WINDOW_MINUTES * MINUTE_MS

# 32 minutes of closes: enough for every lookback plus two full windows.
BUFFER_SIZE = 32


def window_start_ms(timestamp_ms: int) -> int:
    """Start of the epoch-aligned 15-minute window containing *timestamp_ms*."""
    return (int(timestamp_ms) // WINDOW_MS) * WINDOW_MS


def simple_return(price: float, base_price: float) -> float:
    """``price / base_price - 1``; NaN when the base is zero."""
    if not base_price:
        return math.nan
    return (price - base_price) / base_price


@dataclass(frozen=True)
class PriceSample:
    """A minute close as recorded into the buffer."""

    price: float
    timestamp_ms: int


class PriceBuffer:
    """Fixed-capacity FIFO of minute closes.

    Parameters
    ----------
    capacity:
        Maximum number of samples kept; the oldest is dropped on overflow.
    """

    def __init__(self, capacity: int = BUFFER_SIZE) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._samples: Deque[PriceSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[PriceSample]:
        return iter(self._samples)

    def append(self, sample: PriceSample) -> None:
        self._samples.append(sample)

    def clear(self) -> None:
        self._samples.clear()

    def latest(self) -> Optional[PriceSample]:
        if not self._samples:
            return None
        return self._samples[-1]

    def lookback(self, k: int) -> Optional[float]:
        """Price ``k`` slots behind the newest sample.

        Returns None when fewer than ``k + 1`` samples are buffered.
        """
        if k < 0 or len(self._samples) < k + 1:
            return None
        return self._samples[-1 - k].price

    def recent_returns(self, n: int) -> Optional[List[float]]:
        """The last *n* slot-to-slot simple returns, oldest first.

        Needs ``n + 1`` samples; returns None otherwise.
        """
        if n < 1 or len(self._samples) < n + 1:
            return None
        tail = list(self._samples)[-(n + 1):]
        return [
            simple_return(cur.price, prev.price)
            for prev, cur in zip(tail, tail[1:])
        ]


@dataclass
class WindowState:
    """Accounting scoped to one 15-minute window.

    Hit flags are derived from the first-hit minutes, which are written
    at most once, so a flag can never go from True back to False while
    the window lives.
    """

    window_start_ms: int
    open_price: float
    max_run_up: float = 0.0
    max_run_down: float = 0.0
    first_up_hit_minute: float = math.nan
    first_down_hit_minute: float = math.nan

    @classmethod
    def open(cls, price: float, timestamp_ms: int) -> "WindowState":
        return cls(window_start_ms=window_start_ms(timestamp_ms), open_price=price)

    @property
    def has_up_hit(self) -> bool:
        return not math.isnan(self.first_up_hit_minute)

    @property
    def has_down_hit(self) -> bool:
        return not math.isnan(self.first_down_hit_minute)

    def contains(self, timestamp_ms: int) -> bool:
        return window_start_ms(timestamp_ms) == self.window_start_ms

    def return_since_open(self, price: float) -> float:
        return simple_return(price, self.open_price)

    def observe(self, price: float, state_minute: int, threshold: float) -> float:
        """Fold *price* into the window extrema and hit markers.

        Returns the return since open for convenience.
        """
        ret = self.return_since_open(price)
        if math.isnan(ret):
            return ret

        if ret > self.max_run_up:
            self.max_run_up = ret
        if ret < self.max_run_down:
            self.max_run_down = ret

        if not self.has_up_hit and ret >= threshold:
            self.first_up_hit_minute = float(state_minute)
        if not self.has_down_hit and ret <= -threshold:
            self.first_down_hit_minute = float(state_minute)
        return ret

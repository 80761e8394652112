"""Append-only CSV log of scored minute boundaries.

One row per emitted feature vector that had a model: the features, the
model output, the volatility regime, and the signal side (if any).  Used
to compare backtest replays against live runs row by row.
"""

from __future__ import annotations

import csv
import math
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Optional, TextIO


@dataclass
class SignalRecord:
    """A scored minute boundary for one symbol."""

    symbol: str
    timestamp: int
    state_minute: int
    minutes_remaining: int
    hour_of_day: int
    day_of_week: int
    return_since_open: float
    max_run_up: float
    max_run_down: float
    return_1m: float
    return_3m: float
    return_5m: float
    volatility_5m: float
    has_up_hit: bool
    has_down_hit: bool
    first_up_hit_minute: float
    first_down_hit_minute: float
    probability: float
    imputed_count: int
    linear_combination: float
    volatility_regime: str = ""   # "" when volatility_5m is NaN
    signal: str = ""              # "YES" / "NO" / ""


SIGNAL_FIELDS = [f.name for f in fields(SignalRecord)]


def _format_value(value: Any) -> Any:
    # NaN is written as an empty cell and bools as 1/0, so rows read back cleanly.
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, float) and math.isnan(value):
        return ""
    return value


def _parse_float(text: str) -> float:
    return math.nan if text == "" else float(text)


_PARSERS: Dict[str, Callable[[str], Any]] = {
    "str": str,
    "int": int,
    "float": _parse_float,
    "bool": lambda text: text == "1",
}


def read_signal_log(path: str) -> List[SignalRecord]:
    """Read a signal log back into records."""
    parsers = {f.name: _PARSERS[getattr(f.type, "__name__", f.type)] for f in fields(SignalRecord)}
    records: List[SignalRecord] = []
    with open(path, "r", newline="") as f:
        for row in csv.DictReader(f):
            records.append(SignalRecord(**{
                name: parsers[name](row[name]) for name in SIGNAL_FIELDS
            }))
    return records


class SignalLog:
    """Append-only CSV writer for SignalRecord rows."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._file: Optional[TextIO] = None
        self._writer: Optional[csv.DictWriter] = None
        self._rows = 0

    @property
    def rows_written(self) -> int:
        return self._rows

    def _ensure_open(self) -> None:
        if self._file is not None:
            return
        write_header = not os.path.exists(self._path) or os.path.getsize(self._path) == 0
        self._file = open(self._path, "a", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=SIGNAL_FIELDS)
        if write_header:
            self._writer.writeheader()

    def log(self, record: SignalRecord) -> None:
        self._ensure_open()
        assert self._writer is not None
        self._writer.writerow({name: _format_value(getattr(record, name)) for name in SIGNAL_FIELDS})
        self._rows += 1

    def flush(self) -> None:
        if self._file:
            self._file.flush()

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None
            self._writer = None

    def __enter__(self) -> "SignalLog":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

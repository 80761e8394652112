"""Offline replay of recorded prices through the live signal path.

Feeds a price CSV (``symbol,timestamp_ms,price``) tick by tick into one
FeatureEngine per symbol, scores every emitted vector with the symbol's
model, labels the volatility regime, and applies the signal rule.  The
same engine and model code runs live, so a replay of recorded ticks
reproduces live signals exactly.
"""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np

from updown_bot.config import UpdownSettings
from updown_bot.feature_engine import ASSET_ORDINALS, FeatureEngine, to_feature_map
from updown_bot.model_loader import ModelRegistry, extract_asset
from updown_bot.price_buffer import window_start_ms
from updown_bot.signal_log import SignalLog, SignalRecord
from updown_bot.volatility_regime import VolatilityRegimeClassifier

LOGGER = logging.getLogger(__name__)

YES = "YES"
NO = "NO"

Tick = Tuple[str, float, int]


def decide_signal(
    probability: float,
    state_minute: int,
    settings: UpdownSettings,
) -> Optional[str]:
    """YES/NO when the probability clears a threshold in an entry minute."""
    if state_minute not in settings.state_minutes:
        return None
    if probability >= settings.yes_threshold:
        return YES
    if probability <= settings.no_threshold:
        return NO
    return None


def read_price_csv(path: Union[str, Path]) -> Iterator[Tick]:
    """Yield ``(symbol, price, timestamp_ms)`` rows from a price CSV."""
    with open(path, "r", newline="") as f:
        reader = csv.DictReader(f)
        missing = {"symbol", "timestamp_ms", "price"} - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"Price CSV {path} is missing columns: {sorted(missing)}")
        for line_no, row in enumerate(reader, start=2):
            try:
                yield row["symbol"].strip().upper(), float(row["price"]), int(row["timestamp_ms"])
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Price CSV {path} line {line_no}: {exc}") from exc


@dataclass
class ReplaySummary:
    """Aggregate counts from a replay run."""

    ticks: int = 0
    skipped_ticks: int = 0
    records: int = 0
    signals: Dict[str, int] = field(default_factory=lambda: {YES: 0, NO: 0})
    by_regime: Dict[str, int] = field(default_factory=dict)
    mean_probability: float = math.nan
    mean_imputed: float = math.nan


class SignalReplay:
    """Drives per-symbol engines and scores their output.

    A symbol trades at most once per window: after its first signal,
    later entry minutes of the same window are recorded unsignalled.

    Parameters
    ----------
    registry:
        Models keyed by exchange symbol (e.g. ``BTCUSDT``).
    settings:
        Symbols, hit thresholds, and signal rule parameters.
    classifier:
        Volatility regime classifier; defaults to built-in bands.
    signal_log:
        Optional CSV sink for every produced record.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        settings: UpdownSettings,
        classifier: Optional[VolatilityRegimeClassifier] = None,
        signal_log: Optional[SignalLog] = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._classifier = classifier or VolatilityRegimeClassifier()
        self._signal_log = signal_log
        self._records: List[SignalRecord] = []
        self._ticks = 0
        self._skipped = 0
        # symbol -> start of the last window that produced a signal
        self._signalled: Dict[str, int] = {}

        thresholds = settings.asset_thresholds()
        self._engines: Dict[str, FeatureEngine] = {}
        for symbol in settings.symbols:
            asset = extract_asset(symbol)
            if asset not in ASSET_ORDINALS:
                raise ValueError(f"Unsupported symbol {symbol!r} (asset {asset!r})")
            self._engines[symbol] = FeatureEngine(asset, thresholds=thresholds)
            if symbol not in registry:
                LOGGER.warning("SignalReplay: no model for %s, features will not be scored", symbol)

    @property
    def records(self) -> List[SignalRecord]:
        return list(self._records)

    def engine(self, symbol: str) -> Optional[FeatureEngine]:
        return self._engines.get(symbol)

    def reset(self) -> None:
        for engine in self._engines.values():
            engine.reset()
        self._records.clear()
        self._ticks = 0
        self._skipped = 0
        self._signalled.clear()

    def process_tick(self, symbol: str, price: float, timestamp_ms: int) -> Optional[SignalRecord]:
        """Feed one tick; returns a record when a scored vector was emitted."""
        self._ticks += 1
        engine = self._engines.get(symbol)
        if engine is None:
            self._skipped += 1
            LOGGER.debug("SignalReplay: skipping tick for untracked symbol %s", symbol)
            return None

        features = engine.ingest_price(price, timestamp_ms)
        if features is None:
            return None

        model = self._registry.get(symbol)
        if model is None:
            return None

        prediction = model.predict(to_feature_map(features))
        regime = ""
        if not math.isnan(features.volatility_5m):
            regime = self._classifier.classify(features.volatility_5m, symbol)
        signal = decide_signal(prediction.probability, features.state_minute, self._settings)
        if signal:
            window = window_start_ms(features.timestamp)
            if self._signalled.get(symbol) == window:
                LOGGER.debug(
                    "SignalReplay: %s already signalled in window %d, suppressing %s",
                    symbol, window, signal,
                )
                signal = None
            else:
                self._signalled[symbol] = window

        record = SignalRecord(
            symbol=symbol,
            timestamp=features.timestamp,
            state_minute=features.state_minute,
            minutes_remaining=features.minutes_remaining,
            hour_of_day=features.hour_of_day,
            day_of_week=features.day_of_week,
            return_since_open=features.return_since_open,
            max_run_up=features.max_run_up,
            max_run_down=features.max_run_down,
            return_1m=features.return_1m,
            return_3m=features.return_3m,
            return_5m=features.return_5m,
            volatility_5m=features.volatility_5m,
            has_up_hit=features.has_up_hit,
            has_down_hit=features.has_down_hit,
            first_up_hit_minute=features.first_up_hit_minute,
            first_down_hit_minute=features.first_down_hit_minute,
            probability=prediction.probability,
            imputed_count=prediction.imputed_count,
            linear_combination=prediction.linear_combination,
            volatility_regime=regime,
            signal=signal or "",
        )
        self._records.append(record)
        if self._signal_log is not None:
            self._signal_log.log(record)

        if signal:
            LOGGER.info(
                "Signal %s %s minute=%d p=%.3f imputed=%d",
                signal, symbol, features.state_minute,
                prediction.probability, prediction.imputed_count,
            )
        return record

    def run(self, ticks: Iterable[Tick]) -> ReplaySummary:
        for symbol, price, timestamp_ms in ticks:
            self.process_tick(symbol, price, timestamp_ms)
        return self.summary()

    def summary(self) -> ReplaySummary:
        summary = ReplaySummary(
            ticks=self._ticks,
            skipped_ticks=self._skipped,
            records=len(self._records),
        )
        for record in self._records:
            if record.signal:
                summary.signals[record.signal] += 1
            if record.volatility_regime:
                summary.by_regime[record.volatility_regime] = (
                    summary.by_regime.get(record.volatility_regime, 0) + 1
                )
        if self._records:
            probs = np.array([r.probability for r in self._records], dtype=np.float64)
            imputed = np.array([r.imputed_count for r in self._records], dtype=np.float64)
            summary.mean_probability = float(np.mean(probs))
            summary.mean_imputed = float(np.mean(imputed))
        return summary

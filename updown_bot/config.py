"""Configuration for the 15-minute up/down signal engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List

from updown_bot.feature_engine import ASSET_ORDINALS, ASSET_THRESHOLDS, BTC, ETH, SOL, XRP
from updown_bot.model_loader import extract_asset
from updown_bot.price_buffer import WINDOW_MINUTES


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _as_int_csv(value: str | None, default: List[int]) -> List[int]:
    parts = _as_csv(value)
    if not parts:
        return list(default)
    return [int(p) for p in parts]


@dataclass(frozen=True)
class UpdownSettings:
    """Settings for the signal engine.

    All env vars are prefixed with ``UPDOWN_``.
    """

    # ── Model artifacts ──────────────────────────────────────────
    model_path: str = "./models/updown_model.json"
    imputation_path: str = "./models/updown_imputations.json"

    # ── Symbols (exchange pairs; asset derived by stripping the quote) ──
    symbols: List[str] = field(
        default_factory=lambda: ["BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT"],
    )

    # ── Signal rule ──────────────────────────────────────────────
    # Early minutes carry most of the predictive value.
    state_minutes: List[int] = field(default_factory=lambda: [0, 1, 2])
    yes_threshold: float = 0.70
    no_threshold: float = 0.30

    # ── Threshold-hit levels (fraction of window open) ───────────
    threshold_btc: float = ASSET_THRESHOLDS[BTC]   # 8 bps
    threshold_eth: float = ASSET_THRESHOLDS[ETH]   # 10 bps
    threshold_sol: float = ASSET_THRESHOLDS[SOL]   # 20 bps
    threshold_xrp: float = ASSET_THRESHOLDS[XRP]   # 15 bps

    # ── Runtime ──────────────────────────────────────────────────
    log_level: str = "INFO"

    def asset_thresholds(self) -> Dict[str, float]:
        """Injectable asset -> hit threshold map for FeatureEngine."""
        return {
            BTC: self.threshold_btc,
            ETH: self.threshold_eth,
            SOL: self.threshold_sol,
            XRP: self.threshold_xrp,
        }


def load_settings() -> UpdownSettings:
    """Build settings from ``UPDOWN_*`` environment variables."""
    defaults = UpdownSettings()
    return UpdownSettings(
        model_path=os.getenv("UPDOWN_MODEL_PATH", defaults.model_path),
        imputation_path=os.getenv("UPDOWN_IMPUTATION_PATH", defaults.imputation_path),
        symbols=[s.upper() for s in _as_csv(os.getenv("UPDOWN_SYMBOLS"))] or defaults.symbols,
        state_minutes=_as_int_csv(os.getenv("UPDOWN_STATE_MINUTES"), defaults.state_minutes),
        yes_threshold=_as_float(os.getenv("UPDOWN_YES_THRESHOLD"), defaults.yes_threshold),
        no_threshold=_as_float(os.getenv("UPDOWN_NO_THRESHOLD"), defaults.no_threshold),
        threshold_btc=_as_float(os.getenv("UPDOWN_THRESHOLD_BTC"), defaults.threshold_btc),
        threshold_eth=_as_float(os.getenv("UPDOWN_THRESHOLD_ETH"), defaults.threshold_eth),
        threshold_sol=_as_float(os.getenv("UPDOWN_THRESHOLD_SOL"), defaults.threshold_sol),
        threshold_xrp=_as_float(os.getenv("UPDOWN_THRESHOLD_XRP"), defaults.threshold_xrp),
        log_level=os.getenv("UPDOWN_LOG_LEVEL", defaults.log_level),
    )


def validate_settings(settings: UpdownSettings) -> List[str]:
    """Return a list of human-readable problems; empty when valid."""
    issues: List[str] = []

    if not 0 <= settings.yes_threshold <= 1:
        issues.append("yes_threshold must be between 0 and 1")
    if not 0 <= settings.no_threshold <= 1:
        issues.append("no_threshold must be between 0 and 1")
    if settings.no_threshold >= settings.yes_threshold:
        issues.append("no_threshold must be less than yes_threshold")
    if any(m < 0 or m >= WINDOW_MINUTES for m in settings.state_minutes):
        issues.append(f"state_minutes values must be between 0 and {WINDOW_MINUTES - 1}")
    if not settings.symbols:
        issues.append("symbols cannot be empty")
    for symbol in settings.symbols:
        asset = extract_asset(symbol)
        if asset not in ASSET_ORDINALS:
            issues.append(f"unsupported symbol {symbol} (asset {asset})")
    for asset, threshold in settings.asset_thresholds().items():
        if threshold <= 0:
            issues.append(f"threshold for {asset} must be positive")

    return issues

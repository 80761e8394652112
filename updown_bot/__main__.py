"""CLI entry point: replay recorded prices through the signal engine.

Usage::

    python3 -m updown_bot --prices prices.csv
    python3 -m updown_bot --prices prices.csv --output signals.csv -v
    python3 -m updown_bot --prices prices.csv --symbols BTCUSDT ETHUSDT --no-imputations
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from updown_bot.config import UpdownSettings, load_settings, validate_settings
from updown_bot.logging_setup import configure_logging
from updown_bot.model_loader import load_models, load_models_with_imputations
from updown_bot.replay import SignalReplay, read_price_csv
from updown_bot.signal_log import SignalLog

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python3 -m updown_bot",
        description="Replay recorded crypto prices through the 15-minute up/down signal engine",
    )
    parser.add_argument(
        "--prices", required=True,
        help="CSV with symbol,timestamp_ms,price columns, in timestamp order",
    )
    parser.add_argument(
        "--model", default=None,
        help="Model JSON artifact (default: UPDOWN_MODEL_PATH)",
    )
    parser.add_argument(
        "--imputations", default=None,
        help="Imputation JSON artifact (default: UPDOWN_IMPUTATION_PATH)",
    )
    parser.add_argument(
        "--no-imputations", action="store_true",
        help="Load models without training medians (missing features become 0)",
    )
    parser.add_argument(
        "--symbols", nargs="+", default=None,
        help="Exchange symbols to track (e.g. BTCUSDT ETHUSDT)",
    )
    parser.add_argument(
        "--yes-threshold", type=float, default=None,
        help="Probability at or above which a YES signal is raised (default: 0.70)",
    )
    parser.add_argument(
        "--no-threshold", type=float, default=None,
        help="Probability at or below which a NO signal is raised (default: 0.30)",
    )
    parser.add_argument(
        "--output", default=None,
        help="Path to append the signal log CSV",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    return parser


def _apply_overrides(settings: UpdownSettings, args: argparse.Namespace) -> UpdownSettings:
    """Apply CLI argument overrides to settings."""
    overrides = {}

    if args.model is not None:
        overrides["model_path"] = args.model
    if args.imputations is not None:
        overrides["imputation_path"] = args.imputations
    if args.symbols is not None:
        overrides["symbols"] = [s.upper() for s in args.symbols]
    if args.yes_threshold is not None:
        overrides["yes_threshold"] = args.yes_threshold
    if args.no_threshold is not None:
        overrides["no_threshold"] = args.no_threshold
    if args.verbose:
        overrides["log_level"] = "DEBUG"

    if overrides:
        settings = replace(settings, **overrides)
    return settings


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit code."""
    args = _build_parser().parse_args(argv)

    settings = _apply_overrides(load_settings(), args)
    configure_logging(settings.log_level)

    issues = validate_settings(settings)
    if issues:
        for issue in issues:
            print(f"Config error: {issue}", file=sys.stderr)
        return 2

    try:
        if args.no_imputations:
            registry = load_models(settings.model_path)
        else:
            registry = load_models_with_imputations(settings.model_path, settings.imputation_path)
    except (OSError, ValueError) as exc:
        LOGGER.error("Failed to load model artifacts: %s", exc)
        print(f"Error: could not load models: {exc}", file=sys.stderr)
        return 1

    signal_log = SignalLog(args.output) if args.output else None
    try:
        replay = SignalReplay(registry, settings, signal_log=signal_log)
        summary = replay.run(read_price_csv(args.prices))
    except (OSError, ValueError) as exc:
        LOGGER.error("Replay failed: %s", exc)
        print(f"Error: replay failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if signal_log is not None:
            signal_log.close()

    print(f"\n{'='*60}")
    print("Up/Down Signal Replay Summary")
    print(f"{'='*60}")
    print(f"Ticks:       {summary.ticks} ({summary.skipped_ticks} skipped)")
    print(f"Scored:      {summary.records}")
    print(f"YES signals: {summary.signals['YES']}")
    print(f"NO signals:  {summary.signals['NO']}")
    if summary.records:
        print(f"Mean prob:   {summary.mean_probability:.4f}")
        print(f"Mean imputed features: {summary.mean_imputed:.2f}")
    for regime, count in sorted(summary.by_regime.items()):
        print(f"Regime {regime:<5} {count}")
    if args.output:
        print(f"Signal log:  {args.output}")
    print(f"{'='*60}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Load exported logistic regression artifacts.

Two JSON files come out of the training pipeline:

* model file::

    {"version": "1.2.0",
     "symbols": [{"symbol": "BTCUSDT", "coefficients": [...],
                  "intercept": -0.1, "feature_columns": [...]}]}

* imputation file (training medians per symbol)::

    {"BTCUSDT": {"return_1m": 0.0, "volatility_5m": 0.0009}}

Anything structurally wrong fails the load with a ValueError that names
the offending entry; nothing is defaulted silently.
"""

from __future__ import annotations

import json
import logging
import math
import numbers
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from updown_bot.lr_model import LRModel, ModelConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL_VERSION = "1.0.0"

# Longest first so "BTCUSDT" never strips to "BTCUS".
QUOTE_CURRENCIES = ("USDT", "BUSD", "USDC", "USD")

PathLike = Union[str, Path]
Imputations = Dict[str, Dict[str, float]]


def extract_asset(symbol: str) -> str:
    """``BTCUSDT`` -> ``BTC``; symbols without a known quote pass through."""
    for quote in QUOTE_CURRENCIES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)]
    return symbol


class ModelRegistry:
    """Symbol -> LRModel container.

    Owns the models it holds; lookups are by exact symbol string.  The
    models themselves are immutable, so handing them out is safe.
    """

    def __init__(self, models: Optional[Mapping[str, LRModel]] = None) -> None:
        self._models: Dict[str, LRModel] = {}
        for symbol, model in (models or {}).items():
            self.add(symbol, model)

    def add(self, symbol: str, model: LRModel) -> None:
        if symbol in self._models:
            raise ValueError(f"Duplicate model for symbol {symbol!r}")
        self._models[symbol] = model

    def get(self, symbol: str) -> Optional[LRModel]:
        return self._models.get(symbol)

    def __getitem__(self, symbol: str) -> LRModel:
        return self._models[symbol]

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._models

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    @property
    def symbols(self) -> List[str]:
        return list(self._models)


# ── file access ──────────────────────────────────────────────────


def _read_json(path: PathLike, description: str) -> Any:
    text = Path(path).read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse {description} JSON: {exc}") from exc


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, numbers.Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


# ── validation ───────────────────────────────────────────────────


def _validate_symbol_entry(entry: Any, index: int) -> None:
    if not isinstance(entry, dict):
        raise ValueError(f"Symbol entry at index {index} must be an object")

    symbol = entry.get("symbol")
    if not isinstance(symbol, str) or not symbol:
        raise ValueError(f'Symbol entry at index {index} must have a non-empty "symbol" string')

    coefficients = entry.get("coefficients")
    if not isinstance(coefficients, list) or not coefficients:
        raise ValueError(f'Symbol "{symbol}" must have a non-empty "coefficients" array')
    for j, coef in enumerate(coefficients):
        if not _is_finite_number(coef):
            raise ValueError(f'Symbol "{symbol}" coefficient at index {j} must be a finite number')

    if not _is_finite_number(entry.get("intercept")):
        raise ValueError(f'Symbol "{symbol}" must have a finite "intercept" number')

    columns = entry.get("feature_columns")
    if not isinstance(columns, list) or not columns:
        raise ValueError(f'Symbol "{symbol}" must have a non-empty "feature_columns" array')
    if len(columns) != len(coefficients):
        raise ValueError(
            f'Symbol "{symbol}" coefficients length ({len(coefficients)}) must match '
            f"feature_columns length ({len(columns)})"
        )
    for j, column in enumerate(columns):
        if not isinstance(column, str) or not column:
            raise ValueError(
                f'Symbol "{symbol}" feature_column at index {j} must be a non-empty string'
            )


def parse_model_file(data: Any) -> List[Dict[str, Any]]:
    """Validate a decoded model artifact; returns its symbol entries."""
    if not isinstance(data, dict):
        raise ValueError("Model file must be a JSON object")
    symbols = data.get("symbols")
    if not isinstance(symbols, list):
        raise ValueError('Model file must have a "symbols" array')
    if not symbols:
        raise ValueError('Model file "symbols" array cannot be empty')
    version = data.get("version")
    if version is not None and (not isinstance(version, str) or not version):
        raise ValueError('Model file "version" must be a non-empty string when present')
    for i, entry in enumerate(symbols):
        _validate_symbol_entry(entry, i)
    return symbols


def parse_imputation_file(data: Any) -> Imputations:
    """Validate a decoded imputation artifact; returns a fresh copy."""
    if not isinstance(data, dict):
        raise ValueError("Imputation file must be a JSON object")
    if not data:
        raise ValueError("Imputation file cannot be empty")

    result: Imputations = {}
    for symbol, medians in data.items():
        if not isinstance(medians, dict):
            raise ValueError(f'Imputation for symbol "{symbol}" must be an object')
        for feature, value in medians.items():
            if not _is_finite_number(value):
                raise ValueError(
                    f'Imputation value for "{symbol}.{feature}" must be a finite number, got {value!r}'
                )
        result[symbol] = {feature: float(value) for feature, value in medians.items()}
    return result


def _create_model(
    entry: Mapping[str, Any],
    version: str,
    medians: Optional[Mapping[str, float]] = None,
) -> LRModel:
    config = ModelConfig.create(
        version=version,
        asset=extract_asset(entry["symbol"]),
        feature_columns=entry["feature_columns"],
        coefficients=entry["coefficients"],
        intercept=entry["intercept"],
        feature_medians=medians or {},
    )
    return LRModel(config)


# ── loaders ──────────────────────────────────────────────────────


def load_models(path: PathLike) -> ModelRegistry:
    """Load models without imputation medians.

    Missing features will be imputed with 0; production code should use
    ``load_models_with_imputations``.
    """
    data = _read_json(path, "model")
    entries = parse_model_file(data)
    version = data.get("version") or DEFAULT_MODEL_VERSION

    registry = ModelRegistry()
    for entry in entries:
        registry.add(entry["symbol"], _create_model(entry, version))

    LOGGER.info("Loaded %d models (version %s) from %s", len(registry), version, path)
    return registry


def load_models_with_imputations(model_path: PathLike, imputation_path: PathLike) -> ModelRegistry:
    """Load models with their training medians merged in.

    Every modelled symbol must have a non-empty imputation entry.
    """
    model_data = _read_json(model_path, "model")
    imputation_data = _read_json(imputation_path, "imputation")

    entries = parse_model_file(model_data)
    imputations = parse_imputation_file(imputation_data)
    version = model_data.get("version") or DEFAULT_MODEL_VERSION

    registry = ModelRegistry()
    for entry in entries:
        symbol = entry["symbol"]
        medians = imputations.get(symbol)
        if not medians:
            raise ValueError(f'No imputation values found for symbol "{symbol}"')
        registry.add(symbol, _create_model(entry, version, medians))

    LOGGER.info(
        "Loaded %d models (version %s) from %s with imputations from %s",
        len(registry), version, model_path, imputation_path,
    )
    return registry


def load_imputations(path: PathLike) -> Imputations:
    """Load the symbol -> {feature: median} table on its own."""
    return parse_imputation_file(_read_json(path, "imputation"))

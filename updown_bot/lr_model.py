"""Logistic regression scorer for 15-minute up/down markets.

Inference only: coefficients, intercept, and per-feature training medians
come from an exported artifact (see ``model_loader``).

    z = intercept + sum(coef[i] * feature[i])
    p = 1 / (1 + exp(-z))

Missing or NaN features are replaced by the training median (0 when no
median was exported) and counted, so callers can decide how much to
trust a prediction built on imputed inputs.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Sequence, Tuple, Union

LOGGER = logging.getLogger(__name__)

# exp(-20) ~ 2e-9: beyond these bounds the sigmoid is pinned.
SIGMOID_UPPER_BOUND = 20.0
SIGMOID_LOWER_BOUND = -20.0

DEFAULT_MISSING_FEATURE_VALUE = 0.0

FeatureValue = Union[float, int, bool]


@dataclass(frozen=True)
class ModelConfig:
    """Validated model parameters.

    Construct through ``ModelConfig.create`` (or ``LRModel``) so the
    sequences are frozen into tuples and the medians into a read-only
    mapping.
    """

    version: str
    asset: str
    feature_columns: Tuple[str, ...]
    coefficients: Tuple[float, ...]
    intercept: float
    feature_medians: Mapping[str, float]

    @classmethod
    def create(
        cls,
        version: str,
        asset: str,
        feature_columns: Sequence[str],
        coefficients: Sequence[float],
        intercept: float,
        feature_medians: Mapping[str, float] | None = None,
    ) -> "ModelConfig":
        medians = dict(feature_medians or {})
        _validate(version, asset, feature_columns, coefficients, intercept, medians)
        return cls(
            version=version,
            asset=asset,
            feature_columns=tuple(feature_columns),
            coefficients=tuple(float(c) for c in coefficients),
            intercept=float(intercept),
            feature_medians=MappingProxyType({k: float(v) for k, v in medians.items()}),
        )


@dataclass(frozen=True)
class PredictionResult:
    """Output of a single model evaluation."""

    probability: float        # P(up) in [0, 1]
    imputed_count: int        # features replaced by their median
    linear_combination: float  # z before the sigmoid


def sigmoid(z: float) -> float:
    """Logistic function pinned to 0/1 outside [-20, 20]."""
    if z > SIGMOID_UPPER_BOUND:
        return 1.0
    if z < SIGMOID_LOWER_BOUND:
        return 0.0
    return 1.0 / (1.0 + math.exp(-z))


class LRModel:
    """Stateless logistic regression scorer.

    Accepts a ``ModelConfig`` (already validated) or the raw fields as
    keyword arguments, which are validated here.  Raises ValueError for
    any malformed parameter.
    """

    def __init__(self, config: ModelConfig | None = None, **fields: Any) -> None:
        if config is None:
            config = ModelConfig.create(**fields)
        elif fields:
            raise ValueError("Pass either a ModelConfig or raw fields, not both")
        elif not isinstance(config, ModelConfig):
            raise ValueError("Model config is required")
        else:
            # Revalidate: a ModelConfig can be built directly, bypassing create().
            config = ModelConfig.create(
                config.version,
                config.asset,
                config.feature_columns,
                config.coefficients,
                config.intercept,
                config.feature_medians,
            )
        self._config = config

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def asset(self) -> str:
        return self._config.asset

    @property
    def version(self) -> str:
        return self._config.version

    @property
    def feature_columns(self) -> Tuple[str, ...]:
        return self._config.feature_columns

    def predict(self, features: Mapping[str, FeatureValue]) -> PredictionResult:
        """Score a feature map.

        Columns are visited in ``feature_columns`` order so the sum is
        reproducible bit for bit across runs.
        """
        cfg = self._config
        z = cfg.intercept
        imputed = 0

        for column, coefficient in zip(cfg.feature_columns, cfg.coefficients):
            raw = features.get(column)
            if raw is None or _is_nan(raw):
                value = cfg.feature_medians.get(column, DEFAULT_MISSING_FEATURE_VALUE)
                imputed += 1
            elif isinstance(raw, bool):
                value = 1.0 if raw else 0.0
            else:
                value = float(raw)
            z += coefficient * value

        if imputed:
            LOGGER.debug(
                "LRModel[%s]: imputed %d/%d features",
                cfg.asset, imputed, len(cfg.feature_columns),
            )

        return PredictionResult(
            probability=sigmoid(z),
            imputed_count=imputed,
            linear_combination=z,
        )


# ── validation ───────────────────────────────────────────────────


def _is_nan(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isnan(value)
    except TypeError:
        return True


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, numbers.Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _require_string(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"Model config must have a non-empty {name} string")


def _require_sequence(value: Any, name: str) -> None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) == 0:
        raise ValueError(f"Model config must have non-empty {name} array")


def _validate(
    version: Any,
    asset: Any,
    feature_columns: Any,
    coefficients: Any,
    intercept: Any,
    medians: Mapping[str, Any],
) -> None:
    _require_string(version, "version")
    _require_string(asset, "asset")
    _require_sequence(feature_columns, "feature_columns")
    _require_sequence(coefficients, "coefficients")

    if len(feature_columns) != len(coefficients):
        raise ValueError(
            f"Feature columns length ({len(feature_columns)}) must match "
            f"coefficients length ({len(coefficients)})"
        )

    if not _is_finite_number(intercept):
        raise ValueError("Model config intercept must be a finite number")

    for i, coef in enumerate(coefficients):
        if not _is_finite_number(coef):
            raise ValueError(f"Model config coefficient at index {i} must be a finite number")

    for i, column in enumerate(feature_columns):
        _require_string(column, f"feature column at index {i}")

    for key, value in medians.items():
        if not _is_finite_number(value):
            raise ValueError(f"Model config feature median for {key!r} must be a finite number")

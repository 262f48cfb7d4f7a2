"""
Configuration module for the Financial Inference engine.

All tuneable parameters (thresholds, paths, feature flags) live here.
Nothing is hard-coded in business logic modules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from financial_inference.schema import TimeGranularity


@dataclass(frozen=True)
class ClassifierConfig:
    """Controls column and sheet classification."""

    # Number of non-empty values sampled from each column
    sample_size: int = 100

    # Fraction of sampled values that must parse for value-checked rules
    date_ratio: float = 0.8
    amount_ratio: float = 0.8
    direction_ratio: float = 0.7
    period_ratio: float = 0.8
    status_ratio: float = 0.7

    # Columns (and sheets) scoring below this are flagged for human review
    low_confidence_threshold: float = 70.0

    # Fuzzy header suggestions for unknown columns (0–100 rapidfuzz score)
    fuzzy_threshold: float = 80.0

    # If two suggested semantic types are within this delta of each other,
    # the suggestion is logged as ambiguous.
    fuzzy_ambiguity_delta: float = 5.0


@dataclass(frozen=True)
class NormalizationConfig:
    """Controls row extraction and time bucketing."""

    granularity: TimeGranularity = TimeGranularity.MONTHLY

    # When True the bucket granularity is inferred from the median gap
    # between consecutive transaction dates instead of ``granularity``.
    infer_granularity: bool = False

    # Allowed drift between a bucket's net cash and its transactions' sum
    bucket_epsilon: float = 0.01


@dataclass(frozen=True)
class CalculationConfig:
    """Controls the deterministic calculation engine."""

    # Variance within +/- this percentage is classified as neutral
    neutral_band_percent: float = 5.0

    # Days per month used when converting daily burn into months of runway
    days_per_month: float = 30.0


@dataclass(frozen=True)
class ValidationConfig:
    """Controls the validation layer."""

    # Maximum allowed transaction amount; catches obvious unit errors
    max_absolute_value: float = 1e15

    # When True, zero-amount transactions produce a warning
    warn_on_zero_amount: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration aggregating all sub-configs."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    calculation: CalculationConfig = field(default_factory=CalculationConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    log_level: int = logging.INFO
    log_file: Optional[Path] = None

    # Separate plain-text copy of every audit trail entry
    audit_log_file: Optional[Path] = None

    # Optional path to a user-supplied keyword JSON file that is *merged*
    # with the built-in keyword vocabulary.
    custom_keyword_path: Optional[Path] = None

    # When True the pipeline raises if model validation reports errors
    # instead of returning the model with the errors attached.
    strict_mode: bool = False

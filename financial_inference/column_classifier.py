"""
Column Semantic Classifier.

Assigns each column a business-meaning label (date, amount, entity, ...)
from its header text and a bounded sample of its values.

Rules are evaluated in a fixed order and the first one that fires wins:

==============  ===========================================  ==========
semantic type   condition                                    confidence
==============  ===========================================  ==========
date            date keyword AND ≥80 % values parse as dates   95 × ratio
amount          amount keyword AND ≥80 % values numeric        90 × ratio
entity          entity keyword                                 85
category        category keyword                               80
direction       direction keyword AND ≥70 % direction tokens   85 × ratio
period          period keyword AND ≥80 % period labels         80 × ratio
status          status keyword AND ≥70 % status tokens         75 × ratio
reference       reference keyword                              65
description     description keyword                            60
unknown         nothing fired                                  0
==============  ===========================================  ==========

``ratio`` is the fraction of sampled non-empty values that passed the
rule's value check, so a fully valid column always outscores a partially
valid one.  Header keywords are checked before values: an ID column full
of numbers is not an amount unless its header says so.

Unknown columns get a fuzzy ``suggested_mapping`` for human review.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence

from financial_inference.cell_normalizer import CellNormalizer
from financial_inference.config import ClassifierConfig
from financial_inference.fuzzy_matcher import FuzzyMatcher
from financial_inference.keywords import DIRECTION_TOKENS, STATUS_TOKENS, KeywordTable
from financial_inference.logging_setup import get_logger
from financial_inference.schema import ColumnInference, RawSheet, SemanticType

logger = get_logger("column_classifier")


class ColumnClassifier:
    """Classify columns by semantic role with a confidence score.

    Parameters
    ----------
    config:
        Sample size and value-ratio thresholds.
    keywords:
        Header keyword vocabulary.
    normalizer:
        Header / cell normaliser; a default instance is created if omitted.
    fuzzy:
        Suggestion layer for unknown columns; built from *keywords* if omitted.
    """

    def __init__(
        self,
        config: ClassifierConfig,
        keywords: KeywordTable,
        normalizer: Optional[CellNormalizer] = None,
        fuzzy: Optional[FuzzyMatcher] = None,
    ) -> None:
        self._config = config
        self._keywords = keywords
        self._normalizer = normalizer or CellNormalizer()
        self._fuzzy = fuzzy or FuzzyMatcher(config, keywords)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def classify(
        self,
        header: str,
        values: Sequence[Any],
        column_key: Optional[str] = None,
    ) -> ColumnInference:
        """Classify one column from its header and values.

        Only the first ``sample_size`` non-empty values are inspected.
        """
        norm = self._normalizer.normalize_header(header)
        sample = [v for v in values if v is not None and v != ""][: self._config.sample_size]
        key = column_key if column_key is not None else self._normalizer.header_key(header)

        semantic_type, confidence = self._apply_rules(norm, sample)

        suggestion: Optional[str] = None
        if semantic_type == SemanticType.UNKNOWN:
            candidate = self._fuzzy.match(norm)
            if candidate is not None:
                suggestion = candidate.semantic_type.value

        logger.debug(
            "Column %r → %s (confidence=%.1f, sample=%d, suggestion=%s)",
            header, semantic_type.value, confidence, len(sample), suggestion,
        )
        return ColumnInference(
            column_name=header,
            column_key=key,
            semantic_type=semantic_type,
            confidence=confidence,
            suggested_mapping=suggestion,
        )

    def classify_sheet(self, sheet: RawSheet) -> List[ColumnInference]:
        """Classify every column of a parsed sheet, in header order."""
        return [
            self.classify(header, sheet.column_values(key, self._config.sample_size), key)
            for header, key in zip(sheet.headers, sheet.keys)
        ]

    # ------------------------------------------------------------------ #
    # Rules
    # ------------------------------------------------------------------ #

    def _apply_rules(
        self, norm: str, sample: List[Any]
    ) -> tuple[SemanticType, float]:
        cfg = self._config
        kw = self._keywords

        if kw.matches("column.date", norm):
            ratio = _ratio(sample, self._is_date)
            if ratio >= cfg.date_ratio:
                return SemanticType.DATE, round(95.0 * ratio, 2)

        if kw.matches("column.amount", norm):
            ratio = _ratio(sample, self._is_number)
            if ratio >= cfg.amount_ratio:
                return SemanticType.AMOUNT, round(90.0 * ratio, 2)

        if kw.matches("column.entity", norm):
            return SemanticType.ENTITY, 85.0

        if kw.matches("column.category", norm):
            return SemanticType.CATEGORY, 80.0

        if kw.matches("column.direction", norm):
            ratio = _ratio(sample, lambda v: _token(v) in DIRECTION_TOKENS)
            if ratio >= cfg.direction_ratio:
                return SemanticType.DIRECTION, round(85.0 * ratio, 2)

        if kw.matches("column.period", norm):
            ratio = _ratio(sample, self._normalizer.is_period_label)
            if ratio >= cfg.period_ratio:
                return SemanticType.PERIOD, round(80.0 * ratio, 2)

        if kw.matches("column.status", norm):
            ratio = _ratio(sample, lambda v: _token(v) in STATUS_TOKENS)
            if ratio >= cfg.status_ratio:
                return SemanticType.STATUS, round(75.0 * ratio, 2)

        if kw.matches("column.reference", norm):
            return SemanticType.REFERENCE, 65.0

        if kw.matches("column.description", norm):
            return SemanticType.DESCRIPTION, 60.0

        return SemanticType.UNKNOWN, 0.0

    def _is_date(self, value: Any) -> bool:
        return self._normalizer.parse_date(value) is not None

    def _is_number(self, value: Any) -> bool:
        return self._normalizer.to_number(value) is not None


def _ratio(sample: List[Any], check: Callable[[Any], bool]) -> float:
    """Fraction of *sample* passing *check*; 0.0 for an empty sample."""
    if not sample:
        return 0.0
    return sum(1 for v in sample if check(v)) / len(sample)


def _token(value: Any) -> str:
    return str(value).strip().lower()

"""
Fuzzy Header Suggestion Layer.

When no keyword rule classifies a column, this layer uses ``rapidfuzz`` to
find the closest keyword in the column vocabulary and *suggests* its
semantic type (it never assigns one).  Results are confidence-gated:

* Matches **below** ``fuzzy_threshold`` are rejected outright.
* If the runner-up points to a different semantic type and is within
  ``fuzzy_ambiguity_delta`` of the best score, the suggestion is flagged as
  ambiguous and a warning is logged instead of silently picking one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from rapidfuzz import fuzz, process

from financial_inference.config import ClassifierConfig
from financial_inference.keywords import COLUMN_SLOTS, KeywordTable
from financial_inference.logging_setup import get_logger
from financial_inference.schema import SemanticType

logger = get_logger("fuzzy_matcher")

# Keywords this short are token-matched only and make poor fuzzy targets
_MIN_TARGET_LEN = 4


@dataclass
class FuzzyCandidate:
    """A single suggestion returned by the fuzzy matcher."""

    semantic_type: SemanticType
    keyword: str
    score: float  # 0–100
    is_ambiguous: bool = False


class FuzzyMatcher:
    """Fuzzy-match a normalised header against the column keyword vocabulary.

    Parameters
    ----------
    config:
        Classifier thresholds (``fuzzy_threshold``, ``fuzzy_ambiguity_delta``).
    keywords:
        The keyword table whose column slots form the target pool.
    """

    def __init__(self, config: ClassifierConfig, keywords: KeywordTable) -> None:
        self._config = config

        # Build target pool: keyword → semantic type (first slot wins)
        self._targets: dict[str, SemanticType] = {}
        for semantic_type, slot in COLUMN_SLOTS.items():
            for kw in keywords.keywords(slot):
                if len(kw) >= _MIN_TARGET_LEN and kw not in self._targets:
                    self._targets[kw] = semantic_type

        self._target_keys: list[str] = list(self._targets.keys())

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def match(self, normalised_header: str) -> Optional[FuzzyCandidate]:
        """Find the best keyword for *normalised_header*.

        Returns
        -------
        FuzzyCandidate | None
            Best suggestion above threshold, or ``None`` if nothing qualifies.
        """
        if not normalised_header or not self._target_keys:
            return None

        # token_sort_ratio is robust against word-order differences
        results = process.extract(
            normalised_header,
            self._target_keys,
            scorer=fuzz.token_sort_ratio,
            limit=5,
        )

        if not results:
            logger.debug("No fuzzy candidates for %r", normalised_header)
            return None

        best_key, best_score, _ = results[0]

        if best_score < self._config.fuzzy_threshold:
            logger.debug(
                "Fuzzy best for %r is %r (%.1f) below threshold %.1f; rejected",
                normalised_header,
                best_key,
                best_score,
                self._config.fuzzy_threshold,
            )
            return None

        best_type = self._targets[best_key]
        is_ambiguous = False
        for other_key, other_score, _ in results[1:]:
            if self._targets[other_key] == best_type:
                continue
            if best_score - other_score <= self._config.fuzzy_ambiguity_delta:
                is_ambiguous = True
                logger.warning(
                    "Ambiguous header suggestion for %r: best=%r (%.1f), "
                    "runner-up=%r (%.1f)",
                    normalised_header,
                    best_key,
                    best_score,
                    other_key,
                    other_score,
                )
            break

        logger.info(
            "Header suggestion: %r → %s via %r (score=%.1f, ambiguous=%s)",
            normalised_header,
            best_type.value,
            best_key,
            best_score,
            is_ambiguous,
        )

        return FuzzyCandidate(
            semantic_type=best_type,
            keyword=best_key,
            score=best_score,
            is_ambiguous=is_ambiguous,
        )

    def match_batch(
        self, headers: List[str]
    ) -> dict[str, Optional[FuzzyCandidate]]:
        """Match multiple headers.  Returns ``{header: candidate}``."""
        return {h: self.match(h) for h in headers}

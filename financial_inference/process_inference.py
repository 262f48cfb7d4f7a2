"""
Process Inference Engine.

Picks the single business process a file most likely represents by
counting indicator keywords in its sheet names:

1. any budget indicator                        → ``budget_actual`` (90)
2. more inflow than outflow indicators         → ``revenue_ar``    (85)
3. more outflow than inflow indicators         → ``ap_expense``    (85)
4. any fund indicator                          → ``fund_ops``      (80)
5. otherwise                                   → ``mixed_ops``     (70)

The chosen process then decides which vocabulary is used to derive the
inflow / outflow source tags the normalizer resolves direction with.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional, Sequence

from financial_inference.audit import AuditLogger
from financial_inference.cell_normalizer import CellNormalizer
from financial_inference.config import NormalizationConfig
from financial_inference.errors import FinancialInferenceError, ProcessInferenceError
from financial_inference.keywords import KeywordTable, sources_slot
from financial_inference.logging_setup import get_logger
from financial_inference.schema import (
    AuditEventType,
    ProcessDefinition,
    ProcessType,
    RawSheet,
    SchemaInference,
    SemanticType,
)
from financial_inference import bucketing

logger = get_logger("process_inference")

# Tag used when no source keyword matched; never used for direction matching
FALLBACK_SOURCE = "other"

_REASONING: Dict[ProcessType, str] = {
    ProcessType.BUDGET_ACTUAL: "Detected budget/actual variance analysis structure",
    ProcessType.REVENUE_AR: (
        "Detected inflow-focused process with transaction patterns typical of revenue/AR"
    ),
    ProcessType.AP_EXPENSE: "Detected outflow-focused process with expense/AP patterns",
    ProcessType.FUND_OPS: "Detected fund operations structure with inflows and outflows",
    ProcessType.MIXED_OPS: (
        "Detected mixed operational finance with both inflows and outflows"
    ),
}

_DIMENSIONS = ("department", "project", "fund", "entity", "client", "vendor")


class ProcessInferenceEngine:
    """Infer a ``ProcessDefinition`` from a file's schema.

    Parameters
    ----------
    keywords:
        Indicator, source and dimension vocabularies.
    audit:
        Receives the ``process_detected`` entry.
    config:
        Granularity default and whether to infer it from the data.
    """

    def __init__(
        self,
        keywords: KeywordTable,
        audit: AuditLogger,
        config: Optional[NormalizationConfig] = None,
        normalizer: Optional[CellNormalizer] = None,
    ) -> None:
        self._keywords = keywords
        self._audit = audit
        self._config = config or NormalizationConfig()
        self._normalizer = normalizer or CellNormalizer()

    def infer(
        self,
        schema: SchemaInference,
        sheets: Sequence[RawSheet] = (),
    ) -> ProcessDefinition:
        """Choose the process type and derive its sign-resolution vocabulary.

        *sheets* is only read when granularity inference is enabled.
        """
        try:
            definition = self._infer(schema, sheets)
        except FinancialInferenceError as exc:
            self._record_failure(exc)
            raise
        except Exception as exc:
            self._record_failure(exc)
            raise ProcessInferenceError(f"Process inference failed: {exc}") from exc

        schema.recommended_process_type = definition.process_type
        self._audit.add_entry(
            AuditEventType.PROCESS_DETECTED,
            f"Detected process type: {definition.process_type.value}",
            {
                "process_type": definition.process_type.value,
                "confidence": definition.confidence,
                "reasoning": definition.inference_reasoning,
                "time_granularity": definition.time_granularity.value,
                "inflow_sources": sorted(definition.inflow_sources),
                "outflow_sources": sorted(definition.outflow_sources),
                "entity_dimensions": sorted(definition.entity_dimensions),
            },
        )
        return definition

    def count_indicators(self, schema: SchemaInference) -> Dict[str, int]:
        """Number of sheet names matching each indicator vocabulary."""
        counts: Dict[str, int] = {}
        for kind in ("inflow", "outflow", "budget", "fund"):
            slot = f"indicator.{kind}"
            counts[kind] = sum(
                1 for s in schema.sheets if self._keywords.matches(slot, s.sheet_name)
            )
        return counts

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _infer(
        self, schema: SchemaInference, sheets: Sequence[RawSheet]
    ) -> ProcessDefinition:
        counts = self.count_indicators(schema)
        process_type, confidence = self._decide(counts)
        logger.info(
            "Indicators %s → %s (confidence=%.0f)", counts, process_type.value, confidence
        )

        granularity = self._config.granularity
        if self._config.infer_granularity and sheets:
            inferred = bucketing.infer_granularity(self._sheet_dates(schema, sheets))
            if inferred is not None:
                granularity = inferred

        return ProcessDefinition(
            process_type=process_type,
            time_granularity=granularity,
            inflow_sources=self._sources(schema, process_type, "inflow"),
            outflow_sources=self._sources(schema, process_type, "outflow"),
            entity_dimensions=self._entity_dimensions(schema),
            confidence=confidence,
            inference_reasoning=_REASONING[process_type],
        )

    @staticmethod
    def _decide(counts: Dict[str, int]) -> tuple[ProcessType, float]:
        inflow, outflow = counts["inflow"], counts["outflow"]
        budget, fund = counts["budget"], counts["fund"]
        if budget > 0:
            return ProcessType.BUDGET_ACTUAL, 90.0
        if inflow > outflow:
            return ProcessType.REVENUE_AR, 85.0
        if outflow > inflow:
            return ProcessType.AP_EXPENSE, 85.0
        if fund > 0:
            return ProcessType.FUND_OPS, 80.0
        return ProcessType.MIXED_OPS, 70.0

    def _sources(
        self, schema: SchemaInference, process_type: ProcessType, side: str
    ) -> frozenset[str]:
        """Source keywords of *process_type* found in sheet names and money headers."""
        slot = sources_slot(process_type, side)
        texts: List[str] = []
        for sheet in schema.sheets:
            texts.append(sheet.sheet_name)
            texts.extend(
                c.column_name
                for c in sheet.column_inferences
                if c.effective_type in (SemanticType.AMOUNT, SemanticType.CATEGORY)
            )

        tags = {
            kw
            for text in texts
            for kw in self._keywords.all_matches(slot, self._normalizer.normalize_header(text))
        }
        return frozenset(tags or {FALLBACK_SOURCE})

    def _entity_dimensions(self, schema: SchemaInference) -> frozenset[str]:
        dims = set()
        for sheet in schema.sheets:
            for column in sheet.columns_of(SemanticType.ENTITY):
                for dim in _DIMENSIONS:
                    if self._keywords.matches(f"dimension.{dim}", column.column_name):
                        dims.add(dim)
        return frozenset(dims)

    def _sheet_dates(
        self, schema: SchemaInference, sheets: Sequence[RawSheet]
    ) -> List[date]:
        by_name = {s.name: s for s in sheets}
        dates: List[date] = []
        for classification in schema.sheets:
            sheet = by_name.get(classification.sheet_name)
            if sheet is None:
                continue
            for column in classification.columns_of(SemanticType.DATE):
                for value in sheet.column_values(column.column_key):
                    parsed = self._normalizer.parse_date(value)
                    if parsed is not None:
                        dates.append(parsed)
        return dates

    def _record_failure(self, exc: Exception) -> None:
        self._audit.add_entry(
            AuditEventType.ERROR_OCCURRED,
            "Process inference failed",
            {},
            str(exc),
        )

"""
Unit tests for the ProcessInferenceEngine.
"""

from __future__ import annotations

from typing import Dict, List

import pytest

from financial_inference.audit import AuditLogger
from financial_inference.column_classifier import ColumnClassifier
from financial_inference.config import ClassifierConfig, NormalizationConfig
from financial_inference.errors import ProcessInferenceError
from financial_inference.file_parser import FileParser
from financial_inference.keywords import KeywordTable
from financial_inference.process_inference import FALLBACK_SOURCE, ProcessInferenceEngine
from financial_inference.schema import (
    AuditEventType,
    ColumnInference,
    FileFormat,
    FileMetadata,
    ProcessType,
    SchemaInference,
    SemanticType,
    SheetClassification,
    SheetType,
    TimeGranularity,
)
from financial_inference.sheet_classifier import SchemaInferenceEngine, SheetClassifier


def _schema(sheets: Dict[str, List[ColumnInference]]) -> SchemaInference:
    return SchemaInference(
        file_metadata=FileMetadata("book.xlsx", FileFormat.WORKBOOK, 0, sheets=list(sheets)),
        sheets=[
            SheetClassification(name, SheetType.UNKNOWN, 0.0, columns)
            for name, columns in sheets.items()
        ],
    )


def _col(name: str, semantic_type: SemanticType) -> ColumnInference:
    return ColumnInference(name, name.lower(), semantic_type, 90.0)


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def engine(audit: AuditLogger) -> ProcessInferenceEngine:
    return ProcessInferenceEngine(KeywordTable(), audit)


# ======================================================================
# Process type decision
# ======================================================================

class TestDecision:
    def test_budget_wins(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"Budget 2024": [], "Sales": [], "Expenses": []}))
        assert result.process_type == ProcessType.BUDGET_ACTUAL
        assert result.confidence == 90.0
        assert result.inference_reasoning == (
            "Detected budget/actual variance analysis structure"
        )

    def test_inflow_majority(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"Sales": [], "Customer Receipts": []}))
        assert result.process_type == ProcessType.REVENUE_AR
        assert result.confidence == 85.0

    def test_outflow_majority(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"AP Expenses": []}))
        assert result.process_type == ProcessType.AP_EXPENSE
        assert result.confidence == 85.0
        assert result.inference_reasoning == (
            "Detected outflow-focused process with expense/AP patterns"
        )

    def test_fund(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"Fund Drawdowns": []}))
        assert result.process_type == ProcessType.FUND_OPS
        assert result.confidence == 80.0

    def test_tie_is_mixed(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"Sales": [], "Expenses": []}))
        assert result.process_type == ProcessType.MIXED_OPS
        assert result.confidence == 70.0

    def test_short_indicator_needs_whole_word(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"Quarterly Report": []}))
        assert result.process_type == ProcessType.MIXED_OPS

    def test_indicator_counts(self, engine: ProcessInferenceEngine) -> None:
        counts = engine.count_indicators(_schema({"AR Aging": [], "Vendor Bills": []}))
        assert counts == {"inflow": 1, "outflow": 1, "budget": 0, "fund": 0}


# ======================================================================
# Sources and dimensions
# ======================================================================

class TestSources:
    def test_outflow_sources_from_sheet_name(self, engine: ProcessInferenceEngine) -> None:
        result = engine.infer(_schema({"AP Expenses": [_col("amount", SemanticType.AMOUNT)]}))
        assert result.outflow_sources == frozenset({"expense"})
        assert result.inflow_sources == frozenset({FALLBACK_SOURCE})

    def test_sources_from_amount_headers(self, engine: ProcessInferenceEngine) -> None:
        schema = _schema({"Ledger": [
            _col("Revenue", SemanticType.AMOUNT),
            _col("Payroll", SemanticType.AMOUNT),
            _col("Rent note", SemanticType.DESCRIPTION),
        ]})
        result = engine.infer(schema)
        assert result.process_type == ProcessType.MIXED_OPS
        assert result.inflow_sources == frozenset({"revenue"})
        assert result.outflow_sources == frozenset({"payroll"})

    def test_category_headers_count(self, engine: ProcessInferenceEngine) -> None:
        schema = _schema({"Ledger": [_col("Capex Category", SemanticType.CATEGORY)]})
        result = engine.infer(schema)
        assert result.outflow_sources == frozenset({"capex"})

    def test_entity_dimensions(self, engine: ProcessInferenceEngine) -> None:
        schema = _schema({"Ledger": [
            _col("Department", SemanticType.ENTITY),
            _col("Supplier", SemanticType.ENTITY),
            _col("Project code", SemanticType.REFERENCE),
        ]})
        result = engine.infer(schema)
        assert result.entity_dimensions == frozenset({"department", "vendor"})


# ======================================================================
# Recording and granularity
# ======================================================================

class TestRecording:
    def test_schema_updated_and_audited(self, engine: ProcessInferenceEngine,
                                        audit: AuditLogger) -> None:
        schema = _schema({"AP Expenses": []})
        engine.infer(schema)

        assert schema.recommended_process_type == ProcessType.AP_EXPENSE
        (entry,) = audit.of_type(AuditEventType.PROCESS_DETECTED)
        assert entry.details["process_type"] == "ap_expense"
        assert entry.details["confidence"] == 85.0
        assert entry.details["time_granularity"] == "monthly"

    def test_default_granularity_is_monthly(self, engine: ProcessInferenceEngine) -> None:
        assert engine.infer(_schema({"Sheet1": []})).time_granularity == TimeGranularity.MONTHLY

    def test_granularity_inferred_from_dates(self, audit: AuditLogger) -> None:
        content = "date,amount\n" + "".join(
            f"2024-01-{day:02d},{day}\n" for day in range(1, 11)
        )
        parsed = FileParser(audit).parse_bytes(content.encode(), "daily.csv")
        config = ClassifierConfig()
        keywords = KeywordTable()
        schema = SchemaInferenceEngine(
            ColumnClassifier(config, keywords), SheetClassifier(config, keywords), audit, config,
        ).infer(parsed)

        engine = ProcessInferenceEngine(
            keywords, audit, NormalizationConfig(infer_granularity=True)
        )
        result = engine.infer(schema, parsed.sheets)
        assert result.time_granularity == TimeGranularity.DAILY

    def test_unexpected_failure_wrapped(self, engine: ProcessInferenceEngine,
                                        audit: AuditLogger,
                                        monkeypatch: pytest.MonkeyPatch) -> None:
        def boom(schema):
            raise RuntimeError("broken vocabulary")

        monkeypatch.setattr(engine, "count_indicators", boom)
        with pytest.raises(ProcessInferenceError, match="broken vocabulary"):
            engine.infer(_schema({"Sheet1": []}))
        assert audit.has_errors

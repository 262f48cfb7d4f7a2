"""
Unit tests for model serialisation.
"""

from __future__ import annotations

import csv
import json
from datetime import date, datetime
from io import StringIO

import pytest

from financial_inference.audit import AuditLogger
from financial_inference.bucketing import bucket_transactions
from financial_inference.calculations import CalculationEngine
from financial_inference.schema import (
    AuditEventType,
    Direction,
    NormalizedFinancialModel,
    ProcessDefinition,
    ProcessType,
    TimeGranularity,
    Transaction,
)
from financial_inference.serialization import (
    model_summary,
    model_to_csv_summary,
    model_to_dict,
    model_to_json,
)


@pytest.fixture
def model() -> NormalizedFinancialModel:
    transactions = [
        Transaction(id="t1", date=date(2024, 1, 5), amount=1000.0, direction=Direction.INFLOW,
                    source_sheet="default",
                    metadata={"date": datetime(2024, 1, 5), "amount": 1000.0}),
        Transaction(id="t2", date=date(2024, 2, 10), amount=250.0, direction=Direction.OUTFLOW,
                    source_sheet="default",
                    metadata={"date": datetime(2024, 2, 10), "amount": -250.0}),
    ]
    model = NormalizedFinancialModel(
        process_definition=ProcessDefinition(
            process_type=ProcessType.MIXED_OPS,
            time_granularity=TimeGranularity.MONTHLY,
            inflow_sources=frozenset({"revenue"}),
            outflow_sources=frozenset({"other"}),
            entity_dimensions=frozenset(),
            confidence=70.0,
            inference_reasoning="Detected mixed operational finance with both inflows and outflows",
        ),
        transactions=transactions,
        time_buckets=bucket_transactions(transactions, TimeGranularity.MONTHLY),
        skipped_rows=1,
    )
    CalculationEngine().calculate(model)
    return model


class TestJson:
    def test_json_document(self, model: NormalizedFinancialModel) -> None:
        data = json.loads(model_to_json(model))
        assert data["success"] is True
        assert data["process_definition"]["process_type"] == "mixed_ops"
        assert data["process_definition"]["inflow_sources"] == ["revenue"]
        assert data["transactions"][0]["date"] == "2024-01-05"
        assert data["transactions"][0]["metadata"]["date"] == "2024-01-05T00:00:00"
        assert data["time_buckets"][1]["transaction_ids"] == ["t2"]
        assert data["calculated_metrics"]["total_inflows"] == 1000.0

    def test_dict_matches_model(self, model: NormalizedFinancialModel) -> None:
        assert model_to_dict(model) == model.to_dict()


class TestSummary:
    def test_summary_fields(self, model: NormalizedFinancialModel) -> None:
        summary = model_summary(model)
        assert summary["process_type"] == "mixed_ops"
        assert summary["transaction_count"] == 2
        assert summary["time_bucket_count"] == 2
        assert summary["skipped_rows"] == 1
        assert summary["metrics"]["net_cash_flow"] == 750.0

    def test_csv_summary(self, model: NormalizedFinancialModel) -> None:
        rows = list(csv.reader(StringIO(model_to_csv_summary(model))))

        assert rows[0] == ["section", "name", "value"]
        summary = {r[1]: r[2] for r in rows if r and r[0] == "summary"}
        assert summary["process_type"] == "mixed_ops"
        assert summary["transaction_count"] == "2"
        metrics = {r[1]: r[2] for r in rows if r and r[0] == "metric"}
        assert metrics["total_outflows"] == "250.0"
        assert metrics["budget_variance"] == ""
        assert "custom.day_span" in metrics

        header = rows.index(["period", "start_date", "end_date", "inflows", "outflows",
                             "net_cash"])
        assert rows[header + 1] == ["2024-01", "2024-01-05", "2024-01-05",
                                    "1000.0", "0", "1000.0"]
        assert rows[header + 2][0] == "2024-02"

    def test_csv_export_audited(self, model: NormalizedFinancialModel) -> None:
        audit = AuditLogger()
        text = model_to_csv_summary(model, audit)
        (entry,) = audit.of_type(AuditEventType.EXPORT_GENERATED)
        assert entry.details["bytes"] == len(text.encode("utf-8"))
        assert model.audit_trail == []

    def test_exports_do_not_mutate(self, model: NormalizedFinancialModel) -> None:
        before = model.to_dict()
        model_to_json(model)
        model_to_csv_summary(model)
        model_summary(model)
        assert model.to_dict() == before

"""
Model serialisation.

Read-only views of a finished ``NormalizedFinancialModel`` for exporters
and the ingestion boundary: a JSON document of the full model, the audit
trail as a JSON text document, and a single delimited-text summary.
None of these functions mutate the model.
"""

from __future__ import annotations

import csv
import json
from io import StringIO
from typing import Any, Dict, Optional

from financial_inference.audit import AuditLogger, audit_trail_from_text, audit_trail_to_text
from financial_inference.errors import ExportError
from financial_inference.logging_setup import get_logger
from financial_inference.schema import AuditEventType, NormalizedFinancialModel

logger = get_logger("serialization")

__all__ = [
    "audit_trail_from_text",
    "audit_trail_to_text",
    "model_summary",
    "model_to_csv_summary",
    "model_to_dict",
    "model_to_json",
]


def model_to_dict(model: NormalizedFinancialModel) -> Dict[str, Any]:
    """Plain JSON-able dict of the whole model (dates in ISO-8601)."""
    return model.to_dict()


def model_to_json(model: NormalizedFinancialModel, indent: int = 2) -> str:
    """Serialise the model to a JSON string."""
    try:
        return json.dumps(model_to_dict(model), indent=indent, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as exc:
        raise ExportError(f"Model could not be serialised to JSON: {exc}") from exc


def model_summary(model: NormalizedFinancialModel) -> Dict[str, Any]:
    """Headline facts about a model, as returned by the ingestion API."""
    process = model.process_definition
    return {
        "process_type": process.process_type.value,
        "confidence": process.confidence,
        "reasoning": process.inference_reasoning,
        "time_granularity": process.time_granularity.value,
        "transaction_count": len(model.transactions),
        "time_bucket_count": len(model.time_buckets),
        "entity_count": len(model.entities),
        "skipped_rows": model.skipped_rows,
        "metrics": model.calculated_metrics.to_dict(),
    }


def model_to_csv_summary(
    model: NormalizedFinancialModel,
    audit: Optional[AuditLogger] = None,
) -> str:
    """Serialise headline facts, metrics and buckets to CSV text.

    When *audit* is given an ``export_generated`` entry is recorded.
    """
    summary = model_summary(model)
    buf = StringIO()
    writer = csv.writer(buf)

    writer.writerow(["section", "name", "value"])
    for key in ("process_type", "confidence", "time_granularity",
                "transaction_count", "time_bucket_count", "entity_count", "skipped_rows"):
        writer.writerow(["summary", key, summary[key]])
    for key, value in summary["metrics"].items():
        if key == "custom":
            for custom_key, custom_value in value.items():
                writer.writerow(["metric", f"custom.{custom_key}", _cell(custom_value)])
            continue
        writer.writerow(["metric", key, _cell(value)])

    writer.writerow([])
    writer.writerow(["period", "start_date", "end_date", "inflows", "outflows", "net_cash"])
    for b in model.time_buckets:
        writer.writerow([
            b.period,
            b.start_date.isoformat(),
            b.end_date.isoformat(),
            round(b.inflows, 2),
            round(b.outflows, 2),
            round(b.net_cash, 2),
        ])

    text = buf.getvalue()
    if audit is not None:
        audit.add_entry(
            AuditEventType.EXPORT_GENERATED,
            "Generated CSV summary",
            {"format": "csv", "bytes": len(text.encode("utf-8"))},
        )
    logger.info("CSV summary generated (%d buckets)", len(model.time_buckets))
    return text


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float):
        return round(value, 4)
    return value

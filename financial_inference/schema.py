"""
Canonical financial model and pipeline data structures.

Defines the vocabularies (semantic types, sheet types, process types, ...)
and the typed records carried from the parser through to the calculation
engine.  Every record exposes ``to_dict`` so that the model can be handed to
exporters and the ingestion boundary as plain JSON-able data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

class FileFormat(str, Enum):
    WORKBOOK = "xlsx"
    DELIMITED = "csv"


class SemanticType(str, Enum):
    """Business meaning assigned to a column, independent of its raw type."""

    DATE = "date"
    AMOUNT = "amount"
    ENTITY = "entity"
    CATEGORY = "category"
    DIRECTION = "direction"
    STATUS = "status"
    REFERENCE = "reference"
    DESCRIPTION = "description"
    PERIOD = "period"
    UNKNOWN = "unknown"


class SheetType(str, Enum):
    TRANSACTIONS = "transactions"
    MASTER_DATA = "master_data"
    BUDGET = "budget"
    FORECAST = "forecast"
    ASSUMPTIONS = "assumptions"
    UNKNOWN = "unknown"


class ProcessType(str, Enum):
    """The business workflow a file most likely represents."""

    REVENUE_AR = "revenue_ar"
    AP_EXPENSE = "ap_expense"
    BUDGET_ACTUAL = "budget_actual"
    FUND_OPS = "fund_ops"
    MIXED_OPS = "mixed_ops"


class TimeGranularity(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class Direction(str, Enum):
    """Cash direction.  ``BOTH`` means the sign could not be determined."""

    INFLOW = "inflow"
    OUTFLOW = "outflow"
    BOTH = "both"


class TransactionStatus(str, Enum):
    POSTED = "posted"
    PENDING = "pending"
    SCHEDULED = "scheduled"


class AuditEventType(str, Enum):
    FILE_INGESTED = "file_ingested"
    SCHEMA_INFERRED = "schema_inferred"
    PROCESS_DETECTED = "process_detected"
    DATA_NORMALIZED = "data_normalized"
    CALCULATIONS_RUN = "calculations_run"
    EXPORT_GENERATED = "export_generated"
    ERROR_OCCURRED = "error_occurred"
    MANUAL_OVERRIDE = "manual_override"


class VarianceStatus(str, Enum):
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# Parsed input
# ---------------------------------------------------------------------------

@dataclass
class FileMetadata:
    """File-level facts recorded at ingestion time."""

    filename: str
    format: FileFormat
    file_size_bytes: int
    uploaded_at: datetime = field(default_factory=datetime.now)
    sheets: list[str] = field(default_factory=list)
    row_count: int = 0
    column_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "format": self.format.value,
            "file_size_bytes": self.file_size_bytes,
            "uploaded_at": self.uploaded_at.isoformat(),
            "sheets": list(self.sheets),
            "row_count": self.row_count,
            "column_count": self.column_count,
        }


@dataclass(frozen=True)
class RawSheet:
    """One parsed sheet: original headers, normalised row keys, typed rows.

    ``headers[i]`` is the header text as found in the file and ``keys[i]``
    the lower-cased, trimmed key used in every ``rows`` mapping.  Empty
    cells are stored as ``None``.
    """

    name: str
    headers: list[str]
    keys: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    grid: list[list[Any]] = field(default_factory=list)

    def header_for(self, key: str) -> str:
        return self.headers[self.keys.index(key)]

    def column_values(self, key: str, limit: Optional[int] = None) -> list[Any]:
        """Return the non-empty values of one column, in row order."""
        values = [row.get(key) for row in self.rows if row.get(key) is not None]
        return values[:limit] if limit is not None else values


@dataclass
class ParsedFile:
    metadata: FileMetadata
    sheets: list[RawSheet] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Schema inference
# ---------------------------------------------------------------------------

@dataclass
class ColumnInference:
    """Semantic classification of a single column."""

    column_name: str
    column_key: str
    semantic_type: SemanticType
    confidence: float  # 0.0 – 100.0
    suggested_mapping: Optional[str] = None
    user_override: Optional[SemanticType] = None

    @property
    def effective_type(self) -> SemanticType:
        return self.user_override or self.semantic_type

    def to_dict(self) -> dict[str, Any]:
        return {
            "column_name": self.column_name,
            "column_key": self.column_key,
            "semantic_type": self.semantic_type.value,
            "confidence": round(self.confidence, 2),
            "suggested_mapping": self.suggested_mapping,
            "user_override": self.user_override.value if self.user_override else None,
        }


@dataclass
class SheetClassification:
    sheet_name: str
    sheet_type: SheetType
    confidence: float
    column_inferences: list[ColumnInference] = field(default_factory=list)

    def columns_of(self, semantic_type: SemanticType) -> list[ColumnInference]:
        """Columns whose effective type is *semantic_type*."""
        return [c for c in self.column_inferences if c.effective_type == semantic_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheet_name": self.sheet_name,
            "sheet_type": self.sheet_type.value,
            "confidence": round(self.confidence, 2),
            "column_inferences": [c.to_dict() for c in self.column_inferences],
        }


@dataclass
class SchemaInference:
    file_metadata: FileMetadata
    sheets: list[SheetClassification] = field(default_factory=list)
    overall_confidence: float = 0.0
    flagged_low_confidence_columns: list[ColumnInference] = field(default_factory=list)
    recommended_process_type: Optional[ProcessType] = None

    def sheet(self, name: str) -> Optional[SheetClassification]:
        for s in self.sheets:
            if s.sheet_name == name:
                return s
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_metadata": self.file_metadata.to_dict(),
            "sheets": [s.to_dict() for s in self.sheets],
            "overall_confidence": round(self.overall_confidence, 2),
            "flagged_low_confidence_columns": [
                c.to_dict() for c in self.flagged_low_confidence_columns
            ],
            "recommended_process_type": (
                self.recommended_process_type.value
                if self.recommended_process_type else None
            ),
        }


@dataclass(frozen=True)
class ProcessDefinition:
    """The single business process chosen for a file."""

    process_type: ProcessType
    time_granularity: TimeGranularity
    inflow_sources: frozenset[str]
    outflow_sources: frozenset[str]
    entity_dimensions: frozenset[str]
    confidence: float
    inference_reasoning: str
    assumptions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "process_type": self.process_type.value,
            "time_granularity": self.time_granularity.value,
            "inflow_sources": sorted(self.inflow_sources),
            "outflow_sources": sorted(self.outflow_sources),
            "entity_dimensions": sorted(self.entity_dimensions),
            "confidence": self.confidence,
            "inference_reasoning": self.inference_reasoning,
            "assumptions": dict(self.assumptions),
        }


# ---------------------------------------------------------------------------
# Normalized model
# ---------------------------------------------------------------------------

@dataclass
class Transaction:
    """One canonical transaction.

    ``amount`` is always a non-negative magnitude; the sign lives only in
    ``direction``.
    """

    id: str
    date: date
    amount: float
    direction: Direction
    entity: str = "unknown"
    category: str = "other"
    description: str = ""
    reference: str = ""
    is_accrual: bool = False
    status: TransactionStatus = TransactionStatus.POSTED
    source_sheet: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def signed_amount(self) -> float:
        """Inflows positive, outflows negative, unresolved zero."""
        if self.direction == Direction.INFLOW:
            return self.amount
        if self.direction == Direction.OUTFLOW:
            return -self.amount
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "entity": self.entity,
            "amount": self.amount,
            "direction": self.direction.value,
            "category": self.category,
            "description": self.description,
            "reference": self.reference,
            "is_accrual": self.is_accrual,
            "status": self.status.value,
            "source_sheet": self.source_sheet,
            "metadata": {k: _jsonable(v) for k, v in self.metadata.items()},
        }


@dataclass
class TimeBucket:
    period: str
    start_date: date
    end_date: date
    transactions: list[Transaction] = field(default_factory=list)
    inflows: float = 0.0
    outflows: float = 0.0
    net_cash: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "transaction_ids": [t.id for t in self.transactions],
            "inflows": self.inflows,
            "outflows": self.outflows,
            "net_cash": self.net_cash,
        }


@dataclass
class EntityHierarchy:
    id: str
    name: str
    entity_type: str
    parent_entity_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "parent_entity_id": self.parent_entity_id,
            "metadata": dict(self.metadata),
        }


@dataclass
class CalculatedMetrics:
    """Deterministic summary metrics derived from a normalized model.

    ``runway`` is always finite.  When nothing is being burned it is ``0.0``
    and ``burn_detected`` is ``False``.
    """

    total_inflows: float = 0.0
    total_outflows: float = 0.0
    net_cash_flow: float = 0.0
    ending_cash_balance: float = 0.0
    average_daily_burn: float = 0.0
    runway: float = 0.0
    burn_detected: bool = False
    total_revenue: float = 0.0
    average_revenue_per_period: float = 0.0
    days_of_sales_outstanding: float = 0.0
    days_payable_outstanding: float = 0.0
    unresolved_amount: float = 0.0
    unresolved_count: int = 0
    budget_variance: Optional[float] = None
    budget_variance_percent: Optional[float] = None
    custom: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_inflows": self.total_inflows,
            "total_outflows": self.total_outflows,
            "net_cash_flow": self.net_cash_flow,
            "ending_cash_balance": self.ending_cash_balance,
            "average_daily_burn": self.average_daily_burn,
            "runway": self.runway,
            "burn_detected": self.burn_detected,
            "total_revenue": self.total_revenue,
            "average_revenue_per_period": self.average_revenue_per_period,
            "days_of_sales_outstanding": self.days_of_sales_outstanding,
            "days_payable_outstanding": self.days_payable_outstanding,
            "unresolved_amount": self.unresolved_amount,
            "unresolved_count": self.unresolved_count,
            "budget_variance": self.budget_variance,
            "budget_variance_percent": self.budget_variance_percent,
            "custom": dict(self.custom),
        }


@dataclass
class AuditLogEntry:
    timestamp: datetime
    event_type: AuditEventType
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "description": self.description,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }
        if self.error_message is not None:
            d["error_message"] = self.error_message
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditLogEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            event_type=AuditEventType(data["event_type"]),
            description=data["description"],
            details=dict(data.get("details") or {}),
            error_message=data.get("error_message"),
        )


@dataclass
class NormalizedFinancialModel:
    """The unit exchanged with exporters, the UI and the calculation engine."""

    process_definition: ProcessDefinition
    entities: list[EntityHierarchy] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    time_buckets: list[TimeBucket] = field(default_factory=list)
    calculated_metrics: CalculatedMetrics = field(default_factory=CalculatedMetrics)
    audit_trail: list[AuditLogEntry] = field(default_factory=list)
    schema_inference: Optional[SchemaInference] = None
    skipped_rows: int = 0
    validation_errors: list[str] = field(default_factory=list)
    validation_warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.validation_errors) == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "process_definition": self.process_definition.to_dict(),
            "entities": [e.to_dict() for e in self.entities],
            "transactions": [t.to_dict() for t in self.transactions],
            "time_buckets": [b.to_dict() for b in self.time_buckets],
            "calculated_metrics": self.calculated_metrics.to_dict(),
            "audit_trail": [e.to_dict() for e in self.audit_trail],
            "schema_inference": (
                self.schema_inference.to_dict() if self.schema_inference else None
            ),
            "skipped_rows": self.skipped_rows,
            "validation_errors": list(self.validation_errors),
            "validation_warnings": list(self.validation_warnings),
        }


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------

@dataclass
class VarianceAnalysis:
    metric: str
    budget: float
    actual: float
    variance: float
    variance_percent: float
    status: VarianceStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "budget": self.budget,
            "actual": self.actual,
            "variance": self.variance,
            "variance_percent": round(self.variance_percent, 4),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ScenarioParameters:
    """What-if levers applied to a cloned transaction set."""

    revenue_multiplier: float = 1.0
    cost_multiplier: float = 1.0
    payment_delay_days: int = 0
    payment_acceleration_days: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "revenue_multiplier": self.revenue_multiplier,
            "cost_multiplier": self.cost_multiplier,
            "payment_delay_days": self.payment_delay_days,
            "payment_acceleration_days": self.payment_acceleration_days,
        }


@dataclass
class ScenarioSimulation:
    scenario_name: str
    description: str
    parameters: ScenarioParameters
    projected_metrics: CalculatedMetrics
    assumptions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario_name": self.scenario_name,
            "description": self.description,
            "parameters": self.parameters.to_dict(),
            "projected_metrics": self.projected_metrics.to_dict(),
            "assumptions": dict(self.assumptions),
        }


def _jsonable(value: Any) -> Any:
    """Render dates and enums found in free-form metadata as JSON scalars."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value

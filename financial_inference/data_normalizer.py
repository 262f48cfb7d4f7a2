"""
Data Normalizer.

Turns the parsed sheets of a file into the canonical
``NormalizedFinancialModel``: one ``Transaction`` per usable row, the
distinct entities of every entity dimension, and time buckets at the
process definition's granularity.

Slot resolution happens once per sheet.  Each slot (date, amount, entity,
...) is filled by the first header, in header order, that matches the
slot's keyword list; a column the user explicitly overrode to that slot's
type wins over keyword matching.  A header taken by the date or amount
slot is not reused by any other slot, so ``bill_date`` is never read as a
reference.  A slot that finds nothing is ``None`` and the display default
("unknown", "other", "") is applied only when the transaction is built.

Rows are skipped, not rejected, when the sheet has no date or amount
column or when the row's date / amount cell does not parse.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from financial_inference import bucketing
from financial_inference.audit import AuditLogger
from financial_inference.cell_normalizer import CellNormalizer
from financial_inference.errors import FinancialInferenceError, NormalizationError
from financial_inference.keywords import INFLOW_TOKENS, OUTFLOW_TOKENS, KeywordTable
from financial_inference.logging_setup import get_logger
from financial_inference.process_inference import FALLBACK_SOURCE
from financial_inference.schema import (
    AuditEventType,
    Direction,
    EntityHierarchy,
    NormalizedFinancialModel,
    ProcessDefinition,
    RawSheet,
    SchemaInference,
    SemanticType,
    SheetClassification,
    Transaction,
    TransactionStatus,
)

logger = get_logger("data_normalizer")

# Slot name → semantic type a user override must carry to claim the slot
_SLOT_TYPES: Dict[str, SemanticType] = {
    "date": SemanticType.DATE,
    "amount": SemanticType.AMOUNT,
    "entity": SemanticType.ENTITY,
    "category": SemanticType.CATEGORY,
    "description": SemanticType.DESCRIPTION,
    "reference": SemanticType.REFERENCE,
    "status": SemanticType.STATUS,
    "direction": SemanticType.DIRECTION,
}

# Keyword slots consulted for each row slot, in order
_SLOT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "date": ("row.date",),
    "amount": ("row.amount",),
    "entity": ("row.entity", "row.entity_fallback"),
    "category": ("row.category",),
    "description": ("row.description",),
    "reference": ("row.reference",),
    "status": ("row.status",),
    "direction": ("row.direction",),
}


@dataclass
class SheetSlots:
    """Row keys resolved for each slot of one sheet; ``None`` when absent."""

    date: Optional[str] = None
    amount: Optional[str] = None
    entity: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None
    direction: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.date is not None and self.amount is not None


class DataNormalizer:
    """Build the canonical model from parsed sheets and a process definition.

    Parameters
    ----------
    keywords:
        Row-slot and row-flag vocabularies.
    audit:
        Receives ``data_normalized`` / ``error_occurred`` entries.
    normalizer:
        Cell parser shared with the classifiers.
    """

    def __init__(
        self,
        keywords: KeywordTable,
        audit: AuditLogger,
        normalizer: Optional[CellNormalizer] = None,
    ) -> None:
        self._keywords = keywords
        self._audit = audit
        self._normalizer = normalizer or CellNormalizer()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def normalize(
        self,
        sheets: Sequence[RawSheet],
        process: ProcessDefinition,
        schema: Optional[SchemaInference] = None,
    ) -> NormalizedFinancialModel:
        """Produce the model; metrics are left for the calculation engine.

        Raises
        ------
        NormalizationError
            On any unexpected failure.  No partial model is returned.
        """
        try:
            transactions, skipped = self._extract_transactions(sheets, process, schema)
            entities = self._extract_entities(sheets, process, schema)
            buckets = bucketing.bucket_transactions(transactions, process.time_granularity)
        except Exception as exc:
            self._audit.add_entry(
                AuditEventType.ERROR_OCCURRED,
                "Data normalization failed",
                {},
                str(exc),
            )
            if isinstance(exc, FinancialInferenceError):
                raise
            raise NormalizationError(f"Data normalization failed: {exc}") from exc

        self._audit.add_entry(
            AuditEventType.DATA_NORMALIZED,
            "Data normalized into internal model",
            {
                "transaction_count": len(transactions),
                "entity_count": len(entities),
                "time_bucket_count": len(buckets),
                "skipped_rows": skipped,
                "time_granularity": process.time_granularity.value,
            },
        )
        logger.info(
            "Normalized %d transactions (%d skipped), %d entities, %d buckets",
            len(transactions), skipped, len(entities), len(buckets),
        )

        return NormalizedFinancialModel(
            process_definition=process,
            entities=entities,
            transactions=transactions,
            time_buckets=buckets,
            schema_inference=schema,
            skipped_rows=skipped,
        )

    def resolve_slots(
        self,
        sheet: RawSheet,
        classification: Optional[SheetClassification] = None,
    ) -> SheetSlots:
        """Pick the row key that feeds each transaction field of *sheet*."""
        overrides: Dict[str, SemanticType] = {}
        if classification is not None:
            overrides = {
                c.column_key: c.user_override
                for c in classification.column_inferences
                if c.user_override is not None
            }
        direction_columns: List[str] = []
        if classification is not None:
            direction_columns = [
                c.column_key for c in classification.columns_of(SemanticType.DIRECTION)
            ]

        slots = SheetSlots()
        claimed: set[str] = set()
        for slot, semantic_type in _SLOT_TYPES.items():
            key = self._overridden_key(overrides, semantic_type, claimed)
            if key is None and slot == "direction":
                key = next((k for k in direction_columns if k not in claimed), None)
            if key is None:
                key = self._match_header(sheet, slot, overrides, claimed)
            if key is not None:
                claimed.add(key)
                setattr(slots, slot, key)
        return slots

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    def _extract_transactions(
        self,
        sheets: Sequence[RawSheet],
        process: ProcessDefinition,
        schema: Optional[SchemaInference],
    ) -> Tuple[List[Transaction], int]:
        transactions: List[Transaction] = []
        skipped = 0

        for sheet in sheets:
            classification = schema.sheet(sheet.name) if schema else None
            slots = self.resolve_slots(sheet, classification)
            if not slots.usable:
                logger.info(
                    "Sheet '%s' has no date/amount column pair; no transactions taken",
                    sheet.name,
                )
                continue

            for row in sheet.rows:
                txn = self._build_transaction(sheet.name, row, slots, process)
                if txn is None:
                    skipped += 1
                else:
                    transactions.append(txn)

        transactions.sort(key=lambda t: t.date)
        return transactions, skipped

    def _build_transaction(
        self,
        sheet_name: str,
        row: Dict[str, Any],
        slots: SheetSlots,
        process: ProcessDefinition,
    ) -> Optional[Transaction]:
        txn_date = self._normalizer.parse_date(row.get(slots.date))
        raw_amount = self._normalizer.to_number(row.get(slots.amount))
        if txn_date is None or raw_amount is None:
            return None

        row_text = _row_text(sheet_name, row)
        return Transaction(
            id=str(uuid.uuid4()),
            date=txn_date,
            amount=abs(raw_amount),
            direction=self._direction(row_text, row, slots, raw_amount, process),
            entity=_cell_text(row, slots.entity) or "unknown",
            category=_cell_text(row, slots.category) or "other",
            description=_cell_text(row, slots.description),
            reference=_cell_text(row, slots.reference),
            is_accrual=self._keywords.matches("flag.accrual", row_text),
            status=self._status(row, slots),
            source_sheet=sheet_name,
            metadata=dict(row),
        )

    def _direction(
        self,
        row_text: str,
        row: Dict[str, Any],
        slots: SheetSlots,
        raw_amount: float,
        process: ProcessDefinition,
    ) -> Direction:
        for tag in process.inflow_sources:
            if tag != FALLBACK_SOURCE and tag.lower() in row_text:
                return Direction.INFLOW
        for tag in process.outflow_sources:
            if tag != FALLBACK_SOURCE and tag.lower() in row_text:
                return Direction.OUTFLOW

        if slots.direction is not None:
            token = _cell_text(row, slots.direction).lower()
            if token in INFLOW_TOKENS:
                return Direction.INFLOW
            if token in OUTFLOW_TOKENS:
                return Direction.OUTFLOW

        if raw_amount < 0:
            return Direction.OUTFLOW
        return Direction.BOTH

    def _status(self, row: Dict[str, Any], slots: SheetSlots) -> TransactionStatus:
        value = _cell_text(row, slots.status)
        if not value:
            return TransactionStatus.POSTED
        if self._keywords.matches("status.pending", value):
            return TransactionStatus.PENDING
        if self._keywords.matches("status.scheduled", value):
            return TransactionStatus.SCHEDULED
        return TransactionStatus.POSTED

    # ------------------------------------------------------------------ #
    # Entities
    # ------------------------------------------------------------------ #

    def _extract_entities(
        self,
        sheets: Sequence[RawSheet],
        process: ProcessDefinition,
        schema: Optional[SchemaInference],
    ) -> List[EntityHierarchy]:
        entities: Dict[Tuple[str, str], EntityHierarchy] = {}

        for dimension in sorted(process.entity_dimensions):
            for sheet in sheets:
                classification = schema.sheet(sheet.name) if schema else None
                for key in self._dimension_columns(sheet, classification, dimension):
                    for row in sheet.rows:
                        name = _cell_text(row, key)
                        if not name or (dimension, name) in entities:
                            continue
                        entities[(dimension, name)] = EntityHierarchy(
                            id=str(uuid.uuid4()),
                            name=name,
                            entity_type=dimension,
                            metadata={"source_sheet": sheet.name,
                                      "column": sheet.header_for(key)},
                        )

        return list(entities.values())

    def _dimension_columns(
        self,
        sheet: RawSheet,
        classification: Optional[SheetClassification],
        dimension: str,
    ) -> List[str]:
        entity_keys = None
        if classification is not None:
            entity_keys = {c.column_key for c in classification.columns_of(SemanticType.ENTITY)}

        slot = f"dimension.{dimension}"
        keys = []
        for header, key in zip(sheet.headers, sheet.keys):
            if key == dimension.lower():
                keys.append(key)
            elif (
                (entity_keys is None or key in entity_keys)
                and self._keywords.matches(slot, self._normalizer.normalize_header(header))
            ):
                keys.append(key)
        return keys

    # ------------------------------------------------------------------ #
    # Slot helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _overridden_key(
        overrides: Dict[str, SemanticType],
        semantic_type: SemanticType,
        claimed: set[str],
    ) -> Optional[str]:
        for key, override in overrides.items():
            if override == semantic_type and key not in claimed:
                return key
        return None

    def _match_header(
        self,
        sheet: RawSheet,
        slot: str,
        overrides: Dict[str, SemanticType],
        claimed: set[str],
    ) -> Optional[str]:
        for keyword_slot in _SLOT_KEYWORDS[slot]:
            for header, key in zip(sheet.headers, sheet.keys):
                if key in claimed or key in overrides:
                    continue
                if self._keywords.matches(keyword_slot, self._normalizer.normalize_header(header)):
                    return key
        return None


def _cell_text(row: Dict[str, Any], key: Optional[str]) -> str:
    """Display text of a cell; empty string for a missing slot or cell."""
    if key is None:
        return ""
    value = row.get(key)
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def _row_text(sheet_name: str, row: Dict[str, Any]) -> str:
    """Lower-cased ``sheet key value key value ...`` text used for tag matching."""
    parts = [sheet_name]
    for key, value in row.items():
        parts.append(key)
        if value is not None:
            parts.append(str(value))
    return " ".join(parts).lower()

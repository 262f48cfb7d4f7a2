"""
Sheet Classifier and schema inference.

A sheet's type comes from its name first and its columns second:

1. Sheet keywords, matched against the sheet name followed by its
   header row and checked in order (first hit wins):
   budget → ``budget``; transactions → ``transactions``;
   master data → ``master_data``; actuals → ``forecast``;
   assumptions → ``assumptions``.  A sheet called "AP Expenses" with a
   ``bill_date`` column is therefore a transactions sheet.
2. Otherwise the column mix: an ``amount`` and a ``date`` column →
   ``transactions``; an ``amount`` column only → ``master_data``;
   anything else → ``unknown``.

Sheet confidence is the share of columns classified at or above the
low-confidence threshold.  ``SchemaInferenceEngine`` runs the column and
sheet classifiers over a whole parsed file, applies user overrides, and
records the outcome in the audit trail.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Tuple, Union

from financial_inference.audit import AuditLogger
from financial_inference.column_classifier import ColumnClassifier
from financial_inference.config import ClassifierConfig
from financial_inference.errors import SchemaInferenceError
from financial_inference.keywords import KeywordTable
from financial_inference.logging_setup import get_logger
from financial_inference.schema import (
    AuditEventType,
    ColumnInference,
    ParsedFile,
    SchemaInference,
    SemanticType,
    SheetClassification,
    SheetType,
)

logger = get_logger("sheet_classifier")

# Sheet-name slots in precedence order
_NAME_RULES: Tuple[Tuple[str, SheetType], ...] = (
    ("sheet.budget", SheetType.BUDGET),
    ("sheet.transactions", SheetType.TRANSACTIONS),
    ("sheet.master_data", SheetType.MASTER_DATA),
    ("sheet.actual", SheetType.FORECAST),
    ("sheet.assumptions", SheetType.ASSUMPTIONS),
)

ColumnOverrides = Mapping[str, Mapping[str, Union[str, SemanticType]]]


class SheetClassifier:
    """Classify a sheet from its name and its column inferences."""

    def __init__(self, config: ClassifierConfig, keywords: KeywordTable) -> None:
        self._config = config
        self._keywords = keywords

    def classify(
        self, sheet_name: str, column_inferences: List[ColumnInference]
    ) -> SheetClassification:
        headers = [c.column_name for c in column_inferences]
        sheet_type = self.type_from_name(sheet_name, headers)
        if sheet_type is None:
            sheet_type = self._type_from_columns(column_inferences)
            logger.info("Sheet '%s' → %s (from columns)", sheet_name, sheet_type.value)
        else:
            logger.info("Sheet '%s' → %s (from name or headers)", sheet_name, sheet_type.value)

        return SheetClassification(
            sheet_name=sheet_name,
            sheet_type=sheet_type,
            confidence=self.confidence(column_inferences),
            column_inferences=column_inferences,
        )

    def type_from_name(
        self, sheet_name: str, headers: Optional[List[str]] = None
    ) -> Optional[SheetType]:
        """Sheet type implied by the name and header text, or ``None``."""
        text = " ".join([sheet_name, *(headers or [])])
        for slot, sheet_type in _NAME_RULES:
            if self._keywords.matches(slot, text):
                return sheet_type
        return None

    def confidence(self, column_inferences: List[ColumnInference]) -> float:
        if not column_inferences:
            return 0.0
        confident = sum(
            1 for c in column_inferences
            if c.confidence >= self._config.low_confidence_threshold
        )
        return round(confident / len(column_inferences) * 100.0, 2)

    @staticmethod
    def _type_from_columns(column_inferences: List[ColumnInference]) -> SheetType:
        types = {c.effective_type for c in column_inferences}
        if SemanticType.AMOUNT in types and SemanticType.DATE in types:
            return SheetType.TRANSACTIONS
        if SemanticType.AMOUNT in types:
            return SheetType.MASTER_DATA
        return SheetType.UNKNOWN


class SchemaInferenceEngine:
    """Infer the semantic schema of every sheet in a parsed file.

    Parameters
    ----------
    columns:
        Column classifier.
    sheets:
        Sheet classifier.
    audit:
        Receives ``schema_inferred`` and ``manual_override`` entries.
    config:
        Supplies the low-confidence threshold used for flagging.
    """

    def __init__(
        self,
        columns: ColumnClassifier,
        sheets: SheetClassifier,
        audit: AuditLogger,
        config: ClassifierConfig,
    ) -> None:
        self._columns = columns
        self._sheets = sheets
        self._audit = audit
        self._config = config

    def infer(
        self,
        parsed: ParsedFile,
        overrides: Optional[ColumnOverrides] = None,
    ) -> SchemaInference:
        """Classify all sheets, then apply ``{sheet: {column: type}}`` overrides."""
        column_sets: Dict[str, List[ColumnInference]] = {
            sheet.name: self._columns.classify_sheet(sheet) for sheet in parsed.sheets
        }

        if overrides:
            self._apply_overrides(column_sets, overrides)

        classifications = [
            self._sheets.classify(name, inferences)
            for name, inferences in column_sets.items()
        ]

        flagged = [
            c
            for s in classifications
            for c in s.column_inferences
            if c.user_override is None
            and c.confidence < self._config.low_confidence_threshold
        ]
        overall = (
            round(sum(s.confidence for s in classifications) / len(classifications), 2)
            if classifications else 0.0
        )

        schema = SchemaInference(
            file_metadata=parsed.metadata,
            sheets=classifications,
            overall_confidence=overall,
            flagged_low_confidence_columns=flagged,
        )

        self._audit.add_entry(
            AuditEventType.SCHEMA_INFERRED,
            f"Inferred schema for {len(classifications)} sheet(s)",
            {
                "sheets": {s.sheet_name: s.sheet_type.value for s in classifications},
                "overall_confidence": overall,
                "flagged_columns": [c.column_name for c in flagged],
            },
        )
        if flagged:
            logger.warning(
                "%d column(s) below %.0f%% confidence: %s",
                len(flagged),
                self._config.low_confidence_threshold,
                ", ".join(c.column_name for c in flagged),
            )
        return schema

    def _apply_overrides(
        self,
        column_sets: Dict[str, List[ColumnInference]],
        overrides: ColumnOverrides,
    ) -> None:
        for sheet_name, columns in overrides.items():
            inferences = column_sets.get(sheet_name)
            if inferences is None:
                logger.warning("Override for unknown sheet '%s' ignored", sheet_name)
                continue
            by_name = {c.column_name: c for c in inferences}
            by_key = {c.column_key: c for c in inferences}
            for column_name, semantic_type in columns.items():
                target = by_name.get(column_name) or by_key.get(column_name.strip().lower())
                if target is None:
                    logger.warning(
                        "Override for unknown column '%s' in sheet '%s' ignored",
                        column_name, sheet_name,
                    )
                    continue
                try:
                    new_type = SemanticType(semantic_type)
                except ValueError:
                    raise SchemaInferenceError(
                        f"Unknown semantic type {semantic_type!r} for column "
                        f"'{target.column_name}'",
                        {"sheet": sheet_name, "column": target.column_name},
                    ) from None
                target.user_override = new_type
                self._audit.add_entry(
                    AuditEventType.MANUAL_OVERRIDE,
                    f"Column '{target.column_name}' overridden to {new_type.value}",
                    {
                        "sheet": sheet_name,
                        "column": target.column_name,
                        "inferred_type": target.semantic_type.value,
                        "override_type": new_type.value,
                    },
                )

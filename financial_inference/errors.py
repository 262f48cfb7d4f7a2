"""
Exception hierarchy.

Every fatal condition raised by the engine derives from
``FinancialInferenceError`` so that the ingestion boundary can turn it into
a human-readable failure message without leaking internals.
"""

from __future__ import annotations

from typing import Any, Optional


class FinancialInferenceError(Exception):
    """Base class for all engine errors."""

    code = "FINANCIAL_INFERENCE_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class FileParseError(FinancialInferenceError):
    """The input file could not be read into sheets."""

    code = "PARSE_ERROR"


class SchemaInferenceError(FinancialInferenceError):
    code = "SCHEMA_INFERENCE_ERROR"


class ProcessInferenceError(FinancialInferenceError):
    code = "PROCESS_INFERENCE_ERROR"


class NormalizationError(FinancialInferenceError):
    code = "NORMALIZATION_ERROR"


class CalculationError(FinancialInferenceError):
    code = "CALCULATION_ERROR"


class ExportError(FinancialInferenceError):
    code = "EXPORT_ERROR"

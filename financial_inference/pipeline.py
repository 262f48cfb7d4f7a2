"""
Pipeline Orchestrator.

The central entry point that wires together every stage:

    File  →  Parser  →  Column / Sheet Classifiers  →  Process Inference
          →  Data Normalizer  →  Calculation Engine  →  Validator  →  Model

Each run owns its own ``AuditLogger``; its entries are attached to the
returned model, so concurrent runs on different files never share state.

Usage
-----
>>> from financial_inference.pipeline import FinancialInferencePipeline
>>> from financial_inference.config import PipelineConfig
>>>
>>> pipe = FinancialInferencePipeline(PipelineConfig())
>>> model = pipe.run_file("ledger.csv")
>>> print(model.calculated_metrics.total_inflows)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

from financial_inference.audit import AuditLogger
from financial_inference.calculations import CalculationEngine
from financial_inference.cell_normalizer import CellNormalizer
from financial_inference.column_classifier import ColumnClassifier
from financial_inference.config import PipelineConfig
from financial_inference.data_normalizer import DataNormalizer
from financial_inference.errors import CalculationError, FinancialInferenceError
from financial_inference.file_parser import DEFAULT_SHEET_NAME, FileParser
from financial_inference.fuzzy_matcher import FuzzyMatcher
from financial_inference.keywords import KeywordTable
from financial_inference.logging_setup import configure_logging, get_logger
from financial_inference.process_inference import ProcessInferenceEngine
from financial_inference.schema import (
    AuditEventType,
    FileFormat,
    NormalizedFinancialModel,
    ParsedFile,
    ProcessDefinition,
)
from financial_inference.sheet_classifier import (
    ColumnOverrides,
    SchemaInferenceEngine,
    SheetClassifier,
)
from financial_inference.validator import Validator

logger = get_logger("pipeline")


class FinancialInferencePipeline:
    """Orchestrates the full ingestion pipeline.

    Parameters
    ----------
    config:
        All tuneable knobs.  Defaults suit typical ledger exports.
    extra_keywords:
        Additional ``{slot: [keyword, ...]}`` merged into the built-in
        vocabulary.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        extra_keywords: Optional[Dict[str, Iterable[str]]] = None,
    ) -> None:
        self._config = config or PipelineConfig()

        # Bootstrap logging before anything else
        configure_logging(
            level=self._config.log_level,
            log_file=self._config.log_file,
            audit_log_file=self._config.audit_log_file,
        )

        self._normalizer = CellNormalizer()
        self._keywords = KeywordTable(extra_keywords=extra_keywords)

        if self._config.custom_keyword_path:
            self._keywords.load_custom_keywords(self._config.custom_keyword_path)

        self._fuzzy = FuzzyMatcher(self._config.classifier, self._keywords)
        self._columns = ColumnClassifier(
            self._config.classifier, self._keywords, self._normalizer, self._fuzzy
        )
        self._sheets = SheetClassifier(self._config.classifier, self._keywords)
        self._validator = Validator(self._config.validation, self._config.normalization)

        logger.info(
            "Pipeline initialised: keywords=%d, granularity=%s%s, strict=%s",
            self._keywords.size,
            self._config.normalization.granularity.value,
            " (inferred)" if self._config.normalization.infer_granularity else "",
            self._config.strict_mode,
        )

    # ------------------------------------------------------------------ #
    # Entry points (one per input kind)
    # ------------------------------------------------------------------ #

    def run_file(
        self,
        path: Union[str, Path],
        file_format: Optional[FileFormat] = None,
        process_override: Optional[ProcessDefinition] = None,
        column_overrides: Optional[ColumnOverrides] = None,
    ) -> NormalizedFinancialModel:
        """Run the pipeline on a file on disk."""
        return self._run(
            lambda parser: parser.parse_file(path, file_format),
            process_override,
            column_overrides,
        )

    def run_bytes(
        self,
        content: bytes,
        filename: str,
        file_format: Optional[FileFormat] = None,
        process_override: Optional[ProcessDefinition] = None,
        column_overrides: Optional[ColumnOverrides] = None,
    ) -> NormalizedFinancialModel:
        """Run the pipeline on an in-memory upload."""
        return self._run(
            lambda parser: parser.parse_bytes(content, filename, file_format),
            process_override,
            column_overrides,
        )

    def run_dataframe(
        self,
        df: Any,
        name: str = DEFAULT_SHEET_NAME,
        process_override: Optional[ProcessDefinition] = None,
        column_overrides: Optional[ColumnOverrides] = None,
    ) -> NormalizedFinancialModel:
        """Run the pipeline on a pandas DataFrame."""
        return self._run(
            lambda parser: parser.parse_dataframe(df, name),
            process_override,
            column_overrides,
        )

    # ------------------------------------------------------------------ #
    # Core pipeline logic
    # ------------------------------------------------------------------ #

    def _run(
        self,
        parse: Callable[[FileParser], ParsedFile],
        process_override: Optional[ProcessDefinition],
        column_overrides: Optional[ColumnOverrides],
    ) -> NormalizedFinancialModel:
        audit = AuditLogger()

        parsed = parse(FileParser(audit, self._normalizer))

        schema = SchemaInferenceEngine(
            self._columns, self._sheets, audit, self._config.classifier
        ).infer(parsed, column_overrides)

        if process_override is not None:
            process = process_override
            schema.recommended_process_type = process.process_type
            audit.add_entry(
                AuditEventType.MANUAL_OVERRIDE,
                f"Process definition supplied by caller: {process.process_type.value}",
                process.to_dict(),
            )
        else:
            process = ProcessInferenceEngine(
                self._keywords, audit, self._config.normalization, self._normalizer
            ).infer(schema, parsed.sheets)

        model = DataNormalizer(self._keywords, audit, self._normalizer).normalize(
            parsed.sheets, process, schema
        )
        model.audit_trail = audit.entries

        engine = CalculationEngine(audit, self._config.calculation, self._keywords)
        try:
            engine.calculate(model)
        except Exception as exc:
            audit.add_entry(
                AuditEventType.ERROR_OCCURRED, "Calculation failed", {}, str(exc)
            )
            if isinstance(exc, FinancialInferenceError):
                raise
            raise CalculationError(f"Calculation failed: {exc}") from exc

        report = self._validator.validate(model)
        model.validation_errors = report.errors
        model.validation_warnings = report.warnings

        logger.info(
            "Pipeline complete: process=%s, transactions=%d, buckets=%d, "
            "errors=%d, warnings=%d",
            process.process_type.value,
            len(model.transactions),
            len(model.time_buckets),
            len(report.errors),
            len(report.warnings),
        )

        if self._config.strict_mode and not model.success:
            raise RuntimeError(
                f"Strict mode: pipeline produced {len(report.errors)} "
                f"validation error(s):\n" + "\n".join(report.errors)
            )

        return model

    # ------------------------------------------------------------------ #
    # Utility
    # ------------------------------------------------------------------ #

    def calculation_engine(self) -> CalculationEngine:
        """A standalone engine for variance analysis and scenarios."""
        return CalculationEngine(config=self._config.calculation, keywords=self._keywords)

    def add_keywords(self, mapping: Dict[str, Iterable[str]]) -> None:
        """Hot-add keywords after pipeline construction.

        Fuzzy suggestions keep the vocabulary they were built with.
        """
        self._keywords.add_keywords(mapping)

    @property
    def keyword_count(self) -> int:
        return self._keywords.size

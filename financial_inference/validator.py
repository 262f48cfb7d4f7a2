"""
Validation Layer.

Checks a normalized model *before* it is handed to downstream consumers.

Checks performed
----------------
1. **Transactions**: amounts are finite, non-negative and within a
   plausible range; direction and status are valid.
2. **Time buckets**: ``inflows - outflows`` matches ``net_cash`` and the
   signed sum of the bucket's transactions within epsilon; start is not
   after end.  Mismatches are warnings, never errors.
3. **Process definition**: confidence in 0–100, non-empty source sets.
4. **Ordering**: transactions are sorted by date.
"""

from __future__ import annotations

import math
from typing import List

from financial_inference.config import NormalizationConfig, ValidationConfig
from financial_inference.logging_setup import get_logger
from financial_inference.schema import (
    Direction,
    NormalizedFinancialModel,
    ProcessDefinition,
    TimeBucket,
    Transaction,
    TransactionStatus,
)

logger = get_logger("validator")


class ValidationReport:
    """Accumulates errors and warnings during a validation pass."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)
        logger.error("Validation ERROR: %s", msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)
        logger.warning("Validation WARNING: %s", msg)


class Validator:
    """Validates a ``NormalizedFinancialModel``.

    Parameters
    ----------
    config:
        Validation thresholds and behaviour flags.
    normalization:
        Supplies the bucket consistency epsilon.
    """

    def __init__(
        self,
        config: ValidationConfig,
        normalization: NormalizationConfig = NormalizationConfig(),
    ) -> None:
        self._config = config
        self._epsilon = normalization.bucket_epsilon

    def validate(self, model: NormalizedFinancialModel) -> ValidationReport:
        """Run all checks and return a ``ValidationReport``."""
        report = ValidationReport()
        self._check_process(model.process_definition, report)
        self._check_transactions(model.transactions, report)
        self._check_ordering(model.transactions, report)
        self._check_buckets(model.time_buckets, report)
        return report

    # ------------------------------------------------------------------ #
    # Individual checks
    # ------------------------------------------------------------------ #

    def _check_process(self, process: ProcessDefinition, report: ValidationReport) -> None:
        if not 0.0 <= process.confidence <= 100.0:
            report.add_error(
                f"Process confidence {process.confidence} outside 0–100"
            )
        if not process.inflow_sources:
            report.add_error("Process definition has no inflow sources")
        if not process.outflow_sources:
            report.add_error("Process definition has no outflow sources")

    def _check_transactions(
        self, transactions: List[Transaction], report: ValidationReport
    ) -> None:
        seen_ids: set[str] = set()
        for t in transactions:
            if t.id in seen_ids:
                report.add_error(f"Duplicate transaction id '{t.id}'")
            seen_ids.add(t.id)

            if not isinstance(t.direction, Direction):
                report.add_error(f"Transaction {t.id} has invalid direction {t.direction!r}")
            if not isinstance(t.status, TransactionStatus):
                report.add_error(f"Transaction {t.id} has invalid status {t.status!r}")

            if math.isnan(t.amount) or math.isinf(t.amount):
                report.add_error(f"Transaction {t.id} has non-finite amount: {t.amount}")
                continue
            if t.amount < 0:
                report.add_error(f"Transaction {t.id} has negative amount: {t.amount}")
            elif t.amount == 0 and self._config.warn_on_zero_amount:
                report.add_warning(f"Transaction {t.id} ({t.date}) has zero amount")

            if abs(t.amount) > self._config.max_absolute_value:
                report.add_warning(
                    f"Transaction {t.id} amount {t.amount} exceeds "
                    f"max_absolute_value ({self._config.max_absolute_value}). "
                    f"Possible unit error?"
                )

    @staticmethod
    def _check_ordering(transactions: List[Transaction], report: ValidationReport) -> None:
        for earlier, later in zip(transactions, transactions[1:]):
            if later.date < earlier.date:
                report.add_error(
                    f"Transactions out of date order: {earlier.date} before {later.date}"
                )
                return

    def _check_buckets(self, buckets: List[TimeBucket], report: ValidationReport) -> None:
        for b in buckets:
            if b.start_date > b.end_date:
                report.add_error(
                    f"Bucket {b.period} starts after it ends ({b.start_date} > {b.end_date})"
                )
            if abs((b.inflows - b.outflows) - b.net_cash) > self._epsilon:
                report.add_warning(
                    f"Bucket {b.period}: inflows - outflows "
                    f"({b.inflows - b.outflows:.2f}) != net cash ({b.net_cash:.2f})"
                )
            signed = sum(t.signed_amount for t in b.transactions)
            if abs(signed - b.net_cash) > self._epsilon:
                report.add_warning(
                    f"Bucket {b.period}: transaction sum ({signed:.2f}) "
                    f"!= net cash ({b.net_cash:.2f})"
                )

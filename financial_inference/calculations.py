"""
Deterministic Calculation Engine.

Computes summary metrics from a normalized model.  Every figure is plain
arithmetic over the model's transactions and buckets, every denominator is
guarded, and no transaction is mutated: scenario simulation works on
clones.

Conventions
-----------
* ``both``-direction transactions count toward neither inflows nor
  outflows; their total is reported as ``unresolved_amount``.
* ``day_span`` is the inclusive number of days between the earliest and
  latest transaction, at least 1.
* ``runway`` (months) is ``ending balance / daily burn / days_per_month``,
  clamped to 0 for a negative balance.  With no burn it is 0 and
  ``burn_detected`` is False.
"""

from __future__ import annotations

import calendar
import dataclasses
import math
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from financial_inference import bucketing
from financial_inference.audit import AuditLogger
from financial_inference.config import CalculationConfig
from financial_inference.keywords import KeywordTable
from financial_inference.logging_setup import get_logger
from financial_inference.schema import (
    AuditEventType,
    CalculatedMetrics,
    Direction,
    NormalizedFinancialModel,
    ProcessType,
    ScenarioParameters,
    ScenarioSimulation,
    SheetType,
    TimeBucket,
    Transaction,
    TransactionStatus,
    VarianceAnalysis,
    VarianceStatus,
)

logger = get_logger("calculations")

VARIANCE_METRICS = ("total_inflows", "total_outflows", "net_cash_flow", "ending_cash_balance")


def safe_divide(
    numerator: Optional[float],
    denominator: Optional[float],
    default: float = 0.0,
) -> float:
    """Divide, returning *default* for a missing, zero or non-finite result."""
    if numerator is None or denominator is None:
        return default
    if denominator == 0:
        return default
    result = numerator / denominator
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def day_span(transactions: Sequence[Transaction]) -> int:
    """Inclusive day count covered by *transactions*; 1 when empty."""
    if not transactions:
        return 1
    dates = [t.date for t in transactions]
    return max((max(dates) - min(dates)).days + 1, 1)


class CalculationEngine:
    """Derive ``CalculatedMetrics`` and analyses from a normalized model.

    Parameters
    ----------
    audit:
        Receives the ``calculations_run`` entry.  Optional so that the
        engine can be used standalone on two finished models.
    config:
        Variance neutral band and month length.
    keywords:
        Supplies the receivable / payable category vocabularies.
    """

    def __init__(
        self,
        audit: Optional[AuditLogger] = None,
        config: Optional[CalculationConfig] = None,
        keywords: Optional[KeywordTable] = None,
    ) -> None:
        self._audit = audit
        self._config = config or CalculationConfig()
        self._keywords = keywords or KeywordTable()

    # ------------------------------------------------------------------ #
    # Metrics
    # ------------------------------------------------------------------ #

    def calculate(self, model: NormalizedFinancialModel) -> CalculatedMetrics:
        """Compute metrics, store them on *model* and record the run."""
        metrics = self.compute_metrics(model.transactions, model.time_buckets)
        if model.process_definition.process_type == ProcessType.BUDGET_ACTUAL:
            self._apply_budget_variance(model, metrics)

        model.calculated_metrics = metrics

        if self._audit is not None:
            self._audit.add_entry(
                AuditEventType.CALCULATIONS_RUN,
                "Calculated metrics",
                {
                    "total_inflows": metrics.total_inflows,
                    "total_outflows": metrics.total_outflows,
                    "net_cash_flow": metrics.net_cash_flow,
                    "runway": metrics.runway,
                    "burn_detected": metrics.burn_detected,
                    "dso": metrics.days_of_sales_outstanding,
                    "dpo": metrics.days_payable_outstanding,
                    "unresolved_count": metrics.unresolved_count,
                },
            )
        return metrics

    def compute_metrics(
        self,
        transactions: Sequence[Transaction],
        buckets: Sequence[TimeBucket],
    ) -> CalculatedMetrics:
        """Pure metric computation over a transaction set and its buckets."""
        inflows = sum(t.amount for t in transactions if t.direction == Direction.INFLOW)
        outflows = sum(t.amount for t in transactions if t.direction == Direction.OUTFLOW)
        unresolved = [t for t in transactions if t.direction == Direction.BOTH]

        net = inflows - outflows
        ending = net
        span = day_span(transactions)
        daily_burn = safe_divide(outflows, span)
        burn_detected = daily_burn > 0
        runway = (
            max(safe_divide(safe_divide(ending, daily_burn), self._config.days_per_month), 0.0)
            if burn_detected else 0.0
        )

        metrics = CalculatedMetrics(
            total_inflows=inflows,
            total_outflows=outflows,
            net_cash_flow=net,
            ending_cash_balance=ending,
            average_daily_burn=daily_burn,
            runway=runway,
            burn_detected=burn_detected,
            total_revenue=inflows,
            average_revenue_per_period=safe_divide(inflows, len(buckets)),
            days_of_sales_outstanding=self._dso(transactions, inflows, span),
            days_payable_outstanding=self._dpo(transactions, outflows, span),
            unresolved_amount=sum(t.amount for t in unresolved),
            unresolved_count=len(unresolved),
            custom={
                "average_monthly_burn": daily_burn * self._config.days_per_month,
                "day_span": float(span),
            },
        )
        logger.info(
            "Metrics: inflows=%.2f outflows=%.2f net=%.2f runway=%.2f (burn=%s)",
            inflows, outflows, net, runway, burn_detected,
        )
        return metrics

    def _dso(self, transactions: Sequence[Transaction], inflows: float, span: int) -> float:
        receivable = sum(
            t.amount
            for t in transactions
            if self._keywords.matches("category.receivable", t.category)
            or t.status == TransactionStatus.PENDING
        )
        return safe_divide(receivable, inflows) * span

    def _dpo(self, transactions: Sequence[Transaction], outflows: float, span: int) -> float:
        payable = sum(
            t.amount
            for t in transactions
            if self._keywords.matches("category.payable", t.category)
        )
        return safe_divide(payable, outflows) * span

    def _apply_budget_variance(
        self, model: NormalizedFinancialModel, metrics: CalculatedMetrics
    ) -> None:
        schema = model.schema_inference
        if schema is None:
            return
        budget_sheets = {
            s.sheet_name for s in schema.sheets if s.sheet_type == SheetType.BUDGET
        }
        budget_txns = [t for t in model.transactions if t.source_sheet in budget_sheets]
        if not budget_sheets or not budget_txns:
            logger.info("No budget transactions; budget variance not computed")
            return

        actual_net = sum(
            t.signed_amount for t in model.transactions if t.source_sheet not in budget_sheets
        )
        budget_net = sum(t.signed_amount for t in budget_txns)
        variance = actual_net - budget_net
        metrics.budget_variance = variance
        metrics.budget_variance_percent = safe_divide(variance, abs(budget_net)) * 100.0

    # ------------------------------------------------------------------ #
    # Variance analysis
    # ------------------------------------------------------------------ #

    def variance_analysis(
        self,
        budget: CalculatedMetrics,
        actual: CalculatedMetrics,
    ) -> List[VarianceAnalysis]:
        """Compare two metric sets, metric by metric.

        Outflows below budget are favorable; for every other metric a
        value above budget is favorable.  Differences inside the neutral
        band are neutral.
        """
        band = self._config.neutral_band_percent
        analyses: List[VarianceAnalysis] = []

        for metric in VARIANCE_METRICS:
            budget_value = getattr(budget, metric) or 0.0
            actual_value = getattr(actual, metric) or 0.0
            variance = actual_value - budget_value
            variance_percent = safe_divide(variance, budget_value) * 100.0

            if abs(variance_percent) < band:
                status = VarianceStatus.NEUTRAL
            elif metric == "total_outflows":
                status = VarianceStatus.FAVORABLE if variance < 0 else VarianceStatus.UNFAVORABLE
            else:
                status = VarianceStatus.FAVORABLE if variance > 0 else VarianceStatus.UNFAVORABLE

            analyses.append(
                VarianceAnalysis(
                    metric=metric,
                    budget=budget_value,
                    actual=actual_value,
                    variance=variance,
                    variance_percent=variance_percent,
                    status=status,
                )
            )
        return analyses

    def compare_models(
        self,
        budget_model: NormalizedFinancialModel,
        actual_model: NormalizedFinancialModel,
    ) -> List[VarianceAnalysis]:
        """Variance analysis of two normalized models."""
        return self.variance_analysis(
            self.compute_metrics(budget_model.transactions, budget_model.time_buckets),
            self.compute_metrics(actual_model.transactions, actual_model.time_buckets),
        )

    # ------------------------------------------------------------------ #
    # Scenarios and projections
    # ------------------------------------------------------------------ #

    def simulate_scenario(
        self,
        model: NormalizedFinancialModel,
        scenario_name: str,
        parameters: ScenarioParameters,
        description: Optional[str] = None,
    ) -> ScenarioSimulation:
        """Recompute metrics on a scaled / shifted copy of the transactions."""
        clones = [self._apply_parameters(t, parameters) for t in model.transactions]
        clones.sort(key=lambda t: t.date)
        buckets = bucketing.bucket_transactions(
            clones, model.process_definition.time_granularity
        )
        projected = self.compute_metrics(clones, buckets)

        logger.info("Scenario '%s' simulated with %s", scenario_name, parameters)
        return ScenarioSimulation(
            scenario_name=scenario_name,
            description=description or f"Scenario: {scenario_name}",
            parameters=parameters,
            projected_metrics=projected,
            assumptions=dict(model.process_definition.assumptions),
        )

    @staticmethod
    def _apply_parameters(txn: Transaction, params: ScenarioParameters) -> Transaction:
        amount = txn.amount
        shifted = txn.date
        if txn.direction == Direction.INFLOW:
            amount *= params.revenue_multiplier
            shifted -= timedelta(days=params.payment_acceleration_days)
        elif txn.direction == Direction.OUTFLOW:
            amount *= params.cost_multiplier
            shifted += timedelta(days=params.payment_delay_days)
        return dataclasses.replace(
            txn, amount=amount, date=shifted, metadata=dict(txn.metadata)
        )

    @staticmethod
    def cash_flow_series(buckets: Sequence[TimeBucket]) -> Dict[str, list]:
        """Per-period net cash and its running total."""
        periods = [b.period for b in buckets]
        net = [b.net_cash for b in buckets]
        cumulative: List[float] = []
        running = 0.0
        for value in net:
            running += value
            cumulative.append(running)
        return {"periods": periods, "net": net, "cumulative": cumulative}

    @staticmethod
    def forecast_cash_flow(
        model: NormalizedFinancialModel,
        months: int,
        growth_rate: float = 0.05,
    ) -> List[TimeBucket]:
        """Naive forward projection from the last bucket.

        Inflows compound by *growth_rate* per month, outflows stay flat.
        """
        if not model.time_buckets or months <= 0:
            return []

        last = model.time_buckets[-1]
        current = last.end_date
        inflow = last.inflows * (1 + growth_rate)
        forecast: List[TimeBucket] = []
        for i in range(months):
            start = current
            current = _add_month(current)
            forecast.append(
                TimeBucket(
                    period=f"FORECAST-{i + 1}",
                    start_date=start,
                    end_date=current,
                    inflows=inflow,
                    outflows=last.outflows,
                    net_cash=inflow - last.outflows,
                )
            )
            inflow *= 1 + growth_rate
        return forecast


def _add_month(day: date) -> date:
    year = day.year + day.month // 12
    month = day.month % 12 + 1
    return day.replace(
        year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1])
    )

"""
Unit tests for time bucketing.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from financial_inference.bucketing import bucket_transactions, infer_granularity, period_label
from financial_inference.schema import Direction, TimeGranularity, Transaction


def _txn(day: date, amount: float, direction: Direction, tid: str = "") -> Transaction:
    return Transaction(id=tid or f"{day}-{amount}", date=day, amount=amount, direction=direction)


# ======================================================================
# Period labels
# ======================================================================

class TestPeriodLabel:
    @pytest.mark.parametrize("granularity, expected", [
        (TimeGranularity.DAILY, "2024-05-15"),
        (TimeGranularity.WEEKLY, "2024-W20"),
        (TimeGranularity.MONTHLY, "2024-05"),
        (TimeGranularity.QUARTERLY, "2024-Q2"),
        (TimeGranularity.ANNUAL, "2024"),
    ])
    def test_labels(self, granularity: TimeGranularity, expected: str) -> None:
        assert period_label(date(2024, 5, 15), granularity) == expected

    def test_iso_week_year_boundary(self) -> None:
        # 1 Jan 2021 belongs to ISO week 53 of 2020
        assert period_label(date(2021, 1, 1), TimeGranularity.WEEKLY) == "2020-W53"

    def test_quarter_edges(self) -> None:
        assert period_label(date(2024, 3, 31), TimeGranularity.QUARTERLY) == "2024-Q1"
        assert period_label(date(2024, 10, 1), TimeGranularity.QUARTERLY) == "2024-Q4"


# ======================================================================
# Bucketing
# ======================================================================

class TestBucketTransactions:
    def test_monthly_totals(self) -> None:
        txns = [
            _txn(date(2024, 1, 20), 300.0, Direction.OUTFLOW),
            _txn(date(2024, 1, 5), 1000.0, Direction.INFLOW),
            _txn(date(2024, 3, 2), 50.0, Direction.OUTFLOW),
        ]
        buckets = bucket_transactions(txns, TimeGranularity.MONTHLY)

        assert [b.period for b in buckets] == ["2024-01", "2024-03"]
        jan = buckets[0]
        assert jan.inflows == 1000.0
        assert jan.outflows == 300.0
        assert jan.net_cash == 700.0
        assert jan.start_date == date(2024, 1, 5)
        assert jan.end_date == date(2024, 1, 20)
        assert [t.date for t in jan.transactions] == [date(2024, 1, 5), date(2024, 1, 20)]

    def test_no_empty_buckets(self) -> None:
        txns = [
            _txn(date(2024, 1, 1), 1.0, Direction.INFLOW),
            _txn(date(2024, 6, 1), 1.0, Direction.INFLOW),
        ]
        assert len(bucket_transactions(txns, TimeGranularity.MONTHLY)) == 2

    def test_unresolved_kept_but_not_summed(self) -> None:
        txns = [
            _txn(date(2024, 1, 1), 100.0, Direction.INFLOW),
            _txn(date(2024, 1, 2), 999.0, Direction.BOTH),
        ]
        (bucket,) = bucket_transactions(txns, TimeGranularity.MONTHLY)
        assert len(bucket.transactions) == 2
        assert bucket.inflows == 100.0
        assert bucket.outflows == 0.0
        assert bucket.net_cash == 100.0

    def test_net_matches_signed_sum(self) -> None:
        txns = [
            _txn(date(2024, 1, d), float(d * 10), Direction.INFLOW if d % 2 else Direction.OUTFLOW)
            for d in range(1, 29)
        ]
        for bucket in bucket_transactions(txns, TimeGranularity.WEEKLY):
            signed = sum(t.signed_amount for t in bucket.transactions)
            assert bucket.net_cash == pytest.approx(signed)
            assert bucket.start_date <= bucket.end_date

    def test_empty_input(self) -> None:
        assert bucket_transactions([], TimeGranularity.MONTHLY) == []


# ======================================================================
# Granularity inference
# ======================================================================

class TestInferGranularity:
    @staticmethod
    def _series(start: date, step_days: int, count: int = 6) -> list:
        return [start + timedelta(days=step_days * i) for i in range(count)]

    @pytest.mark.parametrize("step, expected", [
        (1, TimeGranularity.DAILY),
        (7, TimeGranularity.WEEKLY),
        (30, TimeGranularity.MONTHLY),
        (91, TimeGranularity.QUARTERLY),
        (365, TimeGranularity.ANNUAL),
    ])
    def test_regular_series(self, step: int, expected: TimeGranularity) -> None:
        assert infer_granularity(self._series(date(2024, 1, 1), step)) == expected

    def test_calendar_month_starts(self) -> None:
        dates = [date(2024, m, 1) for m in range(1, 7)]
        assert infer_granularity(dates) == TimeGranularity.MONTHLY

    def test_duplicates_ignored(self) -> None:
        dates = [date(2024, 1, 1)] * 5 + [date(2024, 1, 2)]
        assert infer_granularity(dates) == TimeGranularity.DAILY

    def test_too_few_dates(self) -> None:
        assert infer_granularity([]) is None
        assert infer_granularity([date(2024, 1, 1), date(2024, 1, 1)]) is None

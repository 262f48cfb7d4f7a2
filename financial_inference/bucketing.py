"""
Time bucketing.

Groups date-sorted transactions into reporting periods.  Period labels:

=========  ==============
daily      ``2024-03-15``
weekly     ``2024-W11`` (ISO year and week)
monthly    ``2024-03``
quarterly  ``2024-Q1``
annual     ``2024``
=========  ==============

A bucket exists only when at least one transaction falls in it, and its
``start_date`` / ``end_date`` are the first and last transaction dates it
holds rather than calendar boundaries.
"""

from __future__ import annotations

import statistics
from datetime import date
from typing import Dict, Iterable, List, Optional

from financial_inference.logging_setup import get_logger
from financial_inference.schema import Direction, TimeBucket, TimeGranularity, Transaction

logger = get_logger("bucketing")

# Upper bounds (in days) of the median gap for each inferred granularity
_GAP_LIMITS = (
    (1.0, TimeGranularity.DAILY),
    (10.0, TimeGranularity.WEEKLY),
    (45.0, TimeGranularity.MONTHLY),
    (135.0, TimeGranularity.QUARTERLY),
)


def period_label(day: date, granularity: TimeGranularity) -> str:
    """Canonical period label of *day* at *granularity*."""
    if granularity == TimeGranularity.DAILY:
        return day.isoformat()
    if granularity == TimeGranularity.WEEKLY:
        iso_year, iso_week, _ = day.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == TimeGranularity.MONTHLY:
        return f"{day.year}-{day.month:02d}"
    if granularity == TimeGranularity.QUARTERLY:
        return f"{day.year}-Q{(day.month - 1) // 3 + 1}"
    return str(day.year)


def bucket_transactions(
    transactions: List[Transaction],
    granularity: TimeGranularity,
) -> List[TimeBucket]:
    """Group *transactions* into buckets ordered by period.

    Unresolved (``both``) transactions are kept in their bucket but count
    toward neither inflows nor outflows.
    """
    grouped: Dict[str, List[Transaction]] = {}
    for txn in sorted(transactions, key=lambda t: t.date):
        grouped.setdefault(period_label(txn.date, granularity), []).append(txn)

    buckets: List[TimeBucket] = []
    for label in sorted(grouped):
        members = grouped[label]
        inflows = sum(t.amount for t in members if t.direction == Direction.INFLOW)
        outflows = sum(t.amount for t in members if t.direction == Direction.OUTFLOW)
        buckets.append(
            TimeBucket(
                period=label,
                start_date=min(t.date for t in members),
                end_date=max(t.date for t in members),
                transactions=members,
                inflows=inflows,
                outflows=outflows,
                net_cash=inflows - outflows,
            )
        )

    logger.debug("Bucketed %d transactions into %d %s periods",
                 len(transactions), len(buckets), granularity.value)
    return buckets


def infer_granularity(dates: Iterable[date]) -> Optional[TimeGranularity]:
    """Guess the reporting granularity from the median gap between dates.

    Returns ``None`` when fewer than two distinct dates are available.
    """
    distinct = sorted(set(dates))
    if len(distinct) < 2:
        return None

    gaps = [(b - a).days for a, b in zip(distinct, distinct[1:])]
    median_gap = statistics.median(gaps)
    for limit, granularity in _GAP_LIMITS:
        if median_gap <= limit:
            break
    else:
        granularity = TimeGranularity.ANNUAL

    logger.info("Median gap %.1f days → %s granularity", median_gap, granularity.value)
    return granularity

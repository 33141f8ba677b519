"""Time-windowed spending aggregates over canonical records."""

import calendar
import math
from collections import defaultdict
from datetime import date, datetime, time
from typing import Literal

from dateutil.relativedelta import relativedelta

from invoicedash.models import (
    CanonicalRecord,
    Category,
    CategoryBreakdown,
    CategoryBreakdownRow,
    DashboardStats,
    DocumentType,
    MonthlyBucket,
)

RangePreset = Literal["YTD", "L12M"]

# Categories shown in the yearly breakdown; Education and Miscellaneous are left out
BREAKDOWN_CATEGORIES: tuple[Category, ...] = (
    Category.HABITAT,
    Category.FOOD,
    Category.ELECTRONICS,
    Category.MOBILITY,
    Category.LEISURE,
)


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def record_instant(record: CanonicalRecord) -> datetime | None:
    """Midnight of the record's invoice date, or None for undated records."""
    parsed = record.parsed_date
    if parsed is None:
        return None
    return datetime.combine(parsed, time.min)


def in_window(record: CanonicalRecord, start: date | datetime, end: date | datetime) -> bool:
    """True if the record is dated and falls within [start, end] inclusive."""
    instant = record_instant(record)
    if instant is None:
        return False
    return _as_datetime(start) <= instant <= _as_datetime(end)


def start_of_month(value: date | datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def end_of_month(value: date | datetime) -> datetime:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return datetime.combine(date(value.year, value.month, last_day), time.max)


def resolve_range(preset: RangePreset, today: date | None = None) -> tuple[datetime, datetime]:
    """
    Resolve a chart range preset into concrete bounds.

    YTD spans the whole current year so the chart always shows twelve months;
    L12M spans the current month and the eleven before it.
    """
    today = today or date.today()
    if preset == "YTD":
        return datetime(today.year, 1, 1), end_of_month(date(today.year, 12, 1))
    if preset == "L12M":
        return start_of_month(today) - relativedelta(months=11), end_of_month(today)
    raise ValueError(f"Unknown range preset: {preset}")


def _round_half_up(amount: float) -> int:
    return int(math.floor(amount + 0.5))


def total_spend(records: list[CanonicalRecord], start: date | datetime, end: date | datetime) -> float:
    """Sum of raw amounts for records dated within [start, end]."""
    return sum(r.raw_amount for r in records if in_window(r, start, end))


def monthly_series(
    records: list[CanonicalRecord], start: date | datetime, end: date | datetime
) -> list[MonthlyBucket]:
    """
    Monthly spend between two instants, one bucket per calendar month.

    Both bounds are widened to whole months. Every month in the span gets a
    bucket, including months with no records, so the series has no gaps.
    Returns an empty list for an empty collection.
    """
    if not records:
        return []

    first = start_of_month(start)
    last = end_of_month(end)
    if last < first:
        return []

    monthly: dict[tuple[int, int], float] = {}
    cursor = first
    while cursor <= last:
        monthly[(cursor.year, cursor.month)] = 0.0
        cursor += relativedelta(months=1)

    for r in records:
        instant = record_instant(r)
        if instant is None or not first <= instant <= last:
            continue
        monthly[(instant.year, instant.month)] += r.raw_amount

    return [
        MonthlyBucket(month=calendar.month_abbr[month], year=year, amount=_round_half_up(amount))
        for (year, month), amount in monthly.items()
    ]


def category_breakdown(records: list[CanonicalRecord], year: int) -> CategoryBreakdown:
    """
    Per-month spend for the breakdown categories in one calendar year.

    Row and yearly totals only count the breakdown categories, not every
    record in the month.
    """
    included = {c.value for c in BREAKDOWN_CATEGORIES}
    by_month: dict[int, dict[str, float]] = defaultdict(lambda: defaultdict(float))

    for r in records:
        parsed = r.parsed_date
        if parsed is None or parsed.year != year:
            continue
        if r.category.value not in included:
            continue
        by_month[parsed.month][r.category.value] += r.raw_amount

    categories = [c.value for c in BREAKDOWN_CATEGORIES]
    rows = []
    totals: dict[str, float] = {cat: 0.0 for cat in categories}
    for month in range(1, 13):
        amounts = {cat: round(by_month[month].get(cat, 0.0), 2) for cat in categories}
        for cat, amount in amounts.items():
            totals[cat] += amount
        rows.append(
            CategoryBreakdownRow(
                month=calendar.month_abbr[month],
                amounts=amounts,
                total=round(sum(amounts.values()), 2),
            )
        )

    totals = {cat: round(amount, 2) for cat, amount in totals.items()}
    return CategoryBreakdown(
        year=year,
        categories=categories,
        rows=rows,
        totals=totals,
        total=round(sum(totals.values()), 2),
    )


def period_suffix(start: date | datetime, end: date | datetime) -> str:
    """Label suffix for a window: ' (2025)' or ' (2025-26)'."""
    if start.year == end.year:
        return f" ({start.year})"
    return f" ({start.year}-{str(end.year)[-2:]})"


def dashboard_stats(
    records: list[CanonicalRecord],
    start: date | datetime | None = None,
    end: date | datetime | None = None,
) -> DashboardStats:
    """
    Headline figures for the dashboard cards.

    Without a window the figures cover the whole collection, undated records
    included. With a window every figure is computed over the dated records
    inside it.
    """
    suffix = ""
    selected = records
    if start is not None and end is not None:
        selected = [r for r in records if in_window(r, start, end)]
        suffix = period_suffix(start, end)

    invoices = sum(1 for r in selected if r.type == DocumentType.INVOICE)
    receipts = sum(1 for r in selected if r.type == DocumentType.RECEIPT)

    return DashboardStats(
        total_spend=sum(r.raw_amount for r in selected),
        invoice_count=invoices,
        receipt_count=receipts,
        document_count=len(selected),
        period_suffix=suffix,
    )


def format_kpi_value(value: float) -> str:
    """Whole units with a non-breaking space as thousands separator, e.g. '12 500'."""
    return f"{_round_half_up(value):,}".replace(",", "\u00a0")

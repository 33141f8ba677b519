"""Tests for the spending aggregation service."""

from datetime import date, datetime

import pytest

from invoicedash.models import NO_DATE, CanonicalRecord, Category, DocumentType
from invoicedash.services.aggregation import (
    BREAKDOWN_CATEGORIES,
    category_breakdown,
    dashboard_stats,
    end_of_month,
    format_kpi_value,
    monthly_series,
    period_suffix,
    resolve_range,
    start_of_month,
    total_spend,
)


def make_record(
    amount: float,
    txn_date: str,
    category: Category = Category.FOOD,
    doc_type: DocumentType = DocumentType.INVOICE,
    record_id: str = "INV-1",
) -> CanonicalRecord:
    """Create a canonical record for testing."""
    return CanonicalRecord(
        id=record_id,
        provider="Test Provider",
        date=txn_date,
        display_amount=f"CHF {amount:.2f}",
        raw_amount=amount,
        category=category,
        type=doc_type,
    )


@pytest.fixture
def example_records() -> list[CanonicalRecord]:
    """Two dated records and one undated record."""
    return [
        make_record(100, "2025-01-15", Category.FOOD, record_id="R1"),
        make_record(50, "2025-02-10", Category.EDUCATION, record_id="R2"),
        make_record(999, NO_DATE, Category.FOOD, record_id="R3"),
    ]


class TestTotalSpend:
    """Test windowed totals."""

    def test_excludes_undated_records(self, example_records):
        """Should sum only dated records inside the window."""
        assert total_spend(example_records, date(2025, 1, 1), date(2025, 2, 28)) == 150

    def test_bounds_are_inclusive(self):
        """Should include records dated exactly on either bound."""
        records = [make_record(10, "2025-03-01"), make_record(20, "2025-03-31")]
        assert total_spend(records, date(2025, 3, 1), date(2025, 3, 31)) == 30

    def test_outside_window(self, example_records):
        """Should give 0 when nothing falls in the window."""
        assert total_spend(example_records, date(2024, 1, 1), date(2024, 12, 31)) == 0


class TestMonthlySeries:
    """Test monthly bucketing."""

    def test_example_window(self, example_records):
        """Should produce one bucket per month with the undated record left out."""
        series = monthly_series(example_records, date(2025, 1, 1), date(2025, 2, 28))
        assert [(b.month, b.year, b.amount) for b in series] == [("Jan", 2025, 100), ("Feb", 2025, 50)]

    def test_no_gaps(self):
        """Should include zero buckets for months without records."""
        records = [make_record(10, "2025-01-05"), make_record(30, "2025-06-20")]
        series = monthly_series(records, date(2025, 1, 1), date(2025, 12, 31))
        assert len(series) == 12
        assert [b.amount for b in series] == [10, 0, 0, 0, 0, 30, 0, 0, 0, 0, 0, 0]

    @pytest.mark.parametrize(
        "start,end,expected",
        [
            (date(2025, 1, 1), date(2025, 1, 1), 1),
            (date(2025, 1, 31), date(2025, 1, 31), 1),
            (date(2025, 1, 15), date(2025, 3, 2), 3),
            (date(2024, 11, 1), date(2025, 2, 1), 4),
            (date(2024, 1, 1), date(2025, 12, 31), 24),
        ],
    )
    def test_bucket_count_matches_months_spanned(self, start, end, expected):
        """Should yield exactly one bucket per calendar month touched by the window."""
        records = [make_record(1, "2025-01-15")]
        assert len(monthly_series(records, start, end)) == expected

    def test_widens_to_whole_months(self):
        """Should count records in partially covered months."""
        records = [make_record(40, "2025-01-02"), make_record(60, "2025-03-30")]
        series = monthly_series(records, datetime(2025, 1, 20), datetime(2025, 3, 5))
        assert [b.amount for b in series] == [40, 0, 60]

    def test_keeps_years_apart(self):
        """Should not merge the same month of different years."""
        records = [make_record(10, "2024-12-01"), make_record(20, "2025-12-01")]
        series = monthly_series(records, date(2024, 12, 1), date(2025, 12, 31))
        assert series[0].amount == 10
        assert series[-1].amount == 20
        assert (series[-1].month, series[-1].year) == ("Dec", 2025)

    def test_rounds_to_whole_units(self):
        """Should round bucket sums to the nearest integer."""
        records = [make_record(10.25, "2025-01-02"), make_record(10.25, "2025-01-03")]
        [bucket] = monthly_series(records, date(2025, 1, 1), date(2025, 1, 31))
        assert bucket.amount == 21

    def test_empty_collection(self):
        """Should return an empty series for an empty collection."""
        assert monthly_series([], date(2025, 1, 1), date(2025, 12, 31)) == []


class TestCategoryBreakdown:
    """Test the yearly per-category breakdown."""

    def test_example_scenario(self, example_records):
        """Should count only the Food record and leave out Education."""
        breakdown = category_breakdown(example_records, 2025)
        assert breakdown.totals["Food"] == 100
        assert breakdown.total == 100
        assert "Education" not in breakdown.categories
        assert breakdown.rows[1].total == 0

    def test_row_totals_equal_included_columns(self):
        """Should define each row total as the sum of the five included columns."""
        records = [
            make_record(10, "2025-05-01", Category.HABITAT),
            make_record(20, "2025-05-02", Category.FOOD),
            make_record(30, "2025-05-03", Category.ELECTRONICS),
            make_record(40, "2025-05-04", Category.MOBILITY),
            make_record(50, "2025-05-05", Category.LEISURE),
            make_record(1000, "2025-05-06", Category.EDUCATION),
            make_record(2000, "2025-05-07", Category.MISCELLANEOUS),
        ]
        breakdown = category_breakdown(records, 2025)
        may = breakdown.rows[4]
        assert may.month == "May"
        assert may.total == 150
        assert may.total == sum(may.amounts[c.value] for c in BREAKDOWN_CATEGORIES)
        assert breakdown.total == 150

    def test_has_twelve_rows(self):
        """Should always produce a row for every month."""
        breakdown = category_breakdown([], 2025)
        assert [r.month for r in breakdown.rows][:3] == ["Jan", "Feb", "Mar"]
        assert len(breakdown.rows) == 12
        assert breakdown.total == 0

    def test_filters_by_year(self):
        """Should ignore records from other years."""
        records = [make_record(10, "2024-05-01"), make_record(20, "2025-05-01")]
        assert category_breakdown(records, 2024).total == 10


class TestRanges:
    """Test range presets and month bounds."""

    def test_ytd_covers_full_year(self):
        """Should span January to the end of December of the current year."""
        start, end = resolve_range("YTD", today=date(2025, 6, 15))
        assert start == datetime(2025, 1, 1)
        assert end.date() == date(2025, 12, 31)

    def test_last_twelve_months(self):
        """Should span the current month and the eleven before it."""
        start, end = resolve_range("L12M", today=date(2025, 3, 10))
        assert start == datetime(2024, 4, 1)
        assert end.date() == date(2025, 3, 31)

    def test_last_twelve_months_from_january(self):
        """Should step back across the year boundary."""
        start, end = resolve_range("L12M", today=date(2026, 1, 31))
        assert start == datetime(2025, 2, 1)
        assert end.date() == date(2026, 1, 31)

    def test_unknown_preset(self):
        """Should reject unknown presets."""
        with pytest.raises(ValueError):
            resolve_range("ALL")  # type: ignore[arg-type]

    def test_month_bounds(self):
        """Should give the first and last instant of the month."""
        assert start_of_month(date(2024, 2, 17)) == datetime(2024, 2, 1)
        assert end_of_month(date(2024, 2, 17)).date() == date(2024, 2, 29)
        assert end_of_month(date(2024, 2, 17)).hour == 23


class TestDashboardStats:
    """Test KPI figures."""

    def test_whole_collection_includes_undated(self, example_records):
        """Should sum every record when no window is given."""
        stats = dashboard_stats(example_records)
        assert stats.total_spend == 1149
        assert stats.document_count == 3
        assert stats.period_suffix == ""
        assert stats.spend_label == "Total Spend"

    def test_windowed(self):
        """Should compute every figure over the window only."""
        records = [
            make_record(100, "2025-01-15", doc_type=DocumentType.INVOICE),
            make_record(20, "2025-02-15", doc_type=DocumentType.RECEIPT),
            make_record(30, "2025-02-16", doc_type=DocumentType.RECEIPT),
            make_record(500, "2024-12-31", doc_type=DocumentType.INVOICE),
            make_record(700, NO_DATE, doc_type=DocumentType.INVOICE),
        ]
        stats = dashboard_stats(records, date(2025, 1, 1), date(2025, 12, 31))
        assert stats.total_spend == 150
        assert stats.invoice_count == 1
        assert stats.receipt_count == 2
        assert stats.document_count == 3
        assert stats.spend_label == "Total Spend (2025)"

    def test_period_suffix_across_years(self):
        """Should abbreviate the end year when the window spans years."""
        assert period_suffix(date(2025, 7, 1), date(2026, 6, 30)) == " (2025-26)"

    def test_format_kpi_value(self):
        """Should round and group thousands with a non-breaking space."""
        assert format_kpi_value(1234567.6) == "1\u00a0234\u00a0568"
        assert format_kpi_value(42) == "42"

"""Filtering, free-text search and sorting for the documents table."""

import operator
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Callable, Literal

from invoicedash.models import CanonicalRecord, DocumentType
from invoicedash.services.aggregation import in_window

SortDirection = Literal["asc", "desc"]

# ">100", "<=49.90", ">=-5"
AMOUNT_TOKEN = re.compile(r"^(>=|<=|>|<)(-?\d+(?:\.\d+)?)$")

AMOUNT_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}

# Fields a free-text token is matched against
SEARCH_FIELDS = ("provider", "id", "description", "category", "date", "display_amount")

SORTABLE_FIELDS = {"id", "date", "provider", "description", "currency", "amount", "status", "category", "type"}


@dataclass(frozen=True)
class SortState:
    """Active sort column and direction."""

    key: str
    direction: SortDirection = "asc"


@dataclass(frozen=True)
class FilterSet:
    """
    Filters applied to the documents table, combined with AND.

    The type filter always applies. The date range and month filters drop
    undated records whenever they are set.
    """

    doc_type: DocumentType = DocumentType.INVOICE
    date_range: tuple[date | datetime, date | datetime] | None = None
    month: date | None = None
    query: str = ""


@dataclass(frozen=True)
class AmountCondition:
    """A numeric comparison parsed from a search token such as '>100'."""

    op: str
    threshold: float

    def matches(self, record: CanonicalRecord) -> bool:
        return AMOUNT_OPERATORS[self.op](record.raw_amount, self.threshold)


@dataclass(frozen=True)
class ParsedQuery:
    """Search query split into amount conditions and lowercase text terms."""

    amounts: tuple[AmountCondition, ...] = ()
    terms: tuple[str, ...] = ()


def parse_query(query: str) -> ParsedQuery:
    """Split a search query on whitespace into amount conditions and text terms."""
    amounts = []
    terms = []
    for token in query.split():
        match = AMOUNT_TOKEN.match(token)
        if match:
            amounts.append(AmountCondition(op=match.group(1), threshold=float(match.group(2))))
        else:
            terms.append(token.lower())
    return ParsedQuery(amounts=tuple(amounts), terms=tuple(terms))


def _search_text(record: CanonicalRecord) -> list[str]:
    values = []
    for name in SEARCH_FIELDS:
        value = getattr(record, name)
        values.append(str(getattr(value, "value", value)).lower())
    return values


def matches_query(record: CanonicalRecord, parsed: ParsedQuery) -> bool:
    """Every amount condition and every text term must match."""
    if not all(cond.matches(record) for cond in parsed.amounts):
        return False
    if not parsed.terms:
        return True
    haystack = _search_text(record)
    return all(any(term in value for value in haystack) for term in parsed.terms)


def _same_month(record: CanonicalRecord, month: date) -> bool:
    parsed = record.parsed_date
    if parsed is None:
        return False
    return parsed.year == month.year and parsed.month == month.month


def filter_records(records: list[CanonicalRecord], filters: FilterSet) -> list[CanonicalRecord]:
    parsed = parse_query(filters.query)
    result = []
    for record in records:
        if record.type != filters.doc_type:
            continue
        if filters.date_range is not None and not in_window(record, *filters.date_range):
            continue
        if filters.month is not None and not _same_month(record, filters.month):
            continue
        if not matches_query(record, parsed):
            continue
        result.append(record)
    return result


def _sort_value(record: CanonicalRecord, key: str) -> Any:
    if key == "amount":
        return record.raw_amount
    value = getattr(record, key)
    return getattr(value, "value", value)


def sort_records(records: list[CanonicalRecord], sort: SortState | None) -> list[CanonicalRecord]:
    """
    Stable sort by one column.

    The amount column sorts on the numeric raw amount. Equal values keep their
    incoming order in both directions.
    """
    if sort is None:
        return list(records)
    if sort.key not in SORTABLE_FIELDS:
        raise ValueError(f"Cannot sort by {sort.key!r}")
    return sorted(records, key=lambda r: _sort_value(r, sort.key), reverse=sort.direction == "desc")


def request_sort(current: SortState | None, key: str) -> SortState:
    """Next sort state after clicking a column: asc first, then toggling."""
    if current is not None and current.key == key and current.direction == "asc":
        return SortState(key=key, direction="desc")
    return SortState(key=key, direction="asc")


def apply(
    records: list[CanonicalRecord], filters: FilterSet, sort: SortState | None = None
) -> list[CanonicalRecord]:
    """Filter then sort the collection for the documents table."""
    return sort_records(filter_records(records, filters), sort)


@dataclass
class TableState:
    """View state of the documents table: active filters and sort column."""

    filters: FilterSet = field(default_factory=FilterSet)
    sort: SortState | None = None

    def select_tab(self, doc_type: DocumentType) -> None:
        # Switching tabs starts from an unsorted table
        self.filters = replace(self.filters, doc_type=doc_type)
        self.sort = None

    def toggle_sort(self, key: str) -> SortState:
        self.sort = request_sort(self.sort, key)
        return self.sort

    def rows(self, records: list[CanonicalRecord]) -> list[CanonicalRecord]:
        return apply(records, self.filters, self.sort)

"""Normalization of spreadsheet-shaped records into canonical records.

Rows coming back from the workflow backend are loosely shaped: keys vary in
casing and naming, and any field may be missing. Every canonical field is
resolved through an ordered list of accepted source keys (``FIELD_ALIASES``)
and falls back to a fixed default, so normalization never fails.
"""

import logging
import math
import re
import unicodedata
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser

from invoicedash.models import (
    NO_DATE,
    CanonicalRecord,
    Category,
    DocumentStatus,
    DocumentType,
    ExtractedFields,
)

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "CHF"
UNKNOWN_PROVIDER = "Unknown Provider"

# Accepted source keys per canonical field, in priority order.
# Keys are compared after _normalize_key().
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("invoice_nr", "invoice_number", "invoice_no", "invoice_id", "id"),
    "provider": ("provider", "vendor", "supplier"),
    "date": ("date_invoice", "invoice_date"),
    "description": ("description",),
    "gross_amount": ("gross_amount", "amount_gross", "gross"),
    "currency": ("currency",),
    "status": ("status", "label"),
    "type": ("type", "document_type", "doc_type"),
    "category": ("category",),
    "link": ("link", "url", "file", "document"),
}

# Upload extraction payloads use their own, looser naming
EXTRACTED_ALIASES: dict[str, tuple[str, ...]] = {
    "provider": ("provider", "vendor", "supplier", "merchant"),
    "date": ("date", "date_invoice", "invoice_date"),
    "amount": ("amount", "gross_amount", "total", "total_amount"),
    "currency": ("currency",),
    "description": ("description", "details"),
}

# First matching status wins; checked in this order for each source field
STATUS_TOKENS: tuple[tuple[DocumentStatus, tuple[str, ...]], ...] = (
    (
        DocumentStatus.IN_THE_BOOKS,
        ("in_the_books", "in the books", "booked", "accounted", "comptabilise", "processed", "paye"),
    ),
    (
        DocumentStatus.CATEGORIZED,
        ("categoriz", "categoris", "classified", "classe"),
    ),
)

# Labels that negate a status token, e.g. "Impayé" or "Uncategorized"
NEGATED_STATUS_TOKENS = ("impaye", "unpaid", "unprocess", "unbooked", "uncategor", "not ")

RECEIPT_TOKENS = ("receipt", "ticket", "recu", "quittance")

# Categories accepted verbatim from the source; anything else is Miscellaneous
NAMED_CATEGORIES = {c.value: c for c in Category if c is not Category.MISCELLANEOUS}

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}

# Fill-in values for dateutil; a date parses the same under both only if complete
_DEFAULT_A = datetime(1, 1, 1)
_DEFAULT_B = datetime(2, 2, 2)

_KEY_SEPARATORS = re.compile(r"[\s\-]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _normalize_key(key: Any) -> str:
    """'Invoice Nr', 'invoiceNr' and 'INVOICE-NR' all become 'invoice_nr'."""
    text = _CAMEL_BOUNDARY.sub("_", str(key).strip())
    return _KEY_SEPARATORS.sub("_", text.lower())


def _fold(text: str) -> str:
    """Lowercase and strip accents so 'Payé' compares equal to 'paye'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _lookup(raw: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    """Return the first non-blank value found under any alias."""
    for alias in aliases:
        value = raw.get(alias)
        if not _is_blank(value):
            return value
    return None


def _keyed(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    keyed: dict[str, Any] = {}
    for key, value in raw.items():
        # First spelling of a key wins when two collapse to the same name
        keyed.setdefault(_normalize_key(key), value)
    return keyed


def parse_amount(value: Any) -> float:
    """Parse a numeric amount; anything missing, non-numeric or non-finite gives 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str):
        try:
            amount = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def parse_invoice_date(value: Any) -> str:
    """Interpret a raw invoice date as an ISO calendar date, or NO_DATE."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return NO_DATE
    text = value.strip()
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        pass
    try:
        # Parsed twice so components missing from the text show up as a mismatch
        first = date_parser.parse(text, default=_DEFAULT_A)
        second = date_parser.parse(text, default=_DEFAULT_B)
    except (ValueError, OverflowError):
        return NO_DATE
    if first.date() != second.date():
        return NO_DATE
    return first.date().isoformat()


def format_display_amount(value: Any, currency: str) -> str:
    """Format a gross amount for display, e.g. '€12.50' or 'CHF 12.50'."""
    if _is_blank(value):
        return "-"
    amount = parse_amount(value)
    symbol = CURRENCY_SYMBOLS.get(currency)
    if symbol:
        return f"{symbol}{amount:.2f}"
    return f"{currency} {amount:.2f}"


def derive_status(*texts: Any) -> DocumentStatus:
    """Map free-text status/label values onto a DocumentStatus."""
    for text in texts:
        if _is_blank(text):
            continue
        folded = _fold(str(text))
        if any(token in folded for token in NEGATED_STATUS_TOKENS):
            return DocumentStatus.PENDING
        for status, tokens in STATUS_TOKENS:
            if any(token in folded for token in tokens):
                return status
    return DocumentStatus.PENDING


def derive_type(text: Any) -> DocumentType:
    if _is_blank(text):
        return DocumentType.INVOICE
    folded = _fold(str(text))
    if any(token in folded for token in RECEIPT_TOKENS):
        return DocumentType.RECEIPT
    return DocumentType.INVOICE


def derive_category(value: Any) -> Category:
    if not isinstance(value, str):
        return Category.MISCELLANEOUS
    return NAMED_CATEGORIES.get(value.strip(), Category.MISCELLANEOUS)


def normalize_record(raw: Any, index: int, default_currency: str = DEFAULT_CURRENCY) -> CanonicalRecord:
    """Normalize a single raw row. Never raises."""
    row = _keyed(raw)
    if not row:
        logger.debug(f"Row {index} is empty or not a mapping, using defaults")

    def field(name: str) -> Any:
        return _lookup(row, FIELD_ALIASES[name])

    invoice_nr = field("id")
    currency = field("currency")
    currency = str(currency).strip() if currency is not None else default_currency
    gross = field("gross_amount")
    raw_date = field("date")
    parsed_date = parse_invoice_date(raw_date)
    if parsed_date == NO_DATE and raw_date is not None:
        logger.debug(f"Row {index}: unparseable invoice date {raw_date!r}")

    link = field("link")

    return CanonicalRecord(
        id=str(invoice_nr) if invoice_nr is not None else f"UNK-{index}",
        provider=str(field("provider") or UNKNOWN_PROVIDER),
        date=parsed_date,
        display_amount=format_display_amount(gross, currency),
        raw_amount=parse_amount(gross),
        # Explicit status column takes priority over the legacy label column
        status=derive_status(*(row.get(key) for key in FIELD_ALIASES["status"])),
        type=derive_type(field("type")),
        category=derive_category(field("category")),
        description=str(field("description") or ""),
        currency=currency,
        link=str(link) if link is not None else None,
    )


def normalize(raw_records: list[Any], default_currency: str = DEFAULT_CURRENCY) -> list[CanonicalRecord]:
    """
    Normalize raw rows into canonical records.

    One record per input row, in input order. Malformed rows never raise;
    each field falls back to its documented default.
    """
    return [normalize_record(raw, index, default_currency) for index, raw in enumerate(raw_records)]


def normalize_extracted_fields(payload: Any, doc_type: DocumentType) -> ExtractedFields | None:
    """
    Normalize the optional extraction payload returned by the upload webhook.

    The webhook may answer with a single object or a one-element list. Returns
    None when nothing usable came back.
    """
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    row = _keyed(payload)
    if not any(_lookup(row, aliases) is not None for aliases in EXTRACTED_ALIASES.values()):
        return None

    def field(name: str) -> Any:
        return _lookup(row, EXTRACTED_ALIASES[name])

    raw_date = field("date")
    parsed_date = parse_invoice_date(raw_date)
    currency = field("currency")

    return ExtractedFields(
        provider=str(field("provider") or ""),
        date="" if parsed_date == NO_DATE else parsed_date,
        amount=parse_amount(field("amount")),
        currency=str(currency).strip() if currency is not None else DEFAULT_CURRENCY,
        description=str(field("description") or ""),
        type=doc_type,
    )

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, TypeVar

from ..utils import parse_any_date
from .models import (
    BillingFilters,
    BillingSummary,
    InvoiceRecord,
    InvoiceWithDetails,
    LoadReadyForInvoice,
    LoadRecord,
    SummaryBucket,
)

T = TypeVar("T")

_DAY_SECONDS = 86400.0


def sum_amounts(values: Iterable[Optional[float]]) -> float:
    """Sum monetary values, treating None as zero, rounded to cents."""
    total = 0.0
    for v in values:
        total += float(v or 0)
    return round(total, 2)


def compute_invoice_total(loads: Iterable[LoadRecord]) -> float:
    return sum_amounts(l.rate_customer for l in loads)


def default_due_date(date_created: date, payment_terms: Optional[int], fallback_days: int = 30) -> date:
    days = payment_terms if payment_terms else fallback_days
    return date_created + timedelta(days=int(days))


def days_since_delivery(delivery_date: Optional[date], now: datetime) -> int:
    delivered = parse_any_date(delivery_date)
    if delivered is None:
        return 0
    return int(math.floor((now - delivered).total_seconds() / _DAY_SECONDS))


def paid_within(invoice: InvoiceRecord, *, now: datetime, days: int) -> bool:
    if not invoice.is_paid:
        return False
    paid = parse_any_date(invoice.paid_date)
    if paid is None:
        return False
    return paid >= now - timedelta(days=int(days))


# --- Invoice numbers -------------------------------------------------------

_INVOICE_NUMBER_ALLOWED = re.compile(r"[^A-Z0-9._-]+")
_TRAILING_DIGITS = re.compile(r"(\d+)$")


def invoice_period(d: date) -> str:
    return f"{d.year}{d.month:02d}"


def format_invoice_number(period: str, sequence: int) -> str:
    return f"INV-{period}-{int(sequence):04d}"


def invoice_sequence(invoice_number: Optional[str]) -> int:
    m = _TRAILING_DIGITS.search(str(invoice_number or ""))
    return int(m.group(1)) if m else 0


def normalize_invoice_number(value: str) -> str:
    s = str(value or "").strip().upper()
    s = re.sub(r"\s+", "-", s)
    s = _INVOICE_NUMBER_ALLOWED.sub("-", s)
    s = re.sub(r"-+", "-", s).strip("-")
    return s


# --- Filtering -------------------------------------------------------------

def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle in str(haystack or "").lower()


def load_matches_search(load: LoadReadyForInvoice, search: Optional[str]) -> bool:
    needle = str(search or "").strip().lower()
    if not needle:
        return True
    fields: List[Optional[str]] = [load.load_id, load.commodity]
    if load.customer is not None:
        fields.append(load.customer.name)
    for loc in (load.origin_location, load.destination_location):
        if loc is not None:
            fields.extend([loc.city, loc.state, loc.location_name, loc.text])
    return any(_contains(f, needle) for f in fields)


def invoice_matches_filters(invoice: InvoiceWithDetails, filters: Optional[BillingFilters]) -> bool:
    if filters is None:
        return True
    if filters.customer_id and invoice.customer_id != filters.customer_id:
        return False
    if filters.is_paid is not None and bool(invoice.is_paid) != bool(filters.is_paid):
        return False
    if filters.invoice_number:
        if not _contains(invoice.display_number, filters.invoice_number.strip().lower()):
            return False
    if filters.date_from and invoice.date_created < filters.date_from:
        return False
    if filters.date_to and invoice.date_created > filters.date_to:
        return False
    needle = str(filters.search or "").strip().lower()
    if needle:
        fields = [invoice.display_number, invoice.notes]
        if invoice.customer is not None:
            fields.append(invoice.customer.name)
        if not any(_contains(f, needle) for f in fields):
            return False
    return True


def paginate(items: Sequence[T], filters: Optional[BillingFilters]) -> List[T]:
    if filters is None:
        return list(items)
    start = int(filters.offset or 0)
    if filters.limit is None:
        return list(items[start:])
    return list(items[start : start + int(filters.limit)])


def sort_ready_loads(loads: List[LoadReadyForInvoice]) -> List[LoadReadyForInvoice]:
    # Newest delivery first; loads without a delivery date sink to the end.
    out = sorted(loads, key=lambda l: l.load_id)
    out.sort(key=lambda l: l.delivery_date or date.min, reverse=True)
    return out


# --- Summary ---------------------------------------------------------------

def compute_bucket(amounts: Sequence[Optional[float]]) -> SummaryBucket:
    return SummaryBucket(count=len(amounts), amount=sum_amounts(amounts))


def compute_billing_summary(
    *,
    ready_loads: Sequence[LoadRecord],
    outstanding: Sequence[InvoiceRecord],
    paid_recent: Sequence[InvoiceRecord],
) -> BillingSummary:
    return BillingSummary(
        ready_to_invoice=compute_bucket([l.rate_customer for l in ready_loads]),
        outstanding_invoices=compute_bucket([i.total_amount for i in outstanding]),
        paid_last_30_days=compute_bucket([i.total_amount for i in paid_recent]),
    )

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from ..settings import settings
from ..utils import format_long_date, format_money, parse_any_date
from .errors import RenderError
from .models import InvoiceWithDetails, LoadRecord, Location

logger = logging.getLogger(__name__)


PAGE_WIDTH = 612  # Letter
PAGE_HEIGHT = 792
MARGIN_X = 54
TOP_Y = 72

ROW_HEIGHT = 16
# Rows may not start below this line; the rest of the page is for the totals and footer.
ROW_BOTTOM_LIMIT = PAGE_HEIGHT - 90
TOTALS_HEIGHT = 48
FOOTER_HEIGHT = 96

BRAND_RED = (231 / 255, 76 / 255, 60 / 255)
TEXT_DARK = (0.17, 0.24, 0.31)
TEXT_MUTED = (0.5, 0.55, 0.55)
PAID_GREEN = (39 / 255, 174 / 255, 96 / 255)
OUTSTANDING_AMBER = (230 / 255, 126 / 255, 34 / 255)
RULE_GRAY = (0.8, 0.8, 0.8)

FONT = "helv"
FONT_BOLD = "hebo"

# (header, x position, max characters)
TABLE_COLUMNS: Tuple[Tuple[str, float, int], ...] = (
    ("Load ID", MARGIN_X, 12),
    ("Commodity", 130, 12),
    ("Origin", 210, 15),
    ("Destination", 310, 15),
    ("Delivery", 410, 10),
    ("Amount", 490, 16),
)


@dataclass(frozen=True)
class CompanyProfile:
    name: str
    tagline: str
    phone: str
    email: str

    @classmethod
    def from_settings(cls) -> "CompanyProfile":
        return cls(
            name=settings.COMPANY_NAME,
            tagline=settings.COMPANY_TAGLINE,
            phone=settings.COMPANY_PHONE,
            email=settings.BILLING_EMAIL,
        )


@dataclass(frozen=True)
class LineItem:
    load_id: str
    commodity: str
    origin: str
    destination: str
    delivery_date: Optional[date]
    amount: float


@dataclass(frozen=True)
class InvoiceDocument:
    """Everything printed on an invoice, already resolved to display values."""

    invoice_number: str
    date_created: date
    due_date: date
    total_amount: float
    is_paid: bool
    paid_date: Optional[datetime]
    payment_terms: int
    customer_name: str
    customer_email: Optional[str]
    customer_phone: Optional[str]
    line_items: List[LineItem] = field(default_factory=list)

    @property
    def subtotal(self) -> float:
        return round(sum(i.amount for i in self.line_items), 2)


def _location_text(loc: Optional[Location]) -> str:
    if loc is None:
        return "N/A"
    return loc.label() or "N/A"


def _line_item(load: LoadRecord) -> LineItem:
    return LineItem(
        load_id=load.load_id,
        commodity=str(load.commodity or "N/A"),
        origin=_location_text(load.origin_location),
        destination=_location_text(load.destination_location),
        delivery_date=load.delivery_date,
        amount=float(load.rate_customer or 0),
    )


def build_invoice_document(invoice: InvoiceWithDetails, *, default_terms: Optional[int] = None) -> InvoiceDocument:
    customer = invoice.customer
    if customer is None:
        raise RenderError(f"Invoice {invoice.invoice_id} has no customer; cannot render PDF")

    terms = customer.payment_terms or default_terms or settings.DEFAULT_PAYMENT_TERMS_DAYS
    return InvoiceDocument(
        invoice_number=invoice.display_number,
        date_created=invoice.date_created,
        due_date=invoice.due_date or invoice.date_created,
        total_amount=float(invoice.total_amount or 0),
        is_paid=bool(invoice.is_paid),
        paid_date=parse_any_date(invoice.paid_date),
        payment_terms=int(terms),
        customer_name=customer.name or "Unknown Customer",
        customer_email=customer.primary_contact_email,
        customer_phone=customer.primary_contact_phone,
        line_items=[_line_item(l) for l in invoice.loads],
    )


def _clip(text: str, limit: int) -> str:
    text = str(text or "")
    return text if len(text) <= limit else text[:limit]


def _short_date(value: Optional[date]) -> str:
    dt = parse_any_date(value)
    return dt.strftime("%m/%d/%Y") if dt else "N/A"


class _Writer:
    """Tracks the current page and cursor while laying out the invoice."""

    def __init__(self, doc: fitz.Document):
        self.doc = doc
        self.page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = float(TOP_Y)

    def text(self, x: float, y: float, value: str, *, size: float = 10, bold: bool = False, color=TEXT_DARK) -> None:
        self.page.insert_text((x, y), value, fontsize=size, fontname=FONT_BOLD if bold else FONT, color=color)

    def rule(self, y: float) -> None:
        self.page.draw_line((MARGIN_X, y), (PAGE_WIDTH - MARGIN_X, y), color=RULE_GRAY, width=0.5)

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = float(TOP_Y)

    def ensure_room(self, height: float, limit: float = PAGE_HEIGHT - 36) -> bool:
        if self.y + height <= limit:
            return False
        self.new_page()
        return True


def _draw_header(w: _Writer, doc: InvoiceDocument, company: CompanyProfile) -> None:
    w.text(MARGIN_X, 72, company.name, size=22, bold=True, color=BRAND_RED)
    w.text(MARGIN_X, 92, company.tagline, size=10, color=TEXT_MUTED)
    w.text(MARGIN_X, 106, f"Phone: {company.phone}", size=10, color=TEXT_MUTED)
    w.text(MARGIN_X, 120, f"Email: {company.email}", size=10, color=TEXT_MUTED)

    x = 400
    w.text(x, 72, "INVOICE", size=20, bold=True)
    w.text(x, 92, f"Invoice #: {doc.invoice_number}")
    w.text(x, 106, f"Date: {format_long_date(doc.date_created)}")
    w.text(x, 120, f"Due Date: {format_long_date(doc.due_date)}")
    if doc.is_paid:
        w.text(x, 138, "PAID", size=12, bold=True, color=PAID_GREEN)
        if doc.paid_date:
            w.text(x, 152, f"Paid: {format_long_date(doc.paid_date)}", size=9, color=TEXT_MUTED)
    else:
        w.text(x, 138, "OUTSTANDING", size=12, bold=True, color=OUTSTANDING_AMBER)


def _draw_parties(w: _Writer, doc: InvoiceDocument) -> None:
    y = 190
    w.text(MARGIN_X, y, "Bill To:", size=13, bold=True, color=BRAND_RED)
    w.text(MARGIN_X, y + 18, doc.customer_name, size=11, bold=True)
    line_y = y + 32
    if doc.customer_email:
        w.text(MARGIN_X, line_y, f"Email: {doc.customer_email}")
        line_y += 14
    if doc.customer_phone:
        w.text(MARGIN_X, line_y, f"Phone: {doc.customer_phone}")

    x = 330
    w.text(x, y, "Payment Terms:", size=13, bold=True, color=BRAND_RED)
    w.text(x, y + 18, f"Net {doc.payment_terms} days", size=11)
    w.text(x, y + 32, f"Total: {format_money(doc.total_amount)}", size=11, bold=True)
    w.y = 262.0


def _draw_table_header(w: _Writer, title: str) -> None:
    w.text(MARGIN_X, w.y, title, size=13, bold=True, color=BRAND_RED)
    w.y += 20
    for label, x, _ in TABLE_COLUMNS:
        w.text(x, w.y, label, size=9, bold=True)
    w.rule(w.y + 4)
    w.y += ROW_HEIGHT


def _draw_rows(w: _Writer, items: Sequence[LineItem]) -> int:
    rows = 0
    for item in items:
        # A row is placed whole on one page; overflow starts a continuation page.
        if w.y + ROW_HEIGHT > ROW_BOTTOM_LIMIT:
            w.new_page()
            _draw_table_header(w, "Loads (continued):")
        values = (
            item.load_id,
            item.commodity,
            item.origin,
            item.destination,
            _short_date(item.delivery_date),
            format_money(item.amount),
        )
        for (_, x, limit), value in zip(TABLE_COLUMNS, values):
            w.text(x, w.y, _clip(value, limit), size=9)
        w.y += ROW_HEIGHT
        rows += 1
    return rows


def _draw_totals(w: _Writer, doc: InvoiceDocument) -> None:
    w.ensure_room(TOTALS_HEIGHT)
    w.rule(w.y - 8)
    label_x = 410
    amount_x = 490
    w.y += 6
    w.text(label_x, w.y, "Subtotal:")
    w.text(amount_x, w.y, format_money(doc.subtotal))
    w.y += 18
    w.text(label_x, w.y, "Total:", size=12, bold=True)
    w.text(amount_x, w.y, format_money(doc.total_amount), size=12, bold=True)
    w.y += 30


def _draw_footer(w: _Writer, doc: InvoiceDocument, company: CompanyProfile) -> None:
    w.ensure_room(FOOTER_HEIGHT)
    w.text(MARGIN_X, w.y, "Payment Instructions:", size=11, bold=True)
    lines = [
        f"Please remit payment within {doc.payment_terms} days of invoice date.",
        "Include invoice number on payment.",
        f"For questions, contact {company.email}",
    ]
    for line in lines:
        w.y += 14
        w.text(MARGIN_X, w.y, line, size=9, color=TEXT_MUTED)
    w.y += 26
    w.text(MARGIN_X, w.y, "Thank you for your business!", size=11, bold=True, color=BRAND_RED)


def render_invoice_document(doc: InvoiceDocument, company: Optional[CompanyProfile] = None) -> bytes:
    company = company or CompanyProfile.from_settings()
    pdf = fitz.open()
    try:
        w = _Writer(pdf)
        _draw_header(w, doc, company)
        _draw_parties(w, doc)
        _draw_table_header(w, "Loads:")
        rows = _draw_rows(w, doc.line_items)
        _draw_totals(w, doc)
        _draw_footer(w, doc, company)
        out = pdf.tobytes()
        logger.debug("Rendered invoice %s: %d rows on %d pages", doc.invoice_number, rows, pdf.page_count)
        return out
    except (RuntimeError, ValueError) as e:
        raise RenderError(f"Failed to render invoice {doc.invoice_number}: {e}") from e
    finally:
        pdf.close()


def generate_invoice_pdf(invoice: InvoiceWithDetails, company: Optional[CompanyProfile] = None) -> bytes:
    """Render a complete invoice (with customer and loads) to PDF bytes."""
    return render_invoice_document(build_invoice_document(invoice), company)

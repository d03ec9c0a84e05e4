from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class LoadStatus(str, Enum):
    PENDING_PICKUP = "Pending Pickup"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Location(BaseModel):
    id: Optional[str] = None
    location_name: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    # Free-form fallback when the source only had a string.
    text: Optional[str] = None

    def label(self) -> str:
        parts = [p for p in [self.city, self.state] if p]
        if parts:
            return ", ".join(parts)
        return self.location_name or self.text or ""


class Customer(BaseModel):
    customer_id: str
    name: str
    primary_contact_name: Optional[str] = None
    primary_contact_email: Optional[str] = None
    primary_contact_phone: Optional[str] = None
    credit_limit: Optional[float] = None
    payment_terms: Optional[int] = None
    consolidated_invoicing: bool = False

    created_at: Optional[float] = None
    updated_at: Optional[float] = None


class LoadRecord(BaseModel):
    load_id: str
    customer_id: str
    commodity: Optional[str] = None
    status: str

    pickup_date: Optional[date] = None
    delivery_date: Optional[date] = None

    rate_customer: Optional[float] = None

    # Null until the load is linked to an invoice.
    invoice_id: Optional[str] = None

    origin_location: Optional[Location] = None
    destination_location: Optional[Location] = None

    created_at: Optional[float] = None
    updated_at: Optional[float] = None

    @field_validator("origin_location", "destination_location", mode="before")
    @classmethod
    def _coerce_location(cls, value: Any) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        if isinstance(value, (dict, Location)):
            return value
        if isinstance(value, str):
            text = value.strip()
            return {"text": text} if text else None
        return {"text": str(value)}

    @field_validator("pickup_date", "delivery_date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        # Firestore hands back datetimes for timestamp fields.
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value


class LoadReadyForInvoice(LoadRecord):
    customer: Optional[Customer] = None
    days_since_delivery: int = 0


class InvoiceRecord(BaseModel):
    invoice_id: str
    invoice_number: Optional[str] = None

    customer_id: str

    date_created: date
    due_date: Optional[date] = None

    # Snapshot of the linked loads' rates at creation time.
    total_amount: Optional[float] = None

    is_paid: bool = False
    paid_date: Optional[datetime] = None

    notes: Optional[str] = None
    load_ids: List[str] = Field(default_factory=list)

    pdf_path: Optional[str] = None

    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: float
    updated_at: float

    @property
    def display_number(self) -> str:
        return self.invoice_number or f"INV-{self.invoice_id}"


class InvoiceWithDetails(InvoiceRecord):
    customer: Optional[Customer] = None
    loads: List[LoadRecord] = Field(default_factory=list)


class BillingFilters(BaseModel):
    customer_id: Optional[str] = None
    invoice_number: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    is_paid: Optional[bool] = None

    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class InvoiceCreateRequest(BaseModel):
    customer_id: str
    load_ids: List[str] = Field(default_factory=list)
    due_date: Optional[date] = None
    notes: Optional[str] = None

    # If omitted, the next INV-YYYYMM-NNNN number is assigned.
    invoice_number: Optional[str] = None


class InvoiceUpdateRequest(BaseModel):
    invoice_number: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class MarkPaidRequest(BaseModel):
    paid_date: Optional[datetime] = None


class InvoicePdfRequest(BaseModel):
    filename: Optional[str] = None


class InvoicePdfResponse(BaseModel):
    file_path: str
    file_name: str


class InvoicePdfUrlResponse(BaseModel):
    url: str
    expires_in: int


class SummaryBucket(BaseModel):
    count: int = 0
    amount: float = 0.0


class BillingSummary(BaseModel):
    ready_to_invoice: SummaryBucket
    outstanding_invoices: SummaryBucket
    paid_last_30_days: SummaryBucket


class LoadsReadyResponse(BaseModel):
    loads: List[LoadReadyForInvoice]
    total: int


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceWithDetails]
    total: int


class CustomerListResponse(BaseModel):
    customers: List[Customer]
    total: int

from __future__ import annotations

import io
import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from ..auth import require_dispatcher
from ..settings import settings
from .errors import BillingError
from .models import (
    BillingFilters,
    BillingSummary,
    CustomerListResponse,
    InvoiceCreateRequest,
    InvoiceListResponse,
    InvoicePdfRequest,
    InvoicePdfResponse,
    InvoicePdfUrlResponse,
    InvoiceUpdateRequest,
    InvoiceWithDetails,
    LoadsReadyResponse,
    MarkPaidRequest,
)
from .repo import (
    create_invoice,
    generate_and_persist_invoice_pdf,
    get_billing_summary,
    get_invoice_pdf_url,
    get_invoice_with_details,
    get_invoices,
    get_loads_ready_for_invoice,
    get_outstanding_invoices,
    get_paid_invoices_last_30_days,
    list_customers,
    mark_invoice_paid,
    render_invoice_pdf,
    update_invoice,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _http_error(e: BillingError) -> HTTPException:
    if e.status_code >= 500:
        logger.error("Billing request failed: %s", e)
    return HTTPException(status_code=e.status_code, detail=str(e))


def billing_filters(
    customer_id: Optional[str] = None,
    invoice_number: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    is_paid: Optional[bool] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> BillingFilters:
    return BillingFilters(
        customer_id=customer_id,
        invoice_number=invoice_number,
        search=search,
        date_from=date_from,
        date_to=date_to,
        is_paid=is_paid,
        limit=limit,
        offset=offset,
    )


def _generate_pdf_in_background(invoice_id: str, user: Dict[str, Any]) -> None:
    try:
        generate_and_persist_invoice_pdf(invoice_id=invoice_id, user=user)
    except BillingError as e:
        # The invoice itself is already committed; the PDF can be regenerated on demand.
        logger.warning("Background PDF generation failed for invoice %s: %s", invoice_id, e)


@router.get("/summary", response_model=BillingSummary)
async def billing_summary(user: Dict[str, Any] = Depends(require_dispatcher)):
    try:
        return get_billing_summary()
    except BillingError as e:
        raise _http_error(e)


@router.get("/customers", response_model=CustomerListResponse)
async def billing_customers(
    limit: int = Query(default=500, ge=1, le=1000),
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        items = list_customers(limit=limit)
        return CustomerListResponse(customers=items, total=len(items))
    except BillingError as e:
        raise _http_error(e)


@router.get("/loads/ready", response_model=LoadsReadyResponse)
async def loads_ready(
    filters: BillingFilters = Depends(billing_filters),
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        items = get_loads_ready_for_invoice(filters=filters)
        return LoadsReadyResponse(loads=items, total=len(items))
    except BillingError as e:
        raise _http_error(e)


@router.get("/invoices", response_model=InvoiceListResponse)
async def invoices_list(
    filters: BillingFilters = Depends(billing_filters),
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        items = get_invoices(filters=filters)
        return InvoiceListResponse(invoices=items, total=len(items))
    except BillingError as e:
        raise _http_error(e)


@router.get("/invoices/outstanding", response_model=InvoiceListResponse)
async def invoices_outstanding(
    filters: BillingFilters = Depends(billing_filters),
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        items = get_outstanding_invoices(filters=filters)
        return InvoiceListResponse(invoices=items, total=len(items))
    except BillingError as e:
        raise _http_error(e)


@router.get("/invoices/paid-recent", response_model=InvoiceListResponse)
async def invoices_paid_recent(
    filters: BillingFilters = Depends(billing_filters),
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        items = get_paid_invoices_last_30_days(filters=filters)
        return InvoiceListResponse(invoices=items, total=len(items))
    except BillingError as e:
        raise _http_error(e)


@router.post("/invoices", response_model=InvoiceWithDetails)
async def invoices_create(
    req: InvoiceCreateRequest,
    background_tasks: BackgroundTasks,
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        inv = create_invoice(request=req, user=user)
    except BillingError as e:
        raise _http_error(e)

    if settings.AUTO_GENERATE_INVOICE_PDF:
        background_tasks.add_task(_generate_pdf_in_background, inv.invoice_id, user)
    return inv


@router.get("/invoices/{invoice_id}", response_model=InvoiceWithDetails)
async def invoices_get(invoice_id: str, user: Dict[str, Any] = Depends(require_dispatcher)):
    try:
        return get_invoice_with_details(invoice_id=invoice_id)
    except BillingError as e:
        raise _http_error(e)


@router.patch("/invoices/{invoice_id}", response_model=InvoiceWithDetails)
async def invoices_update(
    invoice_id: str,
    req: InvoiceUpdateRequest,
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        return update_invoice(invoice_id=invoice_id, request=req, user=user)
    except BillingError as e:
        raise _http_error(e)


@router.post("/invoices/{invoice_id}/mark-paid", response_model=InvoiceWithDetails)
async def invoices_mark_paid(
    invoice_id: str,
    req: Optional[MarkPaidRequest] = None,
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        return mark_invoice_paid(invoice_id=invoice_id, user=user, paid_date=(req.paid_date if req else None))
    except BillingError as e:
        raise _http_error(e)


@router.post("/invoices/{invoice_id}/pdf", response_model=InvoicePdfResponse)
async def invoices_pdf_store(
    invoice_id: str,
    req: Optional[InvoicePdfRequest] = None,
    user: Dict[str, Any] = Depends(require_dispatcher),
):
    try:
        return generate_and_persist_invoice_pdf(
            invoice_id=invoice_id,
            filename=(req.filename if req else None),
            user=user,
        )
    except BillingError as e:
        raise _http_error(e)


@router.get("/invoices/{invoice_id}/pdf")
async def invoices_pdf_download(invoice_id: str, user: Dict[str, Any] = Depends(require_dispatcher)):
    try:
        data, filename = render_invoice_pdf(invoice_id=invoice_id)
    except BillingError as e:
        raise _http_error(e)
    return StreamingResponse(
        io.BytesIO(data),
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.get("/invoices/{invoice_id}/pdf-url", response_model=InvoicePdfUrlResponse)
async def invoices_pdf_url(invoice_id: str, user: Dict[str, Any] = Depends(require_dispatcher)):
    try:
        return get_invoice_pdf_url(invoice_id=invoice_id)
    except BillingError as e:
        raise _http_error(e)

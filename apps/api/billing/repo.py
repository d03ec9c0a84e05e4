from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from firebase_admin import firestore
from google.api_core.exceptions import Aborted, GoogleAPIError

from ..database import db
from ..settings import settings
from ..utils import parse_any_date, to_isoformat, utcnow
from .errors import BillingError, ConflictError, DependencyError, NotFoundError, ValidationError
from .models import (
    BillingFilters,
    BillingSummary,
    Customer,
    InvoiceCreateRequest,
    InvoicePdfResponse,
    InvoicePdfUrlResponse,
    InvoiceRecord,
    InvoiceUpdateRequest,
    InvoiceWithDetails,
    LoadReadyForInvoice,
    LoadRecord,
    LoadStatus,
)
from .pdf import generate_invoice_pdf
from .service import (
    compute_billing_summary,
    compute_invoice_total,
    days_since_delivery,
    default_due_date,
    format_invoice_number,
    invoice_matches_filters,
    invoice_period,
    invoice_sequence,
    load_matches_search,
    normalize_invoice_number,
    paginate,
    paid_within,
    sort_ready_loads,
)
from .state import PaymentState, assert_transition, ineligibility_reason, is_eligible_for_invoice, payment_state
from .storage import invoice_pdf_signed_url, persist_invoice_pdf

logger = logging.getLogger(__name__)


def _now() -> float:
    return float(time.time())


def _epoch(dt: datetime) -> float:
    return dt.replace(tzinfo=timezone.utc).timestamp()


@contextmanager
def _store_call(operation: str) -> Iterator[None]:
    try:
        yield
    except GoogleAPIError as e:
        raise DependencyError(operation, str(e)) from e


def _log_action(user_id: Optional[str], action: str, details: str) -> None:
    try:
        db.collection("audit_logs").add({
            "user_id": user_id,
            "action": action,
            "details": details,
            "timestamp": firestore.SERVER_TIMESTAMP,
        })
    except GoogleAPIError as e:
        logger.warning("Audit log error (%s): %s", action, e)


def _user_id(user: Optional[Dict[str, Any]]) -> Optional[str]:
    return str((user or {}).get("uid") or "").strip() or None


# --- Document references / decoding ---------------------------------------

def _customer_doc_ref(customer_id: str):
    return db.collection("customers").document(str(customer_id))


def _load_doc_ref(load_id: str):
    return db.collection("loads").document(str(load_id))


def _invoice_doc_ref(invoice_id: str):
    return db.collection("invoices").document(str(invoice_id))


def _invoice_counter_ref(period: str):
    return db.collection("counters").document(f"invoice_number_{period}")


def _invoice_number_index_ref(invoice_number: str):
    return db.collection("invoice_numbers").document(str(invoice_number))


def _customer_from_snap(snap) -> Customer:
    d = snap.to_dict() or {}
    d["customer_id"] = str(d.get("customer_id") or snap.id)
    d["name"] = str(d.get("name") or "")
    return Customer(**d)


def _load_from_dict(d: Dict[str, Any], load_id: str) -> LoadRecord:
    d = dict(d)
    d["load_id"] = str(d.get("load_id") or load_id)
    d["customer_id"] = str(d.get("customer_id") or "")
    d["status"] = str(d.get("status") or "")
    return LoadRecord(**d)


def _load_from_snap(snap) -> LoadRecord:
    return _load_from_dict(snap.to_dict() or {}, snap.id)


def _invoice_from_dict(d: Dict[str, Any], invoice_id: str) -> InvoiceRecord:
    d = dict(d)
    d.setdefault("invoice_id", invoice_id)
    return InvoiceRecord(**d)


def _invoice_from_snap(snap) -> InvoiceRecord:
    return _invoice_from_dict(snap.to_dict() or {}, snap.id)


# --- Customers --------------------------------------------------------------

def list_customers(*, limit: int = 500) -> List[Customer]:
    with _store_call("fetch customers"):
        snaps = list(db.collection("customers").limit(int(limit)).stream())
    out = [_customer_from_snap(s) for s in snaps]
    out.sort(key=lambda c: (c.name.lower(), c.customer_id))
    return out


def get_customer(*, customer_id: str) -> Customer:
    with _store_call("fetch customer"):
        snap = _customer_doc_ref(customer_id).get()
    if not snap.exists:
        raise NotFoundError(f"Customer {customer_id} not found")
    return _customer_from_snap(snap)


def _customers_by_id(customer_ids: Iterable[str]) -> Dict[str, Customer]:
    out: Dict[str, Customer] = {}
    for cid in sorted({c for c in customer_ids if c}):
        with _store_call("fetch customer"):
            snap = _customer_doc_ref(cid).get()
        if snap.exists:
            out[cid] = _customer_from_snap(snap)
    return out


# --- Load Aggregator ---------------------------------------------------------

def _ready_loads(*, customer_id: Optional[str] = None) -> List[LoadRecord]:
    """Delivered loads with no invoice reference.

    Firestore only matches `invoice_id == None` when the field is present, so
    the invoice check runs locally.
    """
    with _store_call("fetch loads ready for invoice"):
        q = db.collection("loads").where("status", "==", LoadStatus.DELIVERED.value)
        if customer_id:
            q = q.where("customer_id", "==", str(customer_id))
        snaps = list(q.stream())
    loads = [_load_from_snap(s) for s in snaps]
    return [l for l in loads if is_eligible_for_invoice(l)]


def get_loads_ready_for_invoice(
    *,
    filters: Optional[BillingFilters] = None,
    now: Optional[datetime] = None,
) -> List[LoadReadyForInvoice]:
    """Loads eligible for invoicing, each with its customer and days since delivery."""
    now = now or utcnow()
    loads = _ready_loads(customer_id=(filters.customer_id if filters else None))
    customers = _customers_by_id(l.customer_id for l in loads)

    out: List[LoadReadyForInvoice] = []
    for load in loads:
        item = LoadReadyForInvoice(
            **load.model_dump(),
            customer=customers.get(load.customer_id),
            days_since_delivery=days_since_delivery(load.delivery_date, now),
        )
        if load_matches_search(item, filters.search if filters else None):
            out.append(item)

    return paginate(sort_ready_loads(out), filters)


def _invoice_records(*, customer_id: Optional[str] = None, is_paid: Optional[bool] = None) -> List[InvoiceRecord]:
    with _store_call("fetch invoices"):
        q = db.collection("invoices")
        if customer_id:
            q = q.where("customer_id", "==", str(customer_id))
        if is_paid is not None:
            q = q.where("is_paid", "==", bool(is_paid))
        snaps = list(q.stream())
    return [_invoice_from_snap(s) for s in snaps]


def get_billing_summary(*, now: Optional[datetime] = None) -> BillingSummary:
    now = now or utcnow()
    ready = _ready_loads()
    outstanding = _invoice_records(is_paid=False)
    paid = [
        inv
        for inv in _invoice_records(is_paid=True)
        if paid_within(inv, now=now, days=settings.PAID_LOOKBACK_DAYS)
    ]
    return compute_billing_summary(ready_loads=ready, outstanding=outstanding, paid_recent=paid)


# --- Invoice listings (Payment Tracker reads) -------------------------------

def _linked_loads(invoice: InvoiceRecord) -> List[LoadRecord]:
    with _store_call("fetch invoice loads"):
        snaps = list(db.collection("loads").where("invoice_id", "==", invoice.invoice_id).stream())
    loads = [_load_from_snap(s) for s in snaps]
    order = {lid: i for i, lid in enumerate(invoice.load_ids)}
    loads.sort(key=lambda l: (order.get(l.load_id, len(order)), l.load_id))
    return loads


def _with_details(invoices: List[InvoiceRecord]) -> List[InvoiceWithDetails]:
    customers = _customers_by_id(i.customer_id for i in invoices)
    return [
        InvoiceWithDetails(
            **inv.model_dump(),
            customer=customers.get(inv.customer_id),
            loads=_linked_loads(inv),
        )
        for inv in invoices
    ]


def _list_invoices(
    filters: Optional[BillingFilters],
    keep: Optional[Callable[[InvoiceRecord], bool]] = None,
) -> List[InvoiceWithDetails]:
    records = _invoice_records(
        customer_id=(filters.customer_id if filters else None),
        is_paid=(filters.is_paid if filters else None),
    )
    if keep is not None:
        records = [r for r in records if keep(r)]
    details = [i for i in _with_details(records) if invoice_matches_filters(i, filters)]
    details.sort(key=lambda r: (float(r.created_at or 0), r.invoice_id), reverse=True)
    return paginate(details, filters)


def get_invoices(*, filters: Optional[BillingFilters] = None) -> List[InvoiceWithDetails]:
    return _list_invoices(filters)


def get_outstanding_invoices(*, filters: Optional[BillingFilters] = None) -> List[InvoiceWithDetails]:
    f = (filters or BillingFilters()).model_copy(update={"is_paid": False})
    return _list_invoices(f)


def get_paid_invoices_last_30_days(
    *,
    filters: Optional[BillingFilters] = None,
    now: Optional[datetime] = None,
) -> List[InvoiceWithDetails]:
    now = now or utcnow()
    f = (filters or BillingFilters()).model_copy(update={"is_paid": True})
    return _list_invoices(f, keep=lambda inv: paid_within(inv, now=now, days=settings.PAID_LOOKBACK_DAYS))


def get_invoice(*, invoice_id: str) -> InvoiceRecord:
    with _store_call("fetch invoice"):
        snap = _invoice_doc_ref(invoice_id).get()
    if not snap.exists:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return _invoice_from_snap(snap)


def get_invoice_with_details(*, invoice_id: str) -> InvoiceWithDetails:
    return _with_details([get_invoice(invoice_id=invoice_id)])[0]


# --- Invoice Builder ---------------------------------------------------------

def _invoice_number_exists(invoice_number: str) -> bool:
    # Invoices written before the number index existed are only found by query.
    with _store_call("check invoice number"):
        if _invoice_number_index_ref(invoice_number).get().exists:
            return True
        snaps = list(db.collection("invoices").where("invoice_number", "==", invoice_number).limit(1).stream())
    return bool(snaps)


def _invoice_number_index_doc(record: InvoiceRecord, invoice_number: str) -> Dict[str, Any]:
    return {
        "invoice_id": record.invoice_id,
        "invoice_number": invoice_number,
        "customer_id": record.customer_id,
        "created_at": record.created_at,
    }


def _scan_next_invoice_number(created: date) -> str:
    """Next free INV-YYYYMM-NNNN derived from this month's invoices (no counter document)."""
    period = invoice_period(created)
    with _store_call("allocate invoice number"):
        snaps = list(db.collection("invoices").where("invoice_period", "==", period).stream())
    seq = max((invoice_sequence((s.to_dict() or {}).get("invoice_number")) for s in snaps), default=0) + 1
    while _invoice_number_exists(format_invoice_number(period, seq)):
        seq += 1
    return format_invoice_number(period, seq)


def _fetch_loads(load_ids: List[str]) -> List[LoadRecord]:
    out: List[LoadRecord] = []
    for lid in load_ids:
        with _store_call("fetch loads for invoice"):
            snap = _load_doc_ref(lid).get()
        if not snap.exists:
            raise NotFoundError(f"Load {lid} not found")
        out.append(_load_from_snap(snap))
    return out


def _validated_load_ids(raw: Iterable[Any]) -> List[str]:
    load_ids = [str(x).strip() for x in raw if str(x or "").strip()]
    if not load_ids:
        raise ValidationError("At least one load is required to create an invoice")
    if len(set(load_ids)) != len(load_ids):
        raise ValidationError("load_ids must not contain duplicates")
    return load_ids


def _invoice_document(record: InvoiceRecord) -> Dict[str, Any]:
    doc = record.model_dump(mode="json")
    doc["invoice_period"] = invoice_period(record.date_created)
    return doc


_CONTENTION_CONFLICT = "Invoices changed while this request was running; refresh and retry"
_TXN_EXHAUSTED_PREFIX = "Failed to commit transaction"


def _run_transaction(operation: str, fn: Callable[[Any], Any]) -> Any:
    """Run a `@firestore.transactional` function, mapping contention to ConflictError."""
    try:
        with _store_call(operation):
            return fn(db.transaction())
    except DependencyError as e:
        if isinstance(e.__cause__, Aborted):
            raise ConflictError(_CONTENTION_CONFLICT) from e
        raise
    except ValueError as e:
        # Only the SDK's "retries exhausted" error; data errors (e.g. pydantic) propagate.
        if isinstance(e, BillingError) or not str(e).startswith(_TXN_EXHAUSTED_PREFIX):
            raise
        raise ConflictError(_CONTENTION_CONFLICT) from e


def _create_invoice_transactional(record: InvoiceRecord, now_ts: float) -> str:
    """Insert the invoice, reserve its number and link every load in one transaction.

    Without a requested number, the month's counter is advanced past any
    number already reserved. Returns the invoice number used.
    """
    inv_ref = _invoice_doc_ref(record.invoice_id)
    load_refs = [_load_doc_ref(lid) for lid in record.load_ids]
    period = invoice_period(record.date_created)
    counter_ref = _invoice_counter_ref(period)

    @firestore.transactional
    def txn_create(txn: firestore.Transaction) -> str:
        # Firestore transactions require every read before the first write.
        snaps = [ref.get(transaction=txn) for ref in load_refs]
        for snap in snaps:
            if not snap.exists:
                raise NotFoundError(f"Load {snap.id} not found")
            current = _load_from_snap(snap)
            if current.invoice_id:
                raise ConflictError(f"Load {current.load_id} was invoiced by another request")
            reason = ineligibility_reason(current, record.customer_id)
            if reason:
                raise ConflictError(reason)

        seq: Optional[int] = None
        if record.invoice_number:
            number = record.invoice_number
            if _invoice_number_index_ref(number).get(transaction=txn).exists:
                raise ValidationError("invoice_number must be unique")
        else:
            counter = counter_ref.get(transaction=txn)
            seq = int((counter.to_dict() or {}).get("value") or 0) if counter.exists else 0
            while True:
                seq += 1
                number = format_invoice_number(period, seq)
                if not _invoice_number_index_ref(number).get(transaction=txn).exists:
                    break

        num_ref = _invoice_number_index_ref(number)
        txn.set(inv_ref, _invoice_document(record.model_copy(update={"invoice_number": number})))
        txn.set(num_ref, _invoice_number_index_doc(record, number))
        if seq is not None:
            txn.set(counter_ref, {"value": seq, "period": period, "updated_at": now_ts}, merge=True)
        for ref in load_refs:
            txn.update(ref, {"invoice_id": record.invoice_id, "updated_at": now_ts})
        return number

    return str(_run_transaction("create invoice", txn_create))


def _rollback_invoice(record: InvoiceRecord, linked: List[str], now_ts: float) -> None:
    invoice_id = record.invoice_id
    try:
        for lid in linked:
            ref = _load_doc_ref(lid)
            snap = ref.get()
            if snap.exists and (snap.to_dict() or {}).get("invoice_id") == invoice_id:
                ref.set({"invoice_id": None, "updated_at": now_ts}, merge=True)
        _invoice_doc_ref(invoice_id).delete()
        if record.invoice_number:
            num_ref = _invoice_number_index_ref(record.invoice_number)
            if (num_ref.get().to_dict() or {}).get("invoice_id") == invoice_id:
                num_ref.delete()
    except GoogleAPIError:
        logger.exception("Rollback of invoice %s failed; loads %s may still reference it", invoice_id, linked)


def _create_invoice_with_compensation(record: InvoiceRecord, now_ts: float) -> None:
    """Insert, then link loads one by one; undo everything if any link fails."""
    with _store_call("create invoice"):
        _invoice_doc_ref(record.invoice_id).set(_invoice_document(record))
        _invoice_number_index_ref(record.invoice_number).set(_invoice_number_index_doc(record, record.invoice_number))

    linked: List[str] = []
    try:
        for lid in record.load_ids:
            ref = _load_doc_ref(lid)
            with _store_call("link loads to invoice"):
                snap = ref.get()
            if not snap.exists:
                raise NotFoundError(f"Load {lid} not found")
            current = _load_from_snap(snap)
            if current.invoice_id:
                raise ConflictError(f"Load {lid} was invoiced by another request")
            reason = ineligibility_reason(current, record.customer_id)
            if reason:
                raise ConflictError(reason)
            with _store_call("link loads to invoice"):
                ref.set({"invoice_id": record.invoice_id, "updated_at": now_ts}, merge=True)
            linked.append(lid)
    except BillingError:
        _rollback_invoice(record, linked, now_ts)
        raise


def create_invoice(
    *,
    request: InvoiceCreateRequest,
    user: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> InvoiceWithDetails:
    """Create an invoice for one customer's delivered loads and link the loads to it.

    Either the invoice and every load link are written, or nothing is.
    """
    load_ids = _validated_load_ids(request.load_ids)
    customer = get_customer(customer_id=request.customer_id)

    loads = _fetch_loads(load_ids)
    for load in loads:
        reason = ineligibility_reason(load, customer.customer_id)
        if reason:
            raise ValidationError(reason)

    now_dt = now or utcnow()
    now_ts = _epoch(now_dt)
    date_created = now_dt.date()

    due_date = request.due_date or default_due_date(
        date_created, customer.payment_terms, settings.DEFAULT_PAYMENT_TERMS_DAYS
    )
    if due_date < date_created:
        raise ValidationError("due_date cannot be before the invoice date")

    transactional = hasattr(db, "transaction")
    invoice_number: Optional[str] = None
    if request.invoice_number:
        invoice_number = normalize_invoice_number(request.invoice_number)
        if not invoice_number:
            raise ValidationError("invoice_number is invalid")
        if _invoice_number_exists(invoice_number):
            raise ValidationError("invoice_number must be unique")
    elif not transactional:
        invoice_number = _scan_next_invoice_number(date_created)

    uid = _user_id(user)
    record = InvoiceRecord(
        invoice_id=str(uuid.uuid4()),
        invoice_number=invoice_number,
        customer_id=customer.customer_id,
        date_created=date_created,
        due_date=due_date,
        total_amount=compute_invoice_total(loads),
        is_paid=False,
        paid_date=None,
        notes=request.notes,
        load_ids=load_ids,
        pdf_path=None,
        created_by=uid,
        updated_by=uid,
        created_at=now_ts,
        updated_at=now_ts,
    )

    if transactional:
        invoice_number = _create_invoice_transactional(record, now_ts)
    else:
        # Unit tests and clients without transaction support.
        _create_invoice_with_compensation(record, now_ts)

    logger.info(
        "Created invoice %s (%s) for customer %s: %d loads, total %.2f",
        record.invoice_id, invoice_number, customer.customer_id, len(load_ids), record.total_amount or 0.0,
    )
    _log_action(uid, "INVOICE_CREATED", f"{invoice_number} for customer {customer.customer_id} ({len(load_ids)} loads)")
    return get_invoice_with_details(invoice_id=record.invoice_id)


def _write_invoice_patch(current: InvoiceRecord, patch: Dict[str, Any]) -> None:
    """Apply an invoice patch; a new number is reserved and the old one released."""
    ref = _invoice_doc_ref(current.invoice_id)
    number = patch.get("invoice_number")
    if not number:
        with _store_call("update invoice"):
            ref.set(patch, merge=True)
        return

    new_ref = _invoice_number_index_ref(number)
    old_ref = _invoice_number_index_ref(current.invoice_number) if current.invoice_number else None

    if hasattr(db, "transaction"):
        @firestore.transactional
        def txn_renumber(txn: firestore.Transaction) -> None:
            if new_ref.get(transaction=txn).exists:
                raise ValidationError("invoice_number must be unique")
            txn.set(ref, patch, merge=True)
            txn.set(new_ref, _invoice_number_index_doc(current, number))
            if old_ref is not None:
                txn.delete(old_ref)

        _run_transaction("update invoice", txn_renumber)
        return

    with _store_call("update invoice"):
        ref.set(patch, merge=True)
        new_ref.set(_invoice_number_index_doc(current, number))
        if old_ref is not None:
            old_ref.delete()


def update_invoice(
    *,
    invoice_id: str,
    request: InvoiceUpdateRequest,
    user: Optional[Dict[str, Any]] = None,
) -> InvoiceWithDetails:
    """Assign an invoice number or correct the due date / notes.

    Totals and payment fields are not editable here.
    """
    current = get_invoice(invoice_id=invoice_id)
    patch: Dict[str, Any] = {}

    if request.invoice_number is not None:
        number = normalize_invoice_number(request.invoice_number)
        if not number:
            raise ValidationError("invoice_number is invalid")
        if number != current.invoice_number:
            if _invoice_number_exists(number):
                raise ValidationError("invoice_number must be unique")
            patch["invoice_number"] = number

    if request.due_date is not None:
        if request.due_date < current.date_created:
            raise ValidationError("due_date cannot be before the invoice date")
        patch["due_date"] = request.due_date.isoformat()

    if request.notes is not None:
        patch["notes"] = request.notes

    if patch:
        uid = _user_id(user)
        patch["updated_at"] = _now()
        patch["updated_by"] = uid
        _write_invoice_patch(current, patch)
        _log_action(uid, "INVOICE_UPDATED", f"{invoice_id}: {sorted(k for k in patch if k not in {'updated_at', 'updated_by'})}")

    return get_invoice_with_details(invoice_id=invoice_id)


# --- Payment Tracker ---------------------------------------------------------

def _paid_patch(current: Dict[str, Any], invoice_id: str, paid_at: datetime, uid: Optional[str]) -> Optional[Dict[str, Any]]:
    """Fields to write when marking paid, or None when the invoice is already paid."""
    state = payment_state(_invoice_from_dict(current, invoice_id))
    if state == PaymentState.PAID:
        return None
    assert_transition(state, PaymentState.PAID)
    return {
        "is_paid": True,
        "paid_date": to_isoformat(paid_at),
        "updated_at": _now(),
        "updated_by": uid,
    }


def mark_invoice_paid(
    *,
    invoice_id: str,
    user: Optional[Dict[str, Any]] = None,
    paid_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> InvoiceWithDetails:
    """Outstanding -> Paid. Calling it again leaves the first paid_date untouched."""
    uid = _user_id(user)
    paid_at = parse_any_date(paid_date) or now or utcnow()
    ref = _invoice_doc_ref(invoice_id)

    if hasattr(db, "transaction"):
        @firestore.transactional
        def txn_pay(txn: firestore.Transaction) -> bool:
            snap = ref.get(transaction=txn)
            if not snap.exists:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            patch = _paid_patch(snap.to_dict() or {}, invoice_id, paid_at, uid)
            if patch is None:
                return False
            txn.set(ref, patch, merge=True)
            return True

        changed = _run_transaction("mark invoice paid", txn_pay)
    else:
        with _store_call("mark invoice paid"):
            snap = ref.get()
        if not snap.exists:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        patch = _paid_patch(snap.to_dict() or {}, invoice_id, paid_at, uid)
        changed = patch is not None
        if changed:
            with _store_call("mark invoice paid"):
                ref.set(patch, merge=True)

    if changed:
        logger.info("Invoice %s marked paid at %s", invoice_id, paid_at.isoformat())
        _log_action(uid, "INVOICE_PAID", f"{invoice_id} paid {paid_at.date().isoformat()}")
    return get_invoice_with_details(invoice_id=invoice_id)


# --- Document Renderer orchestration ----------------------------------------

def render_invoice_pdf(*, invoice_id: str) -> Tuple[bytes, str]:
    """Render without storing; returns (pdf_bytes, download filename)."""
    invoice = get_invoice_with_details(invoice_id=invoice_id)
    return generate_invoice_pdf(invoice), f"invoice-{invoice.display_number}.pdf"


def generate_and_persist_invoice_pdf(
    *,
    invoice_id: str,
    filename: Optional[str] = None,
    user: Optional[Dict[str, Any]] = None,
) -> InvoicePdfResponse:
    invoice = get_invoice_with_details(invoice_id=invoice_id)
    pdf_bytes = generate_invoice_pdf(invoice)
    result = persist_invoice_pdf(pdf_bytes, invoice.display_number, filename=filename)

    # The object is stored either way; a failed write-back only loses the pointer.
    try:
        with _store_call("record invoice pdf path"):
            _invoice_doc_ref(invoice_id).set({"pdf_path": result.file_path, "updated_at": _now()}, merge=True)
    except DependencyError as e:
        logger.warning("Invoice %s PDF stored at %s but not recorded: %s", invoice_id, result.file_path, e)

    _log_action(_user_id(user), "INVOICE_PDF_STORED", f"{invoice_id}: {result.file_path}")
    return result


def get_invoice_pdf_url(*, invoice_id: str) -> InvoicePdfUrlResponse:
    invoice = get_invoice(invoice_id=invoice_id)
    if not invoice.pdf_path:
        raise NotFoundError(f"Invoice {invoice_id} has no stored PDF")
    ttl = int(settings.INVOICE_PDF_URL_TTL_SECONDS)
    return InvoicePdfUrlResponse(url=invoice_pdf_signed_url(invoice.pdf_path, ttl_seconds=ttl), expires_in=ttl)

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pytest
import pydantic
from google.api_core.exceptions import Aborted, NotFound, ServiceUnavailable

from apps.api.billing import repo
from apps.api.billing.errors import ConflictError, DependencyError, NotFoundError, ValidationError
from apps.api.billing.models import BillingFilters, InvoiceCreateRequest, InvoiceUpdateRequest, LoadRecord


NOW = datetime(2026, 10, 18, 12, 0, 0)


@dataclass
class _Snap:
    id: str
    _data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data or {})


class _DocRef:
    def __init__(self, col: "_Collection", doc_id: str):
        self._col = col
        self.id = doc_id

    def get(self, transaction=None):
        _ = transaction
        return _Snap(self.id, self._col._docs.get(self.id))

    def set(self, data: Dict[str, Any], merge: bool = False):
        if self.id in self._col._fail_writes:
            raise ServiceUnavailable("datastore unavailable")
        if not merge or self.id not in self._col._docs:
            self._col._docs[self.id] = dict(data)
            return
        merged = dict(self._col._docs[self.id])
        merged.update(dict(data))
        self._col._docs[self.id] = merged

    def update(self, data: Dict[str, Any]):
        if self.id not in self._col._docs:
            raise NotFound(f"No document to update: {self.id}")
        self.set(data, merge=True)

    def delete(self):
        self._col._docs.pop(self.id, None)


class _Query:
    def __init__(self, col: "_Collection", filters: List[Tuple[str, str, Any]]):
        self._col = col
        self._filters = filters
        self._limit: Optional[int] = None

    def where(self, field: str, op: str, value: Any):
        return _Query(self._col, [*self._filters, (field, op, value)])

    def limit(self, n: int):
        q = _Query(self._col, self._filters)
        q._limit = int(n)
        return q

    def stream(self) -> Iterable[_Snap]:
        out: List[_Snap] = []
        for doc_id, data in self._col._docs.items():
            if self._matches(data):
                out.append(_Snap(doc_id, data))
        if self._limit is not None:
            out = out[: self._limit]
        return out

    def _matches(self, data: Dict[str, Any]) -> bool:
        for field, op, value in self._filters:
            if op != "==":
                raise AssertionError(f"Unsupported op in fake db: {op}")
            if data.get(field) != value:
                return False
        return True


class _Collection(_Query):
    def __init__(self, docs: Dict[str, Dict[str, Any]], fail_writes: Set[str]):
        self._docs = docs
        self._fail_writes = fail_writes
        super().__init__(self, [])

    def document(self, doc_id: str) -> _DocRef:
        return _DocRef(self, doc_id)

    def add(self, data: Dict[str, Any]):
        doc_id = f"auto-{len(self._docs) + 1}"
        self._docs[doc_id] = dict(data)
        return None, _DocRef(self, doc_id)


class _FakeDB:
    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail_writes: Dict[str, Set[str]] = {}

    def collection(self, name: str) -> _Collection:
        docs = self._collections.setdefault(name, {})
        return _Collection(docs, self.fail_writes.setdefault(name, set()))

    def docs(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})


class _FakeTxn:
    """Buffers writes until commit, so a raise inside the transaction writes nothing."""

    def __init__(self, db: "_TxnFakeDB"):
        self._db = db
        self._writes: List[Any] = []

    def set(self, ref: _DocRef, data: Dict[str, Any], merge: bool = False):
        self._writes.append(lambda: ref.set(data, merge=merge))

    def update(self, ref: _DocRef, data: Dict[str, Any]):
        self._writes.append(lambda: ref.update(data))

    def delete(self, ref: _DocRef):
        self._writes.append(ref.delete)

    def commit(self):
        if self._db.commit_error is not None:
            raise self._db.commit_error
        for write in self._writes:
            write()
        self._db.commits += 1


class _TxnFakeDB(_FakeDB):
    def __init__(self):
        super().__init__()
        self.commit_error: Optional[Exception] = None
        self.commits = 0

    def transaction(self) -> _FakeTxn:
        return _FakeTxn(self)


def _fake_transactional(fn):
    def run(txn: _FakeTxn):
        result = fn(txn)
        txn.commit()
        return result

    return run


@pytest.fixture()
def fake_db(monkeypatch):
    db = _FakeDB()
    monkeypatch.setattr(repo, "db", db)
    return db


@pytest.fixture()
def txn_db(monkeypatch):
    db = _TxnFakeDB()
    monkeypatch.setattr(repo, "db", db)
    monkeypatch.setattr(repo.firestore, "transactional", _fake_transactional)
    return db


def _save_customer(db: _FakeDB, customer_id: str, name: str, payment_terms: Optional[int] = 30):
    db.docs("customers")[customer_id] = {
        "customer_id": customer_id,
        "name": name,
        "primary_contact_email": f"ap@{customer_id}.example",
        "payment_terms": payment_terms,
    }


def _save_load(
    db: _FakeDB,
    load_id: str,
    customer_id: str,
    rate: Optional[float],
    *,
    status: str = "Delivered",
    delivered: Optional[str] = "2026-10-10",
    invoice_id: Optional[str] = None,
):
    db.docs("loads")[load_id] = {
        "load_id": load_id,
        "customer_id": customer_id,
        "commodity": "Steel Coils",
        "status": status,
        "delivery_date": delivered,
        "rate_customer": rate,
        "invoice_id": invoice_id,
        "origin_location": {"city": "Dallas", "state": "TX"},
        "destination_location": "Memphis, TN",
    }


def _ready_ids(now: datetime = NOW) -> List[str]:
    return [l.load_id for l in repo.get_loads_ready_for_invoice(now=now)]


def _create(customer_id: str, load_ids: List[str], **kw):
    req = InvoiceCreateRequest(customer_id=customer_id, load_ids=load_ids, **kw)
    return repo.create_invoice(request=req, user={"uid": "dispatcher1", "role": "dispatcher"}, now=NOW)


def test_ready_loads_are_delivered_and_unlinked(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 500.0)
    _save_load(fake_db, "L2", "acme", 300.0, status="In Transit")
    _save_load(fake_db, "L3", "acme", 200.0, invoice_id="inv-old")
    _save_load(fake_db, "L4", "acme", 100.0, status="Cancelled")

    loads = repo.get_loads_ready_for_invoice(now=NOW)

    assert [l.load_id for l in loads] == ["L1"]
    assert loads[0].customer is not None
    assert loads[0].customer.name == "Acme Corp"
    assert loads[0].days_since_delivery == 8
    assert loads[0].destination_location is not None
    assert loads[0].destination_location.text == "Memphis, TN"


def test_ready_loads_sorted_newest_delivery_first_and_filtered(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_customer(fake_db, "beta", "Beta Freight")
    _save_load(fake_db, "L1", "acme", 1.0, delivered="2026-10-01")
    _save_load(fake_db, "L2", "acme", 1.0, delivered="2026-10-12")
    _save_load(fake_db, "L3", "beta", 1.0, delivered=None)

    assert _ready_ids() == ["L2", "L1", "L3"]

    only_acme = repo.get_loads_ready_for_invoice(filters=BillingFilters(customer_id="acme"), now=NOW)
    assert [l.load_id for l in only_acme] == ["L2", "L1"]

    searched = repo.get_loads_ready_for_invoice(filters=BillingFilters(search="beta"), now=NOW)
    assert [l.load_id for l in searched] == ["L3"]
    assert searched[0].days_since_delivery == 0


def test_create_invoice_links_loads_and_sets_terms(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp", payment_terms=30)
    _save_load(fake_db, "L1", "acme", 500.0)
    _save_load(fake_db, "L2", "acme", 300.0)

    inv = _create("acme", ["L1", "L2"])

    assert inv.total_amount == 800.0
    assert inv.is_paid is False
    assert inv.date_created == date(2026, 10, 18)
    assert inv.due_date == date(2026, 10, 18) + timedelta(days=30)
    assert inv.invoice_number == "INV-202610-0001"
    assert [l.load_id for l in inv.loads] == ["L1", "L2"]
    assert inv.customer is not None and inv.customer.name == "Acme Corp"

    assert fake_db.docs("loads")["L1"]["invoice_id"] == inv.invoice_id
    assert fake_db.docs("loads")["L2"]["invoice_id"] == inv.invoice_id
    assert "L1" not in _ready_ids()
    assert "L2" not in _ready_ids()

    actions = [d.get("action") for d in fake_db.docs("audit_logs").values()]
    assert "INVOICE_CREATED" in actions
    assert fake_db.docs("invoice_numbers")["INV-202610-0001"]["invoice_id"] == inv.invoice_id


def test_invoice_total_treats_missing_rates_as_zero(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 100.0)
    _save_load(fake_db, "L2", "acme", None)
    _save_load(fake_db, "L3", "acme", 250.5)

    inv = _create("acme", ["L1", "L2", "L3"])

    assert inv.total_amount == 350.5
    assert inv.total_amount == sum(float(l.rate_customer or 0) for l in inv.loads)


def test_invoice_numbers_increment_within_month(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 1.0)
    _save_load(fake_db, "L2", "acme", 1.0)

    first = _create("acme", ["L1"])
    second = _create("acme", ["L2"])

    assert first.invoice_number == "INV-202610-0001"
    assert second.invoice_number == "INV-202610-0002"


def test_due_date_falls_back_to_default_terms(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp", payment_terms=None)
    _save_load(fake_db, "L1", "acme", 1.0)

    inv = _create("acme", ["L1"])

    assert inv.due_date == date(2026, 11, 17)


def test_create_invoice_rejects_empty_load_list(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")

    with pytest.raises(ValidationError, match=r"At least one load"):
        _create("acme", [])

    assert fake_db.docs("invoices") == {}


def test_create_invoice_rejects_undelivered_load(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 100.0, status="In Transit")

    with pytest.raises(ValidationError, match=r"not delivered"):
        _create("acme", ["L1"])

    assert fake_db.docs("invoices") == {}
    assert fake_db.docs("loads")["L1"]["invoice_id"] is None


def test_create_invoice_rejects_already_invoiced_and_foreign_loads(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_customer(fake_db, "beta", "Beta Freight")
    _save_load(fake_db, "L1", "acme", 100.0, invoice_id="inv-old")
    _save_load(fake_db, "L2", "beta", 100.0)

    with pytest.raises(ValidationError, match=r"already invoiced"):
        _create("acme", ["L1"])
    with pytest.raises(ValidationError, match=r"different customer"):
        _create("acme", ["L2"])

    assert fake_db.docs("invoices") == {}


def test_create_invoice_unknown_customer_or_load(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")

    with pytest.raises(NotFoundError):
        _create("nobody", ["L1"])
    with pytest.raises(NotFoundError, match=r"Load L404"):
        _create("acme", ["L404"])


def test_create_invoice_rejects_duplicate_manual_number(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 1.0)
    _save_load(fake_db, "L2", "acme", 1.0)

    first = _create("acme", ["L1"], invoice_number="acme 2026/01")
    assert first.invoice_number == "ACME-2026-01"

    with pytest.raises(ValidationError, match=r"unique"):
        _create("acme", ["L2"], invoice_number="ACME-2026-01")
    assert fake_db.docs("loads")["L2"]["invoice_id"] is None


def test_link_failure_rolls_back_invoice_and_links(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 100.0)
    _save_load(fake_db, "L2", "acme", 200.0)
    fake_db.fail_writes["loads"] = {"L2"}

    with pytest.raises(DependencyError):
        _create("acme", ["L1", "L2"])

    fake_db.fail_writes["loads"] = set()
    assert fake_db.docs("invoices") == {}
    assert fake_db.docs("loads")["L1"]["invoice_id"] is None
    assert fake_db.docs("loads")["L2"]["invoice_id"] is None
    assert fake_db.docs("invoice_numbers") == {}
    assert sorted(_ready_ids()) == ["L1", "L2"]


def test_load_claimed_concurrently_yields_conflict(fake_db, monkeypatch):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 100.0)
    _save_load(fake_db, "L2", "acme", 200.0)

    # Validation sees both loads free; another request links L2 before this one does.
    stale = [
        LoadRecord(load_id="L1", customer_id="acme", status="Delivered", rate_customer=100.0),
        LoadRecord(load_id="L2", customer_id="acme", status="Delivered", rate_customer=200.0),
    ]
    monkeypatch.setattr(repo, "_fetch_loads", lambda load_ids: stale)
    fake_db.docs("loads")["L2"]["invoice_id"] = "inv-other"

    with pytest.raises(ConflictError, match=r"L2"):
        _create("acme", ["L1", "L2"])

    assert fake_db.docs("invoices") == {}
    assert fake_db.docs("loads")["L1"]["invoice_id"] is None
    assert fake_db.docs("loads")["L2"]["invoice_id"] == "inv-other"


def test_mark_paid_moves_invoice_between_buckets(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 500.0)
    inv = _create("acme", ["L1"])

    assert [i.invoice_id for i in repo.get_outstanding_invoices()] == [inv.invoice_id]
    assert repo.get_paid_invoices_last_30_days(now=NOW) == []

    paid = repo.mark_invoice_paid(invoice_id=inv.invoice_id, user={"uid": "dispatcher1"}, now=NOW)

    assert paid.is_paid is True
    assert paid.paid_date == NOW
    assert repo.get_outstanding_invoices() == []
    assert [i.invoice_id for i in repo.get_paid_invoices_last_30_days(now=NOW)] == [inv.invoice_id]


def test_mark_paid_twice_keeps_first_paid_date(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 500.0)
    inv = _create("acme", ["L1"])

    first = repo.mark_invoice_paid(invoice_id=inv.invoice_id, now=NOW)
    second = repo.mark_invoice_paid(invoice_id=inv.invoice_id, now=NOW + timedelta(days=3))

    assert second.is_paid is True
    assert second.paid_date == first.paid_date == NOW


def test_mark_paid_unknown_invoice(fake_db):
    with pytest.raises(NotFoundError):
        repo.mark_invoice_paid(invoice_id="missing", now=NOW)


def test_paid_invoices_outside_window_are_excluded(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 500.0)
    inv = _create("acme", ["L1"])
    repo.mark_invoice_paid(invoice_id=inv.invoice_id, paid_date=NOW - timedelta(days=45), now=NOW)

    assert repo.get_paid_invoices_last_30_days(now=NOW) == []
    assert repo.get_outstanding_invoices() == []


def test_summary_buckets(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 500.0)
    _save_load(fake_db, "L2", "acme", 300.0)
    _save_load(fake_db, "L3", "acme", 120.25)
    _save_load(fake_db, "L4", "acme", 80.0)

    paid = _create("acme", ["L1"])
    _create("acme", ["L2"])
    repo.mark_invoice_paid(invoice_id=paid.invoice_id, now=NOW)

    summary = repo.get_billing_summary(now=NOW)

    assert summary.ready_to_invoice.count == 2
    assert summary.ready_to_invoice.amount == 200.25
    assert summary.outstanding_invoices.count == 1
    assert summary.outstanding_invoices.amount == 300.0
    assert summary.paid_last_30_days.count == 1
    assert summary.paid_last_30_days.amount == 500.0


def test_outstanding_and_paid_lists_never_overlap(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    for i in range(4):
        _save_load(fake_db, f"L{i}", "acme", 10.0 * (i + 1))
    created = [_create("acme", [f"L{i}"]) for i in range(4)]
    for inv in created[:2]:
        repo.mark_invoice_paid(invoice_id=inv.invoice_id, now=NOW)

    outstanding = {i.invoice_id for i in repo.get_outstanding_invoices()}
    paid = {i.invoice_id for i in repo.get_paid_invoices_last_30_days(now=NOW)}

    assert len(outstanding) == 2
    assert len(paid) == 2
    assert outstanding.isdisjoint(paid)


def test_invoice_list_filters(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_customer(fake_db, "beta", "Beta Freight")
    _save_load(fake_db, "L1", "acme", 1.0)
    _save_load(fake_db, "L2", "beta", 1.0)
    a = _create("acme", ["L1"], notes="October lanes")
    b = _create("beta", ["L2"])

    by_customer = repo.get_invoices(filters=BillingFilters(customer_id="beta"))
    assert [i.invoice_id for i in by_customer] == [b.invoice_id]

    by_search = repo.get_invoices(filters=BillingFilters(search="october"))
    assert [i.invoice_id for i in by_search] == [a.invoice_id]

    by_number = repo.get_invoices(filters=BillingFilters(invoice_number="0002"))
    assert [i.invoice_id for i in by_number] == [b.invoice_id]

    assert len(repo.get_invoices(filters=BillingFilters(limit=1))) == 1


def test_update_invoice_number_and_due_date(fake_db):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 1.0)
    inv = _create("acme", ["L1"])

    updated = repo.update_invoice(
        invoice_id=inv.invoice_id,
        request=InvoiceUpdateRequest(invoice_number="acme-0042", due_date=date(2026, 12, 1), notes="Net 44"),
        user={"uid": "dispatcher1"},
    )

    assert updated.invoice_number == "ACME-0042"
    assert updated.due_date == date(2026, 12, 1)
    assert updated.notes == "Net 44"
    assert updated.total_amount == inv.total_amount
    assert set(fake_db.docs("invoice_numbers")) == {"ACME-0042"}

    with pytest.raises(ValidationError, match=r"before the invoice date"):
        repo.update_invoice(invoice_id=inv.invoice_id, request=InvoiceUpdateRequest(due_date=date(2026, 1, 1)))


def test_generate_and_persist_pdf_records_path(fake_db, monkeypatch):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 1.0)
    inv = _create("acme", ["L1"])

    uploaded: Dict[str, Any] = {}

    def _fake_persist(data: bytes, invoice_number: str, filename: Optional[str] = None):
        uploaded["size"] = len(data)
        uploaded["number"] = invoice_number
        return repo.InvoicePdfResponse(file_path="invoices/x.pdf", file_name="x.pdf")

    monkeypatch.setattr(repo, "generate_invoice_pdf", lambda invoice: b"%PDF-1.7 fake")
    monkeypatch.setattr(repo, "persist_invoice_pdf", _fake_persist)

    out = repo.generate_and_persist_invoice_pdf(invoice_id=inv.invoice_id)

    assert out.file_path == "invoices/x.pdf"
    assert uploaded["number"] == "INV-202610-0001"
    assert fake_db.docs("invoices")[inv.invoice_id]["pdf_path"] == "invoices/x.pdf"


def test_pdf_url_requires_stored_pdf(fake_db, monkeypatch):
    _save_customer(fake_db, "acme", "Acme Corp")
    _save_load(fake_db, "L1", "acme", 1.0)
    inv = _create("acme", ["L1"])

    with pytest.raises(NotFoundError, match=r"no stored PDF"):
        repo.get_invoice_pdf_url(invoice_id=inv.invoice_id)

    fake_db.docs("invoices")[inv.invoice_id]["pdf_path"] = "invoices/x.pdf"
    monkeypatch.setattr(repo, "invoice_pdf_signed_url", lambda path, ttl_seconds=None: f"https://signed/{path}")

    out = repo.get_invoice_pdf_url(invoice_id=inv.invoice_id)
    assert out.url == "https://signed/invoices/x.pdf"
    assert out.expires_in == 3600


# --- Transactional path ------------------------------------------------------

def test_transactional_create_links_loads_and_reserves_number(txn_db):
    _save_customer(txn_db, "acme", "Acme Corp", payment_terms=30)
    _save_load(txn_db, "L1", "acme", 500.0)
    _save_load(txn_db, "L2", "acme", 300.0)

    inv = _create("acme", ["L1", "L2"])

    assert txn_db.commits == 1
    assert inv.total_amount == 800.0
    assert inv.due_date == date(2026, 11, 17)
    assert inv.invoice_number == "INV-202610-0001"
    assert txn_db.docs("invoices")[inv.invoice_id]["invoice_number"] == "INV-202610-0001"
    assert txn_db.docs("invoice_numbers")["INV-202610-0001"]["invoice_id"] == inv.invoice_id
    assert txn_db.docs("counters")["invoice_number_202610"]["value"] == 1
    assert txn_db.docs("loads")["L1"]["invoice_id"] == inv.invoice_id
    assert txn_db.docs("loads")["L2"]["invoice_id"] == inv.invoice_id
    assert _ready_ids() == []


def test_transactional_numbering_skips_manually_assigned_numbers(txn_db):
    _save_customer(txn_db, "acme", "Acme Corp")
    for lid in ["L1", "L2", "L3"]:
        _save_load(txn_db, lid, "acme", 1.0)

    manual = _create("acme", ["L1"], invoice_number="INV-202610-0001")
    second = _create("acme", ["L2"])
    third = _create("acme", ["L3"])

    assert manual.invoice_number == "INV-202610-0001"
    assert second.invoice_number == "INV-202610-0002"
    assert third.invoice_number == "INV-202610-0003"
    numbers = [d["invoice_number"] for d in txn_db.docs("invoices").values()]
    assert len(numbers) == len(set(numbers)) == 3
    assert txn_db.docs("counters")["invoice_number_202610"]["value"] == 3


def test_transactional_manual_number_taken_after_precheck_writes_nothing(txn_db, monkeypatch):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 1.0)
    _save_load(txn_db, "L2", "acme", 1.0)
    first = _create("acme", ["L1"], invoice_number="ACME-2026-01")

    # Another request reserves the number between the pre-check and the transaction.
    monkeypatch.setattr(repo, "_invoice_number_exists", lambda number: False)

    with pytest.raises(ValidationError, match=r"unique"):
        _create("acme", ["L2"], invoice_number="acme 2026/01")

    assert list(txn_db.docs("invoices")) == [first.invoice_id]
    assert txn_db.docs("invoice_numbers")["ACME-2026-01"]["invoice_id"] == first.invoice_id
    assert txn_db.docs("loads")["L2"]["invoice_id"] is None


def test_transactional_load_claimed_concurrently_yields_conflict(txn_db, monkeypatch):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 100.0)
    _save_load(txn_db, "L2", "acme", 200.0)

    stale = [
        LoadRecord(load_id="L1", customer_id="acme", status="Delivered", rate_customer=100.0),
        LoadRecord(load_id="L2", customer_id="acme", status="Delivered", rate_customer=200.0),
    ]
    monkeypatch.setattr(repo, "_fetch_loads", lambda load_ids: stale)
    txn_db.docs("loads")["L2"]["invoice_id"] = "inv-other"

    with pytest.raises(ConflictError, match=r"L2"):
        _create("acme", ["L1", "L2"])

    assert txn_db.commits == 0
    assert txn_db.docs("invoices") == {}
    assert txn_db.docs("invoice_numbers") == {}
    assert txn_db.docs("counters") == {}
    assert txn_db.docs("loads")["L1"]["invoice_id"] is None
    assert txn_db.docs("loads")["L2"]["invoice_id"] == "inv-other"


def test_transactional_commit_contention_is_a_conflict(txn_db):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 100.0)
    txn_db.commit_error = Aborted("Transaction lock timeout")

    with pytest.raises(ConflictError, match=r"retry"):
        _create("acme", ["L1"])

    assert txn_db.docs("invoices") == {}
    assert txn_db.docs("loads")["L1"]["invoice_id"] is None


def test_transactional_retries_exhausted_is_a_conflict(txn_db, monkeypatch):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 100.0)

    def _exhausted(fn):
        def run(txn):
            raise ValueError("Failed to commit transaction in 5 attempts.")
        return run

    monkeypatch.setattr(repo.firestore, "transactional", _exhausted)

    with pytest.raises(ConflictError):
        _create("acme", ["L1"])
    assert txn_db.docs("invoices") == {}


def test_transactional_malformed_load_is_not_reported_as_conflict(txn_db, monkeypatch):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 100.0)

    stale = [LoadRecord(load_id="L1", customer_id="acme", status="Delivered", rate_customer=100.0)]
    monkeypatch.setattr(repo, "_fetch_loads", lambda load_ids: stale)
    txn_db.docs("loads")["L1"]["rate_customer"] = "not-a-number"

    with pytest.raises(pydantic.ValidationError):
        _create("acme", ["L1"])

    assert txn_db.docs("invoices") == {}
    assert txn_db.docs("invoice_numbers") == {}


def test_transactional_mark_paid_twice_keeps_first_paid_date(txn_db):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 500.0)
    inv = _create("acme", ["L1"])

    first = repo.mark_invoice_paid(invoice_id=inv.invoice_id, now=NOW)
    second = repo.mark_invoice_paid(invoice_id=inv.invoice_id, now=NOW + timedelta(days=3))

    assert first.is_paid is True
    assert second.paid_date == first.paid_date == NOW
    assert repo.get_outstanding_invoices() == []
    assert [i.invoice_id for i in repo.get_paid_invoices_last_30_days(now=NOW)] == [inv.invoice_id]

    with pytest.raises(NotFoundError):
        repo.mark_invoice_paid(invoice_id="missing", now=NOW)


def test_transactional_renumber_moves_reservation(txn_db):
    _save_customer(txn_db, "acme", "Acme Corp")
    _save_load(txn_db, "L1", "acme", 1.0)
    _save_load(txn_db, "L2", "acme", 1.0)
    a = _create("acme", ["L1"])
    b = _create("acme", ["L2"])

    repo.update_invoice(invoice_id=a.invoice_id, request=InvoiceUpdateRequest(invoice_number="acme-0042"))

    assert set(txn_db.docs("invoice_numbers")) == {"ACME-0042", "INV-202610-0002"}
    assert txn_db.docs("invoice_numbers")["ACME-0042"]["invoice_id"] == a.invoice_id

    with pytest.raises(ValidationError, match=r"unique"):
        repo.update_invoice(invoice_id=b.invoice_id, request=InvoiceUpdateRequest(invoice_number="ACME-0042"))
    assert txn_db.docs("invoices")[b.invoice_id]["invoice_number"] == "INV-202610-0002"

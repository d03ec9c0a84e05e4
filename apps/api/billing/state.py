from __future__ import annotations

from enum import Enum
from typing import Optional

from .errors import ValidationError
from .models import InvoiceRecord, LoadRecord, LoadStatus


class InvoiceStateError(ValidationError):
    pass


class PaymentState(str, Enum):
    OUTSTANDING = "outstanding"
    PAID = "paid"


def payment_state(invoice: InvoiceRecord) -> PaymentState:
    return PaymentState.PAID if invoice.is_paid else PaymentState.OUTSTANDING


def can_transition(current: PaymentState, new: PaymentState) -> bool:
    allowed: dict[PaymentState, set[PaymentState]] = {
        PaymentState.OUTSTANDING: {PaymentState.PAID},
        PaymentState.PAID: set(),
    }
    return new in allowed.get(current, set())


def assert_transition(current: PaymentState, new: PaymentState) -> None:
    if current == new:
        return
    if not can_transition(current, new):
        raise InvoiceStateError(f"Invalid invoice transition: {current.value} -> {new.value}")


def is_delivered(load: LoadRecord) -> bool:
    return str(load.status or "").strip().lower() == LoadStatus.DELIVERED.value.lower()


def is_eligible_for_invoice(load: LoadRecord) -> bool:
    return is_delivered(load) and not load.invoice_id


def ineligibility_reason(load: LoadRecord, customer_id: Optional[str] = None) -> Optional[str]:
    """Why `load` cannot go on a new invoice for `customer_id`, or None if it can."""
    if customer_id is not None and load.customer_id != customer_id:
        return f"Load {load.load_id} belongs to a different customer"
    if not is_delivered(load):
        return f"Load {load.load_id} is not delivered (status: {load.status})"
    if load.invoice_id:
        return f"Load {load.load_id} is already invoiced"
    return None

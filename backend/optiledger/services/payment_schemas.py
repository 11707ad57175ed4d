from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from optiledger.money import to_cents
from optiledger.time_utils import utcnow
from optiledger.validation import (
    ValidationError,
    coerce_cents,
    coerce_choice,
    coerce_datetime,
    coerce_int,
    coerce_str,
    require_payload,
)


PAYMENT_TYPES = ("sale", "debt_payment", "expense")
PAYMENT_METHODS = ("credit", "debit", "cash", "pix", "bank_slip", "promissory_note", "check")

# Completed the moment they are recorded
INSTANT_METHODS = ("credit", "debit", "cash", "pix")
# Recorded as pending and counted only when they settle
DEFERRED_METHODS = ("bank_slip", "promissory_note")

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

# Nested payload key for each method that carries one
_PAYLOAD_KEYS = {
    "check": "check",
    "bank_slip": "bank_slip",
    "promissory_note": "promissory_note",
}


@dataclass(frozen=True)
class CheckPayload:
    bank: str
    check_number: str
    check_date: datetime
    account_holder: str
    branch: str
    account_number: str
    presentation_date: datetime | None = None


@dataclass(frozen=True)
class BankSlipPayload:
    code: str
    bank: str | None = None


@dataclass(frozen=True)
class PromissoryNotePayload:
    number: str


@dataclass(frozen=True)
class NoPayload:
    pass


MethodPayload = Union[CheckPayload, BankSlipPayload, PromissoryNotePayload, NoPayload]


@dataclass(frozen=True)
class CreditInstallments:
    current: int
    total: int
    value_cents: int


@dataclass(frozen=True)
class ClientDebtPlan:
    installment_total: int
    installment_value_cents: int
    due_dates: list[datetime] = field(default_factory=list)


@dataclass(frozen=True)
class PaymentInput:
    amount_cents: int
    date: datetime
    type: str
    payment_method: str
    payload: MethodPayload
    order_id: int | None = None
    customer_id: int | None = None
    legacy_client_id: int | None = None
    institution_id: str | None = None
    description: str | None = None
    category: str | None = None
    installments: CreditInstallments | None = None
    client_debt: ClientDebtPlan | None = None

    @property
    def has_client(self) -> bool:
        return self.customer_id is not None or self.legacy_client_id is not None


def _parse_amount(data: dict) -> int:
    """amount_cents (integer) or amount (decimal reais), exactly one."""
    has_cents = data.get("amount_cents") is not None
    has_reais = data.get("amount") is not None
    if has_cents and has_reais:
        raise ValidationError("Provide either amount_cents or amount, not both")
    if has_reais:
        try:
            cents = to_cents(data["amount"])
        except ValueError as e:
            raise ValidationError(f"amount: {e}")
        return coerce_cents(cents, "amount")
    return coerce_cents(data.get("amount_cents"), "amount_cents")


def _parse_check(raw: Any) -> CheckPayload:
    if not isinstance(raw, dict):
        raise ValidationError("check details are required for check payments")
    return CheckPayload(
        bank=coerce_str(raw.get("bank"), "check.bank", max_length=64),
        check_number=coerce_str(raw.get("check_number"), "check.check_number", max_length=32),
        check_date=coerce_datetime(raw.get("check_date"), "check.check_date"),
        account_holder=coerce_str(raw.get("account_holder"), "check.account_holder", max_length=128),
        branch=coerce_str(raw.get("branch"), "check.branch", max_length=16),
        account_number=coerce_str(raw.get("account_number"), "check.account_number", max_length=32),
        presentation_date=coerce_datetime(raw.get("presentation_date"), "check.presentation_date", required=False),
    )


def _parse_bank_slip(raw: Any) -> BankSlipPayload:
    if not isinstance(raw, dict):
        raise ValidationError("bank_slip details are required for bank slip payments")
    return BankSlipPayload(
        code=coerce_str(raw.get("code"), "bank_slip.code", max_length=64),
        bank=coerce_str(raw.get("bank"), "bank_slip.bank", required=False, max_length=64),
    )


def _parse_promissory_note(raw: Any) -> PromissoryNotePayload:
    if not isinstance(raw, dict):
        raise ValidationError("promissory_note details are required for promissory note payments")
    return PromissoryNotePayload(
        number=coerce_str(raw.get("number"), "promissory_note.number", max_length=32),
    )


def _parse_payload(method: str, data: dict) -> MethodPayload:
    for other_method, key in _PAYLOAD_KEYS.items():
        if other_method != method and data.get(key) is not None:
            raise ValidationError(f"{key} details are only allowed for {other_method} payments")

    if method == "check":
        return _parse_check(data.get("check"))
    if method == "bank_slip":
        return _parse_bank_slip(data.get("bank_slip"))
    if method == "promissory_note":
        return _parse_promissory_note(data.get("promissory_note"))
    return NoPayload()


def _parse_credit_installments(raw: Any) -> CreditInstallments:
    if not isinstance(raw, dict):
        raise ValidationError("installments must be an object")
    total = coerce_int(raw.get("total"), "installments.total")
    current = coerce_int(raw.get("current", 1), "installments.current")
    value_cents = coerce_cents(raw.get("value_cents"), "installments.value_cents")
    if total < 1:
        raise ValidationError("installments.total must be >= 1")
    if current < 1 or current > total:
        raise ValidationError("installments.current must be between 1 and installments.total")
    return CreditInstallments(current=current, total=total, value_cents=value_cents)


def _parse_client_debt(raw: Any) -> ClientDebtPlan | None:
    if not isinstance(raw, dict):
        raise ValidationError("client_debt must be an object")
    if not raw.get("generate_debt"):
        return None

    installments = raw.get("installments")
    if not isinstance(installments, dict):
        raise ValidationError("client_debt.installments is required when generating debt")
    total = coerce_int(installments.get("total"), "client_debt.installments.total")
    value_cents = coerce_cents(installments.get("value_cents"), "client_debt.installments.value_cents")
    if total < 1:
        raise ValidationError("client_debt.installments.total must be >= 1")

    due_dates_raw = raw.get("due_dates")
    if not isinstance(due_dates_raw, list) or not due_dates_raw:
        raise ValidationError("client_debt.due_dates is required when generating debt")
    if len(due_dates_raw) != total:
        raise ValidationError("client_debt.due_dates must have one date per installment")
    due_dates = [coerce_datetime(d, f"client_debt.due_dates[{i}]") for i, d in enumerate(due_dates_raw)]

    return ClientDebtPlan(installment_total=total, installment_value_cents=value_cents, due_dates=due_dates)


def parse_payment_input(data: Any) -> PaymentInput:
    """
    Validate a raw payment request into a PaymentInput.

    The method decides which payload variant is required; a payload for any
    other method is rejected. Type-specific rules:
    - expense: category required, no order or client links
    - debt_payment: a customer or legacy client is required
    """
    data = require_payload(data)

    payment_type = coerce_choice(data.get("type"), "type", PAYMENT_TYPES)
    method = coerce_choice(data.get("payment_method"), "payment_method", PAYMENT_METHODS)
    amount_cents = _parse_amount(data)
    when = coerce_datetime(data.get("date"), "date", required=False) or utcnow()

    order_id = coerce_int(data.get("order_id"), "order_id", required=False)
    customer_id = coerce_int(data.get("customer_id"), "customer_id", required=False)
    legacy_client_id = coerce_int(data.get("legacy_client_id"), "legacy_client_id", required=False)
    if customer_id is not None and legacy_client_id is not None:
        raise ValidationError("A payment can reference a customer or a legacy client, not both")

    category = coerce_str(data.get("category"), "category", required=False, max_length=64)
    if payment_type == "expense":
        if not category:
            raise ValidationError("category is required for expenses")
        if order_id is not None or customer_id is not None or legacy_client_id is not None:
            raise ValidationError("expenses cannot reference an order or a client")
    if payment_type == "debt_payment" and customer_id is None and legacy_client_id is None:
        raise ValidationError("debt payments require customer_id or legacy_client_id")

    payload = _parse_payload(method, data)

    installments = None
    if data.get("installments") is not None:
        if method != "credit":
            raise ValidationError("installments are only allowed for credit payments")
        installments = _parse_credit_installments(data["installments"])

    client_debt = None
    if data.get("client_debt") is not None:
        if method not in DEFERRED_METHODS:
            raise ValidationError("client_debt is only allowed for bank slip or promissory note payments")
        client_debt = _parse_client_debt(data["client_debt"])
        if client_debt is not None and customer_id is None and legacy_client_id is None:
            raise ValidationError("client_debt requires customer_id or legacy_client_id")

    return PaymentInput(
        amount_cents=amount_cents,
        date=when,
        type=payment_type,
        payment_method=method,
        payload=payload,
        order_id=order_id,
        customer_id=customer_id,
        legacy_client_id=legacy_client_id,
        institution_id=coerce_str(data.get("institution_id"), "institution_id", required=False, max_length=64),
        description=coerce_str(data.get("description"), "description", required=False),
        category=category,
        installments=installments,
        client_debt=client_debt,
    )

"""
Check compensation tests.

A check is counted when received; compensation records what the bank did.
"""

import pytest

from optiledger.services import check_service, payment_service, register_service
from optiledger.services.check_service import MissingReasonError
from optiledger.services.payment_service import InvalidTransitionError
from optiledger.validation import NotFoundError, ValidationError


ACTOR = "cashier-1"

CHECK = {
    "bank": "Banco do Brasil",
    "check_number": "000123",
    "check_date": "2026-03-01",
    "account_holder": "Maria Silva",
    "branch": "1234",
    "account_number": "56789-0",
}


def _check_payment(amount_cents=20000, **extra):
    data = {"type": "sale", "payment_method": "check", "amount_cents": amount_cents, "check": dict(CHECK)}
    data.update(extra)
    return payment_service.create_payment(data, ACTOR)


def _session_totals(db_session):
    db_session.expire_all()
    session = register_service.get_current_register()
    return session.sales_total_cents, session.sales_check_cents


class TestCheckCreation:
    def test_check_is_pending_and_counted(self, open_register, db_session):
        payment = _check_payment()

        assert payment.status == "pending"
        assert payment.check_detail.compensation_status == "pending"
        assert payment.posted_register_id == open_register.id
        assert _session_totals(db_session) == (20000, 20000)

    def test_check_fields_required(self, open_register):
        incomplete = dict(CHECK)
        del incomplete["account_holder"]
        with pytest.raises(ValidationError):
            payment_service.create_payment(
                {"type": "sale", "payment_method": "check", "amount_cents": 100, "check": incomplete},
                ACTOR,
            )


class TestCompensation:
    def test_compensated_completes_without_moving_totals(self, open_register, db_session):
        payment = _check_payment()

        updated = check_service.update_check_compensation_status(payment.id, "compensated", actor="manager-1")

        assert updated.status == "completed"
        assert updated.check_detail.compensation_status == "compensated"
        assert updated.check_detail.compensation_updated_at is not None
        assert _session_totals(db_session) == (20000, 20000)

    def test_rejected_cancels_and_reverses(self, open_register, make_customer, make_order, db_session):
        customer = make_customer()
        order = make_order(customer=customer, final_price_cents=20000)
        payment = _check_payment(order_id=order.id)
        assert customer.total_debt_cents == 0

        rejected = check_service.update_check_compensation_status(payment.id, "rejected", "Sem fundos", "manager-1")

        assert rejected.status == "cancelled"
        assert rejected.check_detail.rejection_reason == "Sem fundos"
        assert rejected.cancellation_reason == "Cheque devolvido: Sem fundos"
        assert rejected.cancelled_by == "manager-1"
        assert _session_totals(db_session) == (0, 0)
        assert customer.total_debt_cents == 20000

    def test_reject_requires_reason(self, open_register):
        payment = _check_payment()
        with pytest.raises(MissingReasonError):
            check_service.update_check_compensation_status(payment.id, "rejected", "  ")

    def test_rejected_after_session_closed(self, open_register, db_session):
        payment = _check_payment()
        register_service.close_register(30000, ACTOR)

        rejected = check_service.update_check_compensation_status(payment.id, "rejected", "Conta encerrada")

        assert rejected.status == "cancelled"
        closed = register_service.get_register(open_register.id)
        assert closed.sales_check_cents == 20000

    @pytest.mark.parametrize("first", ["compensated", "rejected"])
    def test_terminal_states(self, open_register, first):
        payment = _check_payment()
        check_service.update_check_compensation_status(payment.id, first, "Sem fundos")

        for target in ("compensated", "rejected", "pending"):
            with pytest.raises(InvalidTransitionError):
                check_service.update_check_compensation_status(payment.id, target, "Sem fundos")

    def test_back_to_pending(self, open_register):
        payment = _check_payment()
        with pytest.raises(InvalidTransitionError):
            check_service.update_check_compensation_status(payment.id, "pending")

    def test_unknown_status(self, open_register):
        payment = _check_payment()
        with pytest.raises(ValidationError):
            check_service.update_check_compensation_status(payment.id, "bounced")

    def test_not_a_check(self, open_register):
        payment = payment_service.create_payment(
            {"type": "sale", "payment_method": "cash", "amount_cents": 100},
            ACTOR,
        )
        with pytest.raises(NotFoundError):
            check_service.update_check_compensation_status(payment.id, "compensated")

    def test_cancelled_check(self, open_register):
        payment = _check_payment()
        payment_service.cancel_payment(payment.id, ACTOR)
        with pytest.raises(InvalidTransitionError):
            check_service.update_check_compensation_status(payment.id, "compensated")


def test_get_checks_by_status(open_register):
    first = _check_payment(amount_cents=1000)
    second = _check_payment(amount_cents=2000)
    check_service.update_check_compensation_status(second.id, "compensated")

    pending = check_service.get_checks_by_status("pending")
    compensated = check_service.get_checks_by_status("compensated")

    assert [p.id for p in pending] == [first.id]
    assert [p.id for p in compensated] == [second.id]
    with pytest.raises(ValidationError):
        check_service.get_checks_by_status("bogus")

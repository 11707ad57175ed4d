"""
Client debt aggregator tests.

Verifies:
- Debt is the sum of unpaid order balances and never negative
- Cancelled and deleted orders never contribute
- Recalculation is idempotent
- Order-less debt payments are allocated oldest order first
"""

from datetime import datetime

import pytest

from optiledger.models import Customer, Order
from optiledger.services import debt_service, payment_service
from optiledger.validation import NotFoundError, ValidationError


ACTOR = "cashier-1"


class TestComputeDebt:
    def test_sum_of_unpaid_balances(self, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=10000, payment_entry_cents=2500)
        make_order(customer=customer, final_price_cents=5000)

        summary = debt_service.compute_debt(customer.id)

        assert summary.total_debt_cents == 12500
        assert [o.debt_cents for o in summary.orders] == [7500, 5000]
        assert summary.kind == "customer"

    def test_overpaid_order_does_not_offset(self, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=5000, payment_entry_cents=9000)
        make_order(customer=customer, final_price_cents=3000)

        assert debt_service.compute_debt_cents(customer_id=customer.id) == 3000

    def test_cancelled_and_deleted_orders_excluded(self, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=4000, status="cancelled")
        make_order(customer=customer, final_price_cents=6000, is_deleted=True)

        assert debt_service.compute_debt(customer.id).total_debt_cents == 0

    def test_legacy_client(self, make_legacy_client, make_order):
        legacy = make_legacy_client()
        make_order(legacy_client=legacy, final_price_cents=7000)

        summary = debt_service.compute_debt(legacy.id, legacy=True)
        assert summary.kind == "legacy_client"
        assert summary.total_debt_cents == 7000

    def test_compute_is_repeatable(self, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=7000)

        first = debt_service.compute_debt(customer.id).to_dict()
        second = debt_service.compute_debt(customer.id).to_dict()
        assert first == second

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            debt_service.compute_debt(999)


class TestRecalculate:
    def test_repairs_cache_then_reports_nothing(self, make_customer, make_legacy_client, make_order, db_session):
        customer = make_customer(total_debt_cents=123)
        legacy = make_legacy_client(total_debt_cents=0)
        make_order(customer=customer, final_price_cents=5000)
        make_order(legacy_client=legacy, final_price_cents=2000)

        first = debt_service.recalculate_client_debts()

        assert first.updated == 2
        assert {(c["kind"], c["old"], c["new"], c["diff"]) for c in first.clients} == {
            ("customer", 123, 5000, 4877),
            ("legacy_client", 0, 2000, 2000),
        }
        assert db_session.get(Customer, customer.id).total_debt_cents == 5000

        second = debt_service.recalculate_client_debts()
        assert second.updated == 0
        assert second.clients == []

    def test_single_client(self, make_customer, make_order):
        customer = make_customer(total_debt_cents=0)
        make_order(customer=customer, final_price_cents=5000)

        result = debt_service.recalculate_client_debts(customer.id)
        assert result.updated == 1

        with pytest.raises(NotFoundError):
            debt_service.recalculate_client_debts(999, legacy=True)

    def test_inactive_customers_are_skipped(self, make_customer, make_order):
        customer = make_customer(is_active=False, total_debt_cents=0)
        make_order(customer=customer, final_price_cents=5000)

        assert debt_service.recalculate_client_debts().updated == 0


class TestAllocation:
    def test_debt_payment_fills_oldest_order_first(self, open_register, make_customer, make_order, db_session):
        customer = make_customer()
        older = make_order(customer=customer, final_price_cents=10000, created_at=datetime(2026, 1, 5))
        newer = make_order(customer=customer, final_price_cents=10000, created_at=datetime(2026, 2, 5))

        payment = payment_service.create_payment(
            {"type": "debt_payment", "payment_method": "cash", "amount_cents": 15000, "customer_id": customer.id},
            ACTOR,
        )

        older = db_session.get(Order, older.id)
        newer = db_session.get(Order, newer.id)
        assert older.payment_status == "paid"
        assert newer.payment_status == "partially_paid"
        assert [e.amount_cents for e in newer.payment_history] == [5000]
        assert {e.payment_id for e in older.payment_history + newer.payment_history} == {payment.id}
        assert customer.total_debt_cents == 5000

        payment_service.cancel_payment(payment.id, ACTOR)

        assert db_session.get(Order, older.id).payment_status == "pending"
        assert customer.total_debt_cents == 20000

    def test_allocation_rejects_overpayment(self, open_register, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=1000)

        with pytest.raises(ValidationError):
            payment_service.create_payment(
                {"type": "debt_payment", "payment_method": "cash", "amount_cents": 1500, "customer_id": customer.id},
                ACTOR,
            )

    def test_pending_slips_count_against_debt_at_creation(self, open_register, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=10000)
        slip = {
            "type": "debt_payment",
            "payment_method": "bank_slip",
            "amount_cents": 6000,
            "customer_id": customer.id,
            "bank_slip": {"code": "BS-1"},
        }
        payment_service.create_payment(slip, ACTOR)

        with pytest.raises(ValidationError):
            payment_service.create_payment({**slip, "bank_slip": {"code": "BS-2"}}, ACTOR)

        rest = payment_service.create_payment({**slip, "amount_cents": 4000, "bank_slip": {"code": "BS-3"}}, ACTOR)
        assert rest.status == "pending"

    def test_settling_after_debt_shrank_allocates_only_what_is_owed(self, open_register, make_customer, make_order, db_session):
        customer = make_customer()
        order = make_order(customer=customer, final_price_cents=10000)
        slip = payment_service.create_payment(
            {
                "type": "debt_payment",
                "payment_method": "bank_slip",
                "amount_cents": 6000,
                "customer_id": customer.id,
                "bank_slip": {"code": "BS-1"},
            },
            ACTOR,
        )
        payment_service.create_payment(
            {"type": "sale", "payment_method": "cash", "amount_cents": 6000, "order_id": order.id},
            ACTOR,
        )

        settled = payment_service.settle_payment(slip.id, ACTOR, paid_amount_cents=6000)

        assert settled.status == "completed"
        order = db_session.get(Order, order.id)
        assert [e.amount_cents for e in order.payment_history if e.payment_id == slip.id] == [4000]
        assert order.payment_status == "paid"
        assert customer.total_debt_cents == 0

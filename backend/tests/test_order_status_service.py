import pytest

from optiledger.services import order_status_service
from optiledger.services.order_status_service import (
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIALLY_PAID,
    PAYMENT_STATUS_PENDING,
    resolve_amounts,
)


@pytest.mark.parametrize(
    "final_price,entry,history,expected",
    [
        (10000, 0, [], PAYMENT_STATUS_PENDING),
        (10000, 0, [4000], PAYMENT_STATUS_PARTIALLY_PAID),
        (10000, 0, [10000], PAYMENT_STATUS_PAID),
        (10000, 0, [15000], PAYMENT_STATUS_PAID),
        (10000, 3000, [], PAYMENT_STATUS_PARTIALLY_PAID),
        (10000, 3000, [3000, 4000], PAYMENT_STATUS_PAID),
        (0, 0, [], PAYMENT_STATUS_PAID),
    ],
)
def test_resolve_amounts(final_price, entry, history, expected):
    assert resolve_amounts(final_price, entry, history) == expected


def test_outstanding_is_never_negative(make_customer, make_order):
    order = make_order(customer=make_customer(), final_price_cents=5000, payment_entry_cents=8000)
    assert order_status_service.total_paid(order) == 8000
    assert order_status_service.outstanding(order) == 0
    assert order_status_service.resolve(order) == PAYMENT_STATUS_PAID


def test_refresh_stores_status(make_customer, make_order, db_session):
    order = make_order(customer=make_customer(), final_price_cents=5000, payment_entry_cents=1000)
    assert order.payment_status == PAYMENT_STATUS_PENDING

    refreshed = order_status_service.refresh_order_payment_status(order.id)

    assert refreshed.payment_status == PAYMENT_STATUS_PARTIALLY_PAID
    assert order_status_service.refresh_order_payment_status(999) is None

from datetime import date
from decimal import Decimal

import pytest

from milkpick.extensions import db
from milkpick.models import Order
from milkpick.services.errors import ProductNotFound, ProductUnavailable, ServiceError
from milkpick.services.scheduler import run_due_sweep
from milkpick.services.subscription_service import (
    cancel_subscription, create_subscription, preview_schedule, update_subscription,
)
from tests.factories import make_order, make_product, make_subscription, make_user


def _create(customer, product, **kw):
    params = {"frequency": "weekly", "quantity": 2, "start_date": "2024-01-01", "today": date(2024, 1, 1)}
    params.update(kw)
    return create_subscription(customer, product_id=product.id, **params)


def test_weekly_scenario(ctx) -> None:
    sub, first = _create(make_user(), make_product(price="5.00"))

    assert first.scheduled_date == date(2024, 1, 1)
    assert first.total_amount == Decimal("10.00")
    assert sub.next_order_date == date(2024, 1, 8)
    assert Order.query.filter_by(subscription_id=sub.id).count() == 1


def test_past_start_begins_at_next_occurrence(ctx) -> None:
    sub, first = _create(make_user(), make_product(), frequency="biweekly", today=date(2024, 1, 20))

    assert first.scheduled_date == date(2024, 1, 29)
    assert sub.next_order_date == date(2024, 2, 12)


def test_create_rejects_missing_or_unavailable_product(ctx) -> None:
    customer = make_user()
    with pytest.raises(ProductNotFound):
        create_subscription(customer, product_id=9999, frequency="weekly", quantity=1, start_date="2024-01-01")

    product = make_product(available=False)
    with pytest.raises(ProductUnavailable):
        _create(customer, product)


@pytest.mark.parametrize("field, value", [("frequency", "daily"), ("quantity", 0), ("quantity", "two"),
                                          ("start_date", "01/01/2024")])
def test_create_validation(ctx, field, value) -> None:
    with pytest.raises(ServiceError):
        _create(make_user(), make_product(), **{field: value})


def test_update_requires_a_field(ctx) -> None:
    with pytest.raises(ServiceError):
        update_subscription(make_subscription(), {}, today=date(2024, 1, 1))


def test_frequency_change_recomputes_next_date(ctx) -> None:
    sub = make_subscription(start_date=date(2024, 1, 1), next_order_date=date(2024, 1, 8))
    update_subscription(sub, {"frequency": "monthly"}, today=date(2024, 1, 10))
    assert sub.next_order_date == date(2024, 2, 1)


def test_quantity_change_reprices_only_future_pending(ctx) -> None:
    sub = make_subscription(make_user(), make_product(price="5.00"), quantity=1)
    past = make_order(sub, scheduled_date=date(2023, 12, 25))
    future = make_order(sub, scheduled_date=date(2024, 1, 8))
    accepted = make_order(sub, scheduled_date=date(2024, 1, 15), status="confirmed")

    update_subscription(sub, {"quantity": 3}, today=date(2024, 1, 1))

    assert db.session.get(Order, future.id).total_amount == Decimal("15.00")
    assert db.session.get(Order, past.id).total_amount == Decimal("10.00")
    assert db.session.get(Order, accepted.id).quantity == 1


def test_cancel_subscription(ctx) -> None:
    sub = make_subscription()
    make_order(sub, scheduled_date=date(2024, 1, 8))
    make_order(sub, scheduled_date=date(2024, 1, 15), status="confirmed")
    make_order(sub, scheduled_date=date(2023, 12, 25))

    assert cancel_subscription(sub, today=date(2024, 1, 1)) == 1
    assert sub.active is False


def test_preview_schedule(ctx) -> None:
    dates = preview_schedule("2024-01-31", "monthly", 3, today=date(2024, 1, 1))
    assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29)]

    assert len(preview_schedule("2024-01-01", "weekly", today=date(2024, 1, 1))) == 6
    assert len(preview_schedule("2024-01-01", "weekly", 40, today=date(2024, 1, 1))) == 12


def test_deactivating_cancels_upcoming_orders(ctx) -> None:
    sub = make_subscription(next_order_date=date(2024, 1, 15))
    upcoming = make_order(sub, scheduled_date=date(2024, 1, 8))

    update_subscription(sub, {"active": False}, today=date(2024, 1, 1))

    assert sub.active is False
    assert db.session.get(Order, upcoming.id).status == "cancelled"


def test_reactivating_restarts_from_today(ctx) -> None:
    sub = make_subscription(start_date=date(2024, 1, 1), next_order_date=date(2024, 1, 8))
    cancel_subscription(sub, today=date(2024, 1, 1))

    update_subscription(sub, {"active": True}, today=date(2024, 6, 1))

    assert sub.active is True
    assert sub.next_order_date == date(2024, 6, 3)
    assert run_due_sweep(today=date(2024, 6, 1))["created"] == 0
    assert run_due_sweep(today=date(2024, 6, 3))["created"] == 1
    assert [o.scheduled_date for o in Order.query.filter_by(subscription_id=sub.id)] == [date(2024, 6, 3)]

# milkpick/services/subscription_service.py
from __future__ import annotations
import logging
from datetime import date

from ..extensions import db
from ..models import Order, Product, Subscription, User
from ..models.subscription import FREQUENCIES
from .cadence import next_date, next_occurrence_on_or_after, parse_date, upcoming_sequence, utc_today
from .errors import ProductNotFound, ProductUnavailable, ServiceError
from .order_service import ensure_order, order_total

log = logging.getLogger(__name__)

PREVIEW_DEFAULT = 6
PREVIEW_MAX = 12


def _frequency(value) -> str:
    if value not in FREQUENCIES:
        raise ServiceError(f"Frequency must be one of: {', '.join(FREQUENCIES)}")
    return value


def _quantity(value) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        quantity = 0
    if quantity < 1:
        raise ServiceError("Quantity must be a positive integer")
    return quantity


def _start_date(value) -> date:
    parsed = parse_date(value)
    if parsed is None:
        raise ServiceError("Invalid start_date, expected YYYY-MM-DD")
    return parsed


def create_subscription(customer: User, *, product_id, frequency, quantity, start_date,
                        today: date | None = None):
    """
    Create an active subscription and materialize its first occurrence.

    Returns (subscription, first_order). first_order is None when the order
    could not be created; next_order_date then stays on that occurrence so the
    due sweep retries it.
    """
    today = today or utc_today()
    frequency = _frequency(frequency)
    quantity = _quantity(quantity)
    start = _start_date(start_date)

    product = db.session.get(Product, product_id) if product_id is not None else None
    if product is None:
        raise ProductNotFound()
    if not product.available:
        raise ProductUnavailable()

    first = next_occurrence_on_or_after(start, frequency, today)
    if first is None:
        raise ServiceError("Invalid start date or frequency")

    subscription = Subscription(
        customer_id=customer.id,
        farm_id=product.farm_id,
        product_id=product.id,
        frequency=frequency,
        quantity=quantity,
        start_date=start,
        next_order_date=first,
        active=True,
    )
    db.session.add(subscription)
    db.session.commit()
    log.info("Subscription %s created for customer %s (%s x%s)", subscription.id, customer.id, frequency, quantity)

    first_order = None
    try:
        first_order = ensure_order(subscription, first)
        following = next_date(first, frequency)
        if following:
            subscription.next_order_date = following
            db.session.commit()
    except Exception as e:
        db.session.rollback()
        log.error("Initial order for subscription %s failed: %s", subscription.id, e)
    return subscription, first_order


def update_subscription(subscription: Subscription, changes: dict, today: date | None = None) -> Subscription:
    today = today or utc_today()
    values = {}
    if changes.get("frequency") is not None:
        values["frequency"] = _frequency(changes["frequency"])
    if changes.get("quantity") is not None:
        values["quantity"] = _quantity(changes["quantity"])
    if changes.get("start_date") is not None:
        values["start_date"] = _start_date(changes["start_date"])
    if changes.get("active") is not None:
        values["active"] = bool(changes["active"])
    if not values:
        raise ServiceError("No fields to update")

    active = values.pop("active", None)
    deactivating = active is False and subscription.active
    reactivating = active is True and not subscription.active
    if reactivating:
        values["active"] = True

    if reactivating or "frequency" in values or "start_date" in values:
        upcoming = next_occurrence_on_or_after(
            values.get("start_date", subscription.start_date),
            values.get("frequency", subscription.frequency),
            today,
        )
        if upcoming:
            values["next_order_date"] = upcoming

    for key, value in values.items():
        setattr(subscription, key, value)
    db.session.commit()

    if "quantity" in values:
        product = db.session.get(Product, subscription.product_id)
        if product is not None:
            repriced = (Order.query
                        .filter(Order.subscription_id == subscription.id,
                                Order.scheduled_date >= today,
                                Order.status == "pending")
                        .update({"quantity": subscription.quantity,
                                 "total_amount": order_total(product.price, subscription.quantity)},
                                synchronize_session=False))
            db.session.commit()
            log.info("Repriced %s pending orders of subscription %s", repriced, subscription.id)

    if deactivating:
        cancel_subscription(subscription, today)
    elif reactivating:
        log.info("Subscription %s reactivated; next order %s", subscription.id, subscription.next_order_date)
    return subscription


def cancel_subscription(subscription: Subscription, today: date | None = None) -> int:
    """Deactivate and cancel its upcoming pending orders. Returns how many were cancelled."""
    today = today or utc_today()
    subscription.active = False
    db.session.commit()
    cancelled = (Order.query
                 .filter(Order.subscription_id == subscription.id,
                         Order.scheduled_date >= today,
                         Order.status == "pending")
                 .update({"status": "cancelled"}, synchronize_session=False))
    db.session.commit()
    log.info("Subscription %s cancelled (%s orders)", subscription.id, cancelled)
    return cancelled


def preview_schedule(start_date, frequency, count=None, today: date | None = None) -> list[date]:
    today = today or utc_today()
    frequency = _frequency(frequency)
    start = _start_date(start_date)
    try:
        n = int(count) if count is not None else PREVIEW_DEFAULT
    except (TypeError, ValueError):
        n = PREVIEW_DEFAULT
    if n < 1:
        n = PREVIEW_DEFAULT
    return list(upcoming_sequence(start, frequency, min(n, PREVIEW_MAX), today))

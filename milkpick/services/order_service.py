# milkpick/services/order_service.py
"""
Turning one subscription occurrence into an Order, and customer edits to
orders that have not happened yet.
"""
from __future__ import annotations
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, Product, Subscription
from .cadence import next_occurrence_on_or_after, parse_date, utc_today
from .errors import OrderConflict, OrderNotEditable, ProductNotFound, ServiceError, TaskResult
from .notification_service import send_order_confirmation, send_schedule_change
from .payment_service import attempt_charge

log = logging.getLogger(__name__)

CENT = Decimal("0.01")


def order_total(price, quantity: int) -> Decimal:
    return (Decimal(str(price)) * int(quantity)).quantize(CENT, rounding=ROUND_HALF_UP)


def find_order(subscription_id: int, scheduled_date: date) -> Order | None:
    return Order.query.filter_by(subscription_id=subscription_id, scheduled_date=scheduled_date).first()


def _confirmation_task(order: Order) -> TaskResult:
    try:
        results = send_order_confirmation(order)
    except Exception as e:
        log.error("Order confirmation notification failed for order %s: %s", order.id, e)
        return TaskResult.failed(str(e))
    if any(r.get("skipped") for r in results.values()):
        return TaskResult.skipped("notifications_disabled")
    return TaskResult.ok()


def _payment_task(order: Order) -> TaskResult:
    try:
        result = attempt_charge(order)
    except Exception as e:
        db.session.rollback()
        log.error("Payment attempt crashed for order %s: %s", order.id, e)
        return TaskResult.failed(str(e))
    if result.status == "succeeded":
        return TaskResult.ok()
    if result.status == "skipped":
        return TaskResult.skipped(result.reason)
    return TaskResult.failed(result.error or result.reason)


def ensure_order(subscription: Subscription, target_date: date) -> Order:
    """
    Return the order for (subscription, target_date), creating it if needed.

    A new order is inserted pending/pending, then the confirmation notice and
    the payment attempt run, each isolated from the other. Their outcomes are
    on `order.side_effects`. An existing order is returned untouched.
    """
    existing = find_order(subscription.id, target_date)
    if existing:
        return existing

    product = db.session.get(Product, subscription.product_id)
    if product is None:
        raise ProductNotFound(f"Product {subscription.product_id} not found for subscription {subscription.id}")

    order = Order(
        subscription_id=subscription.id,
        customer_id=subscription.customer_id,
        farm_id=subscription.farm_id,
        product_id=subscription.product_id,
        quantity=subscription.quantity,
        total_amount=order_total(product.price, subscription.quantity),
        scheduled_date=target_date,
        status="pending",
        payment_status="pending",
    )
    db.session.add(order)
    try:
        db.session.commit()
    except IntegrityError:
        # another worker materialized the same occurrence first
        db.session.rollback()
        winner = find_order(subscription.id, target_date)
        if winner is None:
            raise
        return winner

    log.info("Created order %s for subscription %s on %s", order.id, subscription.id, target_date)
    order.side_effects = {
        "notification": _confirmation_task(order),
        "payment": _payment_task(order),
    }
    return order


def _reserved_by_schedule(subscription: Subscription, day: date) -> bool:
    """True for dates the due sweep still owns: on or after its cursor, or on the cadence itself."""
    if subscription.next_order_date is not None and day >= subscription.next_order_date:
        return True
    return next_occurrence_on_or_after(subscription.start_date, subscription.frequency, day) == day


def edit_order(order: Order, changes: dict, today: date | None = None) -> Order:
    """Change quantity, date or notes of a pending, upcoming order."""
    today = today or utc_today()
    if order.status != "pending" or order.scheduled_date < today:
        raise OrderNotEditable()

    values = {}
    if changes.get("quantity") is not None:
        try:
            quantity = int(changes["quantity"])
        except (TypeError, ValueError):
            quantity = 0
        if quantity < 1:
            raise ServiceError("Quantity must be a positive integer")
        product = db.session.get(Product, order.product_id)
        if product is None:
            raise ProductNotFound()
        values["quantity"] = quantity
        values["total_amount"] = order_total(product.price, quantity)

    if changes.get("scheduled_date") is not None:
        new_date = parse_date(changes["scheduled_date"])
        if new_date is None:
            raise ServiceError("Invalid scheduled_date, expected YYYY-MM-DD")
        if new_date < today:
            raise OrderNotEditable("Orders cannot be moved into the past")
        if new_date != order.scheduled_date and order.subscription_id is not None:
            clash = (Order.query
                     .filter(Order.subscription_id == order.subscription_id,
                             Order.scheduled_date == new_date,
                             Order.id != order.id)
                     .first())
            if clash:
                raise OrderConflict()
            subscription = db.session.get(Subscription, order.subscription_id)
            if subscription is not None and _reserved_by_schedule(subscription, new_date):
                raise OrderConflict("That date belongs to another delivery of this subscription")
        values["scheduled_date"] = new_date

    if "notes" in changes:
        values["notes"] = changes.get("notes")

    if not values:
        return order

    try:
        updated = (Order.query
                   .filter(Order.id == order.id, Order.status == "pending")
                   .update(values, synchronize_session=False))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise OrderConflict()
    if not updated:
        raise OrderNotEditable()

    db.session.refresh(order)
    if "quantity" in values or "scheduled_date" in values:
        try:
            send_schedule_change(order, note="Your order details were updated.")
        except Exception as e:
            log.error("Schedule change notification failed for order %s: %s", order.id, e)
    return order

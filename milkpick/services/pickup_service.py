# milkpick/services/pickup_service.py
"""
Order status transitions after materialization.

Every transition is a conditional UPDATE scoped to the allowed prior states,
so two actors racing on one order (a pickup confirmation against the late
sweep, say) cannot both apply: the loser updates zero rows.
"""
from __future__ import annotations
import logging
import math
import secrets
from datetime import date, datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order
from ..models.order import CONFIRMATION_METHODS
from .cadence import utc_today
from .errors import InvalidQrCode, NotConfirmable, OrderNotEditable, PickupTooEarly, ServiceError
from .notification_service import send_schedule_change

log = logging.getLogger(__name__)

DEFAULT_GRACE_HOURS = 24
CONFIRMABLE_STATUSES = ("pending", "confirmed", "late")
INACTIVE_STATUSES = ("cancelled", "no_show")
QR_ISSUE_ATTEMPTS = 3


def grace_period_hours() -> float:
    raw = current_app.config.get("PICKUP_GRACE_PERIOD_HOURS")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_GRACE_HOURS
    if math.isfinite(value) and value >= 0:
        return value
    return DEFAULT_GRACE_HOURS


def is_confirmable(status: str) -> bool:
    return status in CONFIRMABLE_STATUSES


def _transition(order_id: int, from_statuses, values: dict) -> bool:
    updated = (Order.query
               .filter(Order.id == order_id, Order.status.in_(from_statuses))
               .update(values, synchronize_session=False))
    db.session.commit()
    return bool(updated)


def confirm_pickup(order_id: int, method: str, today: date | None = None) -> Order:
    if method not in CONFIRMATION_METHODS:
        raise ServiceError(f"Unknown confirmation method: {method}")

    if method == "customer_self":
        today = today or utc_today()
        order = db.session.get(Order, order_id)
        if order is not None and order.scheduled_date > today:
            raise PickupTooEarly()

    changed = _transition(order_id, CONFIRMABLE_STATUSES, {
        "status": "picked_up",
        "pickup_confirmed_at": datetime.utcnow(),
        "confirmation_method": method,
    })
    if not changed:
        raise NotConfirmable()
    log.info("Order %s picked up (%s)", order_id, method)
    return db.session.get(Order, order_id)


def accept_order(order_id: int) -> Order:
    if not _transition(order_id, ("pending",), {"status": "confirmed"}):
        raise NotConfirmable("Only pending orders can be accepted")
    return db.session.get(Order, order_id)


def mark_no_show(order_id: int) -> Order:
    if not _transition(order_id, CONFIRMABLE_STATUSES, {"status": "no_show"}):
        raise NotConfirmable("Order cannot be marked as no-show in its current status")
    log.info("Order %s marked no_show", order_id)
    return db.session.get(Order, order_id)


def cancel_order(order_id: int, today: date | None = None) -> Order:
    today = today or utc_today()
    updated = (Order.query
               .filter(Order.id == order_id,
                       Order.status == "pending",
                       Order.scheduled_date >= today)
               .update({"status": "cancelled"}, synchronize_session=False))
    db.session.commit()
    if not updated:
        raise OrderNotEditable("Only pending, upcoming orders can be cancelled")

    order = db.session.get(Order, order_id)
    try:
        send_schedule_change(order, note="This order was cancelled.")
    except Exception as e:
        log.error("Cancellation notification failed for order %s: %s", order_id, e)
    return order


# -----------------
# QR tokens
# -----------------

def ensure_qr_code(order: Order) -> str:
    """Issue the order's pickup token once; later calls return the same token."""
    if order.status in INACTIVE_STATUSES:
        raise InvalidQrCode("QR codes are not available for this order")
    if order.qr_code:
        return order.qr_code

    for _ in range(QR_ISSUE_ATTEMPTS):
        token = secrets.token_hex(16)
        try:
            (Order.query
             .filter(Order.id == order.id, Order.qr_code.is_(None))
             .update({"qr_code": token}, synchronize_session=False))
            db.session.commit()
            break
        except IntegrityError:
            # token collided with another order's; draw again
            db.session.rollback()

    db.session.refresh(order)
    if not order.qr_code:
        raise ServiceError("Failed to store QR code")
    return order.qr_code


def find_order_by_qr(token: str) -> Order:
    if not token:
        raise InvalidQrCode()
    order = Order.query.filter_by(qr_code=token.strip()).first()
    if order is None or order.status in INACTIVE_STATUSES:
        raise InvalidQrCode()
    return order

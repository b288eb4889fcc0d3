# milkpick/services/notification_service.py
"""
Transactional email/SMS for orders and pickups.

Every send is gated by the recipient's NotificationPreference (channel switch
plus per-category switch) and every attempt is written to the Notification log.
Nothing in this module raises to its caller: a missing provider or a provider
error is a logged `failed` row and a False in the result.
"""
from __future__ import annotations
import logging
from flask import current_app

from ..extensions import db
from ..models import Farm, Notification, NotificationPreference, Order, User
from .email_service import email_configured, send_email
from .sms_service import get_sms

log = logging.getLogger(__name__)


def get_preferences(user_id: int) -> NotificationPreference | None:
    prefs = NotificationPreference.query.filter_by(user_id=user_id).first()
    if prefs:
        return prefs
    try:
        prefs = NotificationPreference(user_id=user_id)
        db.session.add(prefs)
        db.session.commit()
        return prefs
    except Exception as e:
        db.session.rollback()
        log.error("Could not create notification preferences for user %s: %s", user_id, e)
        return NotificationPreference.query.filter_by(user_id=user_id).first()


def log_notification(*, user_id, type, category, recipient, message, status, subject=None, error_message=None):
    try:
        db.session.add(Notification(
            user_id=user_id,
            type=type,
            category=category,
            recipient=recipient or "unknown",
            subject=subject,
            message=message,
            status=status,
            error_message=error_message,
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        log.error("Failed to log %s notification for user %s: %s", type, user_id, e)


def _send_sms(*, user_id, to, message, category) -> bool:
    sms = get_sms()
    if not sms.configured:
        log_notification(user_id=user_id, type="sms", category=category, recipient=to, message=message,
                         status="failed", error_message="Twilio credentials not configured")
        return False
    try:
        sms.send(to, message)
    except Exception as e:
        log.warning("SMS to %s failed: %s", to, e)
        log_notification(user_id=user_id, type="sms", category=category, recipient=to, message=message,
                         status="failed", error_message=str(e))
        return False
    log_notification(user_id=user_id, type="sms", category=category, recipient=to, message=message, status="sent")
    return True


def _send_email(*, user_id, to, subject, message, category) -> bool:
    if not email_configured():
        log_notification(user_id=user_id, type="email", category=category, recipient=to, subject=subject,
                         message=message, status="failed", error_message="Mail not configured")
        return False
    ok = send_email(to=to, subject=subject, body=message)
    log_notification(user_id=user_id, type="email", category=category, recipient=to, subject=subject,
                     message=message, status="sent" if ok else "failed",
                     error_message=None if ok else "Email delivery failed")
    return ok


def notify_user(user: User, *, category: str, subject: str, message: str,
                sms_message: str | None = None, email: str | None = None, phone: str | None = None) -> dict:
    """Send on every channel the user's preferences allow. Returns {"email": bool, "sms": bool}."""
    if not current_app.config.get("ENABLE_NOTIFICATIONS", True):
        return {"skipped": True}

    prefs = get_preferences(user.id)
    results = {"email": False, "sms": False}
    if prefs is None:
        return results

    email = email or user.email
    phone = phone or user.phone

    if email and prefs.allows("email", category):
        results["email"] = _send_email(user_id=user.id, to=email, subject=subject, message=message, category=category)
    if phone and prefs.allows("sms", category):
        results["sms"] = _send_sms(user_id=user.id, to=phone, message=sms_message or message, category=category)
    return results


# -----------------
# Message builders
# -----------------

def order_summary(order: Order) -> str:
    product = order.product
    name = product.name if product else "product"
    unit = (product.unit or "") if product else ""
    return " ".join(p for p in (str(order.quantity), unit, name) if p) + f" for {order.scheduled_date.isoformat()}"


def _parties(order: Order):
    customer = db.session.get(User, order.customer_id)
    farm = db.session.get(Farm, order.farm_id)
    farmer = db.session.get(User, farm.farmer_id) if farm and farm.farmer_id else None
    return customer, farm, farmer


def _notify_farmer(farmer, farm, **kwargs):
    return notify_user(farmer, email=farmer.email or farm.email, phone=farmer.phone or farm.phone, **kwargs)


def send_order_confirmation(order: Order):
    customer, farm, farmer = _parties(order)
    summary = order_summary(order)
    total = f"${order.total_amount:.2f}"
    results = {}
    if customer:
        results["customer"] = notify_user(
            customer,
            category="order_confirmation",
            subject=f"MilkPick order confirmed for {order.scheduled_date.isoformat()}",
            message=f"Your order is confirmed: {summary}. Total: {total}.",
        )
    if farmer and farm:
        results["farmer"] = _notify_farmer(
            farmer, farm,
            category="order_confirmation",
            subject=f"New MilkPick order for {farm.name}",
            message=f"New order scheduled: {summary}. Total: {total}.",
        )
    return results


def send_schedule_change(order: Order, note: str | None = None):
    customer, farm, farmer = _parties(order)
    message = f"Order update: {order_summary(order)}. {note or ''}".strip()
    if customer:
        notify_user(customer, category="schedule_change", subject="MilkPick schedule update", message=message)
    if farmer and farm:
        _notify_farmer(farmer, farm, category="schedule_change",
                       subject=f"Schedule update for {farm.name}", message=message)


def send_pickup_reminder(order: Order):
    customer, farm, farmer = _parties(order)
    day = order.scheduled_date.isoformat()
    message = f"Reminder: Pickup scheduled for {day}. {order_summary(order)}."
    if customer:
        notify_user(customer, category="pickup_reminder", subject=f"Pickup reminder for {day}", message=message)
    if farmer and farm:
        _notify_farmer(farmer, farm, category="pickup_reminder",
                       subject=f"Upcoming pickup for {farm.name}", message=message)


def send_late_pickup(order: Order):
    customer, farm, farmer = _parties(order)
    farm_name = farm.name if farm else "the farm"
    message = f"Pickup marked late: {order_summary(order)}. Please coordinate with {farm_name}."
    if customer:
        notify_user(customer, category="late_pickup", subject="Late pickup notice", message=message)
    if farmer and farm:
        _notify_farmer(farmer, farm, category="late_pickup",
                       subject=f"Late pickup for {farm.name}", message=message)


def send_payment_confirmation(order: Order):
    customer = db.session.get(User, order.customer_id)
    if not customer:
        return
    notify_user(
        customer,
        category="payment_confirmation",
        subject="Payment confirmation",
        message=f"Payment received for {order_summary(order)}. Amount: ${order.total_amount:.2f}.",
    )


def send_customer_summary(customer: User, orders: list[Order]):
    lines = "\n".join(f"- {order_summary(o)}" for o in orders)
    return notify_user(
        customer,
        category="weekly_summary",
        subject="MilkPick weekly summary",
        message=f"Your pickups for the next week:\n{lines}",
        sms_message=f"You have {len(orders)} pickups scheduled this week.",
    )


def send_farmer_summary(farmer: User, farm: Farm, orders: list[Order]):
    lines = "\n".join(f"- {order_summary(o)}" for o in orders)
    return notify_user(
        farmer,
        category="weekly_summary",
        subject=f"MilkPick weekly summary for {farm.name}",
        message=f"Upcoming pickups for {farm.name}:\n{lines}",
        sms_message=f"{len(orders)} pickups scheduled for {farm.name} this week.",
    )

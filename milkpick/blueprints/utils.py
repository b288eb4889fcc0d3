# milkpick/blueprints/utils.py
"""JSON shapes shared by the API blueprints."""
from datetime import date, datetime
from decimal import Decimal

from flask import request

from ..models import Farm, Notification, NotificationPreference, Order, PaymentMethod, Subscription, Transaction
from ..models.notification import NOTIFICATION_CATEGORIES


def _iso(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _money(value):
    if value is None:
        return None
    return f"{Decimal(str(value)):.2f}"


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    return data


def farm_brief(farm: Farm | None):
    if farm is None:
        return None
    return {"id": farm.id, "name": farm.name, "city": farm.city, "state": farm.state}


def product_brief(product):
    if product is None:
        return None
    return {"id": product.id, "name": product.name, "unit": product.unit, "price": _money(product.price)}


def subscription_to_dict(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "customer_id": sub.customer_id,
        "frequency": sub.frequency,
        "quantity": sub.quantity,
        "start_date": _iso(sub.start_date),
        "next_order_date": _iso(sub.next_order_date),
        "active": sub.active,
        "created_at": _iso(sub.created_at),
        "farm": farm_brief(sub.farm),
        "product": product_brief(sub.product),
    }


def order_to_dict(order: Order, *, with_customer: bool = False) -> dict:
    data = {
        "id": order.id,
        "subscription_id": order.subscription_id,
        "quantity": order.quantity,
        "total_amount": _money(order.total_amount),
        "scheduled_date": _iso(order.scheduled_date),
        "status": order.status,
        "payment_status": order.payment_status,
        "pickup_confirmed_at": _iso(order.pickup_confirmed_at),
        "confirmation_method": order.confirmation_method,
        "notes": order.notes,
        "created_at": _iso(order.created_at),
        "farm": farm_brief(order.farm),
        "product": product_brief(order.product),
    }
    if with_customer and order.customer is not None:
        data["customer"] = {
            "id": order.customer.id,
            "name": order.customer.full_name,
            "email": order.customer.email,
            "phone": order.customer.phone,
        }
    return data


def transaction_to_dict(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "order_id": txn.order_id,
        "amount": _money(txn.amount),
        "status": txn.status,
        "stripe_payment_intent_id": txn.stripe_payment_intent_id,
        "refund_id": txn.refund_id,
        "error_message": txn.error_message,
        "created_at": _iso(txn.created_at),
    }


def payment_method_to_dict(method: PaymentMethod) -> dict:
    return {
        "id": method.id,
        "stripe_payment_method_id": method.stripe_payment_method_id,
        "type": method.type,
        "brand": method.brand,
        "last_four": method.last_four,
        "exp_month": method.exp_month,
        "exp_year": method.exp_year,
        "is_default": method.is_default,
    }


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "category": n.category,
        "recipient": n.recipient,
        "subject": n.subject,
        "message": n.message,
        "status": n.status,
        "sent_at": _iso(n.sent_at),
    }


def preferences_to_dict(prefs: NotificationPreference) -> dict:
    data = {"email_enabled": prefs.email_enabled, "sms_enabled": prefs.sms_enabled}
    for category in NOTIFICATION_CATEGORIES:
        data[category] = getattr(prefs, category)
    return data

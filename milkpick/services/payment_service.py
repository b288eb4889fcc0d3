# milkpick/services/payment_service.py
"""
Charging orders against the customer's default card, and keeping
Order.payment_status / Transaction rows in step with Stripe.

`attempt_charge` is best effort: every outcome comes back as a ChargeResult,
nothing is raised. The pay-now, refund and card-management helpers are
single-item operations and raise ServiceError subclasses instead.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Farm, Order, PaymentMethod, Transaction, User
from .errors import GatewayUnavailable, PaymentRejected
from .notification_service import send_payment_confirmation
from .stripe_gateway import GatewayError, get_gateway

log = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    status: str                     # succeeded|failed|skipped
    reason: Optional[str] = None
    payment_intent_id: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


def minor_units(amount) -> int | None:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not value.is_finite():
        return None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# -----------------
# Lookups
# -----------------

def get_default_payment_method(user_id: int) -> PaymentMethod | None:
    method = PaymentMethod.query.filter_by(user_id=user_id, is_default=True).first()
    if method:
        return method
    return (PaymentMethod.query.filter_by(user_id=user_id)
            .order_by(PaymentMethod.created_at.desc(), PaymentMethod.id.desc())
            .first())


def get_or_create_stripe_customer(user: User) -> str:
    if user.stripe_customer_id:
        return user.stripe_customer_id
    customer_id = get_gateway().create_customer(
        email=user.email,
        name=user.full_name or None,
        metadata={"user_id": str(user.id)},
    )
    user.stripe_customer_id = customer_id
    db.session.commit()
    return customer_id


def upsert_transaction(*, stripe_payment_intent_id: str | None, **fields) -> Transaction:
    """Insert or update the Transaction keyed by PaymentIntent id (None always inserts)."""
    existing = None
    if stripe_payment_intent_id:
        existing = Transaction.query.filter_by(stripe_payment_intent_id=stripe_payment_intent_id).first()
    if existing:
        for key, value in fields.items():
            if value is not None:
                setattr(existing, key, value)
        db.session.commit()
        return existing

    txn = Transaction(stripe_payment_intent_id=stripe_payment_intent_id, **fields)
    db.session.add(txn)
    try:
        db.session.commit()
    except IntegrityError:
        # lost an insert race on the same intent; update the winner instead
        db.session.rollback()
        return upsert_transaction(stripe_payment_intent_id=stripe_payment_intent_id, **fields)
    return txn


# -----------------
# Charging
# -----------------

def attempt_charge(order: Order | None) -> ChargeResult:
    if order is None:
        return ChargeResult("skipped", reason="missing_order")
    if not current_app.config.get("ENABLE_PAYMENTS", True):
        return ChargeResult("skipped", reason="payments_disabled")

    try:
        gateway = get_gateway()
        if not gateway.configured:
            return ChargeResult("skipped", reason="missing_stripe_key")

        amount = minor_units(order.total_amount)
        if amount is None or amount <= 0:
            return ChargeResult("skipped", reason="invalid_amount")

        method = get_default_payment_method(order.customer_id)
        if not method:
            return ChargeResult("skipped", reason="missing_payment_method")
    except Exception as e:
        db.session.rollback()
        log.error("Payment lookup failed for order %s: %s", order.id, e)
        return ChargeResult("failed", reason="lookup_failed", error=str(e))

    try:
        customer = db.session.get(User, order.customer_id)
        if customer is None:
            return ChargeResult("failed", reason="customer_not_found")
        stripe_customer_id = get_or_create_stripe_customer(customer)
        farm = db.session.get(Farm, order.farm_id)
        destination = farm.stripe_account_id if farm else None
    except Exception as e:
        db.session.rollback()
        log.error("Could not prepare charge for order %s: %s", order.id, e)
        return ChargeResult("failed", reason="customer_unavailable", error=str(e))

    try:
        intent = gateway.charge_off_session(
            customer_id=stripe_customer_id,
            payment_method_id=method.stripe_payment_method_id,
            amount=amount,
            destination=destination,
            metadata={
                "order_id": str(order.id),
                "farm_id": str(order.farm_id),
                "customer_id": str(order.customer_id),
            },
        )
    except Exception as e:
        intent_id = getattr(e, "payment_intent_id", None)
        return _record_failed_charge(order, intent_id, str(e))

    try:
        order.payment_status = "paid"
        order.payment_intent_id = intent["id"]
        db.session.commit()
        upsert_transaction(
            stripe_payment_intent_id=intent["id"],
            order_id=order.id,
            customer_id=order.customer_id,
            farm_id=order.farm_id,
            amount=order.total_amount,
            status="succeeded",
            stripe_charge_id=intent.get("latest_charge"),
        )
    except Exception as e:
        db.session.rollback()
        log.exception("Charge %s succeeded but recording it for order %s failed: %s", intent["id"], order.id, e)
        return ChargeResult("succeeded", payment_intent_id=intent["id"], error=str(e))

    try:
        send_payment_confirmation(order)
    except Exception as e:
        log.error("Payment confirmation notification error for order %s: %s", order.id, e)

    return ChargeResult("succeeded", payment_intent_id=intent["id"])


def _record_failed_charge(order: Order, intent_id: str | None, error: str) -> ChargeResult:
    log.warning("Charge failed for order %s: %s", order.id, error)
    try:
        order.payment_status = "failed"
        if intent_id:
            order.payment_intent_id = intent_id
        db.session.commit()
        upsert_transaction(
            stripe_payment_intent_id=intent_id,
            order_id=order.id,
            customer_id=order.customer_id,
            farm_id=order.farm_id,
            amount=order.total_amount,
            status="failed",
            error_message=error,
        )
    except Exception as e:
        db.session.rollback()
        log.exception("Recording failed charge for order %s failed: %s", order.id, e)
    return ChargeResult("failed", reason="charge_failed", payment_intent_id=intent_id, error=error)


def pay_now(order: Order) -> ChargeResult:
    """Customer-initiated charge. Skips and already-settled orders are rejections here."""
    if order.payment_status == "paid":
        raise PaymentRejected("Order already paid")
    if order.status in ("cancelled", "no_show"):
        raise PaymentRejected("Order is not payable")
    result = attempt_charge(order)
    if result.status == "skipped":
        raise PaymentRejected("Payment could not be processed", reason=result.reason)
    return result


def refund_order(order: Order) -> Transaction:
    if not order.payment_intent_id:
        raise PaymentRejected("Order does not have a payment to refund")
    if order.payment_status == "refunded":
        raise PaymentRejected("Order already refunded")
    try:
        refund_id = get_gateway().refund(order.payment_intent_id)
    except GatewayError as e:
        raise GatewayUnavailable(str(e)) from e

    order.payment_status = "refunded"
    db.session.commit()
    return upsert_transaction(
        stripe_payment_intent_id=order.payment_intent_id,
        order_id=order.id,
        customer_id=order.customer_id,
        farm_id=order.farm_id,
        amount=order.total_amount,
        status="refunded",
        refund_id=refund_id,
    )


# -----------------
# Webhook events (idempotent per PaymentIntent)
# -----------------

def _order_for_intent(intent_id: str | None, metadata: dict | None) -> Order | None:
    if intent_id:
        order = Order.query.filter_by(payment_intent_id=intent_id).first()
        if order:
            return order
    raw_id = (metadata or {}).get("order_id")
    try:
        return db.session.get(Order, int(raw_id)) if raw_id else None
    except (TypeError, ValueError):
        return None


def _claims_other_intent(order: Order, intent_id: str) -> bool:
    if order.payment_intent_id and order.payment_intent_id != intent_id:
        return True
    txn = Transaction.query.filter_by(stripe_payment_intent_id=intent_id).first()
    return bool(txn and txn.order_id and txn.order_id != order.id)


def _cents_to_amount(value) -> Decimal:
    return (Decimal(int(value or 0)) / 100).quantize(Decimal("0.01"))


def apply_gateway_event(event: dict) -> str:
    """Apply one Stripe event. Returns processed|ignored|rejected."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        intent_id = obj.get("id")
        metadata = obj.get("metadata") or {}
        succeeded = event_type == "payment_intent.succeeded"
        fields = dict(
            status="succeeded" if succeeded else "failed",
            amount=_cents_to_amount(obj.get("amount_received") if succeeded else obj.get("amount")),
        )
        if succeeded:
            fields["stripe_charge_id"] = obj.get("latest_charge")
        else:
            fields["error_message"] = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
        return _settle(intent_id, metadata, "paid" if succeeded else "failed", fields)

    if event_type == "charge.refunded":
        intent_id = obj.get("payment_intent")
        if not intent_id:
            return "ignored"
        refunds = (obj.get("refunds") or {}).get("data") or []
        fields = dict(
            status="refunded",
            amount=_cents_to_amount(obj.get("amount_refunded")),
            refund_id=refunds[0].get("id") if refunds else None,
        )
        return _settle(intent_id, obj.get("metadata") or {}, "refunded", fields)

    return "ignored"


def _settle(intent_id: str | None, metadata: dict, payment_status: str, fields: dict) -> str:
    if not intent_id:
        return "ignored"
    order = _order_for_intent(intent_id, metadata)

    if order is not None and _claims_other_intent(order, intent_id):
        log.error("Stripe intent %s does not match order %s (has %s); event rejected",
                  intent_id, order.id, order.payment_intent_id)
        return "rejected"

    # a late failure event never downgrades a settled payment
    if payment_status == "failed" and order is not None and order.payment_status in ("paid", "refunded"):
        log.info("Ignoring late failure for intent %s; order %s is %s", intent_id, order.id, order.payment_status)
        return "ignored"

    if order is None:
        try:
            customer_id = int(metadata["customer_id"]) if metadata.get("customer_id") else None
            farm_id = int(metadata["farm_id"]) if metadata.get("farm_id") else None
        except (TypeError, ValueError):
            log.warning("Stripe intent %s carries unusable metadata %s; event ignored", intent_id, metadata)
            return "ignored"
    else:
        customer_id, farm_id = order.customer_id, order.farm_id

    newly_paid = False
    if order is not None:
        newly_paid = payment_status == "paid" and order.payment_status != "paid"
        order.payment_intent_id = intent_id
        order.payment_status = payment_status
        db.session.commit()

    if customer_id and farm_id:
        upsert_transaction(
            stripe_payment_intent_id=intent_id,
            order_id=order.id if order else None,
            customer_id=customer_id,
            farm_id=farm_id,
            **fields,
        )

    if newly_paid:
        try:
            send_payment_confirmation(order)
        except Exception as e:
            log.error("Payment confirmation notification error: %s", e)
    return "processed"


# -----------------
# Saved cards
# -----------------

def create_setup_intent(user: User) -> dict:
    try:
        customer_id = get_or_create_stripe_customer(user)
        return get_gateway().create_setup_intent(customer_id)
    except GatewayError as e:
        raise GatewayUnavailable(str(e)) from e


def _make_default(user: User, method: PaymentMethod, customer_id: str):
    PaymentMethod.query.filter_by(user_id=user.id).update({"is_default": False}, synchronize_session=False)
    method.is_default = True
    db.session.commit()
    get_gateway().set_default_payment_method(customer_id, method.stripe_payment_method_id)


def store_payment_method(user: User, payment_method_id: str, make_default: bool = False) -> PaymentMethod:
    gateway = get_gateway()
    try:
        customer_id = get_or_create_stripe_customer(user)
        pm = gateway.retrieve_payment_method(payment_method_id)
        owner = pm.get("customer")
        if owner and owner != customer_id:
            raise PaymentRejected("Payment method belongs to another customer")
        if not owner:
            pm = gateway.attach_payment_method(payment_method_id, customer_id)

        card = pm.get("card") or {}
        record = PaymentMethod.query.filter_by(user_id=user.id, stripe_payment_method_id=payment_method_id).first()
        if record is None:
            record = PaymentMethod(user_id=user.id, stripe_payment_method_id=payment_method_id, is_default=False)
            db.session.add(record)
        record.type = pm.get("type")
        record.brand = card.get("brand")
        record.last_four = card.get("last4")
        record.exp_month = card.get("exp_month")
        record.exp_year = card.get("exp_year")
        db.session.commit()

        has_default = PaymentMethod.query.filter_by(user_id=user.id, is_default=True).first() is not None
        if make_default or not has_default:
            _make_default(user, record, customer_id)
    except GatewayError as e:
        db.session.rollback()
        raise GatewayUnavailable(str(e)) from e
    return record


def set_default_payment_method(user: User, method: PaymentMethod) -> PaymentMethod:
    try:
        _make_default(user, method, get_or_create_stripe_customer(user))
    except GatewayError as e:
        raise GatewayUnavailable(str(e)) from e
    return method


def remove_payment_method(user: User, method: PaymentMethod):
    try:
        get_gateway().detach_payment_method(method.stripe_payment_method_id)
        was_default = method.is_default
        db.session.delete(method)
        db.session.commit()

        if was_default:
            fallback = (PaymentMethod.query.filter_by(user_id=user.id)
                        .order_by(PaymentMethod.created_at.desc(), PaymentMethod.id.desc())
                        .first())
            if fallback:
                _make_default(user, fallback, get_or_create_stripe_customer(user))
    except GatewayError as e:
        db.session.rollback()
        raise GatewayUnavailable(str(e)) from e


# -----------------
# Connect (farm payouts)
# -----------------

def connect_onboarding(farm: Farm, farmer: User) -> dict:
    gateway = get_gateway()
    try:
        if not farm.stripe_account_id:
            farm.stripe_account_id = gateway.create_connect_account(
                email=farmer.email,
                metadata={"farm_id": str(farm.id), "farmer_id": str(farmer.id)},
            )
            db.session.commit()
        app_url = current_app.config.get("FRONTEND_URL", "http://localhost:3000")
        url = gateway.create_account_link(
            farm.stripe_account_id,
            refresh_url=f"{app_url}/dashboard",
            return_url=f"{app_url}/dashboard",
        )
    except GatewayError as e:
        raise GatewayUnavailable(str(e)) from e
    return {"url": url, "account_id": farm.stripe_account_id}


def connect_status(farm: Farm) -> dict:
    if not farm.stripe_account_id:
        return {"connected": False}
    try:
        account = get_gateway().retrieve_account(farm.stripe_account_id)
    except GatewayError as e:
        raise GatewayUnavailable(str(e)) from e
    return {"connected": True, "account_id": farm.stripe_account_id, **account}

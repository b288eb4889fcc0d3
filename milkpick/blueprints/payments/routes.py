# milkpick/blueprints/payments/routes.py
from flask import abort, jsonify
from flask_login import current_user, login_required

from ...extensions import db
from ...models import Farm, Order, PaymentMethod, Transaction
from ...security import roles_required
from ...services.errors import ServiceError
from ...services.payment_service import (
    connect_onboarding, connect_status, create_setup_intent, pay_now, refund_order,
    remove_payment_method, set_default_payment_method, store_payment_method,
)
from ..utils import json_body, order_to_dict, payment_method_to_dict, transaction_to_dict
from . import payments_bp


@payments_bp.before_request
@login_required
def _guard():
    pass


# -----------------
# Helpers
# -----------------

def _my_farm() -> Farm:
    farm = Farm.query.filter_by(farmer_id=current_user.id).first()
    if farm is None:
        abort(404, description="Farm not found. Please create a farm first.")
    return farm


def _my_method(method_id: int) -> PaymentMethod:
    method = db.get_or_404(PaymentMethod, method_id, description="Payment method not found")
    if method.user_id != current_user.id:
        abort(404, description="Payment method not found")
    return method


# -----------------
# Saved cards (customers)
# -----------------

@payments_bp.route("/setup-intent", methods=["POST"])
@roles_required("customer")
def setup_intent():
    return jsonify(create_setup_intent(current_user))


@payments_bp.route("/methods", methods=["GET"])
@roles_required("customer")
def list_methods():
    methods = (PaymentMethod.query
               .filter_by(user_id=current_user.id)
               .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
               .all())
    return jsonify({"methods": [payment_method_to_dict(m) for m in methods]})


@payments_bp.route("/methods", methods=["POST"])
@roles_required("customer")
def store_method():
    data = json_body()
    pm_id = (data.get("payment_method_id") or "").strip()
    if not pm_id:
        raise ServiceError("payment_method_id is required")
    method = store_payment_method(current_user, pm_id, make_default=bool(data.get("make_default")))
    return jsonify({"message": "Payment method saved", "method": payment_method_to_dict(method)}), 201


@payments_bp.route("/methods/<int:method_id>/default", methods=["POST"])
@roles_required("customer")
def make_default(method_id):
    method = set_default_payment_method(current_user, _my_method(method_id))
    return jsonify({"message": "Default payment method updated", "method": payment_method_to_dict(method)})


@payments_bp.route("/methods/<int:method_id>", methods=["DELETE"])
@roles_required("customer")
def remove_method(method_id):
    remove_payment_method(current_user, _my_method(method_id))
    return jsonify({"message": "Payment method removed"})


# -----------------
# Orders
# -----------------

@payments_bp.route("/orders/<int:order_id>/pay", methods=["POST"])
@roles_required("customer")
def pay(order_id):
    order = db.get_or_404(Order, order_id, description="Order not found")
    if order.customer_id != current_user.id:
        abort(404, description="Order not found")
    result = pay_now(order)
    db.session.refresh(order)
    return jsonify({"message": "Payment processed", **result.as_dict(), "order": order_to_dict(order)})


@payments_bp.route("/orders/<int:order_id>/refund", methods=["POST"])
@roles_required("farmer")
def refund(order_id):
    farm = _my_farm()
    order = db.get_or_404(Order, order_id, description="Order not found")
    if order.farm_id != farm.id:
        abort(404, description="Order not found")
    txn = refund_order(order)
    return jsonify({"message": "Refund issued", "transaction": transaction_to_dict(txn), "order": order_to_dict(order)})


@payments_bp.route("/history", methods=["GET"])
@roles_required("customer")
def history():
    rows = (Transaction.query
            .filter_by(customer_id=current_user.id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .all())
    return jsonify({"transactions": [transaction_to_dict(t) for t in rows]})


# -----------------
# Farm payouts (Stripe Connect)
# -----------------

@payments_bp.route("/farm/transactions", methods=["GET"])
@roles_required("farmer")
def farm_transactions():
    farm = _my_farm()
    rows = (Transaction.query
            .filter_by(farm_id=farm.id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .all())
    return jsonify({"transactions": [transaction_to_dict(t) for t in rows]})


@payments_bp.route("/connect/onboard", methods=["POST"])
@roles_required("farmer")
def connect_onboard():
    return jsonify(connect_onboarding(_my_farm(), current_user))


@payments_bp.route("/connect/status", methods=["GET"])
@roles_required("farmer")
def connect_account_status():
    return jsonify(connect_status(_my_farm()))

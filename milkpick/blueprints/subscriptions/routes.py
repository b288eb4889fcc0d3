# milkpick/blueprints/subscriptions/routes.py
from flask import abort, jsonify, request
from flask_login import current_user, login_required

from ...extensions import db
from ...models import Subscription
from ...security import roles_required
from ...services.subscription_service import (
    cancel_subscription, create_subscription, preview_schedule, update_subscription,
)
from ..utils import json_body, order_to_dict, subscription_to_dict
from . import subscriptions_bp


@subscriptions_bp.before_request
@login_required
@roles_required("customer")
def _guard():
    pass


def _owned_subscription(sub_id: int) -> Subscription:
    sub = db.get_or_404(Subscription, sub_id, description="Subscription not found")
    if sub.customer_id != current_user.id:
        abort(404, description="Subscription not found")
    return sub


@subscriptions_bp.route("", methods=["POST"])
def create():
    data = json_body()
    sub, first_order = create_subscription(
        current_user,
        product_id=data.get("product_id"),
        frequency=data.get("frequency"),
        quantity=data.get("quantity", 1),
        start_date=data.get("start_date"),
    )
    return jsonify({
        "message": "Subscription created successfully",
        "subscription": subscription_to_dict(sub),
        "first_order": order_to_dict(first_order) if first_order else None,
    }), 201


@subscriptions_bp.route("", methods=["GET"])
def list_mine():
    subs = (Subscription.query
            .filter_by(customer_id=current_user.id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .all())
    return jsonify({"subscriptions": [subscription_to_dict(s) for s in subs]})


@subscriptions_bp.route("/preview", methods=["GET"])
def preview():
    dates = preview_schedule(
        request.args.get("start_date"),
        request.args.get("frequency"),
        request.args.get("count"),
    )
    return jsonify({"dates": [d.isoformat() for d in dates]})


@subscriptions_bp.route("/<int:sub_id>", methods=["PUT"])
def update(sub_id):
    sub = update_subscription(_owned_subscription(sub_id), json_body())
    return jsonify({"message": "Subscription updated successfully", "subscription": subscription_to_dict(sub)})


@subscriptions_bp.route("/<int:sub_id>", methods=["DELETE"])
def cancel(sub_id):
    sub = _owned_subscription(sub_id)
    cancelled = cancel_subscription(sub)
    return jsonify({
        "message": "Subscription cancelled successfully",
        "subscription": subscription_to_dict(sub),
        "cancelled_orders": cancelled,
    })

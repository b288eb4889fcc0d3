# milkpick/blueprints/orders/routes.py
from flask import Response, abort, jsonify, request
from flask_login import current_user, login_required

from ...extensions import db
from ...models import Order
from ...security import roles_required
from ...services.cadence import parse_date, utc_today
from ...services.order_service import edit_order
from ...services.pickup_service import cancel_order, confirm_pickup, ensure_qr_code
from ...services.qr_service import render_data_url, render_svg
from ..utils import json_body, order_to_dict
from . import orders_bp


@orders_bp.before_request
@login_required
@roles_required("customer")
def _guard():
    pass


# -----------------
# Helpers
# -----------------

def _owned_order(order_id: int) -> Order:
    order = db.get_or_404(Order, order_id, description="Order not found")
    if order.customer_id != current_user.id:
        abort(404, description="Order not found")
    return order


# -----------------
# Listing
# -----------------

@orders_bp.route("", methods=["GET"])
def list_mine():
    q = Order.query.filter_by(customer_id=current_user.id)
    status = request.args.get("status")
    if status:
        q = q.filter(Order.status == status)
    start = parse_date(request.args.get("start_date"))
    if start:
        q = q.filter(Order.scheduled_date >= start)
    end = parse_date(request.args.get("end_date"))
    if end:
        q = q.filter(Order.scheduled_date <= end)
    orders = q.order_by(Order.scheduled_date.asc(), Order.id.asc()).all()
    return jsonify({"orders": [order_to_dict(o) for o in orders]})


@orders_bp.route("/upcoming", methods=["GET"])
def upcoming():
    orders = (Order.query
              .filter(Order.customer_id == current_user.id, Order.scheduled_date >= utc_today())
              .order_by(Order.scheduled_date.asc(), Order.id.asc())
              .all())
    return jsonify({"orders": [order_to_dict(o) for o in orders]})


# -----------------
# Changes
# -----------------

@orders_bp.route("/<int:order_id>", methods=["PUT"])
def update(order_id):
    order = edit_order(_owned_order(order_id), json_body())
    return jsonify({"message": "Order updated", "order": order_to_dict(order)})


@orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
def cancel(order_id):
    order = cancel_order(_owned_order(order_id).id)
    return jsonify({"message": "Order cancelled", "order": order_to_dict(order)})


# -----------------
# Pickup
# -----------------

@orders_bp.route("/<int:order_id>/confirm-pickup", methods=["POST"])
def confirm(order_id):
    order = confirm_pickup(_owned_order(order_id).id, "customer_self")
    return jsonify({"message": "Pickup confirmed", "order": order_to_dict(order)})


@orders_bp.route("/<int:order_id>/qr", methods=["GET"])
def qr(order_id):
    token = ensure_qr_code(_owned_order(order_id))
    if request.args.get("format") == "svg":
        return Response(render_svg(token), mimetype="image/svg+xml")
    return jsonify({"qr_code": token, "image": render_data_url(token)})

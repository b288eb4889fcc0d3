# milkpick/blueprints/farm/routes.py
from flask import abort, jsonify, request
from flask_login import current_user, login_required

from ...extensions import db
from ...models import Farm, Order
from ...security import roles_required
from ...services.cadence import parse_date
from ...services.pickup_service import accept_order, confirm_pickup, find_order_by_qr, mark_no_show
from ..utils import json_body, order_to_dict
from . import farm_bp


@farm_bp.before_request
@login_required
@roles_required("farmer")
def _guard():
    pass


def _my_farm() -> Farm:
    farm = Farm.query.filter_by(farmer_id=current_user.id).first()
    if farm is None:
        abort(404, description="Farm not found. Please create a farm first.")
    return farm


def _farm_order(order_id: int) -> Order:
    farm = _my_farm()
    order = db.get_or_404(Order, order_id, description="Order not found")
    if order.farm_id != farm.id:
        abort(404, description="Order not found")
    return order


@farm_bp.route("/orders", methods=["GET"])
def orders():
    farm = _my_farm()
    q = Order.query.filter_by(farm_id=farm.id)
    status = request.args.get("status")
    if status:
        q = q.filter(Order.status == status)
    day = parse_date(request.args.get("date"))
    if day:
        q = q.filter(Order.scheduled_date == day)
    rows = q.order_by(Order.scheduled_date.asc(), Order.id.asc()).all()
    return jsonify({"orders": [order_to_dict(o, with_customer=True) for o in rows]})


@farm_bp.route("/orders/<int:order_id>/accept", methods=["POST"])
def accept(order_id):
    order = accept_order(_farm_order(order_id).id)
    return jsonify({"message": "Order accepted", "order": order_to_dict(order, with_customer=True)})


@farm_bp.route("/orders/<int:order_id>/confirm-pickup", methods=["POST"])
def confirm(order_id):
    order = confirm_pickup(_farm_order(order_id).id, "farmer_manual")
    return jsonify({"message": "Pickup confirmed", "order": order_to_dict(order, with_customer=True)})


@farm_bp.route("/orders/<int:order_id>/no-show", methods=["POST"])
def no_show(order_id):
    order = mark_no_show(_farm_order(order_id).id)
    return jsonify({"message": "Order marked as no-show", "order": order_to_dict(order, with_customer=True)})


@farm_bp.route("/orders/scan", methods=["POST"])
def scan():
    farm = _my_farm()
    order = find_order_by_qr(json_body().get("qr_code"))
    if order.farm_id != farm.id:
        abort(403, description="This order belongs to another farm")
    order = confirm_pickup(order.id, "qr_code")
    return jsonify({"message": "Pickup confirmed", "order": order_to_dict(order, with_customer=True)})

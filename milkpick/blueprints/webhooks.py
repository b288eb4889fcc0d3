# milkpick/blueprints/webhooks.py
import logging

from flask import Blueprint, request, jsonify

from ..services.payment_service import apply_gateway_event
from ..services.stripe_gateway import GatewayError, get_gateway

log = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    payload = request.get_data()
    try:
        event = get_gateway().construct_event(payload, request.headers.get("Stripe-Signature"))
    except GatewayError as e:
        log.warning("Stripe webhook rejected: %s", e)
        return jsonify({"error": str(e)}), 400

    outcome = apply_gateway_event(event)
    log.info("Stripe event %s (%s): %s", event.get("id"), event.get("type"), outcome)
    return jsonify({"received": True, "outcome": outcome}), 200

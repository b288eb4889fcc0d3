# milkpick/services/stripe_gateway.py
from __future__ import annotations
import json
import logging
from typing import Optional

import stripe
from flask import current_app

log = logging.getLogger(__name__)

EXTENSION_KEY = "stripe_gateway"


class GatewayError(Exception):
    """A Stripe call failed. Carries the PaymentIntent id when Stripe created one."""

    def __init__(self, message: str, payment_intent_id: Optional[str] = None):
        super().__init__(message)
        self.payment_intent_id = payment_intent_id


def _intent_id_from_error(err: Exception) -> Optional[str]:
    detail = getattr(err, "error", None)
    intent = getattr(detail, "payment_intent", None) if detail is not None else None
    if not intent:
        return None
    try:
        return intent.get("id")
    except AttributeError:
        return getattr(intent, "id", None)


class StripeGateway:
    """Thin wrapper over the Stripe API; reads keys from the current app config."""

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.config.setdefault("STRIPE_SECRET_KEY", None)
        app.config.setdefault("STRIPE_WEBHOOK_SECRET", None)
        app.config.setdefault("STRIPE_CURRENCY", "usd")
        app.extensions[EXTENSION_KEY] = self

    @property
    def configured(self) -> bool:
        return bool(current_app.config.get("STRIPE_SECRET_KEY"))

    def _key(self) -> str:
        key = current_app.config.get("STRIPE_SECRET_KEY")
        if not key:
            raise GatewayError("Stripe secret key is not configured")
        return key

    # -----------------
    # Customers & payment methods
    # -----------------

    def create_customer(self, *, email: str, name: str | None = None, metadata: dict | None = None) -> str:
        try:
            customer = stripe.Customer.create(
                api_key=self._key(), email=email, name=name or None, metadata=metadata or {}
            )
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e
        return customer["id"]

    def create_setup_intent(self, customer_id: str) -> dict:
        try:
            intent = stripe.SetupIntent.create(
                api_key=self._key(),
                customer=customer_id,
                payment_method_types=["card"],
                usage="off_session",
            )
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e
        return {"client_secret": intent["client_secret"], "customer_id": customer_id}

    def retrieve_payment_method(self, payment_method_id: str) -> dict:
        try:
            return stripe.PaymentMethod.retrieve(payment_method_id, api_key=self._key())
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict:
        try:
            return stripe.PaymentMethod.attach(payment_method_id, customer=customer_id, api_key=self._key())
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e

    def detach_payment_method(self, payment_method_id: str) -> None:
        try:
            stripe.PaymentMethod.detach(payment_method_id, api_key=self._key())
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e

    def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        try:
            stripe.Customer.modify(
                customer_id,
                api_key=self._key(),
                invoice_settings={"default_payment_method": payment_method_id},
            )
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e

    # -----------------
    # Charges & refunds
    # -----------------

    def charge_off_session(self, *, customer_id: str, payment_method_id: str, amount: int,
                           destination: str | None = None, metadata: dict | None = None) -> dict:
        """Create and confirm an off-session PaymentIntent for `amount` minor units."""
        params = dict(
            amount=amount,
            currency=current_app.config.get("STRIPE_CURRENCY") or "usd",
            customer=customer_id,
            payment_method=payment_method_id,
            confirm=True,
            off_session=True,
            metadata=metadata or {},
        )
        if destination:
            params["transfer_data"] = {"destination": destination}
        try:
            intent = stripe.PaymentIntent.create(api_key=self._key(), **params)
        except stripe.StripeError as e:
            log.warning("Stripe charge failed customer=%s amount=%s: %s", customer_id, amount, e)
            raise GatewayError(str(e), payment_intent_id=_intent_id_from_error(e)) from e
        log.info("Stripe charge ok intent=%s amount=%s", intent["id"], amount)
        return {"id": intent["id"], "latest_charge": intent.get("latest_charge")}

    def refund(self, payment_intent_id: str) -> str:
        try:
            refund = stripe.Refund.create(api_key=self._key(), payment_intent=payment_intent_id)
        except stripe.StripeError as e:
            raise GatewayError(str(e), payment_intent_id=payment_intent_id) from e
        return refund["id"]

    # -----------------
    # Webhooks
    # -----------------

    def construct_event(self, payload: bytes, sig_header: str | None) -> dict:
        secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
        if not secret:
            raise GatewayError("Webhook secret not configured")
        try:
            stripe.Webhook.construct_event(payload, sig_header, secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise GatewayError(f"Invalid webhook signature: {e}") from e
        # signature verified; hand plain dicts downstream
        return json.loads(payload)

    # -----------------
    # Connect (farm payout accounts)
    # -----------------

    def create_connect_account(self, *, email: str, metadata: dict | None = None) -> str:
        try:
            account = stripe.Account.create(
                api_key=self._key(), type="express", country="US", email=email, metadata=metadata or {}
            )
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e
        return account["id"]

    def create_account_link(self, account_id: str, *, refresh_url: str, return_url: str) -> str:
        try:
            link = stripe.AccountLink.create(
                api_key=self._key(),
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e
        return link["url"]

    def retrieve_account(self, account_id: str) -> dict:
        try:
            account = stripe.Account.retrieve(account_id, api_key=self._key())
        except stripe.StripeError as e:
            raise GatewayError(str(e)) from e
        return {
            "charges_enabled": account.get("charges_enabled"),
            "payouts_enabled": account.get("payouts_enabled"),
            "details_submitted": account.get("details_submitted"),
        }


def get_gateway() -> StripeGateway:
    return current_app.extensions[EXTENSION_KEY]

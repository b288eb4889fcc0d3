import json

import pytest
from sqlalchemy.pool import StaticPool

from milkpick import create_app
from milkpick.config import Config
from milkpick.extensions import db
from milkpick.services import sms_service, stripe_gateway
from milkpick.services.stripe_gateway import GatewayError


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }
    MAIL_SERVER = "localhost"
    MAIL_DEFAULT_SENDER = "noreply@milkpick.test"
    MAIL_SUPPRESS_SEND = True
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_fake"
    TWILIO_ACCOUNT_SID = "ACfake"
    TWILIO_AUTH_TOKEN = "token"
    TWILIO_PHONE_NUMBER = "+15550000000"
    ENABLE_PAYMENTS = True
    ENABLE_NOTIFICATIONS = True
    PICKUP_GRACE_PERIOD_HOURS = "24"
    CATCH_UP_LIMIT = 10
    LOG_LEVEL = "WARNING"
    SENTRY_DSN = ""


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self.configured = True
        self.customers = []
        self.charges = []
        self.refunds = []
        self.detached = []
        self.defaults = {}
        self.payment_methods = {}
        self.fail_charge = None
        self.fail_intent_id = None

    def create_customer(self, *, email, name=None, metadata=None):
        self.customers.append(email)
        return f"cus_{len(self.customers)}"

    def create_setup_intent(self, customer_id):
        return {"client_secret": "seti_secret", "customer_id": customer_id}

    def retrieve_payment_method(self, payment_method_id):
        pm = self.payment_methods.get(payment_method_id) or {
            "id": payment_method_id,
            "type": "card",
            "customer": None,
            "card": {"brand": "visa", "last4": "4242", "exp_month": 12, "exp_year": 2030},
        }
        return dict(pm)

    def attach_payment_method(self, payment_method_id, customer_id):
        pm = self.retrieve_payment_method(payment_method_id)
        pm["customer"] = customer_id
        self.payment_methods[payment_method_id] = pm
        return pm

    def detach_payment_method(self, payment_method_id):
        self.detached.append(payment_method_id)

    def set_default_payment_method(self, customer_id, payment_method_id):
        self.defaults[customer_id] = payment_method_id

    def charge_off_session(self, **params):
        self.charges.append(params)
        if self.fail_charge:
            raise GatewayError(self.fail_charge, payment_intent_id=self.fail_intent_id)
        n = len(self.charges)
        return {"id": f"pi_{n}", "latest_charge": f"ch_{n}"}

    def refund(self, payment_intent_id):
        self.refunds.append(payment_intent_id)
        return f"re_{len(self.refunds)}"

    def construct_event(self, payload, sig_header):
        if sig_header != "good-signature":
            raise GatewayError("Invalid webhook signature")
        return json.loads(payload)

    def create_connect_account(self, *, email, metadata=None):
        return "acct_test"

    def create_account_link(self, account_id, *, refresh_url, return_url):
        return f"https://connect.stripe.test/{account_id}"

    def retrieve_account(self, account_id):
        return {"charges_enabled": True, "payouts_enabled": False, "details_submitted": True}


class FakeSms:
    def __init__(self):
        self.configured = True
        self.sent = []
        self.fail = None

    def send(self, to, body):
        if self.fail:
            raise RuntimeError(self.fail)
        self.sent.append((to, body))
        return f"SM{len(self.sent)}"


@pytest.fixture
def app(tmp_path):
    config = type("LocalTestConfig", (TestConfig,), {"LOG_DIR": str(tmp_path / "logs")})
    app = create_app(config)
    app.extensions[stripe_gateway.EXTENSION_KEY] = FakeGateway()
    app.extensions[sms_service.EXTENSION_KEY] = FakeSms()
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Service-level tests run inside one app context."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions[stripe_gateway.EXTENSION_KEY]


@pytest.fixture
def sms(app):
    return app.extensions[sms_service.EXTENSION_KEY]

# milkpick/services/sms_service.py
from __future__ import annotations
import logging
import requests
from flask import current_app

log = logging.getLogger(__name__)

EXTENSION_KEY = "twilio_sms"
TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsNotConfigured(Exception):
    pass


class TwilioSms:
    """Send SMS through Twilio's REST API. Raises on provider errors; callers log them."""

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.config.setdefault("TWILIO_ACCOUNT_SID", None)
        app.config.setdefault("TWILIO_AUTH_TOKEN", None)
        app.config.setdefault("TWILIO_PHONE_NUMBER", None)
        app.extensions[EXTENSION_KEY] = self

    @property
    def configured(self) -> bool:
        cfg = current_app.config
        return bool(cfg.get("TWILIO_ACCOUNT_SID") and cfg.get("TWILIO_AUTH_TOKEN") and cfg.get("TWILIO_PHONE_NUMBER"))

    def send(self, to: str, body: str) -> str:
        if not self.configured:
            raise SmsNotConfigured("Twilio credentials not configured")
        cfg = current_app.config
        sid = cfg["TWILIO_ACCOUNT_SID"]
        r = requests.post(
            f"{TWILIO_API_BASE}/Accounts/{sid}/Messages.json",
            data={"To": to, "From": cfg["TWILIO_PHONE_NUMBER"], "Body": body},
            auth=(sid, cfg["TWILIO_AUTH_TOKEN"]),
            timeout=20,
        )
        if r.status_code >= 400:
            log.error("Twilio error %s | body=%s | to=%s", r.status_code, r.text, to)
        r.raise_for_status()
        data = r.json()
        log.info("SMS queued sid=%s to=%s", data.get("sid"), to)
        return data.get("sid")


def get_sms() -> TwilioSms:
    return current_app.extensions[EXTENSION_KEY]

# milkpick/models/user.py
from datetime import datetime
import secrets
from flask_login import UserMixin
from ..extensions import db


def _api_token() -> str:
    return secrets.token_urlsafe(32)


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(50))

    # customer|farmer|admin
    role = db.Column(db.String(20), nullable=False, default="customer", index=True)

    # Bearer credential for the JSON API
    api_token = db.Column(db.String(64), unique=True, nullable=False, default=_api_token, index=True)

    stripe_customer_id = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    farm = db.relationship("Farm", backref="farmer", uselist=False)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @property
    def is_customer(self) -> bool:
        return self.role == "customer"

    @property
    def is_farmer(self) -> bool:
        return self.role == "farmer"

    def rotate_token(self):
        self.api_token = _api_token()

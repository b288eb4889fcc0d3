from datetime import datetime
from ..extensions import db


class Transaction(db.Model):
    __tablename__ = "payment_transaction"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("customer_order.id"), index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    farm_id = db.Column(db.Integer, db.ForeignKey("farm.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    # succeeded|failed|refunded
    status = db.Column(db.String(20), nullable=False)

    # upsert key for direct charges and webhook redeliveries
    stripe_payment_intent_id = db.Column(db.String(64), unique=True)
    stripe_charge_id = db.Column(db.String(64))
    refund_id = db.Column(db.String(64))
    error_message = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = db.relationship("Order", backref=db.backref("transactions", lazy="selectin"))


class PaymentMethod(db.Model):
    __tablename__ = "payment_method"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    stripe_payment_method_id = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(30))
    brand = db.Column(db.String(30))
    last_four = db.Column(db.String(4))
    exp_month = db.Column(db.Integer)
    exp_year = db.Column(db.Integer)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

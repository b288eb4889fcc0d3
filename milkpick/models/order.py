from datetime import datetime
from ..extensions import db

ORDER_STATUSES = ("pending", "confirmed", "picked_up", "late", "cancelled", "no_show")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
CONFIRMATION_METHODS = ("farmer_manual", "customer_self", "qr_code")


class Order(db.Model):
    __tablename__ = "customer_order"
    __table_args__ = (
        # one order per subscription occurrence
        db.UniqueConstraint("subscription_id", "scheduled_date", name="uq_order_subscription_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscription.id"), index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    farm_id = db.Column(db.Integer, db.ForeignKey("farm.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    scheduled_date = db.Column(db.Date, nullable=False, index=True)

    # pending|confirmed|picked_up|late|cancelled|no_show
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # pending|paid|failed|refunded
    payment_status = db.Column(db.String(20), nullable=False, default="pending")
    # Stripe PaymentIntent; unique so a charge maps to exactly one order
    payment_intent_id = db.Column(db.String(64), unique=True)

    pickup_confirmed_at = db.Column(db.DateTime)
    # farmer_manual|customer_self|qr_code
    confirmation_method = db.Column(db.String(20))
    qr_code = db.Column(db.String(64), unique=True)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subscription = db.relationship("Subscription", backref=db.backref("orders", lazy="dynamic"))
    customer = db.relationship("User", foreign_keys=[customer_id])
    farm = db.relationship("Farm")
    product = db.relationship("Product")

    # outcomes of the best-effort work done when the order was created; not persisted
    side_effects = None

    def __repr__(self):
        return f"<Order {self.id} {self.scheduled_date} {self.status}>"

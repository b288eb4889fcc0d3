from datetime import datetime
from ..extensions import db

FREQUENCIES = ("weekly", "biweekly", "monthly")


class Subscription(db.Model):
    __tablename__ = "subscription"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    farm_id = db.Column(db.Integer, db.ForeignKey("farm.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)

    # weekly|biweekly|monthly
    frequency = db.Column(db.String(20), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    start_date = db.Column(db.Date, nullable=False)
    # Null until the first catch-up; only the materializer/scheduler advance it
    next_order_date = db.Column(db.Date, index=True)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = db.relationship("User", foreign_keys=[customer_id], backref=db.backref("subscriptions", lazy="dynamic"))
    farm = db.relationship("Farm")
    product = db.relationship("Product")

    def __repr__(self):
        return f"<Subscription {self.id} {self.frequency}>"

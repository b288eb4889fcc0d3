from datetime import datetime
from ..extensions import db


class Farm(db.Model):
    __tablename__ = "farm"

    id = db.Column(db.Integer, primary_key=True)
    farmer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, unique=True, index=True)
    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    city = db.Column(db.String(120))
    state = db.Column(db.String(60))

    # Connected payout destination (Stripe Connect account)
    stripe_account_id = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    products = db.relationship("Product", backref="farm", lazy="selectin")


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    farm_id = db.Column(db.Integer, db.ForeignKey("farm.id"), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False)
    unit = db.Column(db.String(40))              # gallon|quart|dozen...
    price = db.Column(db.Numeric(10, 2), nullable=False)
    available = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

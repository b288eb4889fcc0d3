from datetime import datetime
from ..extensions import db

NOTIFICATION_CATEGORIES = (
    "order_confirmation",
    "pickup_reminder",
    "late_pickup",
    "schedule_change",
    "payment_confirmation",
    "weekly_summary",
)


class NotificationPreference(db.Model):
    __tablename__ = "notification_preference"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False, index=True)

    email_enabled = db.Column(db.Boolean, nullable=False, default=True)
    sms_enabled = db.Column(db.Boolean, nullable=False, default=True)

    # One switch per category (see NOTIFICATION_CATEGORIES)
    order_confirmation = db.Column(db.Boolean, nullable=False, default=True)
    pickup_reminder = db.Column(db.Boolean, nullable=False, default=True)
    late_pickup = db.Column(db.Boolean, nullable=False, default=True)
    schedule_change = db.Column(db.Boolean, nullable=False, default=True)
    payment_confirmation = db.Column(db.Boolean, nullable=False, default=True)
    weekly_summary = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def allows(self, channel: str, category: str | None) -> bool:
        if channel == "sms" and not self.sms_enabled:
            return False
        if channel == "email" and not self.email_enabled:
            return False
        if category and getattr(self, category, True) is False:
            return False
        return True


class Notification(db.Model):
    """Delivery log: one row per email/SMS attempt."""
    __tablename__ = "notification"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    type = db.Column(db.String(10), nullable=False)          # email|sms
    category = db.Column(db.String(40))
    recipient = db.Column(db.String(255))
    subject = db.Column(db.String(255))
    message = db.Column(db.Text)
    status = db.Column(db.String(10), nullable=False)        # sent|failed
    error_message = db.Column(db.Text)
    sent_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

from flask import jsonify, request
from flask_login import current_user, login_required

from ...extensions import db
from ...models import Notification
from ...models.notification import NOTIFICATION_CATEGORIES
from ...services.errors import ServiceError
from ...services.notification_service import get_preferences
from ..utils import json_body, notification_to_dict, preferences_to_dict
from . import notifications_bp

PREFERENCE_FIELDS = ("email_enabled", "sms_enabled") + NOTIFICATION_CATEGORIES


@notifications_bp.before_request
@login_required
def _guard():
    pass


@notifications_bp.route("", methods=["GET"])
def list_mine():
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        limit = 50
    limit = min(max(limit, 1), 200)
    rows = (Notification.query
            .filter_by(user_id=current_user.id)
            .order_by(Notification.sent_at.desc(), Notification.id.desc())
            .limit(limit)
            .all())
    return jsonify({"notifications": [notification_to_dict(n) for n in rows]})


@notifications_bp.route("/preferences", methods=["GET"])
def preferences():
    prefs = get_preferences(current_user.id)
    if prefs is None:
        raise ServiceError("Preferences not available")
    return jsonify({"preferences": preferences_to_dict(prefs)})


@notifications_bp.route("/preferences", methods=["PUT"])
def update_preferences():
    data = json_body()
    changes = {k: bool(data[k]) for k in PREFERENCE_FIELDS if k in data}
    if not changes:
        raise ServiceError("No preferences provided")
    prefs = get_preferences(current_user.id)
    if prefs is None:
        raise ServiceError("Preferences not available")
    for key, value in changes.items():
        setattr(prefs, key, value)
    db.session.commit()
    return jsonify({"message": "Preferences updated", "preferences": preferences_to_dict(prefs)})

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from ...extensions import db
from ...services.errors import ServiceError
from . import errors_bp


# Rejected single-item operations (typed, carry their own status)
@errors_bp.app_errorhandler(ServiceError)
def err_service(e: ServiceError):
    body = {"error": e.message}
    reason = getattr(e, "reason", None)
    if reason:
        body["reason"] = reason
    return jsonify(body), e.status_code


# 401/403/404/405/... as JSON
@errors_bp.app_errorhandler(HTTPException)
def err_http(e: HTTPException):
    return jsonify({"error": e.description or e.name}), e.code


# Last-resort: any other Exception
@errors_bp.app_errorhandler(Exception)
def err_unexpected(e):
    # if a DB action caused this, rollback so the session isn't stuck in a bad transaction
    db.session.rollback()
    current_app.logger.exception("Unhandled error: %s", e)
    return jsonify({"error": "Server error"}), 500

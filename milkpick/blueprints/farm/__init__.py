from flask import Blueprint

farm_bp = Blueprint("farm", __name__)

from . import routes  # noqa: E402,F401

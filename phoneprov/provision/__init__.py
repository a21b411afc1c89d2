from flask import Blueprint

provision_bp = Blueprint("provision", __name__)

from . import routes  # noqa: E402,F401

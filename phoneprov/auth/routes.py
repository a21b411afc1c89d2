import logging

from flask import jsonify
from flask_login import current_user, login_required, login_user, logout_user

from . import auth_bp
from .forms import LoginForm
from ..forms import CSRFOnlyForm
from ..models import User

logger = logging.getLogger(__name__)


@auth_bp.post("/login")
def login():
    if current_user.is_authenticated:
        return jsonify({"id": current_user.id, "name": current_user.name})

    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid form", "errors": form.errors}), 400

    user = User.query.filter_by(email=form.email.data.lower().strip()).first()
    if not user or not user.check_password(form.password.data):
        logger.info("Failed login for %s", form.email.data)
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "Account is disabled. Contact admin."}), 403

    login_user(user)
    return jsonify({"id": user.id, "name": user.name, "role": user.role})


@auth_bp.post("/logout")
@login_required
def logout():
    form = CSRFOnlyForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid or missing CSRF token"}), 400
    logout_user()
    return jsonify({"logged_out": True})

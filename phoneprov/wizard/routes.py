import logging

from flask import jsonify, redirect, request, url_for
from flask_login import current_user, login_required
from flask_wtf.csrf import generate_csrf

from . import wizard_bp
from .forms import collect_variable_inputs
from .service import WizardService, WizardStep, clamp_step
from .session import FlaskSessionStore
from ..auth.permissions import permission_required
from ..errors import NotFoundError, PersistenceError, ValidationError
from ..forms import CSRFOnlyForm
from ..models import Permission

logger = logging.getLogger(__name__)

ACTION_STEPS = {
    "select_type": WizardStep.SELECT_TYPE,
    "select_template": WizardStep.SELECT_TEMPLATE,
    "set_variables": WizardStep.SET_VARIABLES,
    "select_customer": WizardStep.PREVIEW,
}


def _form_int(name: str):
    try:
        return int(request.form.get(name, ""))
    except ValueError:
        return None


def _step_url(step: int, device_id=None):
    return url_for("wizard.configure", step=step, device_id=device_id)


def _payload(svc: WizardService, step: int, **extra):
    ws = svc.current()
    data = svc.state(ws, svc.available_step(ws, step))
    data["csrf_token"] = generate_csrf()
    data.update(extra)
    return data


def _run_action(svc: WizardService, action: str):
    if action == "select_type":
        return svc.select_type(_form_int("device_type_id"))
    if action == "select_template":
        return svc.select_template(_form_int("template_id"))
    if action == "set_variables":
        return svc.set_variables(collect_variable_inputs(request.form))
    return svc.commit(_form_int("customer_id"), _form_int("target_id"))


@wizard_bp.route("/wizard", methods=["GET", "POST"])
@login_required
@permission_required(Permission.DEVICES_MANAGE)
def configure():
    svc = WizardService(FlaskSessionStore(), current_user.id)
    step = clamp_step(request.args.get("step", WizardStep.FIRST))
    device_id = request.args.get("device_id", type=int)

    if request.args.get("reset") == "1":
        svc.reset()
        return redirect(_step_url(WizardStep.FIRST, device_id))

    if device_id is not None:
        try:
            svc.bind_device(device_id)
        except NotFoundError as e:
            return jsonify({"error": str(e)}), 404

    if request.method == "GET":
        return jsonify(_payload(svc, step))

    form = CSRFOnlyForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid or missing CSRF token"}), 400

    action = request.form.get("action", "")
    if ACTION_STEPS.get(action) != step:
        return jsonify({"error": f"Action {action!r} is not allowed on step {step}"}), 400

    try:
        ws = _run_action(svc, action)
    except ValidationError as e:
        return jsonify(_payload(svc, step, error=str(e), errors=e.errors)), 400
    except NotFoundError as e:
        return jsonify(_payload(svc, step, error=str(e))), 404
    except PersistenceError:
        logger.error("Wizard %s failed for user %s", action, current_user.id)
        return jsonify(_payload(
            svc, step, error="Could not save the configuration. Please try again."
        )), 500

    return redirect(_step_url(step + 1, ws.device_id))

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..audit import record_audit
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import ConfigTarget, Customer, Device, DeviceType, Template, VariableDefinition
from ..templating import VariableKind, generate_config, validate_all
from ..versions import create_version, get_or_create_default_target
from .forms import describe_fields
from .session import SessionStore, WizardSession

logger = logging.getLogger(__name__)


class WizardStep:
    SELECT_TYPE = 1
    SELECT_TEMPLATE = 2
    SET_VARIABLES = 3
    PREVIEW = 4
    COMPLETE = 5

    FIRST = SELECT_TYPE
    LAST = COMPLETE


def clamp_step(value: Any) -> int:
    try:
        step = int(value)
    except (TypeError, ValueError):
        return WizardStep.FIRST
    return max(WizardStep.FIRST, min(WizardStep.LAST, step))


def _unknown_kinds(definitions) -> List[str]:
    unknown = []
    for definition in definitions:
        try:
            VariableKind.of(definition)
        except ValueError:
            unknown.append(f"{definition.name} ({definition.var_type})")
    return unknown


class WizardService:
    """
    Five-stage device configuration wizard. All state lives in a
    `WizardSession` read from and written back to the injected store.
    """

    def __init__(self, store: SessionStore, actor_id: Optional[int] = None):
        self.store = store
        self.actor_id = actor_id

    def current(self) -> WizardSession:
        return self.store.get() or WizardSession()

    def save(self, ws: WizardSession) -> WizardSession:
        self.store.set(ws)
        return ws

    @staticmethod
    def _forget_commit(ws: WizardSession) -> None:
        """Earlier answers changed, so the committed version no longer reflects them."""
        ws.config_content = ""
        ws.config_version_id = None
        ws.customer_id = None

    def reset(self) -> WizardSession:
        self.store.clear()
        return self.save(WizardSession())

    def bind_device(self, device_id: int) -> WizardSession:
        """Attach the wizard to a device; a different device starts from scratch."""
        ws = self.current()
        if ws.device_id == device_id:
            return ws
        device = db.session.get(Device, device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        if ws.device_id is not None:
            logger.info("Wizard device changed from %s to %s, resetting session", ws.device_id, device_id)
        ws = WizardSession(device_id=device.id, device_type_id=device.device_type_id)
        return self.save(ws)

    def select_type(self, device_type_id: int) -> WizardSession:
        ws = self.current()
        if not device_type_id:
            raise ValidationError("Select a device type", {"device_type_id": "Select a device type"})
        if db.session.get(DeviceType, device_type_id) is None:
            raise NotFoundError(f"Device type {device_type_id} not found")
        if ws.device_id is not None and ws.device_type_id != device_type_id:
            raise ValidationError(
                "The selected device fixes the device type",
                {"device_type_id": "Confirm the device's own type"},
            )
        if ws.device_type_id != device_type_id:
            ws.template_id = None
            ws.variables = {}
            self._forget_commit(ws)
        ws.device_type_id = device_type_id
        return self.save(ws)

    def select_template(self, template_id: int) -> WizardSession:
        ws = self.current()
        if ws.device_type_id is None:
            raise ValidationError("Select a device type first")
        if not template_id:
            raise ValidationError("Select a template", {"template_id": "Select a template"})
        template = Template.query.filter_by(
            id=template_id, device_type_id=ws.device_type_id, is_active=True
        ).first()
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        unknown = _unknown_kinds(VariableDefinition.for_template(template.id))
        if unknown:
            logger.warning("Template %s has variables of unknown type: %s", template.id, unknown)
            raise ValidationError(
                "This template has variables of an unknown type and cannot be used",
                {"template_id": "Unknown variable types: " + ", ".join(unknown)},
            )
        if ws.template_id != template.id:
            ws.variables = {}
            self._forget_commit(ws)
        ws.template_id = template.id
        return self.save(ws)

    def set_variables(self, raw_values: Mapping[str, str]) -> WizardSession:
        """
        Store the submitted values as given, then validate them. The values
        stay in the session either way so the form can be re-shown.
        """
        ws = self.current()
        if ws.template_id is None:
            raise ValidationError("Select a template first")
        ws.variables = dict(raw_values)
        self._forget_commit(ws)
        self.save(ws)

        errors = validate_all(ws.variables, VariableDefinition.for_template(ws.template_id))
        if errors:
            raise ValidationError("Some values are invalid", errors)
        return ws

    def preview(self) -> Dict[str, Any]:
        ws = self.current()
        if ws.template_id is None:
            return {"success": False, "content": None, "error": "Select a template first"}
        result = generate_config(ws.template_id, ws.variables)
        return {"success": result.success, "content": result.content, "error": result.error}

    def commit(self, customer_id: Optional[int], target_id: Optional[int] = None) -> WizardSession:
        """
        Render the final configuration and store it as a new version,
        bound to the wizard's device if there is one. The session is only
        advanced once the version is committed.
        """
        ws = self.current()
        if not customer_id:
            raise ValidationError("Select a customer", {"customer_id": "Select a customer"})
        customer = Customer.query.filter_by(id=customer_id, is_active=True).first()
        if customer is None:
            raise ValidationError("Select a customer", {"customer_id": "Unknown customer"})
        if ws.template_id is None or ws.device_type_id is None:
            raise ValidationError("The wizard is not ready to save yet")

        result = generate_config(ws.template_id, ws.variables)
        if not result.success:
            raise ValidationError(result.error, {name: "No value available" for name in result.missing})

        if target_id:
            target = ConfigTarget.query.filter_by(id=target_id, is_active=True).first()
            if target is None:
                raise ValidationError("Select a target", {"target_id": "Unknown target"})
        else:
            target = get_or_create_default_target(self.actor_id)

        template = db.session.get(Template, ws.template_id)
        device_id = ws.device_id

        def bind_customer(version):
            if device_id is not None:
                db.session.get(Device, device_id).customer_id = customer.id

        version = create_version(
            target.id,
            ws.device_type_id,
            result.content,
            f"Generated from wizard: {template.name}",
            self.actor_id,
            device_id=device_id,
            within_transaction=bind_customer,
        )

        ws.config_version_id = version.id
        ws.config_content = result.content
        ws.customer_id = customer.id
        self.save(ws)

        record_audit(
            self.actor_id, "config.generated", "config_version", version.id,
            new_value={
                "device_id": device_id,
                "customer_id": customer.id,
                "template_id": ws.template_id,
                "version_number": version.version_number,
            },
        )
        return ws

    def available_step(self, ws: WizardSession, requested: int) -> int:
        """Highest step up to `requested` that the collected data allows."""
        step = clamp_step(requested)
        if step >= WizardStep.SELECT_TEMPLATE and ws.device_type_id is None:
            return WizardStep.SELECT_TYPE
        if step >= WizardStep.SET_VARIABLES and ws.template_id is None:
            return WizardStep.SELECT_TEMPLATE
        if step == WizardStep.COMPLETE and ws.config_version_id is None:
            step = WizardStep.PREVIEW
        if step == WizardStep.PREVIEW and validate_all(ws.variables, VariableDefinition.for_template(ws.template_id)):
            return WizardStep.SET_VARIABLES
        return step

    def state(self, ws: WizardSession, step: int) -> Dict[str, Any]:
        data: Dict[str, Any] = {"step": step, "session": ws.to_dict()}

        if step == WizardStep.SELECT_TYPE:
            types = DeviceType.query.order_by(DeviceType.name.asc()).all()
            data["device_types"] = [{"id": t.id, "name": t.name, "description": t.description} for t in types]
            data["confirm_only"] = ws.device_id is not None
        elif step == WizardStep.SELECT_TEMPLATE:
            templates = Template.for_device_type(ws.device_type_id)
            default = next((t.id for t in templates if t.is_default), None)
            data["templates"] = [
                {"id": t.id, "name": t.name, "category": t.category, "description": t.description}
                for t in templates
            ]
            data["selected_template_id"] = ws.template_id or default
        elif step == WizardStep.SET_VARIABLES:
            data["fields"] = describe_fields(VariableDefinition.for_template(ws.template_id), ws.variables)
        elif step == WizardStep.PREVIEW:
            data["preview"] = self.preview()
            customers = Customer.query.filter_by(is_active=True).order_by(Customer.code.asc()).all()
            data["customers"] = [{"id": c.id, "code": c.code, "company_name": c.company_name} for c in customers]
            targets = ConfigTarget.query.filter_by(is_active=True).order_by(ConfigTarget.name.asc()).all()
            data["targets"] = [{"id": t.id, "name": t.name, "kind": t.kind} for t in targets]
        elif step == WizardStep.COMPLETE:
            data["config_version_id"] = ws.config_version_id
            data["device_id"] = ws.device_id
        return data

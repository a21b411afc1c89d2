from urllib.parse import parse_qs, urlparse

import pytest
from werkzeug.datastructures import MultiDict

from phoneprov.errors import PersistenceError
from phoneprov.extensions import db
from phoneprov.models import (
    AuditLog, ConfigTarget, ConfigVersion, Device, DeviceConfigAssignment, DeviceType, VariableDefinition
)
from phoneprov.templating.fields import FIELD_FACTORIES, VariableKind
from phoneprov.templating.validator import validate
from phoneprov.wizard import service as wizard_service
from phoneprov.wizard.forms import build_variable_form, collect_variable_inputs, describe_fields
from phoneprov.wizard.service import WizardService, WizardStep, clamp_step
from phoneprov.wizard.session import WIZARD_SESSION_KEY, WizardSession

WIZARD = "/devices/wizard"
VALID_VARIABLES = {
    "action": "set_variables",
    "var_SIP_USER": "1001",
    "var_SIP_PASSWORD": "s3cr3t",
    "var_SIP_PORT": "5062",
    "var_CODECS[]": ["PCMU", "G722"],
}


class MemoryStore:
    def __init__(self):
        self.ws = None

    def get(self):
        return self.ws

    def set(self, ws):
        self.ws = ws

    def clear(self):
        self.ws = None


def location_step(resp):
    return int(parse_qs(urlparse(resp.headers["Location"]).query)["step"][0])


def wizard_data(client):
    with client.session_transaction() as sess:
        return sess.get(WIZARD_SESSION_KEY)


def walk_to_preview(client, phone, query=""):
    resp = client.post(f"{WIZARD}?step=1{query}", data={"action": "select_type", "device_type_id": phone.device_type.id})
    assert location_step(resp) == 2
    resp = client.post(f"{WIZARD}?step=2{query}", data={"action": "select_template", "template_id": phone.template.id})
    assert location_step(resp) == 3
    resp = client.post(f"{WIZARD}?step=3{query}", data=VALID_VARIABLES)
    assert location_step(resp) == 4


@pytest.fixture
def wizard_client(client, login, operator):
    login(operator)
    return client


def test_requires_login(client, phone):
    assert client.get(WIZARD).status_code == 401


def test_requires_devices_permission(client, login, viewer, phone):
    login(viewer)
    assert client.get(WIZARD).status_code == 403
    assert client.post(f"{WIZARD}?step=1", data={"action": "select_type"}).status_code == 403


def test_first_step_lists_device_types(wizard_client, phone):
    data = wizard_client.get(WIZARD).get_json()
    assert data["step"] == 1
    assert [t["name"] for t in data["device_types"]] == ["SIP-T46S"]
    assert data["confirm_only"] is False
    assert data["csrf_token"]


def test_full_flow_without_device(wizard_client, phone, operator):
    walk_to_preview(wizard_client, phone)

    preview = wizard_client.get(f"{WIZARD}?step=4").get_json()
    assert preview["step"] == 4
    assert preview["preview"]["success"]
    assert "account.1.password=s3cr3t\n" in preview["preview"]["content"]
    assert "account.1.codec=PCMU,G722\n" in preview["preview"]["content"]
    assert [c["code"] for c in preview["customers"]] == ["C001"]

    resp = wizard_client.post(f"{WIZARD}?step=4", data={"action": "select_customer", "customer_id": phone.customer.id})
    assert location_step(resp) == 5

    version = ConfigVersion.query.one()
    assert version.version_number == 1
    assert version.is_active
    assert version.changelog == "Generated from wizard: T46S basic"
    assert version.created_by_user_id == operator.id
    assert version.target.name == "Customer-Based"
    assert DeviceConfigAssignment.query.count() == 0

    done = wizard_client.get(f"{WIZARD}?step=5").get_json()
    assert done["step"] == 5
    assert done["config_version_id"] == version.id
    assert AuditLog.query.filter_by(action="config.generated", entity_id=version.id).count() == 1


def test_flow_with_device_binds_version_and_customer(wizard_client, phone):
    query = f"&device_id={phone.device.id}"
    first = wizard_client.get(f"{WIZARD}?step=1{query}").get_json()
    assert first["confirm_only"] is True
    assert first["session"]["device_type_id"] == phone.device_type.id

    walk_to_preview(wizard_client, phone, query)
    resp = wizard_client.post(
        f"{WIZARD}?step=4{query}",
        data={"action": "select_customer", "customer_id": phone.customer.id, "target_id": phone.target.id},
    )
    assert location_step(resp) == 5

    version = ConfigVersion.query.one()
    assert version.target_id == phone.target.id
    assignment = DeviceConfigAssignment.query.filter_by(device_id=phone.device.id).one()
    assert assignment.config_version_id == version.id
    assert db.session.get(Device, phone.device.id).customer_id == phone.customer.id


def test_editing_answers_after_commit_needs_a_new_commit(wizard_client, phone):
    walk_to_preview(wizard_client, phone)
    wizard_client.post(f"{WIZARD}?step=4", data={"action": "select_customer", "customer_id": phone.customer.id})
    assert wizard_client.get(f"{WIZARD}?step=5").get_json()["step"] == 5

    resp = wizard_client.post(f"{WIZARD}?step=3", data=dict(VALID_VARIABLES, var_SIP_USER="2002"))
    assert location_step(resp) == 4

    data = wizard_data(wizard_client)
    assert data["config_version_id"] is None
    assert data["customer_id"] is None
    assert data["config_content"] == ""
    assert wizard_client.get(f"{WIZARD}?step=5").get_json()["step"] == 4


def test_changing_template_after_commit_forgets_the_version(app, phone):
    svc = WizardService(MemoryStore())
    svc.select_type(phone.device_type.id)
    svc.select_template(phone.other_template.id)
    svc.set_variables({"SIP_USER": "2001"})
    assert svc.commit(phone.customer.id).config_version_id is not None

    ws = svc.select_template(phone.template.id)
    assert ws.config_version_id is None
    assert ws.customer_id is None
    assert svc.available_step(ws, WizardStep.COMPLETE) == WizardStep.SET_VARIABLES


def test_template_with_unknown_variable_type_is_refused(wizard_client, phone):
    db.session.add(VariableDefinition(template_id=phone.other_template.id, name="LED", var_type="colour"))
    db.session.commit()
    wizard_client.post(f"{WIZARD}?step=1", data={"action": "select_type", "device_type_id": phone.device_type.id})
    resp = wizard_client.post(f"{WIZARD}?step=2", data={"action": "select_template", "template_id": phone.other_template.id})
    assert resp.status_code == 400
    assert "colour" in resp.get_json()["errors"]["template_id"]
    assert wizard_data(wizard_client)["template_id"] is None


def test_unknown_variable_type_is_described_as_unusable(app):
    defs = [
        VariableDefinition(name="LED", var_type="colour"),
        VariableDefinition(name="NAME", var_type="text"),
    ]
    fields = describe_fields(defs, {})
    assert fields[0]["input"] is None
    assert "colour" in fields[0]["error"]
    assert fields[1]["input"] == "StringField"


def test_bound_device_fixes_the_type(wizard_client, phone):
    other = DeviceType(name="SIP-T54W")
    db.session.add(other)
    db.session.commit()
    resp = wizard_client.post(
        f"{WIZARD}?step=1&device_id={phone.device.id}",
        data={"action": "select_type", "device_type_id": other.id},
    )
    assert resp.status_code == 400
    assert "device_type_id" in resp.get_json()["errors"]


def test_second_template_step_preselects_default(wizard_client, phone):
    wizard_client.post(f"{WIZARD}?step=1", data={"action": "select_type", "device_type_id": phone.device_type.id})
    data = wizard_client.get(f"{WIZARD}?step=2").get_json()
    assert data["selected_template_id"] == phone.template.id
    assert [t["name"] for t in data["templates"]] == ["T46S basic", "T46S minimal"]


def test_invalid_variables_block_the_transition_but_are_kept(wizard_client, phone):
    walk_to_preview(wizard_client, phone)
    bad = dict(VALID_VARIABLES, var_SIP_PORT="100")
    resp = wizard_client.post(f"{WIZARD}?step=3", data=bad)
    assert resp.status_code == 400
    body = resp.get_json()
    assert set(body["errors"]) == {"SIP_PORT"}
    assert body["step"] == 3
    assert wizard_data(wizard_client)["variables"]["SIP_PORT"] == "100"
    # preview is not reachable with invalid values
    assert wizard_client.get(f"{WIZARD}?step=4").get_json()["step"] == 3


def test_variable_fields_are_described(wizard_client, phone):
    wizard_client.post(f"{WIZARD}?step=1", data={"action": "select_type", "device_type_id": phone.device_type.id})
    wizard_client.post(f"{WIZARD}?step=2", data={"action": "select_template", "template_id": phone.template.id})
    fields = wizard_client.get(f"{WIZARD}?step=3").get_json()["fields"]
    by_var = {f["variable"]: f for f in fields}
    assert [f["variable"] for f in fields] == ["SIP_USER", "SIP_PASSWORD", "SIP_PORT", "CODECS"]
    assert by_var["SIP_PASSWORD"]["input"] == "PasswordField"
    assert by_var["SIP_PORT"]["attrs"] == {"min": 1024, "max": 65535}
    assert by_var["SIP_PORT"]["value"] == "5060"
    assert by_var["CODECS"]["input"] == "SelectMultipleField"
    assert [c["value"] for c in by_var["CODECS"]["choices"]] == ["PCMU", "PCMA", "G722"]
    assert by_var["SIP_USER"]["name"] == "var_SIP_USER"


def test_commit_requires_customer(wizard_client, phone):
    walk_to_preview(wizard_client, phone)
    resp = wizard_client.post(f"{WIZARD}?step=4", data={"action": "select_customer"})
    assert resp.status_code == 400
    assert "customer_id" in resp.get_json()["errors"]
    assert ConfigVersion.query.count() == 0


def test_persistence_failure_keeps_state(wizard_client, phone, monkeypatch):
    walk_to_preview(wizard_client, phone)

    def failing(*args, **kwargs):
        raise PersistenceError("Could not save configuration version")

    monkeypatch.setattr(wizard_service, "create_version", failing)
    resp = wizard_client.post(f"{WIZARD}?step=4", data={"action": "select_customer", "customer_id": phone.customer.id})
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["error"].startswith("Could not save")
    assert body["step"] == 4

    data = wizard_data(wizard_client)
    assert data["template_id"] == phone.template.id
    assert data["variables"]["SIP_USER"] == "1001"
    assert data["config_version_id"] is None
    assert wizard_client.get(f"{WIZARD}?step=5").get_json()["step"] == 4


def test_action_must_match_step(wizard_client, phone):
    resp = wizard_client.post(f"{WIZARD}?step=2", data={"action": "select_type", "device_type_id": phone.device_type.id})
    assert resp.status_code == 400
    resp = wizard_client.post(f"{WIZARD}?step=1", data={"action": "drop_tables"})
    assert resp.status_code == 400


def test_post_without_csrf_token_is_rejected(wizard_client, phone, app):
    app.config["WTF_CSRF_ENABLED"] = True
    resp = wizard_client.post(f"{WIZARD}?step=1", data={"action": "select_type", "device_type_id": phone.device_type.id})
    assert resp.status_code == 400
    assert "CSRF" in resp.get_json()["error"]
    assert wizard_data(wizard_client) is None or wizard_data(wizard_client)["device_type_id"] is None


def test_post_with_csrf_token_is_accepted(wizard_client, phone, app):
    app.config["WTF_CSRF_ENABLED"] = True
    token = wizard_client.get(WIZARD).get_json()["csrf_token"]
    resp = wizard_client.post(
        f"{WIZARD}?step=1",
        data={"action": "select_type", "device_type_id": phone.device_type.id, "csrf_token": token},
    )
    assert resp.status_code == 302


def test_step_is_clamped_and_guarded(wizard_client, phone):
    assert wizard_client.get(f"{WIZARD}?step=99").get_json()["step"] == 1
    assert wizard_client.get(f"{WIZARD}?step=-3").get_json()["step"] == 1
    assert wizard_client.get(f"{WIZARD}?step=abc").get_json()["step"] == 1


def test_reset_clears_session(wizard_client, phone):
    walk_to_preview(wizard_client, phone)
    resp = wizard_client.get(f"{WIZARD}?reset=1")
    assert resp.status_code == 302
    assert location_step(resp) == 1
    data = wizard_data(wizard_client)
    assert data["template_id"] is None
    assert data["variables"] == {}


def test_unknown_device_is_not_found(wizard_client, phone):
    assert wizard_client.get(f"{WIZARD}?device_id=404").status_code == 404


def test_switching_device_resets_session(app, phone):
    for device_id, mac in ((7, "00:15:65:00:00:07"), (9, "00:15:65:00:00:09")):
        db.session.add(Device(id=device_id, name=f"Desk {device_id}", mac_address=mac,
                              device_type_id=phone.device_type.id))
    db.session.commit()

    svc = WizardService(MemoryStore())
    svc.bind_device(7)
    svc.select_template(phone.template.id)
    svc.set_variables({"SIP_USER": "1001", "SIP_PASSWORD": "x"})

    ws = svc.bind_device(9)
    assert ws == WizardSession(device_id=9, device_type_id=phone.device_type.id)

    # same device again keeps the answers
    svc.select_template(phone.template.id)
    assert svc.bind_device(9).template_id == phone.template.id


def test_default_target_created_on_first_commit(app, phone):
    svc = WizardService(MemoryStore())
    svc.select_type(phone.device_type.id)
    svc.select_template(phone.other_template.id)
    svc.set_variables({"SIP_USER": "2002"})
    assert ConfigTarget.query.filter_by(name="Customer-Based").count() == 0
    ws = svc.commit(phone.customer.id)
    assert ConfigTarget.query.filter_by(name="Customer-Based").count() == 1
    assert ws.config_content == "a=2002\n"
    assert svc.available_step(ws, WizardStep.COMPLETE) == WizardStep.COMPLETE


def test_clamp_step():
    assert clamp_step("3") == 3
    assert clamp_step(0) == 1
    assert clamp_step(6) == 5
    assert clamp_step(None) == 1


def test_every_kind_has_an_input_field():
    assert set(FIELD_FACTORIES) == set(VariableKind)


def test_boolean_input_depends_on_options(app):
    defs = [
        VariableDefinition(name="FLAG", var_type="boolean"),
        VariableDefinition(name="MODE", var_type="boolean", options=[{"value": "1", "label": "On"}]),
    ]
    fields = describe_fields(defs, {})
    assert [f["input"] for f in fields] == ["BooleanField", "RadioField"]


def test_collect_variable_inputs():
    form = MultiDict([
        ("action", "set_variables"),
        ("var_NAME", "desk"),
        ("var_CODECS[]", "PCMU"),
        ("var_CODECS[]", "G722"),
        ("csrf_token", "x"),
    ])
    assert collect_variable_inputs(form) == {"NAME": "desk", "CODECS": "PCMU,G722"}


def test_variable_form_enforces_definition_rules(app, phone):
    definitions = VariableDefinition.for_template(phone.template.id)
    form_class = build_variable_form(definitions)
    with app.test_request_context():
        bad = form_class(
            formdata=MultiDict({"var_SIP_USER": "", "var_SIP_PASSWORD": "pw", "var_SIP_PORT": "100"}),
            meta={"csrf": False},
        )
        assert not bad.validate()
        good = form_class(
            formdata=MultiDict([
                ("var_SIP_USER", "1001"), ("var_SIP_PASSWORD", "pw"), ("var_SIP_PORT", "5060"),
                ("var_CODECS", "PCMU"), ("var_CODECS", "G722"),
            ]),
            meta={"csrf": False},
        )
        assert good.validate(), good.errors

    assert set(bad.errors) == {"var_SIP_USER", "var_SIP_PORT"}
    assert bad.errors["var_SIP_USER"] == ["This field is required"]
    assert bad.errors["var_SIP_PORT"] == ["Value must be at least 1024"]

    port = next(d for d in definitions if d.name == "SIP_PORT")
    assert validate("100", port).error == bad.errors["var_SIP_PORT"][0]


def test_password_minimum_is_a_length_attribute(app):
    defs = [VariableDefinition(name="PIN", var_type="password", min_value=4, is_required=True)]
    assert describe_fields(defs, {})[0]["attrs"] == {"required": True, "minlength": 4}

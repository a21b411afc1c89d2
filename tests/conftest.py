from types import SimpleNamespace

import pytest

from phoneprov import create_app
from phoneprov.config import TestConfig
from phoneprov.extensions import db
from phoneprov.models import (
    ConfigTarget, Customer, Device, DeviceType, GlobalVariable,
    Role, TargetKind, Template, User, VariableDefinition
)

TEMPLATE_BODY = """#!version:1.0.0.1
account.1.user_name = {{SIP_USER}}
account.1.password={{SIP_PASSWORD}}
account.1.sip_server.1.port={{SIP_PORT}}
account.1.codec={{CODECS}}
local_time.ntp_server1={{NTP_SERVER}}
"""

YEALINK_UA = "Yealink SIP-T46S 66.86.0.15 00:15:65:aa:bb:20"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(role=Role.OPERATOR, email=None, active=True):
    user = User(name=role.title(), email=email or f"{role}@example.com", role=role, is_active=active)
    user.set_password("correct horse")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def operator(app):
    return make_user(Role.OPERATOR)


@pytest.fixture
def viewer(app):
    return make_user(Role.VIEWER)


@pytest.fixture
def login(client):
    def _login(user):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
    return _login


@pytest.fixture
def phone(app):
    """One device type with a default template, its variables, a customer and a device."""
    device_type = DeviceType(name="SIP-T46S", description="Yealink T46S")
    db.session.add(device_type)
    db.session.flush()

    template = Template(
        device_type_id=device_type.id,
        name="T46S basic",
        category="sip",
        body=TEMPLATE_BODY,
        is_default=True,
    )
    other = Template(device_type_id=device_type.id, name="T46S minimal", body="a={{SIP_USER}}\n")
    db.session.add_all([template, other])
    db.session.flush()

    db.session.add_all([
        VariableDefinition(template_id=template.id, name="SIP_USER", var_type="text",
                           is_required=True, display_order=1),
        VariableDefinition(template_id=template.id, name="SIP_PASSWORD", var_type="password",
                           is_required=True, display_order=2),
        VariableDefinition(template_id=template.id, name="SIP_PORT", var_type="number",
                           default_value="5060", min_value=1024, max_value=65535, display_order=3),
        VariableDefinition(template_id=template.id, name="CODECS", var_type="multiselect",
                           default_value="PCMU", options=["PCMU", "PCMA", "G722"], display_order=4),
        VariableDefinition(template_id=other.id, name="SIP_USER", var_type="text", is_required=True),
        GlobalVariable(name="NTP_SERVER", value="pool.ntp.org"),
    ])

    customer = Customer(code="C001", company_name="Acme BV")
    db.session.add(customer)
    device = Device(name="Reception", mac_address="00-15-65-aa-bb-20", device_type_id=device_type.id)
    db.session.add(device)
    target = ConfigTarget(name="PABX Amsterdam", kind=TargetKind.PABX)
    db.session.add(target)
    db.session.commit()

    return SimpleNamespace(
        device_type=device_type,
        template=template,
        other_template=other,
        customer=customer,
        device=device,
        target=target,
    )

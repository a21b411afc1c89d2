"""Bodies of the staging documents handed to phones, filled in by the template renderer."""
from ..templating import render

CERT_BASE = "{{SERVER_URL}}/provision/staging/certificates"

CERTIFICATE_SECTION = f"""[CERTIFICATE]
static.trusted_certificates.url={CERT_BASE}/ca.crt
static.server_certificates.url={CERT_BASE}/server.crt
static.security.dev_cert=1
"""

BOOT_BODY = """#!version:1.0.0.1

[DEVICE_INFO]
device_mac={{DEVICE_MAC}}

""" + CERTIFICATE_SECTION + """
[AUTO_PROVISION]
# device specific staging config
static.auto_provision.url={{SERVER_URL}}/provision/staging/{{DEVICE_MAC_PLAIN}}.cfg
static.auto_provision.enable=1
feature.reboot_on_new_config=1

[NETWORK]
static.provisioning.protocol=https
"""

CERTIFICATES_BODY = "#!version:1.0.0.1\n\n" + CERTIFICATE_SECTION

STAGING_CONFIG_BODY = """#!version:1.0.0.1

[DEVICE_INFO]
device_mac={{DEVICE_MAC}}

""" + CERTIFICATE_SECTION + """
[AUTO_PROVISION]
# hand off to the general provisioning endpoint
static.auto_provision.url={{SERVER_URL}}/provision/
static.auto_provision.enable=1
static.auto_provision.reboot_after_update=1

[NETWORK]
static.provisioning.protocol=https
"""


def _document(body: str, **variables) -> str:
    result = render(body, variables)
    if not result.success:
        raise RuntimeError(result.error)
    return result.content


def boot_document(server_url: str, mac: str, mac_plain: str) -> str:
    return _document(BOOT_BODY, SERVER_URL=server_url, DEVICE_MAC=mac, DEVICE_MAC_PLAIN=mac_plain)


def certificates_document(server_url: str) -> str:
    return _document(CERTIFICATES_BODY, SERVER_URL=server_url)


def staging_config_document(server_url: str, mac: str) -> str:
    return _document(STAGING_CONFIG_BODY, SERVER_URL=server_url, DEVICE_MAC=mac)

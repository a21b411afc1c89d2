import hmac
import logging
import os
import re

from flask import Response, current_app, request, send_from_directory
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from . import provision_bp
from .documents import boot_document, certificates_document, staging_config_document
from ..extensions import db
from ..mac import mac_plain, normalize_mac
from ..models import ConfigDownload, Device, ProvisionLog, ProvisionStage
from ..versions import assigned_version

logger = logging.getLogger(__name__)

CERT_NAME_RE = re.compile(r"^[A-Za-z0-9_]+\.crt$")
CERT_MIMETYPE = "application/x-x509-ca-cert"

ERROR_MESSAGES = {
    400: "Invalid or missing MAC address",
    401: "Authentication required",
    403: "Device not found or inactive",
    404: "Not found",
}


def _text(body: str, status: int = 200, filename=None, inline=False) -> Response:
    resp = Response(body, status=status, mimetype="text/plain")
    if filename:
        disposition = "inline" if inline else "attachment"
        resp.headers["Content-Disposition"] = f'{disposition}; filename="{filename}"'
    return resp


def _error(status: int, message=None) -> Response:
    return _text(f"# Error: {message or ERROR_MESSAGES.get(status, 'Server error')}\n", status)


@provision_bp.errorhandler(Exception)
def provisioning_error(e):
    if isinstance(e, HTTPException):
        return _error(e.code, ERROR_MESSAGES.get(e.code, e.name))
    logger.exception("Provisioning request %s failed", request.path)
    db.session.rollback()
    return _error(500, "Server error")


def _staging_auth_failed():
    """401 response when a staging password is configured and the request lacks it, else None."""
    password = current_app.config.get("STAGING_AUTH_PASS") or ""
    if not password:
        return None
    username = current_app.config.get("STAGING_AUTH_USER") or ""
    auth = request.authorization
    if auth is not None and auth.type == "basic":
        user_ok = hmac.compare_digest((auth.username or "").encode(), username.encode())
        pass_ok = hmac.compare_digest((auth.password or "").encode(), password.encode())
        if user_ok and pass_ok:
            return None
    logger.info("Staging credentials rejected for %s from %s", request.path, request.remote_addr)
    resp = _error(401)
    resp.headers["WWW-Authenticate"] = 'Basic realm="Provisioning"'
    return resp


def _server_url() -> str:
    configured = current_app.config.get("PROVISION_SERVER_URL")
    return (configured or request.url_root).rstrip("/")


def _cert_dir() -> str:
    cert_dir = current_app.config["PROVISION_CERT_DIR"]
    if not os.path.isabs(cert_dir):
        cert_dir = os.path.join(current_app.instance_path, cert_dir)
    return cert_dir


def _lookup_device(raw_mac):
    """(plain MAC, device) or an error response. Unknown and inactive devices look the same."""
    plain = mac_plain(raw_mac)
    if plain is None:
        return None, _error(400)
    device = Device.find_active_by_mac(normalize_mac(plain))
    if device is None:
        logger.info("Provisioning refused for MAC %s", plain)
        return plain, _error(403)
    return plain, device


def _log_fetch(device, stage: str, version_id=None, download=False) -> None:
    device_id, mac = device.id, device.mac_address
    user_agent = request.headers.get("User-Agent", "")[:512]
    try:
        db.session.add(ProvisionLog(
            device_id=device_id,
            mac_address=mac,
            stage=stage,
            ip_address=request.remote_addr,
            forwarded_for=request.headers.get("X-Forwarded-For"),
            user_agent=user_agent,
            config_version_id=version_id,
        ))
        if download:
            db.session.add(ConfigDownload(
                config_version_id=version_id,
                device_id=device_id,
                mac_address=mac,
                ip_address=request.remote_addr,
                user_agent=user_agent,
            ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Could not record %s fetch for device %s", stage, device_id, exc_info=True)


def _boot(raw_mac):
    denied = _staging_auth_failed()
    if denied is not None:
        return denied
    plain, device = _lookup_device(raw_mac)
    if isinstance(device, Response):
        return device

    body = boot_document(_server_url(), device.mac_address, plain)
    logger.info("Serving boot document to device %s (%s)", device.id, device.mac_address)
    _log_fetch(device, ProvisionStage.BOOT)
    return _text(body, filename=f"{plain.lower()}.boot")


@provision_bp.get("/staging/boot")
def staging_boot_query():
    return _boot(request.args.get("mac"))


@provision_bp.get("/staging/<mac>.boot")
def staging_boot(mac):
    return _boot(mac)


@provision_bp.get("/staging/certificates")
def staging_certificates():
    denied = _staging_auth_failed()
    if denied is not None:
        return denied
    return _text(certificates_document(_server_url()), filename="certificates.cfg", inline=True)


@provision_bp.get("/staging/certificates/<filename>")
def staging_certificate_file(filename):
    denied = _staging_auth_failed()
    if denied is not None:
        return denied
    if not CERT_NAME_RE.fullmatch(filename):
        logger.info("Rejected certificate name %r", filename)
        return _error(404)

    # device certificates are only released to the MAC they were issued for
    if filename.startswith("device_") and request.args.get("mac"):
        if mac_plain(request.args["mac"]) != filename[len("device_"):-len(".crt")].upper():
            return _error(403, "MAC mismatch")

    cert_dir = _cert_dir()
    if not os.path.isfile(os.path.join(cert_dir, filename)):
        return _error(404)
    return send_from_directory(cert_dir, filename, mimetype=CERT_MIMETYPE, as_attachment=True)


@provision_bp.get("/staging/<mac>.cfg")
def staging_config(mac):
    denied = _staging_auth_failed()
    if denied is not None:
        return denied
    plain, device = _lookup_device(mac)
    if isinstance(device, Response):
        return device
    body = staging_config_document(_server_url(), device.mac_address)
    logger.info("Served staging config to device %s (%s)", device.id, device.mac_address)
    return _text(body, filename=f"{plain.lower()}.cfg")


def _full_config(raw_mac):
    vendor = current_app.config.get("PROVISION_VENDOR_UA") or ""
    if current_app.config.get("PROVISION_REQUIRE_VENDOR_UA") and vendor:
        if vendor.lower() not in request.headers.get("User-Agent", "").lower():
            logger.info("Blocked provisioning client %r", request.headers.get("User-Agent"))
            return _error(403, "Access denied")

    plain, device = _lookup_device(raw_mac)
    if isinstance(device, Response):
        return device

    version = assigned_version(device.id)
    if version is None:
        logger.info("No configuration assigned to device %s", device.id)
        return _error(404, "No active configuration assigned")

    content = version.content
    version_id = version.id
    logger.info("Serving config version %s to device %s", version_id, device.id)
    _log_fetch(device, ProvisionStage.FULL_CONFIG, version_id=version_id, download=True)
    return _text(content, filename=f"{plain.lower()}.cfg")


@provision_bp.get("/")
def provision_query():
    return _full_config(request.args.get("mac"))


@provision_bp.get("/<mac>.cfg")
def provision_config(mac):
    return _full_config(mac)

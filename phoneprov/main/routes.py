import logging

from flask import Response, abort, jsonify, request
from flask_login import current_user, login_required

from . import main_bp
from ..audit import record_audit
from ..auth.permissions import permission_required
from ..errors import NotFoundError, PersistenceError
from ..extensions import db
from ..forms import CSRFOnlyForm
from ..mac import mac_plain, normalize_mac
from ..models import ConfigDownload, Device, Permission
from ..versions import assigned_version, list_versions, rollback

logger = logging.getLogger(__name__)


def _version_dict(version, download_count=None):
    data = {
        "id": version.id,
        "target_id": version.target_id,
        "device_type_id": version.device_type_id,
        "version_number": version.version_number,
        "changelog": version.changelog,
        "is_active": version.is_active,
        "created_by_user_id": version.created_by_user_id,
        "created_at": version.created_at.isoformat() if version.created_at else None,
    }
    if download_count is not None:
        data["download_count"] = download_count
    return data


@main_bp.get("/")
def index():
    if not current_user.is_authenticated:
        return jsonify({"user": None})
    return jsonify({
        "user": {"id": current_user.id, "name": current_user.name, "role": current_user.role},
        "devices": Device.query.filter_by(is_active=True).count(),
    })


@main_bp.get("/versions")
@login_required
@permission_required(Permission.CONFIG_MANAGE)
def versions():
    target_id = request.args.get("target_id", type=int)
    device_type_id = request.args.get("device_type_id", type=int)
    if target_id is None or device_type_id is None:
        return jsonify({"error": "target_id and device_type_id are required"}), 400
    entries = list_versions(target_id, device_type_id)
    return jsonify({"versions": [_version_dict(e.version, e.download_count) for e in entries]})


@main_bp.post("/versions/<int:version_id>/rollback")
@login_required
@permission_required(Permission.CONFIG_MANAGE)
def rollback_version(version_id: int):
    form = CSRFOnlyForm()
    if not form.validate_on_submit():
        abort(400)
    try:
        version = rollback(version_id, current_user.id)
    except NotFoundError:
        abort(404)
    except PersistenceError:
        return jsonify({"error": "Could not save the configuration. Please try again."}), 500

    record_audit(
        current_user.id, "config.rollback", "config_version", version.id,
        old_value={"version_id": version_id},
        new_value={"version_number": version.version_number},
    )
    return jsonify(_version_dict(version)), 201


@main_bp.get("/devices/<int:device_id>/config")
@login_required
@permission_required(Permission.CONFIG_MANAGE)
def download_device_config(device_id: int):
    device = db.session.get(Device, device_id)
    if device is None:
        abort(404)

    supplied = request.args.get("mac")
    if not supplied:
        return jsonify({"error": "mac is required"}), 400
    if normalize_mac(supplied) != device.mac_address:
        logger.info("MAC verification failed for device %s download by user %s", device.id, current_user.id)
        abort(403)

    version = assigned_version(device.id)
    if version is None:
        return jsonify({"error": "No configuration assigned to this device"}), 404

    content = version.content
    mac = device.mac_address
    db.session.add(ConfigDownload(
        config_version_id=version.id,
        device_id=device.id,
        mac_address=mac,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent", "")[:512],
    ))
    db.session.commit()
    record_audit(
        current_user.id, "config.download", "device", device_id,
        new_value={"device_name": device.name, "mac_address": mac},
    )

    resp = Response(content, mimetype="text/plain")
    resp.headers["Content-Disposition"] = f'attachment; filename="{mac_plain(mac).lower()}.cfg"'
    return resp

from datetime import datetime
from ..extensions import db


class ProvisionStage:
    BOOT = "boot"
    STAGING_CONFIG = "staging_cfg"
    FULL_CONFIG = "full_cfg"

    ALL = [BOOT, STAGING_CONFIG, FULL_CONFIG]


class ProvisionLog(db.Model):
    """Append-only record of successful phone fetches."""

    __tablename__ = "provision_logs"

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), nullable=True, index=True)
    mac_address = db.Column(db.String(17), nullable=False, index=True)
    stage = db.Column(db.String(32), nullable=False)

    ip_address = db.Column(db.String(64), nullable=True)
    forwarded_for = db.Column(db.String(255), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    config_version_id = db.Column(db.Integer, db.ForeignKey("config_versions.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

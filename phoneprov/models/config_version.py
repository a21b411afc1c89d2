from datetime import datetime
from ..extensions import db


class TargetKind:
    PABX = "pabx"
    CUSTOMER_GROUP = "customer_group"
    DEFAULT = "default"

    ALL = [PABX, CUSTOMER_GROUP, DEFAULT]


class ConfigTarget(db.Model):
    __tablename__ = "config_targets"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    kind = db.Column(db.String(32), nullable=False, default=TargetKind.PABX)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<ConfigTarget {self.id} {self.name}>"


class ConfigScope(db.Model):
    """Version-number sequence for one (target, device type) pair."""

    __tablename__ = "config_scopes"
    __table_args__ = (
        db.UniqueConstraint("target_id", "device_type_id", name="uq_config_scope"),
    )

    id = db.Column(db.Integer, primary_key=True)
    target_id = db.Column(db.Integer, db.ForeignKey("config_targets.id"), nullable=False)
    device_type_id = db.Column(db.Integer, db.ForeignKey("device_types.id"), nullable=False)
    last_version_number = db.Column(db.Integer, nullable=False, default=0)


class ConfigVersion(db.Model):
    __tablename__ = "config_versions"
    __table_args__ = (
        db.UniqueConstraint("target_id", "device_type_id", "version_number", name="uq_config_version_number"),
    )

    id = db.Column(db.Integer, primary_key=True)

    target_id = db.Column(db.Integer, db.ForeignKey("config_targets.id"), nullable=False, index=True)
    device_type_id = db.Column(db.Integer, db.ForeignKey("device_types.id"), nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False)

    content = db.Column(db.Text, nullable=False)
    changelog = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    target = db.relationship("ConfigTarget")
    device_type = db.relationship("DeviceType")

    def __repr__(self) -> str:
        return f"<ConfigVersion {self.id} v{self.version_number} active={self.is_active}>"


class DeviceConfigAssignment(db.Model):
    __tablename__ = "device_config_assignments"

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), unique=True, nullable=False)
    config_version_id = db.Column(db.Integer, db.ForeignKey("config_versions.id"), nullable=False, index=True)

    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    device = db.relationship("Device", backref=db.backref("config_assignment", uselist=False))
    config_version = db.relationship("ConfigVersion")


class ConfigDownload(db.Model):
    __tablename__ = "config_downloads"

    id = db.Column(db.Integer, primary_key=True)
    config_version_id = db.Column(db.Integer, db.ForeignKey("config_versions.id"), nullable=False, index=True)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), nullable=True)

    mac_address = db.Column(db.String(17), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    downloaded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class ConfigCleanupLog(db.Model):
    __tablename__ = "config_cleanup_logs"

    id = db.Column(db.Integer, primary_key=True)
    # no FK: the version row is gone once this is written
    config_version_id = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    cleaned_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

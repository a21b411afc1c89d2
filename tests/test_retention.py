from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from phoneprov.audit import record_audit
from phoneprov.extensions import db
from phoneprov.models import (
    AuditLog, ConfigCleanupLog, ConfigDownload, ConfigVersion, ProvisionLog, ProvisionStage
)
from phoneprov.retention import cleanup_provision_logs, cleanup_versions, expired_version_ids
from phoneprov.versions import create_version


def age(version, days):
    version.created_at = datetime.utcnow() - timedelta(days=days)
    db.session.commit()


def seed_history(phone):
    """v1 old, v2 old and assigned, v3 recent, v4 old but active."""
    tid, dtid = phone.target.id, phone.device_type.id
    v1 = create_version(tid, dtid, "1\n", None, None)
    v2 = create_version(tid, dtid, "2\n", None, None, device_id=phone.device.id)
    v3 = create_version(tid, dtid, "3\n", None, None)
    v4 = create_version(tid, dtid, "4\n", None, None)
    for version in (v1, v2, v4):
        age(version, 120)
    return v1, v2, v3, v4


def test_expired_versions_skip_active_assigned_and_recent(phone):
    v1, v2, v3, v4 = seed_history(phone)
    assert expired_version_ids(90) == [v1.id]


def test_cleanup_removes_and_records(phone):
    v1, *_ = seed_history(phone)
    v1_id = v1.id
    db.session.add(ConfigDownload(config_version_id=v1_id))
    db.session.add(ProvisionLog(mac_address="00:15:65:AA:BB:20", stage=ProvisionStage.FULL_CONFIG,
                                config_version_id=v1_id))
    db.session.commit()

    assert cleanup_versions(90) == [v1_id]

    assert db.session.get(ConfigVersion, v1_id) is None
    assert ConfigVersion.query.count() == 3
    assert ConfigDownload.query.count() == 0
    assert ProvisionLog.query.one().config_version_id is None
    log = ConfigCleanupLog.query.one()
    assert log.config_version_id == v1_id
    assert "90 days" in log.reason


def test_cleanup_dry_run_changes_nothing(phone):
    v1, *_ = seed_history(phone)
    assert cleanup_versions(90, dry_run=True) == [v1.id]
    assert ConfigVersion.query.count() == 4
    assert ConfigCleanupLog.query.count() == 0


def test_provision_log_cleanup(phone):
    old = ProvisionLog(mac_address="00:15:65:AA:BB:20", stage=ProvisionStage.BOOT,
                       created_at=datetime.utcnow() - timedelta(days=31))
    recent = ProvisionLog(mac_address="00:15:65:AA:BB:20", stage=ProvisionStage.BOOT)
    db.session.add_all([old, recent])
    db.session.commit()

    assert cleanup_provision_logs(30) == 1
    assert ProvisionLog.query.count() == 1


def test_cleanup_commands(app, phone):
    v1, *_ = seed_history(phone)
    runner = app.test_cli_runner()

    dry = runner.invoke(args=["cleanup-configs", "--dry-run"])
    assert dry.exit_code == 0, dry.output
    assert "Would remove 1 config versions older than 90 days" in dry.output
    assert ConfigVersion.query.count() == 4

    real = runner.invoke(args=["cleanup-configs", "--days", "90"])
    assert real.exit_code == 0, real.output
    assert "Removed 1 config versions" in real.output
    assert ConfigVersion.query.count() == 3

    logs = runner.invoke(args=["cleanup-provision-logs", "--days", "30"])
    assert logs.exit_code == 0, logs.output
    assert "Removed 0 provisioning log rows" in logs.output


def test_audit_entry_is_written(app):
    assert record_audit(3, "config.generated", "config_version", 11, new_value={"version_number": 2})
    entry = AuditLog.query.one()
    assert (entry.actor_user_id, entry.action, entry.entity_type, entry.entity_id) == (
        3, "config.generated", "config_version", 11
    )
    assert entry.new_value == {"version_number": 2}
    assert entry.old_value is None


def test_audit_failure_is_swallowed(app, monkeypatch):
    def failing_commit():
        raise OperationalError("INSERT", {}, Exception("audit table locked"))

    monkeypatch.setattr(db.session, "commit", failing_commit)
    assert record_audit(None, "config.download", "device", 1) is False
    monkeypatch.undo()
    assert AuditLog.query.count() == 0

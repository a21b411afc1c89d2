import logging
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceError
from .extensions import db
from .models import (
    ConfigCleanupLog, ConfigDownload, ConfigVersion,
    DeviceConfigAssignment, ProvisionLog
)

logger = logging.getLogger(__name__)


def expired_version_ids(days: int) -> List[int]:
    """Inactive versions older than `days` that no device is assigned to."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    assigned = select(DeviceConfigAssignment.config_version_id)
    rows = (
        db.session.query(ConfigVersion.id)
        .filter(
            ConfigVersion.created_at < cutoff,
            ConfigVersion.is_active.is_(False),
            ConfigVersion.id.notin_(assigned),
        )
        .order_by(ConfigVersion.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def cleanup_versions(days: int, dry_run: bool = False) -> List[int]:
    ids = expired_version_ids(days)
    if dry_run or not ids:
        return ids
    reason = f"Automatic cleanup - older than {days} days"
    try:
        for version_id in ids:
            db.session.add(ConfigCleanupLog(config_version_id=version_id, reason=reason))
        ProvisionLog.query.filter(ProvisionLog.config_version_id.in_(ids)).update(
            {ProvisionLog.config_version_id: None}, synchronize_session=False
        )
        ConfigDownload.query.filter(ConfigDownload.config_version_id.in_(ids)).delete(synchronize_session=False)
        ConfigVersion.query.filter(ConfigVersion.id.in_(ids)).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Config version cleanup failed for %d versions", len(ids))
        raise PersistenceError("Config cleanup failed") from exc
    logger.info("Removed %d expired config versions", len(ids))
    return ids


def cleanup_provision_logs(days: int) -> int:
    cutoff = datetime.utcnow() - timedelta(days=days)
    try:
        deleted = ProvisionLog.query.filter(ProvisionLog.created_at < cutoff).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Provision log cleanup failed")
        raise PersistenceError("Provision log cleanup failed") from exc
    logger.info("Removed %d provision log rows older than %d days", deleted, days)
    return deleted

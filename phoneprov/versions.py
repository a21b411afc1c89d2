"""
Append-only configuration version store.

Versions are numbered 1..N within a scope, the (target, device type) pair.
Numbers are handed out by a compare-and-swap on `ConfigScope`, and the
deactivate-all / insert-new pair runs in the same transaction, so a scope
never shows duplicate numbers or two active rows. Scopes never block each
other.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import NotFoundError, PersistenceError
from .extensions import db
from .models import (
    ConfigDownload, ConfigScope, ConfigTarget, ConfigVersion,
    Device, DeviceConfigAssignment, TargetKind
)

logger = logging.getLogger(__name__)

DownloadCounter = Callable[[Iterable[int]], Dict[int, int]]


class VersionEntry(NamedTuple):
    version: ConfigVersion
    download_count: int


def count_downloads(version_ids: Iterable[int]) -> Dict[int, int]:
    ids = list(version_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(ConfigDownload.config_version_id, func.count(ConfigDownload.id))
        .filter(ConfigDownload.config_version_id.in_(ids))
        .group_by(ConfigDownload.config_version_id)
        .all()
    )
    return {version_id: count for version_id, count in rows}


def get_or_create_default_target(author_id: Optional[int] = None) -> ConfigTarget:
    """Bucket for versions that are not attributed to a specific PABX; committed on creation."""
    name = current_app.config["DEFAULT_TARGET_NAME"]
    target = ConfigTarget.query.filter_by(name=name).first()
    if target is not None:
        return target
    try:
        target = ConfigTarget(name=name, kind=TargetKind.DEFAULT, created_by_user_id=author_id)
        db.session.add(target)
        db.session.commit()
        logger.info("Created default config target %r (id=%s)", name, target.id)
        return target
    except IntegrityError:
        # another request created it first
        db.session.rollback()
        return ConfigTarget.query.filter_by(name=name).one()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Could not create default config target %r", name)
        raise PersistenceError("Could not save configuration target") from exc


def _scope_query(model, target_id: int, device_type_id: int):
    return model.query.filter(model.target_id == target_id, model.device_type_id == device_type_id)


def _get_or_create_scope(target_id: int, device_type_id: int) -> ConfigScope:
    scope = _scope_query(ConfigScope, target_id, device_type_id).first()
    if scope is None:
        current_max = (
            db.session.query(func.max(ConfigVersion.version_number))
            .filter(ConfigVersion.target_id == target_id, ConfigVersion.device_type_id == device_type_id)
            .scalar()
        )
        scope = ConfigScope(
            target_id=target_id,
            device_type_id=device_type_id,
            last_version_number=current_max or 0,
        )
        db.session.add(scope)
        db.session.flush()
    return scope


def _claim_next_number(scope: ConfigScope) -> Optional[int]:
    current = scope.last_version_number
    result = db.session.execute(
        update(ConfigScope)
        .where(ConfigScope.id == scope.id, ConfigScope.last_version_number == current)
        .values(last_version_number=current + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    return current + 1


def assign_to_device(device_id: int, version_id: int, author_id: Optional[int]) -> DeviceConfigAssignment:
    """Upsert the device's single assignment. Does not commit."""
    assignment = DeviceConfigAssignment.query.filter_by(device_id=device_id).first()
    if assignment is None:
        assignment = DeviceConfigAssignment(device_id=device_id)
        db.session.add(assignment)
    assignment.config_version_id = version_id
    assignment.assigned_by_user_id = author_id
    assignment.assigned_at = datetime.utcnow()
    db.session.flush()
    return assignment


def create_version(
    target_id: int,
    device_type_id: int,
    content: str,
    changelog: Optional[str],
    author_id: Optional[int],
    device_id: Optional[int] = None,
    within_transaction: Optional[Callable[[ConfigVersion], None]] = None,
) -> ConfigVersion:
    """
    Store `content` as the new active version of its scope and, when
    `device_id` is given, bind it to that device in the same transaction.
    `within_transaction` runs just before the commit and is rolled back with it.
    """
    if device_id is not None and db.session.get(Device, device_id) is None:
        raise NotFoundError(f"Device {device_id} not found")

    attempts = current_app.config.get("VERSION_ALLOCATION_ATTEMPTS", 5)
    for attempt in range(1, attempts + 1):
        try:
            scope = _get_or_create_scope(target_id, device_type_id)
            number = _claim_next_number(scope)
            if number is None:
                db.session.rollback()
                logger.info(
                    "Version number race on scope target=%s device_type=%s, retrying (%d/%d)",
                    target_id, device_type_id, attempt, attempts,
                )
                continue

            db.session.execute(
                update(ConfigVersion)
                .where(
                    ConfigVersion.target_id == target_id,
                    ConfigVersion.device_type_id == device_type_id,
                    ConfigVersion.is_active.is_(True),
                )
                .values(is_active=False)
                .execution_options(synchronize_session="fetch")
            )
            version = ConfigVersion(
                target_id=target_id,
                device_type_id=device_type_id,
                version_number=number,
                content=content,
                changelog=changelog,
                is_active=True,
                created_by_user_id=author_id,
            )
            db.session.add(version)
            db.session.flush()

            if device_id is not None:
                assign_to_device(device_id, version.id, author_id)
            if within_transaction is not None:
                within_transaction(version)

            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info(
                "Integrity conflict on scope target=%s device_type=%s, retrying (%d/%d)",
                target_id, device_type_id, attempt, attempts,
            )
            continue
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception(
                "Could not create config version (target=%s device_type=%s device=%s author=%s)",
                target_id, device_type_id, device_id, author_id,
            )
            raise PersistenceError("Could not save configuration version") from exc

        logger.info(
            "Created config version %s (v%s) for target=%s device_type=%s",
            version.id, number, target_id, device_type_id,
        )
        return version

    logger.error("Gave up allocating a version number for target=%s device_type=%s", target_id, device_type_id)
    raise PersistenceError("Could not allocate a version number")


def rollback(version_id: int, author_id: Optional[int]) -> ConfigVersion:
    """Re-issue an old version's content as a brand new version."""
    version = db.session.get(ConfigVersion, version_id)
    if version is None:
        raise NotFoundError(f"Config version {version_id} not found")
    return create_version(
        version.target_id,
        version.device_type_id,
        version.content,
        f"Rollback to version {version.version_number}",
        author_id,
    )


def list_versions(
    target_id: int,
    device_type_id: int,
    counter: Optional[DownloadCounter] = None,
) -> List[VersionEntry]:
    versions = (
        _scope_query(ConfigVersion, target_id, device_type_id)
        .order_by(ConfigVersion.version_number.desc())
        .all()
    )
    counts = (counter or count_downloads)(v.id for v in versions)
    return [VersionEntry(v, counts.get(v.id, 0)) for v in versions]


def assigned_version(device_id: int) -> Optional[ConfigVersion]:
    assignment = DeviceConfigAssignment.query.filter_by(device_id=device_id).first()
    if assignment is None:
        return None
    return assignment.config_version

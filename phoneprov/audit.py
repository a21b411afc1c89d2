import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    old_value: Any = None,
    new_value: Any = None,
) -> bool:
    """
    Best-effort audit entry, committed on its own. Call only after the
    primary change has been committed; a failure here is logged and dropped.
    """
    try:
        db.session.add(AuditLog(
            actor_user_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
        ))
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Audit log write failed: %s %s #%s", action, entity_type, entity_id, exc_info=True)
        return False

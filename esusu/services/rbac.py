import logging
from sqlalchemy.orm import Session
from uuid import UUID
from typing import Optional

from esusu.core.audit import write_audit_log
from esusu.core.errors import Unauthorized
from esusu.models.user import User, UserStatus

logger = logging.getLogger(__name__)


def get_admin(db: Session, actor_id: Optional[UUID]) -> Optional[User]:
    """Return the actor when they are an active administrator, else None."""
    if actor_id is None:
        return None
    actor = db.query(User).filter(User.id == actor_id).first()
    if not actor or not actor.is_admin or actor.status != UserStatus.ACTIVE:
        return None
    return actor


def require_admin(db: Session, actor_id: Optional[UUID]) -> User:
    """Guard run first by every admin operation, before any mutation."""
    actor = get_admin(db, actor_id)
    if actor is None:
        raise Unauthorized()
    return actor


def audit_admin_action(actor: User, action: str, details: str = ""):
    """Append to the audit file. Runs after commit, so a write failure is only logged."""
    try:
        write_audit_log(actor.full_name, "admin", action, details)
    except OSError:
        logger.exception("Audit log write failed for %s: %s %s", actor.full_name, action, details)

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from esusu.core.config import settings
from esusu.core.errors import ValidationFailed
from esusu.models.system import SystemSettings
from esusu.services.actions import action, read_action
from esusu.services.rbac import require_admin, audit_admin_action

logger = logging.getLogger(__name__)


def load_system_settings(db: Session) -> SystemSettings:
    """Fetch the settings row, creating it with defaults when absent.

    Called at the start of every operation that depends on a setting; the
    value is never cached between operations.
    """
    row = db.query(SystemSettings).first()
    if row is None:
        row = SystemSettings(opt_out_penalty_percent=settings.DEFAULT_OPT_OUT_PENALTY_PERCENT)
        db.add(row)
        db.flush()
    return row


def get_opt_out_penalty_percent(db: Session) -> int:
    return load_system_settings(db).opt_out_penalty_percent


def _serialize(row: SystemSettings) -> dict:
    return {
        "id": str(row.id),
        "opt_out_penalty_percent": row.opt_out_penalty_percent,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        "updated_by": str(row.updated_by) if row.updated_by else None,
    }


@read_action(lambda: {"opt_out_penalty_percent": settings.DEFAULT_OPT_OUT_PENALTY_PERCENT})
def get_system_settings(db: Session) -> dict:
    row = load_system_settings(db)
    db.commit()
    db.refresh(row)
    return _serialize(row)


@action
def update_system_settings(db: Session, admin_id: UUID, opt_out_penalty_percent: int) -> dict:
    admin = require_admin(db, admin_id)

    if opt_out_penalty_percent is None or not 0 <= opt_out_penalty_percent <= 100:
        raise ValidationFailed("Penalty percentage must be between 0 and 100")

    row = load_system_settings(db)
    old_value = row.opt_out_penalty_percent
    row.opt_out_penalty_percent = opt_out_penalty_percent
    row.updated_by = admin.id
    row.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(row)

    logger.info("Opt-out penalty changed from %s%% to %s%%", old_value, opt_out_penalty_percent)
    audit_admin_action(admin, "update_system_settings", f"opt_out_penalty_percent {old_value} -> {opt_out_penalty_percent}")
    return {"message": "Settings updated successfully", "settings": _serialize(row)}

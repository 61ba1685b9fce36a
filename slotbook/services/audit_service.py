import uuid, json
import logging
from sqlalchemy.orm import Session
from slotbook.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    """Append a lifecycle event. Flushed with the caller's transaction."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id or SYSTEM_ACTOR,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))
    logger.info("%s %s/%s by %s", action, entity_type, entity_id, actor_user_id or SYSTEM_ACTOR)


def list_audit(db: Session, entity_type: str, entity_id: str) -> list[dict]:
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.asc())
        .all()
    )
    return [
        {
            "action": r.action,
            "actor": r.actor_user_id,
            "details": json.loads(r.details_json or "{}"),
            "createdAt": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]

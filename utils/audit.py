# utils/audit.py
# Audit trail for order and wallet actions

import logging
from sqlalchemy.orm import Session
from models.audit_log import AuditLog, AuditAction
from utils.permissions import Actor

logger = logging.getLogger(__name__)


def log_action(db: Session, actor: Actor, action_type: AuditAction, target: str, details: str) -> AuditLog:
    """Record an action inside the caller's transaction (committed with it)."""
    entry = AuditLog(
        actor_id=actor.user_id if actor else None,
        actor_role=actor.role.value if actor else None,
        action_type=action_type,
        target=target[:255],
        details=details,
    )
    db.add(entry)
    logger.info(f"[audit] {action_type.value} {target}: {details}")
    return entry


def log_financial(db: Session, actor: Actor, target: str, details: str) -> AuditLog:
    return log_action(db, actor, AuditAction.financial, target, details)

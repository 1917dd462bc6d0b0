from typing import Any

from sqlalchemy.orm import Session

from costledger.core.id_utils import generate_shortuuid
from costledger.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    actor_id: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        id=generate_shortuuid(),
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event

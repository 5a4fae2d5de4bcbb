"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..models.models import AuditLog, utcnow
from ..config import settings


def create_audit_log(
    db: Session,
    action: str,
    entity: str,
    entity_id: Optional[Any] = None,
    user_id: Optional[Any] = None,
    old_value: Optional[Dict] = None,
    new_value: Optional[Dict] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    integrity_secret: Optional[str] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Create an append-only audit log entry.

    Args:
        db: Database session
        action: Action tag (PERMIT_CREATED|PERMIT_APPROVED|USER_LOGIN|...)
        entity: Entity type (PermitRequest|PermitApproval|User|Role|MeterReading)
        entity_id: Entity ID
        user_id: User who performed the action
        old_value: Snapshot before the change
        new_value: Snapshot after the change
        ip_address: Caller IP
        user_agent: Caller user agent
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)
        commit: Commit the session after adding the row

    Returns:
        Created AuditLog object
    """
    created_at = utcnow()

    integrity_hash = None
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    if integrity_secret:
        canonical_data = {
            "action": action,
            "entity": entity,
            "entity_id": str(entity_id) if entity_id else None,
            "user_id": str(user_id) if user_id else None,
            "created_at": created_at.isoformat(),
            "old_value": old_value,
            "new_value": new_value,
        }
        # Remove None values and sort keys for consistency
        canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
        canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
        hash_input = f"{canonical_json}:{integrity_secret}"
        integrity_hash = hashlib.sha256(hash_input.encode()).hexdigest()

    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id else None,
        old_value=old_value,
        new_value=new_value,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        created_at=created_at,
        integrity_hash=integrity_hash,
    )

    db.add(audit_log)
    if commit:
        db.commit()
        db.refresh(audit_log)

    return audit_log


def get_audit_logs(
    db: Session,
    entity: Optional[str] = None,
    entity_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    """
    Get audit logs with optional filtering, newest first.
    """
    query = db.query(AuditLog)

    if entity:
        query = query.filter(AuditLog.entity == entity)

    if entity_id:
        query = query.filter(AuditLog.entity_id == str(entity_id))

    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    query = query.order_by(AuditLog.created_at.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff

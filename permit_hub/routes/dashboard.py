from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import REQUESTOR, get_current_user
from ..db import get_db
from ..models.models import PermitApproval, PermitRequest, User
from ..services import permits as svc
from ..services.audit import get_audit_logs


router = APIRouter(prefix="/dashboard", tags=["dashboard"])

STATUSES = (svc.PENDING, svc.APPROVED, svc.REJECTED, svc.CLOSED, svc.EXTENDED)


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    base = db.query(PermitRequest)
    if user.role_name == REQUESTOR:
        base = base.filter(PermitRequest.created_by == user.id)

    by_status = dict(
        base.with_entities(PermitRequest.status, func.count(PermitRequest.id))
        .group_by(PermitRequest.status)
        .all()
    )
    by_work_type = dict(
        base.with_entities(PermitRequest.work_type, func.count(PermitRequest.id))
        .group_by(PermitRequest.work_type)
        .all()
    )
    recent = base.order_by(PermitRequest.created_at.desc()).limit(5).all()

    stats = {
        "totalPermits": sum(by_status.values()),
        **{s.lower(): by_status.get(s, 0) for s in STATUSES},
    }
    if user.role_name != REQUESTOR:
        stats["pendingApprovals"] = (
            db.query(PermitApproval).filter(PermitApproval.decision == svc.PENDING).count()
        )
    return {
        "stats": stats,
        "byWorkType": [
            {"workType": wt, "label": svc.work_type_label(wt), "count": count}
            for wt, count in sorted(by_work_type.items(), key=lambda kv: -kv[1])
        ],
        "recentPermits": [svc.serialize_permit(p, include_approvals=False) for p in recent],
    }


@router.get("/activity")
def dashboard_activity(limit: int = 20, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    limit = min(max(1, limit), 100)
    # Requestors only see their own trail
    user_id = user.id if user.role_name == REQUESTOR else None
    logs = get_audit_logs(db, user_id=user_id, limit=limit)
    return {
        "activities": [
            {
                "id": str(log.id),
                "action": log.action,
                "entity": log.entity,
                "entityId": log.entity_id,
                "userId": str(log.user_id) if log.user_id else None,
                "newValue": log.new_value,
                "createdAt": log.created_at.isoformat() if log.created_at else None,
            }
            for log in logs
        ]
    }

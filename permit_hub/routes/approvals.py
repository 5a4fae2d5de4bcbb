import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import is_safety_officer
from ..db import get_db
from ..logging import request_meta
from ..models.models import PermitApproval, PermitRequest, User
from ..schemas.approvals import DecisionRequest
from ..services import permits as svc
from .pagination import clamp, pagination


router = APIRouter(prefix="/approvals", tags=["approvals"])

SORTABLE = {
    "createdAt": PermitApproval.created_at,
    "approvedAt": PermitApproval.approved_at,
    "decision": PermitApproval.decision,
}


@router.get("")
def list_approvals(
    page: int = 1,
    limit: int = 10,
    decision: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    _: User = Depends(is_safety_officer),
):
    page, limit = clamp(page, limit)
    q = db.query(PermitApproval).join(PermitRequest, PermitRequest.id == PermitApproval.permit_id)
    if decision:
        q = q.filter(PermitApproval.decision == decision.upper())
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(PermitRequest.title.ilike(like), PermitRequest.location.ilike(like)))
    total = q.count()
    column = SORTABLE.get(sort_by, PermitApproval.created_at)
    q = q.order_by(column.asc() if sort_order.lower() == "asc" else column.desc())
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return {
        "approvals": [svc.serialize_approval(a, include_permit=True) for a in rows],
        "pagination": pagination(page, limit, total),
    }


@router.get("/pending-count")
def pending_count(db: Session = Depends(get_db), _: User = Depends(is_safety_officer)):
    count = db.query(PermitApproval).filter(PermitApproval.decision == svc.PENDING).count()
    return {"count": count}


@router.get("/stats")
def approval_stats(db: Session = Depends(get_db), _: User = Depends(is_safety_officer)):
    pending = db.query(PermitApproval).filter(PermitApproval.decision == svc.PENDING).count()
    approved = db.query(PermitApproval).filter(PermitApproval.decision == svc.APPROVED).count()
    rejected = db.query(PermitApproval).filter(PermitApproval.decision == svc.REJECTED).count()
    decided = approved + rejected
    recent = (
        db.query(PermitApproval)
        .filter(PermitApproval.decision != svc.PENDING)
        .order_by(PermitApproval.approved_at.desc())
        .limit(5)
        .all()
    )
    return {
        "stats": {
            "pending": pending,
            "approved": approved,
            "rejected": rejected,
            "total": pending + decided,
            "approvalRate": round(approved / decided * 100, 1) if decided else 0,
        },
        "recentApprovals": [
            {
                **svc.serialize_approval(a),
                "permit": {"title": a.permit.title, "workType": a.permit.work_type} if a.permit else None,
            }
            for a in recent
        ],
    }


@router.get("/{approval_id}")
def get_approval(approval_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(is_safety_officer)):
    approval = db.query(PermitApproval).filter(PermitApproval.id == approval_id).first()
    if not approval:
        raise HTTPException(status_code=404, detail="Approval not found")
    return {"approval": svc.serialize_approval(approval, include_permit=True)}


@router.put("/{approval_id}/decision")
def decide(
    approval_id: uuid.UUID,
    payload: DecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(is_safety_officer),
):
    approval = svc.decide_approval(
        db,
        approval_id,
        decision=payload.decision,
        actor=user,
        comment=payload.comment,
        signature=payload.signature,
        meta=request_meta(request),
    )
    return {
        "message": f"Permit {payload.decision.lower()} successfully",
        "approval": svc.serialize_approval(approval, include_permit=True),
    }

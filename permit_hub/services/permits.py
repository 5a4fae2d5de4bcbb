"""
Permit lifecycle: create, update, delete, decide, extend, close.

Routes resolve the permit and run the capability check; the functions here
apply the change, write the audit row and commit once.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import HTTPException
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from ..auth.security import REQUESTOR, SAFETY_OFFICER
from ..models.models import PermitApproval, PermitRequest, User, Worker, naive_utc, utcnow
from .audit import create_audit_log, compute_diff
from .json_fields import parse_json_array, permit_for_storage

logger = structlog.get_logger(__name__)

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
CLOSED = "CLOSED"
EXTENDED = "EXTENDED"

DEFAULT_TIMEZONE = "Asia/Calcutta"

WORK_TYPES = [
    {"value": "HOT_WORK", "label": "Hot Work", "icon": "fire", "color": "#ef4444"},
    {"value": "CONFINED_SPACE", "label": "Confined Space Entry", "icon": "box", "color": "#f97316"},
    {"value": "ELECTRICAL", "label": "Electrical Work", "icon": "bolt", "color": "#eab308"},
    {"value": "WORKING_AT_HEIGHT", "label": "Working at Height", "icon": "arrow-up", "color": "#3b82f6"},
    {"value": "EXCAVATION", "label": "Excavation", "icon": "hard-hat", "color": "#8b5cf6"},
    {"value": "LIFTING", "label": "Lifting Operations", "icon": "crane", "color": "#06b6d4"},
    {"value": "CHEMICAL", "label": "Chemical Handling", "icon": "flask", "color": "#10b981"},
    {"value": "RADIATION", "label": "Radiation Work", "icon": "radiation", "color": "#f59e0b"},
    {"value": "GENERAL", "label": "General Work", "icon": "wrench", "color": "#6b7280"},
    {"value": "COLD_WORK", "label": "Cold Work", "icon": "snowflake", "color": "#0ea5e9"},
    {"value": "LOTO", "label": "Lockout / Tagout", "icon": "lock", "color": "#dc2626"},
    {"value": "VEHICLE", "label": "Vehicle Work", "icon": "truck", "color": "#64748b"},
    {"value": "PRESSURE_TESTING", "label": "Hydro Pressure Testing", "icon": "gauge", "color": "#0891b2"},
    {"value": "ENERGIZE", "label": "Energize", "icon": "zap", "color": "#facc15"},
    {"value": "SWMS", "label": "Safe Work Method Statement", "icon": "clipboard", "color": "#4f46e5"},
]
WORK_TYPE_VALUES = {w["value"] for w in WORK_TYPES}

DEFAULT_MEASURES = [
    {"id": 1, "question": "Instruction to Personnel regarding hazards involved and working procedure.", "answer": None},
    {"id": 2, "question": "Are Other Contractors working nearby notified?", "answer": None},
    {"id": 3, "question": "Is there any other work permit obtained?", "answer": None},
    {"id": 4, "question": "Are escape routes to be provided and kept clear?", "answer": None},
    {"id": 5, "question": "Is combustible material to be removed / covered from and nearby site (up to 5mtr min.)", "answer": None},
    {"id": 6, "question": "Is the area immediately below the work spot been cleared / removed of oil, grease & waste cotton etc...?", "answer": None},
    {"id": 7, "question": "Has gas connection been tested in case there is gas valve / gas line nearby?", "answer": None},
    {"id": 8, "question": "Is fire extinguisher been kept handy at site?", "answer": None},
    {"id": 9, "question": "Has tin sheet / fire retardant cloth/ sheet been placed to contain hot spatters of welding / gas cutting?", "answer": None},
    {"id": 10, "question": "Have all drain inlets been closed?", "answer": None},
]

SORTABLE_COLUMNS = {
    "createdAt": PermitRequest.created_at,
    "updatedAt": PermitRequest.updated_at,
    "startDate": PermitRequest.start_date,
    "endDate": PermitRequest.end_date,
    "title": PermitRequest.title,
    "status": PermitRequest.status,
    "priority": PermitRequest.priority,
    "permitNumber": PermitRequest.permit_number,
}


def iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def work_type_label(value: Optional[str]) -> str:
    for w in WORK_TYPES:
        if w["value"] == value:
            return w["label"]
    return value or ""


def ensure_work_type(value: str) -> None:
    if value not in WORK_TYPE_VALUES:
        raise HTTPException(status_code=400, detail="Invalid work type")


def generate_permit_number(db: Session, now: Optional[datetime] = None) -> str:
    """PTW-YYYYMMDD-NNNN, numbered per day."""
    now = now or utcnow()
    prefix = f"PTW-{now.strftime('%Y%m%d')}-"
    count = (
        db.query(func.count(PermitRequest.id))
        .filter(PermitRequest.permit_number.like(f"{prefix}%"))
        .scalar()
        or 0
    )
    seq = count + 1
    while db.query(PermitRequest.id).filter(PermitRequest.permit_number == f"{prefix}{seq:04d}").first():
        seq += 1
    return f"{prefix}{seq:04d}"


# Serialization


def serialize_user_brief(user: Optional[User]) -> Optional[dict]:
    if not user:
        return None
    return {
        "id": str(user.id),
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "department": user.department,
    }


def serialize_approval(approval: PermitApproval, include_permit: bool = False) -> dict:
    data = {
        "id": str(approval.id),
        "permitId": str(approval.permit_id),
        "approverRole": approval.approver_role,
        "approverName": approval.approver_name,
        "decision": approval.decision,
        "comment": approval.comment,
        "signature": approval.signature,
        "approvedAt": iso(approval.approved_at),
        "createdAt": iso(approval.created_at),
    }
    if include_permit:
        data["permit"] = serialize_permit(approval.permit, include_approvals=False) if approval.permit else None
    return data


def serialize_worker(worker: Worker) -> dict:
    return {
        "id": str(worker.id),
        "permitId": str(worker.permit_id),
        "name": worker.name,
        "phone": worker.phone,
        "company": worker.company,
        "trade": worker.trade,
        "badgeNumber": worker.badge_number,
        "registeredAt": iso(worker.registered_at),
    }


def serialize_permit(permit: PermitRequest, include_approvals: bool = True, include_workers: bool = False) -> dict:
    data = {
        "id": str(permit.id),
        "permitNumber": permit.permit_number,
        "title": permit.title,
        "description": permit.description,
        "location": permit.location,
        "workType": permit.work_type,
        "startDate": iso(permit.start_date),
        "endDate": iso(permit.end_date),
        "status": permit.status,
        "priority": permit.priority,
        "hazards": parse_json_array(permit.hazards),
        "precautions": parse_json_array(permit.precautions),
        "equipment": parse_json_array(permit.equipment),
        "measures": parse_json_array(permit.measures),
        "workers": parse_json_array(permit.workers),
        "contractorName": permit.contractor_name,
        "contractorPhone": permit.contractor_phone,
        "companyName": permit.company_name,
        "timezone": permit.timezone or DEFAULT_TIMEZONE,
        "isExtended": bool(permit.is_extended),
        "extendedAt": iso(permit.extended_at),
        "extensionReason": permit.extension_reason,
        "closedAt": iso(permit.closed_at),
        "closureRemarks": permit.closure_remarks,
        "createdBy": str(permit.created_by),
        "createdAt": iso(permit.created_at),
        "updatedAt": iso(permit.updated_at),
        "user": serialize_user_brief(permit.creator),
    }
    if include_approvals:
        data["approvals"] = [serialize_approval(a) for a in permit.approvals]
    if include_workers:
        data["registeredWorkers"] = [serialize_worker(w) for w in permit.registered_workers]
    return data


def public_permit_info(permit: PermitRequest) -> dict:
    """The subset shown to anyone holding the worker-registration QR code."""
    return {
        "id": str(permit.id),
        "permitNumber": permit.permit_number,
        "title": permit.title,
        "location": permit.location,
        "workType": permit.work_type,
        "workTypeLabel": work_type_label(permit.work_type),
        "status": permit.status,
        "startDate": iso(permit.start_date),
        "endDate": iso(permit.end_date),
        "companyName": permit.company_name,
        "contractorName": permit.contractor_name,
        "registeredWorkers": len(permit.registered_workers),
    }


def _snapshot(permit: PermitRequest) -> dict:
    return {
        "title": permit.title,
        "workType": permit.work_type,
        "status": permit.status,
        "location": permit.location,
        "startDate": iso(permit.start_date),
        "endDate": iso(permit.end_date),
        "priority": permit.priority,
    }


# Queries


def list_permits(
    db: Session,
    user: User,
    *,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    work_type: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> Tuple[List[PermitRequest], int]:
    q = db.query(PermitRequest)
    # Requestors only see their own permits
    if user.role_name == REQUESTOR:
        q = q.filter(PermitRequest.created_by == user.id)
    if status:
        q = q.filter(PermitRequest.status == status.upper())
    if work_type:
        q = q.filter(PermitRequest.work_type == work_type.upper())
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            PermitRequest.title.ilike(like),
            PermitRequest.description.ilike(like),
            PermitRequest.location.ilike(like),
            PermitRequest.permit_number.ilike(like),
        ))
    if start_date:
        q = q.filter(PermitRequest.start_date >= start_date)
    if end_date:
        q = q.filter(PermitRequest.start_date <= end_date)

    total = q.count()
    column = SORTABLE_COLUMNS.get(sort_by, PermitRequest.created_at)
    q = q.order_by(column.asc() if sort_order.lower() == "asc" else column.desc())
    items = q.offset((page - 1) * limit).limit(limit).all()
    return items, total


def get_permit_or_404(db: Session, permit_id: uuid.UUID) -> PermitRequest:
    permit = db.query(PermitRequest).filter(PermitRequest.id == permit_id).first()
    if not permit:
        raise HTTPException(status_code=404, detail="Permit not found")
    return permit


# Mutations


def create_permit(db: Session, *, data: Dict[str, Any], creator: User, meta: Optional[dict] = None) -> PermitRequest:
    """Insert the permit and its pending Safety Officer approval in one transaction."""
    ensure_work_type(data["work_type"])
    fields = permit_for_storage({
        "title": data["title"],
        "description": data.get("description") or "",
        "location": data.get("location") or "",
        "work_type": data["work_type"],
        "start_date": data["start_date"],
        "end_date": data["end_date"],
        "priority": data.get("priority") or "MEDIUM",
        "hazards": data.get("hazards") or [],
        "precautions": data.get("precautions") or [],
        "equipment": data.get("equipment") or [],
        "measures": data.get("measures") or [],
        "workers": data.get("workers") or [],
        "contractor_name": data.get("contractor_name"),
        "contractor_phone": data.get("contractor_phone"),
        "company_name": data.get("company_name"),
        "timezone": data.get("timezone") or DEFAULT_TIMEZONE,
    })
    try:
        permit = PermitRequest(
            permit_number=generate_permit_number(db),
            status=PENDING,
            created_by=creator.id,
            **fields,
        )
        db.add(permit)
        db.flush()
        db.add(PermitApproval(
            permit_id=permit.id,
            approver_role=SAFETY_OFFICER,
            decision=PENDING,
        ))
        create_audit_log(
            db,
            action="PERMIT_CREATED",
            entity="PermitRequest",
            entity_id=permit.id,
            user_id=creator.id,
            new_value={"title": permit.title, "workType": permit.work_type, "status": PENDING},
            commit=False,
            **(meta or {}),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(permit)
    logger.info("permit_created", permit_id=str(permit.id), permit_number=permit.permit_number, user_id=str(creator.id))
    return permit


def update_permit(db: Session, permit: PermitRequest, *, changes: Dict[str, Any], actor: User, meta: Optional[dict] = None) -> PermitRequest:
    if "work_type" in changes:
        ensure_work_type(changes["work_type"])
    start = changes.get("start_date", naive_utc(permit.start_date))
    end = changes.get("end_date", naive_utc(permit.end_date))
    if start and end and naive_utc(end) < naive_utc(start):
        raise HTTPException(status_code=400, detail="End date must not be before start date")

    before = _snapshot(permit)
    for key, value in permit_for_storage(changes).items():
        setattr(permit, key, value)
    permit.updated_at = utcnow()
    after = _snapshot(permit)

    create_audit_log(
        db,
        action="PERMIT_UPDATED",
        entity="PermitRequest",
        entity_id=permit.id,
        user_id=actor.id,
        old_value=before,
        new_value=after,
        commit=False,
        **(meta or {}),
    )
    db.commit()
    db.refresh(permit)
    logger.info("permit_updated", permit_id=str(permit.id), fields=sorted(compute_diff(before, after)))
    return permit


def delete_permit(db: Session, permit: PermitRequest, *, actor: User, meta: Optional[dict] = None) -> None:
    """Hard delete; approvals and registered workers go with the permit."""
    permit_id = permit.id
    snapshot = {"title": permit.title, "status": permit.status, "permitNumber": permit.permit_number}
    db.delete(permit)
    create_audit_log(
        db,
        action="PERMIT_DELETED",
        entity="PermitRequest",
        entity_id=permit_id,
        user_id=actor.id,
        old_value=snapshot,
        commit=False,
        **(meta or {}),
    )
    db.commit()
    logger.info("permit_deleted", permit_id=str(permit_id), user_id=str(actor.id))


def decide_approval(
    db: Session,
    approval_id: uuid.UUID,
    *,
    decision: str,
    actor: User,
    comment: Optional[str] = None,
    signature: Optional[str] = None,
    meta: Optional[dict] = None,
) -> PermitApproval:
    """
    Record the decision and mirror it onto the permit status.

    The PENDING check is part of the UPDATE itself, so of two concurrent
    deciders only one matches a row; the other gets "already processed".
    """
    approval = db.query(PermitApproval).filter(PermitApproval.id == approval_id).first()
    if not approval:
        raise HTTPException(status_code=404, detail="Approval not found")
    if approval.decision != PENDING:
        raise HTTPException(status_code=400, detail="This approval has already been processed")

    now = utcnow()
    approver_name = actor.full_name
    try:
        result = db.execute(
            update(PermitApproval)
            .where(PermitApproval.id == approval_id, PermitApproval.decision == PENDING)
            .values(
                decision=decision,
                comment=comment,
                signature=signature,
                approver_name=approver_name,
                approved_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise HTTPException(status_code=400, detail="This approval has already been processed")
        db.execute(
            update(PermitRequest)
            .where(PermitRequest.id == approval.permit_id)
            .values(status=decision, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        create_audit_log(
            db,
            action="PERMIT_APPROVED" if decision == APPROVED else "PERMIT_REJECTED",
            entity="PermitApproval",
            entity_id=approval_id,
            user_id=actor.id,
            old_value={"decision": PENDING},
            new_value={"decision": decision, "comment": comment, "approverName": approver_name},
            commit=False,
            **(meta or {}),
        )
        db.commit()
    except HTTPException:
        raise
    except Exception:
        db.rollback()
        raise

    db.expire_all()
    approval = db.query(PermitApproval).filter(PermitApproval.id == approval_id).first()
    logger.info("approval_decided", approval_id=str(approval_id), permit_id=str(approval.permit_id), decision=decision)
    return approval


def extend_permit(
    db: Session,
    permit: PermitRequest,
    *,
    new_end_date: datetime,
    reason: Optional[str],
    actor: User,
    meta: Optional[dict] = None,
) -> PermitRequest:
    current_end = naive_utc(permit.end_date)
    if new_end_date <= current_end:
        raise HTTPException(status_code=400, detail="New end date must be after the current end date")

    before = {"status": permit.status, "endDate": iso(current_end)}
    permit.status = EXTENDED
    permit.is_extended = True
    permit.extended_at = utcnow()
    permit.extension_reason = reason
    permit.end_date = new_end_date
    create_audit_log(
        db,
        action="PERMIT_EXTENDED",
        entity="PermitRequest",
        entity_id=permit.id,
        user_id=actor.id,
        old_value=before,
        new_value={"status": EXTENDED, "endDate": iso(new_end_date), "reason": reason},
        commit=False,
        **(meta or {}),
    )
    db.commit()
    db.refresh(permit)
    logger.info("permit_extended", permit_id=str(permit.id), end_date=iso(new_end_date))
    return permit


def close_permit(db: Session, permit: PermitRequest, *, remarks: Optional[str], actor: User, meta: Optional[dict] = None) -> PermitRequest:
    before = {"status": permit.status}
    permit.status = CLOSED
    permit.closed_at = utcnow()
    permit.closure_remarks = remarks
    create_audit_log(
        db,
        action="PERMIT_CLOSED",
        entity="PermitRequest",
        entity_id=permit.id,
        user_id=actor.id,
        old_value=before,
        new_value={"status": CLOSED, "remarks": remarks},
        commit=False,
        **(meta or {}),
    )
    db.commit()
    db.refresh(permit)
    logger.info("permit_closed", permit_id=str(permit.id))
    return permit


def update_measures(db: Session, permit: PermitRequest, *, measures: List[dict], actor: User, meta: Optional[dict] = None) -> PermitRequest:
    before = parse_json_array(permit.measures)
    permit.measures = permit_for_storage({"measures": measures})["measures"]
    permit.updated_at = utcnow()
    create_audit_log(
        db,
        action="PERMIT_MEASURES_UPDATED",
        entity="PermitRequest",
        entity_id=permit.id,
        user_id=actor.id,
        old_value={"measures": before},
        new_value={"measures": measures},
        commit=False,
        **(meta or {}),
    )
    db.commit()
    db.refresh(permit)
    return permit


def register_workers(
    db: Session,
    permit: PermitRequest,
    *,
    contractor: Dict[str, Any],
    workers: List[Dict[str, Any]],
    meta: Optional[dict] = None,
) -> List[Worker]:
    """Public QR flow: append contractor personnel to a permit."""
    if permit.status in (CLOSED, REJECTED):
        raise HTTPException(status_code=400, detail=f"Cannot register workers on a {permit.status.lower()} permit")

    if contractor.get("name") and not permit.contractor_name:
        permit.contractor_name = contractor["name"]
    if contractor.get("phone") and not permit.contractor_phone:
        permit.contractor_phone = contractor["phone"]
    if contractor.get("company") and not permit.company_name:
        permit.company_name = contractor["company"]

    created = []
    for w in workers:
        worker = Worker(
            permit_id=permit.id,
            name=w["name"],
            phone=w.get("phone"),
            company=w.get("company") or contractor.get("company"),
            trade=w.get("trade"),
            badge_number=w.get("badge_number"),
        )
        db.add(worker)
        created.append(worker)
    db.flush()
    create_audit_log(
        db,
        action="WORKERS_REGISTERED",
        entity="PermitRequest",
        entity_id=permit.id,
        new_value={"count": len(created), "contractor": contractor.get("name")},
        commit=False,
        **(meta or {}),
    )
    db.commit()
    for worker in created:
        db.refresh(worker)
    logger.info("workers_registered", permit_id=str(permit.id), count=len(created))
    return created

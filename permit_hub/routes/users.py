import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..auth.router import serialize_user
from ..auth.security import is_admin, get_password_hash
from ..db import get_db
from ..logging import structlog, request_meta
from ..models.models import PermitRequest, Role, User, utcnow
from ..schemas.users import UserCreate, UserUpdate, RejectRequest, RoleAssignment
from ..services.audit import create_audit_log
from ..services.roles import get_default_role, get_role
from .pagination import clamp, pagination


router = APIRouter(prefix="/users", tags=["users"])


def _get_user_or_404(db: Session, user_id: uuid.UUID) -> User:
    u = db.query(User).filter(User.id == user_id).first()
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


def _resolve_role(db: Session, name: str) -> Role:
    role = get_role(db, name)
    if role is None:
        raise HTTPException(status_code=400, detail="Invalid role")
    return role


def _with_permit_count(db: Session, u: User) -> dict:
    data = serialize_user(u)
    data["permitCount"] = db.query(func.count(PermitRequest.id)).filter(PermitRequest.created_by == u.id).scalar() or 0
    return data


@router.get("")
def list_users(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(is_admin),
):
    page, limit = clamp(page, limit, 200)
    q = db.query(User)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.first_name.ilike(like), User.last_name.ilike(like), User.email.ilike(like)))
    if role:
        q = q.join(Role, Role.id == User.role_id).filter(Role.name == role.upper())
    total = q.count()
    rows = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "users": [_with_permit_count(db, u) for u in rows],
        "pagination": pagination(page, limit, total),
    }


@router.get("/pending")
def pending_users(db: Session = Depends(get_db), _: User = Depends(is_admin)):
    rows = (
        db.query(User)
        .filter(User.is_approved == False, User.is_active == True)  # noqa: E712
        .order_by(User.created_at.asc())
        .all()
    )
    return {"users": [serialize_user(u) for u in rows], "count": len(rows)}


@router.get("/stats")
def user_stats(db: Session = Depends(get_db), _: User = Depends(is_admin)):
    total = db.query(User).count()
    active = db.query(User).filter(User.is_active == True).count()  # noqa: E712
    pending = db.query(User).filter(User.is_approved == False, User.is_active == True).count()  # noqa: E712
    by_role = {
        name: count
        for name, count in (
            db.query(Role.name, func.count(User.id))
            .outerjoin(User, User.role_id == Role.id)
            .group_by(Role.name)
            .all()
        )
    }
    return {
        "stats": {
            "total": total,
            "active": active,
            "inactive": total - active,
            "pendingApproval": pending,
            "byRole": by_role,
        }
    }


@router.get("/{user_id}")
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(is_admin)):
    return {"user": _with_permit_count(db, _get_user_or_404(db, user_id))}


@router.post("", status_code=201)
def create_user(payload: UserCreate, request: Request, db: Session = Depends(get_db), admin: User = Depends(is_admin)):
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already exists")
    role = _resolve_role(db, payload.role) if payload.role else get_default_role(db)
    # Accounts created by an admin need no further approval
    u = User(
        email=email,
        password_hash=get_password_hash(payload.password),
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        department=payload.department,
        phone=payload.phone,
        role_id=role.id if role else None,
        is_active=True,
        is_approved=True,
        approved_by=admin.id,
        approved_at=utcnow(),
    )
    db.add(u)
    db.flush()
    create_audit_log(
        db,
        action="USER_CREATED",
        entity="User",
        entity_id=u.id,
        user_id=admin.id,
        new_value={"email": email, "role": role.name if role else None},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(u)
    return {"message": "User created successfully", "user": serialize_user(u)}


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(is_admin),
):
    u = _get_user_or_404(db, user_id)
    before = {"firstName": u.first_name, "lastName": u.last_name, "role": u.role_name, "isActive": u.is_active}
    if payload.first_name is not None:
        u.first_name = payload.first_name
    if payload.last_name is not None:
        u.last_name = payload.last_name
    if payload.department is not None:
        u.department = payload.department
    if payload.phone is not None:
        u.phone = payload.phone
    if payload.role is not None:
        u.role = _resolve_role(db, payload.role)
    if payload.is_active is not None:
        if u.id == admin.id and not payload.is_active:
            raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
        u.is_active = payload.is_active
    after = {"firstName": u.first_name, "lastName": u.last_name, "role": u.role_name, "isActive": u.is_active}
    create_audit_log(
        db,
        action="USER_UPDATED",
        entity="User",
        entity_id=u.id,
        user_id=admin.id,
        old_value=before,
        new_value=after,
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(u)
    return {"message": "User updated successfully", "user": serialize_user(u)}


@router.delete("/{user_id}")
def delete_user(user_id: uuid.UUID, request: Request, db: Session = Depends(get_db), admin: User = Depends(is_admin)):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    u = _get_user_or_404(db, user_id)
    # Users are never hard deleted
    u.is_active = False
    create_audit_log(
        db,
        action="USER_DELETED",
        entity="User",
        entity_id=u.id,
        user_id=admin.id,
        old_value={"email": u.email, "isActive": True},
        new_value={"isActive": False},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    return {"message": "User deactivated successfully"}


@router.post("/{user_id}/approve")
def approve_user(user_id: uuid.UUID, request: Request, db: Session = Depends(get_db), admin: User = Depends(is_admin)):
    u = _get_user_or_404(db, user_id)
    if u.is_approved:
        raise HTTPException(status_code=400, detail="User is already approved")
    if not u.is_active:
        raise HTTPException(status_code=400, detail="User account is deactivated")
    role = _resolve_role(db, u.requested_role) if u.requested_role else get_default_role(db)
    u.role = role
    u.is_approved = True
    u.approved_by = admin.id
    u.approved_at = utcnow()
    create_audit_log(
        db,
        action="USER_APPROVED",
        entity="User",
        entity_id=u.id,
        user_id=admin.id,
        old_value={"isApproved": False},
        new_value={"isApproved": True, "role": role.name if role else None},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(u)
    structlog.get_logger().info("user_approved", user_id=str(u.id), role=u.role_name)
    return {"message": "User approved successfully", "user": serialize_user(u)}


@router.post("/{user_id}/reject")
def reject_user(
    user_id: uuid.UUID,
    request: Request,
    payload: Optional[RejectRequest] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(is_admin),
):
    u = _get_user_or_404(db, user_id)
    if u.is_approved:
        raise HTTPException(status_code=400, detail="User is already approved")
    reason = payload.reason if payload else None
    u.is_active = False
    u.rejection_reason = reason
    create_audit_log(
        db,
        action="USER_REJECTED",
        entity="User",
        entity_id=u.id,
        user_id=admin.id,
        new_value={"isActive": False, "reason": reason, "requestedRole": u.requested_role},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    structlog.get_logger().info("user_rejected", user_id=str(u.id))
    return {"message": "User registration rejected"}


@router.patch("/{user_id}/role")
def assign_role(
    user_id: uuid.UUID,
    payload: RoleAssignment,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(is_admin),
):
    u = _get_user_or_404(db, user_id)
    if payload.role_id:
        role = db.query(Role).filter(Role.id == payload.role_id).first()
        if role is None:
            raise HTTPException(status_code=400, detail="Invalid role")
    elif payload.role:
        role = _resolve_role(db, payload.role)
    else:
        raise HTTPException(status_code=400, detail="roleId or role is required")
    before = u.role_name
    u.role = role
    create_audit_log(
        db,
        action="USER_ROLE_CHANGED",
        entity="User",
        entity_id=u.id,
        user_id=admin.id,
        old_value={"role": before},
        new_value={"role": role.name},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(u)
    return {"message": "User role updated", "user": serialize_user(u)}

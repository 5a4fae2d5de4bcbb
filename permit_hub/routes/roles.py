import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_admin
from ..db import get_db
from ..logging import request_meta
from ..models.models import Role, User
from ..schemas.users import RoleCreate, RoleUpdate
from ..services.audit import create_audit_log
from ..services.roles import ALL_PERMISSIONS, normalize_role_name


router = APIRouter(prefix="/roles", tags=["roles"])


def _role_to_dict(r: Role, user_count: int = 0) -> dict:
    return {
        "id": str(r.id),
        "name": r.name,
        "displayName": r.display_name,
        "description": r.description,
        "permissions": list(r.permissions or []),
        "isSystem": bool(r.is_system),
        "userCount": user_count,
    }


def _check_permissions(perms) -> list:
    unknown = [p for p in perms if p not in ALL_PERMISSIONS and not p.endswith(".*")]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown permissions: {', '.join(unknown)}")
    return list(dict.fromkeys(perms))


@router.get("")
def list_roles(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    counts = dict(db.query(User.role_id, func.count(User.id)).group_by(User.role_id).all())
    rows = db.query(Role).order_by(Role.is_system.desc(), Role.name.asc()).all()
    return {
        "roles": [_role_to_dict(r, counts.get(r.id, 0)) for r in rows],
        "availablePermissions": ALL_PERMISSIONS,
    }


@router.post("", status_code=201)
def create_role(payload: RoleCreate, request: Request, db: Session = Depends(get_db), admin: User = Depends(is_admin)):
    name = normalize_role_name(payload.name)
    if not name:
        raise HTTPException(status_code=400, detail="Role name is required")
    if db.query(Role).filter(Role.name == name).first():
        raise HTTPException(status_code=400, detail="Role already exists")
    role = Role(
        name=name,
        display_name=payload.display_name or name.replace("_", " ").title(),
        description=payload.description,
        permissions=_check_permissions(payload.permissions),
        is_system=False,
    )
    db.add(role)
    db.flush()
    create_audit_log(
        db,
        action="ROLE_CREATED",
        entity="Role",
        entity_id=role.id,
        user_id=admin.id,
        new_value={"name": name, "permissions": role.permissions},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(role)
    return {"message": "Role created successfully", "role": _role_to_dict(role)}


@router.put("/{role_id}")
def update_role(
    role_id: uuid.UUID,
    payload: RoleUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(is_admin),
):
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    before = {"displayName": role.display_name, "permissions": list(role.permissions or [])}
    if payload.display_name is not None:
        role.display_name = payload.display_name
    if payload.description is not None:
        role.description = payload.description
    if payload.permissions is not None:
        # Reassign rather than mutate so the JSON column is flagged dirty
        role.permissions = _check_permissions(payload.permissions)
    create_audit_log(
        db,
        action="ROLE_UPDATED",
        entity="Role",
        entity_id=role.id,
        user_id=admin.id,
        old_value=before,
        new_value={"displayName": role.display_name, "permissions": role.permissions},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(role)
    return {"message": "Role updated successfully", "role": _role_to_dict(role)}


@router.delete("/{role_id}")
def delete_role(role_id: uuid.UUID, request: Request, db: Session = Depends(get_db), admin: User = Depends(is_admin)):
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    if role.is_system:
        raise HTTPException(status_code=400, detail="System roles cannot be deleted")
    if db.query(User).filter(User.role_id == role.id).count():
        raise HTTPException(status_code=400, detail="Role is assigned to users")
    name = role.name
    db.delete(role)
    create_audit_log(
        db,
        action="ROLE_DELETED",
        entity="Role",
        entity_id=role_id,
        user_id=admin.id,
        old_value={"name": name},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    return {"message": "Role deleted"}

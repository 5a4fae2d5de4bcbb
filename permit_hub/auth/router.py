from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..logging import structlog, request_meta
from ..models.models import User, utcnow
from ..schemas.auth import (
    RegisterRequest,
    LoginRequest,
    ChangePasswordRequest,
    SendOtpRequest,
    VerifyOtpRequest,
)
from ..services.audit import create_audit_log
from ..services.otp import get_otp_store, send_otp, verify_otp
from ..services.roles import get_default_role, get_role, requires_admin_approval, normalize_role_name
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    get_current_user,
    user_permissions,
)


router = APIRouter(prefix="/auth", tags=["auth"])


def serialize_user(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "department": user.department,
        "phone": user.phone,
        "role": user.role_name,
        "roleDisplayName": user.role.display_name if user.role else None,
        "permissions": user_permissions(user),
        "isActive": bool(user.is_active),
        "isApproved": bool(user.is_approved),
        "requestedRole": user.requested_role,
        "approvedAt": user.approved_at.isoformat() if user.approved_at else None,
        "lastLoginAt": user.last_login_at.isoformat() if user.last_login_at else None,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


@router.post("/register", status_code=201)
def register(req: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    email = req.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")

    default_role = get_default_role(db)
    if default_role is None:
        raise HTTPException(status_code=500, detail="Default role is not configured")

    requested = normalize_role_name(req.requested_role) if req.requested_role else default_role.name
    needs_approval = requires_admin_approval(requested)
    if needs_approval and get_role(db, requested) is None:
        raise HTTPException(status_code=400, detail="Invalid role requested")

    # Checked last: a valid code is consumed
    if settings.registration_otp_required:
        if not req.otp:
            raise HTTPException(status_code=400, detail="OTP is required")
        ok, message = verify_otp(get_otp_store(db), email, req.phone, req.otp)
        if not ok:
            raise HTTPException(status_code=400, detail=message)

    # Elevated roles start on the default role until an admin approves them
    user = User(
        email=email,
        password_hash=get_password_hash(req.password),
        first_name=req.first_name,
        last_name=req.last_name,
        department=req.department,
        phone=req.phone,
        role_id=default_role.id,
        is_active=True,
        is_approved=not needs_approval,
        requested_role=requested if needs_approval else None,
    )
    db.add(user)
    db.flush()
    create_audit_log(
        db,
        action="USER_REGISTERED",
        entity="User",
        entity_id=user.id,
        user_id=user.id,
        new_value={"email": email, "role": default_role.name, "requestedRole": user.requested_role},
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(user)
    structlog.get_logger().info("user_registered", user_id=str(user.id), pending_approval=needs_approval)

    if needs_approval:
        return {
            "message": "Registration submitted. An administrator must approve your account before you can log in.",
            "pendingApproval": True,
            "requiresApproval": True,
            "requestedRole": requested,
            "user": serialize_user(user),
        }
    return {
        "message": "Registration successful",
        "pendingApproval": False,
        "requiresApproval": False,
        "user": serialize_user(user),
        "token": create_access_token(str(user.id), user.role_name),
    }


@router.post("/login")
def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    email = req.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")
    if not user.is_approved:
        return JSONResponse(
            status_code=403,
            content={
                "message": "Your account is pending administrator approval",
                "pendingApproval": True,
                "requestedRole": user.requested_role,
            },
        )

    user.last_login_at = utcnow()
    create_audit_log(
        db,
        action="USER_LOGIN",
        entity="User",
        entity_id=user.id,
        user_id=user.id,
        commit=False,
        **request_meta(request),
    )
    db.commit()
    db.refresh(user)
    structlog.get_logger().info("user_login", user_id=str(user.id))
    return {
        "message": "Login successful",
        "user": serialize_user(user),
        "token": create_access_token(str(user.id), user.role_name),
    }


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"user": serialize_user(user)}


@router.post("/change-password")
def change_password(
    req: ChangePasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(req.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    user.password_hash = get_password_hash(req.new_password)
    create_audit_log(
        db,
        action="PASSWORD_CHANGED",
        entity="User",
        entity_id=user.id,
        user_id=user.id,
        commit=False,
        **request_meta(request),
    )
    db.commit()
    return {"message": "Password changed successfully"}


@router.post("/send-otp")
def send_registration_otp(req: SendOtpRequest, db: Session = Depends(get_db)):
    if not req.email and not req.phone:
        raise HTTPException(status_code=400, detail="Email or phone is required")
    result = send_otp(get_otp_store(db), req.email, req.phone)
    return {"message": "OTP sent", **result}


@router.post("/verify-otp")
def verify_registration_otp(req: VerifyOtpRequest, db: Session = Depends(get_db)):
    if not req.email and not req.phone:
        raise HTTPException(status_code=400, detail="Email or phone is required")
    ok, message = verify_otp(get_otp_store(db), req.email, req.phone, req.otp)
    if not ok:
        raise HTTPException(status_code=400, detail=message)
    return {"message": message, "verified": True}

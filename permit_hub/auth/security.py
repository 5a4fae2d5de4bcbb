import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

ADMIN = "ADMIN"
SAFETY_OFFICER = "SAFETY_OFFICER"
SITE_ENGINEER = "SITE_ENGINEER"
REQUESTOR = "REQUESTOR"


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    # Accounts migrated from the previous system carry bcrypt hashes ($2a$/$2b$/$2y$)
    if hashed.startswith("$2a$") or hashed.startswith("$2b$") or hashed.startswith("$2y$"):
        pb = plain.encode("utf-8")[:72]
        try:
            return bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def create_access_token(user_id: str, role: Optional[str] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    payload = decode_token(creds.credentials)
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated")
    return user


def require_roles(*allowed_roles: str):
    """Allow the request when the user's role is one of allowed_roles."""
    def _dep(user: User = Depends(get_current_user)):
        if user.role_name not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail={
                    "message": "Access denied. Insufficient permissions.",
                    "required": list(allowed_roles),
                    "current": user.role_name,
                },
            )
        return user

    return _dep


def user_permissions(user: User) -> list:
    if not user.role:
        return []
    perms = user.role.permissions or []
    return list(perms) if isinstance(perms, (list, tuple)) else []


def has_permission(user: User, perm: str) -> bool:
    # Admin role bypass
    if user.role_name == ADMIN:
        return True
    perms = user_permissions(user)
    if perm in perms:
        return True
    # Area wildcard, e.g. "meters.*" grants "meters.view"
    area = perm.split(".", 1)[0]
    return f"{area}.*" in perms


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    """
    def _dep(user: User = Depends(get_current_user)):
        if not any(has_permission(user, perm) for perm in required_permissions):
            raise HTTPException(
                status_code=403,
                detail={
                    "message": "Access denied. Insufficient permissions.",
                    "required": list(required_permissions),
                },
            )
        return user

    return _dep


# Route allow-lists, highest privilege first
is_admin = require_roles(ADMIN)
is_safety_officer = require_roles(SAFETY_OFFICER, ADMIN)
is_requestor = require_roles(REQUESTOR, SAFETY_OFFICER, ADMIN)

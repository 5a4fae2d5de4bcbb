"""
Built-in roles and the permission strings each one carries.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Role

logger = structlog.get_logger(__name__)

ALL_PERMISSIONS = [
    "permits.view", "permits.create", "permits.edit", "permits.delete",
    "permits.extend", "permits.close",
    "approvals.view", "approvals.decide",
    "users.view", "users.manage", "users.approve",
    "roles.manage",
    "mis.access", "meters.view", "meters.create", "meters.verify", "meters.export",
]

DEFAULT_ROLES = [
    {
        "name": "ADMIN",
        "display_name": "Administrator",
        "description": "Full access to every module",
        "permissions": ALL_PERMISSIONS,
    },
    {
        "name": "SAFETY_OFFICER",
        "display_name": "Safety Officer",
        "description": "Reviews, approves, extends and closes permits",
        "permissions": [
            "permits.view", "permits.create", "permits.edit",
            "permits.extend", "permits.close",
            "approvals.view", "approvals.decide",
        ],
    },
    {
        "name": "SITE_ENGINEER",
        "display_name": "Site Engineer",
        "description": "Records and verifies meter readings",
        "permissions": [
            "permits.view",
            "mis.access", "meters.view", "meters.create", "meters.verify", "meters.export",
        ],
    },
    {
        "name": "REQUESTOR",
        "display_name": "Requestor",
        "description": "Raises work permits and tracks their own requests",
        "permissions": ["permits.view", "permits.create", "permits.edit"],
    },
]


def seed_default_roles(db: Session) -> int:
    """Create any missing built-in role. Returns the number created."""
    created = 0
    for data in DEFAULT_ROLES:
        exists = db.query(Role).filter(Role.name == data["name"]).first()
        if exists:
            if not exists.is_system:
                exists.is_system = True
            continue
        db.add(Role(is_system=True, **data))
        created += 1
    db.commit()
    if created:
        logger.info("roles_seeded", created=created)
    return created


def get_role(db: Session, name: Optional[str]) -> Optional[Role]:
    if not name:
        return None
    return db.query(Role).filter(Role.name == name.upper()).first()


def get_default_role(db: Session) -> Optional[Role]:
    return get_role(db, settings.default_role)


def requires_admin_approval(role_name: Optional[str]) -> bool:
    """Only the default role is granted without an admin's approval."""
    if not role_name:
        return False
    return role_name.upper() != settings.default_role.upper()


def normalize_role_name(name: str) -> str:
    return "_".join(name.strip().upper().split())

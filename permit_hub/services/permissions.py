"""
Permit capability checks.

Every permit route asks one question: may this actor perform this action on a
permit owned by owner_id that is currently in resource_status? The answer
carries the HTTP status and message to surface on denial.
"""
from dataclasses import dataclass
from typing import Optional
import uuid

from fastapi import HTTPException

from ..auth.security import ADMIN, SAFETY_OFFICER, REQUESTOR

VIEW = "view"
UPDATE = "update"
DELETE = "delete"
MEASURES = "measures"
EXTEND = "extend"
CLOSE = "close"
DECIDE = "decide"

ACTIVE_STATUSES = {"APPROVED", "EXTENDED"}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status_code: int = 200
    message: str = ""

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise HTTPException(status_code=self.status_code, detail=self.message)


ALLOW = Decision(True)


def _deny(status_code: int, message: str) -> Decision:
    return Decision(False, status_code, message)


def check_permit_capability(
    action: str,
    actor_role: str,
    actor_id: Optional[uuid.UUID],
    resource_owner_id: Optional[uuid.UUID],
    resource_status: Optional[str],
) -> Decision:
    is_owner = actor_id is not None and str(actor_id) == str(resource_owner_id)
    is_reviewer = actor_role in (SAFETY_OFFICER, ADMIN)

    # Requestors only ever touch their own permits
    if actor_role == REQUESTOR and not is_owner:
        return _deny(403, "Access denied")

    if action == VIEW:
        return ALLOW

    if action in (UPDATE, DELETE):
        if actor_role not in (REQUESTOR, SAFETY_OFFICER, ADMIN):
            return _deny(403, "Access denied")
        if resource_status != "PENDING" and actor_role != ADMIN:
            verb = "update" if action == UPDATE else "delete"
            return _deny(400, f"Cannot {verb} permit that is already processed")
        return ALLOW

    if action == MEASURES:
        if is_reviewer:
            return ALLOW
        if actor_role != REQUESTOR:
            return _deny(403, "Access denied")
        if resource_status != "PENDING":
            return _deny(400, "Safety measures can only be changed while the permit is pending")
        return ALLOW

    if action == EXTEND:
        if not is_reviewer:
            return _deny(403, "Access denied")
        if resource_status not in ACTIVE_STATUSES:
            return _deny(400, "Only approved permits can be extended")
        return ALLOW

    if action == CLOSE:
        if not (is_reviewer or (actor_role == REQUESTOR and is_owner)):
            return _deny(403, "Access denied")
        if resource_status not in ACTIVE_STATUSES:
            return _deny(400, "Only approved permits can be closed")
        return ALLOW

    if action == DECIDE:
        if not is_reviewer:
            return _deny(403, "Access denied")
        return ALLOW

    return _deny(403, "Access denied")


def ensure_permit_capability(action: str, user, permit) -> None:
    check_permit_capability(
        action,
        actor_role=user.role_name,
        actor_id=user.id,
        resource_owner_id=permit.created_by,
        resource_status=permit.status,
    ).raise_for_denial()

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Float,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Postgres hands back aware timestamps, SQLite naive ones; compare as naive UTC."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(String(255))
    permissions: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="role", foreign_keys="User.role_id")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(100))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("roles.id", ondelete="SET NULL"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Elevated roles wait for an admin before the account may log in
    is_approved: Mapped[bool] = mapped_column(Boolean, default=True)
    requested_role: Mapped[Optional[str]] = mapped_column(String(100))
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    role = relationship("Role", back_populates="users", foreign_keys=[role_id])
    permits = relationship("PermitRequest", back_populates="creator")

    @property
    def role_name(self) -> str:
        return self.role.name if self.role else ""

    @property
    def full_name(self) -> str:
        return " ".join(p for p in [self.first_name, self.last_name] if p).strip()


class PermitRequest(Base):
    __tablename__ = "permit_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    permit_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(500), nullable=False)
    work_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False, index=True)  # PENDING|APPROVED|REJECTED|CLOSED|EXTENDED
    priority: Mapped[str] = mapped_column(String(20), default="MEDIUM", nullable=False)  # LOW|MEDIUM|HIGH|CRITICAL
    # List fields are kept as JSON text for compatibility with rows written by the previous system
    hazards: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    precautions: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    equipment: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    measures: Mapped[str] = mapped_column(Text, default="[]", nullable=False)  # [{id, question, answer}]
    workers: Mapped[str] = mapped_column(Text, default="[]", nullable=False)  # [{name, phone, company, trade, badgeNumber}]
    contractor_name: Mapped[Optional[str]] = mapped_column(String(255))
    contractor_phone: Mapped[Optional[str]] = mapped_column(String(50))
    company_name: Mapped[Optional[str]] = mapped_column(String(255))
    timezone: Mapped[Optional[str]] = mapped_column(String(100), default="Asia/Calcutta")
    is_extended: Mapped[bool] = mapped_column(Boolean, default=False)
    extended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    extension_reason: Mapped[Optional[str]] = mapped_column(String(1000))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    closure_remarks: Mapped[Optional[str]] = mapped_column(String(1000))
    created_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator = relationship("User", back_populates="permits")
    approvals = relationship(
        "PermitApproval",
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="PermitApproval.created_at",
    )
    registered_workers = relationship(
        "Worker",
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="Worker.registered_at",
    )


class PermitApproval(Base):
    __tablename__ = "permit_approvals"

    id: Mapped[uuid.UUID] = uuid_pk()
    permit_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("permit_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_role: Mapped[str] = mapped_column(String(100), nullable=False, default="SAFETY_OFFICER")
    approver_name: Mapped[Optional[str]] = mapped_column(String(255))
    decision: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False, index=True)  # PENDING|APPROVED|REJECTED
    comment: Mapped[Optional[str]] = mapped_column(Text)
    signature: Mapped[Optional[str]] = mapped_column(Text)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    permit = relationship("PermitRequest", back_populates="approvals")


class Worker(Base):
    """Contractor personnel registered against a permit through the public QR flow"""
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = uuid_pk()
    permit_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("permit_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    company: Mapped[Optional[str]] = mapped_column(String(255))
    trade: Mapped[Optional[str]] = mapped_column(String(100))
    badge_number: Mapped[Optional[str]] = mapped_column(String(100))
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    permit = relationship("PermitRequest", back_populates="registered_workers")


class AuditLog(Base):
    """Append-only audit log of state-changing actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # PERMIT_CREATED|PERMIT_APPROVED|USER_LOGIN|...
    entity: Mapped[str] = mapped_column(String(50), nullable=False)  # PermitRequest|PermitApproval|User|Role|MeterReading
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    old_value: Mapped[Optional[dict]] = mapped_column(JSON)
    new_value: Mapped[Optional[dict]] = mapped_column(JSON)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity', 'entity_id'),
        Index('idx_audit_user', 'user_id', 'created_at'),
    )


class OtpCode(Base):
    """Shared OTP storage so every API instance sees the same codes"""
    __tablename__ = "otp_codes"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    code: Mapped[str] = mapped_column(String(12), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class MeterReading(Base):
    __tablename__ = "meter_readings"

    id: Mapped[uuid.UUID] = uuid_pk()
    meter_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    meter_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # electricity|water|gas|transmitter|temperature|pressure
    location: Mapped[Optional[str]] = mapped_column(String(255))
    reading_value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    reading_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    previous_value: Mapped[Optional[float]] = mapped_column(Float)
    consumption: Mapped[Optional[float]] = mapped_column(Float)
    notes: Mapped[Optional[str]] = mapped_column(String(1000))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('idx_meter_readings_meter_date', 'meter_name', 'reading_date'),
    )

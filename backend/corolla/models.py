import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base

GRANT_STATUS_ACTIVE = "active"
GRANT_STATUS_REMOVED = "removed"
# instance_scope value stored for grants that apply to every instance
ALL_INSTANCES_SCOPE = "all"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def instance_scope_for(instance_id) -> str:
    """Return the uniqueness key component for an optional instance id."""

    return str(instance_id) if instance_id else ALL_INSTANCES_SCOPE


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False, default="")
    is_admin = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)

    owned_systems = relationship("SystemOwner", back_populates="user")


class System(Base):
    __tablename__ = "systems"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    tiers = relationship(
        "AccessTier",
        back_populates="system",
        cascade="all, delete-orphan",
        order_by="AccessTier.name",
    )
    instances = relationship(
        "Instance",
        back_populates="system",
        cascade="all, delete-orphan",
        order_by="Instance.name",
    )
    owners = relationship("SystemOwner", back_populates="system", cascade="all, delete-orphan")


class Instance(Base):
    __tablename__ = "instances"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    system_id = Column(UUID(as_uuid=True), ForeignKey("systems.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    system = relationship("System", back_populates="instances")

    __table_args__ = (sa.UniqueConstraint("system_id", "name", name="uq_instances_system_name"),)


class AccessTier(Base):
    __tablename__ = "access_tiers"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    system_id = Column(UUID(as_uuid=True), ForeignKey("systems.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    system = relationship("System", back_populates="tiers")

    __table_args__ = (sa.UniqueConstraint("system_id", "name", name="uq_access_tiers_system_name"),)


class SystemOwner(Base):
    __tablename__ = "system_owners"
    system_id = Column(UUID(as_uuid=True), ForeignKey("systems.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), primary_key=True)
    created_at = Column(DateTime, default=_utcnow)

    system = relationship("System", back_populates="owners")
    user = relationship("User", back_populates="owned_systems")


class AccessGrant(Base):
    __tablename__ = "access_grants"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    system_id = Column(UUID(as_uuid=True), ForeignKey("systems.id"), nullable=False)
    tier_id = Column(UUID(as_uuid=True), ForeignKey("access_tiers.id"), nullable=False)
    instance_id = Column(UUID(as_uuid=True), ForeignKey("instances.id"), nullable=True)
    # purpose: non-null mirror of instance_id so the active-tuple index treats
    # "all instances" as its own key value
    instance_scope = Column(String, nullable=False, default=ALL_INSTANCES_SCOPE)
    status = Column(String, nullable=False, default=GRANT_STATUS_ACTIVE)
    granted_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    granted_at = Column(DateTime, nullable=False, default=_utcnow)
    removed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", foreign_keys=[user_id])
    grantor = relationship("User", foreign_keys=[granted_by])
    system = relationship("System")
    tier = relationship("AccessTier")
    instance = relationship("Instance")

    __table_args__ = (
        sa.CheckConstraint("status IN ('active', 'removed')", name="ck_access_grants_status"),
        sa.Index(
            "uq_access_grants_active_tuple",
            "user_id",
            "system_id",
            "tier_id",
            "instance_scope",
            unique=True,
            sqlite_where=sa.text("status = 'active'"),
            postgresql_where=sa.text("status = 'active'"),
        ),
        sa.Index("ix_access_grants_granted_at", "granted_at"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=_utcnow)

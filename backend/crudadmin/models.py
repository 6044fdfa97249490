# SPDX-License-Identifier: Apache-2.0

import datetime
import enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .db import Base


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="1", default=True)
    roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    admin_logs = relationship("AdminAuditLog", back_populates="admin_user")

    def __str__(self) -> str:
        return self.email

    def has_role(self, role: str) -> bool:
        return role in (self.roles or [])


class AdminAuditLog(Base):
    __tablename__ = "admin_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    admin_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    admin_code: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    target_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    admin_user = relationship("User", back_populates="admin_logs")


class RevisionType(str, enum.Enum):
    INSERT = "INS"
    UPDATE = "UPD"
    DELETE = "DEL"


class AuditRevision(Base):
    """One snapshot of an audited object, written on flush."""

    __tablename__ = "audit_revisions"
    __table_args__ = (Index("ix_audit_revisions_object", "object_class", "object_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    object_class: Mapped[str] = mapped_column(String(255), nullable=False)
    object_id: Mapped[str] = mapped_column(String(255), nullable=False)
    revision_type: Mapped[str] = mapped_column(String(3), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.timezone.utc),
    )


class AclIdentityType(str, enum.Enum):
    USER = "user"
    ROLE = "role"


class AclEntry(Base):
    """Object-level permission mask granted to a user or a role."""

    __tablename__ = "acl_entries"
    __table_args__ = (Index("ix_acl_entries_object", "object_class", "object_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    object_class: Mapped[str] = mapped_column(String(255), nullable=False)
    object_id: Mapped[str] = mapped_column(String(255), nullable=False)
    identity_type: Mapped[str] = mapped_column(String(10), nullable=False)
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    mask: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

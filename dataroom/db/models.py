"""
SQLAlchemy Database Models
Data rooms, groups, users, resources and their permission rows
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dataroom.db.base import Base, TimestampMixin, UUIDMixin
from dataroom.models.enums import AccessType, GroupType, UserStatus


class DataRoom(UUIDMixin, TimestampMixin, Base):
    """Data room SQLAlchemy model"""

    __tablename__ = "data_rooms"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    groups: Mapped[List["Group"]] = relationship(
        "Group",
        back_populates="data_room",
        cascade="all, delete-orphan",
    )


class Group(UUIDMixin, TimestampMixin, Base):
    """Group of participants inside one data room"""

    __tablename__ = "groups"

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[GroupType] = mapped_column(
        Enum(GroupType, name="group_type"),
        nullable=False,
        default=GroupType.USER,
    )

    # Capability flags (ADMINISTRATOR groups ignore them)
    can_view_due_diligence_checklist: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_manage_document_permissions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_view_group_users: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_manage_users: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_view_group_activity: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    data_room: Mapped["DataRoom"] = relationship("DataRoom", back_populates="groups")
    members: Mapped[List["GroupMember"]] = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
    )


class GroupMember(UUIDMixin, TimestampMixin, Base):
    """Membership of a user in a group; written by the invitation flow"""

    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),)

    group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    group: Mapped["Group"] = relationship("Group", back_populates="members")


class User(UUIDMixin, TimestampMixin, Base):
    """Room-independent user account"""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, name="user_status"),
        nullable=False,
        default=UserStatus.PENDING_INVITE,
    )
    access_type: Mapped[AccessType] = mapped_column(
        Enum(AccessType, name="access_type"),
        nullable=False,
        default=AccessType.UNLIMITED,
    )
    access_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    access_end_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    allowed_ips: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)  # IPs and CIDR blocks
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Folder(UUIDMixin, TimestampMixin, Base):
    """Folder SQLAlchemy model"""

    __tablename__ = "folders"

    data_room_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Document(UUIDMixin, TimestampMixin, Base):
    """Document SQLAlchemy model"""

    __tablename__ = "documents"

    data_room_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    folder_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("folders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(512), nullable=False)


class CapabilityColumnsMixin:
    """The seven resource capabilities, all defaulting to denied"""

    can_fence: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_view: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_download_encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_download_pdf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_download_original: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_upload: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_manage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class DocumentGroupPermission(UUIDMixin, TimestampMixin, CapabilityColumnsMixin, Base):
    """Group ACL row for a document"""

    __tablename__ = "document_group_permissions"
    __table_args__ = (
        UniqueConstraint("document_id", "group_id", name="uq_document_group_permissions"),
    )

    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class DocumentUserPermission(UUIDMixin, TimestampMixin, CapabilityColumnsMixin, Base):
    """Per-user override for a document"""

    __tablename__ = "document_user_permissions"
    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_document_user_permissions"),
    )

    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class FolderGroupPermission(UUIDMixin, TimestampMixin, CapabilityColumnsMixin, Base):
    """Group ACL row for a folder"""

    __tablename__ = "folder_group_permissions"
    __table_args__ = (
        UniqueConstraint("folder_id", "group_id", name="uq_folder_group_permissions"),
    )

    folder_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class FolderUserPermission(UUIDMixin, TimestampMixin, CapabilityColumnsMixin, Base):
    """Per-user override for a folder"""

    __tablename__ = "folder_user_permissions"
    __table_args__ = (
        UniqueConstraint("folder_id", "user_id", name="uq_folder_user_permissions"),
    )

    folder_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

"""
Permission Service
Document and folder ACL resolution and management

Effective capabilities are resolved in two explicit passes: an OR-fold over
the ACL rows of every group the user belongs to, then a per-user override
row that replaces the folded result outright. The resolved can_manage is
finally gated on room-level document permission management authority.
"""

import uuid
from typing import Any, List, Mapping, NamedTuple, Optional, Type, Union

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from dataroom.core.exceptions import AuthorizationException, ValidationException
from dataroom.core.logging import get_logger
from dataroom.core.roles import RoomAuthorization
from dataroom.db.base import utcnow
from dataroom.db.models import (
    Document,
    DocumentGroupPermission,
    DocumentUserPermission,
    Folder,
    FolderGroupPermission,
    FolderUserPermission,
    Group,
    GroupMember,
)
from dataroom.models.enums import DownloadFormat
from dataroom.models.permission import (
    CAPABILITIES,
    DocumentPermissions,
    FolderPermissions,
    PermissionUpdate,
)

logger = get_logger(__name__)

PartialPermissions = Union[PermissionUpdate, Mapping[str, Any]]


class ResourceTables(NamedTuple):
    """Tables backing one kind of permission-bearing resource"""

    kind: str
    resource: Any
    group_permission: Any
    user_permission: Any
    key: str
    permissions: Type[DocumentPermissions]


DOCUMENT_TABLES = ResourceTables(
    kind="document",
    resource=Document,
    group_permission=DocumentGroupPermission,
    user_permission=DocumentUserPermission,
    key="document_id",
    permissions=DocumentPermissions,
)

FOLDER_TABLES = ResourceTables(
    kind="folder",
    resource=Folder,
    group_permission=FolderGroupPermission,
    user_permission=FolderUserPermission,
    key="folder_id",
    permissions=FolderPermissions,
)

DOWNLOAD_CAPABILITIES = {
    DownloadFormat.ENCRYPTED: "can_download_encrypted",
    DownloadFormat.PDF: "can_download_pdf",
    DownloadFormat.ORIGINAL: "can_download_original",
}


def _download_capability(format: Union[str, DownloadFormat]) -> Optional[str]:
    try:
        return DOWNLOAD_CAPABILITIES[DownloadFormat(format)]
    except ValueError:
        return None


class PermissionResolver:
    """Resolve and manage per-resource capabilities"""

    # ============================================
    # Data access
    # ============================================

    @staticmethod
    async def get_resource_room_id(
        db: AsyncSession,
        tables: ResourceTables,
        resource_id: uuid.UUID,
    ) -> Optional[uuid.UUID]:
        """Owning data room of a document or folder, None if missing"""
        result = await db.execute(
            select(tables.resource.data_room_id).where(tables.resource.id == resource_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_group_permission_rows(
        db: AsyncSession,
        tables: ResourceTables,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
        resource_id: uuid.UUID,
    ) -> List[Any]:
        """ACL rows on this resource for every group of the user in the room"""
        model = tables.group_permission
        result = await db.execute(
            select(model)
            .join(Group, Group.id == model.group_id)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(
                Group.data_room_id == data_room_id,
                GroupMember.user_id == user_id,
                getattr(model, tables.key) == resource_id,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_user_override(
        db: AsyncSession,
        tables: ResourceTables,
        user_id: uuid.UUID,
        resource_id: uuid.UUID,
    ) -> Optional[Any]:
        model = tables.user_permission
        result = await db.execute(
            select(model).where(
                getattr(model, tables.key) == resource_id,
                model.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    # ============================================
    # Resolution
    # ============================================

    @staticmethod
    async def resolve(
        db: AsyncSession,
        tables: ResourceTables,
        user_id: uuid.UUID,
        resource_id: uuid.UUID,
    ) -> DocumentPermissions:
        """
        Effective capabilities of a user on a document or folder

        Args:
            db: Database session
            tables: DOCUMENT_TABLES or FOLDER_TABLES
            user_id: User to resolve for
            resource_id: Document or folder ID

        Returns:
            The resource kind's permission set; all-false when the resource
            is missing or not attached to a data room
        """
        permission_cls = tables.permissions

        data_room_id = await PermissionResolver.get_resource_room_id(db, tables, resource_id)
        if data_room_id is None:
            logger.debug(f"{tables.kind} {resource_id} has no data room, denying all")
            return permission_cls.none()

        if await RoomAuthorization.is_administrator(db, user_id, data_room_id):
            logger.debug(f"Administrator {user_id} granted all on {tables.kind} {resource_id}")
            return permission_cls.all()

        # Pass 1: OR across group rows
        permissions = permission_cls.none()
        rows = await PermissionResolver.get_group_permission_rows(
            db, tables, user_id, data_room_id, resource_id
        )
        for row in rows:
            permissions = permissions.merge(permission_cls.from_row(row))

        # Pass 2: user override replaces the group result
        override = await PermissionResolver.get_user_override(db, tables, user_id, resource_id)
        if override is not None:
            permissions = permission_cls.from_row(override)

        if permissions.can_manage and not await RoomAuthorization.can_manage_document_permissions(
            db, user_id, data_room_id
        ):
            logger.debug(f"User {user_id} lacks room authority, can_manage dropped on {tables.kind} {resource_id}")
            permissions = permissions.model_copy(update={"can_manage": False})

        logger.debug(
            f"User {user_id} on {tables.kind} {resource_id}: {permissions.granted()} "
            f"({len(rows)} group rows, override={'yes' if override is not None else 'no'})"
        )
        return permissions

    @staticmethod
    async def get_document_permissions(
        db: AsyncSession,
        user_id: uuid.UUID,
        document_id: uuid.UUID,
    ) -> DocumentPermissions:
        return await PermissionResolver.resolve(db, DOCUMENT_TABLES, user_id, document_id)

    @staticmethod
    async def get_folder_permissions(
        db: AsyncSession,
        user_id: uuid.UUID,
        folder_id: uuid.UUID,
    ) -> FolderPermissions:
        return await PermissionResolver.resolve(db, FOLDER_TABLES, user_id, folder_id)

    # ============================================
    # Derived checks
    # ============================================

    @staticmethod
    async def can_view_document(db: AsyncSession, user_id: uuid.UUID, document_id: uuid.UUID) -> bool:
        """Fencing implies at least a constrained view"""
        permissions = await PermissionResolver.get_document_permissions(db, user_id, document_id)
        return permissions.can_view or permissions.can_fence

    @staticmethod
    async def can_download_document(
        db: AsyncSession,
        user_id: uuid.UUID,
        document_id: uuid.UUID,
        format: Union[str, DownloadFormat] = DownloadFormat.ORIGINAL,
    ) -> bool:
        capability = _download_capability(format)
        if capability is None:
            return False
        permissions = await PermissionResolver.get_document_permissions(db, user_id, document_id)
        return getattr(permissions, capability)

    @staticmethod
    async def can_manage_document(db: AsyncSession, user_id: uuid.UUID, document_id: uuid.UUID) -> bool:
        permissions = await PermissionResolver.get_document_permissions(db, user_id, document_id)
        return permissions.can_manage

    @staticmethod
    async def can_view_folder(db: AsyncSession, user_id: uuid.UUID, folder_id: uuid.UUID) -> bool:
        permissions = await PermissionResolver.get_folder_permissions(db, user_id, folder_id)
        return permissions.can_view or permissions.can_fence

    @staticmethod
    async def can_download_folder(
        db: AsyncSession,
        user_id: uuid.UUID,
        folder_id: uuid.UUID,
        format: Union[str, DownloadFormat] = DownloadFormat.ORIGINAL,
    ) -> bool:
        capability = _download_capability(format)
        if capability is None:
            return False
        permissions = await PermissionResolver.get_folder_permissions(db, user_id, folder_id)
        return getattr(permissions, capability)

    @staticmethod
    async def can_manage_folder(db: AsyncSession, user_id: uuid.UUID, folder_id: uuid.UUID) -> bool:
        permissions = await PermissionResolver.get_folder_permissions(db, user_id, folder_id)
        return permissions.can_manage

    @staticmethod
    async def require_document_permission(
        db: AsyncSession,
        user_id: uuid.UUID,
        document_id: uuid.UUID,
        permission: str,
    ) -> DocumentPermissions:
        """
        Require a document capability or raise

        Raises:
            ValidationException: If the capability name is unknown
            AuthorizationException: If the user does not hold it
        """
        if permission not in CAPABILITIES:
            raise ValidationException(
                message="Invalid permission type",
                details={"permission": permission, "valid_permissions": list(CAPABILITIES)},
            )

        permissions = await PermissionResolver.get_document_permissions(db, user_id, document_id)
        if not getattr(permissions, permission):
            raise AuthorizationException(
                message=f"Access denied: Missing '{permission}' permission",
                details={
                    "document_id": str(document_id),
                    "required_permission": permission,
                },
            )
        return permissions

    # ============================================
    # Mutators
    # ============================================

    @staticmethod
    async def _upsert(
        db: AsyncSession,
        model: Any,
        key: Mapping[str, uuid.UUID],
        permissions: PartialPermissions,
    ) -> None:
        changes = PermissionUpdate.coerce(permissions).changes()
        now = utcnow()

        # New rows start all-false; existing rows only take the given fields
        values = {name: False for name in CAPABILITIES}
        values.update(changes)
        values.update(key)

        stmt = pg_insert(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(key),
            set_={**changes, "updated_at": now},
        )
        await db.execute(stmt)
        await db.commit()

    @staticmethod
    async def _remove(db: AsyncSession, model: Any, key: Mapping[str, uuid.UUID]) -> None:
        await db.execute(
            delete(model).where(*(getattr(model, column) == value for column, value in key.items()))
        )
        await db.commit()

    @staticmethod
    async def set_document_group_permissions(
        db: AsyncSession,
        document_id: uuid.UUID,
        group_id: uuid.UUID,
        permissions: PartialPermissions,
    ) -> None:
        """Create or merge the group ACL row of a document"""
        await PermissionResolver._upsert(
            db, DocumentGroupPermission, {"document_id": document_id, "group_id": group_id}, permissions
        )
        logger.info(f"Set permissions for group {group_id} on document {document_id}")

    @staticmethod
    async def set_document_user_permissions(
        db: AsyncSession,
        document_id: uuid.UUID,
        user_id: uuid.UUID,
        permissions: PartialPermissions,
    ) -> None:
        """Create or merge the per-user override of a document"""
        await PermissionResolver._upsert(
            db, DocumentUserPermission, {"document_id": document_id, "user_id": user_id}, permissions
        )
        logger.info(f"Set override for user {user_id} on document {document_id}")

    @staticmethod
    async def remove_document_group_permissions(
        db: AsyncSession,
        document_id: uuid.UUID,
        group_id: uuid.UUID,
    ) -> None:
        await PermissionResolver._remove(
            db, DocumentGroupPermission, {"document_id": document_id, "group_id": group_id}
        )
        logger.info(f"Removed permissions for group {group_id} on document {document_id}")

    @staticmethod
    async def remove_document_user_permissions(
        db: AsyncSession,
        document_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        """Drop the override; resolution falls back to the group result"""
        await PermissionResolver._remove(
            db, DocumentUserPermission, {"document_id": document_id, "user_id": user_id}
        )
        logger.info(f"Removed override for user {user_id} on document {document_id}")

    @staticmethod
    async def set_folder_group_permissions(
        db: AsyncSession,
        folder_id: uuid.UUID,
        group_id: uuid.UUID,
        permissions: PartialPermissions,
    ) -> None:
        await PermissionResolver._upsert(
            db, FolderGroupPermission, {"folder_id": folder_id, "group_id": group_id}, permissions
        )
        logger.info(f"Set permissions for group {group_id} on folder {folder_id}")

    @staticmethod
    async def set_folder_user_permissions(
        db: AsyncSession,
        folder_id: uuid.UUID,
        user_id: uuid.UUID,
        permissions: PartialPermissions,
    ) -> None:
        await PermissionResolver._upsert(
            db, FolderUserPermission, {"folder_id": folder_id, "user_id": user_id}, permissions
        )
        logger.info(f"Set override for user {user_id} on folder {folder_id}")

    @staticmethod
    async def remove_folder_group_permissions(
        db: AsyncSession,
        folder_id: uuid.UUID,
        group_id: uuid.UUID,
    ) -> None:
        await PermissionResolver._remove(
            db, FolderGroupPermission, {"folder_id": folder_id, "group_id": group_id}
        )
        logger.info(f"Removed permissions for group {group_id} on folder {folder_id}")

    @staticmethod
    async def remove_folder_user_permissions(
        db: AsyncSession,
        folder_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        await PermissionResolver._remove(
            db, FolderUserPermission, {"folder_id": folder_id, "user_id": user_id}
        )
        logger.info(f"Removed override for user {user_id} on folder {folder_id}")

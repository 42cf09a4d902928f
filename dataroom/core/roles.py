"""
Room Role Service
Room-scoped capabilities derived from group membership

Every predicate loads all of the user's groups in the room with one query and
folds the rule across the whole set, since several memberships may each
contribute a capability. ADMINISTRATOR membership grants everything.
"""

import uuid
from typing import Callable, List, Optional, Sequence, Type, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dataroom.core.logging import get_logger
from dataroom.db.models import Group, GroupMember
from dataroom.models.enums import ActivityScope, GroupType, ManageUsersScope, VDRPermission

logger = get_logger(__name__)

ScopeT = TypeVar("ScopeT", ManageUsersScope, ActivityScope)


# ============================================
# Folds over a user's group set
# ============================================

def holds_administrator(groups: Sequence[Group]) -> bool:
    return any(group.type == GroupType.ADMINISTRATOR for group in groups)


def holds_due_diligence_checklist(groups: Sequence[Group]) -> bool:
    return holds_administrator(groups) or any(
        group.can_view_due_diligence_checklist for group in groups
    )


def holds_manage_document_permissions(groups: Sequence[Group]) -> bool:
    # USER groups never grant this; their flag is not read
    return holds_administrator(groups) or any(
        group.type == GroupType.CUSTOM and group.can_manage_document_permissions
        for group in groups
    )


def holds_view_group_users(groups: Sequence[Group]) -> bool:
    return holds_administrator(groups) or any(
        group.type == GroupType.CUSTOM
        or (group.type == GroupType.USER and group.can_view_group_users)
        for group in groups
    )


def holds_manage_users(groups: Sequence[Group], scope: ManageUsersScope) -> bool:
    if holds_administrator(groups):
        return True
    if scope != ManageUsersScope.GROUP:
        return False
    return any(
        group.type == GroupType.CUSTOM and group.can_manage_users for group in groups
    )


def holds_view_activity(groups: Sequence[Group], scope: ActivityScope) -> bool:
    if scope == ActivityScope.SELF:
        return True
    if scope == ActivityScope.ALL:
        return holds_administrator(groups)
    return holds_administrator(groups) or any(
        group.can_view_group_activity for group in groups
    )


# Tag -> fold. Own activity leads, the rest follow VDRPermission declaration order
PERMISSION_FOLDS: List[tuple] = [
    (VDRPermission.VIEW_OWN_ACTIVITY, lambda groups: True),
    (VDRPermission.MANAGE_PROJECT_SETTINGS, holds_administrator),
    (VDRPermission.ACCESS_RECYCLE_BIN, holds_administrator),
    (VDRPermission.MANAGE_QA, holds_administrator),
    (VDRPermission.VIEW_DUE_DILIGENCE_CHECKLIST, holds_due_diligence_checklist),
    (VDRPermission.VIEW_ALL_DOCUMENTS, holds_administrator),
    (VDRPermission.MANAGE_DOCUMENT_PERMISSIONS, holds_manage_document_permissions),
    (VDRPermission.AI_SEARCH, holds_administrator),
    (VDRPermission.CREATE_GROUPS_INVITE_USERS, holds_administrator),
    (VDRPermission.MANAGE_ALL_GROUPS_USERS, holds_administrator),
    (VDRPermission.VIEW_GROUP_USERS, holds_view_group_users),
    (VDRPermission.MANAGE_USERS, lambda groups: holds_manage_users(groups, ManageUsersScope.GROUP)),
    (VDRPermission.VIEW_ALL_ACTIVITY, lambda groups: holds_view_activity(groups, ActivityScope.ALL)),
    (VDRPermission.VIEW_GROUP_ACTIVITY, lambda groups: holds_view_activity(groups, ActivityScope.GROUP)),
]


def _coerce_scope(enum_cls: Type[ScopeT], scope: Union[str, ScopeT]) -> Optional[ScopeT]:
    try:
        return enum_cls(scope)
    except ValueError:
        return None


class RoomAuthorization:
    """Answer room-scoped capability questions from group membership"""

    @staticmethod
    async def get_user_groups(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
    ) -> List[Group]:
        """All groups of the room that the user is a member of"""
        result = await db.execute(
            select(Group)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(
                Group.data_room_id == data_room_id,
                GroupMember.user_id == user_id,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def _fold(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
        rule: Callable[[Sequence[Group]], bool],
        label: str,
    ) -> bool:
        groups = await RoomAuthorization.get_user_groups(db, user_id, data_room_id)
        granted = rule(groups)
        logger.debug(
            f"User {user_id} {'granted' if granted else 'denied'} {label} "
            f"in data room {data_room_id} ({len(groups)} groups)"
        )
        return granted

    @staticmethod
    async def has_group_type(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
        group_type: GroupType,
    ) -> bool:
        groups = await RoomAuthorization.get_user_groups(db, user_id, data_room_id)
        return any(group.type == group_type for group in groups)

    @staticmethod
    async def is_administrator(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization._fold(
            db, user_id, data_room_id, holds_administrator, "administrator"
        )

    # Administrator-only capabilities. There is no per-room configuration for
    # these yet, so they are plain aliases of is_administrator.

    @staticmethod
    async def can_manage_project_settings(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    @staticmethod
    async def can_access_recycle_bin(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    @staticmethod
    async def can_manage_qa(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    @staticmethod
    async def can_view_all_documents(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    @staticmethod
    async def can_use_ai_search(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        # TODO: honour a project-level AI search flag once data rooms carry one
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    @staticmethod
    async def can_create_groups_invite_users(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    @staticmethod
    async def can_manage_all_groups_users(db: AsyncSession, user_id: uuid.UUID, data_room_id: uuid.UUID) -> bool:
        return await RoomAuthorization.is_administrator(db, user_id, data_room_id)

    # Flag-driven capabilities

    @staticmethod
    async def can_view_due_diligence_checklist(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
    ) -> bool:
        """ADMINISTRATOR always; USER and CUSTOM by group flag"""
        return await RoomAuthorization._fold(
            db, user_id, data_room_id, holds_due_diligence_checklist, "view_due_diligence_checklist"
        )

    @staticmethod
    async def can_manage_document_permissions(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
    ) -> bool:
        """ADMINISTRATOR always; CUSTOM by group flag; USER never"""
        return await RoomAuthorization._fold(
            db, user_id, data_room_id, holds_manage_document_permissions, "manage_document_permissions"
        )

    @staticmethod
    async def can_view_group_users(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
    ) -> bool:
        """ADMINISTRATOR and CUSTOM always; USER by group flag"""
        return await RoomAuthorization._fold(
            db, user_id, data_room_id, holds_view_group_users, "view_group_users"
        )

    @staticmethod
    async def can_manage_users(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
        scope: Union[str, ManageUsersScope] = ManageUsersScope.ALL,
    ) -> bool:
        """
        Check user management authority

        Args:
            scope: "all" for any user in the room (administrators only),
                "group" for users of the caller's own group (administrators,
                or CUSTOM groups with can_manage_users)
        """
        resolved = _coerce_scope(ManageUsersScope, scope)
        if resolved is None:
            logger.warning(f"Unknown manage-users scope {scope!r}, denying")
            return False
        return await RoomAuthorization._fold(
            db,
            user_id,
            data_room_id,
            lambda groups: holds_manage_users(groups, resolved),
            f"manage_users[{resolved.value}]",
        )

    @staticmethod
    async def can_view_activity(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
        scope: Union[str, ActivityScope],
    ) -> bool:
        """
        Check access to activity reports

        Args:
            scope: "self" (always allowed), "group" (administrators or groups
                with can_view_group_activity) or "all" (administrators only)
        """
        resolved = _coerce_scope(ActivityScope, scope)
        if resolved is None:
            logger.warning(f"Unknown activity scope {scope!r}, denying")
            return False
        if resolved == ActivityScope.SELF:
            return True
        return await RoomAuthorization._fold(
            db,
            user_id,
            data_room_id,
            lambda groups: holds_view_activity(groups, resolved),
            f"view_activity[{resolved.value}]",
        )

    @staticmethod
    async def get_user_vdr_permissions(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
    ) -> List[VDRPermission]:
        """
        Evaluate every room-level capability for a user

        Returns:
            Granted permission tags, VIEW_OWN_ACTIVITY first and always present
        """
        groups = await RoomAuthorization.get_user_groups(db, user_id, data_room_id)
        permissions = [tag for tag, rule in PERMISSION_FOLDS if rule(groups)]
        logger.debug(
            f"User {user_id} holds {len(permissions)} room permissions in data room {data_room_id}"
        )
        return permissions

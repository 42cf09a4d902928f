"""
Enumerations
Group types, user lifecycle states and room-level permission tags
"""

import enum


class GroupType(str, enum.Enum):
    """Role semantics of a data room group"""

    ADMINISTRATOR = "ADMINISTRATOR"
    USER = "USER"
    CUSTOM = "CUSTOM"


class UserStatus(str, enum.Enum):
    """Account lifecycle state, driven by the invitation and admin flows"""

    PENDING_INVITE = "PENDING_INVITE"
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"
    EXPIRED = "EXPIRED"


class AccessType(str, enum.Enum):
    """Whether access is bounded by a start/end window"""

    UNLIMITED = "UNLIMITED"
    LIMITED = "LIMITED"


class VDRPermission(str, enum.Enum):
    """Room-level permission tags"""

    # Project management
    MANAGE_PROJECT_SETTINGS = "manage_project_settings"
    ACCESS_RECYCLE_BIN = "access_recycle_bin"
    MANAGE_QA = "manage_qa"
    VIEW_DUE_DILIGENCE_CHECKLIST = "view_due_diligence_checklist"

    # Documents
    VIEW_ALL_DOCUMENTS = "view_all_documents"
    MANAGE_DOCUMENT_PERMISSIONS = "manage_document_permissions"
    AI_SEARCH = "ai_search"

    # Participants
    CREATE_GROUPS_INVITE_USERS = "create_groups_invite_users"
    MANAGE_ALL_GROUPS_USERS = "manage_all_groups_users"
    VIEW_GROUP_USERS = "view_group_users"
    MANAGE_USERS = "manage_users"

    # Reports
    VIEW_ALL_ACTIVITY = "view_all_activity"
    VIEW_OWN_ACTIVITY = "view_own_activity"
    VIEW_GROUP_ACTIVITY = "view_group_activity"


class DownloadFormat(str, enum.Enum):
    """Download variants, each gated by its own capability"""

    ENCRYPTED = "encrypted"
    PDF = "pdf"
    ORIGINAL = "original"


class ManageUsersScope(str, enum.Enum):
    ALL = "all"
    GROUP = "group"


class ActivityScope(str, enum.Enum):
    SELF = "self"
    GROUP = "group"
    ALL = "all"

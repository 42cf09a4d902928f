#!/usr/bin/env python3
"""
Unit Tests for Permission Service
Tests for dataroom/core/permissions.py
"""

import uuid
from contextlib import contextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError
from sqlalchemy.dialects import postgresql

from dataroom.core.exceptions import AuthorizationException, ValidationException
from dataroom.core.permissions import DOCUMENT_TABLES, FOLDER_TABLES, PermissionResolver
from dataroom.core.roles import RoomAuthorization
from dataroom.models.permission import CAPABILITIES, DocumentPermissions, FolderPermissions


@contextmanager
def resolver_patches(room_id, rows=(), override=None, is_admin=False, room_can_manage=False):
    """Patch every storage read the resolver performs"""
    with patch.object(
        PermissionResolver, "get_resource_room_id", new=AsyncMock(return_value=room_id)
    ) as get_room, patch.object(
        PermissionResolver, "get_group_permission_rows", new=AsyncMock(return_value=list(rows))
    ) as get_rows, patch.object(
        PermissionResolver, "get_user_override", new=AsyncMock(return_value=override)
    ) as get_override, patch.object(
        RoomAuthorization, "is_administrator", new=AsyncMock(return_value=is_admin)
    ) as is_administrator, patch.object(
        RoomAuthorization, "can_manage_document_permissions", new=AsyncMock(return_value=room_can_manage)
    ) as manage_gate:
        yield SimpleNamespace(
            get_room=get_room,
            get_rows=get_rows,
            get_override=get_override,
            is_administrator=is_administrator,
            manage_gate=manage_gate,
        )


def compile_pg(stmt) -> tuple:
    compiled = stmt.compile(dialect=postgresql.dialect())
    return str(compiled), compiled.params


@pytest.mark.unit
class TestGetDocumentPermissions:
    """Test effective document capability resolution"""

    @pytest.mark.asyncio
    async def test_document_without_room_denies_all(self, mock_db, user_id, document_id):
        """Test a document outside any data room resolves to nothing"""
        with resolver_patches(room_id=None) as mocks:
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)
            mocks.is_administrator.assert_not_awaited()

        assert permissions == DocumentPermissions.none()

    @pytest.mark.asyncio
    async def test_administrator_gets_everything(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test administrators bypass permission rows entirely"""
        override = make_permission_row()  # an all-false override is ignored
        with resolver_patches(data_room_id, override=override, is_admin=True) as mocks:
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)
            mocks.get_rows.assert_not_awaited()
            mocks.get_override.assert_not_awaited()

        assert permissions == DocumentPermissions.all()

    @pytest.mark.asyncio
    async def test_group_rows_or_together(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test capabilities from different groups combine"""
        rows = [
            make_permission_row(can_view=True, can_download_pdf=True),
            make_permission_row(can_view=True, can_download_original=True),
        ]
        with resolver_patches(data_room_id, rows=rows):
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        assert permissions.can_view is True
        assert permissions.can_download_pdf is True
        assert permissions.can_download_original is True
        assert permissions.can_download_encrypted is False
        assert permissions.can_manage is False

    @pytest.mark.asyncio
    async def test_no_groups_no_override(self, mock_db, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id):
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        assert permissions == DocumentPermissions.none()

    @pytest.mark.asyncio
    async def test_adding_group_row_never_revokes(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test aggregation is monotonic in group rows"""
        base_rows = [make_permission_row(can_view=True, can_upload=True)]

        with resolver_patches(data_room_id, rows=base_rows):
            before = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        extra = make_permission_row(can_fence=True)
        with resolver_patches(data_room_id, rows=base_rows + [extra]):
            after = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        for name in CAPABILITIES:
            assert getattr(after, name) >= getattr(before, name)
        assert after.can_fence is True

    @pytest.mark.asyncio
    async def test_user_override_replaces_group_result(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test the override both grants and revokes relative to groups"""
        rows = [make_permission_row(can_view=True, can_download_pdf=True)]
        override = make_permission_row(can_view=True, can_download_original=True)

        with resolver_patches(data_room_id, rows=rows, override=override):
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        assert permissions.can_download_pdf is False
        assert permissions.can_download_original is True
        assert permissions.can_view is True

    @pytest.mark.asyncio
    async def test_all_false_override_revokes_everything(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        rows = [make_permission_row(**{name: True for name in CAPABILITIES})]

        with resolver_patches(data_room_id, rows=rows, override=make_permission_row(), room_can_manage=True):
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        assert permissions == DocumentPermissions.none()

    @pytest.mark.asyncio
    async def test_override_fields_match_output_except_manage(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test output equals the override row apart from the gated can_manage"""
        override = make_permission_row(can_fence=True, can_download_encrypted=True, can_manage=True)

        with resolver_patches(data_room_id, rows=[make_permission_row(can_view=True)], override=override):
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        for name in CAPABILITIES:
            if name != "can_manage":
                assert getattr(permissions, name) == getattr(override, name)
        assert permissions.can_manage is False

    @pytest.mark.asyncio
    async def test_manage_dropped_without_room_authority(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test a group row cannot grant management to an unauthorised role"""
        rows = [make_permission_row(can_view=True, can_manage=True)]

        with resolver_patches(data_room_id, rows=rows, room_can_manage=False) as mocks:
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)
            mocks.manage_gate.assert_awaited_once_with(mock_db, user_id, data_room_id)

        assert permissions.can_manage is False
        assert permissions.can_view is True

    @pytest.mark.asyncio
    async def test_manage_kept_with_room_authority(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        rows = [make_permission_row(can_manage=True)]

        with resolver_patches(data_room_id, rows=rows, room_can_manage=True):
            permissions = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        assert permissions.can_manage is True

    @pytest.mark.asyncio
    async def test_room_authority_not_checked_without_manage(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id, rows=[make_permission_row(can_view=True)]) as mocks:
            await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)
            mocks.manage_gate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reads_document_tables(self, mock_db, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id) as mocks:
            await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        mocks.get_room.assert_awaited_once_with(mock_db, DOCUMENT_TABLES, document_id)
        mocks.get_rows.assert_awaited_once_with(mock_db, DOCUMENT_TABLES, user_id, data_room_id, document_id)


@pytest.mark.unit
class TestGetFolderPermissions:
    """Test folder resolution follows the document algorithm"""

    @pytest.mark.asyncio
    async def test_folder_resolution(self, mock_db, make_permission_row, user_id, data_room_id):
        folder_id = uuid.uuid4()
        rows = [make_permission_row(can_view=True), make_permission_row(can_upload=True, can_manage=True)]

        with resolver_patches(data_room_id, rows=rows, room_can_manage=False) as mocks:
            permissions = await PermissionResolver.get_folder_permissions(mock_db, user_id, folder_id)
            mocks.get_room.assert_awaited_once_with(mock_db, FOLDER_TABLES, folder_id)

        assert isinstance(permissions, FolderPermissions)
        assert permissions.can_view is True
        assert permissions.can_upload is True
        assert permissions.can_manage is False

    @pytest.mark.asyncio
    async def test_folder_administrator(self, mock_db, user_id, data_room_id):
        with resolver_patches(data_room_id, is_admin=True):
            permissions = await PermissionResolver.get_folder_permissions(mock_db, user_id, uuid.uuid4())

        assert permissions == FolderPermissions.all()

    @pytest.mark.asyncio
    async def test_folder_derived_checks(self, mock_db, make_permission_row, user_id, data_room_id):
        folder_id = uuid.uuid4()
        with resolver_patches(data_room_id, rows=[make_permission_row(can_fence=True, can_download_encrypted=True)]):
            assert await PermissionResolver.can_view_folder(mock_db, user_id, folder_id) is True
            assert await PermissionResolver.can_download_folder(mock_db, user_id, folder_id, "encrypted") is True
            assert await PermissionResolver.can_download_folder(mock_db, user_id, folder_id) is False
            assert await PermissionResolver.can_manage_folder(mock_db, user_id, folder_id) is False


@pytest.mark.unit
class TestDerivedChecks:
    """Test single-capability projections"""

    @pytest.mark.asyncio
    async def test_fence_implies_view(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id, rows=[make_permission_row(can_fence=True)]):
            assert await PermissionResolver.can_view_document(mock_db, user_id, document_id) is True

    @pytest.mark.asyncio
    async def test_no_view(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id, rows=[make_permission_row(can_upload=True)]):
            assert await PermissionResolver.can_view_document(mock_db, user_id, document_id) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "format,field",
        [
            ("encrypted", "can_download_encrypted"),
            ("pdf", "can_download_pdf"),
            ("original", "can_download_original"),
        ],
    )
    async def test_download_formats(self, format, field, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test each format maps to its own capability"""
        with resolver_patches(data_room_id, rows=[make_permission_row(**{field: True})]):
            assert await PermissionResolver.can_download_document(mock_db, user_id, document_id, format) is True

        with resolver_patches(data_room_id, rows=[make_permission_row(can_view=True)]):
            assert await PermissionResolver.can_download_document(mock_db, user_id, document_id, format) is False

    @pytest.mark.asyncio
    async def test_unknown_download_format(self, mock_db, user_id, data_room_id, document_id):
        """Test an unknown format is denied without resolving"""
        with resolver_patches(data_room_id, is_admin=True) as mocks:
            assert await PermissionResolver.can_download_document(mock_db, user_id, document_id, "docx") is False
            mocks.get_room.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_can_manage_document_uses_gated_value(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id, override=make_permission_row(can_manage=True), room_can_manage=False):
            assert await PermissionResolver.can_manage_document(mock_db, user_id, document_id) is False

        with resolver_patches(data_room_id, override=make_permission_row(can_manage=True), room_can_manage=True):
            assert await PermissionResolver.can_manage_document(mock_db, user_id, document_id) is True


@pytest.mark.unit
class TestRequireDocumentPermission:
    """Test the raising variant"""

    @pytest.mark.asyncio
    async def test_granted_returns_permissions(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id, rows=[make_permission_row(can_view=True)]):
            permissions = await PermissionResolver.require_document_permission(
                mock_db, user_id, document_id, "can_view"
            )

        assert permissions.can_view is True

    @pytest.mark.asyncio
    async def test_denied_raises(self, mock_db, user_id, data_room_id, document_id):
        with resolver_patches(data_room_id):
            with pytest.raises(AuthorizationException) as exc_info:
                await PermissionResolver.require_document_permission(
                    mock_db, user_id, document_id, "can_download_pdf"
                )

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["document_id"] == str(document_id)
        assert exc_info.value.details["required_permission"] == "can_download_pdf"

    @pytest.mark.asyncio
    async def test_unknown_capability(self, mock_db, user_id, document_id):
        with pytest.raises(ValidationException):
            await PermissionResolver.require_document_permission(mock_db, user_id, document_id, "can_delete")


@pytest.mark.unit
class TestStorageReads:
    """Test the query helpers against a mocked session"""

    @pytest.mark.asyncio
    async def test_get_resource_room_id(self, mock_db, data_room_id, document_id):
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = data_room_id
        mock_db.execute.return_value = mock_result

        assert await PermissionResolver.get_resource_room_id(mock_db, DOCUMENT_TABLES, document_id) == data_room_id

    @pytest.mark.asyncio
    async def test_get_group_permission_rows_filters_membership(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        rows = [make_permission_row(can_view=True)]
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = rows
        mock_db.execute.return_value = mock_result

        result = await PermissionResolver.get_group_permission_rows(
            mock_db, DOCUMENT_TABLES, user_id, data_room_id, document_id
        )

        assert result == rows
        sql, _ = compile_pg(mock_db.execute.await_args.args[0])
        assert "JOIN groups" in sql
        assert "JOIN group_members" in sql
        assert "group_members.user_id" in sql
        assert "document_group_permissions.document_id" in sql


@pytest.mark.unit
class TestMutators:
    """Test upsert and delete statements"""

    @pytest.mark.asyncio
    async def test_set_group_permissions_upserts(self, mock_db, document_id):
        group_id = uuid.uuid4()

        await PermissionResolver.set_document_group_permissions(
            mock_db, document_id, group_id, {"can_view": True}
        )

        sql, params = compile_pg(mock_db.execute.await_args.args[0])
        assert sql.startswith("INSERT INTO document_group_permissions")
        assert "ON CONFLICT (document_id, group_id) DO UPDATE" in sql

        # New rows default every capability to False
        assert params["can_view"] is True
        assert params["can_manage"] is False
        assert params["document_id"] == document_id
        assert params["group_id"] == group_id

        # Existing rows only take the supplied fields plus the timestamp
        set_clause = sql.split("DO UPDATE SET", 1)[1]
        assert "can_view" in set_clause
        assert "updated_at" in set_clause
        assert "can_manage" not in set_clause
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_user_permissions_upserts(self, mock_db, user_id, document_id):
        await PermissionResolver.set_document_user_permissions(
            mock_db, document_id, user_id, {"can_manage": True, "can_view": False}
        )

        sql, params = compile_pg(mock_db.execute.await_args.args[0])
        assert sql.startswith("INSERT INTO document_user_permissions")
        assert "ON CONFLICT (document_id, user_id) DO UPDATE" in sql
        assert params["can_manage"] is True
        assert params["can_view"] is False

    @pytest.mark.asyncio
    async def test_set_folder_permissions_upserts(self, mock_db, user_id):
        folder_id = uuid.uuid4()

        await PermissionResolver.set_folder_user_permissions(mock_db, folder_id, user_id, {"can_upload": True})

        sql, _ = compile_pg(mock_db.execute.await_args.args[0])
        assert sql.startswith("INSERT INTO folder_user_permissions")
        assert "ON CONFLICT (folder_id, user_id) DO UPDATE" in sql

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, mock_db, document_id):
        with pytest.raises(ValidationError):
            await PermissionResolver.set_document_group_permissions(
                mock_db, document_id, uuid.uuid4(), {"can_delete": True}
            )
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_user_override(self, mock_db, user_id, document_id):
        await PermissionResolver.remove_document_user_permissions(mock_db, document_id, user_id)

        sql, params = compile_pg(mock_db.execute.await_args.args[0])
        assert sql.startswith("DELETE FROM document_user_permissions")
        assert "document_user_permissions.document_id" in sql
        assert "document_user_permissions.user_id" in sql
        assert document_id in params.values()
        assert user_id in params.values()
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remove_folder_group_permissions(self, mock_db):
        await PermissionResolver.remove_folder_group_permissions(mock_db, uuid.uuid4(), uuid.uuid4())

        sql, _ = compile_pg(mock_db.execute.await_args.args[0])
        assert sql.startswith("DELETE FROM folder_group_permissions")

    @pytest.mark.asyncio
    async def test_removed_override_falls_back_to_groups(self, mock_db, make_permission_row, user_id, data_room_id, document_id):
        """Test resolution after an override is deleted uses the group result"""
        rows = [make_permission_row(can_view=True, can_download_pdf=True)]

        with resolver_patches(data_room_id, rows=rows, override=make_permission_row()):
            with_override = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        await PermissionResolver.remove_document_user_permissions(mock_db, document_id, user_id)

        with resolver_patches(data_room_id, rows=rows, override=None):
            without_override = await PermissionResolver.get_document_permissions(mock_db, user_id, document_id)

        assert with_override.can_view is False
        assert without_override.can_view is True
        assert without_override.can_download_pdf is True

"""
Pytest Configuration and Fixtures
Shared fixtures and configuration for all tests
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dataroom.models.enums import AccessType, GroupType, UserStatus
from dataroom.models.permission import CAPABILITIES


# ============================================
# PYTEST CONFIGURATION
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (medium speed)"
    )


def pytest_collection_modifyitems(config, items):
    """Add default markers based on test file path"""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================
# DATABASE FIXTURES
# ============================================

@pytest.fixture
def mock_db():
    """AsyncSession stand-in; add() is synchronous on the real session"""
    db = AsyncMock()
    db.add = MagicMock()
    return db


# ============================================
# ENTITY FACTORIES
# ============================================

def _make_group(group_type: GroupType = GroupType.USER, **flags) -> SimpleNamespace:
    """Group row with every capability flag defaulting to False"""
    values = {
        "id": uuid.uuid4(),
        "data_room_id": uuid.uuid4(),
        "type": group_type,
        "can_view_due_diligence_checklist": False,
        "can_manage_document_permissions": False,
        "can_view_group_users": False,
        "can_manage_users": False,
        "can_view_group_activity": False,
    }
    values.update(flags)
    return SimpleNamespace(**values)


def _make_permission_row(**granted) -> SimpleNamespace:
    """Document/folder permission row with the given capabilities set"""
    values = {name: False for name in CAPABILITIES}
    values.update(granted)
    return SimpleNamespace(**values)


def _make_user(**overrides) -> SimpleNamespace:
    """Active, unrestricted user that passes every gate"""
    values = {
        "id": uuid.uuid4(),
        "email": "participant@example.com",
        "is_active": True,
        "status": UserStatus.ACTIVE,
        "access_type": AccessType.UNLIMITED,
        "access_start_at": None,
        "access_end_at": None,
        "allowed_ips": None,
        "two_factor_enabled": False,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def data_room_id():
    return uuid.uuid4()


@pytest.fixture
def document_id():
    return uuid.uuid4()


@pytest.fixture
def make_group():
    return _make_group


@pytest.fixture
def make_permission_row():
    return _make_permission_row


@pytest.fixture
def make_user():
    return _make_user

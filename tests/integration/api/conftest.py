"""
Conftest for API integration tests
Defines fixtures specific to API testing

Note: These tests use ASGI transport for testing without requiring a running server.
The upstream authentication layer is stood in for by a middleware that copies
the X-Test-User and X-Test-2FA headers onto request.state.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from dataroom.api.dependencies import require_data_room_access, require_document_capability
from dataroom.api.errors import register_exception_handlers
from dataroom.db.session import get_db_session
from dataroom.models.permission import DocumentPermissions


def build_app(db) -> FastAPI:
    """Small application mounting the access dependencies"""
    app = FastAPI()
    register_exception_handlers(app)

    @app.middleware("http")
    async def attach_identity(request: Request, call_next):
        user_header = request.headers.get("X-Test-User")
        if user_header:
            request.state.user_id = user_header
        request.state.has_2fa = request.headers.get("X-Test-2FA") == "1"
        return await call_next(request)

    async def override_db_session():
        yield db

    app.dependency_overrides[get_db_session] = override_db_session

    @app.get("/rooms/{data_room_id}/enter")
    async def enter_room(data_room_id: uuid.UUID, user_id: uuid.UUID = Depends(require_data_room_access())):
        return {"data_room_id": str(data_room_id), "user_id": str(user_id)}

    @app.get("/rooms/{data_room_id}/enter-anywhere")
    async def enter_room_without_ip(
        data_room_id: uuid.UUID,
        user_id: uuid.UUID = Depends(require_data_room_access(check_ip=False)),
    ):
        return {"data_room_id": str(data_room_id), "user_id": str(user_id)}

    @app.get("/documents/{document_id}/pdf")
    async def download_pdf(
        document_id: uuid.UUID,
        permissions: DocumentPermissions = Depends(require_document_capability("can_download_pdf")),
    ):
        return {"document_id": str(document_id), "granted": permissions.granted()}

    return app


@pytest.fixture
def api_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


@pytest_asyncio.fixture
async def client(api_db):
    """Async client bound to the test application"""
    transport = ASGITransport(app=build_app(api_db))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

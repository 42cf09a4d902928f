"""
API Dependencies
Data room session gate and document capability checks for route handlers

The upstream authentication layer is expected to set ``request.state.user_id``
and, when a second factor was completed, ``request.state.has_2fa``.
"""

import uuid
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dataroom.core.access import AccessValidator
from dataroom.core.config import settings
from dataroom.core.exceptions import AccessDeniedException, AuthenticationException, ValidationException
from dataroom.core.logging import get_logger
from dataroom.core.permissions import DOCUMENT_TABLES, PermissionResolver
from dataroom.db.session import get_db_session
from dataroom.models.access import AccessContext
from dataroom.models.permission import CAPABILITIES, DocumentPermissions

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Resolve the client address

    Uses the first X-Forwarded-For hop, then X-Real-IP, only when
    TRUST_FORWARDED_FOR is enabled for a deployment behind a known proxy;
    otherwise the socket peer. Returns "unknown" when nothing is available,
    which matches no allow-list entry.
    """
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


async def get_current_user_id(request: Request) -> uuid.UUID:
    """
    Dependency to get the authenticated user ID

    Raises:
        AuthenticationException: If no user was attached to the request
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise AuthenticationException(message="Missing authenticated user")

    if isinstance(user_id, uuid.UUID):
        return user_id

    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        raise AuthenticationException(message="Invalid authenticated user")


async def enforce_session_gate(
    db: AsyncSession,
    request: Request,
    user_id: uuid.UUID,
    data_room_id: uuid.UUID,
    check_ip: bool = True,
) -> None:
    """
    Run the session gate for one data room

    Raises:
        AccessDeniedException: If the session may not enter the data room
    """
    context = AccessContext(
        ip_address=get_client_ip(request) if check_ip else None,
        has_2fa=bool(getattr(request.state, "has_2fa", False)),
    )
    validation = await AccessValidator.validate_user_access(db, user_id, data_room_id, context)

    if not validation.allowed:
        logger.info(f"Rejected {request.method} {request.url.path} for user {user_id}: {validation.reason}")
        raise AccessDeniedException(
            message=validation.reason or "Access denied",
            requires_activation=validation.requires_activation,
            requires_2fa=validation.requires_2fa,
            details={"data_room_id": str(data_room_id)},
        )


def require_data_room_access(check_ip: bool = True) -> Callable:
    """
    Build a dependency that runs the session gate for ``data_room_id``

    Args:
        check_ip: Pass the client address to the IP allow-list gate. When
            False the gate is skipped entirely.

    Returns:
        Dependency resolving to the user ID, raising AccessDeniedException
        when the session may not enter the data room
    """

    async def dependency(
        data_room_id: uuid.UUID,
        request: Request,
        user_id: uuid.UUID = Depends(get_current_user_id),
        db: AsyncSession = Depends(get_db_session),
    ) -> uuid.UUID:
        await enforce_session_gate(db, request, user_id, data_room_id, check_ip)
        return user_id

    return dependency


def require_document_capability(capability: str, check_ip: bool = True) -> Callable:
    """
    Build a dependency requiring one capability on ``document_id``

    The session gate of the document's data room runs first. A document
    outside any data room skips the gate and is denied by the resolver.
    """
    if capability not in CAPABILITIES:
        raise ValidationException(
            message="Invalid permission type",
            details={"permission": capability, "valid_permissions": list(CAPABILITIES)},
        )

    async def dependency(
        document_id: uuid.UUID,
        request: Request,
        user_id: uuid.UUID = Depends(get_current_user_id),
        db: AsyncSession = Depends(get_db_session),
    ) -> DocumentPermissions:
        data_room_id = await PermissionResolver.get_resource_room_id(db, DOCUMENT_TABLES, document_id)
        if data_room_id is not None:
            await enforce_session_gate(db, request, user_id, data_room_id, check_ip)

        return await PermissionResolver.require_document_permission(db, user_id, document_id, capability)

    return dependency

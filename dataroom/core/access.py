"""
User Access Validation Service
Session-level gate for a data room: account status, access window,
IP allow-list and two-factor requirement
"""

import ipaddress
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dataroom.core.exceptions import ValidationException
from dataroom.core.logging import get_logger
from dataroom.db.models import Group, GroupMember, User
from dataroom.models.access import AccessContext, AccessValidation
from dataroom.models.enums import AccessType, UserStatus

logger = get_logger(__name__)


# ============================================
# Helpers
# ============================================

def _as_utc(value: datetime) -> datetime:
    """Stored timestamps without tzinfo are UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def ip_matches(ip_address: str, entry: str) -> bool:
    """
    Check an address against one allow-list entry

    Bare entries match by address equality after parsing, so differently
    spelled IPv6 addresses compare by value. CIDR entries match when the
    address falls inside the network. Unparseable input never matches.
    """
    try:
        address = ipaddress.ip_address(ip_address.strip())
    except ValueError:
        return False

    entry = entry.strip()
    try:
        if "/" in entry:
            return address in ipaddress.ip_network(entry, strict=False)
        return address == ipaddress.ip_address(entry)
    except ValueError:
        logger.warning(f"Ignoring malformed allow-list entry {entry!r}")
        return False


def ip_in_allow_list(ip_address: str, allowed_ips: Sequence[str]) -> bool:
    return any(ip_matches(ip_address, entry) for entry in allowed_ips)


def window_violation(user: User, now: datetime) -> Optional[str]:
    """Denial reason for a LIMITED user outside the access window"""
    if user.access_type != AccessType.LIMITED:
        return None

    if user.access_start_at and now < _as_utc(user.access_start_at):
        return f"Access not yet available. Starts at {_as_utc(user.access_start_at).isoformat()}"

    if user.access_end_at and now > _as_utc(user.access_end_at):
        return f"Access period has ended. Ended at {_as_utc(user.access_end_at).isoformat()}"

    return None


STATUS_DENIALS = {
    UserStatus.PENDING_INVITE: AccessValidation.deny(
        "User has not completed account activation", requires_activation=True
    ),
    UserStatus.DEACTIVATED: AccessValidation.deny("User account has been deactivated"),
    UserStatus.EXPIRED: AccessValidation.deny("User access has expired"),
}


class AccessValidator:
    """Decide whether a user's session may interact with a data room"""

    @staticmethod
    async def get_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def has_room_membership(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
    ) -> bool:
        """Whether the user belongs to any group of the data room"""
        result = await db.execute(
            select(GroupMember.id)
            .join(Group, Group.id == GroupMember.group_id)
            .where(
                GroupMember.user_id == user_id,
                Group.data_room_id == data_room_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def validate_user_access(
        db: AsyncSession,
        user_id: uuid.UUID,
        data_room_id: uuid.UUID,
        context: Optional[AccessContext] = None,
        now: Optional[datetime] = None,
    ) -> AccessValidation:
        """
        Validate a user's session against a data room

        Gates run in order and the first failure is returned: existence,
        is_active, status, access window, IP allow-list, 2FA, membership.

        The IP gate is skipped when the context carries no ip_address. This
        fail-open is kept for callers that cannot supply an address and is
        pending product review.

        Args:
            db: Database session
            user_id: User to validate
            data_room_id: Data room being entered
            context: Client IP and 2FA state of the session
            now: Evaluation time, defaults to the current UTC time

        Returns:
            AccessValidation with allowed=True, or the first denial
        """
        context = context or AccessContext()
        now = _as_utc(now) if now else datetime.now(timezone.utc)

        user = await AccessValidator.get_user(db, user_id)
        if user is None:
            return AccessValidation.deny("User not found")

        if not user.is_active:
            return AccessValidation.deny("User account is inactive")

        if user.status != UserStatus.ACTIVE:
            denial = STATUS_DENIALS.get(user.status)
            if denial is None:
                logger.warning(f"User {user_id} has unrecognised status {user.status!r}, denying")
                denial = AccessValidation.deny("User account status is not active")
            logger.info(f"User {user_id} denied data room {data_room_id}: {denial.reason}")
            return denial.model_copy()

        reason = window_violation(user, now)
        if reason:
            logger.info(f"User {user_id} denied data room {data_room_id}: {reason}")
            return AccessValidation.deny(reason)

        if user.allowed_ips and context.ip_address:
            if not ip_in_allow_list(context.ip_address, user.allowed_ips):
                logger.warning(
                    f"User {user_id} denied data room {data_room_id} from IP {context.ip_address}"
                )
                return AccessValidation.deny("Access denied from this IP address")

        if user.two_factor_enabled and not context.has_2fa:
            return AccessValidation.deny("Two-factor authentication required", requires_2fa=True)

        if not await AccessValidator.has_room_membership(db, user_id, data_room_id):
            logger.info(f"User {user_id} is not a member of data room {data_room_id}")
            return AccessValidation.deny("User is not a member of this data room")

        logger.debug(f"User {user_id} allowed into data room {data_room_id}")
        return AccessValidation.allow()

    # ============================================
    # Single-purpose predicates
    # ============================================

    @staticmethod
    async def is_user_active(db: AsyncSession, user_id: uuid.UUID) -> bool:
        user = await AccessValidator.get_user(db, user_id)
        return user is not None and user.is_active and user.status == UserStatus.ACTIVE

    @staticmethod
    async def is_within_access_window(
        db: AsyncSession,
        user_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> bool:
        """UNLIMITED users are always inside their window"""
        user = await AccessValidator.get_user(db, user_id)
        if user is None:
            return False
        now = _as_utc(now) if now else datetime.now(timezone.utc)
        return window_violation(user, now) is None

    @staticmethod
    async def is_ip_allowed(db: AsyncSession, user_id: uuid.UUID, ip_address: str) -> bool:
        """True when no allow-list is configured; False for unknown users"""
        user = await AccessValidator.get_user(db, user_id)
        if user is None:
            return False
        if not user.allowed_ips:
            return True
        return ip_in_allow_list(ip_address, user.allowed_ips)

    @staticmethod
    async def require_2fa(db: AsyncSession, user_id: uuid.UUID) -> bool:
        user = await AccessValidator.get_user(db, user_id)
        return bool(user and user.two_factor_enabled)

    # ============================================
    # Mutators
    # ============================================

    @staticmethod
    async def update_user_status(db: AsyncSession, user_id: uuid.UUID, status: UserStatus) -> None:
        status = UserStatus(status)
        await db.execute(update(User).where(User.id == user_id).values(status=status))
        await db.commit()
        logger.info(f"User {user_id} status set to {status.value}")

    @staticmethod
    async def set_user_access_window(
        db: AsyncSession,
        user_id: uuid.UUID,
        access_type: AccessType,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
    ) -> None:
        access_type = AccessType(access_type)
        if start_at and end_at and _as_utc(end_at) < _as_utc(start_at):
            raise ValidationException(
                message="Access window ends before it starts",
                details={"start_at": start_at.isoformat(), "end_at": end_at.isoformat()},
            )
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(access_type=access_type, access_start_at=start_at, access_end_at=end_at)
        )
        await db.commit()
        logger.info(f"User {user_id} access window set to {access_type.value} [{start_at} - {end_at}]")

    @staticmethod
    async def _store_allowed_ips(db: AsyncSession, user_id: uuid.UUID, allowed_ips: List[str]) -> None:
        await db.execute(update(User).where(User.id == user_id).values(allowed_ips=allowed_ips))
        await db.commit()

    @staticmethod
    async def add_allowed_ip(db: AsyncSession, user_id: uuid.UUID, ip: str) -> None:
        """Append an IP or CIDR block; no-op when already present"""
        try:
            if "/" in ip:
                ipaddress.ip_network(ip, strict=False)
            else:
                ipaddress.ip_address(ip)
        except ValueError:
            raise ValidationException(
                message="Invalid IP address or CIDR block",
                details={"ip": ip},
            )

        user = await AccessValidator.get_user(db, user_id)
        current = list(user.allowed_ips or []) if user else []
        if ip in current:
            return

        current.append(ip)
        await AccessValidator._store_allowed_ips(db, user_id, current)
        logger.info(f"Added allowed IP {ip} for user {user_id}")

    @staticmethod
    async def remove_allowed_ip(db: AsyncSession, user_id: uuid.UUID, ip: str) -> None:
        """Filter an entry out; no-op when absent or the user is missing"""
        user = await AccessValidator.get_user(db, user_id)
        current = list(user.allowed_ips or []) if user else []
        updated = [entry for entry in current if entry != ip]
        if updated == current:
            return

        await AccessValidator._store_allowed_ips(db, user_id, updated)
        logger.info(f"Removed allowed IP {ip} for user {user_id}")

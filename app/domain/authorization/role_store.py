"""Authorization role store - role assignments with explicit active state"""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from ...cache import AuthorizationCache
from ...models import UserRole
from ...utils.clock import utcnow

logger = logging.getLogger(__name__)

# assigned_by value for grants driven by subscription events
SYSTEM_ACTOR = "system"


class RoleName(str, Enum):
    SUPERADMIN = "superadmin"
    PUBLISHER = "publisher"
    CLIENT = "client"


class AuthorizationRoleStore:
    """
    Grant, revoke and query role assignments for a user.

    Mutations are added to the caller's session and committed by the caller's
    unit of work; role checks read through the injected AuthorizationCache.
    """

    def __init__(self, db: Session, cache: AuthorizationCache):
        self.db = db
        self.cache = cache

    def get_assignment(self, user_id: str, role: RoleName) -> Optional[UserRole]:
        return (
            self.db.query(UserRole)
            .filter(UserRole.user_id == user_id, UserRole.role == role.value)
            .first()
        )

    def active_roles(self, user_id: str) -> set[str]:
        """Active role names for a user, from cache when available"""
        cached = self.cache.get_roles(user_id)
        if cached is not None:
            return cached

        rows = (
            self.db.query(UserRole.role)
            .filter(UserRole.user_id == user_id, UserRole.is_active.is_(True))
            .all()
        )
        roles = {row.role for row in rows}
        self.cache.set_roles(user_id, roles)
        return roles

    def has_role(self, user_id: str, role: RoleName) -> bool:
        return role.value in self.active_roles(user_id)

    def grant(self, user_id: str, role: RoleName, assigned_by: str = SYSTEM_ACTOR) -> bool:
        """Activate a role for a user. Returns False when it was already active (no-op)"""
        assignment = self.get_assignment(user_id, role)
        if assignment and assignment.is_active:
            logger.debug(f"Role {role.value} already active for user {user_id}")
            return False

        now = utcnow()
        if assignment:
            assignment.is_active = True
            assignment.assigned_by = assigned_by
            assignment.assigned_at = now
        else:
            self.db.add(
                UserRole(
                    user_id=user_id,
                    role=role.value,
                    is_active=True,
                    assigned_by=assigned_by,
                    assigned_at=now,
                )
            )
        logger.info(f"✅ Granted role {role.value} to user {user_id} (by {assigned_by})")
        return True

    def revoke(self, user_id: str, role: RoleName) -> bool:
        """Deactivate a role for a user. Returns False when it was not active"""
        assignment = self.get_assignment(user_id, role)
        if not assignment or not assignment.is_active:
            return False

        assignment.is_active = False
        logger.info(f"🚫 Revoked role {role.value} from user {user_id}")
        return True

"""Subscription role coordinator - keeps the publisher role in step with subscription status"""

import logging

from ...unit_of_work import UnitOfWork
from ..billing.repository import SubscriptionRepository
from .role_store import SYSTEM_ACTOR, AuthorizationRoleStore, RoleName

logger = logging.getLogger(__name__)


class SubscriptionRoleCoordinator:
    """Maps subscription activation/cancellation to publisher role grants and revocations"""

    ROLE = RoleName.PUBLISHER

    def __init__(self, role_store: AuthorizationRoleStore):
        self.role_store = role_store
        self.db = role_store.db

    def _invalidate_after_commit(self, uow: UnitOfWork, user_id: str) -> None:
        cache = self.role_store.cache
        uow.on_commit(lambda: cache.invalidate(user_id))

    def on_activated(self, uow: UnitOfWork, user_id: str) -> bool:
        """Grant the publisher role (idempotent). Returns True if the role changed"""
        changed = self.role_store.grant(user_id, self.ROLE, assigned_by=SYSTEM_ACTOR)
        self._invalidate_after_commit(uow, user_id)
        return changed

    def on_cancelled(self, uow: UnitOfWork, user_id: str) -> bool:
        """
        Re-evaluate the publisher role after a subscription ended.

        The role is kept when another subscription is still active or when it was
        granted manually by an administrator. Returns True if the role was revoked.
        """
        # The caller's pending status change must be visible to the entitlement query
        self.db.flush()

        revoked = False
        assignment = self.role_store.get_assignment(user_id, self.ROLE)
        other_active = SubscriptionRepository.get_active_by_user(self.db, user_id)

        if other_active:
            logger.info(
                f"ℹ️ User {user_id} keeps {self.ROLE.value}: subscription {other_active.id} still active"
            )
        elif assignment and assignment.is_active and assignment.assigned_by != SYSTEM_ACTOR:
            logger.info(
                f"ℹ️ User {user_id} keeps {self.ROLE.value}: granted manually by {assignment.assigned_by}"
            )
        else:
            revoked = self.role_store.revoke(user_id, self.ROLE)

        self._invalidate_after_commit(uow, user_id)
        return revoked

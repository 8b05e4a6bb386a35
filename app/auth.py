import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from .dependencies import get_role_store
from .domain.authorization.role_store import AuthorizationRoleStore, RoleName

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Identity of the caller.

    Authentication happens at the gateway, which forwards the verified user id in
    the X-User-Id header.
    """
    if not x_user_id or not x_user_id.strip():
        logger.warning("⚠️ Request without X-User-Id header")
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Missing X-User-Id header.",
        )
    return x_user_id.strip()


def require_role(role: RoleName):
    """Dependency factory: the caller must hold an active role"""

    async def dependency(
        user_id: str = Depends(get_current_user_id),
        role_store: AuthorizationRoleStore = Depends(get_role_store),
    ) -> str:
        if not role_store.has_role(user_id, role):
            logger.warning(f"⚠️ User {user_id} attempted a {role.value}-only operation")
            raise HTTPException(status_code=403, detail=f"{role.value.capitalize()} role required")

        logger.debug(f"✅ User {user_id} has role {role.value}")
        return user_id

    return dependency


require_superadmin = require_role(RoleName.SUPERADMIN)

"""Authorization router - FastAPI endpoints for role queries and manual grants"""

import logging

from fastapi import APIRouter, Depends

from ...auth import require_superadmin
from ...dependencies import get_role_store
from ...unit_of_work import UnitOfWork
from .role_store import AuthorizationRoleStore, RoleName
from .schemas import RoleChangeResponse, UserRolesResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Authorization"])


@router.get("/{user_id}/roles", response_model=UserRolesResponse)
async def get_user_roles(
    user_id: str,
    role_store: AuthorizationRoleStore = Depends(get_role_store),
):
    """Active roles of a user"""
    return UserRolesResponse(userId=user_id, roles=sorted(role_store.active_roles(user_id)))


@router.post("/{user_id}/roles/{role}", response_model=RoleChangeResponse)
async def grant_role(
    user_id: str,
    role: RoleName,
    admin_id: str = Depends(require_superadmin),
    role_store: AuthorizationRoleStore = Depends(get_role_store),
):
    """Grant a role manually; manual grants survive subscription cancellations"""
    with UnitOfWork(role_store.db) as uow:
        changed = role_store.grant(user_id, role, assigned_by=admin_id)
        uow.on_commit(lambda: role_store.cache.invalidate(user_id))

    logger.info(f"👤 {admin_id} granted {role.value} to {user_id} (changed={changed})")
    return RoleChangeResponse(userId=user_id, role=role.value, isActive=True, changed=changed)


@router.delete("/{user_id}/roles/{role}", response_model=RoleChangeResponse)
async def revoke_role(
    user_id: str,
    role: RoleName,
    admin_id: str = Depends(require_superadmin),
    role_store: AuthorizationRoleStore = Depends(get_role_store),
):
    with UnitOfWork(role_store.db) as uow:
        changed = role_store.revoke(user_id, role)
        uow.on_commit(lambda: role_store.cache.invalidate(user_id))

    logger.info(f"👤 {admin_id} revoked {role.value} from {user_id} (changed={changed})")
    return RoleChangeResponse(userId=user_id, role=role.value, isActive=False, changed=changed)

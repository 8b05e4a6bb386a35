"""Shared FastAPI dependencies for process-wide collaborators created in main.py"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .cache import AuthorizationCache
from .database import get_db
from .domain.authorization.role_store import AuthorizationRoleStore
from .domain.billing.mercadopago_service import MercadoPagoService


def get_authorization_cache(request: Request) -> AuthorizationCache:
    return request.app.state.authorization_cache


def get_mercadopago_service(request: Request) -> MercadoPagoService:
    return request.app.state.mercadopago


def get_role_store(
    db: Session = Depends(get_db),
    cache: AuthorizationCache = Depends(get_authorization_cache),
) -> AuthorizationRoleStore:
    """Dependency injection for AuthorizationRoleStore"""
    return AuthorizationRoleStore(db, cache)

"""Shared route dependencies."""

from typing import Optional

from fastapi import Depends, Header

from app.models.user import AdminPrincipal
from app.services.admin_service import admin_service


async def require_admin(authorization: Optional[str] = Header(None)) -> AdminPrincipal:
    """Authenticate ``Authorization: Bearer <api key>``."""
    api_key = None
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer":
            api_key = token.strip()
    return await admin_service.authenticate(api_key)


async def require_super_admin(principal: AdminPrincipal = Depends(require_admin)) -> AdminPrincipal:
    return admin_service.require_super_admin(principal)

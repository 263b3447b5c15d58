"""
Request-scoped dependencies shared by the inbox API routers
"""
from typing import Optional

from fastapi import Header

from social_inbox.core.errors import InboxError


class MissingTenantError(InboxError):
    """Request did not identify its organization"""

    code = "missing_organization"


def get_organization_id(x_organization_id: Optional[str] = Header(None)) -> str:
    """
    Resolve the caller's organization.

    Authentication is handled upstream; the gateway forwards the resolved
    tenant in the X-Organization-Id header.
    """
    if not x_organization_id:
        raise MissingTenantError("X-Organization-Id header is required")
    return x_organization_id

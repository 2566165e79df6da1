"""
Capability checks as FastAPI dependencies.
"""
from fastapi import Depends

from gallery_admin.api import deps
from gallery_admin.core.capabilities import registry
from gallery_admin.services.guards import AuthorizationGuard
from gallery_admin.services.identity import Principal


class RequireCapability:
    """
    Usage:
        @router.get("/")
        def endpoint(admin: Principal = Depends(RequireCapability("system.view_audit"))):
            ...

    The capability must be registered; a typo fails at import time instead
    of silently denying every request.
    """

    def __init__(self, capability: str):
        registry.ensure_registered(capability)
        self.capability = capability

    def __call__(self, guard: AuthorizationGuard = Depends(deps.get_guard)) -> Principal:
        return guard.require_capability(self.capability)


require_view_audit = RequireCapability("system.view_audit")

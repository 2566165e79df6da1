"""
Admin authorization guards.

Capability-based access control for admin operations. All admin actions go
through these guards. The guard only raises typed failures; it never touches
the datastore itself, so it can be exercised with a static resolver.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar, Union

from gallery_admin.core.capabilities import CapabilityRegistry, Role, coerce_role, registry
from gallery_admin.core.errors import Forbidden, GovernanceError, Unauthorized
from gallery_admin.logging_config import user_id_ctx
from gallery_admin.services.identity import IdentityResolver, Principal

logger = logging.getLogger("gallery_admin.guards")

T = TypeVar("T")


def can_act_on_user(actor_role: Any, target_role: Any, capabilities: CapabilityRegistry = registry) -> bool:
    """True iff actor ranks strictly above target; unknown roles never qualify."""
    actor = capabilities.role_rank(actor_role)
    target = capabilities.role_rank(target_role)
    return actor >= 0 and target >= 0 and actor > target


@dataclass
class ActionResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None


class AuthorizationGuard:
    def __init__(self, resolver: IdentityResolver, capabilities: CapabilityRegistry = registry):
        self.resolver = resolver
        self.capabilities = capabilities

    def _resolve(self) -> Principal:
        principal = self.resolver.resolve_current_principal()
        if principal is None:
            raise Unauthorized("Not authenticated as admin")
        user_id_ctx.set(principal.id)
        return principal

    def require_capability(self, capability: str) -> Principal:
        """Return the caller if their role holds *capability*."""
        principal = self._resolve()
        if not self.capabilities.has_capability(principal.role, capability):
            raise Forbidden(f"Requires {capability} capability")
        return principal

    def require_role(self, allowed_roles: Iterable[Union[Role, str]]) -> Principal:
        allowed = {r for r in (coerce_role(x) for x in allowed_roles) if r is not None}
        principal = self._resolve()
        if principal.role not in allowed:
            names = " or ".join(sorted(r.value for r in allowed)) or "(none)"
            raise Forbidden(f"Requires role {names}")
        return principal

    def can_act_on_user(self, actor_role: Union[Role, str], target_role: Union[Role, str]) -> bool:
        """Only strictly lower-ranked users can be acted on; peers never."""
        return can_act_on_user(actor_role, target_role, self.capabilities)

    def require_can_act_on(self, principal: Principal, target_role: Union[Role, str]) -> None:
        if not self.can_act_on_user(principal.role, target_role):
            raise Forbidden(
                f"Role {principal.role.value} cannot act on a user with role {getattr(target_role, 'value', target_role)}"
            )

    def with_admin_guard(self, capability: str, action: Callable[[Principal], T]) -> ActionResult[T]:
        """Run *action* under *capability* and report the outcome as a value."""
        try:
            principal = self.require_capability(capability)
            return ActionResult(success=True, data=action(principal))
        except GovernanceError as exc:
            logger.warning(
                "Admin action failed (%s): %s", capability, exc.message, extra={"capability": capability}
            )
            return ActionResult(success=False, error=exc.message, code=exc.code)

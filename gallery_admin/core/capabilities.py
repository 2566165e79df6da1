"""
Capability registry for admin operations.

Maps each named capability to the roles allowed to exercise it, plus the
total order over roles used for actor-vs-target dominance checks. The table
is frozen at import time; changing it is a deployment, never a request-time
operation.
"""
import enum
import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from gallery_admin.core.errors import ConfigurationError

logger = logging.getLogger("gallery_admin.capabilities")


class Role(str, enum.Enum):
    USER = "user"
    SUPPORT = "support"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Lowest to highest. Index = rank.
ROLE_HIERARCHY: tuple[Role, ...] = (Role.USER, Role.SUPPORT, Role.ADMIN, Role.SUPER_ADMIN)

_STAFF = (Role.SUPPORT, Role.ADMIN, Role.SUPER_ADMIN)
_ADMINS = (Role.ADMIN, Role.SUPER_ADMIN)
_SUPER = (Role.SUPER_ADMIN,)

DEFAULT_CAPABILITIES: dict[str, tuple[Role, ...]] = {
    # User management
    "users.list": _STAFF,
    "users.view": _STAFF,
    "users.suspend": _ADMINS,
    "users.reactivate": _ADMINS,
    "users.update_limits": _ADMINS,
    "users.update_plan": _SUPER,
    "users.delete": _SUPER,
    "users.impersonate": _SUPER,
    "users.force_logout": _ADMINS,
    # Gallery management
    "galleries.list": _STAFF,
    "galleries.view": _STAFF,
    "galleries.delete": _ADMINS,
    "galleries.restore": _ADMINS,
    # Storage management
    "storage.view": _STAFF,
    "storage.cleanup": _ADMINS,
    "storage.delete": _SUPER,
    # Billing management
    "billing.view": _STAFF,
    "billing.override": _SUPER,
    "billing.sync": _ADMINS,
    "billing.refund": _SUPER,
    # Email management
    "emails.view": _STAFF,
    "emails.send_single": _ADMINS,
    "emails.send_broadcast": _SUPER,
    # System management
    "system.view_logs": _STAFF,
    "system.view_audit": _ADMINS,
    "system.maintenance": _SUPER,
    "system.feature_flags": _ADMINS,
    "system.settings": _SUPER,
    # Admin management
    "admin.view": _SUPER,
    "admin.manage_roles": _SUPER,
}


def coerce_role(role: Union[Role, str, None]) -> Optional[Role]:
    """Return the Role for *role*, or None when it is not a known role."""
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


class CapabilityRegistry:
    """Immutable capability → allowed-roles table."""

    def __init__(self, capabilities: Mapping[str, Iterable[Union[Role, str]]]):
        table: dict[str, frozenset[Role]] = {}
        for capability, roles in capabilities.items():
            resolved = set()
            for role in roles:
                r = coerce_role(role)
                if r is None:
                    raise ConfigurationError(
                        f"Capability '{capability}' references unknown role '{role}'"
                    )
                resolved.add(r)
            table[capability] = frozenset(resolved)
        self._table: Mapping[str, frozenset[Role]] = MappingProxyType(table)

    @property
    def capabilities(self) -> Mapping[str, frozenset[Role]]:
        return self._table

    def __contains__(self, capability: str) -> bool:
        return capability in self._table

    def has_capability(self, role: Union[Role, str, None], capability: str) -> bool:
        allowed = self._table.get(capability)
        if allowed is None:
            logger.warning("Unknown capability requested: %s", capability)
            return False
        r = coerce_role(role)
        return r is not None and r in allowed

    @staticmethod
    def role_rank(role: Union[Role, str, None]) -> int:
        """Position in ROLE_HIERARCHY; -1 for unknown roles."""
        r = coerce_role(role)
        if r is None:
            return -1
        return ROLE_HIERARCHY.index(r)

    def capabilities_for(self, role: Union[Role, str, None]) -> frozenset[str]:
        r = coerce_role(role)
        if r is None:
            return frozenset()
        return frozenset(cap for cap, roles in self._table.items() if r in roles)

    def ensure_registered(self, *capabilities: str) -> None:
        missing = sorted(c for c in capabilities if c not in self._table)
        if missing:
            raise ConfigurationError(
                f"Capabilities referenced but not registered: {', '.join(missing)}"
            )


registry = CapabilityRegistry(DEFAULT_CAPABILITIES)

"""Authorization guard and identity resolution tests."""
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from gallery_admin.config import settings
from gallery_admin.core.capabilities import ROLE_HIERARCHY, Role, registry
from gallery_admin.core.errors import Forbidden, Unauthorized
from gallery_admin.services.guards import AuthorizationGuard, can_act_on_user
from gallery_admin.services.identity import Principal, StaticIdentityResolver, TokenIdentityResolver
from tests.conftest import make_token


def _guard(role=None):
    principal = Principal(id="p-1", role=role, email="p@gallery.test") if role else None
    return AuthorizationGuard(StaticIdentityResolver(principal))


class _ExplodingRegistry:
    """Fails the test if the guard consults membership."""

    def has_capability(self, role, capability):
        raise AssertionError("membership checked before authentication")


# ── can_act_on_user ──

def test_can_act_on_user_matches_rank_order():
    for actor, target in itertools.product(ROLE_HIERARCHY, repeat=2):
        expected = registry.role_rank(actor) > registry.role_rank(target)
        assert can_act_on_user(actor, target) is expected


def test_peers_cannot_act_on_each_other():
    assert can_act_on_user(Role.ADMIN, Role.ADMIN) is False
    assert can_act_on_user(Role.SUPER_ADMIN, Role.SUPER_ADMIN) is False
    assert can_act_on_user(Role.SUPER_ADMIN, Role.ADMIN) is True
    assert can_act_on_user("support", "user") is True


def test_unknown_roles_never_qualify():
    assert can_act_on_user("owner", "user") is False
    assert can_act_on_user("super_admin", "owner") is False


def test_require_can_act_on():
    guard = _guard(Role.ADMIN)
    admin = guard.require_capability("users.suspend")
    guard.require_can_act_on(admin, Role.SUPPORT)
    with pytest.raises(Forbidden):
        guard.require_can_act_on(admin, Role.ADMIN)


# ── require_capability / require_role ──

def test_no_principal_is_unauthorized_before_membership_check():
    guard = AuthorizationGuard(StaticIdentityResolver(None), capabilities=_ExplodingRegistry())
    with pytest.raises(Unauthorized):
        guard.require_capability("system.feature_flags")


def test_missing_capability_is_forbidden():
    with pytest.raises(Forbidden) as exc:
        _guard(Role.SUPPORT).require_capability("system.feature_flags")
    assert "system.feature_flags" in exc.value.message


def test_capability_granted_returns_principal():
    principal = _guard(Role.ADMIN).require_capability("system.feature_flags")
    assert principal.role is Role.ADMIN


def test_unknown_capability_is_forbidden_even_for_super_admin():
    with pytest.raises(Forbidden):
        _guard(Role.SUPER_ADMIN).require_capability("system.not_a_thing")


def test_require_role():
    guard = _guard(Role.SUPPORT)
    assert guard.require_role(["support", "admin"]).role is Role.SUPPORT
    with pytest.raises(Forbidden):
        guard.require_role([Role.SUPER_ADMIN])
    with pytest.raises(Unauthorized):
        _guard().require_role([Role.USER])


def test_with_admin_guard_reports_values():
    ok = _guard(Role.ADMIN).with_admin_guard("system.view_audit", lambda p: p.email)
    assert ok.success and ok.data == "p@gallery.test"

    denied = _guard(Role.SUPPORT).with_admin_guard("system.view_audit", lambda p: p.email)
    assert denied.success is False
    assert denied.code == "forbidden"

    anonymous = _guard().with_admin_guard("system.view_audit", lambda p: p.email)
    assert anonymous.code == "unauthorized"


# ── TokenIdentityResolver ──

def test_token_resolves_to_user(db, users):
    principal = TokenIdentityResolver(db, make_token("ext-admin")).resolve_current_principal()
    assert principal == Principal(id=str(users["admin"].id), role=Role.ADMIN, email="admin@gallery.test")


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_missing_or_garbled_token(db, users, token):
    assert TokenIdentityResolver(db, token).resolve_current_principal() is None


def test_wrong_secret_and_expired_token(db, users):
    forged = jwt.encode({"sub": "ext-admin"}, "other-secret", algorithm="HS256")
    assert TokenIdentityResolver(db, forged).resolve_current_principal() is None

    expired = make_token("ext-admin", exp=datetime.now(timezone.utc) - timedelta(minutes=5))
    assert TokenIdentityResolver(db, expired).resolve_current_principal() is None


def test_unknown_or_suspended_user(db, users):
    assert TokenIdentityResolver(db, make_token("ext-ghost")).resolve_current_principal() is None

    users["support"].is_suspended = True
    db.commit()
    assert TokenIdentityResolver(db, make_token("ext-support")).resolve_current_principal() is None


def test_unrecognised_role_resolves_to_nobody(db, users):
    users["user"].role = "owner"
    db.commit()
    assert TokenIdentityResolver(db, make_token("ext-user")).resolve_current_principal() is None


def test_audience_is_enforced_when_configured(db, users, monkeypatch):
    monkeypatch.setattr(settings, "IDENTITY_TOKEN_AUDIENCE", "gallery-admin")
    assert TokenIdentityResolver(db, make_token("ext-admin")).resolve_current_principal() is None
    other = make_token("ext-admin", aud="billing")
    assert TokenIdentityResolver(db, other).resolve_current_principal() is None
    good = make_token("ext-admin", aud="gallery-admin")
    assert TokenIdentityResolver(db, good).resolve_current_principal() is not None

"""Identity boundary.

The identity provider authenticates humans and issues signed tokens; this
module only maps a verified token subject to the internal user record.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from gallery_admin.config import settings
from gallery_admin.core.capabilities import Role, coerce_role
from gallery_admin.db.session import datastore_errors
from gallery_admin.models.user import User

logger = logging.getLogger("gallery_admin.identity")


@dataclass(frozen=True)
class Principal:
    """Resolved caller for one request. Never persisted."""
    id: str
    role: Role
    email: str


class IdentityResolver(Protocol):
    def resolve_current_principal(self) -> Optional[Principal]:
        ...


class StaticIdentityResolver:
    """Resolver with a fixed answer; used for system jobs and tests."""

    def __init__(self, principal: Optional[Principal] = None):
        self.principal = principal

    def resolve_current_principal(self) -> Optional[Principal]:
        return self.principal


class TokenIdentityResolver:
    """Resolve the principal behind an identity-provider bearer token.

    Returns None (never raises) for a missing, invalid or expired token, an
    unknown subject, a suspended account or an unrecognised role; the guard
    turns that into Unauthorized.
    """

    def __init__(self, db: Session, token: Optional[str]):
        self.db = db
        self.token = token
        self._resolved = False
        self._principal: Optional[Principal] = None

    def _decode_subject(self) -> Optional[str]:
        check_aud = settings.IDENTITY_TOKEN_AUDIENCE is not None
        options = {"verify_aud": check_aud, "require_aud": check_aud}
        try:
            payload = jwt.decode(
                self.token,
                settings.IDENTITY_TOKEN_SECRET,
                algorithms=[settings.IDENTITY_TOKEN_ALGORITHM],
                audience=settings.IDENTITY_TOKEN_AUDIENCE,
                options=options,
            )
        except JWTError as exc:
            logger.info("Rejected identity token: %s", exc)
            return None
        sub = payload.get("sub")
        return str(sub) if sub else None

    def resolve_current_principal(self) -> Optional[Principal]:
        if self._resolved:
            return self._principal
        self._resolved = True

        if not self.token:
            return None
        external_id = self._decode_subject()
        if external_id is None:
            return None

        with datastore_errors(self.db, "Identity store unavailable"):
            user = self.db.query(User).filter(User.external_id == external_id).first()
        if user is None or not user.is_active:
            return None

        role = coerce_role(user.role)
        if role is None:
            logger.warning("User %s has unrecognised role %r", user.id, user.role)
            return None

        self._principal = Principal(id=str(user.id), role=role, email=user.email)
        return self._principal

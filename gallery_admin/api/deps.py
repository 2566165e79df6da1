from typing import Generator, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from gallery_admin.core.errors import Unauthorized
from gallery_admin.db.session import SessionLocal, datastore_errors
from gallery_admin.models.user import User
from gallery_admin.services.audit_logger import AuditLogger
from gallery_admin.services.flag_admin import FeatureFlagAdminService
from gallery_admin.services.flag_queries import FlagQueryBackend, select_flag_query_backend
from gallery_admin.services.guards import AuthorizationGuard
from gallery_admin.services.identity import IdentityResolver, TokenIdentityResolver

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_identity_resolver(
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(get_token),
) -> IdentityResolver:
    return TokenIdentityResolver(db, token)


def get_guard(resolver: IdentityResolver = Depends(get_identity_resolver)) -> AuthorizationGuard:
    return AuthorizationGuard(resolver)


def get_current_active_user(
    db: Session = Depends(get_db),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> User:
    principal = resolver.resolve_current_principal()
    if principal is None:
        raise Unauthorized("Not authenticated")
    with datastore_errors(db, "Identity store unavailable"):
        user = db.get(User, UUID(principal.id))
    if user is None:
        raise Unauthorized("Not authenticated")
    return user


def get_audit_logger(db: Session = Depends(get_db)) -> AuditLogger:
    return AuditLogger(db)


def get_flag_query_backend(request: Request, db: Session = Depends(get_db)) -> FlagQueryBackend:
    """Backend chosen at startup; probed lazily if the lifespan did not run."""
    backend = getattr(request.app.state, "flag_query_backend", None)
    if backend is None:
        backend = select_flag_query_backend(db.get_bind())
        request.app.state.flag_query_backend = backend
    return backend


def get_flag_admin_service(
    db: Session = Depends(get_db),
    guard: AuthorizationGuard = Depends(get_guard),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    query_backend: FlagQueryBackend = Depends(get_flag_query_backend),
) -> FeatureFlagAdminService:
    return FeatureFlagAdminService(db, guard, audit_logger, query_backend)

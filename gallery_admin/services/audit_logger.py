"""Best-effort admin audit trail.

Called after the primary mutation has committed. A failure here never aborts
that mutation: it is rolled back, logged with traceback and counted in
`audit_write_failures_total` for alerting.
"""
import logging
from typing import Any, Dict, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from gallery_admin.crud import crud_audit
from gallery_admin.logging_config import current_request_context
from gallery_admin.middleware.metrics import AUDIT_WRITE_FAILURES
from gallery_admin.models.audit import AdminAuditLog, AuditAction
from gallery_admin.models.user import User

logger = logging.getLogger("gallery_admin.audit")


class AuditLogger:
    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        admin_id: Union[UUID, str],
        action: Union[AuditAction, str],
        *,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        target_identifier: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AdminAuditLog]:
        action_name = action.value if isinstance(action, AuditAction) else str(action)
        try:
            admin_uuid = admin_id if isinstance(admin_id, UUID) else UUID(str(admin_id))
            # Snapshot email/role now; later role changes must not rewrite history.
            admin = self.db.query(User).filter(User.id == admin_uuid).first()
            if admin is None:
                logger.error(
                    "Failed to log admin action %s: admin %s not found", action_name, admin_id
                )
                AUDIT_WRITE_FAILURES.labels(reason="admin_not_found").inc()
                return None

            ctx = current_request_context()
            return crud_audit.create_audit_log(
                self.db,
                admin_id=admin.id,
                admin_email=admin.email,
                admin_role=admin.role,
                action=action_name,
                target_type=target_type,
                target_id=str(target_id) if target_id is not None else None,
                target_identifier=target_identifier,
                metadata=metadata,
                ip_address=ctx.client_ip,
                user_agent=ctx.user_agent,
                request_id=ctx.request_id,
            )
        except Exception:
            self.db.rollback()
            logger.exception("Failed to log admin action %s for %s", action_name, admin_id)
            AUDIT_WRITE_FAILURES.labels(reason="write_error").inc()
            return None

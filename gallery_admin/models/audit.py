import enum
import uuid
from sqlalchemy import Column, DateTime, Index, String, Uuid, event
from gallery_admin.core.errors import ImmutableRecordError
from gallery_admin.db.base_class import Base, utcnow
from gallery_admin.models.feature_flag import JSONType


class AuditAction(str, enum.Enum):
    USER_VIEW = "user.view"
    USER_SUSPEND = "user.suspend"
    USER_REACTIVATE = "user.reactivate"
    USER_UPDATE_LIMITS = "user.update_limits"
    USER_UPDATE_PLAN = "user.update_plan"
    USER_DELETE = "user.delete"
    USER_IMPERSONATE = "user.impersonate"
    USER_FORCE_LOGOUT = "user.force_logout"
    GALLERY_VIEW = "gallery.view"
    GALLERY_DELETE = "gallery.delete"
    GALLERY_RESTORE = "gallery.restore"
    GALLERY_UPDATE = "gallery.update"
    GALLERY_TRANSFER = "gallery.transfer"
    STORAGE_CLEANUP = "storage.cleanup"
    STORAGE_DELETE_FILE = "storage.delete_file"
    STORAGE_VIEW = "storage.view"
    BILLING_OVERRIDE_PLAN = "billing.override_plan"
    BILLING_SYNC = "billing.sync"
    BILLING_REFUND = "billing.refund"
    EMAIL_SEND_SINGLE = "email.send_single"
    EMAIL_SEND_BROADCAST = "email.send_broadcast"
    SYSTEM_MAINTENANCE_ON = "system.maintenance_on"
    SYSTEM_MAINTENANCE_OFF = "system.maintenance_off"
    SYSTEM_FEATURE_FLAG_UPDATE = "system.feature_flag_update"
    SYSTEM_SETTINGS_UPDATE = "system.settings_update"
    ADMIN_ROLE_CHANGE = "admin.role_change"
    ADMIN_LOGIN = "admin.login"
    ADMIN_LOGOUT = "admin.logout"


class AdminAuditLog(Base):
    """Append-only record of one administrative action.

    admin_email / admin_role are snapshots taken when the action happened;
    later role changes never rewrite them.
    """
    __tablename__ = "admin_audit_logs"
    __table_args__ = (
        Index("ix_admin_audit_logs_target", "target_type", "target_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    admin_id = Column(Uuid, nullable=False, index=True)
    admin_email = Column(String, nullable=False)
    admin_role = Column(String, nullable=False)

    action = Column(String, nullable=False, index=True)
    target_type = Column(String, nullable=True)       # feature_flag, user, gallery
    target_id = Column(String, nullable=True)
    target_identifier = Column(String, nullable=True)  # human readable: flag key, email
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


@event.listens_for(AdminAuditLog, "before_update")
def _audit_no_update(mapper, connection, target):
    raise ImmutableRecordError("Admin audit log entries are immutable")


@event.listens_for(AdminAuditLog, "before_delete")
def _audit_no_delete(mapper, connection, target):
    raise ImmutableRecordError("Admin audit log entries are immutable")

import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from gallery_admin.core.capabilities import Role
from gallery_admin.db.base_class import Base, utcnow


class User(Base):
    """Projection of the identity provider's account record.

    Only read by the governance core: principal resolution, audit snapshots
    and the caller's plan/email during flag evaluation.
    """
    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    external_id = Column(String, unique=True, index=True, nullable=False)  # identity provider subject
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default=Role.USER.value)
    plan = Column(String, nullable=True)                                    # "free", "pro", "studio", ...
    is_suspended = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    @property
    def is_active(self):
        return not self.is_suspended

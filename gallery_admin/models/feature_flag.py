"""Feature flags and their change history.

A flag targets users with one of five strategies:
- boolean      (on/off for everyone)
- percentage   (consistent-hash rollout by user id)
- plan_based   (subscription plans)
- user_list    (explicit user ids / emails)
- date_range   (on inside a time window)

History rows are append-only and outlive the flag they describe: `flag_id`
is intentionally not a cascading foreign key.
"""

import enum
import uuid
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Index, Integer, String, Text, Uuid, event,
)
from sqlalchemy.dialects.postgresql import JSONB
from gallery_admin.core.errors import ImmutableRecordError
from gallery_admin.db.base_class import Base, utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


class FlagType(str, enum.Enum):
    BOOLEAN = "boolean"
    PERCENTAGE = "percentage"
    PLAN_BASED = "plan_based"
    USER_LIST = "user_list"
    DATE_RANGE = "date_range"


class FlagCategory(str, enum.Enum):
    GENERAL = "general"
    UI = "ui"
    BILLING = "billing"
    EXPERIMENTAL = "experimental"


class ChangeType(str, enum.Enum):
    CREATED = "created"
    ENABLED = "enabled"
    DISABLED = "disabled"
    UPDATED = "updated"
    DELETED = "deleted"


class FeatureFlag(Base):
    """Durable flag definition."""
    __tablename__ = "feature_flags"
    __table_args__ = (
        Index("ix_feature_flags_category_name", "category", "name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    key = Column(String, unique=True, nullable=False, index=True)      # e.g. "new_gallery_viewer"
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    is_enabled = Column(Boolean, nullable=False, default=False, index=True)  # master switch
    flag_type = Column(String, nullable=False, default=FlagType.BOOLEAN.value)

    rollout_percentage = Column(Integer, nullable=False, default=0)    # 0-100, percentage flags only
    target_plans = Column(JSONType, nullable=False, default=list)      # ["pro", "studio"]
    target_user_ids = Column(JSONType, nullable=False, default=list)
    target_user_emails = Column(JSONType, nullable=False, default=list)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)

    category = Column(String, nullable=False, default=FlagCategory.GENERAL.value)
    is_killswitch = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)
    created_by = Column(Uuid, nullable=True)
    updated_by = Column(Uuid, nullable=True)

    # optimistic concurrency counter
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<FeatureFlag(key='{self.key}', enabled={self.is_enabled}, type={self.flag_type})>"


class FeatureFlagHistory(Base):
    """Immutable record of one flag state transition."""
    __tablename__ = "feature_flag_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    flag_id = Column(Uuid, nullable=False, index=True)
    flag_key = Column(String, nullable=False)
    changed_by = Column(Uuid, nullable=True)        # null only for system-initiated changes
    change_type = Column(String, nullable=False)
    old_value = Column(JSONType, nullable=True)
    new_value = Column(JSONType, nullable=True)
    reason = Column(Text, nullable=True)
    changed_at = Column(DateTime(timezone=True), default=utcnow, index=True)


@event.listens_for(FeatureFlagHistory, "before_update")
def _history_no_update(mapper, connection, target):
    raise ImmutableRecordError("Feature flag history entries are immutable")


@event.listens_for(FeatureFlagHistory, "before_delete")
def _history_no_delete(mapper, connection, target):
    raise ImmutableRecordError("Feature flag history entries are immutable")

"""Feature flag administration.

Every operation is gated on `system.feature_flags`. Writes follow one order:
guard → store mutation + history (one transaction) → audit append (best
effort; an audit failure never undoes the mutation).
"""
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from gallery_admin.config import settings
from gallery_admin.core.errors import NotFound, ValidationError
from gallery_admin.crud import crud_feature_flag
from gallery_admin.db.session import datastore_errors
from gallery_admin.models.audit import AuditAction
from gallery_admin.models.feature_flag import (
    FeatureFlag, FeatureFlagHistory, FlagCategory, FlagType,
)
from gallery_admin.schemas.feature_flag import (
    FeatureFlagCreate, FeatureFlagStats, FeatureFlagSummary, FeatureFlagUpdate,
)
from gallery_admin.services.audit_logger import AuditLogger
from gallery_admin.services.flag_queries import FlagQueryBackend
from gallery_admin.services.guards import AuthorizationGuard

logger = logging.getLogger("gallery_admin.flags.admin")

FEATURE_FLAGS_CAPABILITY = "system.feature_flags"
AUDIT_TARGET_TYPE = "feature_flag"

_FLAG_TYPES = frozenset(t.value for t in FlagType)
_CATEGORIES = frozenset(c.value for c in FlagCategory)
_NULLABLE_FIELDS = frozenset({"description", "starts_at", "ends_at"})
_LIST_FIELDS = ("target_plans", "target_user_ids", "target_user_emails")


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _dedupe(values: Iterable[Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        item = str(value).strip()
        if item:
            seen.setdefault(item, None)
    return list(seen)


def validate_flag_state(state: Dict[str, Any]) -> None:
    """Cross-field checks on a complete (created or merged) flag state."""
    if not str(state.get("name") or "").strip():
        raise ValidationError("Flag name is required", detail={"field": "name"})

    flag_type = state.get("flag_type")
    if flag_type not in _FLAG_TYPES:
        raise ValidationError(
            f"Unknown flag type: {flag_type}",
            detail={"field": "flag_type", "allowed": sorted(_FLAG_TYPES)},
        )

    category = state.get("category")
    if category not in _CATEGORIES:
        raise ValidationError(
            f"Unknown category: {category}",
            detail={"field": "category", "allowed": sorted(_CATEGORIES)},
        )

    rollout = state.get("rollout_percentage")
    if isinstance(rollout, bool) or not isinstance(rollout, int) or not 0 <= rollout <= 100:
        raise ValidationError(
            "Rollout percentage must be between 0 and 100",
            detail={"field": "rollout_percentage"},
        )

    starts_at, ends_at = _utc(state.get("starts_at")), _utc(state.get("ends_at"))
    if starts_at is not None and ends_at is not None and starts_at > ends_at:
        raise ValidationError("starts_at must not be after ends_at", detail={"field": "ends_at"})
    if flag_type == FlagType.DATE_RANGE.value and starts_at is None and ends_at is None:
        raise ValidationError(
            "A date_range flag needs starts_at or ends_at", detail={"field": "starts_at"}
        )


class FeatureFlagAdminService:
    def __init__(
        self,
        db: Session,
        guard: AuthorizationGuard,
        audit_logger: AuditLogger,
        query_backend: FlagQueryBackend,
    ):
        self.db = db
        self.guard = guard
        self.audit = audit_logger
        self.query_backend = query_backend

    def _authorize(self):
        return self.guard.require_capability(FEATURE_FLAGS_CAPABILITY)

    # ── Reads ──

    def list_flags(self) -> List[FeatureFlagSummary]:
        self._authorize()
        with datastore_errors(self.db):
            return self.query_backend.list_flags(self.db)

    def get_flag(self, flag_id: UUID) -> FeatureFlag:
        self._authorize()
        with datastore_errors(self.db):
            flag = crud_feature_flag.get_flag(self.db, flag_id=flag_id)
        if flag is None:
            raise NotFound("Flag not found")
        return flag

    def get_flag_history(self, flag_id: UUID, limit: Optional[int] = None) -> List[FeatureFlagHistory]:
        """Change trail, newest first; still available after the flag is deleted."""
        self._authorize()
        with datastore_errors(self.db):
            return crud_feature_flag.get_history(
                self.db, flag_id=flag_id, limit=limit or settings.FLAG_HISTORY_DEFAULT_LIMIT
            )

    def get_flags_by_category(self) -> Dict[str, List[FeatureFlagSummary]]:
        grouped: Dict[str, List[FeatureFlagSummary]] = {c.value: [] for c in FlagCategory}
        for flag in self.list_flags():
            grouped.get(flag.category, grouped[FlagCategory.GENERAL.value]).append(flag)
        return grouped

    def get_flag_stats(self) -> FeatureFlagStats:
        self._authorize()
        with datastore_errors(self.db):
            rows = self.db.query(
                FeatureFlag.is_enabled, FeatureFlag.category, FeatureFlag.flag_type
            ).all()
        enabled = sum(1 for r in rows if r.is_enabled)
        return FeatureFlagStats(
            total=len(rows),
            enabled=enabled,
            disabled=len(rows) - enabled,
            by_category=dict(Counter(r.category for r in rows)),
            by_type=dict(Counter(r.flag_type for r in rows)),
        )

    # ── Writes ──

    def create_flag(self, data: Union[FeatureFlagCreate, Dict[str, Any]]) -> FeatureFlag:
        admin = self._authorize()
        values = data.model_dump() if isinstance(data, FeatureFlagCreate) else dict(data)
        crud_feature_flag.validate_flag_key(values.get("key"))
        for field in _LIST_FIELDS:
            values[field] = _dedupe(values.get(field) or [])
        values.setdefault("flag_type", FlagType.BOOLEAN.value)
        values.setdefault("category", FlagCategory.GENERAL.value)
        values.setdefault("rollout_percentage", 0)
        validate_flag_state(values)

        flag = crud_feature_flag.create_flag(self.db, values=values, created_by=admin.id)
        logger.info(
            "Feature flag %s created by %s", flag.key, admin.id,
            extra={"flag_key": flag.key, "change_type": "created"},
        )

        self.audit.log_action(
            admin.id,
            AuditAction.SYSTEM_FEATURE_FLAG_UPDATE,
            target_type=AUDIT_TARGET_TYPE,
            target_id=str(flag.id),
            target_identifier=flag.key,
            metadata={"action": "created", "flag_type": flag.flag_type, "category": flag.category},
        )
        return flag

    def update_flag(
        self,
        flag_id: UUID,
        data: Union[FeatureFlagUpdate, Dict[str, Any]],
        reason: Optional[str] = None,
    ) -> FeatureFlag:
        admin = self._authorize()
        patch = data.model_dump(exclude_unset=True) if isinstance(data, FeatureFlagUpdate) else dict(data)

        if "key" in patch:
            raise ValidationError("Flag key cannot be changed", detail={"field": "key"})
        if "is_enabled" in patch:
            raise ValidationError("Use toggle to enable or disable a flag", detail={"field": "is_enabled"})
        for field, value in patch.items():
            if value is None and field not in _NULLABLE_FIELDS:
                raise ValidationError(f"{field} cannot be null", detail={"field": field})
        for field in _LIST_FIELDS:
            if field in patch:
                patch[field] = _dedupe(patch[field])
        if not patch:
            raise ValidationError("No changes supplied")

        # cross-field checks run against the locked row
        flag, entry = crud_feature_flag.update_flag(
            self.db,
            flag_id=flag_id,
            patch=patch,
            changed_by=admin.id,
            reason=reason,
            validate=validate_flag_state,
        )
        logger.info(
            "Feature flag %s updated by %s: %s", flag.key, admin.id, sorted(patch),
            extra={"flag_key": flag.key, "change_type": "updated"},
        )

        self.audit.log_action(
            admin.id,
            AuditAction.SYSTEM_FEATURE_FLAG_UPDATE,
            target_type=AUDIT_TARGET_TYPE,
            target_id=str(flag.id),
            target_identifier=flag.key,
            metadata={"action": "updated", "changes": entry.new_value, "reason": reason},
        )
        return flag

    def toggle_flag(self, key: str, enabled: bool, reason: Optional[str] = None) -> FeatureFlag:
        admin = self._authorize()
        flag, _ = crud_feature_flag.set_enabled(
            self.db, key=key, enabled=enabled, changed_by=admin.id, reason=reason
        )
        action = "enabled" if enabled else "disabled"
        logger.info(
            "Feature flag %s %s by %s", key, action, admin.id,
            extra={"flag_key": key, "change_type": action},
        )

        self.audit.log_action(
            admin.id,
            AuditAction.SYSTEM_FEATURE_FLAG_UPDATE,
            target_type=AUDIT_TARGET_TYPE,
            target_id=str(flag.id),
            target_identifier=key,
            metadata={"action": action, "reason": reason},
        )
        return flag

    def delete_flag(self, flag_id: UUID, reason: Optional[str] = None) -> Dict[str, Any]:
        admin = self._authorize()
        snapshot = crud_feature_flag.delete_flag(
            self.db, flag_id=flag_id, changed_by=admin.id, reason=reason
        )
        logger.info(
            "Feature flag %s deleted by %s", snapshot["key"], admin.id,
            extra={"flag_key": snapshot["key"], "change_type": "deleted"},
        )

        self.audit.log_action(
            admin.id,
            AuditAction.SYSTEM_FEATURE_FLAG_UPDATE,
            target_type=AUDIT_TARGET_TYPE,
            target_id=snapshot["id"],
            target_identifier=snapshot["key"],
            metadata={"action": "deleted", "flag_name": snapshot["name"], "reason": reason},
        )
        return snapshot

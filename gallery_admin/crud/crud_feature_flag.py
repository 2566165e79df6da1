"""Feature flag store.

Every mutation writes its history row in the same transaction, except
delete, which commits the history row *before* removing the live row so a
failure in between leaves an orphaned history entry rather than a silent
deletion.

Updates and toggles are read-modify-write under a row lock plus the
`version` column (SQLAlchemy optimistic versioning); a concurrent writer
surfaces as StaleDataError and the operation is retried from a fresh read.
"""
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from gallery_admin.config import settings
from gallery_admin.core.errors import (
    ConflictError, DependencyError, GovernanceError, NotFound, ValidationError,
)
from gallery_admin.db.base_class import utcnow
from gallery_admin.models.feature_flag import ChangeType, FeatureFlag, FeatureFlagHistory

logger = logging.getLogger("gallery_admin.flags.store")

T = TypeVar("T")

FLAG_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

UPDATABLE_FIELDS = frozenset({
    "name", "description", "flag_type", "category", "rollout_percentage",
    "target_plans", "target_user_ids", "target_user_emails",
    "starts_at", "ends_at", "is_killswitch",
})

_SNAPSHOT_FIELDS = (
    "id", "key", "name", "description", "is_enabled", "flag_type",
    "rollout_percentage", "target_plans", "target_user_ids", "target_user_emails",
    "starts_at", "ends_at", "category", "is_killswitch",
    "created_at", "updated_at", "created_by", "updated_by", "version",
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def _as_uuid(value: Union[UUID, str, None]) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def flag_snapshot(flag: FeatureFlag) -> Dict[str, Any]:
    """Full JSON-safe copy of a flag row, as stored in history."""
    return {field: _jsonable(getattr(flag, field)) for field in _SNAPSHOT_FIELDS}


def validate_flag_key(key: Any) -> str:
    if not isinstance(key, str) or not FLAG_KEY_PATTERN.fullmatch(key):
        raise ValidationError(
            "Flag key must be lowercase with underscores, starting with a letter",
            detail={"field": "key", "value": key},
        )
    return key


# ═══════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════

def get_flag(db: Session, *, flag_id: UUID) -> Optional[FeatureFlag]:
    return db.query(FeatureFlag).filter(FeatureFlag.id == _as_uuid(flag_id)).first()


def get_flag_by_key(db: Session, *, key: str) -> Optional[FeatureFlag]:
    return db.query(FeatureFlag).filter(FeatureFlag.key == key).first()


def list_flags(db: Session) -> List[FeatureFlag]:
    return db.query(FeatureFlag).order_by(FeatureFlag.category, FeatureFlag.name).all()


def get_history(db: Session, *, flag_id: UUID, limit: int = 50) -> List[FeatureFlagHistory]:
    return (
        db.query(FeatureFlagHistory)
        .filter(FeatureFlagHistory.flag_id == _as_uuid(flag_id))
        .order_by(FeatureFlagHistory.changed_at.desc())
        .limit(limit)
        .all()
    )


# ═══════════════════════════════════════════
#  Writes
# ═══════════════════════════════════════════

def _lock_flag(db: Session, criterion) -> Optional[FeatureFlag]:
    return (
        db.query(FeatureFlag)
        .filter(criterion)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _with_retry(db: Session, operation: Callable[[], T], attempts: int) -> T:
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StaleDataError:
            db.rollback()
            logger.warning(
                "Concurrent feature flag modification, retrying (%d/%d)", attempt, attempts,
                extra={"attempt": attempt},
            )
        except GovernanceError:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            raise ValidationError("Feature flag violates a database constraint") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            raise DependencyError("Feature flag store unavailable") from exc
    raise ConflictError(f"Feature flag changed concurrently; gave up after {attempts} attempts")


def create_flag(
    db: Session, *, values: Dict[str, Any], created_by: Union[UUID, str, None]
) -> FeatureFlag:
    """Insert a new, disabled flag and its `created` history row."""
    key = validate_flag_key(values.get("key"))
    actor = _as_uuid(created_by)
    fields = {k: v for k, v in values.items() if k in UPDATABLE_FIELDS}

    try:
        if db.query(FeatureFlag.id).filter(FeatureFlag.key == key).first() is not None:
            raise ValidationError(f"Flag '{key}' already exists", detail={"field": "key"})

        flag = FeatureFlag(
            key=key,
            is_enabled=False,
            created_by=actor,
            updated_by=actor,
            **fields,
        )
        db.add(flag)
        db.flush()
        db.add(FeatureFlagHistory(
            flag_id=flag.id,
            flag_key=flag.key,
            changed_by=actor,
            change_type=ChangeType.CREATED.value,
            old_value=None,
            new_value=flag_snapshot(flag),
        ))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError(f"Flag '{key}' already exists", detail={"field": "key"}) from exc
    except GovernanceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise DependencyError("Feature flag store unavailable") from exc

    db.refresh(flag)
    return flag


def update_flag(
    db: Session,
    *,
    flag_id: UUID,
    patch: Dict[str, Any],
    changed_by: Union[UUID, str, None],
    reason: Optional[str] = None,
    max_attempts: Optional[int] = None,
    validate: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> Tuple[FeatureFlag, FeatureFlagHistory]:
    """Apply *patch*, persisting only changed fields, and record one history row.

    History: old_value = full snapshot before the update, new_value = the
    requested patch.

    *validate* receives the locked row's fields merged with *patch* and may
    raise ValidationError; it runs on every attempt, after the lock.
    """
    unknown = sorted(set(patch) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
    actor = _as_uuid(changed_by)
    flag_uuid = _as_uuid(flag_id)

    def _apply() -> Tuple[FeatureFlag, FeatureFlagHistory]:
        flag = _lock_flag(db, FeatureFlag.id == flag_uuid)
        if flag is None:
            raise NotFound("Flag not found")
        old = flag_snapshot(flag)
        if validate is not None:
            merged = {field: getattr(flag, field) for field in UPDATABLE_FIELDS}
            merged.update(patch)
            validate(merged)

        for field, value in patch.items():
            if getattr(flag, field) != value:
                setattr(flag, field, value)
        flag.updated_at = utcnow()
        flag.updated_by = actor

        entry = FeatureFlagHistory(
            flag_id=flag.id,
            flag_key=flag.key,
            changed_by=actor,
            change_type=ChangeType.UPDATED.value,
            old_value=old,
            new_value=_jsonable(patch),
            reason=reason,
        )
        db.add(entry)
        db.commit()
        return flag, entry

    return _with_retry(db, _apply, max_attempts or settings.FLAG_UPDATE_MAX_RETRIES)


def set_enabled(
    db: Session,
    *,
    key: str,
    enabled: bool,
    changed_by: Union[UUID, str, None],
    reason: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> Tuple[FeatureFlag, FeatureFlagHistory]:
    """Flip the master switch; history records the actual prior value."""
    actor = _as_uuid(changed_by)

    def _apply() -> Tuple[FeatureFlag, FeatureFlagHistory]:
        flag = _lock_flag(db, FeatureFlag.key == key)
        if flag is None:
            raise NotFound(f"Flag not found: {key}")
        previous = bool(flag.is_enabled)

        flag.is_enabled = enabled
        flag.updated_at = utcnow()
        flag.updated_by = actor

        entry = FeatureFlagHistory(
            flag_id=flag.id,
            flag_key=flag.key,
            changed_by=actor,
            change_type=(ChangeType.ENABLED if enabled else ChangeType.DISABLED).value,
            old_value={"is_enabled": previous},
            new_value={"is_enabled": enabled},
            reason=reason,
        )
        db.add(entry)
        db.commit()
        return flag, entry

    return _with_retry(db, _apply, max_attempts or settings.FLAG_UPDATE_MAX_RETRIES)


def delete_flag(
    db: Session,
    *,
    flag_id: UUID,
    changed_by: Union[UUID, str, None],
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Record the deletion, commit it, then remove the live row.

    Returns the snapshot of the deleted flag.
    """
    actor = _as_uuid(changed_by)
    flag_uuid = _as_uuid(flag_id)

    try:
        flag = _lock_flag(db, FeatureFlag.id == flag_uuid)
        if flag is None:
            raise NotFound("Flag not found")
        snapshot = flag_snapshot(flag)
        db.add(FeatureFlagHistory(
            flag_id=flag.id,
            flag_key=flag.key,
            changed_by=actor,
            change_type=ChangeType.DELETED.value,
            old_value=snapshot,
            new_value=None,
            reason=reason,
        ))
        db.commit()
    except GovernanceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise DependencyError("Feature flag store unavailable") from exc

    try:
        removed = (
            db.query(FeatureFlag)
            .filter(FeatureFlag.id == flag_uuid, FeatureFlag.version == snapshot["version"])
            .delete(synchronize_session=False)
        )
        if removed != 1:
            db.rollback()
            logger.error(
                "Flag %s changed after its deletion was recorded; history entry is orphaned",
                snapshot["key"],
            )
            raise ConflictError("Feature flag changed concurrently; deletion not applied")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Deleting flag %s failed after history was written; history entry is orphaned",
            snapshot["key"],
        )
        raise DependencyError("Feature flag store unavailable") from exc

    db.expunge(flag)
    return snapshot

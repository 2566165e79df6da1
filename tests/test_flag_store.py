"""Flag store tests: history rows, optimistic concurrency, two-phase delete."""
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from gallery_admin.core.errors import (
    ConflictError, DependencyError, ImmutableRecordError, NotFound, ValidationError,
)
from gallery_admin.crud import crud_feature_flag
from gallery_admin.models.feature_flag import FeatureFlag, FeatureFlagHistory


def _create(db, users, key="new_gallery_viewer", **values):
    values.setdefault("name", "New gallery viewer")
    return crud_feature_flag.create_flag(
        db, values={"key": key, **values}, created_by=users["admin"].id
    )


@pytest.mark.parametrize("key", ["2bad", "Bad-Key", "", "has space", "_leading", "trailing\n"])
def test_invalid_keys_rejected(key):
    with pytest.raises(ValidationError):
        crud_feature_flag.validate_flag_key(key)


def test_valid_key_accepted():
    assert crud_feature_flag.validate_flag_key("safe_key1") == "safe_key1"


def test_create_starts_disabled_with_history(db, users):
    flag = _create(db, users, flag_type="percentage", rollout_percentage=20)
    assert flag.is_enabled is False
    assert flag.version == 1
    assert flag.created_by == users["admin"].id

    history = crud_feature_flag.get_history(db, flag_id=flag.id)
    assert [h.change_type for h in history] == ["created"]
    assert history[0].old_value is None
    assert history[0].new_value["key"] == "new_gallery_viewer"
    assert history[0].new_value["rollout_percentage"] == 20


def test_create_ignores_is_enabled(db, users):
    flag = _create(db, users, is_enabled=True)
    assert flag.is_enabled is False


def test_duplicate_key_is_validation_error(db, users):
    _create(db, users)
    with pytest.raises(ValidationError):
        _create(db, users)
    assert db.query(FeatureFlag).count() == 1


def test_update_writes_exactly_one_history_row(db, users):
    flag = _create(db, users)
    before = crud_feature_flag.flag_snapshot(flag)

    updated, entry = crud_feature_flag.update_flag(
        db,
        flag_id=flag.id,
        patch={"name": "Viewer v2", "description": "Second take"},
        changed_by=users["super_admin"].id,
        reason="rename",
    )
    assert updated.name == "Viewer v2"
    assert updated.version == 2
    assert updated.updated_by == users["super_admin"].id

    history = crud_feature_flag.get_history(db, flag_id=flag.id)
    updates = [h for h in history if h.change_type == "updated"]
    assert len(updates) == 1
    assert updates[0].id == entry.id
    assert updates[0].old_value == before
    assert updates[0].new_value == {"name": "Viewer v2", "description": "Second take"}
    assert updates[0].reason == "rename"


def test_update_rejects_non_updatable_fields(db, users):
    flag = _create(db, users)
    for patch in ({"key": "renamed"}, {"is_enabled": True}, {"version": 9}):
        with pytest.raises(ValidationError):
            crud_feature_flag.update_flag(db, flag_id=flag.id, patch=patch, changed_by=None)


def test_update_unknown_flag(db, users):
    with pytest.raises(NotFound):
        crud_feature_flag.update_flag(db, flag_id=uuid4(), patch={"name": "x"}, changed_by=None)


def test_set_enabled_records_prior_value(db, users):
    flag = _create(db, users)
    flag, entry = crud_feature_flag.set_enabled(
        db, key=flag.key, enabled=True, changed_by=users["admin"].id, reason="launch"
    )
    assert flag.is_enabled is True
    assert entry.change_type == "enabled"
    assert entry.old_value == {"is_enabled": False}
    assert entry.new_value == {"is_enabled": True}

    _, entry = crud_feature_flag.set_enabled(db, key=flag.key, enabled=False, changed_by=None)
    assert entry.change_type == "disabled"
    assert entry.old_value == {"is_enabled": True}


def test_set_enabled_unknown_key(db, users):
    with pytest.raises(NotFound):
        crud_feature_flag.set_enabled(db, key="nope", enabled=True, changed_by=None)


def test_delete_writes_history_first_and_keeps_it(db, users):
    flag = _create(db, users)
    flag_id = flag.id

    snapshot = crud_feature_flag.delete_flag(db, flag_id=flag_id, changed_by=users["admin"].id, reason="done")
    assert snapshot["key"] == "new_gallery_viewer"
    assert crud_feature_flag.get_flag(db, flag_id=flag_id) is None

    history = crud_feature_flag.get_history(db, flag_id=flag_id)
    assert [h.change_type for h in history][0] == "deleted"
    assert {h.change_type for h in history} == {"created", "deleted"}
    assert history[0].old_value["id"] == str(flag_id)
    assert history[0].flag_key == "new_gallery_viewer"


def test_delete_unknown_flag(db, users):
    with pytest.raises(NotFound):
        crud_feature_flag.delete_flag(db, flag_id=uuid4(), changed_by=None)
    assert db.query(FeatureFlagHistory).count() == 0


def test_stale_delete_is_conflict_and_leaves_orphaned_history(db, users, monkeypatch):
    flag = _create(db, users)
    flag_id = flag.id
    real_snapshot = crud_feature_flag.flag_snapshot

    def _snapshot_of_older_version(row):
        data = real_snapshot(row)
        data["version"] = data["version"] + 1
        return data

    monkeypatch.setattr(crud_feature_flag, "flag_snapshot", _snapshot_of_older_version)
    with pytest.raises(ConflictError):
        crud_feature_flag.delete_flag(db, flag_id=flag_id, changed_by=None)

    assert crud_feature_flag.get_flag(db, flag_id=flag_id) is not None
    history = crud_feature_flag.get_history(db, flag_id=flag_id)
    assert "deleted" in {h.change_type for h in history}


def test_history_rows_are_immutable(db, users):
    flag = _create(db, users)
    entry = crud_feature_flag.get_history(db, flag_id=flag.id)[0]

    entry.reason = "rewritten"
    with pytest.raises(ImmutableRecordError):
        db.commit()
    db.rollback()

    db.delete(entry)
    with pytest.raises(ImmutableRecordError):
        db.commit()
    db.rollback()


def test_list_flags_orders_by_category_then_name(db, users):
    _create(db, users, key="zeta", name="Zeta", category="ui")
    _create(db, users, key="alpha", name="Alpha", category="ui")
    _create(db, users, key="beta", name="Beta", category="billing")
    assert [f.key for f in crud_feature_flag.list_flags(db)] == ["beta", "alpha", "zeta"]


# ── retry policy ──

class _FakeDB:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


def test_stale_data_is_retried_then_succeeds():
    db = _FakeDB()
    attempts = SimpleNamespace(n=0)

    def _operation():
        attempts.n += 1
        if attempts.n < 3:
            raise StaleDataError("version mismatch")
        return "ok"

    assert crud_feature_flag._with_retry(db, _operation, 3) == "ok"
    assert db.rollbacks == 2


def test_stale_data_exhausts_to_conflict():
    db = _FakeDB()

    def _operation():
        raise StaleDataError("version mismatch")

    with pytest.raises(ConflictError):
        crud_feature_flag._with_retry(db, _operation, 3)
    assert db.rollbacks == 3


def test_datastore_error_is_dependency_error():
    db = _FakeDB()

    def _operation():
        raise OperationalError("UPDATE", {}, Exception("statement timeout"))

    with pytest.raises(DependencyError):
        crud_feature_flag._with_retry(db, _operation, 3)
    assert db.rollbacks == 1


def test_pool_timeout_is_dependency_error():
    db = _FakeDB()

    def _operation():
        raise PoolTimeoutError("QueuePool limit of size 10 overflow 20 reached")

    with pytest.raises(DependencyError):
        crud_feature_flag._with_retry(db, _operation, 3)
    assert db.rollbacks == 1


def test_constraint_violation_is_validation_error():
    db = _FakeDB()

    def _operation():
        raise IntegrityError("UPDATE feature_flags", {}, Exception("violates check constraint"))

    with pytest.raises(ValidationError):
        crud_feature_flag._with_retry(db, _operation, 3)
    assert db.rollbacks == 1


def test_update_validator_sees_locked_row(db, users):
    flag = _create(db, users, key="window", rollout_percentage=10)
    seen = []

    def _validate(state):
        seen.append(dict(state))
        if state["rollout_percentage"] > 50:
            raise ValidationError("too high")

    with pytest.raises(ValidationError):
        crud_feature_flag.update_flag(
            db, flag_id=flag.id, patch={"rollout_percentage": 80},
            changed_by=users["admin"].id, validate=_validate,
        )
    assert seen[0]["name"] == "New gallery viewer"
    assert seen[0]["rollout_percentage"] == 80

    db.expire_all()
    assert crud_feature_flag.get_flag(db, flag_id=flag.id).rollout_percentage == 10
    assert [h.change_type for h in crud_feature_flag.get_history(db, flag_id=flag.id)] == ["created"]

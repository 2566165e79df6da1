"""List backend selection and equivalence."""
from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

from gallery_admin.crud import crud_feature_flag
from gallery_admin.db.session import engine
from gallery_admin.services.flag_queries import (
    DirectFlagQuery, StoredProcedureFlagQuery, select_flag_query_backend,
)


def test_sqlite_selects_direct_backend():
    backend = select_flag_query_backend(engine)
    assert isinstance(backend, DirectFlagQuery)
    assert backend.name == "direct"


def test_postgres_without_function_falls_back(monkeypatch):
    from gallery_admin.services import flag_queries

    monkeypatch.setattr(flag_queries, "_stored_function_installed", lambda e: False)
    fake_engine = SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))
    assert isinstance(select_flag_query_backend(fake_engine), DirectFlagQuery)

    monkeypatch.setattr(flag_queries, "_stored_function_installed", lambda e: True)
    assert isinstance(select_flag_query_backend(fake_engine), StoredProcedureFlagQuery)


class _Rows:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return self._rows


class _FakeSession:
    def __init__(self, rows):
        self.rows = rows
        self.statements = []

    def execute(self, statement):
        self.statements.append(str(statement))
        return _Rows(self.rows)


def test_backends_return_identical_summaries(db, users):
    crud_feature_flag.create_flag(
        db,
        values={
            "key": "beta_list", "name": "Beta list", "flag_type": "user_list", "category": "experimental",
            "target_user_ids": ["u1"], "target_user_emails": ["a@x.test", "b@x.test"],
        },
        created_by=users["admin"].id,
    )
    crud_feature_flag.create_flag(
        db, values={"key": "dark_mode", "name": "Dark mode", "category": "ui"}, created_by=None
    )
    direct = DirectFlagQuery().list_flags(db)

    # what get_all_feature_flags() returns for the same rows
    rows = [
        {
            "id": f.id, "key": f.key, "name": f.name, "description": f.description,
            "is_enabled": f.is_enabled, "flag_type": f.flag_type,
            "rollout_percentage": f.rollout_percentage, "target_plans": f.target_plans,
            "target_user_count": f.target_user_count, "starts_at": f.starts_at, "ends_at": f.ends_at,
            "category": f.category, "is_killswitch": f.is_killswitch,
            "created_at": f.created_at, "updated_at": f.updated_at,
        }
        for f in direct
    ]
    session = _FakeSession(rows)
    stored = StoredProcedureFlagQuery().list_flags(session)

    assert stored == direct
    assert session.statements == ["SELECT * FROM get_all_feature_flags()"]
    assert [f.key for f in direct] == ["beta_list", "dark_mode"]
    assert direct[0].target_user_count == 3


def test_stored_backend_tolerates_nulls():
    now = datetime.now(timezone.utc)
    row = {
        "id": uuid4(), "key": "k", "name": "K", "description": None, "is_enabled": False,
        "flag_type": "boolean", "rollout_percentage": None, "target_plans": None,
        "target_user_count": None, "starts_at": None, "ends_at": None, "category": "general",
        "is_killswitch": False, "created_at": now, "updated_at": now,
    }
    (summary,) = StoredProcedureFlagQuery().list_flags(_FakeSession([row]))
    assert summary.rollout_percentage == 0
    assert summary.target_plans == []
    assert summary.target_user_count == 0

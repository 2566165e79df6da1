"""Unit tests for the flag evaluation entry point."""
from types import SimpleNamespace

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from gallery_admin.middleware.metrics import FLAG_EVALUATION_ERRORS, FLAG_EVALUATIONS
from gallery_admin.services import feature_flags, flag_evaluator
from gallery_admin.services.feature_flags import explain_flag, is_flag_enabled, safe_explain_flag


class _FakeQuery:
    def __init__(self, result):
        self._result = result

    def filter(self, *args, **kwargs):
        return self

    def first(self):
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


class _FakeSession:
    def __init__(self, result):
        self._result = result
        self.rolled_back = False

    def query(self, *args, **kwargs):
        return _FakeQuery(self._result)

    def rollback(self):
        self.rolled_back = True


def _flag(enabled=True, flag_type="boolean", rollout=0, plans=None, emails=None):
    return SimpleNamespace(
        key="flag",
        is_enabled=enabled,
        flag_type=flag_type,
        rollout_percentage=rollout,
        target_plans=plans or [],
        target_user_ids=[],
        target_user_emails=emails or [],
        starts_at=None,
        ends_at=None,
    )


def test_flag_disabled():
    db = _FakeSession(_flag(enabled=False))
    assert is_flag_enabled(db, "flag", user_id="u1") is False


def test_unknown_flag_is_off():
    db = _FakeSession(None)
    assert is_flag_enabled(db, "missing") is False
    assert explain_flag(db, "missing").reason == "not_found"


def test_plan_targeting():
    db = _FakeSession(_flag(flag_type="plan_based", plans=["studio"]))
    assert is_flag_enabled(db, "flag", user_plan="studio") is True
    assert is_flag_enabled(db, "flag", user_plan="free") is False


def test_email_targeting_ignores_case():
    db = _FakeSession(_flag(flag_type="user_list", emails=["Ana@Studio.test"]))
    assert is_flag_enabled(db, "flag", user_email="ana@studio.TEST") is True


def test_rollout_full():
    db = _FakeSession(_flag(flag_type="percentage", rollout=100))
    assert is_flag_enabled(db, "flag", user_id="u1") is True


def test_datastore_failure_is_unavailable_not_false():
    db = _FakeSession(OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout")))
    result = explain_flag(db, "flag", user_id="u1")
    assert result.enabled is False
    assert result.reason == "unavailable"
    assert db.rolled_back is True
    assert is_flag_enabled(db, "flag", user_id="u1") is False


def test_unexpected_error_never_escapes():
    db = _FakeSession(RuntimeError("boom"))
    assert is_flag_enabled(db, "flag", user_id="u1") is False


def test_pool_timeout_is_unavailable():
    db = _FakeSession(PoolTimeoutError("QueuePool limit of size 10 overflow 20 reached"))
    result = explain_flag(db, "flag", user_id="u1")
    assert (result.enabled, result.reason) == (False, "unavailable")
    assert db.rolled_back is True


def _evaluations(result: str) -> float:
    return FLAG_EVALUATIONS.labels(result=result)._value.get()


def test_outcomes_are_counted_by_caller_not_evaluator():
    flag = _flag()
    before = _evaluations("true")
    assert flag_evaluator.explain(flag).enabled is True
    assert _evaluations("true") == before

    explain_flag(_FakeSession(flag), "flag")
    assert _evaluations("true") == before + 1


def test_evaluator_error_is_counted():
    broken = SimpleNamespace(key="flag", is_enabled=True, starts_at="not-a-date", ends_at=None)
    before = FLAG_EVALUATION_ERRORS._value.get()
    result = explain_flag(_FakeSession(broken), "flag", user_id="u1")
    assert result.reason == "evaluation_error"
    assert FLAG_EVALUATION_ERRORS._value.get() == before + 1


def test_safe_explain_turns_unexpected_errors_into_off(monkeypatch):
    def _explode(*args, **kwargs):
        raise KeyError("flag_type")

    monkeypatch.setattr(feature_flags, "explain_flag", _explode)
    result = safe_explain_flag(_FakeSession(None), "flag", user_id="u1")
    assert (result.key, result.enabled, result.reason) == ("flag", False, "evaluation_error")

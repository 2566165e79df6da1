"""Pure feature flag evaluation.

Decision order (first failing check short-circuits to False):
1. Master switch off           → master_disabled (covers kill-switches)
2. Outside [starts_at, ends_at] → before_start_date / after_end_date
3. Strategy by flag_type
Any internal error evaluates to False (fail-closed).

No I/O, no metrics and no locking: safe to call concurrently on
already-fetched rows. Callers record outcomes (services.feature_flags).
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from gallery_admin.models.feature_flag import FlagType

logger = logging.getLogger("gallery_admin.flags.evaluator")

EVALUATION_ERROR = "evaluation_error"


@dataclass(frozen=True)
class EvaluationSubject:
    user_id: Optional[str] = None
    user_plan: Optional[str] = None
    user_email: Optional[str] = None


@dataclass(frozen=True)
class Evaluation:
    enabled: bool
    reason: str


def rollout_bucket(flag_key: str, user_id: str) -> float:
    """Deterministic position in [0, 100) for a (flag, user) pair.

    Depends only on the pair, so raising rollout_percentage only ever adds
    users: the included set at p is a subset of the included set at p' > p.
    """
    h = hashlib.sha256(f"{flag_key}:{user_id}".encode()).hexdigest()
    return int(h[:8], 16) / 0x100000000 * 100


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _decide(flag: Any, subject: EvaluationSubject, now: datetime) -> Evaluation:
    if not flag.is_enabled:
        return Evaluation(False, "master_disabled")

    if flag.starts_at is not None and now < _as_utc(flag.starts_at):
        return Evaluation(False, "before_start_date")
    if flag.ends_at is not None and now > _as_utc(flag.ends_at):
        return Evaluation(False, "after_end_date")

    flag_type = flag.flag_type
    if flag_type == FlagType.BOOLEAN.value:
        return Evaluation(True, "boolean_enabled")

    if flag_type == FlagType.PERCENTAGE.value:
        if not subject.user_id:
            return Evaluation(False, "missing_subject")
        bucket = rollout_bucket(flag.key, str(subject.user_id))
        if bucket < float(flag.rollout_percentage or 0):
            return Evaluation(True, "percentage_match")
        return Evaluation(False, "percentage_miss")

    if flag_type == FlagType.PLAN_BASED.value:
        if subject.user_plan is not None and subject.user_plan in (flag.target_plans or []):
            return Evaluation(True, "plan_match")
        return Evaluation(False, "plan_miss")

    if flag_type == FlagType.USER_LIST.value:
        if subject.user_id and str(subject.user_id) in {str(u) for u in flag.target_user_ids or []}:
            return Evaluation(True, "user_id_match")
        if subject.user_email:
            emails = {e.strip().lower() for e in flag.target_user_emails or []}
            if subject.user_email.strip().lower() in emails:
                return Evaluation(True, "user_email_match")
        return Evaluation(False, "user_list_miss")

    if flag_type == FlagType.DATE_RANGE.value:
        return Evaluation(True, "date_range_match")

    return Evaluation(False, "unknown_flag_type")


def explain(flag: Any, subject: Optional[EvaluationSubject] = None,
            now: Optional[datetime] = None) -> Evaluation:
    """Evaluate *flag* for *subject* and report why."""
    try:
        result = _decide(
            flag,
            subject or EvaluationSubject(),
            _as_utc(now) if now is not None else datetime.now(timezone.utc),
        )
    except Exception:
        logger.exception("Flag evaluation failed for %r; treating as off", getattr(flag, "key", None))
        result = Evaluation(False, EVALUATION_ERROR)
    return result


def evaluate(flag: Any, subject: Optional[EvaluationSubject] = None,
             now: Optional[datetime] = None) -> bool:
    return explain(flag, subject, now).enabled

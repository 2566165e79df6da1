"""Feature flag evaluation for consuming features.

Usage:
    if is_flag_enabled(db, "new_gallery_viewer", user_id=user.id, user_plan=user.plan):
        ...

Fail-closed: an unknown key, an unreachable datastore or an evaluator error
all read as "off". `explain_flag` keeps those cases apart for diagnostics.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gallery_admin.middleware.metrics import FLAG_EVALUATION_ERRORS, FLAG_EVALUATIONS
from gallery_admin.models.feature_flag import FeatureFlag
from gallery_admin.schemas.feature_flag import FeatureFlagEvaluation
from gallery_admin.services import flag_evaluator
from gallery_admin.services.flag_evaluator import EVALUATION_ERROR, EvaluationSubject

logger = logging.getLogger("gallery_admin.flags")


def _record(evaluation: FeatureFlagEvaluation) -> FeatureFlagEvaluation:
    if evaluation.reason == EVALUATION_ERROR:
        FLAG_EVALUATION_ERRORS.inc()
    FLAG_EVALUATIONS.labels(result=str(evaluation.enabled).lower()).inc()
    return evaluation


def explain_flag(
    db: Session,
    flag_key: str,
    user_id: Optional[Any] = None,
    user_plan: Optional[str] = None,
    user_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FeatureFlagEvaluation:
    """Evaluate *flag_key* and report the deciding reason.

    Extra reasons beyond the evaluator's: `not_found` and `unavailable`
    (datastore error, statement timeout or exhausted connection pool).
    """
    try:
        flag: Optional[FeatureFlag] = (
            db.query(FeatureFlag).filter(FeatureFlag.key == flag_key).first()
        )
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Flag store unavailable while evaluating %s", flag_key, exc_info=True)
        return _record(FeatureFlagEvaluation(key=flag_key, enabled=False, reason="unavailable"))

    if flag is None:
        return _record(FeatureFlagEvaluation(key=flag_key, enabled=False, reason="not_found"))

    subject = EvaluationSubject(
        user_id=str(user_id) if user_id is not None else None,
        user_plan=user_plan,
        user_email=user_email,
    )
    result = flag_evaluator.explain(flag, subject, now)
    return _record(FeatureFlagEvaluation(key=flag_key, enabled=result.enabled, reason=result.reason))


def safe_explain_flag(
    db: Session,
    flag_key: str,
    user_id: Optional[Any] = None,
    user_plan: Optional[str] = None,
    user_email: Optional[str] = None,
) -> FeatureFlagEvaluation:
    """`explain_flag` that never raises; anything unexpected reads as off."""
    try:
        return explain_flag(db, flag_key, user_id, user_plan, user_email)
    except Exception:
        logger.exception("Unexpected error evaluating flag %s; treating as off", flag_key)
        return _record(FeatureFlagEvaluation(key=flag_key, enabled=False, reason=EVALUATION_ERROR))


def is_flag_enabled(
    db: Session,
    flag_key: str,
    user_id: Optional[Any] = None,
    user_plan: Optional[str] = None,
    user_email: Optional[str] = None,
) -> bool:
    """True only when the flag exists and its strategy admits the user. Never raises."""
    return safe_explain_flag(db, flag_key, user_id, user_plan, user_email).enabled

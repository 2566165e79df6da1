"""Flag list backends.

Two interchangeable implementations of the admin list view:
- StoredProcedureFlagQuery: `get_all_feature_flags()` SQL function (PostgreSQL,
  installed by the governance migration)
- DirectFlagQuery: plain ORM query, works everywhere

The backend is chosen once at startup by `select_flag_query_backend`; both
return the same rows in the same order (category, name).
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gallery_admin.crud import crud_feature_flag
from gallery_admin.middleware.metrics import FLAG_QUERY_BACKEND
from gallery_admin.schemas.feature_flag import FeatureFlagSummary

logger = logging.getLogger("gallery_admin.flags.queries")

STORED_FUNCTION = "get_all_feature_flags"


class FlagQueryBackend(ABC):
    name: str = "abstract"

    @abstractmethod
    def list_flags(self, db: Session) -> List[FeatureFlagSummary]:
        ...


class DirectFlagQuery(FlagQueryBackend):
    name = "direct"

    def list_flags(self, db: Session) -> List[FeatureFlagSummary]:
        return [
            FeatureFlagSummary(
                id=flag.id,
                key=flag.key,
                name=flag.name,
                description=flag.description,
                is_enabled=flag.is_enabled,
                flag_type=flag.flag_type,
                rollout_percentage=flag.rollout_percentage or 0,
                target_plans=list(flag.target_plans or []),
                target_user_count=len(flag.target_user_ids or []) + len(flag.target_user_emails or []),
                starts_at=flag.starts_at,
                ends_at=flag.ends_at,
                category=flag.category,
                is_killswitch=flag.is_killswitch,
                created_at=flag.created_at,
                updated_at=flag.updated_at,
            )
            for flag in crud_feature_flag.list_flags(db)
        ]


class StoredProcedureFlagQuery(FlagQueryBackend):
    name = "stored_procedure"

    @staticmethod
    def _to_summary(row: Mapping[str, Any]) -> FeatureFlagSummary:
        data = dict(row)
        data["rollout_percentage"] = data.get("rollout_percentage") or 0
        data["target_plans"] = list(data.get("target_plans") or [])
        data["target_user_count"] = data.get("target_user_count") or 0
        return FeatureFlagSummary(**data)

    def list_flags(self, db: Session) -> List[FeatureFlagSummary]:
        rows = db.execute(text(f"SELECT * FROM {STORED_FUNCTION}()")).mappings().all()
        return [self._to_summary(row) for row in rows]


def _stored_function_installed(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            found = conn.execute(
                text("SELECT to_regprocedure(:signature)"),
                {"signature": f"{STORED_FUNCTION}()"},
            ).scalar()
    except SQLAlchemyError as exc:
        logger.warning("Could not probe for %s(): %s", STORED_FUNCTION, exc)
        return False
    return found is not None


def select_flag_query_backend(engine: Engine) -> FlagQueryBackend:
    """Probe the datastore once and pick the list backend."""
    if engine.dialect.name == "postgresql" and _stored_function_installed(engine):
        backend: FlagQueryBackend = StoredProcedureFlagQuery()
    else:
        backend = DirectFlagQuery()

    FLAG_QUERY_BACKEND.info({"backend": backend.name})
    logger.info("Feature flag list backend: %s", backend.name, extra={"backend": backend.name})
    return backend

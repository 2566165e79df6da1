"""Feature Flag management API: requires the system.feature_flags capability.

Endpoints:
- GET    /feature-flags                      → list all flags
- GET    /feature-flags/stats                → counts by state / category / type
- GET    /feature-flags/by-category          → flags grouped by category
- POST   /feature-flags                      → create flag (disabled)
- GET    /feature-flags/{flag_id}            → get single flag
- PATCH  /feature-flags/{flag_id}            → update flag
- DELETE /feature-flags/{flag_id}            → delete flag
- POST   /feature-flags/{key}/toggle         → enable / disable
- GET    /feature-flags/{flag_id}/history    → change trail
- GET    /feature-flags/{key}/evaluate       → evaluate for the calling user
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gallery_admin.api import deps
from gallery_admin.config import settings
from gallery_admin.models.user import User
from gallery_admin.schemas.feature_flag import (
    FeatureFlag,
    FeatureFlagCreate,
    FeatureFlagEvaluation,
    FeatureFlagHistoryEntry,
    FeatureFlagStats,
    FeatureFlagSummary,
    FeatureFlagToggle,
    FeatureFlagUpdate,
)
from gallery_admin.services.feature_flags import safe_explain_flag
from gallery_admin.services.flag_admin import FeatureFlagAdminService

router = APIRouter()


@router.get("/", response_model=List[FeatureFlagSummary])
def list_feature_flags(
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.list_flags()


@router.get("/stats", response_model=FeatureFlagStats)
def feature_flag_stats(
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.get_flag_stats()


@router.get("/by-category", response_model=Dict[str, List[FeatureFlagSummary]])
def feature_flags_by_category(
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.get_flags_by_category()


@router.post("/", response_model=FeatureFlag, status_code=201)
def create_feature_flag(
    body: FeatureFlagCreate,
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.create_flag(body)


@router.get("/{flag_id}", response_model=FeatureFlag)
def get_feature_flag(
    flag_id: UUID,
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.get_flag(flag_id)


@router.patch("/{flag_id}", response_model=FeatureFlag)
def update_feature_flag(
    flag_id: UUID,
    body: FeatureFlagUpdate,
    reason: Optional[str] = None,
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.update_flag(flag_id, body, reason=reason)


@router.delete("/{flag_id}")
def delete_feature_flag(
    flag_id: UUID,
    reason: Optional[str] = None,
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    snapshot = service.delete_flag(flag_id, reason=reason)
    return {"ok": True, "key": snapshot["key"]}


@router.post("/{key}/toggle", response_model=FeatureFlag)
def toggle_feature_flag(
    key: str,
    body: FeatureFlagToggle,
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.toggle_flag(key, body.enabled, reason=body.reason)


@router.get("/{flag_id}/history", response_model=List[FeatureFlagHistoryEntry])
def feature_flag_history(
    flag_id: UUID,
    limit: int = Query(settings.FLAG_HISTORY_DEFAULT_LIMIT, ge=1, le=500),
    service: FeatureFlagAdminService = Depends(deps.get_flag_admin_service),
) -> Any:
    return service.get_flag_history(flag_id, limit=limit)


@router.get("/{key}/evaluate", response_model=FeatureFlagEvaluation)
def evaluate_feature_flag(
    key: str,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_active_user),
) -> Any:
    """Evaluate a flag for the calling user (id, plan and email from their record).

    Never fails once authenticated: errors come back as enabled=false with
    reason `unavailable` or `evaluation_error`.
    """
    return safe_explain_flag(
        db, key, user_id=current_user.id, user_plan=current_user.plan, user_email=current_user.email
    )

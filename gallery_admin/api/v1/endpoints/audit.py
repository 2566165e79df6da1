from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gallery_admin.api import deps
from gallery_admin.api.deps_permissions import require_view_audit
from gallery_admin.config import settings
from gallery_admin.crud import crud_audit
from gallery_admin.db.session import datastore_errors
from gallery_admin.schemas.audit import AuditAdmin, AuditLog, AuditLogFilters, AuditLogPage
from gallery_admin.services.identity import Principal

router = APIRouter()

AUDIT_STORE_UNAVAILABLE = "Audit log store unavailable"


@router.get("/logs", response_model=AuditLogPage)
def get_audit_logs(
    db: Session = Depends(deps.get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.AUDIT_PAGE_SIZE_DEFAULT, ge=1, le=settings.AUDIT_PAGE_SIZE_MAX),
    action: Optional[str] = None,
    admin_id: Optional[UUID] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    _: Principal = Depends(require_view_audit),
) -> Any:
    """
    Admin audit trail, newest first.
    - Capability: system.view_audit
    """
    filters = AuditLogFilters(
        action=action,
        admin_id=admin_id,
        target_type=target_type,
        target_id=target_id,
        start_date=start_date,
        end_date=end_date,
    )
    with datastore_errors(db, AUDIT_STORE_UNAVAILABLE):
        rows, total, total_pages = crud_audit.get_audit_logs(
            db, page=page, page_size=page_size, filters=filters
        )
    return AuditLogPage(
        data=[AuditLog.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.get("/actions", response_model=List[str])
def get_audit_action_types(
    db: Session = Depends(deps.get_db),
    _: Principal = Depends(require_view_audit),
) -> Any:
    """Distinct action names, for filter dropdowns."""
    with datastore_errors(db, AUDIT_STORE_UNAVAILABLE):
        return crud_audit.get_audit_action_types(db, scan_limit=settings.AUDIT_DISTINCT_SCAN_LIMIT)


@router.get("/admins", response_model=List[AuditAdmin])
def get_audit_admins(
    db: Session = Depends(deps.get_db),
    _: Principal = Depends(require_view_audit),
) -> Any:
    """Admins that appear in the trail."""
    with datastore_errors(db, AUDIT_STORE_UNAVAILABLE):
        return crud_audit.get_audit_admins(db, scan_limit=settings.AUDIT_DISTINCT_SCAN_LIMIT)

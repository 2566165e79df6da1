import math
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
from sqlalchemy.orm import Session
from gallery_admin.models.audit import AdminAuditLog
from gallery_admin.schemas.audit import AuditLogFilters


def create_audit_log(
    db: Session,
    *,
    admin_id: UUID,
    admin_email: str,
    admin_role: str,
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    target_identifier: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    request_id: Optional[str] = None,
) -> AdminAuditLog:
    db_obj = AdminAuditLog(
        admin_id=admin_id,
        admin_email=admin_email,
        admin_role=admin_role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        target_identifier=target_identifier,
        metadata_=metadata or {},
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=request_id,
    )
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def _filtered(db: Session, filters: Optional[AuditLogFilters]):
    query = db.query(AdminAuditLog)
    if filters is None:
        return query

    if filters.action:
        query = query.filter(AdminAuditLog.action == filters.action)
    if filters.admin_id:
        query = query.filter(AdminAuditLog.admin_id == filters.admin_id)
    if filters.target_type:
        query = query.filter(AdminAuditLog.target_type == filters.target_type)
    if filters.target_id:
        query = query.filter(AdminAuditLog.target_id == filters.target_id)
    if filters.start_date:
        query = query.filter(AdminAuditLog.created_at >= filters.start_date)
    if filters.end_date:
        query = query.filter(AdminAuditLog.created_at <= filters.end_date)
    return query


def get_audit_logs(
    db: Session,
    *,
    page: int = 1,
    page_size: int = 50,
    filters: Optional[AuditLogFilters] = None,
) -> Tuple[List[AdminAuditLog], int, int]:
    """Return (rows, total, total_pages), newest first."""
    query = _filtered(db, filters)
    total = query.count()
    rows = (
        query.order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total, math.ceil(total / page_size) if page_size else 0


def get_audit_action_types(db: Session, *, scan_limit: int = 1000) -> List[str]:
    """Distinct action names for filter dropdowns."""
    rows = (
        db.query(AdminAuditLog.action)
        .order_by(AdminAuditLog.created_at.desc())
        .limit(scan_limit)
        .all()
    )
    return sorted({r.action for r in rows})


def get_audit_admins(db: Session, *, scan_limit: int = 1000) -> List[Dict[str, Any]]:
    """Distinct (admin_id, admin_email) pairs, first seen email wins."""
    rows = (
        db.query(AdminAuditLog.admin_id, AdminAuditLog.admin_email)
        .order_by(AdminAuditLog.created_at.desc())
        .limit(scan_limit)
        .all()
    )
    admins: Dict[UUID, str] = {}
    for r in rows:
        admins.setdefault(r.admin_id, r.admin_email)
    return [{"id": admin_id, "email": email} for admin_id, email in admins.items()]

from typing import Any, Dict, List, Optional
from uuid import UUID
from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field


class AuditLog(BaseModel):
    id: UUID
    admin_id: UUID
    admin_email: str
    admin_role: str
    action: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    target_identifier: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata"))
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogFilters(BaseModel):
    action: Optional[str] = None
    admin_id: Optional[UUID] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class AuditLogPage(BaseModel):
    data: List[AuditLog]
    total: int
    page: int
    page_size: int
    total_pages: int


class AuditAdmin(BaseModel):
    id: UUID
    email: str

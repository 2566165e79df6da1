"""Feature Flag schemas.

Input models only check types; key format, enum membership and cross-field
rules are enforced by the administration service so every rejection surfaces
as the same `validation_error`.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


class FeatureFlagCreate(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    flag_type: str = "boolean"
    category: str = "general"
    rollout_percentage: int = 0
    target_plans: List[str] = Field(default_factory=list)
    target_user_ids: List[str] = Field(default_factory=list)
    target_user_emails: List[str] = Field(default_factory=list)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_killswitch: bool = False


class FeatureFlagUpdate(BaseModel):
    """Partial update; only fields explicitly sent are applied.

    Sending `null` for description / starts_at / ends_at clears them.
    `key` and `is_enabled` are accepted only so they can be rejected
    explicitly; use toggle to flip the master switch.
    """
    key: Optional[str] = None
    is_enabled: Optional[bool] = None
    name: Optional[str] = None
    description: Optional[str] = None
    flag_type: Optional[str] = None
    category: Optional[str] = None
    rollout_percentage: Optional[int] = None
    target_plans: Optional[List[str]] = None
    target_user_ids: Optional[List[str]] = None
    target_user_emails: Optional[List[str]] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_killswitch: Optional[bool] = None


class FeatureFlagToggle(BaseModel):
    enabled: bool
    reason: Optional[str] = None


class FeatureFlag(BaseModel):
    id: UUID
    key: str
    name: str
    description: Optional[str] = None
    is_enabled: bool
    flag_type: str
    rollout_percentage: int = 0
    target_plans: List[str] = Field(default_factory=list)
    target_user_ids: List[str] = Field(default_factory=list)
    target_user_emails: List[str] = Field(default_factory=list)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    category: str
    is_killswitch: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[UUID] = None
    version: int

    class Config:
        from_attributes = True


class FeatureFlagSummary(BaseModel):
    """List view row; target users are reported as a count only."""
    id: UUID
    key: str
    name: str
    description: Optional[str] = None
    is_enabled: bool
    flag_type: str
    rollout_percentage: int = 0
    target_plans: List[str] = Field(default_factory=list)
    target_user_count: int = 0
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    category: str
    is_killswitch: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FeatureFlagHistoryEntry(BaseModel):
    id: UUID
    flag_id: UUID
    flag_key: str
    changed_by: Optional[UUID] = None
    change_type: str
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True


class FeatureFlagStats(BaseModel):
    total: int
    enabled: int
    disabled: int
    by_category: Dict[str, int]
    by_type: Dict[str, int]


class FeatureFlagEvaluation(BaseModel):
    key: str
    enabled: bool
    reason: str

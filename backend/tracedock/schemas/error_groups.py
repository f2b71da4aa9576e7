# tracedock/schemas/error_groups.py
"""
Schemas for error groups (GET/PATCH /error-groups...).
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import Field

from tracedock.schemas.common import ApiModel, Timestamp

ErrorGroupStatus = Literal["unreviewed", "reviewed", "ignored", "resolved"]
ERROR_GROUP_STATUSES = ("unreviewed", "reviewed", "ignored", "resolved")

SortBy = Literal["last_seen", "first_seen", "occurrence_count"]
SortOrder = Literal["asc", "desc"]


class ErrorGroup(ApiModel):
    id: str
    fingerprint: str
    message: str = Field(..., description="Message of the first occurrence")
    app_name: str
    first_seen: Timestamp
    last_seen: Timestamp
    occurrence_count: int = Field(..., ge=1)
    status: ErrorGroupStatus = "unreviewed"
    stack_trace_preview: Optional[str] = None


class ErrorGroupsQuery(ApiModel):
    app_name: Optional[str] = None
    status: Optional[ErrorGroupStatus] = None
    search: Optional[str] = None
    sort_by: SortBy = "last_seen"
    sort_order: SortOrder = "desc"
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class ErrorGroupsResponse(ApiModel):
    error_groups: List[ErrorGroup] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int
    offset: int


class UpdateErrorGroupStatus(ApiModel):
    status: ErrorGroupStatus


class TrendPoint(ApiModel):
    date: str = Field(..., description="UTC day (YYYY-MM-DD)")
    count: int


class ErrorGroupStats(ApiModel):
    total_groups: int
    total_occurrences: int
    by_status: Dict[str, int]
    by_app: Dict[str, int]
    recent_trend: List[TrendPoint] = Field(default_factory=list)

# tracedock/api/routes/error_groups.py
"""
Error group endpoints.

- GET   /error-groups                   filtered, sortable, paginated
- GET   /error-groups/stats             totals, per-status/app counts, 7-day trend
- GET   /error-groups/{id}
- PATCH /error-groups/{id}/status       {status}
- GET   /error-groups/{id}/occurrences  logs belonging to the group (timestamp desc)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from tracedock.api.deps import get_repository
from tracedock.core.errors import NotFoundError
from tracedock.db.repository import Repository
from tracedock.schemas.common import SuccessResponse
from tracedock.schemas.error_groups import (
    ErrorGroup,
    ErrorGroupsQuery,
    ErrorGroupsResponse,
    ErrorGroupStats,
    ErrorGroupStatus,
    SortBy,
    SortOrder,
    UpdateErrorGroupStatus,
)
from tracedock.schemas.logs import LogsResponse

router = APIRouter()


@router.get("/error-groups", response_model=ErrorGroupsResponse)
async def list_error_groups(
    app_name: Optional[str] = Query(default=None, alias="appName"),
    status: Optional[ErrorGroupStatus] = Query(default=None),
    search: Optional[str] = Query(default=None, description="Message substring"),
    sort_by: SortBy = Query(default="last_seen", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    repository: Repository = Depends(get_repository),
):
    query = ErrorGroupsQuery(
        app_name=app_name,
        status=status,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return await repository.get_error_groups(query)


# Registered before /{group_id} so "stats" is not taken for an id.
@router.get("/error-groups/stats", response_model=ErrorGroupStats)
async def error_group_stats(repository: Repository = Depends(get_repository)):
    return await repository.get_error_group_stats()


@router.get("/error-groups/{group_id}", response_model=ErrorGroup)
async def get_error_group(group_id: str, repository: Repository = Depends(get_repository)):
    group = await repository.get_error_group_by_id(group_id)
    if group is None:
        raise NotFoundError("Error group not found")
    return group


@router.patch("/error-groups/{group_id}/status", response_model=SuccessResponse)
async def update_error_group_status(
    group_id: str,
    body: UpdateErrorGroupStatus,
    repository: Repository = Depends(get_repository),
):
    if not await repository.update_error_group_status(group_id, body.status):
        raise NotFoundError("Error group not found")
    return SuccessResponse()


@router.get("/error-groups/{group_id}/occurrences", response_model=LogsResponse)
async def error_group_occurrences(
    group_id: str,
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    repository: Repository = Depends(get_repository),
):
    if await repository.get_error_group_by_id(group_id) is None:
        raise NotFoundError("Error group not found")
    return await repository.get_error_group_occurrences(group_id, limit=limit, offset=offset)

# tracedock/api/routes/logs.py
"""
Log browsing endpoints.

- GET /logs             filtered + paginated (timestamp desc)
- GET /logs-filtered    same, optionally hiding logs of ignored error groups
- GET /logs/{id}        one entry
- GET /stats, /apps, /sessions, /metadata-keys, /suggestions
                        small lookups for the dashboard filters

`search` supports inline filters, e.g. `level:error app:"checkout api" user_id:42 timeout`.
Explicit query parameters always win over inline ones.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from tracedock.api.deps import get_repository
from tracedock.core.errors import NotFoundError
from tracedock.db.repository import Repository
from tracedock.schemas.logs import (
    MAX_LOGS_LIMIT,
    AppsResponse,
    FilteredLogsResponse,
    LogEntry,
    LogLevel,
    LogsQuery,
    LogsResponse,
    LogStats,
    MetadataKeysResponse,
    SessionsResponse,
    SuggestionsResponse,
)

router = APIRouter()


def logs_query(
    level: Optional[LogLevel] = Query(default=None, description="debug | info | warn | error"),
    app_name: Optional[str] = Query(default=None, alias="appName"),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    search: Optional[str] = Query(default=None, description="Free text plus key:value filters"),
    start_date: Optional[str] = Query(default=None, alias="startDate", description="ISO 8601, inclusive"),
    end_date: Optional[str] = Query(default=None, alias="endDate", description="ISO 8601, inclusive"),
    trace_id: Optional[str] = Query(default=None, alias="traceId"),
    span_id: Optional[str] = Query(default=None, alias="spanId"),
    limit: int = Query(default=50, ge=1, le=MAX_LOGS_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> LogsQuery:
    # Dates are validated by the model; a bad value is a 400 like any other field.
    return LogsQuery(
        level=level,
        app_name=app_name,
        session_id=session_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        trace_id=trace_id,
        span_id=span_id,
        limit=limit,
        offset=offset,
    )


@router.get("/logs", response_model=LogsResponse)
async def get_logs(
    query: LogsQuery = Depends(logs_query),
    repository: Repository = Depends(get_repository),
):
    """
    Example:
      /logs?appName=svc&search=level:error%20timeout&limit=20
    """
    return await repository.get_logs(query)


@router.get("/logs-filtered", response_model=FilteredLogsResponse)
async def get_filtered_logs(
    query: LogsQuery = Depends(logs_query),
    exclude_ignored: bool = Query(default=False, alias="excludeIgnored"),
    repository: Repository = Depends(get_repository),
):
    return await repository.get_filtered_logs(query, exclude_ignored=exclude_ignored)


@router.get("/logs/{log_id}", response_model=LogEntry)
async def get_log(log_id: str, repository: Repository = Depends(get_repository)):
    log = await repository.get_log_by_id(log_id)
    if log is None:
        raise NotFoundError("Log not found")
    return log


@router.get("/stats", response_model=LogStats)
async def get_stats(repository: Repository = Depends(get_repository)):
    return await repository.get_stats()


@router.get("/apps", response_model=AppsResponse)
async def get_apps(repository: Repository = Depends(get_repository)):
    return AppsResponse(apps=await repository.get_apps())


@router.get("/sessions", response_model=SessionsResponse)
async def get_sessions(
    app_name: Optional[str] = Query(default=None, alias="appName"),
    repository: Repository = Depends(get_repository),
):
    return SessionsResponse(sessions=await repository.get_sessions(app_name))


@router.get("/metadata-keys", response_model=MetadataKeysResponse)
async def get_metadata_keys(repository: Repository = Depends(get_repository)):
    return MetadataKeysResponse(keys=await repository.get_metadata_keys())


@router.get("/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(
    q: str = Query(default="", description="Prefix typed into the search box"),
    repository: Repository = Depends(get_repository),
):
    return SuggestionsResponse(suggestions=await repository.get_suggestions(q))

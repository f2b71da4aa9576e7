# tracedock/api/routes/traces.py
"""
Trace and span endpoints.

Traces:
- GET   /traces              filtered + paginated (start_time desc)
- GET   /traces/stats
- GET   /traces/{id}         {trace, spans, logs}
- GET   /traces/{id}/spans   spans ordered by start_time asc
- POST  /traces              create (id/startTime generated when absent)
- PATCH /traces/{id}         end-state update

Spans:
- POST  /spans               create; 404 when traceId is unknown
- PATCH /spans/{id}          end-state update
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from tracedock.api.deps import get_repository
from tracedock.core.errors import NotFoundError
from tracedock.db.repository import Repository
from tracedock.schemas.common import SuccessResponse
from tracedock.schemas.traces import (
    Span,
    SpanCreate,
    SpansResponse,
    SpanUpdate,
    Trace,
    TraceCreate,
    TraceDetails,
    TracesQuery,
    TracesResponse,
    TraceStats,
    TraceStatus,
    TraceUpdate,
)

router = APIRouter()


@router.get("/traces", response_model=TracesResponse)
async def list_traces(
    app_name: Optional[str] = Query(default=None, alias="appName"),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    status: Optional[TraceStatus] = Query(default=None),
    name: Optional[str] = Query(default=None, description="Name substring"),
    min_duration: Optional[int] = Query(default=None, ge=0, alias="minDuration"),
    max_duration: Optional[int] = Query(default=None, ge=0, alias="maxDuration"),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    repository: Repository = Depends(get_repository),
):
    query = TracesQuery(
        app_name=app_name,
        session_id=session_id,
        status=status,
        name=name,
        min_duration=min_duration,
        max_duration=max_duration,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return await repository.get_traces(query)


@router.get("/traces/stats", response_model=TraceStats)
async def trace_stats(repository: Repository = Depends(get_repository)):
    return await repository.get_trace_stats()


@router.get("/traces/{trace_id}", response_model=TraceDetails)
async def get_trace(trace_id: str, repository: Repository = Depends(get_repository)):
    details = await repository.get_trace_with_details(trace_id)
    if details is None:
        raise NotFoundError("Trace not found")
    return details


@router.get("/traces/{trace_id}/spans", response_model=SpansResponse)
async def get_trace_spans(trace_id: str, repository: Repository = Depends(get_repository)):
    if await repository.get_trace_by_id(trace_id) is None:
        raise NotFoundError("Trace not found")
    return SpansResponse(spans=await repository.get_spans_by_trace_id(trace_id))


@router.post("/traces", response_model=Trace)
async def create_trace(body: TraceCreate, repository: Repository = Depends(get_repository)):
    return await repository.create_trace(body)


@router.patch("/traces/{trace_id}", response_model=SuccessResponse)
async def update_trace(
    trace_id: str,
    body: TraceUpdate,
    repository: Repository = Depends(get_repository),
):
    if not await repository.update_trace(trace_id, body):
        raise NotFoundError("Trace not found")
    return SuccessResponse()


@router.post("/spans", response_model=Span)
async def create_span(body: SpanCreate, repository: Repository = Depends(get_repository)):
    span = await repository.create_span(body)
    if span is None:
        raise NotFoundError("Trace not found", details={"traceId": body.trace_id})
    return span


@router.patch("/spans/{span_id}", response_model=SuccessResponse)
async def update_span(
    span_id: str,
    body: SpanUpdate,
    repository: Repository = Depends(get_repository),
):
    if not await repository.update_span(span_id, body):
        raise NotFoundError("Span not found")
    return SuccessResponse()

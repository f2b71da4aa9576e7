# tracedock/schemas/traces.py
"""
Schemas for traces and spans.

Status lifecycle (both): running -> completed | error. A trace with any
errored span always ends as "error".
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, model_validator

from tracedock.schemas.common import ApiModel, Timestamp
from tracedock.schemas.logs import LogEntry

TraceStatus = Literal["running", "completed", "error"]
TRACE_STATUSES = ("running", "completed", "error")


class Trace(ApiModel):
    id: str
    name: str
    app_name: str
    session_id: str
    start_time: Timestamp
    end_time: Optional[Timestamp] = None
    duration_ms: Optional[int] = None
    status: TraceStatus = "running"
    span_count: int = 0
    error_count: int = 0
    metadata: Optional[Dict[str, Any]] = None


class Span(ApiModel):
    id: str
    trace_id: str
    parent_span_id: Optional[str] = None
    name: str
    operation_type: Optional[str] = None
    start_time: Timestamp
    end_time: Optional[Timestamp] = None
    duration_ms: Optional[int] = None
    status: TraceStatus = "running"
    metadata: Optional[Dict[str, Any]] = None


class TraceCreate(ApiModel):
    """POST /traces body. Missing id/startTime are generated server-side."""

    id: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    # SDKs that speak OpenTelemetry vocabulary send serviceName instead.
    app_name: Optional[str] = Field(default=None, max_length=255)
    service_name: Optional[str] = Field(default=None, max_length=255)
    session_id: str = Field(..., max_length=255)
    start_time: Optional[Timestamp] = None
    end_time: Optional[Timestamp] = None
    duration_ms: Optional[int] = Field(default=None, ge=0)
    status: TraceStatus = "running"
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_app_name(self) -> "TraceCreate":
        if not (self.app_name or self.service_name):
            raise ValueError("appName (or serviceName) is required")
        return self


class TraceUpdate(ApiModel):
    end_time: Optional[Timestamp] = None
    duration_ms: Optional[int] = Field(default=None, ge=0)
    status: Optional[TraceStatus] = None
    metadata: Optional[Dict[str, Any]] = None


class SpanCreate(ApiModel):
    id: Optional[str] = Field(default=None, max_length=64)
    trace_id: str = Field(..., min_length=1, max_length=64)
    parent_span_id: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    operation_type: Optional[str] = Field(default=None, max_length=100)
    start_time: Optional[Timestamp] = None
    end_time: Optional[Timestamp] = None
    duration_ms: Optional[int] = Field(default=None, ge=0)
    status: TraceStatus = "running"
    metadata: Optional[Dict[str, Any]] = None


class SpanUpdate(TraceUpdate):
    pass


class TracesQuery(ApiModel):
    app_name: Optional[str] = None
    session_id: Optional[str] = None
    status: Optional[TraceStatus] = None
    name: Optional[str] = None
    min_duration: Optional[int] = Field(default=None, ge=0)
    max_duration: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[Timestamp] = None
    end_date: Optional[Timestamp] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class TracesResponse(ApiModel):
    traces: List[Trace] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int
    offset: int


class TraceDetails(ApiModel):
    trace: Trace
    spans: List[Span] = Field(default_factory=list)
    logs: List[LogEntry] = Field(default_factory=list)


class SpansResponse(ApiModel):
    spans: List[Span]


class TraceTrendPoint(ApiModel):
    date: str
    count: int
    avg_duration: float


class TraceStats(ApiModel):
    total_traces: int
    avg_duration_ms: float
    by_status: Dict[str, int]
    by_app: Dict[str, int]
    recent_trend: List[TraceTrendPoint] = Field(default_factory=list)

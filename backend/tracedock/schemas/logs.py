# tracedock/schemas/logs.py
"""
Schemas for log ingestion and browsing (POST /ingest, GET /logs, ...).
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import ConfigDict, Field

from tracedock.schemas.common import ApiModel, Timestamp

LogLevel = Literal["debug", "info", "warn", "error"]
LOG_LEVELS = ("debug", "info", "warn", "error")

MAX_LOGS_LIMIT = 1000


class EnvironmentInfo(ApiModel):
    """Runtime the SDK was running in. Unknown extra keys are preserved."""

    model_config = ConfigDict(extra="allow")

    type: Literal["browser", "node", "tauri", "unknown"] = Field(..., description="Runtime kind")
    user_agent: Optional[str] = None
    url: Optional[str] = None
    node_version: Optional[str] = None
    platform: Optional[str] = None
    arch: Optional[str] = None
    tauri_version: Optional[str] = None


class LogEntry(ApiModel):
    """
    An ingested log event. Immutable once stored.

    Example:
    {
      "id": "0b6c...", "timestamp": "2024-01-01T00:00:00.000Z", "level": "error",
      "message": "Connection refused", "appName": "svc", "sessionId": "s-1",
      "environment": {"type": "node", "nodeVersion": "20.0.0"},
      "stackTrace": "Error: Connection refused\\n    at connect (db.js:10:4)"
    }
    """

    id: str = Field(..., min_length=1, max_length=64, description="Client- or server-generated id")
    timestamp: Timestamp = Field(..., description="Event time (ISO 8601)")
    level: LogLevel
    message: str
    app_name: str = Field(..., max_length=255)
    session_id: str = Field(..., max_length=255)
    environment: EnvironmentInfo
    metadata: Optional[Dict[str, Any]] = None
    stack_trace: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    error_group_id: Optional[str] = None
    trace_id: Optional[str] = Field(default=None, max_length=255)
    span_id: Optional[str] = Field(default=None, max_length=255)
    parent_span_id: Optional[str] = Field(default=None, max_length=255)


class IngestResponse(ApiModel):
    success: bool = True
    id: str


class LogsQuery(ApiModel):
    """Filters for paginated log reads. Explicit filters win over inline `key:value` search terms."""

    level: Optional[LogLevel] = None
    app_name: Optional[str] = None
    session_id: Optional[str] = None
    search: Optional[str] = None
    start_date: Optional[Timestamp] = None
    end_date: Optional[Timestamp] = None
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=MAX_LOGS_LIMIT)
    offset: int = Field(default=0, ge=0)


class LogsResponse(ApiModel):
    logs: List[LogEntry] = Field(default_factory=list)
    total: int = Field(..., ge=0, description="Total matching entries before pagination")
    limit: int
    offset: int


class FilteredLogsResponse(LogsResponse):
    ignored_count: int = Field(default=0, ge=0, description="Matching logs hidden because their error group is ignored")


class LogStats(ApiModel):
    total: int
    by_level: Dict[str, int] = Field(default_factory=dict)
    by_app: Dict[str, int] = Field(default_factory=dict)


class AppsResponse(ApiModel):
    apps: List[str]


class SessionsResponse(ApiModel):
    sessions: List[str]


class MetadataKeysResponse(ApiModel):
    keys: List[str]


class Suggestion(ApiModel):
    type: Literal["app", "level", "metadata"]
    value: str


class SuggestionsResponse(ApiModel):
    suggestions: List[Suggestion]

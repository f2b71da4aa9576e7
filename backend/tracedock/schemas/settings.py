# tracedock/schemas/settings.py
"""
Schemas for retention settings, storage stats and cleanup results.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from tracedock.schemas.common import ApiModel, Timestamp


class RetentionSettings(ApiModel):
    """
    Retention windows in days. A value <= 0 disables cleanup for that category.
    """

    logs_retention_days: int = 7
    traces_retention_days: int = 14
    spans_retention_days: int = 14
    error_groups_retention_days: int = 30
    cleanup_enabled: bool = True
    cleanup_interval_hours: int = 1


class RetentionSettingsUpdate(ApiModel):
    logs_retention_days: Optional[int] = Field(default=None, le=3650)
    traces_retention_days: Optional[int] = Field(default=None, le=3650)
    spans_retention_days: Optional[int] = Field(default=None, le=3650)
    error_groups_retention_days: Optional[int] = Field(default=None, le=3650)
    cleanup_enabled: Optional[bool] = None
    cleanup_interval_hours: Optional[int] = Field(default=None, ge=1, le=168)


class StorageStats(ApiModel):
    total_logs: int
    total_traces: int
    total_spans: int
    total_error_groups: int
    database_size_bytes: int = Field(default=0, description="0 when the engine cannot report it")
    oldest_log: Optional[Timestamp] = None
    oldest_trace: Optional[Timestamp] = None


class CleanupResult(ApiModel):
    """Per-category deletion counts; partial success shows up as partial counts."""

    logs_deleted: int = 0
    traces_deleted: int = 0
    spans_deleted: int = 0
    error_groups_deleted: int = 0
    duration_ms: int = 0

    @property
    def total_deleted(self) -> int:
        return self.logs_deleted + self.traces_deleted + self.spans_deleted + self.error_groups_deleted

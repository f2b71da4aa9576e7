# tracedock/db/models.py
"""
SQLAlchemy ORM models for the trace-dock server.

One set of table definitions serves all three engines (SQLite, PostgreSQL,
MySQL). Engine differences are confined to column type variants:

- Timestamps are naive UTC datetimes with microsecond precision
  (`DATETIME(fsp=6)` on MySQL, whose default would truncate to seconds).
- Open maps (metadata, context, environment) use the portable JSON type, so
  JSON-path filters compile to each engine's native operator.
- The `error_groups.fingerprint` unique index is the correctness backstop for
  concurrent error-group creation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tracedock.utils.timeutil import utcnow

Timestamp = DateTime(timezone=False).with_variant(mysql.DATETIME(fsp=6), "mysql")

# Long free text. MySQL TEXT caps at 64 KiB, which stack traces can exceed.
LongText = Text().with_variant(mysql.MEDIUMTEXT(), "mysql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class LogRecord(Base):
    """
    A single ingested log entry. Written once, never updated.

    `error_group_id` is set only for level=error entries whose group upsert
    succeeded.
    """

    __tablename__ = "logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(LongText, nullable=False)
    app_name: Mapped[str] = mapped_column(String(255), nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    # `metadata` is reserved on declarative classes; keep the column name.
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON(none_as_null=True), nullable=True)
    stack_trace: Mapped[Optional[str]] = mapped_column(LongText, nullable=True)
    context: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON(none_as_null=True), nullable=True)
    error_group_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    trace_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    span_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_span_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow)

    __table_args__ = (
        Index("idx_logs_timestamp", "timestamp"),
        Index("idx_logs_level", "level"),
        Index("idx_logs_app_name", "app_name"),
        Index("idx_logs_session_id", "session_id"),
        Index("idx_logs_error_group_id", "error_group_id"),
        Index("idx_logs_trace_id", "trace_id"),
        Index("idx_logs_span_id", "span_id"),
    )


class ErrorGroupRecord(Base):
    """Aggregate over error logs sharing a fingerprint."""

    __tablename__ = "error_groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)
    # Message of the first occurrence; display label only.
    message: Mapped[str] = mapped_column(LongText, nullable=False)
    app_name: Mapped[str] = mapped_column(String(255), nullable=False)
    first_seen: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unreviewed")
    stack_trace_preview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow)

    __table_args__ = (
        Index("idx_error_groups_fingerprint", "fingerprint", unique=True),
        Index("idx_error_groups_status", "status"),
        Index("idx_error_groups_app_name", "app_name"),
        Index("idx_error_groups_last_seen", "last_seen"),
        Index("idx_error_groups_occurrence_count", "occurrence_count"),
    )


class TraceRecord(Base):
    """Root of a span tree. span_count / error_count are denormalized counters."""

    __tablename__ = "traces"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    app_name: Mapped[str] = mapped_column(String(255), nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(Timestamp, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    span_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow)

    __table_args__ = (
        Index("idx_traces_app_name", "app_name"),
        Index("idx_traces_session_id", "session_id"),
        Index("idx_traces_start_time", "start_time"),
        Index("idx_traces_status", "status"),
    )


class SpanRecord(Base):
    """A nested operation within a trace. parent_span_id NULL means root span."""

    __tablename__ = "spans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    trace_id: Mapped[str] = mapped_column(String(64), ForeignKey("traces.id"), nullable=False)
    parent_span_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    operation_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    start_time: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(Timestamp, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow)

    __table_args__ = (
        Index("idx_spans_trace_id", "trace_id"),
        Index("idx_spans_parent_span_id", "parent_span_id"),
        Index("idx_spans_start_time", "start_time"),
        Index("idx_spans_status", "status"),
    )


class SettingRecord(Base):
    """Process-wide settings, one row per key (values stored as strings)."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow)

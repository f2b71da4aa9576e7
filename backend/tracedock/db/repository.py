# tracedock/db/repository.py
"""
Repository facade over the storage engines.

One `Repository` is built at startup around a `Database` and passed to every
request handler and background task. It owns:

- log ingestion, including the error-group upsert
- filtered/paginated reads over logs, error groups, traces and spans
- retention cleanup and storage statistics

Engine differences never leak out of here. Query code is written once against
the ORM tables; the bound `Dialect` only toggles optional capabilities
(full-text index, JSON-path filters, VACUUM, size query).

Concurrency rules:
- every operation opens its own short session
- counters are updated with `col = col + 1` expressions, never in Python
- trace/span status transitions are conditional UPDATEs
- the unique index on error_groups.fingerprint arbitrates concurrent inserts
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Text, case, cast, delete, func, literal, or_, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from tracedock.db.dialects import VACUUM_THRESHOLD, Dialect
from tracedock.db.fulltext import REBUILD_INDEX, fts_condition
from tracedock.db.models import ErrorGroupRecord, LogRecord, SettingRecord, SpanRecord, TraceRecord
from tracedock.db.session import DEFAULT_SETTINGS, Database
from tracedock.schemas.error_groups import (
    ERROR_GROUP_STATUSES,
    ErrorGroup,
    ErrorGroupsQuery,
    ErrorGroupsResponse,
    ErrorGroupStats,
    TrendPoint,
)
from tracedock.schemas.logs import (
    LOG_LEVELS,
    EnvironmentInfo,
    FilteredLogsResponse,
    LogEntry,
    LogsQuery,
    LogsResponse,
    LogStats,
    Suggestion,
)
from tracedock.schemas.settings import CleanupResult, RetentionSettings, RetentionSettingsUpdate, StorageStats
from tracedock.schemas.traces import (
    TRACE_STATUSES,
    Span,
    SpanCreate,
    SpanUpdate,
    Trace,
    TraceCreate,
    TraceDetails,
    TracesQuery,
    TracesResponse,
    TraceStats,
    TraceTrendPoint,
    TraceUpdate,
)
from tracedock.services.fingerprint import fingerprint, stack_trace_preview
from tracedock.services.search import STRUCTURED_KEYS, fts_match_expression, parse_search_query, search_tokens
from tracedock.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

MAX_UPSERT_ATTEMPTS = 3
TRACE_LOGS_LIMIT = 1000
SESSIONS_LIMIT = 100
METADATA_SAMPLE_SIZE = 500
SUGGESTIONS_LIMIT = 10
TREND_DAYS = 7

FINAL_STATUSES = ("completed", "error")

# Settings table key -> RetentionSettings field.
SETTING_KEYS = {
    "retention.logs_days": "logs_retention_days",
    "retention.traces_days": "traces_retention_days",
    "retention.spans_days": "spans_retention_days",
    "retention.error_groups_days": "error_groups_retention_days",
    "cleanup.enabled": "cleanup_enabled",
    "cleanup.interval_hours": "cleanup_interval_hours",
}


# -----------------------
# Row -> schema conversion
# -----------------------
def _log_from_row(row: LogRecord) -> LogEntry:
    return LogEntry(
        id=row.id,
        timestamp=row.timestamp,
        level=row.level,
        message=row.message,
        app_name=row.app_name,
        session_id=row.session_id,
        environment=EnvironmentInfo.model_validate(row.environment or {"type": "unknown"}),
        metadata=row.meta,
        stack_trace=row.stack_trace,
        context=row.context,
        error_group_id=row.error_group_id,
        trace_id=row.trace_id,
        span_id=row.span_id,
        parent_span_id=row.parent_span_id,
    )


def _group_from_row(row: ErrorGroupRecord) -> ErrorGroup:
    return ErrorGroup(
        id=row.id,
        fingerprint=row.fingerprint,
        message=row.message,
        app_name=row.app_name,
        first_seen=row.first_seen,
        last_seen=row.last_seen,
        occurrence_count=row.occurrence_count,
        status=row.status,
        stack_trace_preview=row.stack_trace_preview,
    )


def _trace_from_row(row: TraceRecord) -> Trace:
    return Trace(
        id=row.id,
        name=row.name,
        app_name=row.app_name,
        session_id=row.session_id,
        start_time=row.start_time,
        end_time=row.end_time,
        duration_ms=row.duration_ms,
        status=row.status,
        span_count=row.span_count,
        error_count=row.error_count,
        metadata=row.meta,
    )


def _span_from_row(row: SpanRecord) -> Span:
    return Span(
        id=row.id,
        trace_id=row.trace_id,
        parent_span_id=row.parent_span_id,
        name=row.name,
        operation_type=row.operation_type,
        start_time=row.start_time,
        end_time=row.end_time,
        duration_ms=row.duration_ms,
        status=row.status,
        metadata=row.meta,
    )


def _int_setting(values: Dict[str, str], key: str) -> int:
    try:
        return int(values.get(key, DEFAULT_SETTINGS[key]))
    except ValueError:
        return int(DEFAULT_SETTINGS[key])


def _day(value: Any) -> str:
    return value.date().isoformat() if isinstance(value, datetime) else str(value)[:10]


class Repository:
    """Storage facade shared by routes, the cleanup scheduler and tests."""

    def __init__(self, database: Database, *, max_upsert_attempts: int = MAX_UPSERT_ATTEMPTS):
        self.database = database
        self.max_upsert_attempts = max_upsert_attempts

    @property
    def dialect(self) -> Dialect:
        return self.database.dialect

    async def close(self) -> None:
        await self.database.dispose()

    # ==================== Logs ====================

    async def insert_log(self, entry: LogEntry) -> Optional[str]:
        """
        Persist a log entry and return its error group id (None for non-errors).

        A failed group upsert never drops the log: it is stored ungrouped.
        """
        group_id: Optional[str] = None
        if entry.level == "error":
            try:
                group_id = await self.upsert_error_group(entry)
            except SQLAlchemyError:
                logger.exception("Error group upsert failed for log %s; storing it ungrouped", entry.id)

        record = LogRecord(
            id=entry.id,
            timestamp=entry.timestamp,
            level=entry.level,
            message=entry.message,
            app_name=entry.app_name,
            session_id=entry.session_id,
            environment=entry.environment.model_dump(by_alias=True, exclude_none=True),
            meta=entry.metadata,
            stack_trace=entry.stack_trace,
            context=entry.context,
            error_group_id=group_id,
            trace_id=entry.trace_id,
            span_id=entry.span_id,
            parent_span_id=entry.parent_span_id,
        )
        async with self.database.session() as session:
            session.add(record)
            await session.commit()
        return group_id

    def _log_conditions(self, query: LogsQuery) -> List[Any]:
        parsed = parse_search_query(query.search)
        inline = parsed.filters

        # Explicit parameters win over inline `key:value` terms.
        level = query.level or (inline.get("level") or "").lower() or None
        app_name = query.app_name or inline.get("app")
        session_id = query.session_id or inline.get("session")

        conditions: List[Any] = []
        if level:
            conditions.append(LogRecord.level == level)
        if app_name:
            conditions.append(LogRecord.app_name == app_name)
        if session_id:
            conditions.append(LogRecord.session_id == session_id)
        if query.trace_id:
            conditions.append(LogRecord.trace_id == query.trace_id)
        if query.span_id:
            conditions.append(LogRecord.span_id == query.span_id)
        if query.start_date is not None:
            conditions.append(LogRecord.timestamp >= query.start_date)
        if query.end_date is not None:
            conditions.append(LogRecord.timestamp <= query.end_date)

        for key, value in parsed.metadata_filters.items():
            conditions.append(self._metadata_condition(key, value))

        if parsed.free_text:
            conditions.extend(self._free_text_conditions(parsed.free_text))
        return conditions

    def _metadata_condition(self, key: str, value: str):
        if self.dialect.supports_json_query:
            return self._metadata_text(key).icontains(value, autoescape=True)
        return or_(
            cast(LogRecord.meta, Text).icontains(value, autoescape=True),
            LogRecord.message.icontains(value, autoescape=True),
        )

    def _metadata_text(self, key: str):
        extracted = LogRecord.meta[key].as_string()
        if self.dialect.kind != "sqlite":
            return extracted
        # json_extract yields 1/0 for JSON booleans; the other engines yield true/false.
        kind = func.json_type(LogRecord.meta, f'$."{key}"')
        return case(
            (kind == "true", literal("true")),
            (kind == "false", literal("false")),
            else_=extracted,
        )

    def _free_text_conditions(self, free_text: str) -> List[Any]:
        if self.dialect.supports_fulltext:
            match = fts_match_expression(free_text)
            if match is not None:
                return [fts_condition(match)]

        conditions = []
        for token in search_tokens(free_text):
            conditions.append(
                or_(
                    LogRecord.message.icontains(token, autoescape=True),
                    LogRecord.app_name.icontains(token, autoescape=True),
                    cast(LogRecord.meta, Text).icontains(token, autoescape=True),
                    LogRecord.stack_trace.icontains(token, autoescape=True),
                )
            )
        return conditions

    async def _page_logs(
        self,
        session: AsyncSession,
        conditions: Sequence[Any],
        limit: int,
        offset: int,
    ) -> Tuple[List[LogEntry], int]:
        total = (
            await session.execute(select(func.count()).select_from(LogRecord).where(*conditions))
        ).scalar_one()
        rows = (
            await session.execute(
                select(LogRecord)
                .where(*conditions)
                .order_by(LogRecord.timestamp.desc(), LogRecord.id.desc())
                .limit(limit)
                .offset(offset)
            )
        ).scalars().all()
        return [_log_from_row(r) for r in rows], int(total)

    async def get_logs(self, query: LogsQuery) -> LogsResponse:
        conditions = self._log_conditions(query)
        async with self.database.session() as session:
            logs, total = await self._page_logs(session, conditions, query.limit, query.offset)
        return LogsResponse(logs=logs, total=total, limit=query.limit, offset=query.offset)

    async def get_filtered_logs(self, query: LogsQuery, *, exclude_ignored: bool = False) -> FilteredLogsResponse:
        """
        Like `get_logs`, optionally hiding logs whose error group is ignored.

        The exclusion is part of the WHERE clause so `total` and paging stay exact;
        `ignored_count` is how many matching logs were hidden.
        """
        if not exclude_ignored:
            page = await self.get_logs(query)
            return FilteredLogsResponse(
                logs=page.logs, total=page.total, limit=page.limit, offset=page.offset, ignored_count=0
            )

        conditions = self._log_conditions(query)
        ignored_ids = select(ErrorGroupRecord.id).where(ErrorGroupRecord.status == "ignored")
        visible = or_(LogRecord.error_group_id.is_(None), LogRecord.error_group_id.not_in(ignored_ids))
        async with self.database.session() as session:
            logs, total = await self._page_logs(session, [*conditions, visible], query.limit, query.offset)
            ignored = (
                await session.execute(
                    select(func.count())
                    .select_from(LogRecord)
                    .where(*conditions, LogRecord.error_group_id.in_(ignored_ids))
                )
            ).scalar_one()
        return FilteredLogsResponse(
            logs=logs,
            total=total,
            limit=query.limit,
            offset=query.offset,
            ignored_count=int(ignored),
        )

    async def get_log_by_id(self, log_id: str) -> Optional[LogEntry]:
        async with self.database.session() as session:
            row = await session.get(LogRecord, log_id)
        return _log_from_row(row) if row is not None else None

    async def get_stats(self) -> LogStats:
        async with self.database.session() as session:
            total = (await session.execute(select(func.count()).select_from(LogRecord))).scalar_one()
            by_level = await session.execute(
                select(LogRecord.level, func.count()).group_by(LogRecord.level)
            )
            by_app = await session.execute(
                select(LogRecord.app_name, func.count()).group_by(LogRecord.app_name)
            )
            return LogStats(
                total=int(total),
                by_level={level: int(n) for level, n in by_level.all()},
                by_app={app: int(n) for app, n in by_app.all()},
            )

    async def get_apps(self) -> List[str]:
        async with self.database.session() as session:
            rows = await session.execute(
                select(LogRecord.app_name).distinct().order_by(LogRecord.app_name)
            )
            return list(rows.scalars().all())

    async def get_sessions(self, app_name: Optional[str] = None) -> List[str]:
        stmt = select(LogRecord.session_id).distinct()
        if app_name:
            stmt = stmt.where(LogRecord.app_name == app_name)
        stmt = stmt.order_by(LogRecord.session_id.desc()).limit(SESSIONS_LIMIT)
        async with self.database.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_metadata_keys(self) -> List[str]:
        """Distinct metadata keys seen in the most recent logs that carry metadata."""
        async with self.database.session() as session:
            rows = await session.execute(
                select(LogRecord.meta)
                .where(LogRecord.meta.is_not(None))
                .order_by(LogRecord.timestamp.desc())
                .limit(METADATA_SAMPLE_SIZE)
            )
            keys = set()
            for meta in rows.scalars().all():
                if isinstance(meta, dict):
                    keys.update(meta.keys())
        return sorted(keys)

    async def get_suggestions(self, prefix: str) -> List[Suggestion]:
        """Autocomplete entries for the search box: `app:x`, `level:x` and `key:`."""
        needle = (prefix or "").lower()
        suggestions: List[Suggestion] = []

        for app in await self.get_apps():
            if needle in app.lower():
                suggestions.append(Suggestion(type="app", value=f"app:{app}"))
        for level in LOG_LEVELS:
            if needle in level:
                suggestions.append(Suggestion(type="level", value=f"level:{level}"))
        for key in await self.get_metadata_keys():
            if needle in key.lower() and key not in STRUCTURED_KEYS:
                suggestions.append(Suggestion(type="metadata", value=f"{key}:"))

        return suggestions[:SUGGESTIONS_LIMIT]

    # ==================== Error groups ====================

    async def upsert_error_group(self, entry: LogEntry) -> str:
        """
        Find-or-create the error group for `entry` and count the occurrence.

        Two writers can both miss the lookup for a new fingerprint; the loser's
        INSERT hits the unique index, rolls back and retries the increment path.
        """
        key = fingerprint(entry.message, entry.stack_trace, entry.app_name)
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(IntegrityError),
            stop=stop_after_attempt(self.max_upsert_attempts),
            wait=wait_exponential(multiplier=0.01, max=0.1),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._upsert_once(key, entry)
        except IntegrityError:
            logger.error("Error group upsert for fingerprint %s gave up after %d attempts", key, self.max_upsert_attempts)
            raise

    async def _upsert_once(self, key: str, entry: LogEntry) -> str:
        async with self.database.session() as session:
            group_id = await self._count_occurrence(session, key, entry.timestamp)
            if group_id is not None:
                await session.commit()
                return group_id

            group_id = str(uuid.uuid4())
            now = utcnow()
            session.add(
                ErrorGroupRecord(
                    id=group_id,
                    fingerprint=key,
                    message=entry.message,
                    app_name=entry.app_name,
                    first_seen=entry.timestamp,
                    last_seen=entry.timestamp,
                    occurrence_count=1,
                    status="unreviewed",
                    stack_trace_preview=stack_trace_preview(entry.stack_trace),
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                # Lost the race for this fingerprint; the retry takes the increment path.
                await session.rollback()
                raise
            return group_id

    @staticmethod
    async def _count_occurrence(session: AsyncSession, key: str, ts: datetime) -> Optional[str]:
        group_id = (
            await session.execute(select(ErrorGroupRecord.id).where(ErrorGroupRecord.fingerprint == key))
        ).scalar_one_or_none()
        if group_id is None:
            return None

        seen = literal(ts, ErrorGroupRecord.last_seen.type)
        await session.execute(
            update(ErrorGroupRecord)
            .where(ErrorGroupRecord.id == group_id)
            .values(
                occurrence_count=ErrorGroupRecord.occurrence_count + 1,
                # Out-of-order delivery must not move last_seen backwards.
                last_seen=case((ErrorGroupRecord.last_seen < seen, seen), else_=ErrorGroupRecord.last_seen),
                first_seen=case((ErrorGroupRecord.first_seen > seen, seen), else_=ErrorGroupRecord.first_seen),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return group_id

    async def get_error_groups(self, query: ErrorGroupsQuery) -> ErrorGroupsResponse:
        conditions = []
        if query.app_name:
            conditions.append(ErrorGroupRecord.app_name == query.app_name)
        if query.status:
            conditions.append(ErrorGroupRecord.status == query.status)
        if query.search:
            conditions.append(ErrorGroupRecord.message.icontains(query.search, autoescape=True))

        sort_column = {
            "last_seen": ErrorGroupRecord.last_seen,
            "first_seen": ErrorGroupRecord.first_seen,
            "occurrence_count": ErrorGroupRecord.occurrence_count,
        }[query.sort_by]
        if query.sort_order == "asc":
            ordering = (sort_column.asc(), ErrorGroupRecord.id.asc())
        else:
            ordering = (sort_column.desc(), ErrorGroupRecord.id.desc())

        async with self.database.session() as session:
            total = (
                await session.execute(select(func.count()).select_from(ErrorGroupRecord).where(*conditions))
            ).scalar_one()
            rows = (
                await session.execute(
                    select(ErrorGroupRecord)
                    .where(*conditions)
                    .order_by(*ordering)
                    .limit(query.limit)
                    .offset(query.offset)
                )
            ).scalars().all()

        return ErrorGroupsResponse(
            error_groups=[_group_from_row(r) for r in rows],
            total=int(total),
            limit=query.limit,
            offset=query.offset,
        )

    async def get_error_group_by_id(self, group_id: str) -> Optional[ErrorGroup]:
        async with self.database.session() as session:
            row = await session.get(ErrorGroupRecord, group_id)
        return _group_from_row(row) if row is not None else None

    async def update_error_group_status(self, group_id: str, status: str) -> bool:
        """Set the review status. Returns False when no such group exists."""
        async with self.database.session() as session:
            result = await session.execute(
                update(ErrorGroupRecord)
                .where(ErrorGroupRecord.id == group_id)
                .values(status=status, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def get_error_group_occurrences(self, group_id: str, limit: int = 50, offset: int = 0) -> LogsResponse:
        async with self.database.session() as session:
            logs, total = await self._page_logs(
                session, [LogRecord.error_group_id == group_id], limit, offset
            )
        return LogsResponse(logs=logs, total=total, limit=limit, offset=offset)

    async def get_error_group_stats(self, now: Optional[datetime] = None) -> ErrorGroupStats:
        since = (now or utcnow()) - timedelta(days=TREND_DAYS)
        async with self.database.session() as session:
            total_groups, total_occurrences = (
                await session.execute(
                    select(func.count(), func.coalesce(func.sum(ErrorGroupRecord.occurrence_count), 0))
                )
            ).one()
            by_status = {status: 0 for status in ERROR_GROUP_STATUSES}
            for status, n in (
                await session.execute(
                    select(ErrorGroupRecord.status, func.count()).group_by(ErrorGroupRecord.status)
                )
            ).all():
                by_status[status] = int(n)
            by_app = {
                app: int(n)
                for app, n in (
                    await session.execute(
                        select(ErrorGroupRecord.app_name, func.count()).group_by(ErrorGroupRecord.app_name)
                    )
                ).all()
            }
            recent = (
                await session.execute(
                    select(ErrorGroupRecord.last_seen, ErrorGroupRecord.occurrence_count).where(
                        ErrorGroupRecord.last_seen >= since
                    )
                )
            ).all()

        trend: Dict[str, int] = defaultdict(int)
        for last_seen, occurrences in recent:
            trend[_day(last_seen)] += int(occurrences)

        return ErrorGroupStats(
            total_groups=int(total_groups),
            total_occurrences=int(total_occurrences),
            by_status=by_status,
            by_app=by_app,
            recent_trend=[TrendPoint(date=d, count=c) for d, c in sorted(trend.items())],
        )

    # ==================== Traces ====================

    async def create_trace(self, data: TraceCreate) -> Trace:
        record = TraceRecord(
            id=data.id or str(uuid.uuid4()),
            name=data.name,
            app_name=data.app_name or data.service_name,
            session_id=data.session_id,
            start_time=data.start_time or utcnow(),
            end_time=data.end_time,
            duration_ms=data.duration_ms,
            status=data.status,
            span_count=0,
            error_count=0,
            meta=data.metadata,
        )
        async with self.database.session() as session:
            session.add(record)
            await session.commit()
        return _trace_from_row(record)

    async def get_traces(self, query: TracesQuery) -> TracesResponse:
        conditions = []
        if query.app_name:
            conditions.append(TraceRecord.app_name == query.app_name)
        if query.session_id:
            conditions.append(TraceRecord.session_id == query.session_id)
        if query.status:
            conditions.append(TraceRecord.status == query.status)
        if query.name:
            conditions.append(TraceRecord.name.icontains(query.name, autoescape=True))
        if query.min_duration is not None:
            conditions.append(TraceRecord.duration_ms >= query.min_duration)
        if query.max_duration is not None:
            conditions.append(TraceRecord.duration_ms <= query.max_duration)
        if query.start_date is not None:
            conditions.append(TraceRecord.start_time >= query.start_date)
        if query.end_date is not None:
            conditions.append(TraceRecord.start_time <= query.end_date)

        async with self.database.session() as session:
            total = (
                await session.execute(select(func.count()).select_from(TraceRecord).where(*conditions))
            ).scalar_one()
            rows = (
                await session.execute(
                    select(TraceRecord)
                    .where(*conditions)
                    .order_by(TraceRecord.start_time.desc(), TraceRecord.id.desc())
                    .limit(query.limit)
                    .offset(query.offset)
                )
            ).scalars().all()

        return TracesResponse(
            traces=[_trace_from_row(r) for r in rows],
            total=int(total),
            limit=query.limit,
            offset=query.offset,
        )

    async def get_trace_by_id(self, trace_id: str) -> Optional[Trace]:
        async with self.database.session() as session:
            row = await session.get(TraceRecord, trace_id)
        return _trace_from_row(row) if row is not None else None

    async def get_trace_with_details(self, trace_id: str) -> Optional[TraceDetails]:
        """Trace plus its spans (start_time asc) and correlated logs (timestamp asc)."""
        async with self.database.session() as session:
            trace = await session.get(TraceRecord, trace_id)
            if trace is None:
                return None
            spans = (
                await session.execute(
                    select(SpanRecord)
                    .where(SpanRecord.trace_id == trace_id)
                    .order_by(SpanRecord.start_time.asc(), SpanRecord.id.asc())
                )
            ).scalars().all()
            logs = (
                await session.execute(
                    select(LogRecord)
                    .where(LogRecord.trace_id == trace_id)
                    .order_by(LogRecord.timestamp.asc(), LogRecord.id.asc())
                    .limit(TRACE_LOGS_LIMIT)
                )
            ).scalars().all()

        return TraceDetails(
            trace=_trace_from_row(trace),
            spans=[_span_from_row(s) for s in spans],
            logs=[_log_from_row(log) for log in logs],
        )

    async def update_trace(self, trace_id: str, data: TraceUpdate) -> bool:
        """
        Apply an end-state update. Returns False when the trace does not exist.

        Status is monotonic: a finished trace keeps its status, and a trace
        with errored spans ends as "error" whatever the caller asked for.
        An end time without a status ends a running trace as "completed"
        (or "error").
        """
        values: Dict[str, Any] = {}
        if data.end_time is not None:
            values["end_time"] = data.end_time
        if data.duration_ms is not None:
            values["duration_ms"] = data.duration_ms
        if data.metadata is not None:
            values["meta"] = data.metadata

        final_status = data.status if data.status in FINAL_STATUSES else None
        if final_status is None and data.end_time is not None:
            final_status = "completed"
        if final_status is not None:
            values["status"] = case(
                (TraceRecord.status.in_(FINAL_STATUSES), TraceRecord.status),
                (TraceRecord.error_count > 0, "error"),
                else_=final_status,
            )

        if not values:
            return await self.get_trace_by_id(trace_id) is not None

        async with self.database.session() as session:
            result = await session.execute(
                update(TraceRecord)
                .where(TraceRecord.id == trace_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def get_trace_stats(self, now: Optional[datetime] = None) -> TraceStats:
        since = (now or utcnow()) - timedelta(days=TREND_DAYS)
        async with self.database.session() as session:
            total, avg_duration = (
                await session.execute(select(func.count(), func.avg(TraceRecord.duration_ms)))
            ).one()
            by_status = {status: 0 for status in TRACE_STATUSES}
            for status, n in (
                await session.execute(select(TraceRecord.status, func.count()).group_by(TraceRecord.status))
            ).all():
                by_status[status] = int(n)
            by_app = {
                app: int(n)
                for app, n in (
                    await session.execute(
                        select(TraceRecord.app_name, func.count()).group_by(TraceRecord.app_name)
                    )
                ).all()
            }
            recent = (
                await session.execute(
                    select(TraceRecord.start_time, TraceRecord.duration_ms).where(TraceRecord.start_time >= since)
                )
            ).all()

        counts: Dict[str, int] = defaultdict(int)
        durations: Dict[str, List[int]] = defaultdict(list)
        for start_time, duration_ms in recent:
            day = _day(start_time)
            counts[day] += 1
            if duration_ms is not None:
                durations[day].append(int(duration_ms))

        trend = [
            TraceTrendPoint(
                date=day,
                count=n,
                avg_duration=(sum(durations[day]) / len(durations[day])) if durations[day] else 0.0,
            )
            for day, n in sorted(counts.items())
        ]
        return TraceStats(
            total_traces=int(total),
            avg_duration_ms=float(avg_duration or 0),
            by_status=by_status,
            by_app=by_app,
            recent_trend=trend,
        )

    # ==================== Spans ====================

    @staticmethod
    def _trace_error_values() -> Dict[str, Any]:
        return {
            "error_count": TraceRecord.error_count + 1,
            "status": case((TraceRecord.status == "completed", "error"), else_=TraceRecord.status),
        }

    async def create_span(self, data: SpanCreate) -> Optional[Span]:
        """
        Store a span and bump its trace's counters in one transaction.

        Returns None (nothing written) when the trace does not exist.
        """
        values: Dict[str, Any] = {"span_count": TraceRecord.span_count + 1}
        if data.status == "error":
            values.update(self._trace_error_values())

        record = SpanRecord(
            id=data.id or str(uuid.uuid4()),
            trace_id=data.trace_id,
            parent_span_id=data.parent_span_id,
            name=data.name,
            operation_type=data.operation_type,
            start_time=data.start_time or utcnow(),
            end_time=data.end_time,
            duration_ms=data.duration_ms,
            status=data.status,
            meta=data.metadata,
        )

        async with self.database.session() as session:
            result = await session.execute(
                update(TraceRecord)
                .where(TraceRecord.id == data.trace_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            session.add(record)
            await session.commit()
        return _span_from_row(record)

    async def get_spans_by_trace_id(self, trace_id: str) -> List[Span]:
        async with self.database.session() as session:
            rows = (
                await session.execute(
                    select(SpanRecord)
                    .where(SpanRecord.trace_id == trace_id)
                    .order_by(SpanRecord.start_time.asc(), SpanRecord.id.asc())
                )
            ).scalars().all()
        return [_span_from_row(r) for r in rows]

    async def get_span_by_id(self, span_id: str) -> Optional[Span]:
        async with self.database.session() as session:
            row = await session.get(SpanRecord, span_id)
        return _span_from_row(row) if row is not None else None

    async def update_span(self, span_id: str, data: SpanUpdate) -> bool:
        """
        Apply an end-state update to a span. Returns False when it does not exist.

        The first transition into "error" increments the trace's error_count;
        repeating it is a no-op for the counter.
        """
        values: Dict[str, Any] = {}
        if data.end_time is not None:
            values["end_time"] = data.end_time
        if data.duration_ms is not None:
            values["duration_ms"] = data.duration_ms
        if data.metadata is not None:
            values["meta"] = data.metadata
        if data.status is not None and data.status not in ("running", "error"):
            values["status"] = case((SpanRecord.status == "error", "error"), else_=data.status)

        async with self.database.session() as session:
            flipped = False
            if data.status == "error":
                result = await session.execute(
                    update(SpanRecord)
                    .where(SpanRecord.id == span_id, SpanRecord.status != "error")
                    .values(status="error")
                    .execution_options(synchronize_session=False)
                )
                flipped = result.rowcount > 0

            if values:
                result = await session.execute(
                    update(SpanRecord)
                    .where(SpanRecord.id == span_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                found = result.rowcount > 0
            else:
                found = flipped or await session.get(SpanRecord, span_id) is not None

            if flipped:
                owner = select(SpanRecord.trace_id).where(SpanRecord.id == span_id).scalar_subquery()
                await session.execute(
                    update(TraceRecord)
                    .where(TraceRecord.id == owner)
                    .values(**self._trace_error_values())
                    .execution_options(synchronize_session=False)
                )
            await session.commit()
        return found

    async def end_stale_spans(self, timeout_ms: int, now: Optional[datetime] = None) -> int:
        """
        Force-end spans still running `timeout_ms` after they started.

        They are marked "error" with end_time = now, so their traces count them
        as errors exactly like a client-reported failure.
        """
        if timeout_ms <= 0:
            return 0
        now = now or utcnow()
        deadline = now - timedelta(milliseconds=timeout_ms)

        async with self.database.session() as session:
            stale = (
                await session.execute(
                    select(SpanRecord.id, SpanRecord.start_time).where(
                        SpanRecord.status == "running", SpanRecord.start_time <= deadline
                    )
                )
            ).all()

        ended = 0
        for span_id, start_time in stale:
            duration_ms = max(int((now - start_time).total_seconds() * 1000), 0)
            if await self.update_span(
                span_id, SpanUpdate(status="error", end_time=now, duration_ms=duration_ms)
            ):
                ended += 1
        if ended:
            logger.info("Force-ended %d span(s) running longer than %d ms", ended, timeout_ms)
        return ended

    # ==================== Settings ====================

    async def get_retention_settings(self) -> RetentionSettings:
        async with self.database.session() as session:
            rows = (await session.execute(select(SettingRecord.key, SettingRecord.value))).all()
        values = {key: value for key, value in rows}

        return RetentionSettings(
            logs_retention_days=_int_setting(values, "retention.logs_days"),
            traces_retention_days=_int_setting(values, "retention.traces_days"),
            spans_retention_days=_int_setting(values, "retention.spans_days"),
            error_groups_retention_days=_int_setting(values, "retention.error_groups_days"),
            cleanup_enabled=values.get("cleanup.enabled", DEFAULT_SETTINGS["cleanup.enabled"]).lower() == "true",
            cleanup_interval_hours=_int_setting(values, "cleanup.interval_hours"),
        )

    async def update_retention_settings(self, data: RetentionSettingsUpdate) -> RetentionSettings:
        """Write the provided fields and return the resulting settings."""
        changes = data.model_dump(exclude_none=True)
        now = utcnow()
        async with self.database.session() as session:
            for key, field_name in SETTING_KEYS.items():
                if field_name not in changes:
                    continue
                value = changes[field_name]
                value = str(value).lower() if isinstance(value, bool) else str(value)

                result = await session.execute(
                    update(SettingRecord)
                    .where(SettingRecord.key == key)
                    .values(value=value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    session.add(SettingRecord(key=key, value=value, updated_at=now))
            await session.commit()
        return await self.get_retention_settings()

    async def get_storage_stats(self) -> StorageStats:
        async with self.database.session() as session:
            counts = {}
            for name, model in (
                ("logs", LogRecord),
                ("traces", TraceRecord),
                ("spans", SpanRecord),
                ("error_groups", ErrorGroupRecord),
            ):
                counts[name] = int((await session.execute(select(func.count()).select_from(model))).scalar_one())
            oldest_log = (await session.execute(select(func.min(LogRecord.timestamp)))).scalar_one_or_none()
            oldest_trace = (await session.execute(select(func.min(TraceRecord.start_time)))).scalar_one_or_none()

            size = 0
            if self.dialect.size_query:
                try:
                    size = int((await session.execute(text(self.dialect.size_query))).scalar() or 0)
                except SQLAlchemyError as exc:
                    logger.warning("Could not read database size: %s", exc)

        return StorageStats(
            total_logs=counts["logs"],
            total_traces=counts["traces"],
            total_spans=counts["spans"],
            total_error_groups=counts["error_groups"],
            database_size_bytes=size,
            oldest_log=oldest_log,
            oldest_trace=oldest_trace,
        )

    # ==================== Retention ====================

    @staticmethod
    def _cutoff(days: int, now: Optional[datetime]) -> datetime:
        return (now or utcnow()) - timedelta(days=days)

    async def _delete(self, stmt) -> int:
        async with self.database.session() as session:
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            await session.commit()
            return int(result.rowcount or 0)

    async def cleanup_old_logs(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete logs whose event timestamp is at or before now - days. days <= 0 disables."""
        if days <= 0:
            return 0
        cutoff = self._cutoff(days, now)
        return await self._delete(delete(LogRecord).where(LogRecord.timestamp <= cutoff))

    async def cleanup_old_spans(self, days: int, now: Optional[datetime] = None) -> int:
        if days <= 0:
            return 0
        cutoff = self._cutoff(days, now)
        return await self._delete(delete(SpanRecord).where(SpanRecord.start_time <= cutoff))

    async def cleanup_old_traces(self, days: int, now: Optional[datetime] = None) -> Tuple[int, int]:
        """
        Delete traces started at or before the cutoff.

        Their spans go first, in the same transaction, so the foreign key never
        blocks the delete. Returns (traces_deleted, spans_deleted).
        """
        if days <= 0:
            return 0, 0
        cutoff = self._cutoff(days, now)
        expired = select(TraceRecord.id).where(TraceRecord.start_time <= cutoff)

        async with self.database.session() as session:
            spans = await session.execute(
                delete(SpanRecord)
                .where(SpanRecord.trace_id.in_(expired))
                .execution_options(synchronize_session=False)
            )
            traces = await session.execute(
                delete(TraceRecord)
                .where(TraceRecord.start_time <= cutoff)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return int(traces.rowcount or 0), int(spans.rowcount or 0)

    async def cleanup_old_error_groups(self, days: int, now: Optional[datetime] = None) -> int:
        if days <= 0:
            return 0
        cutoff = self._cutoff(days, now)
        return await self._delete(delete(ErrorGroupRecord).where(ErrorGroupRecord.last_seen <= cutoff))

    async def cleanup_orphaned_spans(self) -> int:
        """Delete spans whose trace no longer exists."""
        return await self._delete(
            delete(SpanRecord).where(SpanRecord.trace_id.not_in(select(TraceRecord.id)))
        )

    async def run_cleanup(self, now: Optional[datetime] = None) -> CleanupResult:
        """
        Apply the stored retention settings once.

        Each category runs in its own transaction; counts show how far a
        partially failed run got.
        """
        started = time.perf_counter()
        settings = await self.get_retention_settings()

        logs_deleted = await self.cleanup_old_logs(settings.logs_retention_days, now)
        spans_deleted = await self.cleanup_old_spans(settings.spans_retention_days, now)
        traces_deleted, trace_spans = await self.cleanup_old_traces(settings.traces_retention_days, now)
        spans_deleted += trace_spans + await self.cleanup_orphaned_spans()
        groups_deleted = await self.cleanup_old_error_groups(settings.error_groups_retention_days, now)

        result = CleanupResult(
            logs_deleted=logs_deleted,
            traces_deleted=traces_deleted,
            spans_deleted=spans_deleted,
            error_groups_deleted=groups_deleted,
        )
        await self._reclaim_space(result.total_deleted)

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        if result.total_deleted:
            logger.info(
                "Cleanup removed logs=%d traces=%d spans=%d error_groups=%d in %d ms",
                result.logs_deleted,
                result.traces_deleted,
                result.spans_deleted,
                result.error_groups_deleted,
                result.duration_ms,
            )
        return result

    async def purge_all_data(self) -> CleanupResult:
        """Delete every log, trace, span and error group. Settings are kept."""
        started = time.perf_counter()
        async with self.database.session() as session:
            spans = await session.execute(delete(SpanRecord))
            traces = await session.execute(delete(TraceRecord))
            logs = await session.execute(delete(LogRecord))
            groups = await session.execute(delete(ErrorGroupRecord))
            await session.commit()
            result = CleanupResult(
                logs_deleted=int(logs.rowcount or 0),
                traces_deleted=int(traces.rowcount or 0),
                spans_deleted=int(spans.rowcount or 0),
                error_groups_deleted=int(groups.rowcount or 0),
            )

        await self._reclaim_space(result.total_deleted)
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.warning("Purged all data (%d rows)", result.total_deleted)
        return result

    async def _reclaim_space(self, deleted: int) -> None:
        if not self.dialect.reclaims_space or deleted <= VACUUM_THRESHOLD:
            return
        try:
            async with self.database.autocommit_connection() as conn:
                await conn.exec_driver_sql("VACUUM")
                # VACUUM may renumber rowids of tables without an INTEGER PRIMARY KEY.
                if self.dialect.supports_fulltext:
                    await conn.exec_driver_sql(REBUILD_INDEX)
        except OperationalError as exc:
            logger.warning("VACUUM skipped: %s", exc)

from __future__ import annotations

from datetime import timedelta

import pytest

from tracedock.schemas.logs import LogsQuery
from conftest import BASE_TIME


async def _seed(repository, make_log) -> None:
    entries = [
        make_log(id="l1", timestamp=BASE_TIME, level="info", message="service started", app_name="api"),
        make_log(
            id="l2",
            timestamp=BASE_TIME + timedelta(minutes=1),
            level="warn",
            message="Request timeout after 30s",
            app_name="api",
            metadata={"user": "alice", "region": "eu-west"},
        ),
        make_log(
            id="l3",
            timestamp=BASE_TIME + timedelta(minutes=2),
            level="error",
            message="Connection refused",
            app_name="worker",
            session_id="session-2",
            stack_trace="Error: Connection refused\n    at connect (src/db.js:10:4)",
        ),
        make_log(
            id="l4",
            timestamp=BASE_TIME + timedelta(minutes=3),
            level="info",
            message="checkout completed",
            app_name="web",
            metadata={"user": "bob", "cart": 3},
            trace_id="t-1",
            span_id="s-1",
        ),
        make_log(
            id="l5",
            timestamp=BASE_TIME + timedelta(minutes=4),
            level="debug",
            message="cache warm",
            app_name="worker",
            session_id="session-2",
        ),
    ]
    for entry in entries:
        await repository.insert_log(entry)


def _ids(page) -> list[str]:
    return [log.id for log in page.logs]


@pytest.mark.asyncio
async def test_get_logs_orders_newest_first_with_total(repository, make_log) -> None:
    await _seed(repository, make_log)

    page = await repository.get_logs(LogsQuery(limit=2))

    assert _ids(page) == ["l5", "l4"]
    assert page.total == 5
    assert (page.limit, page.offset) == (2, 0)


@pytest.mark.asyncio
async def test_pages_cover_the_full_result_once(repository, make_log) -> None:
    await _seed(repository, make_log)
    full = _ids(await repository.get_logs(LogsQuery(limit=100)))

    collected: list[str] = []
    offset = 0
    while True:
        page = await repository.get_logs(LogsQuery(limit=2, offset=offset))
        if not page.logs:
            break
        collected.extend(_ids(page))
        offset += 2

    assert collected == full


@pytest.mark.asyncio
async def test_structured_filters(repository, make_log) -> None:
    await _seed(repository, make_log)

    assert _ids(await repository.get_logs(LogsQuery(app_name="worker"))) == ["l5", "l3"]
    assert _ids(await repository.get_logs(LogsQuery(level="warn"))) == ["l2"]
    assert _ids(await repository.get_logs(LogsQuery(session_id="session-2", level="debug"))) == ["l5"]
    assert _ids(await repository.get_logs(LogsQuery(trace_id="t-1"))) == ["l4"]
    assert _ids(await repository.get_logs(LogsQuery(span_id="s-1"))) == ["l4"]


@pytest.mark.asyncio
async def test_date_range_is_inclusive(repository, make_log) -> None:
    await _seed(repository, make_log)

    page = await repository.get_logs(
        LogsQuery(start_date=BASE_TIME + timedelta(minutes=1), end_date=BASE_TIME + timedelta(minutes=3))
    )

    assert _ids(page) == ["l4", "l3", "l2"]


@pytest.mark.asyncio
async def test_inline_filters_fill_missing_structured_filters(repository, make_log) -> None:
    await _seed(repository, make_log)

    assert _ids(await repository.get_logs(LogsQuery(search="app:worker"))) == ["l5", "l3"]
    assert _ids(await repository.get_logs(LogsQuery(search="level:ERROR"))) == ["l3"]
    assert _ids(await repository.get_logs(LogsQuery(search='session:"session-2" level:debug'))) == ["l5"]


@pytest.mark.asyncio
async def test_explicit_filter_wins_over_inline(repository, make_log) -> None:
    await _seed(repository, make_log)

    page = await repository.get_logs(LogsQuery(app_name="api", search="app:worker"))

    assert _ids(page) == ["l2", "l1"]


@pytest.mark.asyncio
async def test_metadata_filter_uses_json_value(repository, make_log) -> None:
    await _seed(repository, make_log)

    assert _ids(await repository.get_logs(LogsQuery(search="user:ali"))) == ["l2"]
    assert _ids(await repository.get_logs(LogsQuery(search="cart:3"))) == ["l4"]
    # "bob" is a value of `user`, not of `region`.
    assert _ids(await repository.get_logs(LogsQuery(search="region:bob"))) == []


@pytest.mark.asyncio
async def test_metadata_filter_fallback_without_json_support(database, repository, make_log) -> None:
    await _seed(repository, make_log)
    database.dialect = database.dialect.with_capabilities(supports_json_query=False)

    # Substring over metadata text or message.
    assert _ids(await repository.get_logs(LogsQuery(search="user:alice"))) == ["l2"]
    assert _ids(await repository.get_logs(LogsQuery(search="anything:refused"))) == ["l3"]


@pytest.mark.asyncio
async def test_free_text_uses_fulltext_index(database, repository, make_log) -> None:
    assert database.dialect.supports_fulltext
    await _seed(repository, make_log)

    assert _ids(await repository.get_logs(LogsQuery(search="timeout"))) == ["l2"]
    # Prefix match on every token, all tokens required.
    assert _ids(await repository.get_logs(LogsQuery(search="conn refused"))) == ["l3"]
    # Stack traces and metadata are indexed too.
    assert _ids(await repository.get_logs(LogsQuery(search="db.js"))) == ["l3"]
    assert _ids(await repository.get_logs(LogsQuery(search="alice"))) == ["l2"]
    assert _ids(await repository.get_logs(LogsQuery(search="level:info checkout"))) == ["l4"]


@pytest.mark.asyncio
async def test_outdated_fulltext_index_is_rebuilt_on_init(database, repository, make_log) -> None:
    await _seed(repository, make_log)
    async with database.autocommit_connection() as conn:
        await conn.exec_driver_sql("DROP TABLE logs_fts")
        await conn.exec_driver_sql(
            "CREATE VIRTUAL TABLE logs_fts USING fts5("
            "id, message, app_name, metadata, stack_trace, content='logs', content_rowid='rowid')"
        )
        await conn.exec_driver_sql("INSERT INTO logs_fts(logs_fts) VALUES ('rebuild')")
    assert _ids(await repository.get_logs(LogsQuery(search="l2"))) == ["l2"]

    await database.init()

    assert database.dialect.supports_fulltext
    assert _ids(await repository.get_logs(LogsQuery(search="l2"))) == []
    assert _ids(await repository.get_logs(LogsQuery(search="timeout"))) == ["l2"]


@pytest.mark.asyncio
async def test_free_text_substring_fallback(database, repository, make_log) -> None:
    await _seed(repository, make_log)
    database.dialect = database.dialect.with_capabilities(supports_fulltext=False)

    assert _ids(await repository.get_logs(LogsQuery(search="TIMEOUT"))) == ["l2"]
    assert _ids(await repository.get_logs(LogsQuery(search="conn refused"))) == ["l3"]
    assert _ids(await repository.get_logs(LogsQuery(search="alice"))) == ["l2"]
    assert _ids(await repository.get_logs(LogsQuery(search="nothing-like-this"))) == []


@pytest.mark.asyncio
async def test_like_wildcards_are_literal(database, repository, make_log) -> None:
    await repository.insert_log(make_log(id="p1", message="disk at 100% capacity"))
    await repository.insert_log(make_log(id="p2", message="disk at 1000 capacity", timestamp=BASE_TIME + timedelta(seconds=1)))
    database.dialect = database.dialect.with_capabilities(supports_fulltext=False)

    assert _ids(await repository.get_logs(LogsQuery(search="100%"))) == ["p1"]


@pytest.mark.asyncio
async def test_non_error_logs_never_grouped(repository, make_log) -> None:
    group_id = await repository.insert_log(make_log(id="w1", level="warn", error_group_id="forged"))

    stored = await repository.get_log_by_id("w1")
    assert group_id is None
    assert stored.error_group_id is None
    assert (await repository.get_error_group_stats()).total_groups == 0


@pytest.mark.asyncio
async def test_log_round_trips_all_fields(repository, make_log) -> None:
    entry = make_log(
        id="full",
        metadata={"nested": {"a": [1, 2]}},
        context={"route": "/x"},
        environment={"type": "browser", "userAgent": "UA", "screen": "1920x1080"},
        trace_id="t",
        span_id="s",
        parent_span_id="p",
    )
    await repository.insert_log(entry)

    stored = await repository.get_log_by_id("full")
    assert stored.metadata == {"nested": {"a": [1, 2]}}
    assert stored.context == {"route": "/x"}
    assert stored.environment.user_agent == "UA"
    assert stored.environment.model_extra == {"screen": "1920x1080"}
    assert stored.timestamp == BASE_TIME
    assert (stored.trace_id, stored.span_id, stored.parent_span_id) == ("t", "s", "p")
    assert await repository.get_log_by_id("missing") is None


@pytest.mark.asyncio
async def test_filtered_logs_exclude_ignored_groups(repository, make_log) -> None:
    await _seed(repository, make_log)
    group_id = (await repository.get_log_by_id("l3")).error_group_id
    await repository.update_error_group_status(group_id, "ignored")

    shown = await repository.get_filtered_logs(LogsQuery(), exclude_ignored=True)
    assert "l3" not in _ids(shown)
    assert shown.total == 4
    assert shown.ignored_count == 1

    everything = await repository.get_filtered_logs(LogsQuery(), exclude_ignored=False)
    assert everything.total == 5
    assert everything.ignored_count == 0


@pytest.mark.asyncio
async def test_lookup_helpers(repository, make_log) -> None:
    await _seed(repository, make_log)

    stats = await repository.get_stats()
    assert stats.total == 5
    assert stats.by_level == {"info": 2, "warn": 1, "error": 1, "debug": 1}
    assert stats.by_app == {"api": 2, "worker": 2, "web": 1}

    assert await repository.get_apps() == ["api", "web", "worker"]
    assert await repository.get_sessions() == ["session-2", "session-1"]
    assert await repository.get_sessions("web") == ["session-1"]
    assert await repository.get_metadata_keys() == ["cart", "region", "user"]


@pytest.mark.asyncio
async def test_suggestions(repository, make_log) -> None:
    await _seed(repository, make_log)

    values = [s.value for s in await repository.get_suggestions("w")]
    assert values == ["app:web", "app:worker", "level:warn"]

    values = [s.value for s in await repository.get_suggestions("re")]
    assert values == ["region:"]

    assert len(await repository.get_suggestions("")) <= 10

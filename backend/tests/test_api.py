from __future__ import annotations

from datetime import datetime, timezone

from fastapi.testclient import TestClient

from tracedock.main import create_app
from conftest import log_payload

STACK = "Error: Connection refused\n    at db.js:10:4"


def _error_payload(**overrides):
    body = {"level": "error", "message": "Connection refused", "stackTrace": STACK}
    body.update(overrides)
    return log_payload(**body)


def test_index_and_health(client) -> None:
    banner = client.get("/").json()
    assert banner["name"] == "trace-dock"
    assert banner["status"] == "ok"
    assert banner["wsClients"] == 0
    assert banner["timestamp"].endswith("Z")

    assert client.get("/health").json() == {"status": "ok", "env": "test"}


def test_ingest_then_read_back(client) -> None:
    res = client.post("/ingest", json=log_payload(id="log-1", metadata={"user": "alice"}))
    assert res.status_code == 200
    assert res.json() == {"success": True, "id": "log-1"}
    assert "x-request-id" in res.headers

    log = client.get("/logs/log-1").json()
    assert log["appName"] == "svc"
    assert log["timestamp"] == "2024-01-15T12:00:00.000Z"
    assert log["metadata"] == {"user": "alice"}

    page = client.get("/logs", params={"search": "user:alice", "limit": 10}).json()
    assert page["total"] == 1
    assert page["limit"] == 10
    assert [entry["id"] for entry in page["logs"]] == ["log-1"]


def test_ingest_rejects_invalid_payload(client) -> None:
    body = log_payload(level="fatal")
    del body["appName"]

    res = client.post("/ingest", json=body)

    assert res.status_code == 400
    payload = res.json()
    assert payload["code"] == "VALIDATION_ERROR"
    assert "level" in payload["details"]["fieldErrors"]
    assert "appName" in payload["details"]["fieldErrors"]


def test_ingest_rejects_bad_timestamp(client) -> None:
    res = client.post("/ingest", json=log_payload(timestamp="yesterday"))
    assert res.status_code == 400
    assert "timestamp" in res.json()["details"]["fieldErrors"]


def test_repeated_errors_form_one_group(client) -> None:
    for second in ("00", "05", "10"):
        res = client.post("/ingest", json=_error_payload(timestamp=f"2024-01-15T12:00:{second}Z"))
        assert res.status_code == 200

    page = client.get("/error-groups", params={"appName": "svc"}).json()
    assert page["total"] == 1
    group = page["errorGroups"][0]
    assert group["occurrenceCount"] == 3
    assert group["firstSeen"] == "2024-01-15T12:00:00.000Z"
    assert group["lastSeen"] == "2024-01-15T12:00:10.000Z"
    assert group["status"] == "unreviewed"

    assert client.get(f"/error-groups/{group['id']}").json()["occurrenceCount"] == 3
    occurrences = client.get(f"/error-groups/{group['id']}/occurrences", params={"limit": 2}).json()
    assert occurrences["total"] == 3
    assert len(occurrences["logs"]) == 2

    res = client.patch(f"/error-groups/{group['id']}/status", json={"status": "ignored"})
    assert res.json() == {"success": True}
    filtered = client.get("/logs-filtered", params={"excludeIgnored": "true"}).json()
    assert (filtered["total"], filtered["ignoredCount"]) == (0, 3)

    stats = client.get("/error-groups/stats").json()
    assert stats["totalGroups"] == 1
    assert stats["byStatus"]["ignored"] == 1


def test_error_group_status_validation_and_404(client) -> None:
    assert client.patch("/error-groups/nope/status", json={"status": "ignored"}).status_code == 404
    assert client.patch("/error-groups/nope/status", json={"status": "done"}).status_code == 400
    res = client.get("/error-groups/nope")
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"
    assert client.get("/error-groups/nope/occurrences").status_code == 404


def test_trace_lifecycle(client) -> None:
    trace = client.post(
        "/traces",
        json={"id": "t1", "name": "checkout", "appName": "svc", "sessionId": "s1", "startTime": "2024-01-15T12:00:00Z"},
    ).json()
    assert trace["status"] == "running"

    span = client.post(
        "/spans",
        json={"id": "sp1", "traceId": "t1", "name": "db.query", "operationType": "db", "status": "error"},
    )
    assert span.status_code == 200
    assert span.json()["traceId"] == "t1"

    res = client.patch("/traces/t1", json={"status": "completed", "durationMs": 120})
    assert res.json() == {"success": True}

    client.post("/ingest", json=log_payload(id="in-trace", traceId="t1", spanId="sp1"))

    details = client.get("/traces/t1").json()
    assert details["trace"]["status"] == "error"
    assert details["trace"]["errorCount"] == 1
    assert details["trace"]["spanCount"] == 1
    assert [s["id"] for s in details["spans"]] == ["sp1"]
    assert [log["id"] for log in details["logs"]] == ["in-trace"]

    assert [s["id"] for s in client.get("/traces/t1/spans").json()["spans"]] == ["sp1"]
    assert client.get("/traces", params={"status": "error"}).json()["total"] == 1
    assert client.get("/traces/stats").json()["totalTraces"] == 1


def test_trace_and_span_404s(client) -> None:
    res = client.post("/spans", json={"traceId": "missing", "name": "lost"})
    assert res.status_code == 404
    assert res.json()["details"] == {"traceId": "missing"}

    assert client.get("/traces/missing").status_code == 404
    assert client.get("/traces/missing/spans").status_code == 404
    assert client.patch("/traces/missing", json={"status": "completed"}).status_code == 404
    assert client.patch("/spans/missing", json={"status": "error"}).status_code == 404
    assert client.get("/logs/missing").status_code == 404


def test_trace_create_needs_app_name(client) -> None:
    res = client.post("/traces", json={"name": "boot", "sessionId": "s1"})
    assert res.status_code == 400

    res = client.post("/traces", json={"name": "boot", "serviceName": "api", "sessionId": "s1"})
    assert res.status_code == 200
    assert res.json()["appName"] == "api"


def test_log_lookups(client) -> None:
    client.post("/ingest", json=log_payload(appName="web", sessionId="s-a", metadata={"region": "eu"}))
    client.post("/ingest", json=log_payload(appName="api", sessionId="s-b", level="warn"))

    assert client.get("/apps").json() == {"apps": ["api", "web"]}
    assert client.get("/sessions", params={"appName": "web"}).json() == {"sessions": ["s-a"]}
    assert client.get("/metadata-keys").json() == {"keys": ["region"]}
    stats = client.get("/stats").json()
    assert stats["total"] == 2
    assert stats["byLevel"] == {"info": 1, "warn": 1}

    suggestions = client.get("/suggestions", params={"q": "we"}).json()["suggestions"]
    assert {"type": "app", "value": "app:web"} in suggestions


def test_logs_query_validation(client) -> None:
    assert client.get("/logs", params={"limit": 0}).status_code == 400
    assert client.get("/logs", params={"level": "fatal"}).status_code == 400
    assert client.get("/logs", params={"startDate": "not-a-date"}).status_code == 400


def test_settings_patch_restarts_scheduler(client) -> None:
    assert client.get("/settings").json()["cleanupIntervalHours"] == 1
    scheduler = client.app.state.scheduler
    assert scheduler.interval_hours == 1

    res = client.patch("/settings", json={"cleanupIntervalHours": 2, "logsRetentionDays": 3})
    assert res.status_code == 200
    assert res.json()["logsRetentionDays"] == 3
    assert scheduler.interval_hours == 2
    assert scheduler.running

    client.patch("/settings", json={"cleanupEnabled": False})
    assert not scheduler.running

    assert client.patch("/settings", json={"cleanupIntervalHours": 0}).status_code == 400


def test_maintenance_endpoints(client) -> None:
    client.post("/ingest", json=log_payload(timestamp="2000-01-01T00:00:00Z"))
    client.post("/ingest", json=log_payload(timestamp=datetime.now(timezone.utc).isoformat()))

    assert client.get("/settings/stats").json()["totalLogs"] == 2

    cleanup = client.post("/settings/cleanup").json()
    assert cleanup["logsDeleted"] == 1

    purge = client.post("/settings/purge").json()
    assert purge["logsDeleted"] == 1
    assert client.get("/settings/stats").json()["totalLogs"] == 0


def test_live_stream_receives_ingested_logs(client) -> None:
    with client.websocket_connect("/live") as ws:
        greeting = ws.receive_json()
        assert greeting["type"] == "connected"
        assert client.get("/").json()["wsClients"] == 1

        client.post("/ingest", json=log_payload(id="live-1", level="warn"))

        message = ws.receive_json()
        assert message["type"] == "log"
        assert message["data"]["id"] == "live-1"
        assert message["data"]["appName"] == "svc"


def test_oversized_body_is_rejected(settings) -> None:
    app = create_app(settings.model_copy(update={"MAX_BODY_MB": 1}), start_scheduler=False)
    with TestClient(app) as small:
        res = small.post("/ingest", json=log_payload(message="x" * (2 * 1024 * 1024)))

    assert res.status_code == 413
    assert res.json()["code"] == "PAYLOAD_TOO_LARGE"

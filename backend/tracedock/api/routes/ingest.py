# tracedock/api/routes/ingest.py
"""
POST /ingest

Accepts one log entry from an SDK.

Flow:
1) Validate the payload (LogEntry schema; 400 with a field map on failure)
2) Persist it; error-level entries are fingerprinted and grouped
3) Push the stored entry to live dashboard clients after the response
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from tracedock.api.deps import get_broadcaster, get_repository
from tracedock.db.repository import Repository
from tracedock.schemas.logs import IngestResponse, LogEntry
from tracedock.services.broadcast import LiveBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/ingest", response_model=IngestResponse)
async def ingest_log(
    entry: LogEntry,
    background_tasks: BackgroundTasks,
    repository: Repository = Depends(get_repository),
    broadcaster: LiveBroadcaster = Depends(get_broadcaster),
):
    """
    Example:
      POST /ingest
      {"id": "...", "timestamp": "2024-01-01T00:00:00Z", "level": "error",
       "message": "Connection refused", "appName": "svc", "sessionId": "s-1",
       "environment": {"type": "node"}}
    """
    group_id = await repository.insert_log(entry)
    stored = entry.model_copy(update={"error_group_id": group_id})

    if broadcaster.client_count:
        background_tasks.add_task(
            broadcaster.broadcast_log,
            stored.model_dump(mode="json", by_alias=True),
        )

    logger.debug("Ingested %s log %s from %s", entry.level, entry.id, entry.app_name)
    return IngestResponse(id=entry.id)

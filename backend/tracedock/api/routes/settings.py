# tracedock/api/routes/settings.py
"""
Retention settings and maintenance.

- GET   /settings          current RetentionSettings
- PATCH /settings          partial update; restarts the cleanup scheduler when
                           cleanupEnabled or cleanupIntervalHours changed
- GET   /settings/stats    StorageStats
- POST  /settings/cleanup  run retention cleanup now
- POST  /settings/purge    delete all logs, traces, spans and error groups
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from tracedock.api.deps import get_repository, get_scheduler
from tracedock.db.repository import Repository
from tracedock.schemas.settings import CleanupResult, RetentionSettings, RetentionSettingsUpdate, StorageStats
from tracedock.services.cleanup import CleanupScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/settings", response_model=RetentionSettings)
async def get_settings(repository: Repository = Depends(get_repository)):
    return await repository.get_retention_settings()


@router.patch("/settings", response_model=RetentionSettings)
async def update_settings(
    body: RetentionSettingsUpdate,
    repository: Repository = Depends(get_repository),
    scheduler: CleanupScheduler = Depends(get_scheduler),
):
    before = await repository.get_retention_settings()
    after = await repository.update_retention_settings(body)

    if (before.cleanup_enabled, before.cleanup_interval_hours) != (
        after.cleanup_enabled,
        after.cleanup_interval_hours,
    ):
        logger.info(
            "Cleanup schedule changed (enabled=%s interval=%dh); restarting scheduler",
            after.cleanup_enabled,
            after.cleanup_interval_hours,
        )
        await scheduler.restart(after)
    return after


@router.get("/settings/stats", response_model=StorageStats)
async def storage_stats(repository: Repository = Depends(get_repository)):
    return await repository.get_storage_stats()


@router.post("/settings/cleanup", response_model=CleanupResult)
async def run_cleanup(repository: Repository = Depends(get_repository)):
    return await repository.run_cleanup()


@router.post("/settings/purge", response_model=CleanupResult)
async def purge_all(repository: Repository = Depends(get_repository)):
    return await repository.purge_all_data()

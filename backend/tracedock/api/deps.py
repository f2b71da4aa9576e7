# tracedock/api/deps.py
"""
FastAPI dependencies.

The repository, broadcaster and scheduler are built once by `create_app()`
and parked on `app.state`; routes receive them through `Depends(...)` so
tests can hand the app their own instances.
"""

from __future__ import annotations

from fastapi import Request, WebSocket

from tracedock.core.config import Settings
from tracedock.db.repository import Repository
from tracedock.services.broadcast import LiveBroadcaster
from tracedock.services.cleanup import CleanupScheduler


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_broadcaster(request: Request) -> LiveBroadcaster:
    return request.app.state.broadcaster


def get_scheduler(request: Request) -> CleanupScheduler:
    return request.app.state.scheduler


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ws_broadcaster(websocket: WebSocket) -> LiveBroadcaster:
    return websocket.app.state.broadcaster

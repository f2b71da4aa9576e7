# tracedock/api/routes/health.py
"""
GET /        service banner (name, version, live client count)
GET /health  tiny liveness probe for docker/k8s/reverse proxies
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tracedock.api.deps import get_app_settings, get_broadcaster
from tracedock.core.config import Settings
from tracedock.services.broadcast import LiveBroadcaster
from tracedock.utils.timeutil import isoformat_z, utcnow
from tracedock.version import SERVICE_NAME, __version__

router = APIRouter()


@router.get("/")
async def index(broadcaster: LiveBroadcaster = Depends(get_broadcaster)):
    return {
        "name": SERVICE_NAME,
        "version": __version__,
        "status": "ok",
        "timestamp": isoformat_z(utcnow()),
        "wsClients": broadcaster.client_count,
    }


@router.get("/health")
async def health(settings: Settings = Depends(get_app_settings)):
    return {"status": "ok", "env": settings.ENV}

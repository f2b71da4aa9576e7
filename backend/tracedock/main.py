from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse

from tracedock.api.routes.error_groups import router as error_groups_router
from tracedock.api.routes.health import router as health_router
from tracedock.api.routes.ingest import router as ingest_router
from tracedock.api.routes.live import router as live_router
from tracedock.api.routes.logs import router as logs_router
from tracedock.api.routes.settings import router as settings_router
from tracedock.api.routes.traces import router as traces_router
from tracedock.core.config import Settings, get_settings
from tracedock.core.errors import fail, install_exception_handlers
from tracedock.core.logging import configure_logging
from tracedock.db.repository import Repository
from tracedock.db.session import Database, build_database
from tracedock.services.broadcast import LiveBroadcaster
from tracedock.services.cleanup import CleanupScheduler
from tracedock.version import __version__

logger = logging.getLogger("tracedock")


# -------------------------
# App factory
# -------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI app.

    Tests pass their own `settings` and `database`; production uses the
    environment. Nothing touches the database until the lifespan starts.
    """
    settings = settings or get_settings()
    database = database or build_database(settings)
    repository = Repository(database)
    broadcaster = LiveBroadcaster()
    scheduler = CleanupScheduler(repository, span_timeout_ms=settings.SPAN_TIMEOUT_MS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL, sql_echo=settings.DB_DEBUG)

        await database.init()
        if start_scheduler:
            await scheduler.start()
        logger.info("trace-dock %s ready (db=%s)", __version__, database.dialect.kind)
        try:
            yield
        finally:
            await scheduler.stop()
            await broadcaster.close()
            await repository.close()

    app = FastAPI(
        title="trace-dock API",
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.repository = repository
    app.state.broadcaster = broadcaster
    app.state.scheduler = scheduler

    # -------------------------
    # Middleware
    # -------------------------
    app.add_middleware(GZipMiddleware, minimum_size=1024)

    # SDKs post from browsers on arbitrary origins.
    allow_all = "*" in settings.CORS_ALLOW_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request-id + timing + body-size guard
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.perf_counter()

        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                too_large = int(content_length) > settings.MAX_BODY_BYTES
            except ValueError:
                too_large = False
            if too_large:
                return ORJSONResponse(
                    status_code=413,
                    content=fail(
                        "PAYLOAD_TOO_LARGE",
                        f"Request body too large. Max is {settings.MAX_BODY_MB} MB.",
                    ),
                    headers={"x-request-id": request_id},
                )

        response = await call_next(request)

        response.headers["x-request-id"] = request_id
        response.headers["x-response-ms"] = f"{(time.perf_counter() - start) * 1000:.2f}"
        return response

    # -------------------------
    # Routes
    # -------------------------
    app.include_router(health_router, tags=["health"])
    app.include_router(ingest_router, tags=["ingest"])
    app.include_router(logs_router, tags=["logs"])
    app.include_router(error_groups_router, tags=["error-groups"])
    app.include_router(traces_router, tags=["traces"])
    app.include_router(settings_router, tags=["settings"])
    app.include_router(live_router, tags=["live"])

    # -------------------------
    # Error handling
    # -------------------------
    install_exception_handlers(app, expose_details=settings.ENV == "dev")

    return app


app = create_app()

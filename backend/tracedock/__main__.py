"""Run the server: `python -m tracedock` (HOST/PORT from the environment)."""

from __future__ import annotations

import uvicorn

from tracedock.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "tracedock.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

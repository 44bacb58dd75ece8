#!/usr/bin/env python3
"""Serve the pgbranch HTTP surface: ``python -m pgbranch.main``."""

from __future__ import annotations

import uvicorn

from pgbranch.api import create_app
from pgbranch.config import Settings
from pgbranch.logging import configure_logging, logger


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    engine = settings.create_engine()
    logger.info("serving table %s on %s:%d", settings.table, settings.host, settings.port)
    app = create_app(
        engine,
        table=settings.table,
        branch=settings.branch,
        use_cache=settings.use_cache,
        title="pgbranch",
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()

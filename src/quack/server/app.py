"""FastAPI backend for the notebook UI."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quack import __version__
from quack.config import AppConfig, load_config
from quack.engine.database import Database

logger = logging.getLogger("quack.server")


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the application around one explicitly opened database handle.

    The handle is opened when the app starts serving and closed on shutdown;
    routes receive it through :func:`quack.server.deps.get_db`.
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        db = Database(config.db_path).open()
        app.state.db = db
        logger.info("Serving %s from %s", config.name, config.db_path)
        try:
            yield
        finally:
            db.close()
            app.state.db = None

    app = FastAPI(title="quack", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.db = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from quack.server.routes import files, notebooks, queries, query

    app.include_router(notebooks.router)
    app.include_router(files.router)
    app.include_router(query.router)
    app.include_router(queries.router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "version": __version__}

    return app

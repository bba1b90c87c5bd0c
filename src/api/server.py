"""FastAPI server for the scan runner's operator API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import router
from src.services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(services: Services | None = None, background: bool = True) -> FastAPI:
    """Build the app. ``background=False`` skips the worker pool and scheduler loop."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = services or build_services()
        app.state.services = svc
        svc.targets.load()

        pool = None
        if background:
            pool = svc.worker_pool()
            try:
                pool.start()
            except Exception:
                logger.exception("Worker pool failed to start")
            app.state.worker_pool = pool
            try:
                await svc.scheduler.start()
            except Exception:
                logger.exception("Scan scheduler failed to start")

        yield

        # Shutdown
        if background:
            await svc.scheduler.stop()
            if pool is not None:
                pool.stop()

    app = FastAPI(
        title="Scanwatch - Website Scan Runner",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()

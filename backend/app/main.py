from __future__ import annotations

import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.endpoints import files
from app.api.v1.router import api_router
from app.core.config import Settings, get_settings
from app.core.db import create_schema
from app.core.logging import configure_logging, get_logger
from app.services.uploads import MenuImageStorage


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app_logger = configure_logging(settings)
    http_logger = get_logger("app.http")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await create_schema()
        app_logger.log(f"{settings.app_name} started ({settings.app_env})", context="Bootstrap")
        yield
        app_logger.log(f"{settings.app_name} shutting down", context="Bootstrap")

    app = FastAPI(title="Jewels Catalog Menu API", version="1.0", lifespan=lifespan)

    # Raises when the upload root cannot be created; the process must not start without it.
    app.state.image_storage = MenuImageStorage(settings, logger=get_logger("app.services.uploads"))

    if settings.cors_origins:
        origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        http_logger.log_request(request, context="HTTP")
        try:
            response = await call_next(request)
        except Exception:
            http_logger.log_failed_response(
                request,
                (time.perf_counter() - start) * 1000,
                trace=traceback.format_exc(),
                context="HTTP",
            )
            raise
        http_logger.log_response(request, response, (time.perf_counter() - start) * 1000, context="HTTP")
        return response

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        http_logger.error(
            f"Unhandled error on {request.method} {request.url.path}: {exc.__class__.__name__}: {exc}",
            trace="".join(traceback.format_exception(exc)),
            context="HTTP",
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(files.router, prefix="/uploads", tags=["uploads"])
    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()

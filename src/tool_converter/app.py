"""FastAPI application factory for the tools service."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router as api_router
from .config import get_settings
from .errors import install_error_handlers
from .logging import configure_logging
from .monitoring import ensure_metrics_server, metrics_disabled
from .recipes import load_recipes_from_settings


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.logging)
    load_recipes_from_settings(settings)
    settings.work_path.mkdir(parents=True, exist_ok=True)

    if not metrics_disabled():
        ensure_metrics_server(settings.monitoring.prometheus_port)

    app = FastAPI(
        title="Tool Converter",
        version=settings.api_version,
        docs_url=f"{settings.base_url}/docs",
        redoc_url=f"{settings.base_url}/redoc",
        openapi_url=f"{settings.base_url}/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Merge-Warnings", "X-Merge-Backend", "X-Split-Backend", "X-Compress-Backend", "X-BG-Backend"],
    )

    install_error_handlers(app)
    app.include_router(api_router, prefix=settings.base_url)

    @app.get("/healthz")
    async def root_health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()

from __future__ import annotations

import logging

from fastapi import FastAPI

from modqueue_api.api.errors import install_error_handlers
from modqueue_api.api.routers.admin import router as admin_router
from modqueue_api.api.routers.health import router as health_router
from modqueue_api.api.routers.moderation import router as moderation_router
from modqueue_api.api.routers.oversight import router as oversight_router
from modqueue_api.api.routers.reports import router as reports_router
from modqueue_api.api.routers.users import router as users_router
from modqueue_api.observability.logging import access_log, configure_logging
from modqueue_api.observability.metrics import render_metrics
from modqueue_api.observability.middleware import RequestContextMiddleware
from modqueue_api.observability.tracing import configure_tracing
from modqueue_api.settings import get_settings


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()
    logger = logging.getLogger("modqueue_api.main")
    app = FastAPI(title="Moderation Queue API", version="0.1.0")

    app.add_middleware(RequestContextMiddleware, access_log=access_log)

    # Install error handlers early to ensure they catch all exceptions
    install_error_handlers(app)

    app.include_router(health_router)
    app.include_router(reports_router)
    app.include_router(moderation_router)
    app.include_router(oversight_router)
    app.include_router(users_router)
    app.include_router(admin_router)

    app.add_api_route(
        "/metrics", render_metrics, methods=["GET"], include_in_schema=False
    )

    logger.info(
        "Moderation API configured",
        extra={"notifications_mode": settings.notifications_mode},
    )
    configure_tracing(app, settings)
    return app


app = create_app()

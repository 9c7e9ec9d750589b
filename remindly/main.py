from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
import uvicorn

from remindly.config import get_settings
from remindly.logging_config import configure_logging, new_request_id, request_id_scope
from remindly.routes.api import api_router

configure_logging(get_settings().log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Starting Remindly application")
    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; the batch endpoint will reject every call")
    if not settings.smtp_user or not settings.smtp_pass:
        logger.warning("SMTP credentials not configured; email notifications will be recorded as failed")
    if not settings.vapid_private_key:
        logger.warning("VAPID keys not configured; push notifications are disabled")
    yield
    logger.info("Shutting down Remindly application")


def create_app() -> FastAPI:
    app = FastAPI(title="Remindly", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = new_request_id(request.headers.get("X-Request-ID"))
        with request_id_scope(request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("remindly.main:app", host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    run()

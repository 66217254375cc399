"""FastAPI application entrypoint for the deployment bot."""

from __future__ import annotations

from time import perf_counter
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from deploybot.control.runtime import get_runtime
from deploybot.control.telegram_bot import router as telegram_router
from deploybot.core.config import get_settings
from deploybot.core.logger import bind_conversation_context, clear_conversation_context, get_logger
from deploybot.core.observability import init_sentry, sentry_scope
from deploybot.sessions.store import check_session_backend
from deploybot.sessions.sweeper import SessionSweeper
from deploybot.storage.db import check_credential_store, create_schema


settings = get_settings()
logger = get_logger("deploybot.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)

_sweeper: Optional[SessionSweeper] = None


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_conversation_context(request_id=request_id)

    try:
        with sentry_scope(request_id=request_id):
            response = await call_next(request)
    finally:
        logger.debug(
            "http_request",
            method=request.method,
            path=request.url.path,
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        clear_conversation_context()

    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    global _sweeper

    create_schema()
    sentry_enabled = init_sentry()
    _sweeper = get_runtime().build_sweeper()
    _sweeper.start()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        session_backend=settings.session_backend,
    )


@app.on_event("shutdown")
def on_shutdown() -> None:
    if _sweeper is not None:
        _sweeper.stop()
    logger.info("application_shutdown")


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = check_credential_store()
    sessions_ok, sessions_error = check_session_backend()
    services = {
        "database": {"ok": db_ok, "error": db_error},
        "sessions": {"ok": sessions_ok, "error": sessions_error, "backend": settings.session_backend},
    }
    healthy = db_ok and sessions_ok

    payload = {
        "status": "ok" if healthy else "degraded",
        "env": settings.env,
        "services": services,
    }
    return JSONResponse(content=payload, status_code=200 if healthy else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


app.include_router(telegram_router)

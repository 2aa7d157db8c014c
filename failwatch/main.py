from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
import uvicorn

from .alerts import AlertDispatcher
from .config import Settings, load_settings
from .db import Database
from .errors import StoreError
from .guard import GuardService
from .logging_utils import configure_logging
from .metrics import CONTENT_TYPE_LATEST, REQUESTS_TOTAL, generate_latest
from .notifier import Notifier, build_notifier
from .schemas import ErrorResponse, FailureEventItem, HealthResponse, RejectionResponse, SubmitResponse
from .security import client_origin
from .store import FailureStore
from .tracker import WindowTracker

logger = logging.getLogger("failwatch.app")


def create_app(settings: Optional[Settings] = None, notifier: Optional[Notifier] = None) -> FastAPI:
    settings = settings or load_settings()
    settings.validate()
    configure_logging(settings.log_level)

    database = Database(settings)
    tracker = WindowTracker(
        max_attempts=settings.max_failed_attempts,
        window_seconds=settings.window_seconds,
        shards=settings.tracker_shards,
    )
    dispatcher = AlertDispatcher(
        notifier or build_notifier(settings),
        timeout_seconds=settings.notifier_timeout_seconds,
        queue_size=settings.alert_queue_size,
    )
    guard = GuardService(
        store=FailureStore(database),
        tracker=tracker,
        dispatcher=dispatcher,
        expected_token=settings.access_token,
        sweep_interval_seconds=settings.tracker_sweep_interval_seconds,
    )

    app = FastAPI(title="failwatch", version="1.0.0")
    app.state.settings = settings
    app.state.database = database
    app.state.guard = guard
    api_router = APIRouter(prefix="/api")

    @app.on_event("startup")
    async def startup_event() -> None:
        # rejections keep being counted and alerted on while the store is down
        try:
            database.check_connection()
            database.init_db()
        except SQLAlchemyError:
            logger.exception(
                "Database unavailable at startup, failures will not be persisted",
                extra={"event": "db_unavailable"},
            )
        await guard.start()
        logger.info(
            "failwatch startup complete",
            extra={
                "event": "startup",
                "channel": dispatcher.notifier.channel,
                "db_backend": "sqlite" if settings.is_sqlite else "postgres",
            },
        )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await guard.stop()
        database.dispose()

    @app.middleware("http")
    async def request_metrics_middleware(request: Request, call_next):
        response = await call_next(request)
        REQUESTS_TOTAL.labels(
            method=request.method,
            path=request.url.path,
            status=str(response.status_code),
        ).inc()
        return response

    @api_router.post(
        "/submit",
        response_model=SubmitResponse,
        responses={403: {"model": RejectionResponse}},
    )
    async def submit(request: Request, authorization: Optional[str] = Header(default=None)):
        origin = client_origin(request, settings.trust_proxy)
        outcome = await guard.evaluate(origin, authorization)
        if outcome.reason is not None:
            return JSONResponse(
                status_code=403,
                content={"message": "Invalid request", "reason": outcome.reason.value},
            )
        return SubmitResponse(message="Request successful")

    @api_router.get(
        "/metrics",
        response_model=list[FailureEventItem],
        responses={500: {"model": ErrorResponse}},
    )
    async def failure_metrics(ip: Optional[str] = Query(default=None, max_length=128)):
        try:
            events = await guard.list_failures(ip)
        except StoreError:
            logger.exception(
                "Failed to fetch failure records",
                extra={"event": "metrics_read_failed", "path": "/api/metrics", "status": 500},
            )
            return JSONResponse(status_code=500, content={"message": "Error fetching metrics"})
        return [FailureEventItem.from_event(event) for event in events]

    @api_router.get("/health", response_model=HealthResponse)
    async def api_healthcheck() -> HealthResponse:
        database.check_connection()
        return HealthResponse(status="ok", ts=datetime.now(timezone.utc).isoformat())

    @app.get("/health", response_model=HealthResponse)
    async def healthcheck() -> HealthResponse:
        database.check_connection()
        return HealthResponse(status="ok", ts=datetime.now(timezone.utc).isoformat())

    @app.get("/metrics")
    async def prometheus_metrics() -> Response:
        if not settings.enable_prometheus_metrics:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(api_router)
    return app


def run() -> None:
    settings = load_settings()
    uvicorn.run(
        "failwatch.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        proxy_headers=settings.trust_proxy,
        log_config=None,
    )


if __name__ == "__main__":
    run()

"""
Health check surface for the purchase listener.

`HealthStats` holds the process-wide counters. It is written by the poll
loop and read by the HTTP handlers, which run on uvicorn's thread, so every
access goes through a lock.

Endpoints
- GET /health  - counters snapshot, always "healthy" while serving
- GET /metrics - Prometheus text exposition
- GET /ready   - 200 once uptime passes the startup grace period, else 503
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from starlette.exceptions import HTTPException as StarletteHTTPException

from state.models import HealthSnapshot


logger = logging.getLogger(__name__)

READY_AFTER_SECONDS = 5.0
METRIC_PREFIX = "purchase_listener"


class HealthStats:
    """Thread-safe counters for processed events and errors."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._now = now
        self._started = clock()
        self.start_time = now()
        self._events_processed = 0
        self._errors = 0
        self._last_event_processed: Optional[str] = None
        self._last_error: Optional[str] = None

    def record_event(self, purchase_id: str) -> None:
        stamp = self._now().isoformat()
        with self._lock:
            self._events_processed += 1
            self._last_event_processed = stamp
        logger.debug("Recorded processed purchase %s", purchase_id)

    def record_error(self, message: str) -> None:
        with self._lock:
            self._errors += 1
            self._last_error = message

    def uptime_seconds(self) -> int:
        return int(self._clock() - self._started)

    def is_ready(self, threshold: float = READY_AFTER_SECONDS) -> bool:
        return (self._clock() - self._started) >= threshold

    @property
    def events_processed(self) -> int:
        with self._lock:
            return self._events_processed

    @property
    def errors(self) -> int:
        with self._lock:
            return self._errors

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return HealthSnapshot(
                uptime_seconds=self.uptime_seconds(),
                events_processed=self._events_processed,
                errors=self._errors,
                last_event_processed=self._last_event_processed,
                last_error=self._last_error,
            )


class HealthCollector:
    """prometheus_client collector reading straight from HealthStats on each scrape."""

    def __init__(self, stats: HealthStats) -> None:
        self._stats = stats

    def collect(self) -> Iterator[Metric]:
        snap = self._stats.snapshot()
        yield GaugeMetricFamily(
            f"{METRIC_PREFIX}_uptime_seconds",
            "Uptime in seconds",
            value=snap.uptime_seconds,
        )
        yield CounterMetricFamily(
            f"{METRIC_PREFIX}_events_processed",
            "Total events processed",
            value=snap.events_processed,
        )
        yield CounterMetricFamily(
            f"{METRIC_PREFIX}_errors",
            "Total errors encountered",
            value=snap.errors,
        )


def create_app(stats: HealthStats, *, ready_after: float = READY_AFTER_SECONDS) -> FastAPI:
    app = FastAPI(title="purchase-listener-health", docs_url=None, redoc_url=None, openapi_url=None)
    registry = CollectorRegistry(auto_describe=False)
    registry.register(HealthCollector(stats))

    @app.middleware("http")
    async def allow_any_origin(request: Request, call_next):
        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown paths and wrong methods both answer 404
        return JSONResponse({"error": "Not found"}, status_code=404)

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse(stats.snapshot().model_dump(by_alias=True))

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/ready")
    def ready() -> JSONResponse:
        if stats.is_ready(ready_after):
            return JSONResponse({"ready": True})
        return JSONResponse({"ready": False, "reason": "Starting up"}, status_code=503)

    return app


class HealthServerError(RuntimeError):
    """The health check server could not start serving."""


class HealthServer:
    """Serves the health app with uvicorn on a background daemon thread."""

    def __init__(
        self,
        stats: HealthStats,
        *,
        port: int = 3001,
        host: str = "0.0.0.0",
        ready_after: float = READY_AFTER_SECONDS,
        startup_timeout: float = 5.0,
    ) -> None:
        self.stats = stats
        self.port = port
        self.host = host
        self.startup_timeout = startup_timeout
        self.app = create_app(stats, ready_after=ready_after)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """
        Start serving and block until the socket is bound.

        Raises HealthServerError when uvicorn exits during startup (port in
        use, bad host) or is not serving within `startup_timeout` seconds.
        """
        if self.running:
            logger.warning("Health check server already running on port %d", self.port)
            return
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(target=server.run, name="health-server", daemon=True)
        thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not server.started:
            if not thread.is_alive():
                raise HealthServerError(f"Health check server failed to bind {self.host}:{self.port}")
            if time.monotonic() >= deadline:
                server.should_exit = True
                raise HealthServerError(
                    f"Health check server not serving on port {self.port} after {self.startup_timeout:g}s"
                )
            time.sleep(0.05)

        self._server = server
        self._thread = thread
        logger.info(
            "Health check server listening on port %d (GET /health, /metrics, /ready)",
            self.port,
            extra={"port": self.port},
        )

    def stop(self, timeout: float = 5.0) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
        self._server = None
        self._thread = None
        logger.info("Health check server stopped")


__all__ = [
    "HealthStats",
    "HealthCollector",
    "HealthServer",
    "HealthServerError",
    "create_app",
    "READY_AFTER_SECONDS",
]

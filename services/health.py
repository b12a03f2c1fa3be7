"""Backup health record and the HTTP responder that reports it."""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.retention import RetentionStore
from surreal_backup.config import BACKUP_KINDS
from surreal_backup.logging import log_event

logger = logging.getLogger(__name__)

STARTING = "starting"
RUNNING = "running"
HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
STATUSES = (STARTING, RUNNING, HEALTHY, UNHEALTHY)

DEFAULT_SERVICE_NAME = "surrealdb-backup"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class HealthRecord:
    """Status of the most recent backup run."""

    status: str
    last_updated: datetime

    def to_dict(self, service: str = DEFAULT_SERVICE_NAME) -> dict[str, Any]:
        return {
            "status": self.status,
            "last_updated": isoformat_z(self.last_updated),
            "service": service,
        }


class HealthState:
    """
    Process-wide health record guarded by a lock.

    Readers call ``snapshot()``. Mutation goes through the single
    ``HealthWriter`` handed out by ``writer()``; asking for a second one
    raises, so there is exactly one writer per state.
    """

    def __init__(
        self,
        snapshot_path: Optional[Path] = None,
        *,
        service: str = DEFAULT_SERVICE_NAME,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._lock = threading.Lock()
        self._clock = clock
        self._record = HealthRecord(status=STARTING, last_updated=clock())
        self._writer: Optional[HealthWriter] = None
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self.service = service

    def snapshot(self) -> HealthRecord:
        with self._lock:
            return self._record

    def writer(self) -> "HealthWriter":
        with self._lock:
            if self._writer is not None:
                raise RuntimeError("HealthState already has a writer.")
            self._writer = HealthWriter(self)
            return self._writer

    def _set(self, status: str) -> HealthRecord:
        if status not in STATUSES:
            raise ValueError(f"Unknown health status '{status}'.")
        with self._lock:
            self._record = HealthRecord(status=status, last_updated=self._clock())
            record = self._record
            self._mirror(record)
        return record

    def _mirror(self, record: HealthRecord) -> None:
        # Called with the lock held so the file never lags behind a newer record.
        if self.snapshot_path is None:
            return
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.snapshot_path.with_name(f".{self.snapshot_path.name}.tmp")
            tmp.write_text(json.dumps(record.to_dict(self.service), indent=2), encoding="utf-8")
            os.replace(tmp, self.snapshot_path)
        except OSError as e:
            logger.error(f"Failed to write health snapshot {self.snapshot_path}: {e}")

    def publish(self) -> None:
        """Write the current record to the snapshot file (used at start-up)."""
        with self._lock:
            self._mirror(self._record)


class HealthWriter:
    def __init__(self, state: HealthState):
        self._state = state

    def running(self) -> HealthRecord:
        return self._state._set(RUNNING)

    def healthy(self) -> HealthRecord:
        return self._state._set(HEALTHY)

    def unhealthy(self) -> HealthRecord:
        return self._state._set(UNHEALTHY)


@dataclass
class HealthReport:
    healthy: bool
    body: dict[str, Any]

    @property
    def status_code(self) -> int:
        return 200 if self.healthy else 503


def evaluate_health(
    state: HealthState,
    store: RetentionStore,
    *,
    stale_after_seconds: float = 24 * 3600,
    now: Optional[datetime] = None,
) -> HealthReport:
    """Healthy only when the last run succeeded and is younger than the threshold."""
    now = now or utc_now()
    record = state.snapshot()
    age = (now - record.last_updated).total_seconds()
    healthy = record.status == HEALTHY and age < stale_after_seconds

    body = {
        "status": HEALTHY if healthy else UNHEALTHY,
        "service": state.service,
        "timestamp": isoformat_z(now),
        "last_backup": "never" if record.status == STARTING else isoformat_z(record.last_updated),
        "backups": {kind: store.stat(kind).to_dict() for kind in BACKUP_KINDS},
    }
    return HealthReport(healthy=healthy, body=body)


def create_health_app(
    state: HealthState,
    store: RetentionStore,
    *,
    stale_after_seconds: float = 24 * 3600,
) -> FastAPI:
    app = FastAPI(title="SurrealDB Backup Health", docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse({"error": "Not Found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.get("/health")
    def health() -> JSONResponse:
        report = evaluate_health(state, store, stale_after_seconds=stale_after_seconds)
        return JSONResponse(report.body, status_code=report.status_code)

    return app


class HealthServer:
    """Serves the health app with uvicorn on a background daemon thread."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 8080):
        self.host = host
        self.port = port
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_config=None, access_log=False)
        )
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._server.run, name="health-server", daemon=True)
        self._thread.start()
        log_event(
            logger,
            logging.INFO,
            f"Starting health check server on port {self.port}",
            component="health-server",
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait_started(self, timeout: float = 5.0) -> bool:
        """True once uvicorn is listening; False if it exits first (e.g. port in use) or times out."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._server.started:
                return True
            if self._thread is None or not self._thread.is_alive():
                return False
            time.sleep(0.05)
        return False

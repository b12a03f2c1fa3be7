import json
import socket
import threading
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from services import health as health_mod
from services.health import (
    HEALTHY,
    RUNNING,
    STARTING,
    UNHEALTHY,
    HealthServer,
    HealthState,
    create_health_app,
    evaluate_health,
)

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def state(tmp_path, clock):
    return HealthState(tmp_path / "logs" / "health.json", clock=clock)


def test_initial_status_is_starting(state):
    assert state.snapshot().status == STARTING


def test_only_one_writer(state):
    state.writer()
    with pytest.raises(RuntimeError):
        state.writer()


def test_writer_transitions_are_mirrored_to_disk(state, clock, tmp_path):
    writer = state.writer()
    writer.running()
    clock.now = NOW + timedelta(minutes=3)
    writer.healthy()

    record = state.snapshot()
    assert record.status == HEALTHY
    assert record.last_updated == NOW + timedelta(minutes=3)

    on_disk = json.loads((tmp_path / "logs" / "health.json").read_text())
    assert on_disk == {
        "status": "healthy",
        "last_updated": "2026-10-17T12:03:00Z",
        "service": "surrealdb-backup",
    }


def test_publish_writes_starting_record(state, tmp_path):
    state.publish()
    on_disk = json.loads((tmp_path / "logs" / "health.json").read_text())
    assert on_disk["status"] == STARTING


def test_concurrent_readers_see_complete_records(state):
    writer = state.writer()
    seen = set()
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            seen.add(state.snapshot().status)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for _ in range(200):
        writer.running()
        writer.unhealthy()
    stop.set()
    for t in threads:
        t.join()

    assert seen <= {STARTING, RUNNING, UNHEALTHY}


def test_evaluate_healthy_and_fresh(state, store, clock):
    state.writer().healthy()
    store.path("nightly").write_bytes(b"x" * 42)

    report = evaluate_health(state, store, stale_after_seconds=3600, now=NOW + timedelta(minutes=5))

    assert report.healthy and report.status_code == 200
    assert report.body == {
        "status": "healthy",
        "service": "surrealdb-backup",
        "timestamp": "2026-10-17T12:05:00Z",
        "last_backup": "2026-10-17T12:00:00Z",
        "backups": {
            "nightly": {"exists": True, "size_bytes": 42},
            "weekly": {"exists": False, "size_bytes": 0},
        },
    }


def test_stale_healthy_record_is_reported_unhealthy(state, store):
    state.writer().healthy()

    report = evaluate_health(state, store, stale_after_seconds=24 * 3600, now=NOW + timedelta(days=3))

    assert not report.healthy
    assert report.status_code == 503
    assert report.body["status"] == UNHEALTHY
    assert report.body["last_backup"] == "2026-10-17T12:00:00Z"


def test_starting_reports_never(state, store):
    report = evaluate_health(state, store, now=NOW)
    assert report.status_code == 503
    assert report.body["last_backup"] == "never"


def test_failed_run_is_unhealthy_even_when_fresh(state, store):
    state.writer().unhealthy()
    report = evaluate_health(state, store, now=NOW)
    assert report.status_code == 503


def test_http_health_endpoint(state, store, monkeypatch):
    monkeypatch.setattr(health_mod, "utc_now", lambda: NOW + timedelta(hours=1))
    state.writer().healthy()
    client = TestClient(create_health_app(state, store, stale_after_seconds=24 * 3600))

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert set(body["backups"]) == {"nightly", "weekly"}


def test_http_health_endpoint_unhealthy_is_503_with_body(state, store):
    client = TestClient(create_health_app(state, store))

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_http_unknown_path_is_404(state, store):
    client = TestClient(create_health_app(state, store))

    response = client.get("/metrics")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_health_server_serves_and_stops(state, store):
    server = HealthServer(create_health_app(state, store), host="127.0.0.1", port=0)
    server.start()
    try:
        assert server.wait_started(timeout=10) is True
    finally:
        server.stop()


def test_health_server_reports_port_in_use(state, store):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]

        server = HealthServer(create_health_app(state, store), host="127.0.0.1", port=port)
        server.start()
        try:
            assert server.wait_started(timeout=10) is False
        finally:
            server.stop()

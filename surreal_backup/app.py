from __future__ import annotations

import logging
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from services.credentials import CredentialSource
from services.export_client import ExportClient
from services.health import HealthServer, HealthState, create_health_app
from services.pipeline import BackupPipeline
from services.restore import RestoreWorkflow
from services.retention import RetentionStore
from services.retry import RetryPolicy
from services.scheduler import BackupScheduler
from services.validator import ArtifactValidator
from surreal_backup.config import (
    BACKUP_KINDS,
    get_backup_dir,
    get_health_file,
    get_keyvault_dir,
    get_schedule,
    get_stale_after_seconds,
    get_temp_dir,
    load_config,
    with_defaults,
)
from surreal_backup.logging import configure_logging, log_event

logger = logging.getLogger(__name__)


@dataclass
class Components:
    config: Dict[str, Any]
    credentials: CredentialSource
    client: ExportClient
    validator: ArtifactValidator
    store: RetentionStore
    health: HealthState


def build_components(config: Optional[Dict[str, Any]] = None, *, mirror_health: bool = True) -> Components:
    """
    Wire the components from config.

    Only the daemon mirrors health to the snapshot file; one-shot runs pass
    ``mirror_health=False`` so the file always matches what /health serves.
    """
    cfg = with_defaults(config) if config is not None else load_config()
    db_cfg = cfg["surrealdb"]
    vault_cfg = cfg["keyvault"]
    backup_cfg = cfg["backup"]

    credentials = CredentialSource(
        get_keyvault_dir(cfg),
        RetryPolicy.deadline(vault_cfg["wait_seconds"], vault_cfg["poll_seconds"]),
    )
    client = ExportClient(
        db_cfg["endpoint"],
        binary=db_cfg["binary"],
        probe_policy=RetryPolicy.fixed(db_cfg["probe_attempts"], db_cfg["probe_delay_seconds"]),
        probe_timeout=float(db_cfg["probe_timeout_seconds"]),
        export_timeout=float(db_cfg["export_timeout_seconds"]),
        import_timeout=float(db_cfg["import_timeout_seconds"]),
    )
    store = RetentionStore(get_backup_dir(cfg), get_temp_dir(cfg), extension=backup_cfg["extension"])
    health = HealthState(
        get_health_file(cfg) if mirror_health else None,
        service=cfg["health"]["service_name"],
    )
    return Components(
        config=cfg,
        credentials=credentials,
        client=client,
        validator=ArtifactValidator(backup_cfg["marker"]),
        store=store,
        health=health,
    )


def build_pipeline(components: Components) -> BackupPipeline:
    backup_cfg = components.config["backup"]
    return BackupPipeline(
        components.credentials,
        components.client,
        components.validator,
        components.store,
        components.health.writer(),
        compress_level=int(backup_cfg["compress_level"]),
        keep_shadow=bool(backup_cfg["keep_shadow"]),
    )


def build_restore(components: Components) -> RestoreWorkflow:
    return RestoreWorkflow(
        components.credentials,
        components.client,
        components.validator,
        components.store,
    )


def run_daemon(config: Optional[Dict[str, Any]] = None, stop: Optional[threading.Event] = None) -> int:
    components = build_components(config)
    cfg = components.config
    stop = stop or threading.Event()

    log_event(logger, logging.INFO, "Starting SurrealDB backup service...", component="surrealdb-backup")
    components.store.ensure_dirs()
    components.store.purge_scratch()
    components.health.publish()

    pipeline = build_pipeline(components)
    scheduler = BackupScheduler(
        pipeline,
        {kind: get_schedule(kind, cfg) for kind in BACKUP_KINDS},
        poll_seconds=float(cfg["schedule"]["poll_seconds"]),
    )

    app = create_health_app(
        components.health,
        components.store,
        stale_after_seconds=get_stale_after_seconds(cfg),
    )
    server = HealthServer(app, host=cfg["health"]["host"], port=int(cfg["health"]["port"]))
    server.start()
    if not server.wait_started():
        log_event(
            logger,
            logging.ERROR,
            f"Health check server failed to start on port {server.port}",
            component="surrealdb-backup",
        )
        server.stop()
        return 1

    try:
        scheduler.run_forever(stop)
    finally:
        server.stop()
        log_event(logger, logging.INFO, "SurrealDB backup service stopped", component="surrealdb-backup")
    return 0


def main() -> None:
    config = load_config()
    configure_logging(config)

    stop = threading.Event()

    def _shutdown(signum, frame):
        log_event(logger, logging.INFO, f"Received signal {signum}, shutting down", component="surrealdb-backup")
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)
    sys.exit(run_daemon(config, stop))


if __name__ == "__main__":
    main()

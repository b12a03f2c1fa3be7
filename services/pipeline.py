"""One backup run: credentials, probe, export, validate, compress, commit, re-verify."""
from __future__ import annotations

import enum
import gzip
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from services.credentials import CredentialSource
from services.errors import (
    BackupError,
    CommitFailed,
    CompressionFailed,
    CorruptArchive,
    CredentialsUnavailable,
    DatabaseUnreachable,
    ExportFailed,
    MalformedArtifact,
    PostCommitCorruption,
)
from services.export_client import ExportClient
from services.health import HealthWriter
from services.retention import RetentionStore
from services.validator import ArtifactValidator
from surreal_backup.config import BACKUP_KINDS
from surreal_backup.logging import log_backup_event, log_event, new_run_id, run_context

logger = logging.getLogger(__name__)

COMPONENT = "surrealdb-backup"


class PipelineState(str, enum.Enum):
    PENDING = "pending"
    CREDENTIALS_LOADED = "credentials_loaded"
    PROBED = "probed"
    EXPORTED = "exported"
    EXPORT_VALIDATED = "export_validated"
    COMPRESSED = "compressed"
    COMMITTED = "committed"
    REVERIFIED = "reverified"
    FAILED = "failed"


# Error code for an unexpected exception, keyed by the last state reached.
STEP_ERROR_CODES = {
    PipelineState.PENDING: CredentialsUnavailable.code,
    PipelineState.CREDENTIALS_LOADED: DatabaseUnreachable.code,
    PipelineState.PROBED: ExportFailed.code,
    PipelineState.EXPORTED: MalformedArtifact.code,
    PipelineState.EXPORT_VALIDATED: CompressionFailed.code,
    PipelineState.COMPRESSED: CommitFailed.code,
    PipelineState.COMMITTED: PostCommitCorruption.code,
}


@dataclass
class BackupResult:
    kind: str
    run_id: str
    state: PipelineState = PipelineState.PENDING
    failed_at: Optional[PipelineState] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    rolled_back: bool = False
    duration_ms: Optional[int] = None
    file_size_bytes: Optional[int] = None
    compressed_size_bytes: Optional[int] = None
    slot_path: Optional[Path] = None
    history: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.REVERIFIED


def compress_file(source: Path, dest: Path, level: int = 9) -> int:
    """Gzip ``source`` into ``dest`` and remove ``source``; returns the compressed size."""
    with open(source, "rb") as f_in:
        with gzip.open(dest, "wb", compresslevel=level) as f_out:
            shutil.copyfileobj(f_in, f_out)
    source.unlink()
    return dest.stat().st_size


class BackupPipeline:
    """
    Runs the backup state machine for one kind at a time.

    Steps are strictly sequential and every failure is terminal for the run:
    the health record becomes ``unhealthy``, scratch files are removed and a
    ``BackupResult`` describing the failure is returned. Nothing is raised
    to the caller, so the scheduler keeps going.
    """

    def __init__(
        self,
        credentials: CredentialSource,
        client: ExportClient,
        validator: ArtifactValidator,
        store: RetentionStore,
        health: HealthWriter,
        *,
        compress_level: int = 9,
        keep_shadow: bool = True,
        run_id_factory: Callable[[], str] = new_run_id,
    ):
        self.credentials = credentials
        self.client = client
        self.validator = validator
        self.store = store
        self.health = health
        self.compress_level = compress_level
        self.keep_shadow = keep_shadow
        self.run_id_factory = run_id_factory

    @staticmethod
    def _advance(result: BackupResult, state: PipelineState) -> None:
        result.state = state
        result.history.append(state)
        logger.debug("backup %s %s -> %s", result.kind, result.run_id, state.value)

    def _fail(self, result: BackupResult, code: str, message: str, *, rolled_back: bool = False) -> None:
        result.failed_at = result.state
        result.error_code = code
        result.error_message = message
        result.rolled_back = rolled_back
        self._advance(result, PipelineState.FAILED)

    def run(self, kind: str) -> BackupResult:
        if kind not in BACKUP_KINDS:
            raise ValueError(f"Unknown backup kind '{kind}'. Expected one of {BACKUP_KINDS}.")

        run_id = self.run_id_factory()
        result = BackupResult(kind=kind, run_id=run_id)
        result.history.append(PipelineState.PENDING)
        raw = self.store.scratch_path(kind, run_id)
        compressed = self.store.scratch_path(kind, run_id, compressed=True)

        with run_context(run_id):
            self.health.running()
            log_backup_event(
                logger,
                logging.INFO,
                f"Starting {kind} backup",
                component=COMPONENT,
                backup_type=kind,
                status="started",
            )
            start = time.monotonic()
            try:
                self._execute(result, raw, compressed)
            except BackupError as e:
                self._fail(result, e.code, str(e), rolled_back=bool(getattr(e, "rolled_back", False)))
            except Exception as e:
                code = STEP_ERROR_CODES.get(result.state, BackupError.code)
                logger.exception(f"Unexpected error during {kind} backup ({result.state.value})")
                self._fail(result, code, f"{type(e).__name__}: {e}")
            finally:
                for path in (raw, compressed):
                    try:
                        path.unlink(missing_ok=True)
                    except OSError as e:
                        logger.error(f"Failed to remove scratch file {path}: {e}")
                result.duration_ms = int((time.monotonic() - start) * 1000)

            if result.ok:
                self.health.healthy()
                log_backup_event(
                    logger,
                    logging.INFO,
                    f"{kind} backup completed successfully",
                    component=COMPONENT,
                    backup_type=kind,
                    status="success",
                    duration_ms=result.duration_ms,
                    file_size_bytes=result.file_size_bytes,
                    compressed_size_bytes=result.compressed_size_bytes,
                )
            else:
                self.health.unhealthy()
                log_backup_event(
                    logger,
                    logging.ERROR,
                    f"{kind} backup failed: {result.error_message}",
                    component=COMPONENT,
                    backup_type=kind,
                    status="failed",
                    duration_ms=result.duration_ms,
                    file_size_bytes=result.file_size_bytes,
                    compressed_size_bytes=result.compressed_size_bytes,
                    error=result.error_code,
                    failed_at=result.failed_at.value if result.failed_at else None,
                )
        return result

    def _execute(self, result: BackupResult, raw: Path, compressed: Path) -> None:
        kind = result.kind

        creds = self.credentials.load()
        self._advance(result, PipelineState.CREDENTIALS_LOADED)

        if not self.client.probe():
            raise DatabaseUnreachable("Pre-backup health check failed")
        self._advance(result, PipelineState.PROBED)

        self.store.ensure_dirs()
        try:
            self.client.export(creds, raw)
        except ExportFailed:
            raise
        except Exception as e:
            raise ExportFailed(f"Export failed: {e}", path=raw) from e
        self._advance(result, PipelineState.EXPORTED)

        try:
            result.file_size_bytes = self.validator.validate_export(raw)
        except MalformedArtifact:
            raise
        except OSError as e:
            raise MalformedArtifact(f"Export file could not be read: {e}", path=raw) from e
        self._advance(result, PipelineState.EXPORT_VALIDATED)

        try:
            result.compressed_size_bytes = compress_file(raw, compressed, self.compress_level)
        except (OSError, EOFError) as e:
            raise CompressionFailed(f"Compression failed: {e}", path=compressed) from e
        log_event(
            logger,
            logging.INFO,
            "Export compressed",
            component=COMPONENT,
            backup_type=kind,
            file_size_bytes=result.file_size_bytes,
            compressed_size_bytes=result.compressed_size_bytes,
        )
        self._advance(result, PipelineState.COMPRESSED)

        receipt = self.store.commit(kind, compressed, keep_shadow=self.keep_shadow, run_id=result.run_id)
        result.slot_path = receipt.slot_path
        self._advance(result, PipelineState.COMMITTED)

        try:
            self.validator.validate_compressed(receipt.slot_path)
        except CorruptArchive as e:
            rolled_back = False
            try:
                rolled_back = self.store.rollback(receipt)
            except OSError as rollback_error:
                logger.error(f"Rollback of {kind} slot failed: {rollback_error}")
            raise PostCommitCorruption(
                f"Post-backup integrity check failed{' (previous artifact restored)' if rolled_back else ''}: {e}",
                path=receipt.slot_path,
                rolled_back=rolled_back,
            ) from e
        finally:
            try:
                self.store.release(receipt)
            except OSError as release_error:
                logger.error(f"Failed to remove shadow of {kind} slot: {release_error}")
        self._advance(result, PipelineState.REVERIFIED)

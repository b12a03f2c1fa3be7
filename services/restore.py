"""Operator-driven restore of a retention slot into the live database."""
from __future__ import annotations

import gzip
import logging
import shutil
import time
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from services.credentials import CredentialSource
from services.errors import BackupError, CorruptArchive, RestoreCancelled, SlotEmpty
from services.export_client import ExportClient
from services.retention import RetentionStore
from services.validator import ArtifactValidator
from surreal_backup.config import BACKUP_KINDS
from surreal_backup.logging import log_event, new_run_id, run_context

logger = logging.getLogger(__name__)

COMPONENT = "restore"
CONFIRMATION_PHRASE = "yes"


@dataclass(frozen=True)
class RestoreRequest:
    kind: str
    verify_only: bool = False
    force: bool = False


@dataclass
class RestoreOutcome:
    kind: str
    status: str  # verified | restored | cancelled | failed
    slot_path: Path
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    compressed_size_bytes: Optional[int] = None
    file_size_bytes: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status in ("verified", "restored", "cancelled")


def decompress_file(source: Path, dest: Path) -> int:
    with gzip.open(source, "rb") as f_in:
        with open(dest, "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
    return dest.stat().st_size


def prompt_confirmation(slot_path: Path, endpoint: str) -> bool:
    print("WARNING: This will replace all data in the SurrealDB database.")
    print(f"Backup file: {slot_path}")
    print(f"Database: {endpoint}")
    print("")
    try:
        reply = input("Are you sure you want to continue? (yes/no): ")
    except EOFError:
        return False
    return reply.strip().lower() == CONFIRMATION_PHRASE


class RestoreWorkflow:
    """
    Verifies a slot and imports it into the database.

    The slot file is only ever read. Every failure before the import leaves
    the live database untouched.
    """

    def __init__(
        self,
        credentials: CredentialSource,
        client: ExportClient,
        validator: ArtifactValidator,
        store: RetentionStore,
        *,
        confirm: Optional[Callable[[Path, str], bool]] = None,
        run_id_factory: Callable[[], str] = new_run_id,
    ):
        self.credentials = credentials
        self.client = client
        self.validator = validator
        self.store = store
        self.confirm = confirm or prompt_confirmation
        self.run_id_factory = run_id_factory

    def _decompress_and_check(self, slot: Path, scratch: Path) -> int:
        self.store.scratch_dir.mkdir(parents=True, exist_ok=True)
        try:
            decompress_file(slot, scratch)
        except (OSError, EOFError, zlib.error) as e:
            raise CorruptArchive(f"Failed to decompress backup file: {e}", path=slot) from e
        return self.validator.validate_export(scratch)

    def verify(self, kind: str) -> RestoreOutcome:
        return self.restore(RestoreRequest(kind=kind, verify_only=True))

    def restore(self, request: RestoreRequest) -> RestoreOutcome:
        if request.kind not in BACKUP_KINDS:
            raise ValueError(f"Unknown backup kind '{request.kind}'. Expected one of {BACKUP_KINDS}.")

        kind = request.kind
        slot = self.store.path(kind)
        outcome = RestoreOutcome(kind=kind, status="failed", slot_path=slot)
        run_id = self.run_id_factory()
        prefix = "verify_" if request.verify_only else "restore_"
        scratch = self.store.scratch_path(kind, run_id, prefix=prefix)

        with run_context(run_id):
            start = time.monotonic()
            try:
                self._restore(request, slot, scratch, outcome)
            except RestoreCancelled:
                outcome.status = "cancelled"
                log_event(logger, logging.INFO, "Restore cancelled", component=COMPONENT, backup_type=kind)
            except BackupError as e:
                outcome.status = "failed"
                outcome.error_code = e.code
                outcome.error_message = str(e)
                log_event(
                    logger,
                    logging.ERROR,
                    f"Restore failed: {e}",
                    component=COMPONENT,
                    backup_type=kind,
                    status="failed",
                    error=e.code,
                )
            finally:
                if scratch.exists():
                    scratch.unlink()
                outcome.duration_ms = int((time.monotonic() - start) * 1000)

            if outcome.status in ("verified", "restored"):
                log_event(
                    logger,
                    logging.INFO,
                    "Backup verification successful" if outcome.status == "verified"
                    else "Restore completed successfully",
                    component=COMPONENT,
                    backup_type=kind,
                    status="success",
                    duration_ms=outcome.duration_ms,
                    file_size_bytes=outcome.file_size_bytes,
                    compressed_size_bytes=outcome.compressed_size_bytes,
                )
        return outcome

    def _restore(self, request: RestoreRequest, slot: Path, scratch: Path, outcome: RestoreOutcome) -> None:
        log_event(
            logger,
            logging.INFO,
            f"Verifying backup integrity: {slot}",
            component=COMPONENT,
            backup_type=request.kind,
        )
        if not slot.is_file():
            raise SlotEmpty(f"Backup file does not exist: {slot}", path=slot)

        outcome.compressed_size_bytes = self.validator.validate_compressed(slot)

        if request.verify_only:
            outcome.file_size_bytes = self._decompress_and_check(slot, scratch)
            outcome.status = "verified"
            return

        if not request.force and not self.confirm(slot, self.client.endpoint):
            raise RestoreCancelled("Restore cancelled by operator")

        creds = self.credentials.load()

        log_event(logger, logging.INFO, "Decompressing backup file", component=COMPONENT, backup_type=request.kind)
        outcome.file_size_bytes = self._decompress_and_check(slot, scratch)

        log_event(logger, logging.INFO, "Importing backup to SurrealDB", component=COMPONENT, backup_type=request.kind)
        self.client.import_(creds, scratch)
        outcome.status = "restored"

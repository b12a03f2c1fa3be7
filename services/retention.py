"""Two-slot rolling retention: one compressed artifact per backup kind."""
from __future__ import annotations

import errno
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from services.errors import CommitFailed
from surreal_backup.config import BACKUP_KINDS
from surreal_backup.logging import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotStat:
    exists: bool
    size_bytes: int

    def to_dict(self) -> Dict[str, object]:
        return {"exists": self.exists, "size_bytes": self.size_bytes}


@dataclass(frozen=True)
class CommitReceipt:
    kind: str
    slot_path: Path
    shadow_path: Optional[Path] = None


def _fsync_file(path: Path) -> None:
    with open(path, "rb") as f:
        os.fsync(f.fileno())


def _fsync_dir(path: Path) -> None:
    # Directory fsync is not available everywhere (e.g. Windows).
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class RetentionStore:
    """
    Owns ``<root>/nightly_backup.<ext>.gz`` and ``<root>/weekly_backup.<ext>.gz``.

    ``commit`` is the only mutation and always ends in an ``os.replace`` on the
    slot path, so readers see either the previous artifact or the new one.
    Scratch files live in ``scratch_dir``, which must be on the same
    filesystem as ``root`` for the rename to be atomic.
    """

    def __init__(self, root: Path, scratch_dir: Optional[Path] = None, extension: str = "surql"):
        self.root = Path(root)
        self.scratch_dir = Path(scratch_dir) if scratch_dir else self.root / "temp"
        self.extension = extension

    def ensure_dirs(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _check_kind(kind: str) -> str:
        if kind not in BACKUP_KINDS:
            raise ValueError(f"Unknown backup kind '{kind}'. Expected one of {BACKUP_KINDS}.")
        return kind

    def slot_name(self, kind: str) -> str:
        return f"{self._check_kind(kind)}_backup.{self.extension}.gz"

    def path(self, kind: str) -> Path:
        return self.root / self.slot_name(kind)

    def stat(self, kind: str) -> SlotStat:
        try:
            st = self.path(kind).stat()
        except FileNotFoundError:
            return SlotStat(exists=False, size_bytes=0)
        return SlotStat(exists=True, size_bytes=st.st_size)

    def stats(self) -> Dict[str, SlotStat]:
        return {kind: self.stat(kind) for kind in BACKUP_KINDS}

    def scratch_path(self, kind: str, run_id: str, *, prefix: str = "", compressed: bool = False) -> Path:
        name = f"{prefix}{self._check_kind(kind)}_{run_id}.{self.extension}"
        if compressed:
            name += ".gz"
        return self.scratch_dir / name

    def _shadow(self, slot: Path, run_id: str) -> Optional[Path]:
        if not slot.exists():
            return None
        shadow = self.scratch_dir / f"{slot.name}.shadow-{run_id or os.getpid()}"
        if shadow.exists():
            shadow.unlink()
        try:
            os.link(slot, shadow)
        except OSError:
            shutil.copy2(slot, shadow)
        return shadow

    def _replace(self, artifact: Path, slot: Path) -> None:
        try:
            os.replace(artifact, slot)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
        # Scratch area on another filesystem: stage beside the slot, then rename.
        staged = self.root / f".{slot.name}.incoming"
        try:
            shutil.copyfile(artifact, staged)
            _fsync_file(staged)
            os.replace(staged, slot)
        finally:
            if staged.exists():
                staged.unlink()
        artifact.unlink()

    def commit(
        self,
        kind: str,
        artifact_path: Path,
        *,
        keep_shadow: bool = False,
        run_id: str = "",
    ) -> CommitReceipt:
        """Atomically replace the slot for ``kind`` with ``artifact_path`` (moved, not copied)."""
        slot = self.path(kind)
        artifact = Path(artifact_path)
        self.root.mkdir(parents=True, exist_ok=True)

        shadow: Optional[Path] = None
        try:
            _fsync_file(artifact)
            if keep_shadow:
                self.scratch_dir.mkdir(parents=True, exist_ok=True)
                shadow = self._shadow(slot, run_id)
            self._replace(artifact, slot)
            _fsync_dir(self.root)
        except OSError as e:
            if shadow is not None and shadow.exists():
                shadow.unlink()
            raise CommitFailed(f"Failed to move backup to final location {slot}: {e}", path=slot) from e

        log_event(
            logger,
            logging.INFO,
            f"Committed {kind} backup to {slot.name}",
            component="retention",
            backup_type=kind,
            compressed_size_bytes=self.stat(kind).size_bytes,
        )
        return CommitReceipt(kind=kind, slot_path=slot, shadow_path=shadow)

    def rollback(self, receipt: CommitReceipt) -> bool:
        """Put the previous artifact back; False when there was nothing to restore."""
        shadow = receipt.shadow_path
        if shadow is None or not shadow.exists():
            return False
        os.replace(shadow, receipt.slot_path)
        _fsync_dir(self.root)
        log_event(
            logger,
            logging.WARNING,
            f"Rolled back {receipt.kind} slot to previous artifact",
            component="retention",
            backup_type=receipt.kind,
        )
        return True

    def release(self, receipt: CommitReceipt) -> None:
        if receipt.shadow_path is not None and receipt.shadow_path.exists():
            receipt.shadow_path.unlink()

    def purge_scratch(self) -> int:
        """Remove leftovers of earlier runs. Call only while no run is in flight."""
        if not self.scratch_dir.is_dir():
            return 0
        removed = 0
        for entry in self.scratch_dir.iterdir():
            if not entry.is_file():
                continue
            try:
                entry.unlink()
                removed += 1
            except OSError as e:
                logger.error(f"Failed to remove stale scratch file {entry}: {e}")
        if removed:
            log_event(
                logger,
                logging.INFO,
                f"Removed {removed} stale scratch file(s)",
                component="retention",
            )
        return removed

"""Cheap structural and integrity checks for export files and gzip archives."""
from __future__ import annotations

import gzip
import logging
import zlib
from pathlib import Path

from services.errors import CorruptArchive, EmptyArtifact, MalformedArtifact
from surreal_backup.logging import log_event

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "BEGIN TRANSACTION"
CHUNK_SIZE = 1024 * 1024


class ArtifactValidator:
    def __init__(self, marker: str = DEFAULT_MARKER):
        self.marker = marker.encode("utf-8")

    def _contains_marker(self, path: Path) -> bool:
        # Keep a tail of the previous chunk so a marker split across reads still matches.
        overlap = len(self.marker) - 1
        tail = b""
        with open(path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    return False
                if self.marker in tail + chunk:
                    return True
                tail = (tail + chunk)[-overlap:] if overlap else b""

    def validate_export(self, path: Path) -> int:
        """Check a raw export; returns its size in bytes."""
        path = Path(path)
        if not path.is_file():
            raise MalformedArtifact(f"Export file does not exist: {path}", path=path)

        size = path.stat().st_size
        if size == 0:
            raise EmptyArtifact(f"Export file is empty: {path}", path=path)

        if not self._contains_marker(path):
            raise MalformedArtifact(
                f"Export file does not contain valid SurrealQL structure: {path}", path=path
            )

        log_event(
            logger,
            logging.INFO,
            "Export file validation passed",
            component="validator",
            file_size_bytes=size,
        )
        return size

    def validate_compressed(self, path: Path) -> int:
        """Read the whole gzip stream to verify its CRC and length; returns the file size."""
        path = Path(path)
        if not path.is_file():
            raise CorruptArchive(f"Archive does not exist: {path}", path=path)
        if path.stat().st_size == 0:
            raise CorruptArchive(f"Archive is empty: {path}", path=path)

        try:
            with gzip.open(path, "rb") as f:
                while f.read(CHUNK_SIZE):
                    pass
        except (OSError, EOFError, zlib.error) as e:
            raise CorruptArchive(f"Gzip integrity check failed for {path}: {e}", path=path) from e

        size = path.stat().st_size
        log_event(
            logger,
            logging.INFO,
            "Archive integrity check passed",
            component="validator",
            compressed_size_bytes=size,
        )
        return size

"""Wrapper around the ``surreal`` CLI export/import protocol and health probe."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

import requests

from services.command_runner import CommandRunner
from services.credentials import CredentialBundle
from services.errors import ExportFailed, ImportFailed
from services.retry import RetryPolicy
from surreal_backup.logging import log_event

logger = logging.getLogger(__name__)


class ExportClient:
    def __init__(
        self,
        endpoint: str,
        *,
        binary: str = "surreal",
        runner: Optional[CommandRunner] = None,
        probe_policy: Optional[RetryPolicy] = None,
        probe_timeout: float = 5.0,
        export_timeout: float = 3600.0,
        import_timeout: float = 3600.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.binary = binary
        self.runner = runner or CommandRunner()
        self.probe_policy = probe_policy or RetryPolicy.fixed(3, 5.0)
        self.probe_timeout = probe_timeout
        self.export_timeout = export_timeout
        self.import_timeout = import_timeout
        self.session = session or requests.Session()

    def _probe_once(self) -> None:
        response = self.session.get(f"{self.endpoint}/health", timeout=self.probe_timeout)
        response.raise_for_status()

    def probe(self) -> bool:
        """Liveness check against ``<endpoint>/health`` with bounded retries."""
        try:
            self.probe_policy.call(self._probe_once, retry_on=(requests.RequestException,))
        except requests.RequestException as e:
            log_event(
                logger,
                logging.ERROR,
                f"SurrealDB health check failed after {self.probe_policy.max_attempts} attempts",
                component="export-client",
                error=str(e)[:200],
            )
            return False
        log_event(logger, logging.INFO, "SurrealDB health check passed", component="export-client")
        return True

    def _command(self, action: str, creds: CredentialBundle, path: Path) -> list[str]:
        return [
            self.binary,
            action,
            "--endpoint",
            self.endpoint,
            "--username",
            creds.username,
            "--password",
            creds.password,
            "--namespace",
            creds.namespace,
            "--database",
            creds.database,
            str(path),
        ]

    def _run(self, action: str, creds: CredentialBundle, path: Path, timeout: float) -> None:
        result = self.runner.run(
            self._command(action, creds, path),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise subprocess.CalledProcessError(result.returncode, action, stderr=stderr[-500:])

    def export(self, creds: CredentialBundle, dest_path: Path) -> Path:
        dest_path = Path(dest_path)
        try:
            self._run("export", creds, dest_path, self.export_timeout)
        except subprocess.CalledProcessError as e:
            raise ExportFailed(f"Export command failed (rc={e.returncode}): {e.stderr}", path=dest_path) from e
        except subprocess.TimeoutExpired as e:
            raise ExportFailed(f"Export timed out after {self.export_timeout}s", path=dest_path) from e
        except (OSError, ValueError) as e:
            raise ExportFailed(f"Export command could not run: {e}", path=dest_path) from e

        if not dest_path.is_file():
            raise ExportFailed("Export command produced no file", path=dest_path)
        return dest_path

    def import_(self, creds: CredentialBundle, source_path: Path) -> None:
        source_path = Path(source_path)
        try:
            self._run("import", creds, source_path, self.import_timeout)
        except subprocess.CalledProcessError as e:
            raise ImportFailed(f"Import command failed (rc={e.returncode}): {e.stderr}", path=source_path) from e
        except subprocess.TimeoutExpired as e:
            raise ImportFailed(f"Import timed out after {self.import_timeout}s", path=source_path) from e
        except (OSError, ValueError) as e:
            raise ImportFailed(f"Import command could not run: {e}", path=source_path) from e

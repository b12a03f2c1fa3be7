"""Reads the SurrealDB credential bundle from the mounted keyvault directory."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from services.errors import CredentialsUnavailable
from services.retry import RetryPolicy
from surreal_backup.logging import log_event

logger = logging.getLogger(__name__)

SECRET_NAMES = ("username", "password", "namespace", "database")


@dataclass(frozen=True)
class CredentialBundle:
    username: str
    password: str = field(repr=False)
    namespace: str
    database: str


class _SecretsPending(Exception):
    """Raised while at least one secret file is still missing."""

    def __init__(self, missing: list[str]):
        super().__init__(", ".join(missing))
        self.missing = missing


class CredentialSource:
    """
    Polls a keyvault directory for the four secret files.

    Secrets are re-read on every ``load()`` so rotated values take effect
    without restarting the daemon. Either all four values are returned or
    ``CredentialsUnavailable`` is raised.
    """

    def __init__(self, directory: Path, policy: RetryPolicy | None = None):
        self.directory = Path(directory)
        self.policy = policy or RetryPolicy.deadline(60, 2)

    def _read_all(self) -> CredentialBundle:
        missing = [name for name in SECRET_NAMES if not (self.directory / name).is_file()]
        if missing:
            raise _SecretsPending(missing)
        values = {}
        for name in SECRET_NAMES:
            try:
                values[name] = (self.directory / name).read_text(encoding="utf-8").strip()
            except FileNotFoundError:
                raise _SecretsPending([name])
        return CredentialBundle(**values)

    def load(self) -> CredentialBundle:
        try:
            bundle = self.policy.call(self._read_all, retry_on=(_SecretsPending,))
        except _SecretsPending as e:
            log_event(
                logger,
                logging.ERROR,
                "Timeout waiting for keyvault credentials",
                component="credentials",
                missing=e.missing,
            )
            raise CredentialsUnavailable(
                f"Missing secrets in {self.directory}: {', '.join(e.missing)}",
                path=self.directory,
            ) from e
        except (OSError, UnicodeDecodeError) as e:
            raise CredentialsUnavailable(f"Cannot read keyvault: {e}", path=self.directory) from e

        log_event(logger, logging.INFO, "Keyvault credentials available", component="credentials")
        return bundle

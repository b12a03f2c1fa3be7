import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from services.credentials import CredentialSource
from services.export_client import ExportClient
from services.health import HealthState
from services.pipeline import BackupPipeline
from services.retention import RetentionStore
from services.retry import RetryPolicy
from services.validator import ArtifactValidator

SECRETS = {
    "username": "root",
    "password": "s3cret",
    "namespace": "core",
    "database": "services",
}


def _flag(args, name):
    return args[args.index(name) + 1]


class FakeSurreal:
    """Stands in for the ``surreal`` CLI: export/import against an in-memory dataset."""

    def __init__(self, records=None):
        self.data = {("core", "services"): dict(records or {"person:1": {"name": "Ada"}})}
        self.calls = []
        self.fail_action = None
        self.export_payload = None

    def run(self, args, **kwargs):
        args = [str(a) for a in args]
        action = args[1]
        self.calls.append(action)
        key = (_flag(args, "--namespace"), _flag(args, "--database"))
        path = Path(args[-1])
        if action == self.fail_action:
            return subprocess.CompletedProcess(args, 1, stdout="", stderr=f"{action} exploded")
        if action == "export":
            if self.export_payload is not None:
                path.write_bytes(self.export_payload)
            else:
                lines = ["-- SurrealDB export", "BEGIN TRANSACTION;"]
                for rid, content in sorted(self.data.get(key, {}).items()):
                    lines.append(f"UPDATE {rid} CONTENT {json.dumps(content, sort_keys=True)};")
                lines.append("COMMIT TRANSACTION;")
                path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        elif action == "import":
            restored = {}
            for line in path.read_text(encoding="utf-8").splitlines():
                if line.startswith("UPDATE "):
                    rid, _, content = line[len("UPDATE "):].partition(" CONTENT ")
                    restored[rid] = json.loads(content.rstrip(";"))
            self.data[key] = restored
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


def healthy_session():
    session = MagicMock()
    session.get.return_value.raise_for_status.return_value = None
    return session


@pytest.fixture
def keyvault(tmp_path):
    vault = tmp_path / "keyvault"
    vault.mkdir()
    for name, value in SECRETS.items():
        (vault / name).write_text(value + "\n", encoding="utf-8")
    return vault


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def credentials(keyvault, sleeps):
    return CredentialSource(keyvault, RetryPolicy.deadline(4, 2, sleep=sleeps.append))


@pytest.fixture
def surreal():
    return FakeSurreal()


@pytest.fixture
def session():
    return healthy_session()


@pytest.fixture
def client(surreal, session, sleeps):
    return ExportClient(
        "http://db.test:8000",
        runner=surreal,
        session=session,
        probe_policy=RetryPolicy.fixed(3, 5.0, sleep=sleeps.append),
    )


@pytest.fixture
def store(tmp_path):
    store = RetentionStore(tmp_path / "backups", tmp_path / "backups" / "temp")
    store.ensure_dirs()
    return store


@pytest.fixture
def health(tmp_path):
    return HealthState(tmp_path / "logs" / "health.json")


@pytest.fixture
def pipeline(credentials, client, store, health):
    return BackupPipeline(credentials, client, ArtifactValidator(), store, health.writer())

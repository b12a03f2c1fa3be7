"""Error taxonomy shared by the backup pipeline and the restore workflow."""
from __future__ import annotations


class BackupError(Exception):
    """Base class; ``code`` is the stable name reported in logs and outcomes."""

    code = "BackupError"

    def __init__(self, message: str = "", *, path: object | None = None):
        super().__init__(message or self.code)
        self.path = path


class CredentialsUnavailable(BackupError):
    code = "CredentialsUnavailable"


class DatabaseUnreachable(BackupError):
    code = "DatabaseUnreachable"


class ExportFailed(BackupError):
    code = "ExportFailed"


class MalformedArtifact(BackupError):
    code = "MalformedArtifact"


class EmptyArtifact(MalformedArtifact):
    code = "EmptyArtifact"


class CompressionFailed(BackupError):
    code = "CompressionFailed"


class CommitFailed(BackupError):
    code = "CommitFailed"


class CorruptArchive(BackupError):
    code = "CorruptArchive"


class PostCommitCorruption(CorruptArchive):
    code = "PostCommitCorruption"

    def __init__(self, message: str = "", *, path: object | None = None, rolled_back: bool = False):
        super().__init__(message, path=path)
        self.rolled_back = rolled_back


class ImportFailed(BackupError):
    code = "ImportFailed"


class SlotEmpty(BackupError):
    code = "SlotEmpty"


class RestoreCancelled(BackupError):
    code = "RestoreCancelled"

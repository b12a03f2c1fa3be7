import logging
import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

ALLOWED_COMMANDS = {
    "surreal",
}

SECRET_FLAGS = {"--password", "--pass", "-p", "--token"}

SECRET_PATTERN = re.compile(
    r"(?i)\b(token|api[_-]?key|password|pass|secret|authorization)\b\s*([=:])\s*([^\s]+)"
)


def _redact_arg(arg: str) -> str:
    value = str(arg)
    value = SECRET_PATTERN.sub(r"\1\2[REDACTED]", value)
    value = re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._\-]+\b", "Bearer [REDACTED]", value)
    return value


def redact_args(args: Sequence[str]) -> List[str]:
    printable: List[str] = []
    hide_next = False
    for part in args:
        text = str(part)
        if hide_next:
            printable.append("[REDACTED]")
            hide_next = False
            continue
        if text in SECRET_FLAGS:
            hide_next = True
        printable.append(_redact_arg(text))
    return printable


class CommandRunner:
    """Runs a strict allowlist of external commands with shell disabled."""

    def __init__(self, allowed_commands: Optional[Iterable[str]] = None):
        self.allowed_commands = set(allowed_commands or ALLOWED_COMMANDS)

    def is_allowed(self, command: str) -> bool:
        binary = Path(str(command)).name
        return binary in self.allowed_commands

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = False,
        capture_output: bool = False,
        text: bool = False,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        if not args:
            raise ValueError("CommandRunner requires at least one arg.")

        command = str(args[0])
        binary = Path(command).name
        if not self.is_allowed(binary):
            raise ValueError(f"Blocked command '{binary}'. Not in allowlist.")

        # Ensure command exists when provided as a bare binary name.
        if Path(command).name == command and shutil.which(command) is None:
            raise FileNotFoundError(f"Command '{command}' not found in PATH.")

        logger.debug("CommandRunner executing: %s", " ".join(redact_args(args)))

        start_ts = time.monotonic()
        returncode: Optional[int] = None
        try:
            result = subprocess.run(
                [str(part) for part in args],
                shell=False,
                check=check,
                capture_output=capture_output,
                text=text,
                timeout=timeout,
                cwd=cwd,
            )
            returncode = result.returncode
            return result
        finally:
            duration_ms = int((time.monotonic() - start_ts) * 1000)
            logger.debug(
                "CommandRunner finished: %s rc=%s duration_ms=%d", binary, returncode, duration_ms
            )

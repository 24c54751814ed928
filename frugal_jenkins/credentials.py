"""Jenkins initial admin password recovery from the Cloud Run log stream."""

import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol

from .utils import command_exists, run_command, CommandError, LogSourceError

DEFAULT_MARKER = "Please use the following password"
DEFAULT_PASSWORD_LENGTH = 32
DIAGNOSTIC_PATTERN = re.compile(r"password|initial|setup|unlock", re.IGNORECASE)

# "2025-07-31 02:15:23 " as prefixed by `gcloud run services logs read`
_TIMESTAMP_PREFIX = re.compile(r"^[0-9-]* [0-9:]* ")
_WHITESPACE = re.compile(r"\s+")

CLIPBOARD_COMMANDS = [
    ["clip.exe"],
    ["pbcopy"],
    ["wl-copy"],
    ["xclip", "-selection", "clipboard"],
]


class LogSource(Protocol):
    """Read-only, append-only stream of text lines (most recent last)."""

    def tail(self, limit: int) -> List[str]:
        ...


class CloudRunLogSource:
    """
    Reads a Cloud Run service's logs through the gcloud CLI.

    Args:
        service: Cloud Run service name
        region: Service region
        project: Optional project ID (defaults to gcloud's active project)
        timeout: Timeout per gcloud call, in seconds
        retries: Extra attempts after a failed call
        backoff: Seconds to wait before retrying
    """

    def __init__(
        self,
        service: str,
        region: str,
        project: Optional[str] = None,
        timeout: float = 10.0,
        retries: int = 1,
        backoff: float = 2.0,
    ):
        self.service = service
        self.region = region
        self.project = project
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    def command(self, limit: int) -> List[str]:
        cmd = [
            "gcloud",
            "run",
            "services",
            "logs",
            "read",
            self.service,
            f"--region={self.region}",
            f"--limit={limit}",
        ]
        if self.project:
            cmd.append(f"--project={self.project}")
        return cmd

    def tail(self, limit: int) -> List[str]:
        """
        Fetch the most recent ``limit`` log lines.

        Raises:
            LogSourceError: If gcloud is missing or every attempt fails
        """
        if not command_exists("gcloud"):
            raise LogSourceError("gcloud CLI is not installed or not in PATH")

        attempt = 0
        while True:
            try:
                result = run_command(self.command(limit), timeout=self.timeout)
                return result.stdout.splitlines()
            except CommandError as e:
                if attempt >= self.retries:
                    raise LogSourceError(
                        f"Could not read logs for service '{self.service}': {e}"
                    ) from e
                attempt += 1
                print(f"⚠️  Log read failed ({e}); retrying in {self.backoff:g}s...")
                time.sleep(self.backoff)


class StaticLogSource:
    """In-memory log source, e.g. logs saved to a file."""

    def __init__(self, lines: List[str]):
        self.lines = list(lines)

    @classmethod
    def from_file(cls, path: str) -> "StaticLogSource":
        return cls(Path(path).read_text().splitlines())

    def tail(self, limit: int) -> List[str]:
        if limit <= 0:
            return []
        return self.lines[-limit:]


@dataclass(frozen=True)
class CredentialResult:
    """Either a validated password or raw log lines for manual inspection."""

    password: Optional[str] = None
    diagnostics: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.password is not None


def find_candidate(lines: List[str], marker_text: str) -> Optional[str]:
    """
    Return the line that follows the last occurrence of the marker.

    Only the newest marker counts: when it is the final line (Jenkins is
    still booting), earlier markers belong to a previous boot and are ignored.

    Returns:
        The raw following line, or None if the marker is absent or is the
        final line
    """
    last_marker = None
    for index, line in enumerate(lines):
        if marker_text in line:
            last_marker = index
    if last_marker is None or last_marker + 1 >= len(lines):
        return None
    return lines[last_marker + 1]


def clean_candidate(line: str) -> str:
    """Strip the log timestamp prefix and every whitespace character."""
    return _WHITESPACE.sub("", _TIMESTAMP_PREFIX.sub("", line, count=1))


def diagnostic_lines(lines: List[str], limit: Optional[int] = None) -> List[str]:
    """Return lines mentioning password/initial/setup/unlock (case-insensitive)."""
    matches = [line for line in lines if DIAGNOSTIC_PATTERN.search(line)]
    if limit is not None:
        return matches[:limit]
    return matches


def retrieve_initial_credential(
    log_source: LogSource,
    marker_text: str = DEFAULT_MARKER,
    expected_length: int = DEFAULT_PASSWORD_LENGTH,
    log_limit: int = 200,
    fallback_limit: int = 50,
    max_diagnostics: Optional[int] = None,
) -> CredentialResult:
    """
    Recover the Jenkins initial admin password from its log stream.

    Jenkins prints the marker line on first boot with the password on the
    next line. If no such line yields a password of exactly
    ``expected_length`` characters, the recent lines that look related are
    returned instead so an operator can inspect them.

    Args:
        log_source: Source of log lines
        marker_text: Text on the line preceding the password
        expected_length: Exact length of a valid password
        log_limit: Lines scanned for the marker
        fallback_limit: Lines scanned for diagnostics
        max_diagnostics: Optional cap on returned diagnostic lines

    Returns:
        CredentialResult with either ``password`` or ``diagnostics`` set

    Raises:
        LogSourceError: If the log source cannot be read
    """
    candidate = find_candidate(log_source.tail(log_limit), marker_text)
    if candidate is not None:
        password = clean_candidate(candidate)
        if password and len(password) == expected_length:
            return CredentialResult(password=password)

    return CredentialResult(
        diagnostics=diagnostic_lines(log_source.tail(fallback_limit), max_diagnostics)
    )


def copy_to_clipboard(text: str) -> bool:
    """
    Copy text to the system clipboard if a clipboard utility exists.

    Best effort: every failure is ignored.

    Returns:
        True if a clipboard utility accepted the text
    """
    for cmd in CLIPBOARD_COMMANDS:
        if not command_exists(cmd[0]):
            continue
        try:
            run_command(cmd, input=text, timeout=5)
            return True
        except (CommandError, OSError):
            continue
    return False

"""Utility functions for subprocess calls, HTTP checks, and common helpers."""

import shutil
import subprocess
import time
from typing import Optional

import requests


class FrugalError(Exception):
    """Base exception for frugal-jenkins errors."""
    pass


class CommandError(FrugalError):
    """Exception raised when an external command fails or cannot be run."""
    pass


class LogSourceError(FrugalError):
    """Exception raised when the log stream cannot be read."""
    pass


class SamplerError(FrugalError):
    """Exception raised when host workload/CPU state cannot be sampled."""
    pass


class ShutdownError(FrugalError):
    """Exception raised when the host shutdown primitive is unavailable or fails."""
    pass


class DeployError(FrugalError):
    """Exception raised for deployment validation and Terraform errors."""
    pass


class SecurityError(FrugalError):
    """Exception raised for access-control setup errors."""
    pass


class VerificationError(FrugalError):
    """Exception raised when a persistence check fails."""
    pass


def command_exists(name: str) -> bool:
    """Return True if an executable called ``name`` is on PATH."""
    return shutil.which(name) is not None


def run_command(
    command: list[str],
    cwd: Optional[str] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    input: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command and capture its output.

    Args:
        command: Command and arguments as list
        cwd: Working directory
        check: Whether to raise on non-zero exit
        timeout: Optional timeout in seconds
        input: Optional text piped to stdin

    Returns:
        CompletedProcess instance

    Raises:
        CommandError: If the command is missing, times out, or (with check=True)
                      exits non-zero
    """
    try:
        return subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=check,
            timeout=timeout,
            input=input,
        )
    except FileNotFoundError as e:
        raise CommandError(f"Command not found: {command[0]}") from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(f"Command timed out after {timeout}s: {' '.join(command)}") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise CommandError(
            f"Command failed (exit code {e.returncode}): {' '.join(command)}"
            + (f": {stderr}" if stderr else "")
        ) from e


def gcloud(*args: str, project: Optional[str] = None, timeout: Optional[float] = None) -> str:
    """
    Run a gcloud command and return its stripped stdout.

    Args:
        *args: gcloud arguments (e.g. "run", "services", "describe", ...)
        project: Optional project ID appended as --project
        timeout: Optional timeout in seconds

    Returns:
        Command stdout, stripped

    Raises:
        CommandError: If gcloud is missing or the command fails
    """
    cmd = ["gcloud", *args]
    if project:
        cmd.append(f"--project={project}")
    return run_command(cmd, timeout=timeout).stdout.strip()


def wait_for_http(url: str, timeout: int = 60, interval: int = 2) -> bool:
    """
    Wait for an HTTP endpoint to become available.

    Args:
        url: The URL to check
        timeout: Maximum time to wait in seconds (default: 60)
        interval: Time between checks in seconds (default: 2)

    Returns:
        True if endpoint becomes available, False if timeout
    """
    elapsed = 0
    while elapsed < timeout:
        try:
            response = requests.get(url, timeout=5, allow_redirects=True)
            # IAP-protected services answer 401/403 once the container is up
            if response.status_code in (200, 302, 401, 403):
                return True
        except requests.exceptions.RequestException:
            pass

        time.sleep(interval)
        elapsed += interval

    return False


def http_status(url: str, timeout: int = 10) -> Optional[int]:
    """
    Return the status code of a GET without following redirects.

    Returns:
        The HTTP status code, or None if the request failed
    """
    try:
        return requests.get(url, timeout=timeout, allow_redirects=False).status_code
    except requests.exceptions.RequestException:
        return None

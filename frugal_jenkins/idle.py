"""Idle-shutdown guard for Spot VM Jenkins agents.

The guard samples the host once per interval and halts it once it has been
idle (no running containers and low CPU) for a number of consecutive samples.
A termination signal ends the loop without shutting the host down.
"""

import shlex
import shutil
import signal
import threading
from dataclasses import dataclass
from enum import Enum
from string import Template
from typing import Callable, Optional

import psutil

from .config import get_config
from .utils import run_command, CommandError, SamplerError, ShutdownError


class SamplerFailurePolicy(str, Enum):
    """How a sample that could not be taken is classified."""

    NOT_IDLE = "not-idle"
    IDLE = "idle"


@dataclass(frozen=True)
class IdleObservation:
    """One periodic snapshot of host workload and CPU state."""

    container_count: int
    cpu_percent: float
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def is_idle(
        self,
        cpu_threshold: float = 5.0,
        failure_policy: SamplerFailurePolicy = SamplerFailurePolicy.NOT_IDLE,
    ) -> bool:
        """Return True if this sample counts towards the idle streak."""
        if self.failed:
            return failure_policy == SamplerFailurePolicy.IDLE
        return self.container_count == 0 and self.cpu_percent < cpu_threshold


class HostSampler:
    """Samples running Docker containers and CPU utilisation on this host."""

    def __init__(self, cpu_window: float = 1.0, docker_timeout: float = 10.0):
        self.cpu_window = cpu_window
        self.docker_timeout = docker_timeout

    def count_containers(self) -> int:
        try:
            result = run_command(["docker", "ps", "-q"], timeout=self.docker_timeout)
        except CommandError as e:
            raise SamplerError(f"Could not list containers: {e}") from e
        return len([line for line in result.stdout.splitlines() if line.strip()])

    def cpu_percent(self) -> float:
        try:
            return float(psutil.cpu_percent(interval=self.cpu_window))
        except (psutil.Error, OSError) as e:
            raise SamplerError(f"Could not read CPU utilisation: {e}") from e

    def sample(self) -> IdleObservation:
        """
        Take one observation.

        Sampling failures are recorded on the observation rather than raised,
        so the guard's failure policy decides how they are counted.
        """
        try:
            return IdleObservation(self.count_containers(), self.cpu_percent())
        except SamplerError as e:
            return IdleObservation(0, 0.0, error=str(e))


class ShutdownCommand:
    """Fire-and-forget host shutdown primitive."""

    def __init__(self, command: str = "sudo shutdown -h now"):
        self.argv = shlex.split(command)
        if not self.argv:
            raise ShutdownError("Shutdown command is empty")

    def check(self) -> None:
        """
        Ensure the shutdown executable can be found.

        Raises:
            ShutdownError: If the executable is not on PATH
        """
        if shutil.which(self.argv[0]) is None:
            raise ShutdownError(f"Shutdown command not available: {self.argv[0]}")

    def __call__(self) -> None:
        try:
            run_command(self.argv, timeout=30)
        except CommandError as e:
            raise ShutdownError(f"Host shutdown failed: {e}") from e


class IdleGuard:
    """
    Counts consecutive idle samples and shuts the host down at a threshold.

    Args:
        sampler: Object with a ``sample() -> IdleObservation`` method
        shutdown: Callable that halts the host
        interval: Seconds between samples
        idle_threshold: Consecutive idle samples required for shutdown
        cpu_threshold: CPU percentage below which a sample may be idle
        failure_policy: Classification of samples that could not be taken
    """

    def __init__(
        self,
        sampler: Optional[HostSampler] = None,
        shutdown: Optional[Callable[[], None]] = None,
        interval: float = 60.0,
        idle_threshold: int = 10,
        cpu_threshold: float = 5.0,
        failure_policy: SamplerFailurePolicy = SamplerFailurePolicy.NOT_IDLE,
    ):
        if idle_threshold < 1:
            raise ValueError("idle_threshold must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")

        self.sampler = sampler or HostSampler()
        self.shutdown = shutdown or ShutdownCommand()
        self.interval = interval
        self.idle_threshold = idle_threshold
        self.cpu_threshold = cpu_threshold
        self.failure_policy = SamplerFailurePolicy(failure_policy)
        self.idle_count = 0
        self._stop_event = threading.Event()

    def observe(self, observation: IdleObservation) -> bool:
        """
        Fold one observation into the idle counter.

        Returns:
            True once the counter reaches the idle threshold
        """
        if observation.is_idle(self.cpu_threshold, self.failure_policy):
            self.idle_count += 1
            return self.idle_count >= self.idle_threshold

        self.idle_count = 0
        return False

    def stop(self) -> None:
        """Ask the loop to exit at its next check without shutting down."""
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def install_signal_handlers(self) -> None:
        """Stop the loop on SIGTERM/SIGINT (must be called from the main thread)."""
        def _handle(signum, frame):
            print(f"Received signal {signum}; stopping idle guard without shutdown", flush=True)
            self.stop()

        signal.signal(signal.SIGTERM, _handle)
        signal.signal(signal.SIGINT, _handle)

    def monitor_and_shutdown(self) -> bool:
        """
        Sample the host until it has been idle long enough, then shut it down.

        Returns:
            True if the host shutdown was triggered, False if the guard was stopped

        Raises:
            ShutdownError: If the shutdown primitive fails
        """
        print(
            f"Idle guard started: shutdown after {self.idle_threshold} idle samples "
            f"every {self.interval:g}s (CPU < {self.cpu_threshold:g}%, no containers)",
            flush=True,
        )

        while not self.stopped:
            observation = self.sampler.sample()
            if observation.failed:
                print(
                    f"⚠️  Sampling failed ({observation.error}); "
                    f"treating as {self.failure_policy.value}",
                    flush=True,
                )

            if self.observe(observation):
                minutes = self.idle_threshold * self.interval / 60
                print(
                    f"System idle for {minutes:g} minutes, shutting down for cost savings",
                    flush=True,
                )
                self.shutdown()
                return True

            if self.idle_count:
                print(
                    f"Idle {self.idle_count}/{self.idle_threshold} "
                    f"(containers={observation.container_count}, cpu={observation.cpu_percent:.1f}%)",
                    flush=True,
                )

            # Event.wait returns early when stop() is called
            if self._stop_event.wait(self.interval):
                break

        print("Idle guard stopped; host left running", flush=True)
        return False


def _systemd_quote(arg: str) -> str:
    """Quote one ExecStart argument using systemd's own rules."""
    # $ and % are expanded by systemd even inside quotes
    arg = arg.replace("%", "%%").replace("$", "$$")
    if arg and not any(c.isspace() or c in "\"'\\;" for c in arg):
        return arg
    return '"' + arg.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_service_unit(
    executable: Optional[str] = None,
    user: str = "jenkins",
    interval: Optional[float] = None,
    idle_threshold: Optional[int] = None,
    cpu_threshold: Optional[float] = None,
    failure_policy: Optional[str] = None,
) -> str:
    """
    Render the systemd unit that runs the idle guard on an agent VM.

    Unset arguments fall back to the current configuration.

    Returns:
        Unit file contents
    """
    config = get_config()
    executable = executable or shutil.which("fj") or "/usr/local/bin/fj"
    policy = SamplerFailurePolicy(failure_policy or config.sampler_failure_policy)

    exec_start = " ".join(
        _systemd_quote(part)
        for part in [
            executable,
            "agent",
            "idle-guard",
            "--interval",
            f"{interval if interval is not None else config.idle_interval:g}",
            "--threshold",
            str(idle_threshold if idle_threshold is not None else config.idle_threshold),
            "--cpu-threshold",
            f"{cpu_threshold if cpu_threshold is not None else config.cpu_threshold:g}",
            "--on-sampler-error",
            policy.value,
        ]
    )

    with open(config.get_template_path("idle-shutdown.service")) as f:
        template = Template(f.read())

    return template.substitute(exec_start=exec_start, user=user)

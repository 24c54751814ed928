"""Configuration management for frugal-jenkins."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class Config:
    """Configuration class for managing environment variables and paths."""

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            env_file: Optional path to .env file.
        """
        self.package_dir = Path(__file__).parent.resolve()
        self.template_dir = self.package_dir / "templates"

        # Load environment variables only if explicitly provided
        if env_file:
            load_dotenv(env_file)

    @property
    def repo_root(self) -> Path:
        """Root of the Terraform repository (modules/ and environments/)."""
        return Path(os.getenv("FJ_REPO_ROOT", os.getcwd())).resolve()

    @property
    def service_name(self) -> str:
        """Cloud Run service running the Jenkins controller."""
        return os.getenv("FJ_SERVICE_NAME", "jenkins-ultra-frugal")

    @property
    def region(self) -> str:
        """GCP region of the Cloud Run service."""
        return os.getenv("FJ_REGION", "us-central1")

    @property
    def project_id(self) -> Optional[str]:
        """GCP project ID (None means gcloud's active project)."""
        return os.getenv("FJ_PROJECT_ID") or None

    @property
    def password_marker(self) -> str:
        """Log line that precedes the initial admin password."""
        return os.getenv("FJ_PASSWORD_MARKER", "Please use the following password")

    @property
    def password_length(self) -> int:
        """Expected length of the initial admin password."""
        return int(os.getenv("FJ_PASSWORD_LENGTH", "32"))

    @property
    def log_limit(self) -> int:
        """Number of log lines scanned for the password."""
        return int(os.getenv("FJ_LOG_LIMIT", "200"))

    @property
    def fallback_log_limit(self) -> int:
        """Number of log lines scanned for diagnostics."""
        return int(os.getenv("FJ_FALLBACK_LOG_LIMIT", "50"))

    @property
    def log_timeout(self) -> float:
        """Timeout for a single log read, in seconds."""
        return float(os.getenv("FJ_LOG_TIMEOUT", "10"))

    @property
    def idle_interval(self) -> float:
        """Seconds between idle samples."""
        return float(os.getenv("FJ_IDLE_INTERVAL", "60"))

    @property
    def idle_threshold(self) -> int:
        """Consecutive idle samples before shutdown."""
        return int(os.getenv("FJ_IDLE_THRESHOLD", "10"))

    @property
    def cpu_threshold(self) -> float:
        """CPU percentage below which a sample may count as idle."""
        return float(os.getenv("FJ_CPU_THRESHOLD", "5.0"))

    @property
    def sampler_failure_policy(self) -> str:
        """How a failed sample is classified: "not-idle" or "idle"."""
        return os.getenv("FJ_SAMPLER_FAILURE_POLICY", "not-idle")

    @property
    def shutdown_command(self) -> str:
        """Command that halts the host."""
        return os.getenv("FJ_SHUTDOWN_COMMAND", "sudo shutdown -h now")

    @property
    def bucket_name(self) -> Optional[str]:
        """Jenkins state bucket (derived from the project ID by default)."""
        explicit = os.getenv("FJ_BUCKET_NAME")
        if explicit:
            return explicit
        if self.project_id:
            return f"{self.project_id}-jenkins-ultra-storage"
        return None

    def get_template_path(self, template_name: str) -> Path:
        """
        Get path to a packaged template file.

        Args:
            template_name: Template name relative to templates directory
                          (e.g., "idle-shutdown.service")

        Returns:
            Path to template file

        Raises:
            FileNotFoundError: If template doesn't exist
        """
        template_path = self.template_dir / template_name
        if not template_path.exists():
            raise FileNotFoundError(f"Template not found: {template_path}")
        return template_path


# Global config instance
_config: Optional[Config] = None


def get_config(env_file: Optional[str] = None) -> Config:
    """
    Get or create the global configuration instance.

    Args:
        env_file: Optional path to .env file

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config(env_file)
    return _config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None

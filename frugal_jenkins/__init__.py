"""frugal-jenkins - operator tooling for an ultra-frugal Jenkins deployment on GCP."""

__version__ = "0.1.0"

from . import config, credentials, deploy, idle, security, utils, verify

__all__ = ["config", "credentials", "deploy", "idle", "security", "utils", "verify"]

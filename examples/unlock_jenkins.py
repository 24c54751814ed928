#!/usr/bin/env python3
"""Unlock example: fetch the initial admin password after the first deploy."""

import sys

from frugal_jenkins import credentials
from frugal_jenkins.config import get_config


def main():
    """Print the initial admin password, or the log lines worth reading."""
    config = get_config()
    source = credentials.CloudRunLogSource(
        config.service_name,
        config.region,
        config.project_id,
        timeout=config.log_timeout,
    )

    print(f"🔍 Reading logs of '{config.service_name}' in {config.region}...")
    result = credentials.retrieve_initial_credential(source, max_diagnostics=10)

    if result.found:
        print(f"\n🔑 Password: {result.password}")
        if credentials.copy_to_clipboard(result.password):
            print("📋 Copied to clipboard")
        return 0

    print("\n❌ No valid password yet. Recent related log lines:")
    for line in result.diagnostics:
        print(f"   {line}")
    print("\n💡 Jenkins may still be starting up - try again in a few minutes")
    return 1


if __name__ == "__main__":
    sys.exit(main())

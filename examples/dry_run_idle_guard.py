#!/usr/bin/env python3
"""Run the idle guard against this machine without actually shutting it down."""

from frugal_jenkins.idle import HostSampler, IdleGuard


def main():
    """Sample every 5 seconds and report instead of halting after 3 idle samples."""
    guard = IdleGuard(
        sampler=HostSampler(),
        shutdown=lambda: print("🛑 (dry run) the host would shut down now"),
        interval=5,
        idle_threshold=3,
    )
    guard.install_signal_handlers()

    print("Press Ctrl+C to stop.")
    guard.monitor_and_shutdown()


if __name__ == "__main__":
    main()

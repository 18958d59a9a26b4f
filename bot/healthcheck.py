#!/usr/bin/env python3
"""Healthcheck script for the bot container.

Checks if the y2beta bot process is running by scanning /proc.
Works on Linux without requiring procps/pgrep.
"""

import os
import sys
from pathlib import Path


def is_bot_running(proc_root: Path = Path("/proc"), name: str = "y2beta") -> bool:
    """Check if a process with ``name`` in its command line is running."""
    own_pid = str(os.getpid())
    for pid in os.listdir(proc_root):
        if not pid.isdigit() or pid == own_pid:
            continue
        try:
            cmdline = (proc_root / pid / "cmdline").read_bytes()
        except (FileNotFoundError, PermissionError):
            continue
        # Arguments are NUL-separated
        if name in cmdline.decode(errors="ignore").replace("\0", " "):
            return True
    return False


if __name__ == "__main__":
    sys.exit(0 if is_bot_running() else 1)

"""
Detached spawning of background update checks.

A background check re-invokes the updater in ``--check`` mode as a separate
process in its own session with stdio discarded. The caller never waits for
it and is unaffected by its outcome.
"""

from __future__ import annotations

import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence


def check_command() -> list[str]:
    """Command line that runs a single update check."""
    return [sys.executable, "-m", "daemux_updater", "--check"]


class BackgroundSpawner(ABC):
    """Starts a process and forgets about it."""

    @abstractmethod
    def spawn(self, argv: Sequence[str]) -> None:
        """
        Start ``argv`` detached from the caller.

        Raises:
            OSError: If the process cannot be started.
        """


class SubprocessSpawner(BackgroundSpawner):
    """BackgroundSpawner backed by ``subprocess.Popen``."""

    def spawn(self, argv: Sequence[str]) -> None:
        subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            close_fds=True,
        )

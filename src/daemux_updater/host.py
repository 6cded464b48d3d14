"""
Host environment capability.

The lock manager, state store and platform resolver read the current pid,
environment variables and process liveness through a HostEnvironment instead
of calling ``os`` directly, so tests can run against a fake host.
"""

from __future__ import annotations

import os
import platform
import sys
from abc import ABC, abstractmethod

import psutil


class HostEnvironment(ABC):
    """Process and environment facts the updater depends on."""

    @abstractmethod
    def pid(self) -> int:
        """Return the current process id."""

    @abstractmethod
    def getenv(self, name: str, default: str | None = None) -> str | None:
        """Look up an environment variable."""

    @abstractmethod
    def environ(self) -> dict[str, str]:
        """Return a snapshot of the environment."""

    @abstractmethod
    def is_pid_alive(self, pid: int) -> bool:
        """Return True if a process with this pid exists."""

    @abstractmethod
    def system(self) -> str:
        """Return the OS family as reported by ``sys.platform``."""

    @abstractmethod
    def machine(self) -> str:
        """Return the machine architecture as reported by ``platform.machine()``."""


class SystemHost(HostEnvironment):
    """HostEnvironment backed by the running interpreter."""

    def pid(self) -> int:
        return os.getpid()

    def getenv(self, name: str, default: str | None = None) -> str | None:
        return os.environ.get(name, default)

    def environ(self) -> dict[str, str]:
        return dict(os.environ)

    def is_pid_alive(self, pid: int) -> bool:
        """
        Look the pid up in the process table.

        Nothing is sent to the process. A process owned by another user
        raises AccessDenied and still counts as alive.
        """
        if pid <= 0:
            return False
        try:
            proc = psutil.Process(pid)
            return proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True

    def system(self) -> str:
        return sys.platform

    def machine(self) -> str:
        return platform.machine()


_default_host: HostEnvironment | None = None


def get_default_host() -> HostEnvironment:
    """Return the process-wide SystemHost."""
    global _default_host
    if _default_host is None:
        _default_host = SystemHost()
    return _default_host

"""
Pytest configuration and shared fixtures for the daemux updater tests.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from daemux_updater.config import UpdaterConfig
from daemux_updater.host import HostEnvironment


class FakeHost(HostEnvironment):
    """HostEnvironment with a fixed pid, a private environment and scripted liveness."""

    def __init__(
        self,
        pid: int = 4242,
        env: dict[str, str] | None = None,
        alive: set[int] | None = None,
        system: str = "darwin",
        machine: str = "arm64",
    ) -> None:
        self._pid = pid
        self.env = dict(env or {})
        # Our own pid is alive unless a test says otherwise.
        self.alive = set(alive) if alive is not None else {pid}
        self._system = system
        self._machine = machine

    def pid(self) -> int:
        return self._pid

    def getenv(self, name: str, default: str | None = None) -> str | None:
        return self.env.get(name, default)

    def environ(self) -> dict[str, str]:
        return dict(self.env)

    def is_pid_alive(self, pid: int) -> bool:
        return pid in self.alive

    def system(self) -> str:
        return self._system

    def machine(self) -> str:
        return self._machine


@pytest.fixture
def fake_host() -> FakeHost:
    """A darwin-arm64 host with pid 4242."""
    return FakeHost()


@pytest.fixture
def updater_config(tmp_path: Path) -> UpdaterConfig:
    """Config rooted in a temp directory."""
    return UpdaterConfig(
        state_dir=tmp_path / "state",
        symlink_path=tmp_path / "bin" / "daemux",
        manifest_url="https://releases.example.com/manifest.json",
        current_version="2.2.9",
    )


@pytest.fixture(autouse=True)
def _restore_package_logger() -> None:
    """Undo setup_logging() so caplog keeps seeing package records."""
    package_logger = logging.getLogger("daemux_updater")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield
    package_logger.handlers = handlers
    package_logger.setLevel(level)
    package_logger.propagate = True


def make_manifest(
    version: str = "2.3.0",
    platforms: dict[str, dict[str, object]] | None = None,
) -> dict[str, object]:
    """Build a valid manifest document."""
    if platforms is None:
        platforms = {
            "darwin-arm64": {
                "url": f"https://releases.example.com/daemux-{version}-darwin-arm64.tar.gz",
                "sha256": "a" * 64,
                "size": 1024,
            }
        }
    return {
        "version": version,
        "released": "2026-10-01T12:00:00Z",
        "minRuntimeVersion": "1.1.0",
        "platforms": platforms,
    }

"""
PID lock files protecting installed versions from cleanup.

Every running instance of the product writes ``<versions>/locks/<pid>.lock``
recording the version it was started from. Cleanup asks ``is_version_locked``
before deleting a version directory. The lock is advisory: it proves that a
live process still needs a version, it does not provide mutual exclusion, and
``force`` overrides it.

There is no central registry. Lock files whose pid is dead, or which cannot be
parsed, are deleted whenever a scan comes across them.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from collections.abc import Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from daemux_updater.host import HostEnvironment, get_default_host
from daemux_updater.logging import get_logger

LOCKS_DIR_NAME = "locks"
LOCK_SUFFIX = ".lock"


class LockData(BaseModel):
    """Contents of a lock file."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    pid: int
    version: str
    started_at: int = Field(description="Epoch milliseconds when the lock was taken")


class LockStatus(BaseModel):
    """Result of a lock query: whether any live process holds the version."""

    locked: bool
    pids: list[int] = Field(default_factory=list)


class LockManager:
    """
    Reads and writes per-process lock files under ``<versions_dir>/locks``.

    Attributes:
        versions_dir: Installed versions directory.
        locks_dir: Directory holding the lock files.
    """

    def __init__(
        self,
        versions_dir: Path | str,
        *,
        host: HostEnvironment | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.versions_dir = Path(versions_dir)
        self.locks_dir = self.versions_dir / LOCKS_DIR_NAME
        self._host = host or get_default_host()
        self._logger = logger or get_logger(__name__)

    def _lock_path(self, pid: int) -> Path:
        return self.locks_dir / f"{pid}{LOCK_SUFFIX}"

    def acquire_lock(self, version: str) -> Path:
        """
        Record that this process depends on ``version``.

        Calling it again replaces the previous lock of this pid.

        Returns:
            Path of the lock file.
        """
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        pid = self._host.pid()
        data = LockData(pid=pid, version=version, started_at=int(time.time() * 1000))

        lock_path = self._lock_path(pid)
        # Scanners must never see a partial lock file.
        temp_path = self.locks_dir / f".{pid}{LOCK_SUFFIX}.tmp"
        temp_path.write_text(data.model_dump_json(by_alias=True))
        os.replace(temp_path, lock_path)

        self._logger.debug("Lock acquired", extra={"pid": pid, "version": version})
        return lock_path

    def release_lock(self) -> None:
        """Remove this process's lock file. Missing files are ignored."""
        pid = self._host.pid()
        try:
            self._lock_path(pid).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            self._logger.warning(
                "Failed to release lock", extra={"pid": pid, "error": str(e)}
            )
            return
        self._logger.debug("Lock released", extra={"pid": pid})

    @contextlib.contextmanager
    def held(self, version: str) -> Iterator[Path]:
        """Hold a lock on ``version`` for the duration of the block."""
        lock_path = self.acquire_lock(version)
        try:
            yield lock_path
        finally:
            self.release_lock()

    def _lock_files(self) -> list[Path]:
        try:
            return sorted(
                p for p in self.locks_dir.iterdir() if p.name.endswith(LOCK_SUFFIX)
            )
        except (FileNotFoundError, NotADirectoryError):
            return []

    def _read_lock(self, path: Path) -> LockData | None:
        try:
            return LockData.model_validate(json.loads(path.read_text()))
        except FileNotFoundError:
            # released between listing and reading
            return None
        except (OSError, ValueError, ValidationError):
            self._remove_lock_file(path, reason="corrupt")
            return None

    def _remove_lock_file(self, path: Path, *, reason: str) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            self._logger.warning(
                "Failed to remove lock file",
                extra={"path": str(path), "reason": reason, "error": str(e)},
            )
            return False
        self._logger.debug("Removed lock file", extra={"path": str(path), "reason": reason})
        return True

    def is_version_locked(self, version: str) -> LockStatus:
        """
        Report which live processes hold ``version``.

        Lock files for this version whose pid is dead, and lock files that
        cannot be parsed, are deleted during the scan.

        Returns:
            LockStatus with ``locked`` and the live pids.
        """
        pids: list[int] = []

        for path in self._lock_files():
            data = self._read_lock(path)
            if data is None or data.version != version:
                continue

            if self._host.is_pid_alive(data.pid):
                pids.append(data.pid)
            else:
                self._remove_lock_file(path, reason="stale")

        return LockStatus(locked=bool(pids), pids=pids)

    def clean_stale_locks(self) -> int:
        """
        Delete every lock file whose pid is dead or whose content is unreadable.

        Returns:
            Number of lock files removed.
        """
        removed = 0

        for path in self._lock_files():
            try:
                data = LockData.model_validate(json.loads(path.read_text()))
            except FileNotFoundError:
                continue
            except (OSError, ValueError, ValidationError):
                if self._remove_lock_file(path, reason="corrupt"):
                    removed += 1
                continue

            if not self._host.is_pid_alive(data.pid) and self._remove_lock_file(
                path, reason="stale"
            ):
                removed += 1

        if removed:
            self._logger.info("Cleaned stale locks", extra={"removed": removed})
        return removed

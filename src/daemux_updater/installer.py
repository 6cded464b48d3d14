"""
Version installation, activation, cleanup and rollback.

Layout:
    <versions_dir>/<version>/<binary_name>   extracted release trees
    <versions_dir>/locks/<pid>.lock          see daemux_updater.locks
    <symlink_path> -> <versions_dir>/<version>/<binary_name>

The stable symlink is the only record of which version is active. Rollback
is activation of an older tree that is still installed, which is why cleanup
always keeps some history and never removes the active or a locked version.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from daemux_updater.errors import FailedPreconditionError, InstallError
from daemux_updater.locks import LOCKS_DIR_NAME, LockManager
from daemux_updater.logging import get_logger
from daemux_updater.operations import (
    atomic_symlink_switch,
    ensure_directory,
    read_symlink,
    remove_directory,
)
from daemux_updater.versioning import version_sort_key

DEFAULT_KEEP_COUNT = 3
DEFAULT_BINARY_NAME = "daemux"


class Installer:
    """
    Manages the installed version trees and the stable symlink.

    Attributes:
        versions_dir: Directory holding one subdirectory per version.
        symlink_path: Stable path resolving to the active binary.
        binary_name: Binary path relative to a version directory.
        lock_manager: Consulted before removing a version.
    """

    def __init__(
        self,
        versions_dir: Path | str,
        symlink_path: Path | str,
        binary_name: str = DEFAULT_BINARY_NAME,
        lock_manager: LockManager | None = None,
        tar_command: str = "tar",
        logger: logging.Logger | None = None,
    ) -> None:
        self.versions_dir = Path(versions_dir)
        self.symlink_path = Path(symlink_path)
        self.binary_name = binary_name
        self._logger = logger or get_logger(__name__)
        self.lock_manager = lock_manager or LockManager(
            self.versions_dir, logger=self._logger
        )
        self.tar_command = tar_command

    def version_dir(self, version: str) -> Path:
        """Directory a version is installed into."""
        return self.versions_dir / version

    def binary_path(self, version: str) -> Path:
        """Path of a version's product binary."""
        return self.version_dir(version) / self.binary_name

    async def install_version(self, tarball_path: Path | str, version: str) -> Path:
        """
        Extract a gzip tarball into the version's directory.

        Args:
            tarball_path: Downloaded archive.
            version: Version being installed.

        Returns:
            The version directory.

        Raises:
            InstallError: If ``tar`` cannot be run or exits non-zero. The
                message includes tar's stderr. A version directory created
                by this call is removed again.
        """
        created = not self.version_dir(version).exists()
        version_dir = ensure_directory(self.version_dir(version))

        self._logger.info(
            "Extracting tarball",
            extra={"tarball": str(tarball_path), "version_dir": str(version_dir)},
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                self.tar_command,
                "xzf",
                str(tarball_path),
                "-C",
                str(version_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr_bytes = await proc.communicate()
        except OSError as e:
            self._discard_failed_install(version_dir, created)
            raise InstallError(
                f"Failed to run {self.tar_command}: {e}",
                details={"version": version, "tarball": str(tarball_path)},
            ) from e

        if proc.returncode != 0:
            stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
            self._logger.error(
                "Tar extraction failed",
                extra={"exit_code": proc.returncode, "stderr": stderr},
            )
            self._discard_failed_install(version_dir, created)
            raise InstallError(
                f"Tar extraction failed (exit {proc.returncode}): {stderr}",
                details={
                    "version": version,
                    "exit_code": proc.returncode,
                    "stderr": stderr,
                },
            )

        self._logger.info(
            "Version installed", extra={"version": version, "version_dir": str(version_dir)}
        )
        return version_dir

    def _discard_failed_install(self, version_dir: Path, created: bool) -> None:
        if not created:
            return
        try:
            remove_directory(version_dir)
        except OSError as e:
            self._logger.warning(
                "Failed to remove partial install",
                extra={"version_dir": str(version_dir), "error": str(e)},
            )

    def activate_version(self, version: str) -> None:
        """
        Point the stable symlink at a version's binary.

        Raises:
            FailedPreconditionError: If the version's binary is missing.
            ActivationError: If the switch fails; the previous link is intact.
        """
        binary = self.binary_path(version)
        if not binary.is_file():
            raise FailedPreconditionError(
                f"Binary not found at {binary}",
                details={"version": version, "path": str(binary)},
            )

        atomic_symlink_switch(binary, self.symlink_path)
        self._logger.info(
            "Version activated",
            extra={"version": version, "symlink": str(self.symlink_path)},
        )

    def get_active_version(self) -> str | None:
        """
        Version the stable symlink currently points into.

        Returns:
            The version directory name, or None if the symlink is missing,
            is not a symlink, or points outside the versions directory.
        """
        target = read_symlink(self.symlink_path)
        if target is None:
            return None

        for candidate, root in (
            (target, self.versions_dir),
            (target.resolve(), self.versions_dir.resolve()),
        ):
            try:
                relative = candidate.relative_to(root)
            except ValueError:
                continue
            if relative.parts and relative.parts[0] != LOCKS_DIR_NAME:
                return relative.parts[0]
        return None

    def list_installed_versions(self) -> list[str]:
        """
        Installed version directory names, newest first.

        The locks directory and plain files are not versions.
        """
        try:
            entries = [
                entry.name
                for entry in self.versions_dir.iterdir()
                if entry.is_dir() and entry.name != LOCKS_DIR_NAME
            ]
        except (FileNotFoundError, NotADirectoryError):
            return []

        return sorted(entries, key=lambda v: (version_sort_key(v), v), reverse=True)

    def cleanup_old_versions(
        self,
        keep_count: int = DEFAULT_KEEP_COUNT,
        *,
        force: bool = False,
    ) -> list[str]:
        """
        Remove installed versions beyond the newest ``keep_count``.

        The active version is never removed. A version a live process holds a
        lock on is skipped unless ``force`` is set. A failure to remove one
        version is logged and does not stop the others.

        Args:
            keep_count: Number of newest versions to keep.
            force: Remove locked versions too.

        Returns:
            The versions that were removed.
        """
        versions = self.list_installed_versions()
        if len(versions) <= keep_count:
            self._logger.debug("No old versions to remove", extra={"total": len(versions)})
            return []

        self.lock_manager.clean_stale_locks()
        active_version = self.get_active_version()
        removed: list[str] = []

        for version in versions[keep_count:]:
            if version == active_version:
                self._logger.debug("Keeping active version", extra={"version": version})
                continue

            if not force:
                status = self.lock_manager.is_version_locked(version)
                if status.locked:
                    self._logger.info(
                        "Skipping locked version",
                        extra={"version": version, "pids": status.pids},
                    )
                    continue

            try:
                remove_directory(self.version_dir(version))
            except OSError as e:
                self._logger.warning(
                    "Failed to remove version",
                    extra={"version": version, "error": str(e)},
                )
                continue

            removed.append(version)
            self._logger.info("Removed old version", extra={"version": version})

        return removed

    def rollback_version(self, previous_version: str) -> None:
        """
        Reactivate an older version that is still installed.

        Raises:
            FailedPreconditionError: If that version's binary is gone.
            ActivationError: If the symlink switch fails.
        """
        binary = self.binary_path(previous_version)
        if not binary.is_file():
            raise FailedPreconditionError(
                f"Cannot rollback: binary not found for version {previous_version}",
                details={"version": previous_version, "path": str(binary)},
            )

        self._logger.warning("Rolling back", extra={"target_version": previous_version})
        self.activate_version(previous_version)
        self._logger.info("Rollback complete", extra={"version": previous_version})

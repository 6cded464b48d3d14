"""
Update orchestrator for daemux.

This module implements the Updater class that drives the update pipeline:

- check: fetch the release manifest and compare it with the current version
- download: fetch this platform's artifact, verify it, record it as pending
- apply: install the pending version, activate it, prune old versions
- rollback: reactivate an older installed version

Phases:
- idle: No operation in progress
- checking: Fetching the manifest
- downloading: Streaming the artifact
- verifying: Hashing the downloaded artifact
- applying: Installing/activating, or rolling back

Only one operation runs at a time per Updater; every operation returns the
machine to idle whether it succeeds or fails. Persistent progress lives in
update-state.json (see daemux_updater.state), the active version in the
stable symlink (see daemux_updater.installer).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from daemux_updater.background import (
    BackgroundSpawner,
    SubprocessSpawner,
    check_command,
)
from daemux_updater.config import DISABLE_ENV, UpdaterConfig, load_config
from daemux_updater.downloader import download_update
from daemux_updater.errors import (
    ArtifactNotFoundError,
    ChecksumMismatchError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    UpdaterError,
)
from daemux_updater.host import HostEnvironment, get_default_host
from daemux_updater.installer import Installer
from daemux_updater.locks import LockManager
from daemux_updater.logging import get_logger
from daemux_updater.manifest import ManifestStore, PlatformManifest
from daemux_updater.platform import detect_platform
from daemux_updater.state import (
    CheckStatus,
    PendingUpdate,
    UpdateState,
    load_state_sync,
    persist_state,
)
from daemux_updater.verifier import verify_checksum
from daemux_updater.versioning import is_newer_version


class UpdaterPhase(str, Enum):
    """
    Phases of the in-process operation state machine.

    Transitions:
    - idle → checking → idle
    - idle → downloading → verifying → idle
    - downloading → idle (download failed)
    - idle → applying → idle
    """

    IDLE = "idle"
    CHECKING = "checking"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    APPLYING = "applying"


_VALID_TRANSITIONS: dict[UpdaterPhase, set[UpdaterPhase]] = {
    UpdaterPhase.IDLE: {
        UpdaterPhase.CHECKING,
        UpdaterPhase.DOWNLOADING,
        UpdaterPhase.APPLYING,
    },
    UpdaterPhase.CHECKING: {UpdaterPhase.IDLE},
    UpdaterPhase.DOWNLOADING: {UpdaterPhase.VERIFYING, UpdaterPhase.IDLE},
    UpdaterPhase.VERIFYING: {UpdaterPhase.IDLE},
    UpdaterPhase.APPLYING: {UpdaterPhase.IDLE},
}


class CheckResult(BaseModel):
    """
    Outcome of Updater.check().

    Attributes:
        status: up-to-date, update-available or error.
        current_version: Version recorded as current when the check ran.
        available_version: Version in the fetched manifest.
        error: Failure message when status is error.
    """

    status: CheckStatus
    current_version: str
    available_version: str | None = None
    error: str | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class Updater:
    """
    Orchestrates check, download, apply and rollback.

    Attributes:
        config: Updater configuration.
        phase: Current operation phase.
        manifest_store: Manifest fetcher and cache.
        installer: Version installer.
        lock_manager: Lock manager consulted by cleanup.
    """

    def __init__(
        self,
        config: UpdaterConfig | None = None,
        *,
        host: HostEnvironment | None = None,
        manifest_store: ManifestStore | None = None,
        installer: Installer | None = None,
        lock_manager: LockManager | None = None,
        spawner: BackgroundSpawner | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the Updater and load the persisted state.

        Args:
            config: Configuration. Defaults to ``load_config()``.
            host: Host environment. Defaults to the running system.
            manifest_store: Manifest store. Built from config if omitted.
            installer: Installer. Built from config if omitted.
            lock_manager: Lock manager. Built from config if omitted.
            spawner: Spawner for background checks.
            transport: Optional httpx transport for manifest and artifact
                requests.
            logger: Logger to use. Defaults to the module logger.
        """
        self._host = host or get_default_host()
        self.config = config or load_config(host=self._host)
        self._logger = logger or get_logger(__name__)
        self._transport = transport
        self._spawner = spawner or SubprocessSpawner()

        self.manifest_store = manifest_store or ManifestStore(
            self.config.manifest_cache_path,
            self.config.manifest_url,
            timeout=self.config.manifest_timeout_seconds,
            transport=transport,
            logger=self._logger,
        )
        self.lock_manager = lock_manager or LockManager(
            self.config.versions_root, host=self._host, logger=self._logger
        )
        self.installer = installer or Installer(
            self.config.versions_root,
            self.config.symlink_path,
            binary_name=self.config.binary_name,
            lock_manager=self.lock_manager,
            logger=self._logger,
        )

        self._phase = UpdaterPhase.IDLE
        self._state = load_state_sync(
            self.config.state_path,
            self.config.current_version,
            self._host,
            interval_ms=self.config.check_interval_ms,
        )
        if "check_interval_ms" in self.config.model_fields_set:
            # An explicitly configured interval wins over the stored one
            self._state.check_interval_ms = self.config.check_interval_ms

    @property
    def phase(self) -> UpdaterPhase:
        """Get the current phase."""
        return self._phase

    # =========================================================================
    # Phase management
    # =========================================================================

    def _transition_to(self, new_phase: UpdaterPhase) -> None:
        current = self._phase
        if new_phase not in _VALID_TRANSITIONS[current]:
            raise InternalError(
                f"Invalid phase transition from {current.value} to {new_phase.value}",
                details={
                    "current_phase": current.value,
                    "target_phase": new_phase.value,
                    "valid_transitions": sorted(
                        p.value for p in _VALID_TRANSITIONS[current]
                    ),
                },
            )
        self._logger.debug(
            "Phase transition",
            extra={"from_phase": current.value, "to_phase": new_phase.value},
        )
        self._phase = new_phase

    def _begin(self, phase: UpdaterPhase) -> None:
        if self._phase is not UpdaterPhase.IDLE:
            raise FailedPreconditionError(
                f"Another update operation is in progress ({self._phase.value})",
                details={"phase": self._phase.value, "requested": phase.value},
            )
        self._transition_to(phase)

    def _finish(self) -> None:
        if self._phase is not UpdaterPhase.IDLE:
            self._transition_to(UpdaterPhase.IDLE)

    # =========================================================================
    # State
    # =========================================================================

    def get_state(self) -> UpdateState:
        """Return a copy of the current state."""
        return self._state.model_copy(deep=True)

    def set_state(self, **changes: Any) -> UpdateState:
        """
        Merge field changes into the state and persist it.

        Args:
            **changes: UpdateState fields by snake_case name. Passing None
                clears an optional field.

        Returns:
            A copy of the new state.

        Raises:
            InvalidArgumentError: For unknown fields or invalid values.
        """
        unknown = set(changes) - set(UpdateState.model_fields)
        if unknown:
            raise InvalidArgumentError(
                f"Unknown state fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        merged = {**self._state.model_dump(), **changes}
        try:
            self._state = UpdateState.model_validate(merged)
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Invalid state update: {e.error_count()} validation error(s)",
                details={"fields": sorted(changes)},
            ) from e

        persist_state(self.config.state_path, self._state, self._logger)
        return self.get_state()

    def has_pending_update(self) -> bool:
        """Return True if a verified download is waiting to be applied."""
        pending = self._state.pending_update
        return pending is not None and pending.verified

    def set_disabled(self, disabled: bool = True) -> None:
        """Turn automatic background checks off or on."""
        self.set_state(disabled=disabled)
        self._logger.info("Auto-update setting changed", extra={"disabled": disabled})

    def is_check_due(self, now_ms: int | None = None) -> bool:
        """
        Return True if automatic checks are enabled and the interval elapsed.
        """
        if self._state.disabled or self.config.disabled:
            return False
        now = _now_ms() if now_ms is None else now_ms
        return now - self._state.last_check_time >= self._state.check_interval_ms

    # =========================================================================
    # Check
    # =========================================================================

    async def check(self) -> CheckResult:
        """
        Check the manifest for a newer release.

        Failures do not raise: they are recorded as ``lastCheckResult =
        error`` and returned with the message. A previously found
        available version or pending update is left as it was.

        Returns:
            CheckResult describing the outcome.

        Raises:
            FailedPreconditionError: If another operation is in progress.
        """
        self._begin(UpdaterPhase.CHECKING)
        try:
            return await self._check()
        finally:
            self._finish()

    async def _check(self) -> CheckResult:
        current_version = self._state.current_version

        try:
            manifest = await self.manifest_store.fetch_manifest()
        except UpdaterError as e:
            self.set_state(last_check_time=_now_ms(), last_check_result=CheckStatus.ERROR)
            self._logger.error(
                "Update check failed",
                extra={"error": e.message, "error_code": e.error_code},
            )
            return CheckResult(
                status=CheckStatus.ERROR,
                current_version=current_version,
                error=e.message,
            )

        if not is_newer_version(manifest.version, current_version):
            self.set_state(
                last_check_time=_now_ms(),
                last_check_result=CheckStatus.UP_TO_DATE,
                available_version=None,
            )
            self._logger.info(
                "Already up to date",
                extra={"current": current_version, "latest": manifest.version},
            )
            return CheckResult(
                status=CheckStatus.UP_TO_DATE,
                current_version=current_version,
                available_version=manifest.version,
            )

        self.set_state(
            last_check_time=_now_ms(),
            last_check_result=CheckStatus.UPDATE_AVAILABLE,
            available_version=manifest.version,
        )
        self._logger.info(
            "Update available",
            extra={"current": current_version, "available": manifest.version},
        )
        return CheckResult(
            status=CheckStatus.UPDATE_AVAILABLE,
            current_version=current_version,
            available_version=manifest.version,
        )

    # =========================================================================
    # Download
    # =========================================================================

    async def _resolve_manifest(self, version: str) -> PlatformManifest:
        # Read before fetching: a successful fetch overwrites the cache.
        cached = self.manifest_store.get_cached_manifest()

        manifest = await self.manifest_store.fetch_manifest()
        if manifest.version == version:
            return manifest

        # The live manifest may have moved past the version the check found.
        if cached is not None and cached.version == version:
            return cached

        raise FailedPreconditionError(
            f"Version {version} not found in manifest",
            details={"requested": version, "available": manifest.version},
        )

    async def download(
        self,
        version: str,
        on_progress: Callable[[int], None] | None = None,
    ) -> PendingUpdate:
        """
        Download and verify the artifact for ``version``.

        Args:
            version: Version to download; must match the live or cached
                manifest.
            on_progress: Called with integer percentages 0-100.

        Returns:
            The recorded pending update.

        Raises:
            FailedPreconditionError: If the version is in neither manifest,
                or another operation is in progress.
            ArtifactNotFoundError: If the release has no artifact for this
                platform.
            ChecksumMismatchError: If the download fails verification. The
                previous pending update is left unchanged.
            UnavailableError: If the manifest or artifact cannot be fetched.
        """
        self._begin(UpdaterPhase.DOWNLOADING)
        try:
            return await self._download(version, on_progress)
        finally:
            self._finish()

    async def _download(
        self,
        version: str,
        on_progress: Callable[[int], None] | None,
    ) -> PendingUpdate:
        manifest = await self._resolve_manifest(version)
        platform_key = await detect_platform(self._host)

        artifact = manifest.artifact_for(platform_key)
        if artifact is None:
            raise ArtifactNotFoundError(
                f"No artifact for platform {platform_key}",
                details={"version": version, "platform": platform_key},
            )

        self._logger.info(
            "Downloading update", extra={"version": version, "platform": platform_key}
        )
        file_path = await download_update(
            artifact,
            self.config.downloads_dir,
            on_progress,
            timeout=self.config.download_timeout_seconds,
            transport=self._transport,
            logger=self._logger,
        )

        self._transition_to(UpdaterPhase.VERIFYING)
        result = verify_checksum(file_path, artifact.sha256, self._logger)
        if not result.valid:
            self._discard_download(file_path)
            raise ChecksumMismatchError(
                f"Checksum verification failed: expected {artifact.sha256.lower()}, "
                f"got {result.actual}",
                details={
                    "version": version,
                    "expected": artifact.sha256.lower(),
                    "actual": result.actual,
                },
            )

        pending = PendingUpdate(version=version, path=str(file_path), verified=True)
        self.set_state(pending_update=pending)
        self._logger.info(
            "Update downloaded and verified",
            extra={"version": version, "path": str(file_path)},
        )
        return pending

    def _discard_download(self, file_path: Path) -> None:
        try:
            file_path.unlink(missing_ok=True)
        except OSError as e:
            self._logger.warning(
                "Failed to remove downloaded file",
                extra={"path": str(file_path), "error": str(e)},
            )

    # =========================================================================
    # Apply / Rollback
    # =========================================================================

    async def apply(self, force: bool = False) -> bool:
        """
        Install and activate the pending update.

        Args:
            force: Also remove old versions held by a live process.

        Returns:
            True if applied; False, with nothing touched on disk, when there
            is no pending update or it is unverified.

        Raises:
            InstallError: If extraction fails.
            ActivationError: If the symlink switch fails.
            FailedPreconditionError: If another operation is in progress.
        """
        self._begin(UpdaterPhase.APPLYING)
        try:
            return await self._apply(force)
        finally:
            self._finish()

    async def _apply(self, force: bool) -> bool:
        pending = self._state.pending_update
        if pending is None:
            self._logger.warning("No pending update to apply")
            return False
        if not pending.verified:
            self._logger.error("Pending update not verified, refusing to apply")
            return False

        self._logger.info("Applying update", extra={"version": pending.version})

        await self.installer.install_version(pending.path, pending.version)
        self.installer.activate_version(pending.version)
        self.installer.cleanup_old_versions(self.config.keep_count, force=force)

        self.set_state(
            current_version=pending.version,
            pending_update=None,
            available_version=None,
            last_check_result=CheckStatus.UP_TO_DATE,
        )
        self._discard_download(Path(pending.path))

        self._logger.info("Update applied successfully", extra={"version": pending.version})
        return True

    async def rollback(self, version: str) -> None:
        """
        Reactivate an installed older version and record it as current.

        Raises:
            FailedPreconditionError: If the version is not installed, or
                another operation is in progress.
            ActivationError: If the symlink switch fails.
        """
        self._begin(UpdaterPhase.APPLYING)
        try:
            self.installer.rollback_version(version)
            self.set_state(current_version=version)
        finally:
            self._finish()

    # =========================================================================
    # Background checks
    # =========================================================================

    @classmethod
    def check_in_background(
        cls,
        config: UpdaterConfig | None = None,
        *,
        host: HostEnvironment | None = None,
        spawner: BackgroundSpawner | None = None,
        logger: logging.Logger | None = None,
    ) -> bool:
        """
        Spawn a detached ``--check`` process if a check is due.

        Nothing is spawned when DISABLE_AUTOUPDATER=1, when auto-update is
        disabled in config or state, or when the check interval has not
        elapsed. Spawn failures are logged and swallowed.

        Returns:
            True if a process was spawned.
        """
        host = host or get_default_host()
        log = logger or get_logger(__name__)

        if host.getenv(DISABLE_ENV) == "1":
            log.debug("Auto-updater disabled via environment")
            return False

        updater = cls(config, host=host, spawner=spawner, logger=log)
        if not updater.is_check_due():
            log.debug("Background update check not due")
            return False

        try:
            updater._spawner.spawn(check_command())
        except OSError as e:
            log.warning(
                "Failed to spawn background update check", extra={"error": str(e)}
            )
            return False

        log.debug("Background update check spawned")
        return True

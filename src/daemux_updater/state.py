"""
Update state persistence.

``update-state.json`` is advisory bookkeeping: which version the updater last
installed, what the last check found, and the pending download. It is not the
source of truth for activation (that is the stable symlink), so a missing or
corrupt file silently falls back to defaults and write failures only log.

Writers are not coordinated across processes; the last writer wins. Each write
goes through a unique temp file and a rename, so readers never see a torn
document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from daemux_updater.config import (
    CHECK_INTERVAL_ENV,
    DEFAULT_CHECK_INTERVAL_MS,
    DISABLE_ENV,
    parse_interval_ms,
)
from daemux_updater.host import HostEnvironment, get_default_host
from daemux_updater.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CURRENT_VERSION = "0.0.0"


class CheckStatus(str, Enum):
    """Outcome of the most recent update check."""

    UP_TO_DATE = "up-to-date"
    UPDATE_AVAILABLE = "update-available"
    ERROR = "error"


class PendingUpdate(BaseModel):
    """A downloaded artifact waiting to be applied."""

    version: str
    path: str
    verified: bool = False


class UpdateState(BaseModel):
    """
    Persisted updater state.

    Field names are snake_case in Python and camelCase on disk.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
        alias_generator=to_camel,
    )

    current_version: str
    last_check_time: int = 0
    last_check_result: CheckStatus = CheckStatus.UP_TO_DATE
    available_version: str | None = None
    pending_update: PendingUpdate | None = None
    check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS
    disabled: bool = False

    def to_json(self) -> str:
        """Serialize with on-disk keys, omitting unset optional fields."""
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True), indent=2)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_update_state(value: Any) -> bool:
    """
    Structural guard for decoded state documents.

    Only the fields every consumer relies on are checked: a string
    ``currentVersion`` and numeric ``lastCheckTime`` and ``checkIntervalMs``.
    """
    if not isinstance(value, dict):
        return False
    return (
        isinstance(value.get("currentVersion"), str)
        and _is_number(value.get("lastCheckTime"))
        and _is_number(value.get("checkIntervalMs"))
    )


def default_state(
    fallback_version: str | None = None,
    host: HostEnvironment | None = None,
    *,
    interval_ms: int | None = None,
) -> UpdateState:
    """
    Build a fresh state, honoring the interval and disable overrides.

    Args:
        fallback_version: Version to record as current. Defaults to "0.0.0".
        host: Host environment for the overrides.
        interval_ms: Configured check interval, used when the environment
            does not override it.

    Returns:
        A new UpdateState.
    """
    host = host or get_default_host()
    interval = parse_interval_ms(host.getenv(CHECK_INTERVAL_ENV))
    if interval is None:
        interval = interval_ms

    return UpdateState(
        current_version=fallback_version or DEFAULT_CURRENT_VERSION,
        last_check_time=0,
        last_check_result=CheckStatus.UP_TO_DATE,
        check_interval_ms=interval if interval is not None else DEFAULT_CHECK_INTERVAL_MS,
        disabled=host.getenv(DISABLE_ENV) == "1",
    )


def load_state_sync(
    path: Path | str,
    fallback_version: str | None = None,
    host: HostEnvironment | None = None,
    *,
    interval_ms: int | None = None,
) -> UpdateState:
    """
    Read the state file, falling back to defaults on any problem.

    Args:
        path: Path to update-state.json.
        fallback_version: Current version to use when defaults are returned.
        host: Host environment for the default overrides.
        interval_ms: Check interval to use when defaults are returned.

    Returns:
        The stored state, or ``default_state(fallback_version)`` if the file
        is missing, unreadable, not JSON, or fails the structural guard.
    """
    try:
        with open(path) as f:
            parsed = json.load(f)
    except FileNotFoundError:
        return default_state(fallback_version, host, interval_ms=interval_ms)
    except (OSError, ValueError) as e:
        logger.debug("Unreadable state file, using defaults", extra={"error": str(e)})
        return default_state(fallback_version, host, interval_ms=interval_ms)

    if not is_update_state(parsed):
        logger.debug("State file failed structural check, using defaults")
        return default_state(fallback_version, host, interval_ms=interval_ms)

    try:
        return UpdateState.model_validate(parsed)
    except ValidationError as e:
        logger.debug("Invalid state file, using defaults", extra={"error": str(e)})
        return default_state(fallback_version, host, interval_ms=interval_ms)


def persist_state(
    path: Path | str,
    state: UpdateState,
    log: logging.Logger | None = None,
) -> bool:
    """
    Write the state file.

    Args:
        path: Path to update-state.json.
        state: State to write.
        log: Logger for failures. Defaults to the module logger.

    Returns:
        True if written, False if the write failed (already logged).
    """
    log = log or logger
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(state.to_json())
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        log.warning(
            "Failed to persist update state",
            extra={"path": str(path), "error": str(e)},
        )
        return False
    return True

"""
Directory and symlink primitives for version management.

CRITICAL: switching the stable symlink must be atomic so a process resolving
it concurrently sees either the old or the new target, never a missing or
half-written link. The pattern is:
1. Create a uniquely named temp symlink beside the final path
2. ``os.replace`` it over the final path

A failure before step 2 completes leaves the stable link untouched and the
temp link removed.
"""

from __future__ import annotations

import os
import secrets
import shutil
from pathlib import Path

from daemux_updater.errors import ActivationError, FailedPreconditionError
from daemux_updater.logging import get_logger

logger = get_logger(__name__)

_TEMP_LINK_ATTEMPTS = 10


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Raises:
        FailedPreconditionError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def remove_directory(path: Path) -> bool:
    """
    Remove a directory tree.

    Returns:
        True if the directory was removed, False if it didn't exist.

    Raises:
        OSError: If removal fails.
    """
    if not path.exists() and not path.is_symlink():
        return False
    if path.is_symlink():
        path.unlink()
    else:
        shutil.rmtree(path)
    logger.debug("Removed directory", extra={"path": str(path)})
    return True


def _create_temp_symlink(link_target: str, symlink_path: Path) -> Path:
    for _ in range(_TEMP_LINK_ATTEMPTS):
        temp_path = symlink_path.with_name(
            f".{symlink_path.name}.tmp-{secrets.token_hex(6)}"
        )
        try:
            os.symlink(link_target, temp_path)
            return temp_path
        except FileExistsError:
            continue
    raise ActivationError(
        f"Failed to create a unique temporary symlink after {_TEMP_LINK_ATTEMPTS} attempts",
        details={"symlink": str(symlink_path), "target": link_target},
    )


def atomic_symlink_switch(target: Path, symlink_path: Path) -> None:
    """
    Atomically point ``symlink_path`` at ``target``.

    Args:
        target: What the symlink should resolve to. Must exist.
        symlink_path: Stable symlink location; created if missing.

    Raises:
        FailedPreconditionError: If the target doesn't exist.
        ActivationError: If the temp link cannot be created or renamed.
    """
    if not target.exists():
        raise FailedPreconditionError(
            f"Symlink target does not exist: {target}",
            details={"target": str(target)},
        )

    try:
        symlink_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = _create_temp_symlink(str(target), symlink_path)
    except OSError as e:
        raise ActivationError(
            f"Failed to prepare symlink switch: {e}",
            details={"symlink": str(symlink_path), "target": str(target)},
        ) from e

    try:
        os.replace(temp_path, symlink_path)
    except OSError as e:
        try:
            if os.path.lexists(temp_path):
                os.unlink(temp_path)
        except OSError:
            logger.warning(
                "Failed to remove temporary symlink", extra={"path": str(temp_path)}
            )
        raise ActivationError(
            f"Failed to switch symlink atomically: {e}",
            details={"symlink": str(symlink_path), "target": str(target)},
        ) from e

    logger.info(
        "Atomic symlink switch completed",
        extra={"symlink": str(symlink_path), "target": str(target)},
    )


def read_symlink(symlink_path: Path) -> Path | None:
    """
    Return the raw target of a symlink.

    Returns:
        The target, made absolute relative to the link's directory, or None
        if the path is missing or not a symlink.
    """
    try:
        raw = os.readlink(symlink_path)
    except OSError:
        return None
    target = Path(raw)
    if not target.is_absolute():
        target = symlink_path.parent / target
    return target

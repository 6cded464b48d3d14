"""
Platform resolution for release artifacts.

Maps the running OS family, CPU architecture and (on Linux) libc flavor to the
platform key used in the release manifest's ``platforms`` map.
"""

from __future__ import annotations

import asyncio
from typing import Literal

from daemux_updater.errors import UnsupportedPlatformError
from daemux_updater.host import HostEnvironment, get_default_host
from daemux_updater.logging import get_logger

logger = get_logger(__name__)

PLATFORM_KEYS = frozenset(
    {
        "darwin-arm64",
        "darwin-x64",
        "linux-arm64",
        "linux-x64",
        "linux-arm64-musl",
        "linux-x64-musl",
        "windows-arm64",
        "windows-x64",
    }
)

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

LIBC_PROBE_TIMEOUT_SECONDS = 5.0


def _normalize_system(system: str) -> str | None:
    if system == "darwin":
        return "darwin"
    if system.startswith("linux"):
        return "linux"
    if system in ("win32", "cygwin"):
        return "windows"
    return None


async def detect_libc(timeout: float = LIBC_PROBE_TIMEOUT_SECONDS) -> Literal["gnu", "musl"]:
    """
    Detect the Linux C library by asking the dynamic linker.

    musl's ``ldd`` identifies itself on stderr, glibc's on stdout, so both
    streams are searched. Any failure to run the probe yields "gnu".

    Args:
        timeout: Seconds to wait for ``ldd --version``.

    Returns:
        "musl" or "gnu".
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "ldd",
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise
    except (OSError, TimeoutError) as e:
        logger.debug("libc probe failed, assuming gnu", extra={"error": str(e)})
        return "gnu"

    combined = (stdout + b"\n" + stderr).decode("utf-8", errors="replace").lower()
    return "musl" if "musl" in combined else "gnu"


async def detect_platform(host: HostEnvironment | None = None) -> str:
    """
    Resolve the platform key for this machine.

    Args:
        host: Host environment to inspect. Defaults to the running system.

    Returns:
        A key from PLATFORM_KEYS, e.g. "linux-x64-musl".

    Raises:
        UnsupportedPlatformError: If the OS family or architecture has no
            release artifacts.
    """
    host = host or get_default_host()
    raw_system = host.system()
    raw_machine = host.machine()

    system = _normalize_system(raw_system)
    arch = _ARCH_ALIASES.get(raw_machine.lower())

    if system is None or arch is None:
        raise UnsupportedPlatformError(
            f"Unsupported platform: {raw_system}-{raw_machine}",
            details={"system": raw_system, "machine": raw_machine},
        )

    key = f"{system}-{arch}"
    if system == "linux" and await detect_libc() == "musl":
        key = f"{key}-musl"

    logger.debug("Resolved platform", extra={"platform_key": key})
    return key

"""
Artifact download with streaming progress.

The body is streamed and buffered in memory, then written to a fresh temp file
in one go once the response is complete. A failed or timed-out download
therefore never leaves a truncated file behind.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from collections.abc import Callable
from pathlib import Path

import httpx

from daemux_updater.errors import DeadlineExceededError, UnavailableError
from daemux_updater.logging import get_logger
from daemux_updater.manifest import PlatformArtifact

DEFAULT_DOWNLOAD_TIMEOUT_SECONDS = 300.0

ProgressCallback = Callable[[int], None]


def generate_temp_filename(prefix: str = "daemux") -> str:
    """Return ``<prefix>-update-<epoch ms>-<8 hex chars>.tar.gz``."""
    timestamp = int(time.time() * 1000)
    return f"{prefix}-update-{timestamp}-{secrets.token_hex(4)}.tar.gz"


class ProgressReporter:
    """
    Turns byte counts into integer percentages for a progress callback.

    Each distinct percentage is reported once; since the byte count only
    grows, reported values are non-decreasing.
    """

    def __init__(self, total_size: int, callback: ProgressCallback | None) -> None:
        self.total_size = total_size
        self._callback = callback
        self._received = 0
        self._last_reported = -1

    @property
    def received(self) -> int:
        return self._received

    def advance(self, nbytes: int) -> None:
        self._received += nbytes
        if self._callback is None or self.total_size <= 0:
            return
        pct = min(round(self._received / self.total_size * 100), 100)
        if pct != self._last_reported:
            self._last_reported = pct
            self._callback(pct)


async def download_update(
    artifact: PlatformArtifact,
    dest_dir: Path | str,
    on_progress: ProgressCallback | None = None,
    *,
    timeout: float = DEFAULT_DOWNLOAD_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
    logger: logging.Logger | None = None,
) -> Path:
    """
    Download an artifact into ``dest_dir``.

    Args:
        artifact: Artifact entry from the manifest.
        dest_dir: Directory for the downloaded file; created if missing.
        on_progress: Called with integer percentages 0-100.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport.
        logger: Logger to use. Defaults to the module logger.

    Returns:
        Path of the downloaded file.

    Raises:
        DeadlineExceededError: If the request times out.
        UnavailableError: On transport failure, a non-2xx status, or an
            empty body.
    """
    log = logger or get_logger(__name__)
    target_dir = Path(dest_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    dest_path = target_dir / generate_temp_filename()

    log.info(
        "Starting download",
        extra={"url": artifact.url, "expected_size": artifact.size, "dest": str(dest_path)},
    )

    chunks: list[bytes] = []
    try:
        async with httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True
        ) as client:
            async with client.stream("GET", artifact.url) as response:
                if not response.is_success:
                    raise UnavailableError(
                        f"Download failed: {response.status_code} {response.reason_phrase}",
                        details={"url": artifact.url, "status_code": response.status_code},
                    )

                content_length = _parse_content_length(response.headers.get("content-length"))
                total_size = content_length if content_length > 0 else artifact.size
                progress = ProgressReporter(total_size, on_progress)

                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    progress.advance(len(chunk))
    except httpx.TimeoutException as e:
        raise DeadlineExceededError(
            f"Download timed out after {timeout}s",
            details={"url": artifact.url},
        ) from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise UnavailableError(
            f"Download failed: {e}",
            details={"url": artifact.url},
        ) from e

    if progress.received == 0:
        raise UnavailableError("Response body is empty", details={"url": artifact.url})

    data = b"".join(chunks)
    part_path = dest_path.with_name(dest_path.name + ".part")
    try:
        part_path.write_bytes(data)
        os.replace(part_path, dest_path)
    except OSError:
        part_path.unlink(missing_ok=True)
        raise

    log.info(
        "Download complete",
        extra={"dest": str(dest_path), "bytes_received": len(data)},
    )
    return dest_path


def _parse_content_length(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0

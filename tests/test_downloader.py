"""
Tests for artifact downloads.

Tests cover:
- Temp file naming
- Progress reporting
- Streaming download success and failure mapping
"""

from __future__ import annotations

import re
from pathlib import Path

import httpx
import pytest

from daemux_updater.downloader import (
    ProgressReporter,
    download_update,
    generate_temp_filename,
)
from daemux_updater.errors import DeadlineExceededError, UnavailableError
from daemux_updater.manifest import PlatformArtifact

ARTIFACT_URL = "https://releases.example.com/daemux-2.3.0-darwin-arm64.tar.gz"


def _artifact(size: int = 1000) -> PlatformArtifact:
    return PlatformArtifact(url=ARTIFACT_URL, sha256="a" * 64, size=size)


class _ChunkedStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


class TestGenerateTempFilename:
    """Tests for generate_temp_filename."""

    def test_format(self) -> None:
        name = generate_temp_filename()

        assert re.fullmatch(r"daemux-update-\d+-[0-9a-f]{8}\.tar\.gz", name)

    def test_unique(self) -> None:
        assert len({generate_temp_filename() for _ in range(50)}) == 50


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_reports_distinct_percentages(self) -> None:
        reported: list[int] = []
        progress = ProgressReporter(1000, reported.append)

        for _ in range(4):
            progress.advance(1)
        progress.advance(496)
        progress.advance(500)

        assert reported == [0, 50, 100]

    def test_capped_at_100(self) -> None:
        reported: list[int] = []
        progress = ProgressReporter(100, reported.append)

        progress.advance(150)

        assert reported == [100]
        assert progress.received == 150

    def test_non_decreasing(self) -> None:
        reported: list[int] = []
        progress = ProgressReporter(997, reported.append)
        for _ in range(997 // 7 + 1):
            progress.advance(7)

        assert reported == sorted(reported)
        assert len(reported) == len(set(reported))

    def test_no_callback(self) -> None:
        progress = ProgressReporter(10, None)
        progress.advance(5)

        assert progress.received == 5


class TestDownloadUpdate:
    """Tests for download_update."""

    @pytest.mark.asyncio
    async def test_download_writes_file(self, tmp_path: Path) -> None:
        body = b"tarball-bytes" * 100

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == ARTIFACT_URL
            return httpx.Response(200, content=body)

        path = await download_update(
            _artifact(len(body)),
            tmp_path / "downloads",
            transport=httpx.MockTransport(handler),
        )

        assert path.parent == tmp_path / "downloads"
        assert path.read_bytes() == body
        assert re.fullmatch(r"daemux-update-\d+-[0-9a-f]{8}\.tar\.gz", path.name)
        assert list(path.parent.iterdir()) == [path]

    @pytest.mark.asyncio
    async def test_progress_uses_content_length(self, tmp_path: Path) -> None:
        """Test that Content-Length wins over the manifest size."""
        chunks = [b"a" * 250] * 4
        reported: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"Content-Length": "1000"},
                stream=_ChunkedStream(chunks),
            )

        await download_update(
            _artifact(size=10_000),
            tmp_path,
            reported.append,
            transport=httpx.MockTransport(handler),
        )

        assert reported == [25, 50, 75, 100]

    @pytest.mark.asyncio
    async def test_progress_falls_back_to_manifest_size(self, tmp_path: Path) -> None:
        reported: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, stream=_ChunkedStream([b"a" * 50, b"b" * 50]))

        await download_update(
            _artifact(size=100),
            tmp_path,
            reported.append,
            transport=httpx.MockTransport(handler),
        )

        assert reported == [50, 100]

    @pytest.mark.asyncio
    async def test_follows_redirects(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "releases.example.com":
                return httpx.Response(
                    302, headers={"Location": "https://cdn.example.com/blob"}
                )
            return httpx.Response(200, content=b"payload")

        path = await download_update(
            _artifact(), tmp_path, transport=httpx.MockTransport(handler)
        )

        assert path.read_bytes() == b"payload"

    @pytest.mark.asyncio
    async def test_http_error_leaves_no_file(self, tmp_path: Path) -> None:
        with pytest.raises(UnavailableError) as exc_info:
            await download_update(
                _artifact(),
                tmp_path,
                transport=httpx.MockTransport(lambda request: httpx.Response(404)),
            )

        assert "404" in exc_info.value.message
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_body(self, tmp_path: Path) -> None:
        with pytest.raises(UnavailableError, match="empty"):
            await download_update(
                _artifact(),
                tmp_path,
                transport=httpx.MockTransport(lambda request: httpx.Response(200)),
            )

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(DeadlineExceededError):
            await download_update(
                _artifact(), tmp_path, transport=httpx.MockTransport(handler)
            )

    @pytest.mark.asyncio
    async def test_connection_error(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UnavailableError):
            await download_update(
                _artifact(), tmp_path, transport=httpx.MockTransport(handler)
            )

"""
Release manifest fetching, validation and caching.

The manifest is a JSON document describing the latest release:

    {
      "version": "2.3.0",
      "released": "2026-10-01T12:00:00Z",
      "minRuntimeVersion": "1.1.0",
      "platforms": {
        "linux-x64": {"url": "https://...", "sha256": "<64 hex>", "size": 1234}
      }
    }

A single schema violation rejects the whole document. Each successful fetch
overwrites the local cache; the cache lets a download proceed when the live
manifest has moved on since the check.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import httpx
from pydantic import (
    AliasChoices,
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from daemux_updater.errors import (
    DeadlineExceededError,
    ManifestValidationError,
    UnavailableError,
)
from daemux_updater.logging import get_logger

DEFAULT_FETCH_TIMEOUT_SECONDS = 15.0

_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)


class PlatformArtifact(BaseModel):
    """
    A downloadable release archive for one platform.

    Attributes:
        url: Absolute URL of the archive.
        sha256: Expected SHA-256 of the archive, 64 hex characters.
        size: Advertised size in bytes.
    """

    url: str
    sha256: str = Field(pattern=r"^[a-fA-F0-9]{64}$")
    size: int = Field(gt=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject strings that are not well-formed absolute URLs."""
        _URL_ADAPTER.validate_python(v)
        return v


class PlatformManifest(BaseModel):
    """
    The release manifest.

    Attributes:
        version: Release version.
        released: Release date string.
        min_runtime_version: Minimum runtime version the release needs.
            Serialized as ``minRuntimeVersion``; ``minBunVersion`` is accepted
            on input for older manifests.
        platforms: Platform key to artifact.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(min_length=1)
    released: str = Field(min_length=1)
    min_runtime_version: str = Field(
        min_length=1,
        validation_alias=AliasChoices(
            "minRuntimeVersion", "minBunVersion", "min_runtime_version"
        ),
        serialization_alias="minRuntimeVersion",
    )
    platforms: dict[str, PlatformArtifact]

    def artifact_for(self, platform_key: str) -> PlatformArtifact | None:
        """Return the artifact for a platform key, if the release has one."""
        return self.platforms.get(platform_key)

    def to_json(self) -> str:
        """Serialize with wire-format keys."""
        return json.dumps(self.model_dump(by_alias=True), indent=2)


def parse_manifest(raw: Any) -> PlatformManifest:
    """
    Validate decoded JSON as a manifest.

    Raises:
        ManifestValidationError: If any field violates the schema.
    """
    try:
        return PlatformManifest.model_validate(raw)
    except ValidationError as e:
        raise ManifestValidationError(
            f"Invalid release manifest: {e.error_count()} validation error(s)",
            details={
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
            },
        ) from e


class ManifestStore:
    """
    Fetches the remote manifest and maintains the local cache.

    Attributes:
        cache_path: Where the last fetched manifest is written.
        manifest_url: Default endpoint for fetch_manifest().
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        cache_path: Path | str,
        manifest_url: str,
        *,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the ManifestStore.

        Args:
            cache_path: Path of the manifest cache file.
            manifest_url: Default manifest URL.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
            logger: Logger to use. Defaults to the module logger.
        """
        self.cache_path = Path(cache_path)
        self.manifest_url = manifest_url
        self.timeout = timeout
        self._transport = transport
        self._logger = logger or get_logger(__name__)

    async def fetch_manifest(self, url: str | None = None) -> PlatformManifest:
        """
        Fetch and validate the release manifest, then cache it.

        Args:
            url: Manifest URL. Defaults to the configured URL.

        Returns:
            The validated manifest.

        Raises:
            DeadlineExceededError: If the request times out.
            UnavailableError: On transport failure or a non-2xx status.
            ManifestValidationError: If the body is not JSON or fails the schema.
        """
        manifest_url = url or self.manifest_url
        self._logger.debug("Fetching manifest", extra={"url": manifest_url})

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    manifest_url, headers={"Accept": "application/json"}
                )
        except httpx.TimeoutException as e:
            raise DeadlineExceededError(
                f"Manifest fetch timed out after {self.timeout}s",
                details={"url": manifest_url},
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UnavailableError(
                f"Manifest fetch failed: {e}",
                details={"url": manifest_url},
            ) from e

        if not response.is_success:
            raise UnavailableError(
                f"Manifest fetch failed: {response.status_code} {response.reason_phrase}",
                details={"url": manifest_url, "status_code": response.status_code},
            )

        try:
            raw = response.json()
        except ValueError as e:
            raise ManifestValidationError(
                f"Manifest is not valid JSON: {e}",
                details={"url": manifest_url},
            ) from e

        manifest = parse_manifest(raw)
        self._cache_manifest(manifest)

        self._logger.info("Manifest fetched", extra={"version": manifest.version})
        return manifest

    def _cache_manifest(self, manifest: PlatformManifest) -> None:
        """Write the manifest cache. Failures are logged, not raised."""
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.cache_path.name}.", dir=self.cache_path.parent
            )
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(manifest.to_json())
                os.replace(temp_name, self.cache_path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
            self._logger.debug("Manifest cached", extra={"path": str(self.cache_path)})
        except OSError as e:
            self._logger.warning(
                "Failed to cache manifest",
                extra={"path": str(self.cache_path), "error": str(e)},
            )

    def get_cached_manifest(self) -> PlatformManifest | None:
        """
        Load the cached manifest.

        Returns:
            The cached manifest, or None if there is no valid cache.
        """
        try:
            content = self.cache_path.read_text()
        except FileNotFoundError:
            self._logger.debug("No cached manifest found")
            return None
        except OSError as e:
            self._logger.warning("Failed to read cached manifest", extra={"error": str(e)})
            return None

        try:
            return parse_manifest(json.loads(content))
        except (ValueError, ManifestValidationError) as e:
            self._logger.warning("Failed to read cached manifest", extra={"error": str(e)})
            return None

"""
Configuration management for the daemux updater.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (~/.config/daemux/updater.yml or an explicit path)
3. Environment variables (DAEMUX_UPDATER_* prefix, __ for nesting)
4. The product's named overrides: DAEMUX_MANIFEST_URL,
   DAEMUX_UPDATE_INTERVAL_MS and DISABLE_AUTOUPDATER
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from daemux_updater.host import HostEnvironment, get_default_host

DEFAULT_MANIFEST_URL = "https://daemux.ai/manifest.json"
DEFAULT_CHECK_INTERVAL_MS = 1_800_000
DEFAULT_STATE_DIR = Path.home() / ".local" / "share" / "daemux"
DEFAULT_SYMLINK_PATH = Path.home() / ".local" / "bin" / "daemux"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "daemux" / "updater.yml"

ENV_PREFIX = "DAEMUX_UPDATER_"
MANIFEST_URL_ENV = "DAEMUX_MANIFEST_URL"
CHECK_INTERVAL_ENV = "DAEMUX_UPDATE_INTERVAL_MS"
DISABLE_ENV = "DISABLE_AUTOUPDATER"

STATE_FILE_NAME = "update-state.json"
MANIFEST_CACHE_NAME = "manifest.json"


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit one JSON object per line instead of plain text.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    json_format: bool = Field(
        default=True,
        description="Whether to emit JSON log lines",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Updater Configuration
# =============================================================================


class UpdaterConfig(BaseModel):
    """
    Updater configuration model.

    Attributes:
        state_dir: Root for manifest cache, state file, downloads and versions.
        versions_dir: Directory holding one subdirectory per installed version.
            Defaults to ``state_dir / "versions"``.
        symlink_path: Stable path that resolves to the active binary.
        binary_name: Product binary path relative to a version directory.
        manifest_url: Release manifest endpoint.
        manifest_timeout_seconds: Timeout for the manifest request.
        download_timeout_seconds: Timeout for an artifact download.
        check_interval_ms: Minimum time between automatic checks.
        disabled: Disable automatic background checks.
        keep_count: Number of newest versions cleanup always retains.
        current_version: Version assumed when no state file exists yet.
        logging: Logging configuration.
    """

    state_dir: Path = Field(
        default=DEFAULT_STATE_DIR,
        description="Root directory for updater state",
    )
    versions_dir: Path | None = Field(
        default=None,
        description="Installed versions directory (defaults to state_dir/versions)",
    )
    symlink_path: Path = Field(
        default=DEFAULT_SYMLINK_PATH,
        description="Stable symlink pointing at the active binary",
    )
    binary_name: str = Field(
        default="daemux",
        description="Binary path relative to a version directory",
    )
    manifest_url: str = Field(
        default=DEFAULT_MANIFEST_URL,
        description="Release manifest URL",
    )
    manifest_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Manifest request timeout in seconds",
    )
    download_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Artifact download timeout in seconds",
    )
    check_interval_ms: int = Field(
        default=DEFAULT_CHECK_INTERVAL_MS,
        gt=0,
        description="Minimum interval between automatic checks in milliseconds",
    )
    disabled: bool = Field(
        default=False,
        description="Disable automatic background checks",
    )
    keep_count: int = Field(
        default=3,
        ge=1,
        description="Number of newest versions to retain during cleanup",
    )
    current_version: str = Field(
        default="0.0.0",
        description="Version assumed before any state has been recorded",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )

    @field_validator("state_dir", "symlink_path", "versions_dir", mode="before")
    @classmethod
    def expand_user(cls, v: Any) -> Any:
        """Expand ``~`` in configured paths."""
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    @model_validator(mode="after")
    def default_versions_dir(self) -> UpdaterConfig:
        """Place versions under the state directory unless configured."""
        if self.versions_dir is None:
            self.versions_dir = self.state_dir / "versions"
        return self

    @property
    def state_path(self) -> Path:
        """Path to update-state.json."""
        return self.state_dir / STATE_FILE_NAME

    @property
    def manifest_cache_path(self) -> Path:
        """Path to the cached manifest."""
        return self.state_dir / MANIFEST_CACHE_NAME

    @property
    def downloads_dir(self) -> Path:
        """Directory for downloaded artifacts."""
        return self.state_dir / "downloads"

    @property
    def versions_root(self) -> Path:
        """Installed versions directory, always resolved."""
        if self.versions_dir is None:
            return self.state_dir / "versions"
        return self.versions_dir


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an appropriate Python type.

    Returns:
        Parsed value (bool, int, float, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(
    environ: dict[str, str],
    prefix: str = ENV_PREFIX,
) -> dict[str, Any]:
    """
    Load configuration from prefixed environment variables.

    Example: DAEMUX_UPDATER_LOGGING__LEVEL=debug sets ``logging.level``.
    """
    result: dict[str, Any] = {}

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def _load_named_overrides(host: HostEnvironment) -> dict[str, Any]:
    """Read the product's documented environment overrides."""
    result: dict[str, Any] = {}

    manifest_url = host.getenv(MANIFEST_URL_ENV)
    if manifest_url:
        result["manifest_url"] = manifest_url

    interval = parse_interval_ms(host.getenv(CHECK_INTERVAL_ENV))
    if interval is not None:
        result["check_interval_ms"] = interval

    if host.getenv(DISABLE_ENV) == "1":
        result["disabled"] = True

    return result


def parse_interval_ms(raw: str | None) -> int | None:
    """Parse a check interval override; only positive integers are accepted."""
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def load_config(
    config_path: Path | str | None = None,
    *,
    host: HostEnvironment | None = None,
) -> UpdaterConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to a YAML configuration file. If None, the default
            path is used when it exists.
        host: Host environment supplying DAEMUX_UPDATER_* variables and the
            named overrides.

    Returns:
        Fully configured UpdaterConfig instance.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        pydantic.ValidationError: If configuration is invalid.
    """
    host = host or get_default_host()
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    env_config = _load_env_config(host.environ())
    config_dict = _deep_merge(config_dict, env_config)

    config_dict = _deep_merge(config_dict, _load_named_overrides(host))

    return UpdaterConfig(**config_dict)

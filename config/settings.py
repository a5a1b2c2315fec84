"""
Configuration settings with environment variable loading.

Buildium credentials and the HubSpot access token MUST come from the
environment (or a .env file). They are never logged or shown in repr.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_HUBSPOT_BASE_URL = "https://api.hubapi.com"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class BuildiumConfig:
    """Buildium API configuration."""
    base_url: str
    client_id: str
    client_secret: str

    def __post_init__(self):
        if not self.base_url:
            raise ConfigurationError("BUILDIUM_BASE_URL is required")
        if not self.client_id:
            raise ConfigurationError("BUILDIUM_CLIENT_ID is required")
        if not self.client_secret:
            raise ConfigurationError("BUILDIUM_CLIENT_SECRET is required")
        if not self.base_url.startswith("https://"):
            raise ConfigurationError("BUILDIUM_BASE_URL must use HTTPS")

    def __repr__(self) -> str:
        """Never expose the client secret in repr."""
        return (
            f"BuildiumConfig(base_url='{self.base_url}', "
            f"client_id='{self.client_id[:8]}...', client_secret='***REDACTED***')"
        )


@dataclass(frozen=True)
class HubSpotConfig:
    """HubSpot CRM API configuration."""
    access_token: str
    base_url: str = DEFAULT_HUBSPOT_BASE_URL

    def __post_init__(self):
        if not self.access_token:
            raise ConfigurationError("HUBSPOT_ACCESS_TOKEN is required")
        if not self.base_url.startswith("https://"):
            raise ConfigurationError("HUBSPOT_BASE_URL must use HTTPS")

    def __repr__(self) -> str:
        return f"HubSpotConfig(base_url='{self.base_url}', access_token='***REDACTED***')"


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine configuration."""
    dry_run: bool = False
    force: bool = False
    batch_size: int = 50
    limit: Optional[int] = None
    max_retries: int = 3
    request_timeout: float = 30.0
    lookback_days: int = 7

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigurationError("SYNC_BATCH_SIZE must be at least 1")
        if self.limit is not None and self.limit < 0:
            raise ConfigurationError("SYNC_LIMIT must not be negative")
        if self.max_retries < 0:
            raise ConfigurationError("SYNC_MAX_RETRIES must not be negative")
        if self.request_timeout <= 0:
            raise ConfigurationError("SYNC_REQUEST_TIMEOUT must be positive")
        if self.lookback_days < 0:
            raise ConfigurationError("SYNC_LOOKBACK_DAYS must not be negative")


@dataclass(frozen=True)
class StorageConfig:
    """Checkpoint storage configuration."""
    database_path: Path = field(default_factory=lambda: Path("data/lease_sync.db"))

    def __post_init__(self):
        object.__setattr__(self, "database_path", Path(self.database_path))


@dataclass(frozen=True)
class Settings:
    """
    Application settings container.

    All configuration is loaded from environment variables.
    Secrets are never logged or exposed.
    """
    buildium: BuildiumConfig
    hubspot: HubSpotConfig
    sync: SyncConfig
    storage: StorageConfig
    log_level: str = "INFO"

    def __repr__(self) -> str:
        return (
            f"Settings(\n"
            f"  buildium={self.buildium},\n"
            f"  hubspot={self.hubspot},\n"
            f"  sync={self.sync},\n"
            f"  storage={self.storage}\n"
            f")"
        )


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got '{raw}'")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from environment variables.

    Optionally loads from a .env file first. Variables already set in the
    environment win over the file.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If required configuration is missing or invalid
    """
    if env_file and env_file.exists():
        _load_env_file(env_file)
    elif Path(".env").exists():
        _load_env_file(Path(".env"))

    try:
        buildium = BuildiumConfig(
            base_url=os.getenv("BUILDIUM_BASE_URL", "").rstrip("/"),
            client_id=os.getenv("BUILDIUM_CLIENT_ID", ""),
            client_secret=os.getenv("BUILDIUM_CLIENT_SECRET", ""),
        )

        hubspot = HubSpotConfig(
            access_token=os.getenv("HUBSPOT_ACCESS_TOKEN", ""),
            base_url=os.getenv("HUBSPOT_BASE_URL", DEFAULT_HUBSPOT_BASE_URL).rstrip("/"),
        )

        sync = SyncConfig(
            dry_run=_env_bool("SYNC_DRY_RUN"),
            force=_env_bool("SYNC_FORCE"),
            batch_size=_env_int("SYNC_BATCH_SIZE", 50),
            limit=_env_int("SYNC_LIMIT", None),
            max_retries=_env_int("SYNC_MAX_RETRIES", 3),
            request_timeout=float(os.getenv("SYNC_REQUEST_TIMEOUT", "30")),
            lookback_days=_env_int("SYNC_LOOKBACK_DAYS", 7),
        )

        storage = StorageConfig(
            database_path=Path(os.getenv("STORAGE_DATABASE_PATH", "data/lease_sync.db")),
        )

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        settings = Settings(
            buildium=buildium,
            hubspot=hubspot,
            sync=sync,
            storage=storage,
            log_level=log_level,
        )

        logger.info("Configuration loaded successfully")
        logger.debug(f"Settings: {settings}")

        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def _load_env_file(path: Path) -> None:
    """
    Load environment variables from a file.

    Handles KEY=value lines, optional quotes and an `export ` prefix.
    Blank lines and # comments are ignored.
    """
    logger.debug(f"Loading environment from {path}")

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if line.startswith("export "):
                line = line[len("export "):].lstrip()

            if "=" not in line:
                logger.warning(f"Invalid line {line_num} in {path}: no '=' found")
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                value = value[1:-1]

            # Environment wins over the file
            if key not in os.environ:
                os.environ[key] = value

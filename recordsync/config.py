"""
Configuration management for recordsync.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The remote API token is never logged or exposed in error messages
    - Owned zones are fixed by configuration, shared zones are discovered

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable, deployments depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class RemoteBackend(Enum):
    """Supported remote backing stores."""

    CLOUDKIT = "cloudkit"
    MEMORY = "memory"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class RemoteConfig:
    """Remote backing store configuration.

    Attributes:
        base_url: Root URL of the web services API
        container_id: Container identifier
        environment: "development" or "production"
        api_token: API token sent with every request
        web_auth_token: Per-user web auth token (optional)
        timeout_s: Request timeout in seconds
        results_limit: Page size for paginated calls
        record_type: Record type holding medical records
    """

    base_url: str = "https://api.apple-cloudkit.com"
    container_id: str = "iCloud.com.example.SimplyHealth"
    environment: str = "development"
    api_token: str | None = None
    web_auth_token: str | None = None
    timeout_s: float = 30.0
    results_limit: int = 200
    record_type: str = "MedicalRecord"

    @classmethod
    def from_env(cls) -> RemoteConfig:
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("REMOTE_BASE_URL", "https://api.apple-cloudkit.com"),
            container_id=os.getenv("REMOTE_CONTAINER_ID", "iCloud.com.example.SimplyHealth"),
            environment=os.getenv("REMOTE_ENVIRONMENT", "development"),
            api_token=os.getenv("REMOTE_API_TOKEN"),
            web_auth_token=os.getenv("REMOTE_WEB_AUTH_TOKEN"),
            timeout_s=float(os.getenv("REMOTE_TIMEOUT_S", "30")),
            results_limit=int(os.getenv("REMOTE_RESULTS_LIMIT", "200")),
            record_type=os.getenv("REMOTE_RECORD_TYPE", "MedicalRecord"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding the SQLite files
        records_db: File name of the record database
        cursors_db: File name of the cursor/preference database
        busy_timeout_ms: SQLite busy timeout
        wal_mode: Enable SQLite WAL journal mode
    """

    data_dir: str = "/var/lib/recordsync"
    records_db: str = "records.db"
    cursors_db: str = "cursors.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/recordsync"),
            records_db=os.getenv("RECORDS_DB", "records.db"),
            cursors_db=os.getenv("CURSORS_DB", "cursors.db"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Synchronization configuration.

    Attributes:
        share_zone_name: Owned zone that can hold shared records
        include_default_zone: Also sync the owned default zone
        sync_on_startup: Trigger a pass when the service starts
        sync_interval_s: Seconds between periodic passes (0 disables)
        sync_log_limit: Lines kept in each record's sync log
    """

    share_zone_name: str = "SimplyHealthShareZone"
    include_default_zone: bool = True
    sync_on_startup: bool = True
    sync_interval_s: float = 0.0
    sync_log_limit: int = 50

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            share_zone_name=os.getenv("SYNC_SHARE_ZONE", "SimplyHealthShareZone"),
            include_default_zone=_env_bool("SYNC_INCLUDE_DEFAULT_ZONE", "true"),
            sync_on_startup=_env_bool("SYNC_ON_STARTUP", "true"),
            sync_interval_s=float(os.getenv("SYNC_INTERVAL_S", "0")),
            sync_log_limit=int(os.getenv("SYNC_LOG_LIMIT", "50")),
        )


@dataclass(frozen=True)
class ApiConfig:
    """HTTP surface configuration.

    Attributes:
        host: Bind host
        port: Bind port
        cors_origins: Allowed CORS origins
    """

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)

    @classmethod
    def from_env(cls) -> ApiConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("API_CORS_ORIGINS", "http://localhost:3000")
        return cls(
            host=os.getenv("API_HOST", "127.0.0.1"),
            port=int(os.getenv("API_PORT", "8080")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "json" or "text"
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class AppConfig:
    """Complete service configuration.

    Attributes:
        remote_backend: Which remote backing store to talk to
        remote: Remote backing store configuration
        storage: Local storage configuration
        sync: Synchronization configuration
        api: HTTP surface configuration
        observability: Observability configuration
    """

    remote_backend: RemoteBackend = RemoteBackend.CLOUDKIT
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load complete configuration from environment variables.

        Raises:
            ConfigurationError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("REMOTE_BACKEND", "cloudkit").lower()
        try:
            remote_backend = RemoteBackend(backend_str)
        except ValueError:
            raise ConfigurationError(
                f"Invalid REMOTE_BACKEND '{backend_str}'. Must be one of: cloudkit, memory",
                setting="REMOTE_BACKEND",
            )

        config = cls(
            remote_backend=remote_backend,
            remote=RemoteConfig.from_env(),
            storage=StorageConfig.from_env(),
            sync=SyncConfig.from_env(),
            api=ApiConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if self.remote_backend == RemoteBackend.CLOUDKIT:
            if not self.remote.api_token:
                raise ConfigurationError(
                    "REMOTE_API_TOKEN is required when REMOTE_BACKEND=cloudkit",
                    setting="REMOTE_API_TOKEN",
                )
            if self.remote.environment not in ("development", "production"):
                raise ConfigurationError(
                    "REMOTE_ENVIRONMENT must be 'development' or 'production'",
                    setting="REMOTE_ENVIRONMENT",
                )

        if self.remote.results_limit <= 0:
            raise ConfigurationError(
                "REMOTE_RESULTS_LIMIT must be positive", setting="REMOTE_RESULTS_LIMIT"
            )
        if self.sync.sync_log_limit <= 0:
            raise ConfigurationError("SYNC_LOG_LIMIT must be positive", setting="SYNC_LOG_LIMIT")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Configuration loaded",
            extra={
                "remote_backend": self.remote_backend.value,
                "remote_base_url": self.remote.base_url
                if self.remote_backend == RemoteBackend.CLOUDKIT
                else None,
                "container_id": self.remote.container_id,
                "environment": self.remote.environment,
                "data_dir": self.storage.data_dir,
                "share_zone": self.sync.share_zone_name,
                "sync_interval_s": self.sync.sync_interval_s,
                "api_bind": f"{self.api.host}:{self.api.port}",
                "log_level": self.observability.log_level,
            },
        )

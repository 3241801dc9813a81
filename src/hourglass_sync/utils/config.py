"""Configuration management for the Hourglass sync service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class Config:
    """
    Server configuration.

    Loaded from environment variables with sensible defaults.
    """

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False

    # Storage settings
    storage_backend: str = "sqlite"  # memory, sqlite
    sqlite_path: str = "hourglass_sync.db"

    # Identity providers.  The primary provider verifies bearer tokens, the
    # secondary provider verifies third-party OAuth access tokens.
    primary_userinfo_url: str | None = None
    primary_api_key: str | None = None
    secondary_userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    auth_timeout: float = 10.0
    # Accept any non-empty token as the user ID (local development only)
    trust_tokens: bool = False

    # Maximum accepted document size in bytes
    max_document_bytes: int = 5 * 1024 * 1024

    # CORS settings
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:*", "http://127.0.0.1:*"]
    )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""

        def get_bool(key: str, default: bool) -> bool:
            value = os.getenv(key)
            if value is None:
                return default
            return value.lower() in ("true", "1", "yes")

        def get_int(key: str, default: int) -> int:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def get_float(key: str, default: float) -> float:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        def get_list(key: str, default: list[str]) -> list[str]:
            value = os.getenv(key)
            if value is None:
                return default
            return [s.strip() for s in value.split(",") if s.strip()]

        return cls(
            host=os.getenv("HOURGLASS_HOST", "127.0.0.1"),
            port=get_int("HOURGLASS_PORT", 8000),
            debug=get_bool("HOURGLASS_DEBUG", False),
            storage_backend=os.getenv("HOURGLASS_STORAGE", "sqlite"),
            sqlite_path=os.getenv("HOURGLASS_SQLITE_PATH", "hourglass_sync.db"),
            primary_userinfo_url=os.getenv("HOURGLASS_PRIMARY_USERINFO_URL"),
            primary_api_key=os.getenv("HOURGLASS_PRIMARY_API_KEY"),
            secondary_userinfo_url=os.getenv(
                "HOURGLASS_SECONDARY_USERINFO_URL",
                "https://www.googleapis.com/oauth2/v2/userinfo",
            ),
            auth_timeout=get_float("HOURGLASS_AUTH_TIMEOUT", 10.0),
            trust_tokens=get_bool("HOURGLASS_TRUST_TOKENS", False),
            max_document_bytes=get_int("HOURGLASS_MAX_DOCUMENT_BYTES", 5 * 1024 * 1024),
            cors_origins=get_list(
                "HOURGLASS_CORS_ORIGINS",
                ["http://localhost:*", "http://127.0.0.1:*"],
            ),
        )


# Singleton config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None

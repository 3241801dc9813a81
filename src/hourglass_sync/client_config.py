"""Client configuration for the hsync command line tool.

Stored at ``~/.hourglass/config.toml`` (override the directory with the
``HOURGLASS_DIR`` environment variable)::

    version = "1.0"

    [server]
    url = "http://localhost:8000"
    timeout = 30.0

    [auth]
    provider = "primary"
    token = "..."

    [sync]
    debounce_seconds = 1.0
    realtime = true
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hourglass_sync.core.identity import Credential, ProviderKind
from hourglass_sync.sync.uploader import DEFAULT_DEBOUNCE_SECONDS

logger = logging.getLogger(__name__)

LOCAL_STORE_FILE = "local_store.json"


def get_hourglass_dir() -> Path:
    """Get the client data directory.

    Priority:
    1. HOURGLASS_DIR environment variable
    2. ~/.hourglass/
    """
    env_dir = os.environ.get("HOURGLASS_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".hourglass"


def _toml_str(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes
    return json.dumps(value)


@dataclass
class ClientConfig:
    """Configuration for one client installation."""

    data_dir: Path = field(default_factory=get_hourglass_dir)

    server_url: str = "http://localhost:8000"
    timeout: float = 30.0

    provider: ProviderKind = ProviderKind.PRIMARY
    token: str | None = None

    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    realtime: bool = True

    version: str = "1.0"

    @classmethod
    def load(cls, config_path: Path | None = None) -> ClientConfig:
        """Load configuration from file, or defaults if it doesn't exist."""
        if config_path is None:
            data_dir = get_hourglass_dir()
            config_path = data_dir / "config.toml"
        else:
            data_dir = config_path.parent

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        server: dict[str, Any] = data.get("server", {})
        auth: dict[str, Any] = data.get("auth", {})
        sync: dict[str, Any] = data.get("sync", {})

        try:
            provider = ProviderKind(auth.get("provider", ProviderKind.PRIMARY))
        except ValueError:
            logger.warning("Unknown auth provider %r in %s, using primary", auth.get("provider"), config_path)
            provider = ProviderKind.PRIMARY

        return cls(
            data_dir=data_dir,
            server_url=server.get("url", "http://localhost:8000"),
            timeout=float(server.get("timeout", 30.0)),
            provider=provider,
            token=auth.get("token") or None,
            debounce_seconds=float(sync.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)),
            realtime=bool(sync.get("realtime", True)),
            version=data.get("version", "1.0"),
        )

    def save(self) -> None:
        """Save configuration to TOML file (atomic write via temp+rename)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        lines = [
            "# Hourglass sync client configuration",
            "",
            f"version = {_toml_str(self.version)}",
            "",
            "[server]",
            f"url = {_toml_str(self.server_url)}",
            f"timeout = {float(self.timeout)}",
            "",
            "[auth]",
            f"provider = {_toml_str(self.provider.value)}",
        ]
        if self.token:
            lines.append(f"token = {_toml_str(self.token)}")
        lines += [
            "",
            "[sync]",
            f"debounce_seconds = {float(self.debounce_seconds)}",
            f"realtime = {'true' if self.realtime else 'false'}",
        ]

        content = "\n".join(lines) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=str(self.data_dir), suffix=".toml.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(self.config_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"

    @property
    def local_store_path(self) -> Path:
        return self.data_dir / LOCAL_STORE_FILE

    @property
    def credential(self) -> Credential | None:
        if not self.token:
            return None
        return Credential(self.provider, self.token)

"""Client identity for multi-device sync.

Each installation persists a generated client ID so realtime echoes of its
own uploads can be recognized across restarts.  The ID travels in the
``X-Client-ID`` header and the WebSocket handshake, so it is restricted to a
header-safe alphabet.
"""

from __future__ import annotations

import logging
import platform
import re
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)

CLIENT_ID_FILE = "client_id"

_CLIENT_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,64}")


def is_valid_client_id(value: str) -> bool:
    return _CLIENT_ID_RE.fullmatch(value) is not None


def get_client_id(config_dir: Path) -> str:
    """Return the persistent client ID for this installation.

    Reads the ID from ``{config_dir}/client_id``.  A missing, unreadable or
    malformed file is replaced by a new 16-character hex ID.
    """
    id_path = config_dir / CLIENT_ID_FILE

    if id_path.exists():
        try:
            existing = id_path.read_text(encoding="utf-8").strip()
        except OSError:
            logger.debug("Could not read %s, generating a new client ID", id_path)
        else:
            if is_valid_client_id(existing):
                return existing
            if existing:
                logger.warning("Ignoring malformed client ID in %s", id_path)

    new_id = uuid4().hex[:16]

    config_dir.mkdir(parents=True, exist_ok=True)
    id_path.write_text(new_id, encoding="utf-8")
    logger.info("Registered new client ID %s", new_id)

    return new_id


def get_device_name() -> str:
    """Hostname shown next to the client ID in ``hsync status``."""
    name = platform.node()
    return name if name else "unknown"

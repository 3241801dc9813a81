"""Remote document service (FastAPI)."""

from hourglass_sync.server.app import create_app

__all__ = ["create_app"]

"""API routes for the Hourglass sync server."""

from hourglass_sync.server.routes.document import router as document_router
from hourglass_sync.server.routes.realtime import router as realtime_router

__all__ = [
    "document_router",
    "realtime_router",
]

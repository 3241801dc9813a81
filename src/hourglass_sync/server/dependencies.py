"""Shared dependencies for API routes."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Request

from hourglass_sync.core.identity import IdentityResolver, UserIdentity
from hourglass_sync.errors import Unauthenticated
from hourglass_sync.server.auth import credentials_from_request
from hourglass_sync.storage.remote_store import RemoteDocumentStore

logger = logging.getLogger(__name__)


async def get_remote_store() -> RemoteDocumentStore:
    """
    Dependency to get the remote document store.

    This is overridden by the application at startup.
    """
    raise NotImplementedError("Remote store not configured")


async def get_identity_resolver() -> IdentityResolver:
    """
    Dependency to get the identity resolver.

    This is overridden by the application at startup.
    """
    raise NotImplementedError("Identity resolver not configured")


async def get_identity(
    request: Request,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> UserIdentity:
    """Resolve the caller to exactly one identity, primary scheme first."""
    for credential in credentials_from_request(request):
        identity = await resolver.resolve(credential)
        if identity is not None:
            return identity
    raise Unauthenticated("Not authenticated", status_code=401)

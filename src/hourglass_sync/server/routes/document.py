"""Remote document API endpoints."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header

from hourglass_sync.core.identity import UserIdentity
from hourglass_sync.errors import DocumentNotFound, SyncError
from hourglass_sync.server.dependencies import get_identity, get_remote_store
from hourglass_sync.server.models import DocumentResponse, ErrorResponse, PutDocumentRequest
from hourglass_sync.storage.remote_store import RemoteDocumentStore
from hourglass_sync.utils.config import get_config

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sync",
    tags=["sync"],
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


@router.get(
    "/document",
    response_model=DocumentResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Fetch the caller's document",
)
async def get_document(
    identity: Annotated[UserIdentity, Depends(get_identity)],
    store: Annotated[RemoteDocumentStore, Depends(get_remote_store)],
) -> DocumentResponse:
    """Return the caller's document and when it was last written."""
    try:
        record = await store.get(identity)
    except Exception as e:
        logger.error("Failed to fetch document for %s", identity.key, exc_info=True)
        raise SyncError("Failed to fetch data", status_code=500) from e

    if record is None:
        raise DocumentNotFound("No document stored", status_code=404)

    return DocumentResponse(document=record.document, updated_at=record.updated_at)


@router.post(
    "/document",
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
    summary="Replace the caller's document",
)
async def put_document(
    request: PutDocumentRequest,
    identity: Annotated[UserIdentity, Depends(get_identity)],
    store: Annotated[RemoteDocumentStore, Depends(get_remote_store)],
    client_id: Annotated[str | None, Header(alias="X-Client-ID")] = None,
) -> dict[str, Any]:
    """Upsert the full document. The last writer wins."""
    if request.data is None:
        raise SyncError("Data is required", status_code=400)

    size = len(json.dumps(request.data).encode("utf-8"))
    limit = get_config().max_document_bytes
    if size > limit:
        raise SyncError(f"Document too large ({size} bytes, limit {limit})", status_code=413)

    try:
        await store.put(identity, request.data, source_client_id=client_id)
    except Exception as e:
        logger.error("Failed to save document for %s", identity.key, exc_info=True)
        raise SyncError("Failed to save data", status_code=500) from e

    return {}

"""Debounced uploader: coalesce bursts of local changes into one upload."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

from hourglass_sync.core.document import collect_document
from hourglass_sync.core.identity import AuthCapability
from hourglass_sync.errors import SyncError
from hourglass_sync.storage.observable import ObservableStore
from hourglass_sync.sync.protocol import DocumentApi, UploaderState, describe
from hourglass_sync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0


class DebouncedUploader:
    """Upload the whole local document after a quiet period.

    ``schedule()`` (re)starts a single timer; only the state present when
    the timer finally expires is sent.  At most one upload is in flight: a
    timer expiring during an upload is dropped, and the next qualifying
    change schedules again.  Failures are logged, never raised, never
    retried, and never touch local data.
    """

    def __init__(
        self,
        store: ObservableStore,
        api: DocumentApi,
        auth: AuthCapability,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._store = store
        self._api = api
        self._auth = auth
        self._debounce_seconds = debounce_seconds

        self._timer: asyncio.Task[None] | None = None
        self._in_flight = False
        self._pending_requests: set[asyncio.Task[Any]] = set()

        self.upload_count = 0
        self.failure_count = 0
        self.dropped_count = 0
        self.last_error: str | None = None
        self.last_uploaded_at: datetime | None = None

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def state(self) -> UploaderState:
        if self._in_flight:
            return UploaderState.UPLOADING
        if self._timer is not None and not self._timer.done():
            return UploaderState.SCHEDULED
        return UploaderState.IDLE

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def schedule(self) -> bool:
        """(Re)start the debounce timer if a user is signed in.

        Returns:
            True if a timer is now pending, False if nobody is signed in.
        """
        credential = await self._auth.get_current_identity()
        if credential is None:
            logger.debug("No identity, upload not scheduled")
            return False

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._expire_after_delay())
        return True

    def request_schedule(self, *_: Any) -> None:
        """Fire-and-forget :meth:`schedule` from synchronous code (store listeners)."""
        try:
            task = asyncio.get_running_loop().create_task(self.schedule())
        except RuntimeError:
            logger.debug("No running event loop, upload not scheduled")
            return
        self._pending_requests.add(task)
        task.add_done_callback(self._pending_requests.discard)

    def cancel(self) -> None:
        """Drop the pending timer, if any. An upload already in flight continues."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def flush(self) -> None:
        """Upload immediately if a timer is pending."""
        if self._pending_requests:
            await asyncio.gather(*self._pending_requests, return_exceptions=True)
        if self._timer is None or self._timer.done():
            return
        self.cancel()
        await self._upload()

    async def wait_idle(self) -> None:
        """Wait until no schedule request, timer or upload is outstanding."""
        while True:
            if self._pending_requests:
                await asyncio.gather(*self._pending_requests, return_exceptions=True)
                continue
            timer = self._timer
            if timer is not None and not timer.done():
                try:
                    await timer
                except asyncio.CancelledError:
                    # Replaced by a newer timer; loop picks it up
                    pass
                continue
            if self._in_flight:
                await asyncio.sleep(0.01)
                continue
            return

    async def _expire_after_delay(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        # Detach before uploading so a reschedule cannot cancel the upload
        self._timer = None
        await self._upload()

    async def _upload(self) -> None:
        if self._in_flight:
            self.dropped_count += 1
            logger.debug("Upload already in flight, dropping expired timer")
            return

        self._in_flight = True
        try:
            credential = await self._auth.get_current_identity()
            if credential is None:
                logger.debug("Identity gone before upload, skipping")
                return

            document = collect_document(self._store)
            # Fail here rather than inside the transport on unserializable data
            json.dumps(document)

            await self._api.push(credential, document)
            self.upload_count += 1
            self.last_uploaded_at = utcnow()
            self.last_error = None
            logger.info("Auto-sync uploaded %s", describe(document))
        except (SyncError, TypeError, ValueError) as e:
            self.failure_count += 1
            self.last_error = str(e)
            logger.warning("Auto-sync upload failed: %s", e)
        except Exception as e:
            self.failure_count += 1
            self.last_error = str(e)
            logger.error("Auto-sync upload failed unexpectedly", exc_info=True)
        finally:
            self._in_flight = False

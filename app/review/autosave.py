"""
Debounced autosave of staged-asset edits.

Edits arriving in quick succession are coalesced per asset id and written
once the session has been quiet for AUTOSAVE_DEBOUNCE_MS. At most one save
is in flight per session. Failed writes stay queued for the next flush;
edits the store refuses are dropped and recorded in `rejected`.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from app.config import settings
from app.review.staging import StagingError, coalesce_patches
from app.schemas.assets import StagedAssetPatch

logger = structlog.get_logger(__name__)

SaveFn = Callable[[list[StagedAssetPatch]], Awaitable[int]]


def is_rejection(error: Exception) -> bool:
    """The store refused the edit itself, so resending it cannot succeed."""
    return isinstance(error, StagingError) and error.http_status < 500


class DebouncedAutosaver:

    def __init__(self, save: SaveFn, debounce_ms: Optional[int] = None):
        self._save = save
        self.debounce_ms = settings.AUTOSAVE_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._pending: dict[str, StagedAssetPatch] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self.last_error: Optional[Exception] = None
        self.rejected: dict[str, str] = {}  # asset id -> error code

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, patch: StagedAssetPatch) -> None:
        """Queue a patch and restart the quiet-period timer."""
        existing = self._pending.get(patch.id)
        self._pending[patch.id] = existing.merged_with(patch) if existing else patch
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_ms / 1000, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._inflight = asyncio.ensure_future(self._save_from_timer())

    async def _save_from_timer(self) -> None:
        try:
            await self._save_pending()
        except Exception as e:
            # transient failures stay queued for flush(); refused patches are dropped
            self.last_error = e
            logger.error("autosave_failed", error=str(e), pending=self.pending_count)

    async def _save_pending(self) -> int:
        async with self._lock:
            if not self._pending:
                return 0
            batch = list(self._pending.values())
            self._pending = {}
            try:
                saved = await self._save(batch)
            except Exception as e:
                if not is_rejection(e):
                    self._requeue(batch)
                    raise
                if len(batch) == 1:
                    self._reject(batch[0], e)
                    raise
                saved, rejection = await self._save_each(batch)
                if rejection is not None:
                    raise rejection
            self.last_error = None
            logger.debug("autosave_written", patches=len(batch), saved=saved)
            return saved

    async def _save_each(self, batch: list[StagedAssetPatch]) -> tuple[int, Optional[Exception]]:
        """Save a refused batch patch by patch so only the offending edits are dropped."""
        saved = 0
        first_rejection: Optional[Exception] = None
        for index, patch in enumerate(batch):
            try:
                saved += await self._save([patch])
            except Exception as e:
                if not is_rejection(e):
                    self._requeue(batch[index:])
                    raise
                self._reject(patch, e)
                first_rejection = first_rejection or e
        return saved, first_rejection

    def _reject(self, patch: StagedAssetPatch, error: StagingError) -> None:
        self.rejected[patch.id] = error.error_code
        logger.warning("autosave_patch_rejected", asset_id=patch.id, error_code=error.error_code, error=error.message)

    def _requeue(self, batch: list[StagedAssetPatch]) -> None:
        newer = self._pending
        self._pending = {p.id: p for p in coalesce_patches(batch + list(newer.values()))}

    async def flush(self) -> int:
        """Write everything queued now. Raises the save error, or the first refusal after saving the rest."""
        self._cancel_timer()
        if self._inflight is not None and not self._inflight.done():
            await self._inflight
        self._inflight = None
        return await self._save_pending()

    def cancel(self) -> int:
        """Drop queued patches without saving. Returns how many were dropped."""
        self._cancel_timer()
        dropped = len(self._pending)
        self._pending = {}
        return dropped

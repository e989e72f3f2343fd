"""
Tests for debounced autosave.
"""

import asyncio

import pytest

from app.review.autosave import DebouncedAutosaver, is_rejection
from app.review.staging import StagingError
from app.schemas.assets import StagedAssetPatch


class RecordingSave:
    def __init__(self, fail_times: int = 0):
        self.batches: list[list[StagedAssetPatch]] = []
        self.fail_times = fail_times

    async def __call__(self, patches):
        if self.fail_times:
            self.fail_times -= 1
            raise RuntimeError("store unavailable")
        self.batches.append(patches)
        return len(patches)


class RefusingSave(RecordingSave):
    """Refuses any batch holding a patch for one of the given ids, like an invalid subclass edit."""

    def __init__(self, refused_ids, fail_times: int = 0):
        super().__init__(fail_times)
        self.refused_ids = set(refused_ids)
        self.attempts: list[list[str]] = []

    async def __call__(self, patches):
        self.attempts.append([p.id for p in patches])
        if any(p.id in self.refused_ids for p in patches):
            raise StagingError("Subclass mismatch", "SUBCLASS_CLASS_MISMATCH")
        return await super().__call__(patches)


class TestDebouncedAutosaver:

    async def test_quiet_period_writes_once(self):
        save = RecordingSave()
        saver = DebouncedAutosaver(save, debounce_ms=20)
        saver.schedule(StagedAssetPatch(id="a", name="First"))
        saver.schedule(StagedAssetPatch(id="a", notes="pledged"))
        saver.schedule(StagedAssetPatch(id="b", is_selected=False))
        assert saver.pending_count == 2

        await asyncio.sleep(0.1)

        assert len(save.batches) == 1
        written = {p.id: p.changes() for p in save.batches[0]}
        assert written == {"a": {"name": "First", "notes": "pledged"}, "b": {"is_selected": False}}
        assert saver.pending_count == 0

    async def test_new_edit_restarts_timer(self):
        save = RecordingSave()
        saver = DebouncedAutosaver(save, debounce_ms=100)
        saver.schedule(StagedAssetPatch(id="a", name="One"))
        await asyncio.sleep(0.05)
        saver.schedule(StagedAssetPatch(id="a", name="Two"))
        await asyncio.sleep(0.06)
        assert save.batches == []

        await asyncio.sleep(0.2)
        assert [p.name for p in save.batches[0]] == ["Two"]

    async def test_flush_writes_now(self):
        save = RecordingSave()
        saver = DebouncedAutosaver(save, debounce_ms=10_000)
        saver.schedule(StagedAssetPatch(id="a", name="X"))

        assert await saver.flush() == 1
        assert len(save.batches) == 1
        assert await saver.flush() == 0

    async def test_failed_save_keeps_patches(self):
        save = RecordingSave(fail_times=1)
        saver = DebouncedAutosaver(save, debounce_ms=10_000)
        saver.schedule(StagedAssetPatch(id="a", name="X"))

        with pytest.raises(RuntimeError):
            await saver.flush()
        assert saver.pending_count == 1

        assert await saver.flush() == 1
        assert save.batches[0][0].name == "X"

    async def test_timer_failure_recorded_and_retried_by_flush(self):
        save = RecordingSave(fail_times=1)
        saver = DebouncedAutosaver(save, debounce_ms=10)
        saver.schedule(StagedAssetPatch(id="a", name="X"))
        await asyncio.sleep(0.05)

        assert isinstance(saver.last_error, RuntimeError)
        assert saver.pending_count == 1
        assert await saver.flush() == 1
        assert saver.last_error is None

    async def test_cancel_drops_pending(self):
        save = RecordingSave()
        saver = DebouncedAutosaver(save, debounce_ms=10)
        saver.schedule(StagedAssetPatch(id="a", name="X"))
        saver.schedule(StagedAssetPatch(id="b", name="Y"))

        assert saver.cancel() == 2
        await asyncio.sleep(0.05)
        assert save.batches == []


class TestRefusedEdits:

    def test_rejection_is_a_client_side_staging_error(self):
        assert is_rejection(StagingError("bad", "SUBCLASS_CLASS_MISMATCH"))
        assert is_rejection(StagingError("gone", "SESSION_EXPIRED", 410))
        assert not is_rejection(StagingError("db", "UPDATE_FAILED", 500))
        assert not is_rejection(RuntimeError("store unavailable"))

    async def test_refused_patch_does_not_block_later_edits(self):
        save = RefusingSave({"a1"})
        saver = DebouncedAutosaver(save, debounce_ms=10_000)
        saver.schedule(StagedAssetPatch(id="a1", asset_subclass="bogus"))

        with pytest.raises(StagingError):
            await saver.flush()
        assert saver.pending_count == 0
        assert saver.rejected == {"a1": "SUBCLASS_CLASS_MISMATCH"}

        saver.schedule(StagedAssetPatch(id="a2", notes="pledged"))
        assert await saver.flush() == 1
        assert save.attempts == [["a1"], ["a2"]]
        assert await saver.flush() == 0

    async def test_refused_patch_dropped_from_mixed_batch(self):
        save = RefusingSave({"bad"})
        saver = DebouncedAutosaver(save, debounce_ms=10_000)
        saver.schedule(StagedAssetPatch(id="good", name="Axis Large Cap"))
        saver.schedule(StagedAssetPatch(id="bad", asset_subclass="bogus"))
        saver.schedule(StagedAssetPatch(id="other", is_selected=False))

        with pytest.raises(StagingError):
            await saver.flush()

        assert [[p.id for p in batch] for batch in save.batches] == [["good"], ["other"]]
        assert saver.rejected == {"bad": "SUBCLASS_CLASS_MISMATCH"}
        assert saver.pending_count == 0

    async def test_server_side_staging_error_stays_queued(self):
        class FailingStore(RecordingSave):
            async def __call__(self, patches):
                if self.fail_times:
                    self.fail_times -= 1
                    raise StagingError("Failed to save changes", "UPDATE_FAILED", 500)
                return await super().__call__(patches)

        save = FailingStore(fail_times=1)
        saver = DebouncedAutosaver(save, debounce_ms=10_000)
        saver.schedule(StagedAssetPatch(id="a", name="X"))

        with pytest.raises(StagingError):
            await saver.flush()
        assert saver.pending_count == 1
        assert saver.rejected == {}
        assert await saver.flush() == 1

    async def test_refusal_from_timer_is_recorded(self):
        save = RefusingSave({"a"})
        saver = DebouncedAutosaver(save, debounce_ms=10)
        saver.schedule(StagedAssetPatch(id="a", asset_subclass="bogus"))
        await asyncio.sleep(0.05)

        assert isinstance(saver.last_error, StagingError)
        assert saver.pending_count == 0
        assert await saver.flush() == 0

"""
Tests for the pipeline boundary: every call returns a response record.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.pipeline.service import AssetPipelineService
from app.schemas.api import DuplicateDecision, FinalizeOptions, IncomingFile
from app.schemas.assets import StagedAssetPatch
from app.schemas.records import SnapshotRecord
from tests.conftest import make_match, make_staged, seed_session


@pytest.fixture
def service(repository, taxonomy):
    return AssetPipelineService(repository, taxonomy, debounce_ms=10_000)


def staged_pair():
    return [
        make_staged("a", "Axis Bluechip", "40000"),
        make_staged("b", "Axis Bluechip Fund", "1000", is_duplicate=True, is_selected=False,
                    duplicate_matches=[make_match("a", "Axis Bluechip", "40000", match_type="name")]),
    ]


class TestCreate:

    async def test_seeds_taxonomy(self, repository):
        service = await AssetPipelineService.create(repository)
        assert repository.mappings
        assert service.taxonomy.get("ppf") is not None


class TestIngestBoundary:

    async def test_success(self, service, holdings_csv):
        response = await service.ingest("user-1", [IncomingFile(file_name="h.csv", content=holdings_csv)])
        assert response.success
        assert response.summary.total_assets == 3

    async def test_failure_is_a_record(self, service):
        response = await service.ingest("user-1", [])
        assert not response.success
        assert response.error_code == "NO_FILES"
        assert response.summary is None

    async def test_failed_batch_keeps_summary(self, service):
        response = await service.ingest("user-1", [IncomingFile(file_name="a.txt", content=b"x" * 100)])
        assert response.error_code == "ALL_FILES_FAILED"
        assert response.summary.file_details[0].error_code == "UNSUPPORTED_FORMAT"

    async def test_unexpected_error_is_internal(self, service, repository, holdings_csv):
        async def broken(*args, **kwargs):
            raise RuntimeError("connection reset")

        repository.list_holding_summaries = broken
        response = await service.ingest("user-1", [IncomingFile(file_name="h.csv", content=holdings_csv)])
        assert not response.success
        assert response.error_code == "INTERNAL_ERROR"
        assert response.error == "Internal error"


class TestReviewBoundary:

    async def test_review(self, service, repository):
        upload = seed_session(repository, staged_pair())
        response = await service.review("user-1", upload.id)
        assert response.success
        assert [a.id for a in response.assets] == ["a", "b"]

    async def test_review_missing(self, service):
        response = await service.review("user-1", "tmp_nope")
        assert response.error_code == "SESSION_NOT_FOUND"

    async def test_immediate_update(self, service, repository):
        upload = seed_session(repository, staged_pair())
        response = await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", notes="sip")])
        assert response.updated_count == 1
        assert repository.staged[upload.id][0].notes == "sip"

    async def test_debounced_update_flushed_by_review(self, service, repository):
        upload = seed_session(repository, staged_pair())
        response = await service.update_staged(
            "user-1", upload.id,
            [StagedAssetPatch(id="a", current_value=Decimal("42000")), StagedAssetPatch(id="a", notes="sip")],
            debounce=True,
        )
        assert response.pending_count == 1
        assert repository.staged[upload.id][0].current_value == Decimal("40000")

        review = await service.review("user-1", upload.id)
        assert review.assets[0].current_value == Decimal("42000")
        assert review.assets[0].notes == "sip"

    async def test_debounced_update_on_closed_session(self, service, repository):
        upload = seed_session(repository, staged_pair(), status="completed")
        response = await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", notes="x")], debounce=True)
        assert response.error_code == "SESSION_FINALIZED"

    async def test_deselect(self, service, repository):
        upload = seed_session(repository, staged_pair())
        response = await service.deselect("user-1", upload.id, ["a"])
        assert response.updated_count == 1
        assert not repository.staged[upload.id][0].is_selected

    async def test_duplicates_and_resolution(self, service, repository):
        upload = seed_session(repository, staged_pair())
        duplicates = await service.get_duplicates("user-1", upload.id)
        assert [g.id for g in duplicates.groups] == ["group-0"]
        assert duplicates.stats.duplicates_found == 1

        resolved = await service.resolve_duplicates(
            "user-1", upload.id, [DuplicateDecision(group_id="group-0", action="keep_both")],
        )
        assert resolved.success
        assert all(a.is_selected for a in resolved.assets)

    async def test_cancel_then_edit(self, service, repository):
        upload = seed_session(repository, staged_pair())
        assert (await service.cancel("user-1", upload.id)).success
        response = await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", notes="x")])
        assert response.error_code == "SESSION_CANCELLED"


class TestFinalizeBoundary:

    async def test_nothing_selected(self, service, repository):
        response = await service.finalize("user-1", "tmp_any", FinalizeOptions())
        assert response.error_code == "NO_ASSETS_SELECTED"
        assert repository.calls == []

    async def test_pending_edits_saved_before_commit(self, service, repository):
        upload = seed_session(repository, staged_pair())
        await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", name="Axis Large Cap")],
                                    debounce=True)
        response = await service.finalize("user-1", upload.id, FinalizeOptions(selected_asset_ids=["a"]))

        assert response.success
        assert [h.name for h in repository.holdings.values()] == ["Axis Large Cap"]

    async def test_refused_debounced_edit_does_not_block_session(self, service, repository):
        upload = seed_session(repository, staged_pair())
        await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="b", asset_subclass="bogus")],
                                    debounce=True)

        first = await service.review("user-1", upload.id)
        assert first.error_code == "SUBCLASS_CLASS_MISMATCH"

        await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", name="Axis Large Cap")],
                                    debounce=True)
        assert (await service.review("user-1", upload.id)).success
        response = await service.finalize("user-1", upload.id, FinalizeOptions(selected_asset_ids=["a"]))

        assert response.success
        assert [h.name for h in repository.holdings.values()] == ["Axis Large Cap"]


class TestSnapshotBoundary:

    @pytest.fixture(autouse=True)
    def snapshots(self, repository):
        for snap_id, day in (("snap-a", date(2024, 3, 31)), ("snap-b", date(2024, 2, 29))):
            repository.snapshots[snap_id] = SnapshotRecord(
                id=snap_id, user_id="user-1", snapshot_date=datetime(2024, 4, 1, tzinfo=timezone.utc),
                statement_date=day,
            )

    async def test_list(self, service):
        response = await service.list_snapshots("user-1")
        assert [s.id for s in response.snapshots] == ["snap-a", "snap-b"]

    async def test_nearby(self, service):
        response = await service.nearby_snapshots("user-1", "2024-04-05")
        assert response.statement_date == date(2024, 4, 5)
        assert [s.id for s in response.nearby_snapshots] == ["snap-a"]
        assert response.suggested_merge_id == "snap-a"
        assert response.days_to_nearest == 5

    async def test_nearby_invalid_date(self, service):
        response = await service.nearby_snapshots("user-1", "05/04/2024")
        assert not response.success
        assert response.error_code == "INVALID_STATEMENT_DATE"


class TestAutosaveRegistry:

    async def test_expired_session_saver_dropped(self, service, repository):
        upload = seed_session(repository, staged_pair())
        await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", notes="x")], debounce=True)
        assert len(service.autosave) == 1

        assert service.autosave.prune(now=upload.expires_at + timedelta(seconds=1)) == 1
        assert len(service.autosave) == 0

    async def test_live_session_saver_kept(self, service, repository):
        upload = seed_session(repository, staged_pair())
        await service.update_staged("user-1", upload.id, [StagedAssetPatch(id="a", notes="x")], debounce=True)

        assert service.autosave.prune() == 0
        assert service.autosave.for_session(upload).pending_count == 1

    async def test_purge_drops_savers_of_expired_sessions(self, service, repository):
        upload = seed_session(repository, staged_pair())
        saver = service.autosave.for_session(upload)
        saver.schedule(StagedAssetPatch(id="a", notes="x"))
        repository.uploads[upload.id] = upload.model_copy(update={"expires_at": datetime(2024, 1, 1, tzinfo=timezone.utc)})
        service.autosave.for_session(repository.uploads[upload.id])

        assert await service.purge_expired() == 1
        assert len(service.autosave) == 0
        assert saver.pending_count == 0

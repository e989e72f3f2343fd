"""
Shared test fixtures.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import pytest

from app.models.enums import UploadStatus
from app.oracles.classification import ClassificationOracle, OracleError
from app.oracles.security_lookup import SecurityLookupOracle
from app.pipeline.taxonomy import SubclassMapping, Taxonomy
from app.schemas.assets import DuplicateMatch, RawAsset, StagedAsset
from app.schemas.contracts import HoldingSummary, LookupResult
from app.schemas.records import HoldingRecord, SnapshotRecord, TempUploadRecord, UploadLogRecord
from app.storage.repository import AssetRepository, RepositoryError


class InMemoryAssetRepository(AssetRepository):
    """
    Dict-backed repository. Operations named in fail_on raise RepositoryError,
    which is how the tests drive the failure paths.
    """

    def __init__(self):
        self.snapshots: dict[str, SnapshotRecord] = {}
        self.holdings: dict[str, HoldingRecord] = {}
        self.uploads: dict[str, TempUploadRecord] = {}
        self.staged: dict[str, list[StagedAsset]] = {}
        self.mappings: list[SubclassMapping] = []
        self.upload_logs: list[UploadLogRecord] = []
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise RepositoryError(f"{operation} failed: simulated")

    # ── Snapshots ────────────────────────────────────────────

    async def list_snapshots(self, user_id, limit):
        self._enter("list_snapshots")
        owned = [s for s in self.snapshots.values() if s.user_id == user_id]
        dated = sorted((s for s in owned if s.statement_date), key=lambda s: s.statement_date, reverse=True)
        undated = [s for s in owned if not s.statement_date]
        return (dated + undated)[:limit]

    async def get_snapshot(self, user_id, snapshot_id):
        self._enter("get_snapshot")
        snap = self.snapshots.get(snapshot_id)
        return snap if snap is not None and snap.user_id == user_id else None

    async def create_snapshot(self, snapshot):
        self._enter("create_snapshot")
        self.snapshots[snapshot.id] = snapshot
        return snapshot

    async def update_snapshot(self, snapshot):
        self._enter("update_snapshot")
        if snapshot.id in self.snapshots:
            self.snapshots[snapshot.id] = snapshot

    async def delete_snapshot(self, user_id, snapshot_id):
        self._enter("delete_snapshot")
        snap = self.snapshots.get(snapshot_id)
        if snap is None or snap.user_id != user_id:
            return
        del self.snapshots[snapshot_id]
        for hid in [h.id for h in self.holdings.values() if h.snapshot_id == snapshot_id]:
            del self.holdings[hid]

    # ── Holdings ─────────────────────────────────────────────

    async def list_holding_summaries(self, user_id, limit):
        self._enter("list_holding_summaries")
        owned = sorted(
            (h for h in self.holdings.values() if h.user_id == user_id),
            key=lambda h: h.created_at, reverse=True,
        )
        return [
            HoldingSummary(
                id=h.id,
                name=h.name,
                current_value=h.current_value,
                asset_class=h.asset_class,
                asset_subclass=h.asset_subclass,
                snapshot_id=h.snapshot_id,
                snapshot_name=getattr(self.snapshots.get(h.snapshot_id), "snapshot_name", None),
                source_file=h.source_file,
            )
            for h in owned[:limit]
        ]

    async def list_holdings(self, user_id, snapshot_id):
        self._enter("list_holdings")
        return [h for h in self.holdings.values() if h.user_id == user_id and h.snapshot_id == snapshot_id]

    async def insert_holdings(self, holdings):
        self._enter("insert_holdings")
        for h in holdings:
            self.holdings[h.id] = h

    async def delete_holdings(self, user_id, snapshot_id, holding_ids):
        self._enter("delete_holdings")
        removed = 0
        for hid in holding_ids:
            h = self.holdings.get(hid)
            if h is not None and h.user_id == user_id and h.snapshot_id == snapshot_id:
                del self.holdings[hid]
                removed += 1
        return removed

    # ── Review sessions ──────────────────────────────────────

    async def create_upload(self, upload):
        self._enter("create_upload")
        self.uploads[upload.id] = upload

    async def get_upload(self, user_id, upload_id):
        self._enter("get_upload")
        upload = self.uploads.get(upload_id)
        return upload if upload is not None and upload.user_id == user_id else None

    async def update_upload(self, upload):
        self._enter("update_upload")
        if upload.id in self.uploads:
            self.uploads[upload.id] = upload

    async def delete_upload(self, user_id, upload_id):
        self._enter("delete_upload")
        upload = self.uploads.get(upload_id)
        if upload is None or upload.user_id != user_id:
            return
        del self.uploads[upload_id]
        self.staged.pop(upload_id, None)

    async def list_expired_uploads(self, now, limit):
        self._enter("list_expired_uploads")
        expired = [
            u for u in self.uploads.values()
            if u.expires_at <= now and u.status != UploadStatus.COMPLETED.value
        ]
        return sorted(expired, key=lambda u: u.expires_at)[:limit]

    async def insert_staged_assets(self, user_id, upload_id, assets):
        self._enter("insert_staged_assets")
        self.staged.setdefault(upload_id, []).extend(assets)

    async def list_staged_assets(self, user_id, upload_id, asset_ids=None):
        self._enter("list_staged_assets")
        upload = self.uploads.get(upload_id)
        if upload is None or upload.user_id != user_id:
            return []
        assets = self.staged.get(upload_id, [])
        if asset_ids is not None:
            wanted = set(asset_ids)
            assets = [a for a in assets if a.id in wanted]
        return list(assets)

    async def update_staged_assets(self, user_id, upload_id, assets):
        self._enter("update_staged_assets")
        upload = self.uploads.get(upload_id)
        if upload is None or upload.user_id != user_id:
            return 0
        stored = self.staged.get(upload_id, [])
        index = {a.id: i for i, a in enumerate(stored)}
        updated = 0
        for asset in assets:
            if asset.id in index:
                stored[index[asset.id]] = asset
                updated += 1
        return updated

    # ── Taxonomy ─────────────────────────────────────────────

    async def list_subclass_mappings(self):
        self._enter("list_subclass_mappings")
        return list(self.mappings)

    async def seed_subclass_mappings(self, mappings):
        self._enter("seed_subclass_mappings")
        self.mappings = list(mappings)

    # ── Upload logs ──────────────────────────────────────────

    async def add_upload_log(self, log):
        self._enter("add_upload_log")
        self.upload_logs.append(log)


class ScriptedOracle(ClassificationOracle):
    """
    Answers from a queue. An OracleError in the queue is raised instead of
    returned; an empty queue raises ORACLE_EXHAUSTED.
    """

    def __init__(self, answers: Optional[list[Any]] = None, image_answers: Optional[list[Any]] = None):
        self.answers = list(answers or [])
        self.image_answers = list(image_answers or [])
        self.text_calls: list[dict] = []
        self.image_calls: list[dict] = []

    @property
    def is_enabled(self) -> bool:
        return True

    @staticmethod
    def _next(queue: list) -> Any:
        if not queue:
            raise OracleError("No scripted answer left", error_code="ORACLE_EXHAUSTED")
        answer = queue.pop(0)
        if isinstance(answer, OracleError):
            raise answer
        return answer

    async def classify_text(self, system_prompt, user_prompt, *, operation, model=None,
                            temperature=0.2, tracker=None):
        self.text_calls.append({"operation": operation, "user_prompt": user_prompt})
        return self._next(self.answers)

    async def classify_images(self, prompt, images, *, operation, model=None, tracker=None):
        self.image_calls.append({"operation": operation, "pages": len(images)})
        return self._next(self.image_answers)


class StaticSecurityLookup(SecurityLookupOracle):
    """Lookup answering from fixed ISIN and ticker tables."""

    def __init__(self, by_isin: Optional[dict] = None, by_ticker: Optional[dict] = None):
        self.by_isin = by_isin or {}
        self.by_ticker = by_ticker or {}

    async def lookup_by_isin(self, isin, security_name=None):
        return self.by_isin.get(isin, LookupResult.not_found())

    async def lookup_by_ticker(self, ticker, exchange=None):
        return self.by_ticker.get(ticker, LookupResult.not_found())


def make_raw(name: str, value: str = "10000", **kw) -> RawAsset:
    return RawAsset(name=name, current_value=Decimal(value), source_file=kw.pop("source_file", "stmt.csv"), **kw)


def make_staged(asset_id: str, name: str, value: str = "10000", **kw) -> StagedAsset:
    fields = {
        "asset_class": "equity",
        "asset_subclass": "direct_stocks",
        "risk_level": "very_high",
        "expected_return_pct": Decimal("15.00"),
        "confidence_score": 0.7,
        "verified_via": "rule",
        "source_file": "stmt.csv",
    }
    fields.update(kw)
    return StagedAsset(id=asset_id, name=name, current_value=Decimal(value), **fields)


def make_match(candidate_id, name, value, match_type="exact", kind="staged", score=1.0) -> DuplicateMatch:
    return DuplicateMatch(candidate_id=candidate_id, candidate_name=name, candidate_value=Decimal(value),
                          candidate_source="stmt.csv", candidate_kind=kind, similarity_score=score,
                          match_type=match_type)


def make_holding(holding_id: str, snapshot_id: str, name: str, value: str = "10000",
                 user_id: str = "user-1", **kw) -> HoldingRecord:
    fields = {"asset_class": "equity", "asset_subclass": "direct_stocks", "source_file": "old.csv"}
    fields.update(kw)
    return HoldingRecord(
        id=holding_id, user_id=user_id, snapshot_id=snapshot_id, name=name,
        current_value=Decimal(value), **fields,
    )


@pytest.fixture
def taxonomy():
    return Taxonomy.default()


@pytest.fixture
def repository():
    return InMemoryAssetRepository()


@pytest.fixture
def user_id():
    return "user-1"


@pytest.fixture
def now():
    return datetime(2024, 4, 10, 12, 0, 0)


@pytest.fixture
def holdings_csv() -> bytes:
    """A broker holdings export with a title block above the header row."""
    return (
        "HDFC Securities - Holdings Statement\n"
        "Client ID,ABC123\n"
        "As on 31/03/2024\n"
        "\n"
        "Scrip Name,ISIN,Quantity,Avg Cost,Current Value\n"
        "Reliance Industries Equity,INE002A01018,10,\"2,400.00\",\"29,500.50\"\n"
        "Axis Bluechip Fund - Direct Growth,INF846K01EW2,120.5,45.10,\"6,210.00\"\n"
        "SBI Gold ETF,,5,\"5,000\",\"27,000\"\n"
    ).encode("utf-8")


def seed_session(repository: InMemoryAssetRepository, assets: list[StagedAsset], user_id: str = "user-1",
                 **kw) -> TempUploadRecord:
    """Put a review session straight into the repository, bypassing the pipeline."""
    kw.setdefault("file_names", ["stmt.csv"])
    upload = TempUploadRecord(user_id=user_id, **kw)
    repository.uploads[upload.id] = upload
    repository.staged[upload.id] = list(assets)
    return upload

"""
Pipeline orchestrator: ingests one upload batch into a review session.

Stages: ROUTE → EXTRACT (+ statement date) → CLASSIFY → DEDUPLICATE → MATCH SNAPSHOT → STAGE

Files are processed one after another; a failing file is recorded in the
batch summary and never stops the others.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from app.config import settings
from app.extractors.base import ParsingError
from app.models.enums import FileStatus, MergeDecision, SnapshotMatchType
from app.observability.cost_tracker import OracleUsageTracker
from app.observability.logging import bound_upload_context
from app.observability.metrics import (
    batch_processing_duration_seconds, files_ingested_total, pipeline_stage_duration_seconds,
)
from app.oracles.classification import ClassificationOracle, DisabledClassificationOracle
from app.oracles.security_lookup import OfflineSecurityLookup, SecurityLookupOracle
from app.pipeline.classifier import SecurityClassifier
from app.pipeline.duplicate_detector import DuplicateDetector, duplicate_stats
from app.pipeline.format_router import RoutingError, extractor_for, route
from app.pipeline.snapshot_matcher import (
    UNTITLED_SNAPSHOT, group_files_by_statement_date, primary_group,
)
from app.pipeline.statement_date import StatementDateResolver
from app.pipeline.taxonomy import Taxonomy
from app.review.staging import StagingStore
from app.schemas.api import BatchSummary, FileDetail, IncomingFile
from app.schemas.assets import RawAsset, StagedAsset
from app.schemas.contracts import FileDateGroup, StatementDateResult
from app.schemas.records import TempUploadRecord, UploadLogRecord, new_staged_asset_id, new_upload_id, utcnow
from app.storage.artifact_store import ArtifactStore
from app.storage.paths import ingest_summary_path, raw_upload_path
from app.storage.repository import AssetRepository, RepositoryError

logger = structlog.get_logger(__name__)

MERGE_DECISIONS = {
    SnapshotMatchType.EXACT.value: MergeDecision.MERGE,
    SnapshotMatchType.NONE.value: MergeDecision.CREATE_NEW,
}


class PipelineError(Exception):
    """Batch-level failure. Carries the summary built so far when there is one."""
    def __init__(self, message: str, error_code: str = "ERR_PIPELINE", summary: Optional[BatchSummary] = None):
        self.message = message
        self.error_code = error_code
        self.summary = summary
        super().__init__(message)


@dataclass
class FileOutcome:
    detail: FileDetail
    assets: list[RawAsset] = field(default_factory=list)
    statement_date: Optional[StatementDateResult] = None
    size_bytes: int = 0

    @property
    def succeeded(self) -> bool:
        return self.detail.status == FileStatus.SUCCESS.value


class IngestionPipeline:
    """
    Runs every stage for one batch and leaves a review session behind.
    Oracles default to disabled/offline so the pipeline works without keys.
    """

    def __init__(
        self,
        repository: AssetRepository,
        taxonomy: Taxonomy,
        oracle: Optional[ClassificationOracle] = None,
        lookup: Optional[SecurityLookupOracle] = None,
        artifacts: Optional[ArtifactStore] = None,
        detector: Optional[DuplicateDetector] = None,
    ):
        self.repository = repository
        self.taxonomy = taxonomy
        self.oracle = oracle or DisabledClassificationOracle()
        self.lookup = lookup or OfflineSecurityLookup()
        self.artifacts = artifacts
        self.detector = detector or DuplicateDetector()
        self.staging = StagingStore(repository, taxonomy)

    async def ingest(
        self,
        user_id: str,
        files: list[IncomingFile],
        uploaded_at: Optional[datetime] = None,
    ) -> BatchSummary:
        """
        Main entry point: ingest a batch end-to-end.

        Raises:
            PipelineError: empty or oversized batch, every file failed, or no assets survived
            StagingError: the review session could not be stored
        """
        if not files:
            raise PipelineError("No files uploaded", "NO_FILES")
        if len(files) > settings.MAX_FILES_PER_BATCH:
            raise PipelineError(
                f"Maximum {settings.MAX_FILES_PER_BATCH} files allowed per upload", "TOO_MANY_FILES"
            )

        started_at = time.monotonic()
        uploaded_at = uploaded_at or utcnow()
        upload_id = new_upload_id(uploaded_at)
        tracker = OracleUsageTracker(upload_id)

        with bound_upload_context(upload_id, user_id):
            logger.info("ingest_started", files=len(files))

            outcomes = []
            for index, incoming in enumerate(files):
                outcomes.append(await self._process_file(index, incoming, upload_id, tracker, uploaded_at))

            successes = [o for o in outcomes if o.succeeded]
            summary = BatchSummary(
                upload_id=upload_id,
                total_files=len(files),
                successful_files=len(successes),
                failed_files=len(files) - len(successes),
                file_details=[o.detail for o in outcomes],
            )

            if not successes:
                await self._log_uploads(user_id, outcomes, [])
                raise PipelineError("All files failed to process", "ALL_FILES_FAILED", summary)

            raw_assets = [a for o in successes for a in o.assets]
            classifier = SecurityClassifier(self.taxonomy, self.lookup, self.oracle, tracker)
            with pipeline_stage_duration_seconds.labels(stage="classify").time():
                classified = await classifier.classify_batch(
                    raw_assets,
                    on_progress=lambda done, total: logger.debug("classify_progress", done=done, total=total),
                )
            summary.classification_failures = len(classifier.failures)

            if not classified:
                summary.oracle_usage = tracker.summary()
                await self._log_uploads(user_id, outcomes, [])
                raise PipelineError("No valid assets found in uploaded files", "NO_ASSETS", summary)

            with pipeline_stage_duration_seconds.labels(stage="deduplicate").time():
                holdings = await self.repository.list_holding_summaries(user_id, settings.EXISTING_HOLDINGS_LIMIT)
                staged = self.detector.detect_batch(
                    [StagedAsset.model_validate({**c.model_dump(), "id": new_staged_asset_id()}) for c in classified],
                    holdings,
                )

            with pipeline_stage_duration_seconds.labels(stage="match_snapshot").time():
                snapshots = await self.repository.list_snapshots(user_id, settings.SNAPSHOT_LOOKBACK_LIMIT)
                dated = [(o.detail.name, o.statement_date) for o in successes if o.statement_date]
                groups = group_files_by_statement_date(dated, snapshots)
                primary = primary_group(groups)

            stats = duplicate_stats(staged)
            summary.total_assets = len(staged)
            summary.total_value = sum((a.current_value for a in staged), Decimal(0))
            summary.duplicate_stats = stats
            summary.statement_date_groups = groups
            summary.statement_date = self._batch_date(primary, dict(dated))
            summary.processing_time_ms = int((time.monotonic() - started_at) * 1000)
            summary.oracle_usage = tracker.summary()

            upload = self._build_session(user_id, upload_id, successes, summary, primary)
            with pipeline_stage_duration_seconds.labels(stage="stage").time():
                await self.staging.create_session(upload, staged)

            await self._log_uploads(user_id, outcomes, staged)
            self._save_summary(upload_id, summary)
            batch_processing_duration_seconds.observe(time.monotonic() - started_at)

            logger.info(
                "ingest_completed",
                assets=summary.total_assets,
                total_value=str(summary.total_value),
                duplicates=stats.duplicates_found,
                failed_files=summary.failed_files,
                classification_failures=summary.classification_failures,
                statement_date=summary.statement_date.date.isoformat() if summary.statement_date and summary.statement_date.date else None,
                merge_decision=upload.merge_decision,
                duration_ms=summary.processing_time_ms,
            )
            return summary

    # ─── Per-file ─────────────────────────────────────────────

    async def _process_file(
        self,
        index: int,
        incoming: IncomingFile,
        upload_id: str,
        tracker: OracleUsageTracker,
        uploaded_at: datetime,
    ) -> FileOutcome:
        size = len(incoming.content)
        detail = FileDetail(name=incoming.file_name, size_kb=round(size / 1024, 2), status=FileStatus.FAILED.value)
        outcome = FileOutcome(detail=detail, size_bytes=size)

        try:
            decision = route(incoming.file_name, size, incoming.content_type)
        except RoutingError as e:
            return self._failed(outcome, "unknown", e.message, e.error_code)
        detail.file_format = decision.file_format

        self._keep_raw(upload_id, index, incoming)

        extractor = extractor_for(decision, self.oracle, tracker)
        resolver = StatementDateResolver(self.oracle, tracker)
        try:
            with pipeline_stage_duration_seconds.labels(stage="extract").time():
                doc = await extractor.load(incoming.content, incoming.file_name)
                content_date, extraction = await asyncio.gather(
                    resolver.from_content(doc.document_text),
                    extractor.extract_assets(doc),
                )
        except ParsingError as e:
            return self._failed(outcome, decision.file_format, e.reason, e.error_code)

        # OCR may have produced the text the structural read could not
        if not content_date.is_acceptable and extraction.document_text and extraction.document_text != doc.document_text:
            content_date = await resolver.from_content(extraction.document_text)

        statement_date = resolver.settle(content_date, incoming.file_name, uploaded_at, extraction.statement_date_hint)

        detail.status = FileStatus.SUCCESS.value
        detail.assets_found = len(extraction.raw_assets)
        detail.rows_dropped = extraction.rows_dropped
        detail.fallback_used = extraction.fallback_used
        detail.statement_date = statement_date
        outcome.assets = extraction.raw_assets
        outcome.statement_date = statement_date
        files_ingested_total.labels(file_format=decision.file_format, status="success").inc()

        logger.info(
            "file_processed",
            file_name=incoming.file_name,
            file_format=decision.file_format,
            assets=detail.assets_found,
            rows_dropped=detail.rows_dropped,
            fallback=detail.fallback_used,
            statement_date=statement_date.date.isoformat() if statement_date.date else None,
            date_source=statement_date.source,
        )
        return outcome

    def _failed(self, outcome: FileOutcome, file_format: str, error: str, error_code: str) -> FileOutcome:
        outcome.detail.error = error
        outcome.detail.error_code = error_code
        files_ingested_total.labels(file_format=file_format, status="failed").inc()
        logger.warning("file_failed", file_name=outcome.detail.name, error=error, error_code=error_code)
        return outcome

    def _keep_raw(self, upload_id: str, index: int, incoming: IncomingFile) -> None:
        if self.artifacts is None or not settings.KEEP_RAW_UPLOADS:
            return
        try:
            self.artifacts.save_bytes(raw_upload_path(upload_id, index, incoming.file_name), incoming.content)
        except OSError as e:
            logger.warning("raw_upload_not_saved", file_name=incoming.file_name, error=str(e))

    # ─── Batch ────────────────────────────────────────────────

    @staticmethod
    def _batch_date(
        primary: Optional[FileDateGroup], by_file: dict[str, StatementDateResult],
    ) -> Optional[StatementDateResult]:
        if primary is None:
            return None
        return by_file.get(primary.file_names[0])

    def _build_session(
        self,
        user_id: str,
        upload_id: str,
        successes: list[FileOutcome],
        summary: BatchSummary,
        primary: Optional[FileDateGroup],
    ) -> TempUploadRecord:
        batch_date = summary.statement_date
        if primary is None:
            name, matched_id, decision = UNTITLED_SNAPSHOT, None, MergeDecision.CREATE_NEW
        else:
            name = primary.suggested_snapshot_name
            matched_id = primary.match.matched_snapshot_id
            decision = MERGE_DECISIONS.get(primary.match.match_type)

        return TempUploadRecord(
            id=upload_id,
            user_id=user_id,
            file_names=[o.detail.name for o in successes],
            total_assets=summary.total_assets,
            total_value=summary.total_value,
            statement_date=primary.statement_date if primary else None,
            statement_date_confidence=batch_date.confidence if batch_date else None,
            statement_date_source=batch_date.source if batch_date else None,
            suggested_snapshot_name=name,
            matched_snapshot_id=matched_id,
            merge_decision=decision,
            processing_time_ms=summary.processing_time_ms,
            duplicates_found=summary.duplicate_stats.duplicates_found,
        )

    async def _log_uploads(self, user_id: str, outcomes: list[FileOutcome], staged: list[StagedAsset]) -> None:
        """One upload log row per file. A failed write is logged, never fatal."""
        now = utcnow()
        for o in outcomes:
            file_assets = [a for a in staged if a.source_file == o.detail.name]
            log = UploadLogRecord(
                user_id=user_id,
                file_name=o.detail.name,
                file_type=o.detail.file_format or "unknown",
                file_size_bytes=o.size_bytes,
                status="completed" if o.succeeded and staged else "failed",
                assets_parsed=o.detail.assets_found,
                duplicates_found=sum(1 for a in file_assets if a.is_duplicate),
                error_message=o.detail.error,
                completed_at=now,
            )
            try:
                await self.repository.add_upload_log(log)
            except RepositoryError as e:
                logger.warning("upload_log_failed", file_name=o.detail.name, error=e.message)

    def _save_summary(self, upload_id: str, summary: BatchSummary) -> None:
        if self.artifacts is None:
            return
        try:
            self.artifacts.save_json(ingest_summary_path(upload_id), summary.model_dump(mode="json"))
        except OSError as e:
            logger.warning("summary_not_saved", error=str(e))

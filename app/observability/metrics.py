"""
Prometheus metrics for the asset ingestion service.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Ingestion ────────────────────────────────────────────────
files_ingested_total = Counter(
    "files_ingested_total",
    "Total files received for ingestion",
    ["file_format", "status"],
)

assets_extracted_total = Counter(
    "assets_extracted_total",
    "Raw asset records emitted by extractors",
    ["extractor"],
)

rows_dropped_total = Counter(
    "rows_dropped_total",
    "Rows or oracle records rejected during extraction",
    ["extractor"],
)

extraction_fallbacks_total = Counter(
    "extraction_fallbacks_total",
    "Extraction fallbacks taken",
    ["fallback"],
)

batch_processing_duration_seconds = Histogram(
    "batch_processing_duration_seconds",
    "Time to ingest an upload batch end-to-end",
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)

# ── Pipeline Stages ──────────────────────────────────────────
pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Time per pipeline stage",
    ["stage"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60],
)

# ── Classification ───────────────────────────────────────────
classifications_total = Counter(
    "classifications_total",
    "Assets classified, by winning tier",
    ["tier"],
)

classification_failures_total = Counter(
    "classification_failures_total",
    "Assets excluded from a batch after a classification error",
)

classification_confidence = Histogram(
    "classification_confidence",
    "Distribution of classification confidence scores",
    ["tier"],
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0],
)

# ── Reconciliation ───────────────────────────────────────────
duplicates_detected_total = Counter(
    "duplicates_detected_total",
    "Staged assets flagged as duplicates, by best match type",
    ["match_type"],
)

snapshot_matches_total = Counter(
    "snapshot_matches_total",
    "Snapshot match outcomes",
    ["match_type"],
)

# ── Review Staging ───────────────────────────────────────────
staged_updates_total = Counter(
    "staged_updates_total",
    "Staged asset patches persisted",
    ["mode"],
)

staging_sessions_active = Gauge(
    "staging_sessions_active",
    "Review sessions with a live autosaver",
)

finalizations_total = Counter(
    "finalizations_total",
    "Finalize attempts",
    ["mode", "status"],
)

# ── External Oracles ─────────────────────────────────────────
oracle_calls_total = Counter(
    "oracle_calls_total",
    "Calls to external oracles",
    ["oracle", "operation", "status"],
)

oracle_cost_usd = Counter(
    "oracle_cost_usd_total",
    "Estimated cumulative cost of oracle calls in USD",
    ["oracle", "operation"],
)

oracle_latency_seconds = Histogram(
    "oracle_latency_seconds",
    "Latency of external oracle calls",
    ["oracle", "operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
)

# ── Worker ───────────────────────────────────────────────────
sessions_purged_total = Counter(
    "sessions_purged_total",
    "Expired review sessions purged by the worker",
)

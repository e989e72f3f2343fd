"""
Security classifier.

Assigns class, subclass, risk and expected return to each raw asset. Tiers are
an ordered list of strategies; the first one that returns a ClassifiedAsset
wins:

    hybrid:     lookup -> rule (confident only) -> AI -> rule (any)
    ai_primary: lookup -> AI -> rule (any)

The trailing rule strategy always answers (other_assets at 0.3 when nothing
matches), so classify() never comes back empty.
"""

import asyncio
import re
from typing import Callable, Optional

import structlog

from app.config import settings
from app.models.enums import AssetClass, SecurityType, VerifiedVia
from app.observability.cost_tracker import OracleUsageTracker
from app.observability.metrics import (
    classification_confidence, classification_failures_total, classifications_total,
)
from app.oracles.classification import ClassificationOracle, DisabledClassificationOracle, OracleError
from app.oracles.prompts import ClassificationPrompt
from app.oracles.security_lookup import OfflineSecurityLookup, SecurityLookupOracle
from app.pipeline.taxonomy import SubclassMapping, Taxonomy
from app.schemas.assets import ClassifiedAsset, RawAsset

logger = structlog.get_logger(__name__)

RULE_BASE_CONFIDENCE = 0.6
RULE_CONFIDENCE_PER_HIT = 0.1
RULE_MAX_CONFIDENCE = 0.95
RULE_NO_MATCH_CONFIDENCE = 0.3
AI_DEFAULT_CONFIDENCE = 0.7

MODE_HYBRID = "hybrid"
MODE_AI_PRIMARY = "ai_primary"


class ClassificationError(Exception):
    """The AI tier's answer for one asset failed validation."""

    def __init__(self, message: str, asset_name: str, error_code: str = "CLASSIFICATION_INVALID"):
        super().__init__(f"{asset_name}: {message}")
        self.message = message
        self.asset_name = asset_name
        self.error_code = error_code


def build_classified(
    raw: RawAsset,
    mapping: SubclassMapping,
    confidence: float,
    verified_via: VerifiedVia,
    security_type: Optional[SecurityType] = None,
) -> ClassifiedAsset:
    """Attach a taxonomy entry to a raw asset. Risk and return always come from the entry."""
    return ClassifiedAsset(
        **raw.model_dump(),
        asset_class=mapping.asset_class,
        asset_subclass=mapping.subclass_code,
        risk_level=mapping.risk_level,
        expected_return_pct=mapping.expected_return_midpoint,
        confidence_score=round(max(0.0, min(confidence, 1.0)), 4),
        verified_via=verified_via,
        security_type=security_type,
    )


# ─── Rule Tier ────────────────────────────────────────────────

def _keyword_regex(keyword: str) -> re.Pattern:
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword.lower().strip()) + r"(?![a-z0-9])")


def keyword_hits(name: str, mapping: SubclassMapping) -> list[str]:
    """Keywords of one entry that appear as whole words in the lowercased name."""
    lowered = name.lower()
    return [kw for kw in mapping.keyword_patterns if kw.strip() and _keyword_regex(kw).search(lowered)]


def rule_classify(name: str, taxonomy: Taxonomy) -> tuple[SubclassMapping, float, list[str]]:
    """
    Entry with the most keyword hits. Ties go to the longest matched keyword,
    then to the lower sort order. No hits at all gives other_assets at 0.3.
    """
    best: Optional[tuple[tuple, SubclassMapping, list[str]]] = None

    for mapping in taxonomy.mappings:
        hits = keyword_hits(name, mapping)
        if not hits:
            continue
        rank = (len(hits), max(len(h) for h in hits), -mapping.sort_order)
        if best is None or rank > best[0]:
            best = (rank, mapping, hits)

    if best is None:
        return taxonomy.other(), RULE_NO_MATCH_CONFIDENCE, []

    _, mapping, hits = best
    confidence = min(RULE_BASE_CONFIDENCE + RULE_CONFIDENCE_PER_HIT * len(hits), RULE_MAX_CONFIDENCE)
    return mapping, round(confidence, 4), hits


# ─── Strategies ───────────────────────────────────────────────

class ClassificationStrategy:
    tier: VerifiedVia

    async def attempt(self, raw: RawAsset) -> Optional[ClassifiedAsset]:
        raise NotImplementedError


class LookupStrategy(ClassificationStrategy):
    tier = VerifiedVia.LOOKUP

    def __init__(self, lookup: SecurityLookupOracle, taxonomy: Taxonomy):
        self.lookup = lookup
        self.taxonomy = taxonomy

    async def attempt(self, raw: RawAsset) -> Optional[ClassifiedAsset]:
        if not raw.isin and not raw.ticker_symbol:
            return None

        result = await self.lookup.lookup(
            isin=raw.isin, ticker=raw.ticker_symbol, exchange=raw.exchange, security_name=raw.name,
        )
        if not result.found or not result.asset_class or not result.asset_subclass:
            return None

        mapping = self.taxonomy.find(result.asset_class, result.asset_subclass)
        if mapping is None:
            logger.debug("lookup_subclass_not_in_taxonomy", name=raw.name, subclass=result.asset_subclass)
            return None

        return build_classified(raw, mapping, result.confidence, VerifiedVia.LOOKUP, result.security_type)


class RuleStrategy(ClassificationStrategy):
    tier = VerifiedVia.RULE

    def __init__(self, taxonomy: Taxonomy, min_confidence: float = 0.0):
        self.taxonomy = taxonomy
        self.min_confidence = min_confidence

    async def attempt(self, raw: RawAsset) -> Optional[ClassifiedAsset]:
        mapping, confidence, _ = rule_classify(raw.name, self.taxonomy)
        if confidence < self.min_confidence:
            return None
        return build_classified(raw, mapping, confidence, VerifiedVia.RULE)


class AIStrategy(ClassificationStrategy):
    """Closed-taxonomy prompt. Raises ClassificationError on an invalid answer."""

    tier = VerifiedVia.AI
    prompt = ClassificationPrompt()

    def __init__(self, oracle: ClassificationOracle, taxonomy: Taxonomy,
                 tracker: Optional[OracleUsageTracker] = None):
        self.oracle = oracle
        self.taxonomy = taxonomy
        self.tracker = tracker

    async def attempt(self, raw: RawAsset) -> Optional[ClassifiedAsset]:
        if not self.oracle.is_enabled:
            return None

        has_identifiers = bool(raw.isin or raw.ticker_symbol)
        answer = await self.oracle.classify_text(
            self.prompt.system_prompt(self.taxonomy.mappings, has_identifiers),
            self.prompt.user_message(raw.name, raw.isin, raw.ticker_symbol, raw.exchange),
            operation="classify_asset",
            model=settings.ORACLE_TEXT_MODEL,
            temperature=self.prompt.temperature,
            tracker=self.tracker,
        )
        mapping, confidence = self.validate_answer(answer, raw.name)
        return build_classified(raw, mapping, confidence, VerifiedVia.AI)

    def validate_answer(self, answer, asset_name: str) -> tuple[SubclassMapping, float]:
        if not isinstance(answer, dict):
            raise ClassificationError("Classification answer is not an object", asset_name)

        asset_class = answer.get("asset_class")
        subclass = answer.get("asset_subclass")
        if not isinstance(asset_class, str) or not isinstance(subclass, str) or not subclass:
            raise ClassificationError("Classification answer is missing class or subclass", asset_name)

        if asset_class not in {c.value for c in AssetClass}:
            raise ClassificationError(f"Unknown asset class '{asset_class}'", asset_name)

        mapping = self.taxonomy.find(asset_class, subclass)
        if mapping is None:
            raise ClassificationError(
                f"Subclass '{subclass}' does not belong to asset class '{asset_class}'", asset_name,
                error_code="SUBCLASS_CLASS_MISMATCH",
            )

        confidence = answer.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = AI_DEFAULT_CONFIDENCE

        logger.debug("ai_classification", name=asset_name, subclass=subclass,
                     confidence=confidence, reasoning=answer.get("reasoning"))
        return mapping, float(confidence)


# ─── Classifier ───────────────────────────────────────────────

class SecurityClassifier:
    """Classifies the assets of one batch. Holds the batch's oracle usage tracker."""

    def __init__(
        self,
        taxonomy: Taxonomy,
        lookup: Optional[SecurityLookupOracle] = None,
        oracle: Optional[ClassificationOracle] = None,
        tracker: Optional[OracleUsageTracker] = None,
        mode: Optional[str] = None,
        ai_threshold: Optional[float] = None,
    ):
        self.taxonomy = taxonomy
        self.lookup = lookup or OfflineSecurityLookup()
        self.oracle = oracle or DisabledClassificationOracle()
        self.tracker = tracker
        self.mode = mode or settings.CLASSIFIER_MODE
        self.ai_threshold = settings.CLASSIFIER_AI_THRESHOLD if ai_threshold is None else ai_threshold
        self.failures: list[ClassificationError] = []
        self.strategies = self._build_strategies()

    def _build_strategies(self) -> list[ClassificationStrategy]:
        lookup = LookupStrategy(self.lookup, self.taxonomy)
        ai = AIStrategy(self.oracle, self.taxonomy, self.tracker)
        fallback = RuleStrategy(self.taxonomy)

        if self.mode == MODE_AI_PRIMARY:
            return [lookup, ai, fallback]
        if self.mode != MODE_HYBRID:
            logger.warning("unknown_classifier_mode", mode=self.mode, using=MODE_HYBRID)
        return [lookup, RuleStrategy(self.taxonomy, min_confidence=self.ai_threshold), ai, fallback]

    async def classify(self, raw: RawAsset, strict: bool = False) -> ClassifiedAsset:
        """
        Run the strategies in order. An unavailable or failing AI tier falls
        through to the rule result; with strict=True an invalid AI answer
        raises ClassificationError instead.
        """
        for strategy in self.strategies:
            try:
                classified = await strategy.attempt(raw)
            except OracleError as e:
                logger.warning("classification_tier_unavailable", name=raw.name, tier=strategy.tier.value,
                               error=e.message)
                continue
            except ClassificationError as e:
                if strict:
                    raise
                logger.warning("classification_answer_rejected", name=raw.name, error=e.message)
                continue

            if classified is not None:
                classifications_total.labels(tier=classified.verified_via).inc()
                classification_confidence.labels(tier=classified.verified_via).observe(classified.confidence_score)
                return classified

        mapping, confidence, _ = rule_classify(raw.name, self.taxonomy)
        return build_classified(raw, mapping, confidence, VerifiedVia.RULE)

    async def classify_batch(
        self,
        assets: list[RawAsset],
        max_concurrent: Optional[int] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> list[ClassifiedAsset]:
        """
        Classify in fixed-size concurrent groups, preserving input order.
        Assets whose AI answer fails validation are logged, collected in
        self.failures and left out of the result.
        """
        size = max(1, max_concurrent or settings.CLASSIFIER_MAX_CONCURRENT)
        classified: list[ClassifiedAsset] = []
        total = len(assets)

        for start in range(0, total, size):
            group = assets[start:start + size]
            results = await asyncio.gather(
                *(self.classify(a, strict=True) for a in group),
                return_exceptions=True,
            )
            for raw, result in zip(group, results):
                if isinstance(result, ClassificationError):
                    self.failures.append(result)
                    classification_failures_total.inc()
                    logger.warning("asset_excluded_from_batch", name=raw.name, source_file=raw.source_file,
                                   error=result.message, error_code=result.error_code)
                    continue
                if isinstance(result, BaseException):
                    raise result
                classified.append(result)

            if on_progress is not None:
                on_progress(min(start + size, total), total)

        logger.info(
            "batch_classified",
            total=total,
            classified=len(classified),
            failed=total - len(classified),
            by_tier={t.value: sum(1 for c in classified if c.verified_via == t.value) for t in VerifiedVia},
        )
        return classified

"""
Per-batch oracle usage instrumentation.
Costs are estimated from the token usage each oracle response reports.
"""

from typing import Optional

import structlog

from app.config import settings
from app.observability.metrics import oracle_cost_usd, oracle_latency_seconds

logger = structlog.get_logger(__name__)


def estimate_cost_usd(input_tokens: int, output_tokens: int) -> float:
    """Estimate the USD cost of a single call from its token counts."""
    input_cost = (input_tokens / 1000) * settings.ORACLE_COST_PER_1K_INPUT_USD
    output_cost = (output_tokens / 1000) * settings.ORACLE_COST_PER_1K_OUTPUT_USD
    return round(input_cost + output_cost, 6)


class OracleUsageTracker:
    """Track oracle calls made while processing one upload batch."""

    def __init__(self, upload_id: Optional[str] = None):
        self.upload_id = upload_id
        self._events: list[dict] = []

    def record(
        self,
        oracle: str,
        operation: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        latency_ms: int = 0,
    ) -> float:
        """Record a call to Prometheus and the in-memory ledger. Returns its cost."""
        cost_usd = estimate_cost_usd(input_tokens, output_tokens)

        oracle_cost_usd.labels(oracle=oracle, operation=operation).inc(cost_usd)
        oracle_latency_seconds.labels(oracle=oracle, operation=operation).observe(latency_ms / 1000.0)

        self._events.append({
            "oracle": oracle,
            "operation": operation,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_usd": cost_usd,
            "latency_ms": latency_ms,
        })

        logger.debug(
            "oracle_usage_recorded",
            upload_id=self.upload_id,
            oracle=oracle,
            operation=operation,
            cost_usd=cost_usd,
            latency_ms=latency_ms,
        )
        return cost_usd

    def summary(self) -> dict:
        """Totals across every call recorded so far."""
        by_operation: dict[str, int] = {}
        for e in self._events:
            by_operation[e["operation"]] = by_operation.get(e["operation"], 0) + 1

        return {
            "calls": len(self._events),
            "calls_by_operation": by_operation,
            "input_tokens": sum(e["input_tokens"] for e in self._events),
            "output_tokens": sum(e["output_tokens"] for e in self._events),
            "total_cost_usd": round(sum(e["cost_usd"] for e in self._events), 6),
            "total_latency_ms": sum(e["latency_ms"] for e in self._events),
        }

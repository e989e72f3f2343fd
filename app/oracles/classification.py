"""
Classification oracle: an OpenAI-compatible chat-completions endpoint used for
text classification, structured extraction and vision extraction.

Every response is untrusted. This module only guarantees that what comes back
is parsed JSON; callers validate its shape before using any field.
"""

import asyncio
import base64
import json
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from app.config import settings
from app.observability.cost_tracker import OracleUsageTracker
from app.observability.metrics import oracle_calls_total

logger = structlog.get_logger(__name__)

ORACLE_NAME = "classification"


class OracleError(Exception):
    """Raised when an oracle call fails or its response cannot be parsed."""

    def __init__(self, message: str, error_code: str = "ORACLE_FAILED", retryable: bool = False):
        self.message = message
        self.error_code = error_code
        self.retryable = retryable
        super().__init__(message)


class ClassificationOracle(ABC):
    """Capability interface for the LLM text and vision oracle."""

    @property
    @abstractmethod
    def is_enabled(self) -> bool:
        ...

    @abstractmethod
    async def classify_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        operation: str,
        model: Optional[str] = None,
        temperature: float = 0.2,
        tracker: Optional[OracleUsageTracker] = None,
    ) -> Any:
        """Return the parsed JSON answer. Raises OracleError."""
        ...

    @abstractmethod
    async def classify_images(
        self,
        prompt: str,
        images: list[bytes],
        *,
        operation: str,
        model: Optional[str] = None,
        tracker: Optional[OracleUsageTracker] = None,
    ) -> Any:
        """Return the parsed JSON answer for PNG page images. Raises OracleError."""
        ...


class DisabledClassificationOracle(ClassificationOracle):
    """Stand-in used when no oracle credentials are configured."""

    @property
    def is_enabled(self) -> bool:
        return False

    async def classify_text(self, system_prompt, user_prompt, *, operation, model=None,
                            temperature=0.2, tracker=None):
        raise OracleError("Classification oracle is not configured", error_code="ORACLE_DISABLED")

    async def classify_images(self, prompt, images, *, operation, model=None, tracker=None):
        raise OracleError("Classification oracle is not configured", error_code="ORACLE_DISABLED")


def parse_json_response(content: str) -> Any:
    """
    Parse JSON from an LLM response.

    Handles markdown code fences, surrounding prose and trailing commas.
    Raises OracleError when nothing parseable is found.
    """
    if not content or not content.strip():
        raise OracleError("Empty oracle response", error_code="ORACLE_BAD_RESPONSE")

    content = content.strip()

    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    # Outermost object or array embedded in prose
    for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
        match = re.search(pattern, content)
        if not match:
            continue
        candidate = match.group()
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        cleaned = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", candidate)
        cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            pass

    raise OracleError("Oracle response is not valid JSON", error_code="ORACLE_BAD_RESPONSE")


class HttpClassificationOracle(ClassificationOracle):
    """
    Chat-completions client.

    Concurrency is capped with a semaphore so a classification batch cannot
    open more requests than the provider's rate limit tolerates.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.base_url = (base_url or settings.ORACLE_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ORACLE_API_KEY
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(settings.ORACLE_TIMEOUT_SECONDS),
                write=30.0,
                pool=10.0,
            ),
        )
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.CLASSIFIER_MAX_CONCURRENT)

    @property
    def is_enabled(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def classify_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        operation: str,
        model: Optional[str] = None,
        temperature: float = 0.2,
        tracker: Optional[OracleUsageTracker] = None,
    ) -> Any:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self._complete(
            messages,
            model=model or settings.ORACLE_TEXT_MODEL,
            temperature=temperature,
            operation=operation,
            tracker=tracker,
        )

    async def classify_images(
        self,
        prompt: str,
        images: list[bytes],
        *,
        operation: str,
        model: Optional[str] = None,
        tracker: Optional[OracleUsageTracker] = None,
    ) -> Any:
        if not images:
            raise OracleError("No images supplied", error_code="ORACLE_BAD_REQUEST")

        content: list[dict] = [{"type": "text", "text": prompt}]
        for png in images:
            encoded = base64.b64encode(png).decode("ascii")
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{encoded}", "detail": "high"},
            })

        return await self._complete(
            [{"role": "user", "content": content}],
            model=model or settings.ORACLE_VISION_MODEL,
            temperature=0.1,
            operation=operation,
            tracker=tracker,
        )

    async def _complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float,
        operation: str,
        tracker: Optional[OracleUsageTracker],
    ) -> Any:
        if not self.is_enabled:
            raise OracleError("Classification oracle is not configured", error_code="ORACLE_DISABLED")

        payload = {
            "model": model,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "temperature": temperature,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with self._semaphore:
            started = time.time()
            try:
                response = await self._client.post(
                    f"{self.base_url}/chat/completions", json=payload, headers=headers,
                )
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="timeout").inc()
                logger.warning("oracle_timeout", operation=operation, model=model)
                raise OracleError("Oracle request timed out", error_code="ORACLE_TIMEOUT", retryable=True) from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="http_error").inc()
                logger.error("oracle_http_error", operation=operation, model=model, status_code=status)
                raise OracleError(
                    f"Oracle returned HTTP {status}",
                    error_code="ORACLE_HTTP_ERROR",
                    retryable=status == 429 or status >= 500,
                ) from e
            except httpx.RequestError as e:
                oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="transport_error").inc()
                logger.error("oracle_request_failed", operation=operation, error=str(e))
                raise OracleError(f"Oracle request failed: {e}", error_code="ORACLE_UNREACHABLE",
                                  retryable=True) from e
            except ValueError as e:
                oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="bad_response").inc()
                raise OracleError("Oracle returned a non-JSON body", error_code="ORACLE_BAD_RESPONSE") from e

            latency_ms = int((time.time() - started) * 1000)

        usage = data.get("usage") or {}
        if tracker is not None:
            tracker.record(
                ORACLE_NAME,
                operation,
                input_tokens=int(usage.get("prompt_tokens", 0) or 0),
                output_tokens=int(usage.get("completion_tokens", 0) or 0),
                latency_ms=latency_ms,
            )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="bad_response").inc()
            raise OracleError("Oracle response has no message content", error_code="ORACLE_BAD_RESPONSE") from e

        try:
            parsed = parse_json_response(content or "")
        except OracleError:
            oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="bad_response").inc()
            raise
        oracle_calls_total.labels(oracle=ORACLE_NAME, operation=operation, status="success").inc()
        logger.debug("oracle_call_complete", operation=operation, model=model, latency_ms=latency_ms,
                     response_chars=len(content or ""))
        return parsed


def build_classification_oracle() -> ClassificationOracle:
    if not settings.ORACLE_API_KEY:
        logger.info("classification_oracle_disabled")
        return DisabledClassificationOracle()
    return HttpClassificationOracle()

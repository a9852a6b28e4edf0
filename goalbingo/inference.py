"""Async client for the OpenAI-compatible inference API.

This module provides an async HTTP/2 client with:
- Connection pooling via a lazily created httpx.AsyncClient
- Retry logic with exponential backoff for transient failures
- Structured "unavailable" results instead of raised errors
- Prometheus metrics and OpenTelemetry spans per request

Example:
    >>> from goalbingo.inference import AsyncInferenceClient
    >>>
    >>> async with AsyncInferenceClient() as client:
    ...     result = await client.rank_difficulty(["Run a marathon", "Read 12 books"])
    ...     print(result.difficulty, result.ranking)
"""

import json
import logging
import re
import time
from collections.abc import Sequence
from typing import Any

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from goalbingo.config import settings
from goalbingo.errors import ExternalServiceUnavailable, TransientInferenceError
from goalbingo.logging import logger
from goalbingo.metrics import errors_total, inference_request_duration_seconds, inference_requests_total
from goalbingo.models import DifficultyRanking, GoalExtraction
from goalbingo.telemetry import get_tracer, traced

tracer = get_tracer(__name__)

# =============================================================================
# Prompts and Messages
# =============================================================================

RANKING_SYSTEM_PROMPT = """You are a goal difficulty analyst. Analyze the provided bingo board goals and rate the overall difficulty.
Be concise but insightful. Consider factors like:
- Time required
- Skill level needed
- Resources required
- Emotional/mental challenge
- Dependencies on others

Provide a difficulty rating (Easy/Medium/Hard/Expert) and a brief 2-3 sentence explanation."""

EXTRACTION_SYSTEM_PROMPT = """You are a goal extraction assistant. Extract goals from images of handwritten or typed goal lists.
Return ONLY a JSON array of strings, with each goal as a separate item. Extract up to {limit} goals.
If you see numbered items, extract each as a separate goal.
Clean up the text but preserve the meaning. If you can't read something, skip it.
Return format: ["goal 1", "goal 2", ...]"""

NO_GOALS_MESSAGE = "No goals provided to analyze."
NOT_CONFIGURED_MESSAGE = "AI service not configured. Please set OPENROUTER_TOKEN."
RANKING_FAILED_MESSAGE = "Failed to analyze goals. Please try again."
EMPTY_RANKING_MESSAGE = "Unable to analyze goals."

DIFFICULTY_LEVELS = ("Expert", "Hard", "Medium", "Easy")
DIFFICULTY_PATTERN = re.compile(r"\b(" + "|".join(DIFFICULTY_LEVELS) + r")\b", re.IGNORECASE)
JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def parse_difficulty(text: str) -> str | None:
    """Return the first difficulty label mentioned in a ranking, title-cased."""
    match = DIFFICULTY_PATTERN.search(text or "")
    return match.group(1).capitalize() if match else None


def parse_goal_list(content: str, limit: int) -> list[str]:
    """Pull the first JSON array out of a model reply.

    Non-string and blank items are dropped, the rest trimmed and capped at ``limit``.

    Raises:
        ValueError: The array is not valid JSON
    """
    match = JSON_ARRAY_PATTERN.search(content or "")
    if not match:
        return []
    items = json.loads(match.group(0))
    if not isinstance(items, list):
        return []
    return [item.strip() for item in items if isinstance(item, str) and item.strip()][:limit]


# =============================================================================
# Inference Client
# =============================================================================


class AsyncInferenceClient:
    """Chat-completions client used for difficulty ranking and goal extraction.

    Args:
        token: API token (defaults to settings.inference_api_key)
        base_url: API root (defaults to settings.inference_base_url)
        timeout: Timeout configuration (defaults to settings.inference_timeout_seconds)
        max_attempts: Attempts per request (defaults to settings.inference_max_attempts)
        retry_wait: Tenacity wait strategy between attempts

    Example:
        >>> client = AsyncInferenceClient(token="sk-test")
        >>> extraction = await client.extract_goals_from_image("https://blobs/abc.png")
        >>> extraction.success
        True
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        max_attempts: int | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._token = token if token is not None else settings.inference_api_key
        self._base_url = (base_url or settings.inference_base_url).rstrip("/")
        self._timeout = timeout or httpx.Timeout(
            timeout=settings.inference_timeout_seconds,
            connect=10.0,
        )
        self._limits = httpx.Limits(max_connections=20, max_keepalive_connections=5)
        self._max_attempts = max_attempts or settings.inference_max_attempts
        self._retry_wait = retry_wait or (
            wait_exponential(multiplier=1, min=1, max=10) + wait_random(0, 1)
        )
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self._token)

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                limits=self._limits,
                timeout=self._timeout,
                http2=True,
                follow_redirects=True,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def __aenter__(self) -> "AsyncInferenceClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close all connections and cleanup resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # HTTP layer
    # -------------------------------------------------------------------------

    async def _do_http_post(self, payload: dict[str, Any]) -> str:
        """POST a chat completion and return the first message content.

        Raises:
            TransientInferenceError: For retryable failures
            ExternalServiceUnavailable: For permanent failures
        """
        client = await self._ensure_client()

        try:
            resp = await client.post("/chat/completions", json=payload)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientInferenceError(f"Network/timeout error: {exc}") from exc

        if resp.status_code == 429 or 500 <= resp.status_code < 600:
            raise TransientInferenceError(f"HTTP {resp.status_code}")

        if resp.status_code != 200:
            logger.error(f"Non-retryable HTTP {resp.status_code}: {resp.text[:200]}")
            raise ExternalServiceUnavailable(f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransientInferenceError(f"Invalid JSON: {exc}") from exc

        choices = body.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    async def _post_with_retry(self, payload: dict[str, Any]) -> str:
        """POST with retry on transient failures."""
        # Create logging bridge for tenacity
        logging_logger = logging.getLogger(__name__)

        @retry(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientInferenceError),
            before_sleep=before_sleep_log(logging_logger, logging.WARNING),
        )
        async def _runner() -> str:
            return await self._do_http_post(payload)

        return await _runner()

    async def _complete(self, operation: str, payload: dict[str, Any]) -> str:
        """Run one request with metrics and tracing; failures are re-raised."""
        start_time = time.time()
        with traced(tracer, f"inference.{operation}", {"model": payload.get("model")}):
            try:
                content = await self._post_with_retry(payload)
            except Exception as exc:
                inference_requests_total.labels(operation=operation, status="error").inc()
                errors_total.labels(error_type=type(exc).__name__, component="inference").inc()
                inference_request_duration_seconds.labels(operation=operation).observe(
                    time.time() - start_time
                )
                raise
        inference_requests_total.labels(operation=operation, status="success").inc()
        inference_request_duration_seconds.labels(operation=operation).observe(time.time() - start_time)
        return content

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def rank_difficulty(self, goals: Sequence[str]) -> DifficultyRanking:
        """Rate the overall difficulty of a list of goals.

        Args:
            goals: Goal texts (blank entries are ignored)

        Returns:
            Ranking text, parsed difficulty label and availability flag. Never raises.
        """
        goals = [g.strip() for g in goals if g and g.strip()]
        if not goals:
            return DifficultyRanking(ranking=NO_GOALS_MESSAGE, available=False)
        if not self.configured:
            inference_requests_total.labels(operation="rank", status="not_configured").inc()
            return DifficultyRanking(ranking=NOT_CONFIGURED_MESSAGE, available=False)

        goals_text = "\n".join(f"{i}. {goal}" for i, goal in enumerate(goals, start=1))
        payload = {
            "model": settings.ranking_model,
            "messages": [
                {"role": "system", "content": RANKING_SYSTEM_PROMPT},
                {"role": "user", "content": f"Please analyze these bingo board goals:\n\n{goals_text}"},
            ],
            "max_tokens": 200,
        }

        try:
            content = await self._complete("rank", payload)
        except Exception as exc:
            logger.warning(f"⚠️ Difficulty ranking failed: {exc}")
            return DifficultyRanking(ranking=RANKING_FAILED_MESSAGE, available=False)

        ranking = content.strip() or EMPTY_RANKING_MESSAGE
        return DifficultyRanking(ranking=ranking, difficulty=parse_difficulty(ranking))

    async def extract_goals_from_image(self, image_url: str) -> GoalExtraction:
        """Read a list of goals from an image with the vision model.

        Returns:
            Extraction result; ``success`` is False with an ``error`` message on any failure
        """
        if not self.configured:
            inference_requests_total.labels(operation="extract", status="not_configured").inc()
            return GoalExtraction(success=False, error="AI service not configured.")

        limit = settings.max_extracted_goals
        payload = {
            "model": settings.vision_model,
            "messages": [
                {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT.format(limit=limit)},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Extract the goals from this image as a JSON array:"},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            "max_tokens": 1000,
        }

        try:
            content = await self._complete("extract", payload)
        except Exception as exc:
            logger.warning(f"⚠️ Goal extraction failed: {exc}")
            return GoalExtraction(success=False, error="Failed to extract goals from image.")

        try:
            goals = parse_goal_list(content or "[]", limit)
        except ValueError:
            logger.error(f"Failed to parse goals JSON: {content[:200]}")
            return GoalExtraction(success=False, error="Failed to parse goals from image.")

        logger.info(f"Extracted {len(goals)} goals from image")
        return GoalExtraction(success=True, goals=goals)


__all__ = ["AsyncInferenceClient", "parse_difficulty", "parse_goal_list"]

"""
Bounded retry around a single Gemini generateContent call.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from .errors import (
    GenerationError,
    RateLimited,
    TransientNetwork,
    UpstreamRejected,
    decode_error_response,
    decode_transport_error,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

Sleep = Callable[[float], Awaitable[None]]
Parser = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether, and how long, to wait before the next attempt."""
    max_attempts: int = 3
    base_delay_seconds: float = 5.0
    rate_limit_default_seconds: float = 60.0
    rate_limit_floor_seconds: float = 60.0
    rate_limit_buffer_seconds: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def rate_limit_wait(self, signaled: Optional[float]) -> float:
        # A missing or near-zero signal means upstream gave no usable hint.
        if signaled is None or signaled <= 1:
            return max(self.rate_limit_default_seconds, self.rate_limit_floor_seconds)
        return signaled + self.rate_limit_buffer_seconds

    def classify(self, error: GenerationError, attempt: int) -> Optional[float]:
        """
        Return the wait before retrying after `attempt` failed with `error`,
        or None when the error is not retryable.
        """
        if isinstance(error, RateLimited):
            return self.rate_limit_wait(error.retry_after_seconds)
        if isinstance(error, TransientNetwork):
            return self.base_delay_seconds * attempt
        return None


class RetryingApiClient:
    """
    Posts a generateContent payload with bounded retries.

    `models` is an ordered list of candidate model ids. A 404 on one model
    moves on to the next without consuming an attempt. Running out of
    models counts as running out of retries.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        models: Sequence[str],
        policy: Optional[RetryPolicy] = None,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 120.0,
        sleep: Sleep = asyncio.sleep,
        label: str = "Gemini",
    ):
        if not models:
            raise ValueError("At least one candidate model is required")
        self.http = http
        self.api_key = api_key
        self.models: List[str] = list(models)
        self.policy = policy or RetryPolicy()
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.sleep = sleep
        self.label = label

    def endpoint_for(self, model: str) -> str:
        return f"{self.api_base}/models/{model}:generateContent"

    async def _post(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.http.post(
                self.endpoint_for(model),
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            raise decode_transport_error(e) from e

        if response.status_code >= 400:
            raise decode_error_response(response)

        try:
            return response.json()
        except ValueError as e:
            raise TransientNetwork(f"malformed JSON body from {model}") from e

    def _give_up(self, error: GenerationError, attempts: int) -> GenerationError:
        error.attempts = max(attempts, 1)
        if isinstance(error, RateLimited):
            wait = self.policy.rate_limit_wait(error.retry_after_seconds)
            error.message = f"{error.message}; wait {wait:.0f}s before trying again"
        logger.error(f"[{self.label}] Giving up: {error}")
        return error

    async def call(self, payload: Dict[str, Any], parse: Parser) -> Any:
        """
        Run the call, retrying per policy, and return `parse(response_json)`.

        Raises the last GenerationError, annotated with the attempt count,
        once retries or candidate models are exhausted.
        """
        model_index = 0
        attempt = 0

        while True:
            attempt += 1
            model = self.models[model_index]
            logger.info(f"[{self.label}] Calling {model} (attempt {attempt}/{self.policy.max_attempts})")

            try:
                result = parse(await self._post(model, payload))
                logger.info(f"[{self.label}] {model} succeeded on attempt {attempt}")
                return result
            except GenerationError as e:
                error = e
                logger.warning(f"[{self.label}] Attempt {attempt}/{self.policy.max_attempts} failed: {e.summary}")

            if isinstance(error, UpstreamRejected) and error.http_status == 404:
                # A missing model does not use up an attempt
                model_index += 1
                attempt -= 1
                if model_index >= len(self.models):
                    raise self._give_up(error, attempt)
                logger.info(f"[{self.label}] Model {model} not found, falling back to {self.models[model_index]}")
                continue

            wait = self.policy.classify(error, attempt)
            if wait is None or attempt >= self.policy.max_attempts:
                raise self._give_up(error, attempt)

            logger.info(f"[{self.label}] Waiting {wait:.0f}s before retry ({attempt}/{self.policy.max_attempts})...")
            await self.sleep(wait)

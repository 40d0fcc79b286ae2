"""
Error taxonomy for Gemini generation calls.

Upstream failures are decoded once, at the HTTP boundary, into one of the
classes below. Retry code only ever looks at these types.
"""
import math
import re
from typing import Any, Dict, List, Optional

import httpx

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_RETRY_IN_PATTERN = re.compile(r"retry in ([\d.]+)s", re.IGNORECASE)


class GenerationError(Exception):
    """Base class for every failure of a generation attempt."""

    retryable = False
    kind = "generation failed"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.attempts: Optional[int] = None

    @property
    def summary(self) -> str:
        return f"{self.kind}: {self.message}"

    def __str__(self) -> str:
        if self.attempts:
            return f"{self.summary} (after {self.attempts} attempt(s))"
        return self.summary


class RateLimited(GenerationError):
    retryable = True
    kind = "API quota exhausted"

    def __init__(self, message: str, retry_after_seconds: Optional[float] = None):
        super().__init__(message)
        # Delay signaled by upstream, before buffer/floor are applied.
        self.retry_after_seconds = retry_after_seconds


class TransientNetwork(GenerationError):
    retryable = True
    kind = "network error"

    def __init__(self, cause: str):
        super().__init__(cause)
        self.cause = cause


class UpstreamRejected(GenerationError):
    kind = "request rejected"

    def __init__(self, http_status: int, message: str):
        super().__init__(f"HTTP {http_status}: {message}")
        self.http_status = http_status
        self.upstream_message = message


class ContentFiltered(GenerationError):
    kind = "blocked by safety filter"

    def __init__(self, block_reason: str):
        super().__init__(block_reason)
        self.block_reason = block_reason


class NoUsableOutput(GenerationError):
    kind = "no usable image in response"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ReferenceImagesUnavailable(GenerationError):
    kind = "reference images unavailable"


class AllVariantsFailed(GenerationError):
    kind = "all variants failed"

    def __init__(self, per_variant_reasons: List[str]):
        super().__init__("; ".join(per_variant_reasons))
        self.per_variant_reasons = per_variant_reasons


def _parse_delay(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().rstrip("s"))
        except ValueError:
            return None
    if isinstance(value, dict) and value.get("seconds") is not None:
        try:
            return float(value["seconds"])
        except (TypeError, ValueError):
            return None
    return None


def extract_retry_delay(payload: Any, message: str = "") -> Optional[float]:
    """
    Find the retry delay signaled in a 429 body.

    Looks for a google.rpc.RetryInfo detail first, then for a
    "retry in Ns" phrase in the message. Returns None when neither is present.
    """
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE:
                delay = _parse_delay(detail.get("retryDelay"))
                if delay is not None:
                    return delay
        message = error.get("message") or message

    match = _RETRY_IN_PATTERN.search(message or "")
    if match:
        return float(math.ceil(float(match.group(1))))
    return None


def _upstream_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    return fallback


def decode_error_response(response: httpx.Response) -> GenerationError:
    """Turn a >= 400 response into the matching GenerationError."""
    try:
        payload: Dict[str, Any] = response.json()
    except ValueError:
        payload = {}

    status = response.status_code
    message = _upstream_message(payload, response.reason_phrase or "unknown error")

    if status == 429:
        return RateLimited(message, extract_retry_delay(payload, message))
    if status in (502, 503, 504):
        return TransientNetwork(f"HTTP {status}: {message}")
    if status == 400:
        return UpstreamRejected(status, _upstream_message(payload, "invalid request parameters"))
    if status == 403:
        return UpstreamRejected(status, _upstream_message(payload, "API key lacks permission or model unavailable"))
    if status == 404:
        return UpstreamRejected(status, _upstream_message(payload, "model not found"))
    return UpstreamRejected(status, message)


def decode_transport_error(exc: httpx.TransportError) -> TransientNetwork:
    if isinstance(exc, httpx.TimeoutException):
        return TransientNetwork(f"request timed out ({type(exc).__name__})")
    return TransientNetwork(f"{type(exc).__name__}: {exc}")

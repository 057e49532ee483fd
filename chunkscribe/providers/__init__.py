"""
Inference API clients with lifecycle management.

A client turns one chunk payload into one output and reports failures as
classified InferenceError subclasses, so the chunk worker can decide
whether to retry, back off, or give up.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..errors import (
    InferenceError, InvalidCredential, InvalidRequest, QuotaExceeded,
    RateLimited, ServerError,
)
from ..types import Payload


logger = logging.getLogger(__name__)


class InferenceClient(ABC):
    """
    Base class for remote inference clients.

    Subclasses must implement:
    - invoke(): Send one payload, return the output or raise InferenceError

    and may override:
    - initialize(): Create HTTP sessions / validate credentials
    - shutdown(): Free resources
    """

    name: str = "base"

    def initialize(self) -> None:
        """Prepare the client for use."""

    @abstractmethod
    def invoke(self, payload: Payload, model: str, credential: str) -> Payload:
        """
        Run one chunk through the remote API.

        Args:
            payload: Chunk payload (WAV bytes or text)
            model: Model selector
            credential: API key

        Returns:
            The API output (text or PCM bytes)

        Raises:
            InferenceError: classified failure
        """

    def shutdown(self) -> None:
        """Release resources."""


_DURATION_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*s?\s*$")


def parse_retry_after(value: Any) -> Optional[float]:
    """
    Parse a server-provided delay.

    Accepts seconds ("12", 12), protobuf durations ("12s", "0.5s") and
    HTTP dates as used by the Retry-After header.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return max(0.0, float(value))

    text = str(value)
    match = _DURATION_RE.match(text)
    if match:
        return float(match.group(1))

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _retry_delay_from_body(error: Mapping[str, Any]) -> Optional[float]:
    """Pull google.rpc.RetryInfo.retryDelay out of an error body."""
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and "retryDelay" in detail:
            return parse_retry_after(detail["retryDelay"])
    return None


def classify_http_error(
    status: int,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
) -> InferenceError:
    """
    Map an HTTP error response onto the InferenceError taxonomy.

    Args:
        status: HTTP status code
        body: Response body (bytes, str or already-decoded JSON)
        headers: Response headers (for Retry-After)

    Returns:
        The classified error (not raised)
    """
    error: Mapping[str, Any] = {}
    if isinstance(body, (bytes, str)):
        try:
            body = json.loads(body or "{}")
        except ValueError:
            body = {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]

    message = str(error.get("message") or "")
    lower = message.lower()

    retry_after = _retry_delay_from_body(error)
    if retry_after is None and headers:
        retry_after = parse_retry_after(headers.get("Retry-After") or headers.get("retry-after"))

    # Message hints win over the status code
    if "api key" in lower or "authentication" in lower:
        return InvalidCredential(message)
    if "quota" in lower or "exceeded" in lower:
        return QuotaExceeded(retry_after=retry_after, message=message)
    if "rate limit" in lower:
        return RateLimited(retry_after=retry_after, message=message)

    if status == 429:
        return RateLimited(retry_after=retry_after, message=message)
    if status in (401, 403):
        return InvalidCredential(message or f"HTTP {status}")
    if status in (400, 404, 413, 422):
        return InvalidRequest(message or f"HTTP {status}")
    return ServerError(status, message)

"""
Error taxonomy.

Two families:
- InferenceError: what an API client raises for one call, tagged retryable or not.
- ChunkPipelineError: what a pipeline raises to its caller for a whole request.
"""

from typing import Dict, List, Optional


class InferenceError(Exception):
    """Base class for classified API client errors."""

    retryable: bool = False

    def __init__(self, message: str = "", retry_after: Optional[float] = None):
        super().__init__(message or self.__class__.__name__)
        self.retry_after = retry_after


class RateLimited(InferenceError):
    """HTTP 429 or an explicit rate limit message."""

    retryable = True

    def __init__(self, retry_after: Optional[float] = None, message: str = ""):
        super().__init__(message or "Rate limited", retry_after=retry_after)


class QuotaExceeded(InferenceError):
    """Quota exhausted; may recover after the provider's reset window."""

    retryable = True

    def __init__(self, retry_after: Optional[float] = None, message: str = ""):
        super().__init__(message or "Quota exceeded", retry_after=retry_after)


class InvalidCredential(InferenceError):
    retryable = False


class InvalidRequest(InferenceError):
    retryable = False


class ServerError(InferenceError):
    """Upstream failure. 5xx and 408 are transient, anything else is not."""

    def __init__(self, code: int, message: str = "", retryable: Optional[bool] = None):
        super().__init__(message or f"Server error (HTTP {code})")
        self.code = code
        if retryable is None:
            retryable = code >= 500 or code == 408
        self.retryable = retryable


class NetworkError(InferenceError):
    """Transport failure: DNS, connection reset, timeout."""

    retryable = True

    def __init__(self, detail: str = ""):
        super().__init__(f"Network error: {detail}" if detail else "Network error")
        self.detail = detail


RATE_LIMIT_ERRORS = (RateLimited, QuotaExceeded)


class ChunkPipelineError(Exception):
    """Base class for request-level pipeline errors."""


class Cancelled(ChunkPipelineError):
    """The operation was cancelled by its caller."""

    def __init__(self, message: str = "Cancelled"):
        super().__init__(message)


class EmptyInput(ChunkPipelineError):
    def __init__(self, message: str = "Input is empty"):
        super().__init__(message)


class SegmentationFailed(ChunkPipelineError):
    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to segment input: {cause}")
        self.cause = cause


class AllChunksFailed(ChunkPipelineError):
    def __init__(self, errors: Dict[int, BaseException]):
        super().__init__(f"All {len(errors)} chunks failed")
        self.errors = dict(sorted(errors.items()))

    @property
    def failed_indices(self) -> List[int]:
        return list(self.errors)


class PartialSuccess(ChunkPipelineError):
    """
    Some chunks failed. Only raised when the caller opted out of partial
    results (allow_partial=False); otherwise the pipeline returns a
    MergedOutput with failed_indices filled in.
    """

    def __init__(self, output, failed_indices: List[int], errors: Optional[Dict[int, BaseException]] = None):
        super().__init__(f"Partial result: {len(failed_indices)} chunk(s) failed: {failed_indices}")
        self.output = output
        self.failed_indices = list(failed_indices)
        self.errors = dict(errors or {})


class AudioMergeError(ChunkPipelineError):
    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index

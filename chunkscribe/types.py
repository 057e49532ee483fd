"""
Shared type definitions for chunkscribe.
"""

from dataclasses import dataclass, field
from typing import Dict, Generic, List, Optional, Tuple, TypeVar, Union

from .errors import Cancelled


Payload = Union[str, bytes]
T = TypeVar("T")


@dataclass(frozen=True)
class Chunk:
    """One bounded-size unit of a larger input."""
    index: int              # zero-based, contiguous, never reused
    payload: Payload        # text for TTS, WAV bytes for transcription
    start: float            # offset in source units (chars or seconds)
    end: float

    @property
    def boundaries(self) -> Tuple[float, float]:
        return (self.start, self.end)

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class ChunkSuccess:
    """Terminal outcome of a chunk whose API call succeeded."""
    index: int
    output: Payload
    attempts: int = 1


@dataclass(frozen=True)
class ChunkFailure:
    """Terminal outcome of a chunk that gave up (or was cancelled)."""
    index: int
    error: BaseException
    attempts: int = 0

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, Cancelled)


ChunkOutcome = Union[ChunkSuccess, ChunkFailure]


@dataclass(frozen=True)
class RateLimitState:
    """Point-in-time view of the rate limit coordinator."""
    pause_until: float              # clock() value; 0.0 means never paused
    consecutive_limit_hits: int
    notification_active: bool


@dataclass
class MergedOutput(Generic[T]):
    """Final pipeline result, plus every chunk that did not make it in."""
    output: T
    failed_indices: List[int] = field(default_factory=list)
    errors: Dict[int, BaseException] = field(default_factory=dict)
    total_chunks: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.failed_indices)


@dataclass(frozen=True)
class PipelineSettings:
    """
    Immutable snapshot of configuration for one pipeline.
    Ensures config changes mid-request don't cause inconsistency.
    """
    # Credentials
    gemini_api_key: str = ""

    # Models
    transcription_model: str = "gemini-2.5-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Kore"
    transcription_prompt: str = ""

    # Scheduling
    max_concurrency: int = 4
    max_attempts: int = 5
    retry_base_delay: float = 1.5
    request_timeout: float = 120.0

    # Rate limiting
    retry_after_buffer: float = 2.0
    rate_limit_backoff_base: float = 30.0
    rate_limit_backoff_cap: float = 120.0

    # Segmentation
    text_chunk_chars: int = 5000
    audio_chunk_seconds: float = 45.0
    audio_overlap_seconds: float = 2.0

    # Merging
    overlap_max_words: int = 15
    overlap_min_words: int = 3
    gap_markers: bool = False
    allow_partial: bool = True

    # Observability
    log_level: str = "info"
    metrics_enabled: bool = False
    metrics_file: Optional[str] = None

"""
chunkscribe - Long-input transcription and speech synthesis over a rate-limited API.

This package provides:
- Text and audio segmentation into bounded, ordered chunks
- Concurrent chunk dispatch with a concurrency cap
- Per-chunk retries with exponential backoff
- A shared rate limit pause that all workers honor
- Ordered merging with transcript overlap removal
- Partial results that report exactly which chunks failed

Main entry point: python -m chunkscribe
"""

from .cancel import CancellationToken
from .errors import (
    AllChunksFailed, Cancelled, ChunkPipelineError, EmptyInput, PartialSuccess,
    SegmentationFailed,
)
from .pipeline import SpeechPipeline, TranscriptionPipeline
from .progress import ProgressObserver
from .types import MergedOutput, PipelineSettings

__version__ = "1.0.0"

__all__ = [
    "AllChunksFailed",
    "CancellationToken",
    "Cancelled",
    "ChunkPipelineError",
    "EmptyInput",
    "MergedOutput",
    "PartialSuccess",
    "PipelineSettings",
    "ProgressObserver",
    "SegmentationFailed",
    "SpeechPipeline",
    "TranscriptionPipeline",
]

"""
Chunked request pipelines.

A pipeline owns one request flow end to end:
segment -> schedule chunk workers -> accumulate outcomes -> merge.

Two variants share it:
- TranscriptionPipeline: audio in, text out (overlap-deduplicating merge)
- SpeechPipeline: text in, PCM audio out (concatenating merge)

The rate limit coordinator belongs to the pipeline instance, so
back-to-back requests through the same pipeline share one pause
deadline.
"""

import logging
import time
from typing import Any, Generic, List, Optional, TypeVar
from uuid import uuid4

from .accumulator import ResultAccumulator
from .audio import AudioSource
from .cancel import CancellationToken, ensure_token
from .errors import (
    AllChunksFailed, Cancelled, ChunkPipelineError, EmptyInput, PartialSuccess,
    SegmentationFailed,
)
from .merge import merge_audio, merge_transcripts, merge_with_gaps
from .metrics import (
    MetricsWriter, log_chunk_outcome, log_rate_limited, log_request_complete, log_request_start,
)
from .progress import ProgressDispatcher
from .providers import InferenceClient
from .ratelimit import RateLimitCoordinator
from .scheduler import Scheduler
from .segment import AudioSegmenter, TextSegmenter
from .types import Chunk, ChunkSuccess, MergedOutput, PipelineSettings
from .worker import ChunkWorker


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChunkPipeline(Generic[T]):
    """
    Base class for chunked pipelines.

    Subclasses must implement:
    - model: Model selector passed to the client
    - _segment(): Split the input into chunks
    - _merge(): Assemble successful outputs into the final result
    """

    variant: str = "base"

    def __init__(
        self,
        client: InferenceClient,
        settings: Optional[PipelineSettings] = None,
        observer: Optional[Any] = None,
        metrics: Optional[MetricsWriter] = None,
        coordinator: Optional[RateLimitCoordinator] = None,
    ):
        self.settings = settings or PipelineSettings()
        self.client = client
        self.events = ProgressDispatcher(observer)
        self.metrics = metrics
        self.coordinator = coordinator or RateLimitCoordinator(
            name=f"RateLimit:{self.variant}",
            retry_after_buffer=self.settings.retry_after_buffer,
            backoff_base=self.settings.rate_limit_backoff_base,
            backoff_cap=self.settings.rate_limit_backoff_cap,
        )
        self.coordinator.on_waiting = self._on_rate_limit_waiting
        self.coordinator.on_resolved = self._on_rate_limit_resolved
        self._initialized = False

    @property
    def model(self) -> str:
        raise NotImplementedError

    def _segment(self, source: Any) -> List[Chunk]:
        raise NotImplementedError

    def _merge(self, successes: List[ChunkSuccess], failed_indices: List[int]) -> T:
        raise NotImplementedError

    def close(self) -> None:
        """Shut down the client and the progress thread."""
        if self._initialized:
            self.client.shutdown()
            self._initialized = False
        self.events.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def run(self, source: Any, token: Optional[CancellationToken] = None) -> MergedOutput[T]:
        """
        Process a whole input.

        Returns:
            MergedOutput; failed_indices is non-empty on partial success

        Raises:
            SegmentationFailed: input couldn't be split
            AllChunksFailed: no chunk succeeded
            Cancelled: every chunk was cancelled
            PartialSuccess: some chunks failed and settings.allow_partial is off
        """
        token = ensure_token(token)
        request_id = str(uuid4())
        start = time.time()
        total = 0
        failed: List[int] = []
        status = "error"

        if not self._initialized:
            self.client.initialize()
            self._initialized = True

        try:
            try:
                chunks = self._segment(source)
            except SegmentationFailed:
                raise
            except (EmptyInput, ValueError) as e:
                raise SegmentationFailed(e) from e

            total = len(chunks)
            logger.info("[Pipeline] %s request %s: %d chunk(s)", self.variant, request_id[:8], total)
            self.events.emit("chunking_started", total)
            if self.metrics:
                log_request_start(self.metrics, request_id, self.variant, total)

            accumulator = ResultAccumulator(total)
            self._scheduler(request_id).run(chunks, accumulator, token)

            successes = accumulator.successes()
            failed = accumulator.failed_indices()
            if not successes:
                if accumulator.all_cancelled():
                    logger.info("[Pipeline] All chunks were cancelled - propagating cancellation")
                    raise Cancelled()
                raise AllChunksFailed(accumulator.errors())

            self.events.emit("merging_started")
            output = self._merge(successes, failed)
            result: MergedOutput[T] = MergedOutput(
                output=output,
                failed_indices=failed,
                errors=accumulator.errors(),
                total_chunks=total,
            )

            if result.partial:
                status = "partial"
                logger.warning("[Pipeline] Partial success - %d chunk(s) failed: %s", len(failed), failed)
                if not self.settings.allow_partial:
                    raise PartialSuccess(output, failed, result.errors)
            else:
                status = "ok"

            logger.info("[Pipeline] Finished in %.2fs", time.time() - start)
            return result

        except Cancelled:
            status = "cancelled"
            raise
        except ChunkPipelineError as e:
            if status == "error":
                logger.error("[Pipeline] %s", e)
            raise
        finally:
            self.events.flush()
            if self.metrics:
                log_request_complete(
                    self.metrics, request_id, total, failed, (time.time() - start) * 1000, status,
                )

    def _scheduler(self, request_id: str) -> Scheduler:
        worker = ChunkWorker(
            client=self.client,
            coordinator=self.coordinator,
            model=self.model,
            credential=self.settings.gemini_api_key,
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_base_delay,
            events=self.events,
        )

        on_outcome = None
        if self.metrics:
            on_outcome = lambda outcome: log_chunk_outcome(self.metrics, request_id, outcome)

        return Scheduler(worker, concurrency=self.settings.max_concurrency, events=self.events, on_outcome=on_outcome)

    def _on_rate_limit_waiting(self, seconds: float) -> None:
        self.events.emit("rate_limit_waiting", seconds)
        if self.metrics:
            log_rate_limited(self.metrics, self.coordinator.name, seconds)

    def _on_rate_limit_resolved(self) -> None:
        self.events.emit("rate_limit_resolved")


class TranscriptionPipeline(ChunkPipeline[str]):
    """
    Transcribes long audio by splitting it into overlapping windows.

    Usage:
        pipeline = TranscriptionPipeline(GeminiTranscriber(), settings)
        result = pipeline.transcribe("meeting.wav")
        print(result.output, result.failed_indices)
    """

    variant = "transcription"

    def __init__(self, client: InferenceClient, settings: Optional[PipelineSettings] = None, **kwargs):
        super().__init__(client, settings, **kwargs)
        self.segmenter = AudioSegmenter(
            chunk_seconds=self.settings.audio_chunk_seconds,
            overlap_seconds=self.settings.audio_overlap_seconds,
        )

    @property
    def model(self) -> str:
        return self.settings.transcription_model

    def transcribe(self, source: AudioSource, token: Optional[CancellationToken] = None) -> MergedOutput[str]:
        return self.run(source, token)

    def _segment(self, source: AudioSource) -> List[Chunk]:
        return self.segmenter.split(source)

    def _merge(self, successes: List[ChunkSuccess], failed_indices: List[int]) -> str:
        transcripts = [(s.index, str(s.output or "")) for s in successes]
        if self.settings.gap_markers and failed_indices:
            return merge_with_gaps(transcripts, failed_indices)
        return merge_transcripts(
            transcripts,
            max_overlap_words=self.settings.overlap_max_words,
            min_overlap_words=self.settings.overlap_min_words,
        )


class SpeechPipeline(ChunkPipeline[bytes]):
    """
    Synthesizes speech for long text by splitting it at sentence boundaries.

    Output is raw PCM (16-bit, mono); see audio.pcm_to_wav_bytes.
    """

    variant = "tts"

    def __init__(self, client: InferenceClient, settings: Optional[PipelineSettings] = None, **kwargs):
        super().__init__(client, settings, **kwargs)
        self.segmenter = TextSegmenter(max_chars=self.settings.text_chunk_chars)

    @property
    def model(self) -> str:
        return self.settings.tts_model

    def synthesize(self, text: str, token: Optional[CancellationToken] = None) -> MergedOutput[bytes]:
        return self.run(text, token)

    def _segment(self, text: str) -> List[Chunk]:
        return self.segmenter.split(text)

    def _merge(self, successes: List[ChunkSuccess], failed_indices: List[int]) -> bytes:
        return merge_audio([(s.index, s.output) for s in successes])

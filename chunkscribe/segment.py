"""
Segmenters: split a long payload into ordered, bounded-size chunks.

TextSegmenter cuts at sentence boundaries, then word boundaries, then
mid-word as a last resort. AudioSegmenter cuts fixed windows, nudged back
into silence where possible, and exports each window as WAV bytes with a
short overlap tail so the transcript merger can stitch boundary words.
"""

import logging
from typing import List, Optional

import numpy as np

from .audio import AudioSource, SILENCE_THRESHOLD_DB, audio_to_wav_bytes, load_mono, rms_db
from .errors import EmptyInput, SegmentationFailed
from .types import Chunk


logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = frozenset(".!?\n")


class TextSegmenter:
    """
    Splits text into chunks at natural boundaries.

    Offsets are character positions in the original (untrimmed) text.
    Consecutive chunks share a boundary, so the ranges tile the source
    exactly: the first starts at 0, the last ends at len(text).

    Usage:
        segmenter = TextSegmenter(max_chars=5000)
        chunks = segmenter.split(long_text)
    """

    def __init__(self, max_chars: int = 5000, search_ratio: float = 0.3, min_search_chars: int = 200):
        if max_chars < 1:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars
        self.search_ratio = search_ratio
        self.min_search_chars = min_search_chars

    def needs_chunking(self, text: str) -> bool:
        """Check whether text exceeds one chunk."""
        return len(text.strip()) > self.max_chars

    def split(self, text: str) -> List[Chunk]:
        """
        Split text into chunks.

        Args:
            text: The text to split

        Returns:
            Chunks sorted by index, each trimmed and no longer than max_chars

        Raises:
            EmptyInput: if the text is empty after trimming
        """
        trimmed = text.strip()
        if not trimmed:
            raise EmptyInput("Cannot split empty text")

        if len(trimmed) <= self.max_chars:
            logger.debug("[Segmenter] Text fits in single chunk (%d chars)", len(trimmed))
            return [Chunk(index=0, payload=trimmed, start=0, end=len(text))]

        spans: List[List] = []  # [start, end, text]
        length = len(text)
        pos = 0

        while pos < length:
            content_start = pos
            while content_start < length and text[content_start].isspace():
                content_start += 1

            if content_start >= length:
                # Only trailing whitespace left: belongs to the previous chunk
                spans[-1][1] = length
                break

            rest = text[content_start:].rstrip()
            if len(rest) <= self.max_chars:
                spans.append([pos, length, rest])
                break

            cut = self._find_split_point(text, content_start)
            piece = text[pos:cut].strip()
            if piece:
                spans.append([pos, cut, piece])
            elif spans:
                spans[-1][1] = cut
            pos = cut

        chunks = [
            Chunk(index=i, payload=piece, start=start, end=end)
            for i, (start, end, piece) in enumerate(spans)
        ]

        logger.info("[Segmenter] Split %d chars into %d chunks", len(trimmed), len(chunks))
        for chunk in chunks:
            logger.debug("[Segmenter] Chunk %d: %d chars, range %d-%d", chunk.index, chunk.size, chunk.start, chunk.end)
        return chunks

    def _find_split_point(self, text: str, content_start: int) -> int:
        """
        Find the absolute offset at which the next chunk should end.

        Only the tail of the window is searched, so a boundary near the
        start of the window can't produce a tiny chunk.
        """
        window_end = content_start + self.max_chars
        window_len = window_end - content_start
        search_len = max(self.min_search_chars, int(window_len * self.search_ratio))
        search_start = max(content_start, window_end - search_len)

        # Sentence boundary: terminator immediately followed by whitespace
        for i in range(window_end - 1, search_start - 1, -1):
            if text[i] in SENTENCE_TERMINATORS and i + 1 < len(text) and text[i + 1].isspace():
                return self._skip_whitespace(text, i + 1)

        # Word boundary
        for i in range(window_end - 1, search_start - 1, -1):
            if text[i].isspace() and i > content_start:
                return self._skip_whitespace(text, i)

        # Mid-word, last resort
        logger.debug("[Segmenter] No boundary near offset %d, cutting mid-word", window_end)
        return window_end

    @staticmethod
    def _skip_whitespace(text: str, pos: int) -> int:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        return pos


class AudioSegmenter:
    """
    Splits audio into fixed-length windows for parallel transcription.

    Boundaries (start/end in seconds) are contiguous and non-overlapping.
    The exported payload of each chunk extends `overlap_seconds` past its
    end so speech cut at the boundary appears in both neighbours.
    """

    FRAME_SECONDS = 0.05

    def __init__(
        self,
        chunk_seconds: float = 45.0,
        overlap_seconds: float = 2.0,
        silence_search_seconds: float = 3.0,
        silence_threshold_db: float = SILENCE_THRESHOLD_DB,
    ):
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be positive")
        if overlap_seconds < 0:
            raise ValueError("overlap_seconds must not be negative")
        self.chunk_seconds = chunk_seconds
        self.overlap_seconds = overlap_seconds
        self.silence_search_seconds = silence_search_seconds
        self.silence_threshold_db = silence_threshold_db

    def duration(self, source: AudioSource) -> float:
        audio, sample_rate = self._load(source)
        return len(audio) / sample_rate

    def needs_chunking(self, source: AudioSource) -> bool:
        return self.duration(source) > self.chunk_seconds + self.overlap_seconds

    def split(self, source: AudioSource) -> List[Chunk]:
        """
        Split audio into WAV chunks.

        Args:
            source: Audio file path or (samples, sample_rate)

        Returns:
            Chunks sorted by index; boundaries in seconds

        Raises:
            EmptyInput: if the audio has no samples
            SegmentationFailed: if the file can't be read
        """
        audio, sample_rate = self._load(source)
        total_samples = len(audio)
        if total_samples == 0:
            raise EmptyInput("Audio contains no samples")

        total_seconds = total_samples / sample_rate
        if total_seconds <= self.chunk_seconds + self.overlap_seconds:
            logger.debug("[Segmenter] Audio fits in single chunk (%.1fs)", total_seconds)
            return [Chunk(index=0, payload=audio_to_wav_bytes(audio, sample_rate), start=0.0, end=total_seconds)]

        chunk_samples = int(round(self.chunk_seconds * sample_rate))
        overlap_samples = int(round(self.overlap_seconds * sample_rate))

        chunks: List[Chunk] = []
        start = 0
        while start < total_samples:
            end = min(start + chunk_samples, total_samples)
            if end < total_samples:
                end = self._snap_to_silence(audio, sample_rate, start, end)
            # A tail shorter than the overlap is already inside this chunk's export
            if total_samples - end <= overlap_samples:
                end = total_samples

            export_end = min(end + overlap_samples, total_samples)
            chunks.append(Chunk(
                index=len(chunks),
                payload=audio_to_wav_bytes(audio[start:export_end], sample_rate),
                start=start / sample_rate,
                end=end / sample_rate,
            ))
            start = end

        logger.info("[Segmenter] Split %.1fs of audio into %d chunks", total_seconds, len(chunks))
        return chunks

    def _snap_to_silence(self, audio: np.ndarray, sample_rate: int, start: int, end: int) -> int:
        """Move a cut back to the quietest frame before it, if that frame is silent."""
        frame = max(1, int(self.FRAME_SECONDS * sample_rate))
        search_from = max(start + frame, end - int(self.silence_search_seconds * sample_rate))

        best_pos: Optional[int] = None
        best_db = float("inf")
        pos = end - frame
        while pos >= search_from:
            db = rms_db(audio[pos:pos + frame])
            if db < best_db:
                best_db = db
                best_pos = pos + frame // 2
            pos -= frame

        if best_pos is not None and best_db < self.silence_threshold_db:
            return best_pos
        return end

    @staticmethod
    def _load(source: AudioSource):
        try:
            return load_mono(source)
        except (RuntimeError, OSError, ValueError, TypeError) as e:
            raise SegmentationFailed(e) from e

"""
Merging chunk outputs back into one result.

Text: consecutive transcripts often repeat a few words at the boundary
(the audio chunks overlap), so the longest matching run of words between
the end of the merged text and the start of the next chunk is dropped.

"Hello world." and "hello world" match: comparison ignores case and
punctuation around each word.

Audio: raw PCM chunks are concatenated in index order.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import AudioMergeError


logger = logging.getLogger(__name__)

MAX_OVERLAP_WORDS = 15
MIN_OVERLAP_WORDS = 3

_EDGE_PUNCTUATION = re.compile(r"^[\W_]+|[\W_]+$")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces."""
    return " ".join(text.split())


def clean_word(word: str) -> str:
    """Lowercase a word and strip punctuation around it."""
    return _EDGE_PUNCTUATION.sub("", word).casefold()


def words_match(left: Sequence[str], right: Sequence[str]) -> bool:
    if len(left) != len(right):
        return False
    return all(clean_word(a) == clean_word(b) for a, b in zip(left, right))


def remove_overlap(
    previous: str,
    current: str,
    max_words: int = MAX_OVERLAP_WORDS,
    min_words: int = MIN_OVERLAP_WORDS,
) -> Optional[str]:
    """
    Drop the start of `current` that repeats the end of `previous`.

    Returns:
        The remainder of current ("" if fully overlapped), or None if no
        overlap of at least min_words was found
    """
    previous_words = previous.split()
    current_words = current.split()

    if len(previous_words) < min_words or len(current_words) < min_words:
        return None

    suffix = previous_words[-max_words:]
    for length in range(min(len(suffix), len(current_words)), min_words - 1, -1):
        if words_match(suffix[-length:], current_words[:length]):
            logger.debug("[Merger] Removed %d overlapping words", length)
            return " ".join(current_words[length:])

    return None


def merge_transcripts(
    transcripts: Iterable[Tuple[int, str]],
    max_overlap_words: int = MAX_OVERLAP_WORDS,
    min_overlap_words: int = MIN_OVERLAP_WORDS,
) -> str:
    """
    Merge chunk transcripts into one text.

    Args:
        transcripts: (index, text) pairs in any order

    Returns:
        Merged text with boundary overlaps removed and whitespace normalized
    """
    ordered = sorted(transcripts, key=lambda t: t[0])
    if not ordered:
        return ""

    result = ""
    for _, text in ordered:
        text = text.strip()
        if not text:
            continue
        if not result:
            result = text
            continue

        remainder = remove_overlap(result, text, max_overlap_words, min_overlap_words)
        if remainder is None:
            result += " " + text
        elif remainder:
            result += " " + remainder

    return normalize_whitespace(result)


def gap_marker(index: int) -> str:
    # 1-based, as shown to users
    return f"[chunk {index + 1} failed]"


def merge_with_gaps(transcripts: Iterable[Tuple[int, str]], failed_indices: Iterable[int]) -> str:
    """
    Merge transcripts, marking where failed chunks would have been.

    No overlap removal: a hole already breaks continuity.
    """
    pieces = {index: text.strip() for index, text in transcripts}
    failed = set(failed_indices)
    if not pieces:
        return ""

    parts: List[str] = []
    for index in sorted(set(pieces) | failed):
        if index in pieces:
            if pieces[index]:
                parts.append(pieces[index])
        else:
            parts.append(gap_marker(index))

    return normalize_whitespace(" ".join(parts))


def merge_audio(chunks: Iterable[Tuple[int, bytes]], bytes_per_sample: int = 2) -> bytes:
    """
    Concatenate PCM chunks in index order.

    Raises:
        AudioMergeError: no chunks, or a chunk isn't whole samples
    """
    ordered = sorted(chunks, key=lambda c: c[0])
    if not ordered:
        raise AudioMergeError("No audio chunks provided for merging")

    for index, data in ordered:
        if len(data) % bytes_per_sample != 0:
            raise AudioMergeError(
                f"Invalid format for chunk {index}: data length ({len(data)}) "
                f"is not a multiple of {bytes_per_sample} bytes",
                index=index,
            )
        if not data:
            logger.warning("[Merger] Chunk %d has empty audio, skipping", index)

    merged = b"".join(data for _, data in ordered)
    logger.info("[Merger] Merged %d audio chunks into %d bytes", len(ordered), len(merged))
    return merged

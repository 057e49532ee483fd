"""
Audio helpers: loading, WAV encoding and loudness measurement.

Everything works on mono float32 numpy arrays in [-1, 1].
"""

import io
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import soundfile as sf


# Gemini TTS returns raw PCM in this format
TTS_SAMPLE_RATE = 24000
TTS_SAMPLE_WIDTH = 2  # 16-bit

SILENCE_THRESHOLD_DB = -35  # dB threshold for silence detection

AudioSource = Union[str, Path, Tuple[np.ndarray, int]]


def load_mono(source: AudioSource) -> Tuple[np.ndarray, int]:
    """
    Load audio as mono float32.

    Integer sample arrays (int16 from sf.read(dtype="int16"), uint8 WAV
    data, ...) are rescaled to [-1, 1].

    Args:
        source: Path to any file soundfile can read, or a (samples, sample_rate) tuple

    Returns:
        (samples, sample_rate)
    """
    if isinstance(source, tuple):
        audio, sample_rate = source
        audio = _to_float(np.asarray(audio))
    else:
        audio, sample_rate = sf.read(str(source), dtype="float32", always_2d=False)

    # Convert to mono if stereo
    if audio.ndim > 1:
        audio = np.mean(audio, axis=1)

    return audio.astype(np.float32, copy=False), int(sample_rate)


def _to_float(audio: np.ndarray) -> np.ndarray:
    if audio.dtype.kind == "i":
        return audio.astype(np.float64) / np.iinfo(audio.dtype).max
    if audio.dtype.kind == "u":
        # Unsigned PCM is offset by half the range
        midpoint = (np.iinfo(audio.dtype).max + 1) / 2
        return (audio.astype(np.float64) - midpoint) / midpoint
    if audio.dtype.kind != "f":
        raise ValueError(f"Unsupported audio sample type: {audio.dtype}")
    return audio


def audio_to_wav_bytes(audio: np.ndarray, sample_rate: int = 16000) -> bytes:
    """Convert numpy audio array to WAV bytes."""
    audio_int16 = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    sf.write(buffer, audio_int16, sample_rate, format="WAV", subtype="PCM_16")
    buffer.seek(0)
    return buffer.getvalue()


def pcm_to_wav_bytes(pcm: bytes, sample_rate: int = TTS_SAMPLE_RATE) -> bytes:
    """Wrap raw 16-bit little-endian mono PCM in a WAV container."""
    samples = np.frombuffer(pcm, dtype="<i2")
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    buffer.seek(0)
    return buffer.getvalue()


def pcm_duration(pcm: bytes, sample_rate: int = TTS_SAMPLE_RATE) -> float:
    """Duration in seconds of raw 16-bit mono PCM."""
    return len(pcm) / TTS_SAMPLE_WIDTH / sample_rate


def rms_db(audio: np.ndarray) -> float:
    """RMS level in dBFS; -inf for digital silence."""
    if len(audio) == 0:
        return float("-inf")

    rms = np.sqrt(np.mean(audio.astype(np.float64) ** 2))
    if rms == 0:
        return float("-inf")

    return float(20 * np.log10(rms))

"""Audio helpers."""

from __future__ import annotations

import io
import wave
from typing import Iterable

import numpy as np


def to_int16(chunk) -> np.ndarray:
    data = np.asarray(chunk)
    if data.dtype == np.int16:
        return data
    if np.issubdtype(data.dtype, np.floating):
        return (np.clip(data, -1.0, 1.0) * 32767).astype(np.int16)
    return data.astype(np.int16)


def encode_wav(chunks: Iterable, sample_rate_hz: int, channels: int) -> bytes:
    """Pack recorded chunks into a 16-bit PCM WAV byte string."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate_hz)
        for chunk in chunks:
            handle.writeframes(to_int16(chunk).tobytes())
    return buffer.getvalue()


import io
import wave

import numpy as np

from moodframe.audio_utils import encode_wav, to_int16
from moodframe.captioning import NullCaptioner, WhisperCaptioner


def _frames(data):
    with wave.open(io.BytesIO(data), "rb") as handle:
        return handle.getnframes(), handle.getframerate()


def test_encode_wav_duration():
    chunks = [np.zeros((8000, 1), dtype=np.int16), np.zeros((8000, 1), dtype=np.int16)]
    data = encode_wav(chunks, sample_rate_hz=16000, channels=1)
    assert data[:4] == b"RIFF"
    assert _frames(data) == (16000, 16000)


def test_encode_wav_without_chunks_is_valid():
    data = encode_wav([], sample_rate_hz=16000, channels=1)
    assert _frames(data) == (0, 16000)


def test_to_int16_scales_floats():
    out = to_int16(np.array([0.0, 1.0, -2.0], dtype=np.float32))
    assert out.dtype == np.int16
    assert out.tolist() == [0, 32767, -32767]


def test_null_captioner_is_silent():
    captioner = NullCaptioner()
    captioner.start(16000, 1)
    captioner.feed(np.zeros((10, 1)))
    captioner.stop()
    assert captioner.text() == ""


def test_whisper_captioner_ignores_feed_after_stop():
    captioner = WhisperCaptioner()
    captioner.stop()
    captioner.feed(np.zeros((10, 1)))
    assert captioner.text() == ""

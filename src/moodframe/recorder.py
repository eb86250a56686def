"""Audio capture and the recording session lifecycle."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .audio_utils import encode_wav
from .captioning import Captioner
from .errors import DeviceError, InvalidStateError
from .heuristics import estimate_emotion
from .models import AudioCapture, HeuristicAnalysis

logger = logging.getLogger("moodframe")


def list_input_devices() -> List[Dict[str, Any]]:
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise DeviceError("sounddevice is required for device detection.") from exc

    devices = sd.query_devices()
    return [dict(d) for d in devices if d.get("max_input_channels", 0) > 0]


def select_preferred_device(
    candidates: List[Dict[str, Any]],
    prefer_name: Optional[str] = None,
) -> Dict[str, Any]:
    if not candidates:
        raise DeviceError("No input devices found.")
    if prefer_name:
        preferred = [
            d for d in candidates if prefer_name.lower() in d.get("name", "").lower()
        ]
        if preferred:
            return preferred[0]
    return candidates[0]


def find_input_device(prefer_name: Optional[str] = None) -> Dict[str, Any]:
    return select_preferred_device(list_input_devices(), prefer_name=prefer_name)


class CaptureDevice:
    """An input stream that pushes chunks to a callback until closed."""

    def open(self, on_chunk: Callable[[Any], None]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SoundDeviceCapture(CaptureDevice):
    def __init__(
        self,
        sample_rate_hz: int = 16000,
        channels: int = 1,
        device_name: Optional[str] = None,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self.channels = channels
        self.device_name = device_name
        self._stream = None

    def open(self, on_chunk: Callable[[Any], None]) -> None:
        try:
            import sounddevice as sd
        except Exception as exc:  # pragma: no cover - environment-dependent
            raise DeviceError("sounddevice is required for recording.") from exc

        device = find_input_device(self.device_name)

        def _callback(indata, _frames, _time, status):
            if status:
                logger.debug("Input stream status: %s", status)
            on_chunk(indata.copy())

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=self.channels,
                dtype="int16",
                device=device.get("index"),
                callback=_callback,
            )
            self._stream.start()
        except Exception as exc:
            self._stream = None
            raise DeviceError(f"Could not open input device: {exc}") from exc

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class DeviceSlot:
    """Exclusive claim on the capture device across sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self, timeout: float = 0.0) -> bool:
        if timeout <= 0:
            return self._lock.acquire(blocking=False)
        return self._lock.acquire(timeout=timeout)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


default_slot = DeviceSlot()


class RecordingState(str, Enum):
    IDLE = "idle"
    REQUESTING_DEVICE = "requesting_device"
    RECORDING = "recording"
    STOPPING = "stopping"
    HANDED_OFF = "handed_off"
    ABORTED = "aborted"


TERMINAL_STATES = (RecordingState.HANDED_OFF, RecordingState.ABORTED)


class RecordingSession:
    """One capture from device acquisition to hand-off (or abort).

    The device, the caption side channel and the device slot are released on
    every exit path. ``stop`` returns the finished capture synchronously; what
    happens to it afterwards is the caller's business.
    """

    def __init__(
        self,
        device: Optional[CaptureDevice] = None,
        captioner: Optional[Captioner] = None,
        sample_rate_hz: int = 16000,
        channels: int = 1,
        slot: Optional[DeviceSlot] = None,
        slot_timeout: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self.channels = channels
        self._device = device or SoundDeviceCapture(sample_rate_hz, channels)
        self._captioner = captioner
        self._slot = slot or default_slot
        self._slot_timeout = slot_timeout
        self._clock = clock
        self._state = RecordingState.IDLE
        self._state_lock = threading.Lock()
        self._chunks: List[Any] = []
        self._chunks_lock = threading.Lock()
        self._started_at: Optional[float] = None
        self._holds_slot = False
        self._device_open = False
        self._captioner_running = False
        self._feed_captions = False

    @property
    def state(self) -> RecordingState:
        return self._state

    def _transition(self, expected: Tuple[RecordingState, ...], target: RecordingState) -> None:
        with self._state_lock:
            if self._state not in expected:
                raise InvalidStateError(
                    f"Cannot move from {self._state.value} to {target.value}."
                )
            logger.debug("Recording %s -> %s", self._state.value, target.value)
            self._state = target

    def start(self) -> None:
        self._transition((RecordingState.IDLE,), RecordingState.REQUESTING_DEVICE)
        try:
            if not self._slot.acquire(self._slot_timeout):
                raise DeviceError("Another recording session is still active.")
            self._holds_slot = True
            self._device.open(self._on_chunk)
            self._device_open = True
        except Exception as exc:
            self._cleanup()
            self._state = RecordingState.ABORTED
            logger.warning("Recording aborted while acquiring device: %s", exc)
            if isinstance(exc, DeviceError):
                raise
            raise DeviceError(f"Microphone unavailable: {exc}") from exc

        self._start_captioner()
        self._started_at = self._clock()
        try:
            self._transition((RecordingState.REQUESTING_DEVICE,), RecordingState.RECORDING)
        except InvalidStateError:
            self._cleanup()
            raise
        logger.info("Recording started")

    def _start_captioner(self) -> None:
        if self._captioner is None:
            return
        try:
            self._captioner.start(self.sample_rate_hz, self.channels)
            self._captioner_running = True
            self._feed_captions = True
        except Exception as exc:
            logger.info("Live captions disabled: %s", exc)

    def _on_chunk(self, chunk: Any) -> None:
        if self._state is not RecordingState.RECORDING:
            return
        with self._chunks_lock:
            self._chunks.append(chunk)
        if not self._feed_captions:
            return
        try:
            self._captioner.feed(chunk)
        except Exception as exc:
            logger.info("Live captions dropped: %s", exc)
            self._feed_captions = False

    def stop(self) -> Tuple[AudioCapture, Optional[HeuristicAnalysis]]:
        self._transition((RecordingState.RECORDING,), RecordingState.STOPPING)
        try:
            now = self._clock()
            started = self._started_at if self._started_at is not None else now
            duration_s = max(0.0, now - started)
            self._close_device()
            self._stop_captioner()
            caption = self._caption_text()
            with self._chunks_lock:
                chunks, self._chunks = self._chunks, []
            capture = AudioCapture(
                data=encode_wav(chunks, self.sample_rate_hz, self.channels),
                mime_type="audio/wav",
                duration_ms=int(round(duration_s * 1000)),
                sample_rate_hz=self.sample_rate_hz,
                channels=self.channels,
            )
            heuristic = estimate_emotion(caption, duration_s)
        except Exception as exc:
            self._cleanup()
            self._state = RecordingState.ABORTED
            raise DeviceError(f"Failed to finalize recording: {exc}") from exc
        finally:
            self._cleanup()

        self._transition((RecordingState.STOPPING,), RecordingState.HANDED_OFF)
        logger.info("Recording handed off (%d ms)", capture.duration_ms)
        return capture, heuristic

    def cancel(self) -> None:
        with self._state_lock:
            if self._state is RecordingState.ABORTED:
                return
            if self._state is RecordingState.HANDED_OFF:
                raise InvalidStateError("Recording was already handed off.")
            self._state = RecordingState.ABORTED
        self._cleanup()
        with self._chunks_lock:
            self._chunks = []
        logger.info("Recording cancelled")

    def _caption_text(self) -> str:
        if self._captioner is None:
            return ""
        try:
            return self._captioner.text()
        except Exception as exc:
            logger.info("Live captions unreadable: %s", exc)
            return ""

    def _close_device(self) -> None:
        if not self._device_open:
            return
        self._device_open = False
        try:
            self._device.close()
        except Exception as exc:
            logger.warning("Input device did not close cleanly: %s", exc)

    def _stop_captioner(self) -> None:
        if not self._captioner_running:
            return
        self._captioner_running = False
        try:
            self._captioner.stop()
        except Exception as exc:
            logger.info("Live captions did not stop cleanly: %s", exc)

    def _cleanup(self) -> None:
        self._close_device()
        self._stop_captioner()
        if self._holds_slot:
            self._holds_slot = False
            self._slot.release()

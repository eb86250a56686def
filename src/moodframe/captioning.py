"""Live captions captured alongside a recording."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, List, Optional

logger = logging.getLogger("moodframe")


class Captioner:
    """Optional observer of recorded chunks. The base class does nothing."""

    def start(self, sample_rate_hz: int, channels: int) -> None:
        pass

    def feed(self, chunk: Any) -> None:
        pass

    def text(self) -> str:
        return ""

    def stop(self) -> None:
        pass


NullCaptioner = Captioner


class WhisperCaptioner(Captioner):
    """Incremental faster-whisper captions on a background thread."""

    def __init__(
        self,
        model_name: str = "tiny",
        language: Optional[str] = None,
        device: Optional[str] = None,
        compute_type: Optional[str] = None,
        chunk_seconds: float = 4.0,
        overlap_seconds: float = 0.5,
        queue_size: int = 50,
    ) -> None:
        self.model_name = model_name
        self.language = language
        self.device = device
        self.compute_type = compute_type
        self.chunk_seconds = chunk_seconds
        self.overlap_seconds = overlap_seconds
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._pieces: List[str] = []
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self, sample_rate_hz: int, channels: int) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._worker, args=(sample_rate_hz, channels), daemon=True
        )
        self._thread.start()

    def feed(self, chunk: Any) -> None:
        if self._stop_event.is_set():
            return
        try:
            self._queue.put_nowait(chunk)
        except queue.Full:
            pass

    def text(self) -> str:
        with self._lock:
            return " ".join(self._pieces).strip()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _append(self, segments) -> None:
        text = " ".join(s.text.strip() for s in segments).strip()
        if text:
            with self._lock:
                self._pieces.append(text)

    def _worker(self, sample_rate_hz: int, channels: int) -> None:
        try:
            import numpy as np
            from faster_whisper import WhisperModel
        except Exception as exc:  # pragma: no cover - optional dependency
            logger.info("Live captions unavailable: %s", exc)
            return

        kwargs = {}
        if self.device:
            kwargs["device"] = self.device
        if self.compute_type:
            kwargs["compute_type"] = self.compute_type
        try:
            model = WhisperModel(self.model_name, **kwargs)
        except Exception as exc:  # pragma: no cover - model download/runtime
            logger.warning("Live caption model failed to load: %s", exc)
            return

        chunk_samples = int(sample_rate_hz * self.chunk_seconds)
        overlap_samples = int(sample_rate_hz * self.overlap_seconds)
        buffer = np.zeros((0, channels), dtype=np.float32)

        def _mono(window):
            return window.mean(axis=1) if window.shape[1] > 1 else window[:, 0]

        while True:
            try:
                item = self._queue.get(timeout=0.25)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue
            if item is None:
                if self._stop_event.is_set():
                    break
                continue

            chunk = item
            if chunk.ndim == 1:
                chunk = chunk.reshape(-1, 1)
            if chunk.dtype != np.float32:
                chunk = chunk.astype(np.float32) / 32768.0
            buffer = np.concatenate([buffer, chunk], axis=0)

            while buffer.shape[0] >= chunk_samples:
                window = buffer[:chunk_samples]
                buffer = buffer[chunk_samples - overlap_samples :] if overlap_samples > 0 else buffer[chunk_samples:]
                try:
                    segments, _info = model.transcribe(_mono(window), language=self.language)
                    self._append(segments)
                except Exception as exc:
                    logger.warning("Live caption error: %s", exc)

        if buffer.shape[0] > 0:
            try:
                segments, _info = model.transcribe(_mono(buffer), language=self.language)
                self._append(segments)
            except Exception as exc:
                logger.warning("Live caption error on final window: %s", exc)

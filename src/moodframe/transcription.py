"""Best-effort transcript and emotion from a captured buffer.

Providers are tried in a fixed priority order. A provider that is not
configured, raises, or returns nothing simply contributes no value; only the
chain as a whole fails, with ``NoTranscriptError``, once every source including
the caller's live-caption heuristic has come back empty.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import httpx

from .errors import NoTranscriptError, ProviderError
from .generative import GenerativeClient
from .models import AudioCapture, HeuristicAnalysis, ProviderTag, TranscriptionResult, normalize_score
from .provider_client import ProviderClient

logger = logging.getLogger("moodframe")


class TranscriptionProvider:
    name = "provider"
    tag = ProviderTag.NONE
    # Providers that only transcribe are skipped once a transcript exists.
    supplies_emotion = False

    @property
    def configured(self) -> bool:
        return True

    def analyze(self, capture: AudioCapture) -> TranscriptionResult:
        raise NotImplementedError


class GeminiSpeechProvider(TranscriptionProvider):
    name = "gemini"
    tag = ProviderTag.GEMINI

    def __init__(self, client: Optional[GenerativeClient], enabled: bool = True) -> None:
        self._client = client
        self._enabled = enabled

    @property
    def configured(self) -> bool:
        return self._enabled and self._client is not None

    def analyze(self, capture: AudioCapture) -> TranscriptionResult:
        text = self._client.transcribe(capture)
        return TranscriptionResult(transcript=text, source=self.tag)


class AnalysisProxyProvider(TranscriptionProvider):
    name = "analysis_proxy"
    tag = ProviderTag.ANALYSIS_PROXY
    supplies_emotion = True

    def __init__(self, provider: ProviderClient, url: Optional[str]) -> None:
        self._provider = provider
        self.url = url

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def analyze(self, capture: AudioCapture) -> TranscriptionResult:
        filename = f"audio.{capture.extension}"
        data = self._provider.call(
            self.url,
            provider=self.name,
            files={"file": (filename, capture.data, capture.mime_type)},
        )
        if not isinstance(data, dict):
            raise ProviderError("Proxy returned an unexpected payload", kind="parse", provider=self.name)
        return TranscriptionResult(
            transcript=data.get("transcription") or None,
            emotion_label=data.get("emotionLabel") or None,
            emotion_score=normalize_score(data.get("emotionScore")),
            source=self.tag,
            emotion_source=self.tag,
        )


def relay_transcript(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return str(payload[0].get("text") or "")
    if isinstance(payload, dict):
        if payload.get("error"):
            raise ProviderError(str(payload["error"]), kind="relay", provider="relay")
        return str(payload.get("transcription") or payload.get("text") or "")
    return ""


class RelayTranscriptionProvider(TranscriptionProvider):
    """Speech recognition through a model-serving relay that may be cold."""

    name = "relay"
    tag = ProviderTag.RELAY

    def __init__(
        self,
        provider: ProviderClient,
        url: Optional[str],
        token: Optional[str] = None,
        model: str = "openai/whisper-tiny",
    ) -> None:
        self._provider = provider
        self.url = url
        self.token = token
        self.model = model

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def analyze(self, capture: AudioCapture) -> TranscriptionResult:
        if not capture.data:
            raise ProviderError("Empty audio data received", kind="empty", provider=self.name)
        headers = {"Content-Type": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        def _parse(response: httpx.Response) -> str:
            return relay_transcript(response.json())

        text = self._provider.call(
            self.url,
            provider=self.name,
            content=capture.data,
            headers=headers,
            params={"model": self.model, "wait_for_model": "true"},
            parse_fn=_parse,
        )
        if not text or "unavailable" in text.lower():
            raise ProviderError("Transcription unavailable", kind="empty", provider=self.name)
        return TranscriptionResult(transcript=text, source=self.tag)


class TranscriptionChain:
    def __init__(self, providers: Sequence[TranscriptionProvider]) -> None:
        self.providers: List[TranscriptionProvider] = list(providers)

    def run(
        self,
        capture: Optional[AudioCapture],
        heuristic: Optional[HeuristicAnalysis] = None,
    ) -> TranscriptionResult:
        result = TranscriptionResult()

        if capture is not None:
            for provider in self.providers:
                if result.has_transcript and not provider.supplies_emotion:
                    continue
                if result.has_transcript and result.emotion_label:
                    break
                if not provider.configured:
                    logger.debug("Transcription provider %s not configured; skipping", provider.name)
                    continue
                try:
                    found = provider.analyze(capture)
                except Exception as exc:
                    logger.warning("Transcription provider %s failed: %s", provider.name, exc)
                    continue
                self._merge(result, found)

        if not result.has_transcript and heuristic and heuristic.transcript.strip():
            result.transcript = heuristic.transcript.strip()
            result.source = ProviderTag.HEURISTIC
        if not result.emotion_label and heuristic and heuristic.emotion_label:
            result.emotion_label = heuristic.emotion_label
            result.emotion_score = heuristic.emotion_score
            result.emotion_source = ProviderTag.HEURISTIC

        if not result.has_transcript:
            raise NoTranscriptError()

        result.transcript = result.transcript.strip()
        logger.info(
            "Transcript from %s, emotion from %s (%s)",
            result.source.value,
            result.emotion_source.value,
            result.emotion_label or "none",
        )
        return result

    @staticmethod
    def _merge(result: TranscriptionResult, found: TranscriptionResult) -> None:
        if not result.has_transcript and found.has_transcript:
            result.transcript = found.transcript
            result.source = found.source
        if not result.emotion_label and found.emotion_label:
            result.emotion_label = found.emotion_label
            result.emotion_score = found.emotion_score
            result.emotion_source = found.emotion_source

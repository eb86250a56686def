"""Caller-facing check-in pipeline: capture, transcribe, analyze, persist."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

import httpx

from .analysis import AnalysisOrchestrator
from .captioning import Captioner, WhisperCaptioner
from .config import Config, validate_config
from .errors import InvalidStateError, MoodFrameError, NoTranscriptError
from .generative import GenerativeClient
from .models import (
    AudioCapture,
    CheckInRecord,
    HeuristicAnalysis,
    RecordingMetadata,
    TranscriptionResult,
    normalize_score,
)
from .provider_client import ProviderClient
from .recorder import TERMINAL_STATES, RecordingSession, SoundDeviceCapture
from .storage import recording_object_path
from .store import PersistenceWriter, SupabaseStore
from .transcription import (
    AnalysisProxyProvider,
    GeminiSpeechProvider,
    RelayTranscriptionProvider,
    TranscriptionChain,
)

logger = logging.getLogger("moodframe")

RETRY_MESSAGE = "An error occurred. Please try again."


@dataclass
class CaptureComplete:
    duration_ms: int
    has_live_transcript: bool


@dataclass
class AnalysisComplete:
    record: CheckInRecord
    transcription: TranscriptionResult


@dataclass
class AnalysisFailed:
    message: str
    return_to: str
    error: Optional[BaseException] = None


PipelineEvent = Union[CaptureComplete, AnalysisComplete, AnalysisFailed]
Listener = Callable[[PipelineEvent], None]


class CheckInPipeline:
    def __init__(
        self,
        user_id: str,
        chain: TranscriptionChain,
        orchestrator: AnalysisOrchestrator,
        writer: Optional[PersistenceWriter] = None,
        session_factory: Optional[Callable[[], RecordingSession]] = None,
        listener: Optional[Listener] = None,
        recordings_bucket: str = "recordings",
        background: bool = True,
        http: Optional[httpx.Client] = None,
    ) -> None:
        if not user_id:
            raise MoodFrameError("A user id is required to run a check-in.")
        self.user_id = user_id
        self.chain = chain
        self.orchestrator = orchestrator
        self.writer = writer
        self.session_factory = session_factory or RecordingSession
        self.listener = listener
        self.recordings_bucket = recordings_bucket
        self.background = background
        self.session: Optional[RecordingSession] = None
        self.last_transcription: Optional[TranscriptionResult] = None
        self._threads: List[threading.Thread] = []
        self._http = http

    def _emit(self, event: PipelineEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception:
            logger.exception("Pipeline listener raised on %s", type(event).__name__)

    def _fail(self, message: str, return_to: str, error: Optional[BaseException] = None) -> None:
        logger.error("Check-in failed (%s): %s", return_to, message)
        self._emit(AnalysisFailed(message=message, return_to=return_to, error=error))

    def _spawn(self, target: Callable, *args) -> None:
        if not self.background:
            target(*args)
            return
        thread = threading.Thread(target=target, args=args, daemon=True)
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)
        thread.start()

    def wait(self, timeout: Optional[float] = None) -> None:
        for thread in list(self._threads):
            thread.join(timeout)

    def close(self) -> None:
        """Release the owned HTTP client once background runs have finished."""
        self.wait()
        http, self._http = self._http, None
        if http is not None:
            http.close()

    def __enter__(self) -> "CheckInPipeline":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    # Capture

    def start_capture(self) -> RecordingSession:
        if self.session is not None and self.session.state not in TERMINAL_STATES:
            raise InvalidStateError("A recording is already in progress.")
        self.session = self.session_factory()
        self.session.start()
        return self.session

    def stop_capture(self) -> CaptureComplete:
        if self.session is None:
            raise InvalidStateError("No recording in progress.")
        capture, heuristic = self.session.stop()
        event = CaptureComplete(
            duration_ms=capture.duration_ms,
            has_live_transcript=heuristic is not None,
        )
        self._emit(event)
        self._spawn(self._process_capture, capture, heuristic)
        return event

    def cancel_capture(self) -> None:
        if self.session is None:
            return
        self.session.cancel()

    def rerun_analysis(
        self,
        transcript: str,
        emotion_label: Optional[str] = None,
        emotion_score: Optional[float] = None,
    ) -> None:
        """Start a fresh analysis run from an earlier transcript; persists a new record."""
        if not transcript or not transcript.strip():
            self._fail("No transcript available yet. Please record again.", "capture")
            return
        transcription = TranscriptionResult(
            transcript=transcript.strip(),
            emotion_label=emotion_label,
            emotion_score=normalize_score(emotion_score),
        )
        self._spawn(self._analyze, transcription)

    # Processing

    def _process_capture(self, capture: AudioCapture, heuristic: Optional[HeuristicAnalysis]) -> None:
        try:
            try:
                transcription = self.chain.run(capture, heuristic)
            except NoTranscriptError as exc:
                self._fail(RETRY_MESSAGE, "capture", exc)
                return
            storage_path = self._upload(capture)
            if storage_path is not None:
                self.writer.persist_recording(
                    RecordingMetadata(
                        user_id=self.user_id,
                        storage_path=storage_path,
                        duration_ms=capture.duration_ms,
                        transcript=transcription.transcript,
                        emotion_label=transcription.emotion_label,
                        emotion_score=transcription.emotion_score,
                    )
                )
        except MoodFrameError as exc:
            self._fail(str(exc), "home", exc)
            return
        except Exception as exc:
            logger.exception("Check-in processing crashed")
            self._fail(str(exc) or RETRY_MESSAGE, "home", exc)
            return
        del capture
        self._analyze(transcription)

    def _upload(self, capture: AudioCapture) -> Optional[str]:
        if self.writer is None:
            return None
        path = recording_object_path(self.user_id, capture.extension)
        return self.writer.store.upload(
            self.recordings_bucket, path, capture.data, capture.mime_type
        )

    def _analyze(self, transcription: TranscriptionResult) -> None:
        self.last_transcription = transcription
        try:
            record = self.orchestrator.run(
                transcription.transcript,
                transcription.emotion_label,
                transcription.emotion_score,
                user_id=self.user_id,
            )
        except MoodFrameError as exc:
            self._fail(str(exc), "home", exc)
            return
        except Exception as exc:
            logger.exception("Check-in analysis crashed")
            self._fail(str(exc) or RETRY_MESSAGE, "home", exc)
            return
        self._emit(AnalysisComplete(record=record, transcription=transcription))


def build_writer(config: Config, http: Optional[httpx.Client] = None) -> PersistenceWriter:
    store = SupabaseStore(
        config.store.url,
        config.store.api_key,
        access_token=config.store.access_token,
        http=http,
        timeout_s=config.providers.timeout_s,
    )
    return PersistenceWriter(
        store,
        check_ins_table=config.store.check_ins_table,
        recordings_table=config.store.recordings_table,
        profiles_table=config.store.profiles_table,
    )


def build_pipeline(
    config: Config,
    listener: Optional[Listener] = None,
    http: Optional[httpx.Client] = None,
    captioner: Optional[Captioner] = None,
    background: bool = True,
) -> CheckInPipeline:
    """Construct every collaborator explicitly from a validated config."""
    validate_config(config, require_store=True)
    owned_http = None
    if http is None:
        http = owned_http = httpx.Client()
    policy = config.providers
    provider = ProviderClient(
        http,
        timeout_s=policy.timeout_s,
        max_retries=policy.max_retries,
        cold_start_default_s=policy.cold_start_default_s,
        retry_interval_s=policy.retry_interval_s,
    )
    generator = GenerativeClient(
        provider,
        api_key=config.generative.api_key,
        model=config.generative.model,
        base_url=config.generative.base_url,
    )
    chain = TranscriptionChain(
        [
            GeminiSpeechProvider(generator, enabled=config.generative.transcribe_audio),
            AnalysisProxyProvider(provider, config.proxy.url),
            RelayTranscriptionProvider(
                provider, config.relay.url, token=config.relay.token, model=config.relay.model
            ),
        ]
    )
    writer = build_writer(config, http)

    def _refresh_history(owner: str) -> None:
        entries = writer.history(owner)
        logger.info("History refreshed: %d check-in(s)", len(entries))

    writer.on_saved = _refresh_history
    orchestrator = AnalysisOrchestrator(
        generator, writer, max_workers=config.analysis.max_workers
    )

    audio = config.audio
    if captioner is None and audio.live_captions:
        captioner = WhisperCaptioner(model_name=audio.caption_model)

    def _session() -> RecordingSession:
        # A fresh captioner per session; the previous one may still be flushing.
        session_captioner = captioner
        if isinstance(captioner, WhisperCaptioner):
            session_captioner = WhisperCaptioner(model_name=captioner.model_name)
        return RecordingSession(
            device=SoundDeviceCapture(audio.sample_rate_hz, audio.channels, audio.device_name),
            captioner=session_captioner,
            sample_rate_hz=audio.sample_rate_hz,
            channels=audio.channels,
        )

    return CheckInPipeline(
        user_id=config.user_id,
        chain=chain,
        orchestrator=orchestrator,
        writer=writer,
        session_factory=_session,
        listener=listener,
        recordings_bucket=config.store.recordings_bucket,
        background=background,
        http=owned_http,
    )

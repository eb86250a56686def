import httpx
import pytest

from fakes import FakeGenerator, FakeWriter
from moodframe.analysis import AnalysisOrchestrator
from moodframe.errors import NoTranscriptError, ProviderError
from moodframe.models import AudioCapture, HeuristicAnalysis, ProviderTag, TranscriptionResult
from moodframe.provider_client import ProviderClient
from moodframe.transcription import (
    AnalysisProxyProvider,
    RelayTranscriptionProvider,
    TranscriptionChain,
    TranscriptionProvider,
    relay_transcript,
)

CAPTURE = AudioCapture(data=b"RIFF....", mime_type="audio/wav", duration_ms=4000)


class StubProvider(TranscriptionProvider):
    def __init__(self, name, result=None, error=None, supplies_emotion=False, configured=True):
        self.name = name
        self.supplies_emotion = supplies_emotion
        self._result = result
        self._error = error
        self._configured = configured
        self.calls = 0

    @property
    def configured(self):
        return self._configured

    def analyze(self, capture):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._result


def _gemini(text="I slept badly", error=None):
    return StubProvider(
        "gemini",
        result=TranscriptionResult(transcript=text, source=ProviderTag.GEMINI),
        error=error,
    )


def _proxy(text="proxy text", label="sad", score=0.3, error=None):
    return StubProvider(
        "analysis_proxy",
        result=TranscriptionResult(
            transcript=text,
            emotion_label=label,
            emotion_score=score,
            source=ProviderTag.ANALYSIS_PROXY,
            emotion_source=ProviderTag.ANALYSIS_PROXY,
        ),
        error=error,
        supplies_emotion=True,
    )


def _relay(text="relay text", error=None):
    return StubProvider(
        "relay",
        result=TranscriptionResult(transcript=text, source=ProviderTag.RELAY),
        error=error,
    )


def test_transcript_from_gemini_emotion_from_proxy():
    relay = _relay()
    result = TranscriptionChain([_gemini(), _proxy(), relay]).run(CAPTURE)

    assert result.transcript == "I slept badly"
    assert result.source is ProviderTag.GEMINI
    assert result.emotion_label == "sad"
    assert result.emotion_score == 0.3
    assert result.emotion_source is ProviderTag.ANALYSIS_PROXY
    assert relay.calls == 0


def test_proxy_supplies_both_when_gemini_fails():
    result = TranscriptionChain(
        [_gemini(error=ProviderError("down")), _proxy(), _relay()]
    ).run(CAPTURE)

    assert result.transcript == "proxy text"
    assert result.source is ProviderTag.ANALYSIS_PROXY


def test_relay_used_when_earlier_sources_are_empty():
    result = TranscriptionChain(
        [_gemini(error=ProviderError("down")), _proxy(text=None, label=None, score=None), _relay()]
    ).run(CAPTURE)

    assert result.transcript == "relay text"
    assert result.source is ProviderTag.RELAY
    assert result.emotion_label is None


def test_heuristic_fills_in_when_providers_fail():
    heuristic = HeuristicAnalysis(transcript="live caption words", emotion_label="excited")
    result = TranscriptionChain(
        [_gemini(error=ProviderError("down")), _proxy(error=ProviderError("down"))]
    ).run(CAPTURE, heuristic)

    assert result.transcript == "live caption words"
    assert result.source is ProviderTag.HEURISTIC
    assert result.emotion_label == "excited"
    assert result.emotion_source is ProviderTag.HEURISTIC


def test_remote_emotion_wins_over_heuristic():
    heuristic = HeuristicAnalysis(transcript="caption", emotion_label="excited")
    result = TranscriptionChain([_proxy(label="calm", score=0.8)]).run(CAPTURE, heuristic)

    assert result.transcript == "proxy text"
    assert result.emotion_label == "calm"
    assert result.emotion_score == 0.8


def test_heuristic_label_completes_remote_transcript():
    heuristic = HeuristicAnalysis(transcript="caption", emotion_label="anxious")
    result = TranscriptionChain([_gemini()]).run(CAPTURE, heuristic)

    assert result.transcript == "I slept badly"
    assert result.emotion_label == "anxious"


def test_unconfigured_providers_are_skipped():
    proxy = StubProvider("analysis_proxy", configured=False, supplies_emotion=True)
    result = TranscriptionChain([proxy, _gemini()]).run(CAPTURE)

    assert proxy.calls == 0
    assert result.transcript == "I slept badly"


def test_no_transcript_anywhere_raises():
    chain = TranscriptionChain(
        [_gemini(error=ProviderError("down")), _proxy(text="  ", label="sad")]
    )
    with pytest.raises(NoTranscriptError):
        chain.run(CAPTURE, HeuristicAnalysis(transcript=""))


def test_missing_capture_uses_heuristic_only():
    gemini = _gemini()
    result = TranscriptionChain([gemini]).run(None, HeuristicAnalysis(transcript="typed"))

    assert gemini.calls == 0
    assert result.transcript == "typed"


def _provider_client(handler):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return ProviderClient(http, sleep=lambda _s: None)


def test_proxy_posts_multipart_audio():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200, json={"transcription": "hello there", "emotionLabel": "happy", "emotionScore": 0.9}
        )

    provider = AnalysisProxyProvider(_provider_client(handler), "https://proxy.test/analyze")
    result = provider.analyze(CAPTURE)

    assert seen[0].headers["content-type"].startswith("multipart/form-data")
    assert b'filename="audio.wav"' in seen[0].content
    assert result.transcript == "hello there"
    assert result.emotion_label == "happy"
    assert result.emotion_score == 0.9


def test_relay_waits_out_cold_start():
    seen = []

    def handler(request):
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(503, json={"estimated_time": 1})
        return httpx.Response(200, json={"transcription": "warm now"})

    provider = RelayTranscriptionProvider(
        _provider_client(handler), "https://relay.test/asr", token="hf_x"
    )
    result = provider.analyze(CAPTURE)

    assert result.transcript == "warm now"
    assert result.source is ProviderTag.RELAY
    request = seen[-1]
    assert request.headers["authorization"] == "Bearer hf_x"
    assert request.headers["content-type"] == "application/octet-stream"
    assert request.url.params["model"] == "openai/whisper-tiny"
    assert request.url.params["wait_for_model"] == "true"
    assert request.content == CAPTURE.data


def test_relay_rejects_unavailable_text():
    provider = RelayTranscriptionProvider(
        _provider_client(lambda request: httpx.Response(200, json={"transcription": "Transcription unavailable"})),
        "https://relay.test/asr",
    )
    with pytest.raises(ProviderError):
        provider.analyze(CAPTURE)


def test_relay_transcript_shapes():
    assert relay_transcript({"transcription": "a"}) == "a"
    assert relay_transcript({"text": "b"}) == "b"
    assert relay_transcript([{"text": "c"}]) == "c"
    with pytest.raises(ProviderError):
        relay_transcript({"error": "model failed"})


@pytest.mark.parametrize("raw_score", [b"NaN", b"Infinity", b"true", b'"0.7"'])
def test_proxy_drops_unusable_scores(raw_score):
    body = b'{"transcription": "hi there", "emotionLabel": "sad", "emotionScore": ' + raw_score + b"}"

    def handler(request):
        return httpx.Response(200, content=body, headers={"content-type": "application/json"})

    provider = AnalysisProxyProvider(_provider_client(handler), "https://proxy.test/analyze")
    result = TranscriptionChain([provider]).run(CAPTURE)

    assert result.transcript == "hi there"
    assert result.emotion_label == "sad"
    assert result.emotion_score is None


def test_proxy_nan_score_still_produces_one_record():
    body = b'{"transcription": "hi there", "emotionLabel": "sad", "emotionScore": NaN}'
    provider = AnalysisProxyProvider(
        _provider_client(lambda request: httpx.Response(200, content=body)),
        "https://proxy.test/analyze",
    )
    result = TranscriptionChain([provider]).run(CAPTURE)

    writer = FakeWriter()
    record = AnalysisOrchestrator(FakeGenerator(), writer).run(
        result.transcript, result.emotion_label, result.emotion_score, user_id="u1"
    )

    assert writer.records == [record]
    assert record.energy_level is None
    assert record.emotion_label == "sad"

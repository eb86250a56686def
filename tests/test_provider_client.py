import logging

import httpx
import pytest

from moodframe.errors import ProviderError
from moodframe.provider_client import ProviderClient, cold_start_wait

URL = "https://relay.test/models/asr"


def _client(handler, sleeps, **kwargs):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return ProviderClient(http, sleep=sleeps.append, **kwargs)


def _cold_then_ok(cold_response):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return cold_response
        return httpx.Response(200, json={"transcription": "hello"})

    return handler, calls


def test_cold_start_waits_for_estimated_time():
    handler, calls = _cold_then_ok(httpx.Response(503, json={"estimated_time": 2}))
    sleeps = []
    client = _client(handler, sleeps)

    assert client.call(URL, provider="relay") == {"transcription": "hello"}
    assert sleeps == [2.0]
    assert len(calls) == 2


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={}),
        httpx.Response(503, json={"estimated_time": "soon"}),
        httpx.Response(503, text="Service Unavailable"),
    ],
)
def test_cold_start_defaults_to_fifteen_seconds(response):
    handler, _calls = _cold_then_ok(response)
    sleeps = []
    client = _client(handler, sleeps)

    client.call(URL, provider="relay")
    assert sleeps == [15.0]


def test_cold_start_wait_parsing():
    assert cold_start_wait('{"estimated_time": 7.5}') == 7.5
    assert cold_start_wait('{"estimated_time": -1}') == 15.0
    assert cold_start_wait("[1, 2]") == 15.0
    assert cold_start_wait("", default=4.0) == 4.0


def test_other_failures_retry_after_fixed_interval_and_raise():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "boom"})

    sleeps = []
    client = _client(handler, sleeps, max_retries=3)

    with pytest.raises(ProviderError) as excinfo:
        client.call(URL, provider="gemini:insight")

    assert len(calls) == 3
    assert sleeps == [2.0, 2.0]
    assert excinfo.value.status == 500
    assert excinfo.value.kind == "http"
    assert excinfo.value.provider == "gemini:insight"


def test_no_sleep_after_final_cold_start():
    sleeps = []
    client = _client(lambda request: httpx.Response(503, json={"estimated_time": 3}), sleeps, max_retries=2)

    with pytest.raises(ProviderError) as excinfo:
        client.call(URL, provider="relay")

    assert sleeps == [3.0]
    assert excinfo.value.status == 503


def test_transport_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"ok": True})

    sleeps = []
    client = _client(handler, sleeps)

    assert client.call(URL, provider="analysis_proxy") == {"ok": True}
    assert sleeps == [2.0, 2.0]


def test_transport_failure_exhausts_as_transport_kind():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler, [], max_retries=2)

    with pytest.raises(ProviderError) as excinfo:
        client.call(URL, provider="relay")

    assert excinfo.value.kind == "transport"
    assert excinfo.value.status is None


def test_parse_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, text="<html>not json</html>")

    sleeps = []
    client = _client(handler, sleeps)

    with pytest.raises(ProviderError) as excinfo:
        client.call(URL, provider="relay")

    assert excinfo.value.kind == "parse"
    assert len(calls) == 1
    assert sleeps == []


def test_per_call_overrides():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(500)

    client = _client(handler, [], max_retries=5)

    with pytest.raises(ProviderError):
        client.call(URL, provider="relay", max_retries=1, timeout=5.0)

    assert len(seen) == 1
    assert seen[0].extensions["timeout"]["read"] == 5.0


def test_each_attempt_is_logged(caplog):
    caplog.set_level(logging.INFO, logger="moodframe.provider")
    handler, _calls = _cold_then_ok(httpx.Response(503, json={"estimated_time": 2}))
    client = _client(handler, [])

    client.call(URL, provider="relay")

    messages = [r.getMessage() for r in caplog.records]
    assert "provider=relay attempt=1/3 outcome=cold_start wait_s=2.0" in messages
    assert "provider=relay attempt=2/3 outcome=ok status=200" in messages

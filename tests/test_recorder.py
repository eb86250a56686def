import numpy as np
import pytest

from fakes import FakeCaptioner, FakeDevice, ticking_clock
from moodframe.errors import DeviceError, InvalidStateError
from moodframe.recorder import DeviceSlot, RecordingSession, RecordingState, select_preferred_device


def _session(device=None, captioner=None, slot=None, clock=None):
    return RecordingSession(
        device=device or FakeDevice(),
        captioner=captioner,
        slot=slot or DeviceSlot(),
        clock=clock or ticking_clock(0.0, 3.0),
    )


def _chunk(frames=1600):
    return np.zeros((frames, 1), dtype=np.int16)


def test_select_preferred_device_prefers_name():
    candidates = [
        {"name": "Built-in Mic", "index": 1},
        {"name": "USB Headset Microphone", "index": 2},
    ]
    result = select_preferred_device(candidates, prefer_name="headset")
    assert result["name"] == "USB Headset Microphone"


def test_select_preferred_device_falls_back_to_first():
    candidates = [{"name": "Built-in Mic", "index": 1}, {"name": "Line In", "index": 2}]
    assert select_preferred_device(candidates, prefer_name="zoom")["name"] == "Built-in Mic"


def test_select_preferred_device_without_candidates():
    with pytest.raises(DeviceError):
        select_preferred_device([])


def test_stop_hands_off_capture_and_releases_everything():
    device = FakeDevice()
    captioner = FakeCaptioner(caption="I feel fine today")
    slot = DeviceSlot()
    session = _session(device, captioner, slot)

    session.start()
    assert session.state is RecordingState.RECORDING
    assert slot.busy
    device.on_chunk(_chunk())
    device.on_chunk(_chunk())

    capture, heuristic = session.stop()

    assert session.state is RecordingState.HANDED_OFF
    assert capture.data.startswith(b"RIFF")
    assert capture.mime_type == "audio/wav"
    assert capture.duration_ms == 3000
    assert heuristic.transcript == "I feel fine today"
    assert heuristic.emotion_label == "calm"
    assert captioner.fed == 2
    assert captioner.stopped
    assert device.closed
    assert not slot.busy


def test_stop_without_captions_has_no_heuristic():
    session = _session()
    session.start()
    _capture, heuristic = session.stop()
    assert heuristic is None


def test_cancel_before_stop_discards_and_releases():
    device = FakeDevice()
    slot = DeviceSlot()
    session = _session(device, FakeCaptioner(), slot)

    session.start()
    device.on_chunk(_chunk())
    session.cancel()

    assert session.state is RecordingState.ABORTED
    assert device.closed
    assert not slot.busy
    device.on_chunk(_chunk())
    with pytest.raises(InvalidStateError):
        session.stop()
    session.cancel()


def test_cancel_after_hand_off_is_rejected():
    session = _session()
    session.start()
    session.stop()
    with pytest.raises(InvalidStateError):
        session.cancel()


def test_device_failure_aborts_and_frees_slot():
    slot = DeviceSlot()
    session = _session(FakeDevice(open_error=RuntimeError("permission denied")), slot=slot)

    with pytest.raises(DeviceError):
        session.start()

    assert session.state is RecordingState.ABORTED
    assert not slot.busy


def test_device_is_exclusive():
    slot = DeviceSlot()
    first = _session(slot=slot)
    second = _session(slot=slot)

    first.start()
    with pytest.raises(DeviceError):
        second.start()
    assert second.state is RecordingState.ABORTED
    assert first.state is RecordingState.RECORDING

    first.stop()
    third = _session(slot=slot)
    third.start()
    assert third.state is RecordingState.RECORDING
    third.cancel()


def test_session_cannot_start_twice():
    session = _session()
    session.start()
    with pytest.raises(InvalidStateError):
        session.start()
    session.cancel()


def test_failing_captioner_does_not_stop_recording():
    class BrokenCaptioner(FakeCaptioner):
        def feed(self, chunk):
            raise RuntimeError("model crashed")

    device = FakeDevice()
    session = _session(device, BrokenCaptioner(caption="still here"))
    session.start()
    device.on_chunk(_chunk())
    device.on_chunk(_chunk())
    capture, _heuristic = session.stop()

    assert session.state is RecordingState.HANDED_OFF
    assert len(capture.data) > 44

# FILE: tests/test_violation_detector.py

import pytest

from proctored_test.models.violation import ViolationType, violation_message
from proctored_test.services.violation_detector import AppState, ViolationDetector, classify_signal


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, violation_type, details=None):
        self.calls.append((violation_type, details))


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("paste", ViolationType.COPY_PASTE),
        ("Clipboard", ViolationType.COPY_PASTE),
        ("screen-capture", ViolationType.SCREENSHOT),
        ("screen recording", ViolationType.SCREEN_RECORD),
        ("blur", ViolationType.TAB_SWITCH),
        ("background", ViolationType.APP_BACKGROUND),
        ("shake_device", ViolationType.UNKNOWN),
        (42, ViolationType.UNKNOWN),
        (ViolationType.SCREENSHOT, ViolationType.SCREENSHOT),
    ],
)
def test_classify_signal(raw, expected):
    assert classify_signal(raw) is expected


def test_each_signal_is_one_violation():
    """연속 신호도 병합하지 않는다"""
    listener = Recorder()
    with ViolationDetector(listener) as detector:
        detector.handle_signal("copy")
        detector.handle_signal("copy")
        detector.handle_signal("screenshot", "volume+power")

    assert [c[0] for c in listener.calls] == [
        ViolationType.COPY_PASTE,
        ViolationType.COPY_PASTE,
        ViolationType.SCREENSHOT,
    ]
    assert listener.calls[2][1] == "volume+power"


def test_signals_ignored_when_not_registered():
    listener = Recorder()
    detector = ViolationDetector(listener)
    assert detector.handle_signal("copy") is None

    detector.start()
    detector.stop()
    assert detector.handle_signal("copy") is None
    assert listener.calls == []


def test_unknown_signal_still_counts():
    listener = Recorder()
    with ViolationDetector(listener) as detector:
        assert detector.handle_signal("weird") is ViolationType.UNKNOWN
    assert listener.calls == [(ViolationType.UNKNOWN, None)]


def test_app_state_only_leaving_active_is_violation():
    listener = Recorder()
    with ViolationDetector(listener) as detector:
        assert detector.handle_app_state_change("background") is ViolationType.APP_BACKGROUND
        assert detector.handle_app_state_change("inactive") is None
        assert detector.handle_app_state_change("active") is None
        assert detector.handle_app_state_change("inactive") is ViolationType.APP_BACKGROUND
        assert detector.app_state is AppState.INACTIVE

    assert listener.calls == [
        (ViolationType.APP_BACKGROUND, "active -> background"),
        (ViolationType.APP_BACKGROUND, "active -> inactive"),
    ]


def test_invalid_app_state_raises():
    detector = ViolationDetector(Recorder())
    detector.start()
    with pytest.raises(ValueError):
        detector.handle_app_state_change("sleeping")


def test_debounce_drops_same_type_within_window():
    now = [100.0]
    listener = Recorder()
    detector = ViolationDetector(listener, debounce_seconds=2, clock=lambda: now[0])
    detector.start()

    assert detector.handle_signal("copy") is ViolationType.COPY_PASTE
    now[0] += 0.5
    assert detector.handle_signal("paste") is None
    assert detector.handle_signal("screenshot") is ViolationType.SCREENSHOT
    now[0] += 5
    assert detector.handle_signal("copy") is ViolationType.COPY_PASTE

    assert len(listener.calls) == 3


def test_violation_messages():
    assert violation_message(ViolationType.SCREENSHOT) == "Screenshot attempt detected"
    assert violation_message(ViolationType.UNKNOWN) == "Suspicious activity detected"
    assert ViolationType.parse("nope") is ViolationType.UNKNOWN

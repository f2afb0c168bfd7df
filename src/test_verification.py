"""
Tests for the verification coordinator and the HTTP oracle client, using
in-process fake oracles and a fake requests session.
"""

import base64
import threading

import numpy as np
import pytest
import requests

from verification import (
    NO_DOCUMENT_TEXT,
    DetectionEvent,
    DocumentOracle,
    EventLog,
    HttpDocumentOracle,
    Validity,
    VerificationCoordinator,
)


class FakeOracle(DocumentOracle):
    def __init__(self, holding=True, content="Quarterly report", error=None):
        self.holding = holding
        self.content = content
        self.error = error
        self.calls = []

    def is_holding_document(self, image):
        self.calls.append("is_holding_document")
        if self.error is not None:
            raise self.error
        return self.holding

    def extract_content(self, image):
        self.calls.append("extract_content")
        return self.content


def _frame():
    frame = np.zeros((120, 160, 3), dtype=np.uint8)
    frame[40:80, 50:110] = 255
    return frame


def _verify_one(oracle):
    coordinator = VerificationCoordinator(oracle, verbose=False)
    coordinator.start()
    try:
        event = DetectionEvent("Line pattern detected", 1000)
        assert coordinator.submit(event, _frame())
        assert coordinator.pending
        assert event.validity is Validity.PENDING
        assert coordinator.wait(timeout=5)
        resolved = coordinator.poll()
    finally:
        coordinator.stop()
    return coordinator, event, resolved


def test_document_is_valid_with_content():
    oracle = FakeOracle(holding=True, content="Quarterly report")
    coordinator, event, resolved = _verify_one(oracle)

    assert resolved == [event]
    assert event.validity is Validity.VALID
    assert event.result_text == "Quarterly report"
    assert not coordinator.pending
    assert oracle.calls == ["is_holding_document", "extract_content"]


def test_no_document_skips_extraction():
    oracle = FakeOracle(holding=False)
    _, event, _ = _verify_one(oracle)

    assert event.validity is Validity.INVALID
    assert event.result_text == NO_DOCUMENT_TEXT
    assert oracle.calls == ["is_holding_document"]


def test_oracle_failure_is_invalid_without_retry():
    oracle = FakeOracle(error=requests.ConnectionError("oracle down"))
    coordinator, event, _ = _verify_one(oracle)

    assert event.validity is Validity.INVALID
    assert "oracle down" in event.error
    assert event.result_text.startswith("Verification failed")
    assert oracle.calls == ["is_holding_document"]
    assert coordinator.get_stats()['failed'] == 1


def test_submit_while_pending_is_rejected():
    coordinator = VerificationCoordinator(FakeOracle(), verbose=False)
    # Worker not started: the first job stays in flight
    first = DetectionEvent("Line pattern detected", 1000)
    second = DetectionEvent("Line pattern detected", 2000)

    assert coordinator.submit(first, _frame())
    assert not coordinator.submit(second, _frame())
    assert len(coordinator.event_log) == 1
    assert second.captured_frame is None
    assert coordinator.poll() == []
    assert coordinator.pending


def test_submit_captures_frame_copy_and_jpeg():
    coordinator = VerificationCoordinator(FakeOracle(), verbose=False)
    frame = _frame()
    event = DetectionEvent("Line pattern detected", 1000)
    coordinator.submit(event, frame)

    frame[:] = 0
    assert event.captured_frame.any()
    assert event.image_bytes[:2] == b"\xff\xd8"
    assert coordinator.last_image == event.image_bytes


class BlockingOracle(FakeOracle):
    """Holds is_holding_document() until released."""

    def __init__(self):
        super().__init__(holding=True, content="Lab sheet")
        self.entered = threading.Event()
        self.release = threading.Event()

    def is_holding_document(self, image):
        self.entered.set()
        assert self.release.wait(timeout=5)
        return super().is_holding_document(image)


def test_restart_after_stop_during_verification():
    oracle = BlockingOracle()
    coordinator = VerificationCoordinator(oracle, verbose=False)
    coordinator.start()
    try:
        first = DetectionEvent("Line pattern detected", 1000)
        assert coordinator.submit(first, _frame())
        assert oracle.entered.wait(timeout=5)

        # Worker is busy inside the oracle call while it is told to stop
        coordinator.stop(timeout=0.1)
        oracle.release.set()
        assert coordinator.wait(timeout=5)
        assert coordinator.poll() == [first]
        assert first.validity is Validity.VALID

        coordinator.start()
        second = DetectionEvent("Line pattern detected", 5000)
        assert coordinator.submit(second, _frame())
        assert coordinator.wait(timeout=5)
        assert coordinator.poll() == [second]
        assert second.validity is Validity.VALID
        assert not coordinator.pending
    finally:
        oracle.release.set()
        coordinator.stop()


def test_jobs_queued_before_start_survive_restart():
    coordinator = VerificationCoordinator(FakeOracle(), verbose=False)
    coordinator.start()
    coordinator.stop()
    event = DetectionEvent("Line pattern detected", 1000)
    assert coordinator.submit(event, _frame())

    coordinator.start()
    try:
        assert coordinator.wait(timeout=5)
        assert coordinator.poll() == [event]
        assert event.validity is Validity.VALID
    finally:
        coordinator.stop()


def test_event_log_releases_old_images():
    log = EventLog(keep_images=3)
    frame = _frame()
    events = []
    for i in range(5):
        event = DetectionEvent("Line pattern detected", i, captured_frame=frame.copy(), image_bytes=b"jpeg")
        log.append(event)
        events.append(event)

    assert all(e.captured_frame is None and e.image_bytes is None for e in events[:2])
    assert all(e.captured_frame is not None and e.image_bytes == b"jpeg" for e in events[2:])
    # Outcomes are kept for every event
    assert len(log) == 5


def test_event_log_recent():
    log = EventLog()
    for i in range(5):
        log.append(DetectionEvent("Line pattern detected", i))
    assert [e.timestamp_ms for e in log.recent(3)] == [2, 3, 4]
    assert log.recent(0) == []
    assert len(log) == 5


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.body


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        return self.responses[url.rsplit("/", 1)[-1]]


def test_http_oracle_requests():
    session = FakeSession({
        "is-holding-document": FakeResponse({"result": True}),
        "extract-content": FakeResponse({"content": "Invoice #12"}),
    })
    oracle = HttpDocumentOracle("http://oracle.local/", timeout=3, session=session)

    assert oracle.is_holding_document(b"jpeg") is True
    assert oracle.extract_content(b"jpeg") == "Invoice #12"

    url, payload, timeout = session.posts[0]
    assert url == "http://oracle.local/is-holding-document"
    assert base64.b64decode(payload["image"]) == b"jpeg"
    assert timeout == 3


def test_http_oracle_rejects_bad_responses():
    session = FakeSession({
        "is-holding-document": FakeResponse({"result": "yes"}),
        "extract-content": FakeResponse({"content": "x"}, status=500),
    })
    oracle = HttpDocumentOracle("http://oracle.local", session=session)

    with pytest.raises(ValueError):
        oracle.is_holding_document(b"jpeg")
    with pytest.raises(requests.HTTPError):
        oracle.extract_content(b"jpeg")


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"  ✓ {name}")
    print("All verification tests passed! ✓")

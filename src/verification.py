"""
Verification Coordinator

When the persistence trigger fires, the captured still is handed to an
external oracle that answers "is this a held-up document?" and, if so,
extracts its text. Oracle calls run on a single background worker thread;
their outcomes come back through a queue that the frame loop drains with
poll(), so detection events are only ever mutated on the frame thread.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Iterator
import base64
import queue
import threading
import numpy as np
import cv2
import requests

import config


class Validity(Enum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"


NO_DOCUMENT_TEXT = "No document detected"


@dataclass
class DetectionEvent:
    """
    A persistence-trigger firing and its verification outcome.

    Attributes:
        message: What was detected.
        timestamp_ms: When the trigger fired.
        captured_frame: Copy of the frame at trigger time.
        validity: PENDING until the oracle answers.
        image_bytes: JPEG-encoded still sent to the oracle.
        content: Extracted text (only for VALID events).
        error: Oracle failure description (INVALID by failure).
    """
    message: str
    timestamp_ms: float
    captured_frame: Optional[np.ndarray] = None
    validity: Validity = Validity.PENDING
    image_bytes: Optional[bytes] = None
    content: Optional[str] = None
    error: Optional[str] = None

    @property
    def result_text(self) -> str:
        if self.validity is Validity.PENDING:
            return "Verifying..."
        if self.validity is Validity.VALID:
            return self.content or ""
        if self.error:
            return f"Verification failed: {self.error}"
        return NO_DOCUMENT_TEXT


class EventLog:
    """
    Append-only list of detection events.

    Only the newest `keep_images` events hold their captured still and JPEG
    bytes; older events keep their message, time and verification outcome.
    """

    def __init__(self, keep_images: int = config.EVENTS_SHOWN):
        self.keep_images = max(1, keep_images)
        self._events: List[DetectionEvent] = []

    def append(self, event: DetectionEvent):
        self._events.append(event)
        if len(self._events) > self.keep_images:
            old = self._events[-self.keep_images - 1]
            old.captured_frame = None
            old.image_bytes = None

    def recent(self, n: int = config.EVENTS_SHOWN) -> List[DetectionEvent]:
        return self._events[-n:] if n > 0 else []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[DetectionEvent]:
        return iter(list(self._events))


# ============================================
# ORACLE CLIENTS
# ============================================

class DocumentOracle:
    """Interface of the external verification service."""

    def is_holding_document(self, image: bytes) -> bool:
        raise NotImplementedError

    def extract_content(self, image: bytes) -> str:
        raise NotImplementedError


class HttpDocumentOracle(DocumentOracle):
    """
    JSON-over-HTTP oracle.

    POST <base_url>/is-holding-document  {"image": <base64 jpeg>} -> {"result": bool}
    POST <base_url>/extract-content      {"image": <base64 jpeg>} -> {"content": str}
    """

    def __init__(self, base_url: str = config.ORACLE_URL, timeout: float = config.ORACLE_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, image: bytes) -> dict:
        payload = {"image": base64.b64encode(image).decode("ascii")}
        response = self.session.post(f"{self.base_url}/{path}", json=payload, timeout=self.timeout)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected oracle response: {body!r}")
        return body

    def is_holding_document(self, image: bytes) -> bool:
        result = self._post("is-holding-document", image).get("result")
        if not isinstance(result, bool):
            raise ValueError(f"Oracle returned non-boolean result: {result!r}")
        return result

    def extract_content(self, image: bytes) -> str:
        content = self._post("extract-content", image).get("content")
        if not isinstance(content, str):
            raise ValueError(f"Oracle returned non-text content: {content!r}")
        return content


# ============================================
# COORDINATOR
# ============================================

@dataclass
class _Outcome:
    event: DetectionEvent
    valid: bool
    content: Optional[str] = None
    error: Optional[str] = None


class VerificationCoordinator:
    """
    Runs at most one oracle verification at a time.

    Example:
        >>> coordinator = VerificationCoordinator(HttpDocumentOracle(), EventLog())
        >>> coordinator.start()
        >>> if not coordinator.pending:
        ...     coordinator.submit(DetectionEvent("Line pattern detected", now_ms), frame)
        >>> coordinator.poll()   # once per frame
    """

    def __init__(
        self,
        oracle: DocumentOracle,
        event_log: Optional[EventLog] = None,
        jpeg_quality: int = config.JPEG_QUALITY,
        verbose: bool = True,
    ):
        self.oracle = oracle
        self.event_log = event_log if event_log is not None else EventLog()
        self.jpeg_quality = jpeg_quality
        self.verbose = verbose

        self._jobs: queue.Queue = queue.Queue()
        self._outcomes: queue.Queue = queue.Queue()
        self._stop_event = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._thread: Optional[threading.Thread] = None

        self._in_flight: Optional[DetectionEvent] = None
        self.last_image: Optional[bytes] = None
        self._verified = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the worker thread."""
        if self._thread and self._thread.is_alive():
            return
        self._drop_stop_sentinels()
        # Each worker gets its own stop flag: a previous worker still finishing
        # an oracle call must not be revived by this start().
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop_event,), daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0):
        self._stop_event.set()
        self._jobs.put(None)
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _drop_stop_sentinels(self):
        """Remove sentinels left by an earlier stop(), keeping queued jobs in order."""
        jobs = []
        while True:
            try:
                job = self._jobs.get_nowait()
            except queue.Empty:
                break
            if job is not None:
                jobs.append(job)
        for job in jobs:
            self._jobs.put(job)

    def _run(self, stop_event: threading.Event):
        while not stop_event.is_set():
            try:
                job = self._jobs.get(timeout=0.1)
            except queue.Empty:
                continue
            if job is None:
                break
            event, image = job
            self._outcomes.put(self._verify(event, image))
            self._idle.set()

    def _verify(self, event: DetectionEvent, image: bytes) -> _Outcome:
        try:
            if not self.oracle.is_holding_document(image):
                return _Outcome(event=event, valid=False)
            return _Outcome(event=event, valid=True, content=self.oracle.extract_content(image))
        except Exception as e:
            return _Outcome(event=event, valid=False, error=str(e) or type(e).__name__)

    # ------------------------------------------------------------------
    # Frame-thread API
    # ------------------------------------------------------------------

    @property
    def pending(self) -> bool:
        """True while a verification is in flight (until poll() delivers it)."""
        return self._in_flight is not None

    def encode(self, frame: np.ndarray) -> bytes:
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise ValueError("JPEG encoding failed")
        return buf.tobytes()

    def submit(self, event: DetectionEvent, frame: np.ndarray) -> bool:
        """
        Log the event as pending and queue its verification.

        Returns:
            False (and leaves the event untouched) when another verification
            is still in flight.
        """
        if self.pending:
            return False

        event.captured_frame = frame.copy()
        event.validity = Validity.PENDING
        self.event_log.append(event)

        try:
            image = self.encode(frame)
        except (ValueError, cv2.error) as e:
            event.validity = Validity.INVALID
            event.error = str(e)
            self._failed += 1
            return True

        event.image_bytes = image
        self.last_image = image
        self._in_flight = event
        self._idle.clear()
        self._jobs.put((event, image))
        if self.verbose:
            print(f"[INFO] Verification started: {event.message}")
        return True

    def poll(self) -> List[DetectionEvent]:
        """Apply finished oracle outcomes to their events. Returns resolved events."""
        resolved = []
        while True:
            try:
                outcome = self._outcomes.get_nowait()
            except queue.Empty:
                break
            event = outcome.event
            if outcome.valid:
                event.validity = Validity.VALID
                event.content = outcome.content
                self._verified += 1
            else:
                event.validity = Validity.INVALID
                event.error = outcome.error
                if outcome.error:
                    self._failed += 1
            if self._in_flight is event:
                self._in_flight = None
            resolved.append(event)
            if self.verbose:
                if outcome.error:
                    print(f"[WARNING] Verification failed: {outcome.error}")
                else:
                    print(f"[OK] Verification done: {event.validity.value} - {event.result_text}")
        return resolved

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the in-flight oracle call has finished (for tests/shutdown)."""
        return self._idle.wait(timeout)

    def get_stats(self):
        return {
            'events': len(self.event_log),
            'verified': self._verified,
            'failed': self._failed,
            'pending': self.pending,
        }

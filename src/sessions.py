"""
Monitoring Sessions & Mode Control

Two frame pipelines share one frame stream:

    gaze:  landmarks -> GazeEstimator -> AttentionClassifier (-> AlarmController)
    check: BackgroundLineDetector -> PersistenceTrigger -> VerificationCoordinator

Only one pipeline runs at a time. ModeController owns the switch: it closes
the running session (releasing its background model and buffers) before the
next one opens, and drops frames whose timestamp has not advanced.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence
import numpy as np

import config
from attention_classifier import AttentionClassifier, AttentionVote
from gaze_estimator import GazeEstimator, GazeResult
from line_detector import BackgroundLineDetector, LineDetection
from persistence_trigger import PersistenceTrigger
from verification import DetectionEvent, VerificationCoordinator


class Mode(Enum):
    DEFAULT = "default"
    GAZE = "gaze"
    CHECK = "check"


# detect(frame, timestamp_ms) -> list of landmark sets (0 or 1 faces)
LandmarkDetector = Callable[[np.ndarray, int], Sequence]


@dataclass
class GazeFrame:
    timestamp_ms: float
    landmarks: Optional[Sequence] = None
    result: Optional[GazeResult] = None
    vote: Optional[AttentionVote] = None
    alarm_active: bool = False

    @property
    def face_found(self) -> bool:
        return self.landmarks is not None


@dataclass
class CheckFrame:
    timestamp_ms: float
    detection: LineDetection
    event: Optional[DetectionEvent] = None


@dataclass
class FrameOutcome:
    mode: Mode
    timestamp_ms: float
    gaze: Optional[GazeFrame] = None
    check: Optional[CheckFrame] = None
    resolved: List[DetectionEvent] = field(default_factory=list)


class GazeSession:
    """Gaze estimation + attention tracking for one face."""

    def __init__(
        self,
        detect: LandmarkDetector,
        estimator: Optional[GazeEstimator] = None,
        classifier: Optional[AttentionClassifier] = None,
        alarm=None,
    ):
        self.detect = detect
        self.estimator = estimator or GazeEstimator()
        self.classifier = classifier or AttentionClassifier()
        self.alarm = alarm
        self.is_open = False

    def open(self):
        self.estimator.reset()
        self.is_open = True

    def close(self):
        # The tracking log survives so it can still be shown.
        self.classifier.stop_tracking()
        if self.alarm is not None:
            self.alarm.reset()
        self.is_open = False

    def __enter__(self) -> "GazeSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def toggle_tracking(self, now_ms: float) -> bool:
        tracking = self.classifier.toggle_tracking(now_ms)
        if not tracking and self.alarm is not None:
            self.alarm.reset()
        return tracking

    def process(self, frame: np.ndarray, timestamp_ms: float) -> GazeFrame:
        faces = self.detect(frame, int(timestamp_ms))
        if not faces:
            return GazeFrame(timestamp_ms=timestamp_ms)

        landmarks = faces[0]
        h, w = frame.shape[:2]
        result = self.estimator.update(landmarks, w, h)
        gaze = GazeFrame(timestamp_ms=timestamp_ms, landmarks=landmarks, result=result)
        if not result.success:
            return gaze

        gaze.vote = self.classifier.update(result.left, result.right, timestamp_ms)
        if self.alarm is not None and self.classifier.is_tracking:
            gaze.alarm_active = self.alarm.update_state(not gaze.vote.looking)
        return gaze


class CheckSession:
    """Background-subtraction line detection gated into oracle verification."""

    def __init__(
        self,
        coordinator: VerificationCoordinator,
        detector: Optional[BackgroundLineDetector] = None,
        trigger: Optional[PersistenceTrigger] = None,
        message: str = config.DETECTION_MESSAGE,
    ):
        self.coordinator = coordinator
        self.detector = detector or BackgroundLineDetector()
        self.trigger = trigger or PersistenceTrigger()
        self.message = message

    @property
    def is_open(self) -> bool:
        return self.detector.is_active

    def open(self):
        self.detector.start()
        self.trigger.reset()

    def close(self):
        self.detector.close()
        self.trigger.reset()

    def __enter__(self) -> "CheckSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def process(self, frame: np.ndarray, timestamp_ms: float) -> CheckFrame:
        detection = self.detector.detect(frame)
        fired = self.trigger.evaluate(detection.clusters, timestamp_ms, self.coordinator.pending)

        check = CheckFrame(timestamp_ms=timestamp_ms, detection=detection)
        if fired is not None:
            event = DetectionEvent(message=self.message, timestamp_ms=timestamp_ms)
            if self.coordinator.submit(event, frame):
                check.event = event
        return check


class ModeController:
    """
    Runs whichever session belongs to the active mode.

    Example:
        >>> with ModeController(gaze_session, check_session, coordinator) as modes:
        ...     modes.switch(Mode.GAZE)
        ...     outcome = modes.process_frame(frame, timestamp_ms)
    """

    def __init__(self, gaze_session: GazeSession, check_session: CheckSession,
                 coordinator: VerificationCoordinator, verbose: bool = True):
        self.gaze_session = gaze_session
        self.check_session = check_session
        self.coordinator = coordinator
        self.verbose = verbose

        self._mode = Mode.DEFAULT
        self._last_timestamp_ms: Optional[float] = None
        self.processed_frames = 0
        self.dropped_frames = 0
        self.skipped_frames = 0

    @property
    def mode(self) -> Mode:
        return self._mode

    def _session(self, mode: Mode):
        if mode is Mode.GAZE:
            return self.gaze_session
        if mode is Mode.CHECK:
            return self.check_session
        return None

    def switch(self, mode: Mode):
        """Close the running session, then open the one for `mode`."""
        if mode is self._mode:
            return
        current = self._session(self._mode)
        if current is not None:
            current.close()
        self._mode = mode
        nxt = self._session(mode)
        if nxt is not None:
            nxt.open()
        if self.verbose:
            print(f"[INFO] Mode: {mode.value}")

    def process_frame(self, frame: Optional[np.ndarray], timestamp_ms: float) -> Optional[FrameOutcome]:
        """
        Process one frame in arrival order.

        Returns None when the frame is not ready or its timestamp has not
        advanced past the previous frame's.
        """
        if frame is None:
            self.skipped_frames += 1
            return None
        if self._last_timestamp_ms is not None and timestamp_ms <= self._last_timestamp_ms:
            self.dropped_frames += 1
            return None
        self._last_timestamp_ms = timestamp_ms

        outcome = FrameOutcome(mode=self._mode, timestamp_ms=timestamp_ms)
        outcome.resolved = self.coordinator.poll()

        if self._mode is Mode.GAZE:
            outcome.gaze = self.gaze_session.process(frame, timestamp_ms)
        elif self._mode is Mode.CHECK:
            outcome.check = self.check_session.process(frame, timestamp_ms)

        self.processed_frames += 1
        return outcome

    def close(self):
        self.switch(Mode.DEFAULT)

    def __enter__(self) -> "ModeController":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

"""
Attention Classifier

Turns per-frame gaze samples into a boolean "looking at the screen" vote and
smooths the votes with a rolling strict-majority decision emitted once per
second while tracking is active.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Dict, Any
import numpy as np

import config
from gaze_estimator import GazeSample


@dataclass
class AttentionVote:
    """Single-frame attention decision."""
    looking: bool
    magnitude: float


@dataclass
class TrackingRecord:
    """One second of tracking, reduced to its majority vote."""
    looking: bool
    timestamp_ms: float

    @property
    def clock_time(self) -> str:
        return datetime.fromtimestamp(self.timestamp_ms / 1000.0).strftime("%H:%M:%S")

    def describe(self) -> str:
        return f"{self.clock_time}: {'Looking' if self.looking else 'Not Looking'}"


def gaze_deviation(left: GazeSample, right: GazeSample) -> float:
    """
    Distance between the average gaze endpoint and the average pupil position.

    Symmetric in left/right by construction.
    """
    pupils = np.array([left.pupil, right.pupil], dtype=np.float64)
    endpoints = np.array([left.endpoint, right.endpoint], dtype=np.float64)
    return float(np.linalg.norm(endpoints.mean(axis=0) - pupils.mean(axis=0)))


def majority_vote(votes: Sequence[bool]) -> bool:
    """Strict majority: more True than False. Ties (and empty input) are False."""
    return sum(1 for v in votes if v) > len(votes) / 2


class AttentionClassifier:
    """
    Per-frame looking classifier with one-second majority smoothing.

    Example:
        >>> classifier = AttentionClassifier()
        >>> classifier.start_tracking(now_ms)
        >>> vote = classifier.update(result.left, result.right, now_ms)
        >>> classifier.tracking_log[-1].looking
    """

    def __init__(
        self,
        looking_threshold_px: float = config.LOOKING_THRESHOLD_PX,
        window_ms: float = config.VOTE_WINDOW_MS,
    ):
        self.looking_threshold_px = looking_threshold_px
        self.window_ms = window_ms

        self._tracking = False
        self._tracking_started_ms = 0.0
        self._last_flush_ms = 0.0
        self._buffer: List[bool] = []
        self._log: List[TrackingRecord] = []
        self._last_vote: Optional[AttentionVote] = None

        self._vote_count = 0
        self._looking_count = 0

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, left: GazeSample, right: GazeSample) -> AttentionVote:
        """Instantaneous vote from two gaze samples."""
        magnitude = gaze_deviation(left, right)
        return AttentionVote(looking=magnitude < self.looking_threshold_px, magnitude=magnitude)

    def update(self, left: GazeSample, right: GazeSample, now_ms: float) -> AttentionVote:
        """
        Classify one frame and, while tracking, feed the vote into the
        one-second buffer. Returns the instantaneous vote.
        """
        vote = self.classify(left, right)
        self._last_vote = vote
        self._vote_count += 1
        if vote.looking:
            self._looking_count += 1

        if self._tracking:
            self._buffer.append(vote.looking)
            if now_ms - self._last_flush_ms >= self.window_ms:
                self._log.append(TrackingRecord(looking=majority_vote(self._buffer), timestamp_ms=now_ms))
                self._buffer = []
                self._last_flush_ms = now_ms
        return vote

    # ------------------------------------------------------------------
    # Tracking lifecycle
    # ------------------------------------------------------------------

    def start_tracking(self, now_ms: float):
        """Begin a fresh tracking run: clears log, buffer and the 1s clock."""
        self._buffer = []
        self._log = []
        self._tracking_started_ms = now_ms
        self._last_flush_ms = now_ms
        self._tracking = True

    def stop_tracking(self):
        """Stop voting; the log stays available for display."""
        self._tracking = False
        self._buffer = []

    def toggle_tracking(self, now_ms: float) -> bool:
        if self._tracking:
            self.stop_tracking()
        else:
            self.start_tracking(now_ms)
        return self._tracking

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    def elapsed_ms(self, now_ms: float) -> float:
        return now_ms - self._tracking_started_ms if self._tracking else 0.0

    @property
    def tracking_log(self) -> List[TrackingRecord]:
        return list(self._log)

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    @property
    def last_vote(self) -> Optional[AttentionVote]:
        return self._last_vote

    def get_stats(self) -> Dict[str, Any]:
        return {
            'vote_count': self._vote_count,
            'looking_ratio': round(self._looking_count / max(1, self._vote_count), 3),
            'tracking': self._tracking,
            'records': len(self._log),
        }

    def reset(self):
        """Clear everything, including the tracking log."""
        self._tracking = False
        self._buffer = []
        self._log = []
        self._last_vote = None
        self._vote_count = 0
        self._looking_count = 0

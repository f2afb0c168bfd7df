"""
Temporal Persistence Trigger

Turns line clusters that keep recurring across frames into a one-shot
detection signal. A cluster qualifies when at least `recurrence_threshold`
history entries from the last `window_ms` fall inside its (rho, theta)
tolerance window. Firing is debounced by a cooldown and blocked while a
verification is still in flight.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, Optional, Sequence, Dict, Any
import numpy as np

import config
from line_detector import LineCluster


@dataclass
class LineHistoryEntry:
    rho: float
    theta: float
    timestamp_ms: float


class LineHistoryBuffer:
    """Sliding time window of past cluster positions."""

    def __init__(self, window_ms: float = config.HISTORY_WINDOW_MS):
        self.window_ms = window_ms
        self._entries: Deque[LineHistoryEntry] = deque()

    def append(self, rho: float, theta: float, timestamp_ms: float):
        self._entries.append(LineHistoryEntry(rho, theta, timestamp_ms))

    def prune(self, now_ms: float):
        """Drop entries older than the window."""
        cutoff = now_ms - self.window_ms
        while self._entries and self._entries[0].timestamp_ms < cutoff:
            self._entries.popleft()

    def count_near(self, rho: float, theta: float, rho_tolerance: float, theta_tolerance: float) -> int:
        return sum(
            1 for e in self._entries
            if abs(e.rho - rho) < rho_tolerance and abs(e.theta - theta) < theta_tolerance
        )

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LineHistoryEntry]:
        return iter(self._entries)


class PersistenceTrigger:
    """
    Debounced recurrence gate over line clusters.

    Example:
        >>> trigger = PersistenceTrigger(cooldown_ms=10000)
        >>> fired = trigger.evaluate(detection.clusters, now_ms, coordinator.pending)
        >>> if fired is not None:
        ...     start_verification()
    """

    def __init__(
        self,
        window_ms: float = config.HISTORY_WINDOW_MS,
        recurrence_threshold: int = config.RECURRENCE_THRESHOLD,
        cooldown_ms: float = config.TRIGGER_COOLDOWN_MS,
        rho_tolerance: float = config.CLUSTER_RHO_TOLERANCE,
        theta_tolerance_deg: float = config.CLUSTER_THETA_TOLERANCE_DEG,
    ):
        self.recurrence_threshold = recurrence_threshold
        self.cooldown_ms = cooldown_ms
        self.rho_tolerance = rho_tolerance
        self.theta_tolerance = np.radians(theta_tolerance_deg)

        self.history = LineHistoryBuffer(window_ms)
        self._last_trigger_ms: Optional[float] = None
        self._trigger_count = 0
        self._blocked_count = 0

    def cooldown_elapsed(self, now_ms: float) -> bool:
        if self._last_trigger_ms is None:
            return True
        return now_ms - self._last_trigger_ms >= self.cooldown_ms

    def evaluate(
        self,
        clusters: Sequence[LineCluster],
        now_ms: float,
        verification_pending: bool = False,
    ) -> Optional[LineCluster]:
        """
        Check current-frame clusters against history, then record them.

        Returns:
            The first qualifying cluster when the trigger fires, else None.
            At most one cluster fires per call.
        """
        self.history.prune(now_ms)

        fired = None
        for cluster in clusters:
            recurrences = self.history.count_near(
                cluster.rho, cluster.theta, self.rho_tolerance, self.theta_tolerance
            )
            if recurrences < self.recurrence_threshold:
                continue
            if verification_pending or not self.cooldown_elapsed(now_ms):
                self._blocked_count += 1
                continue
            fired = cluster
            self._last_trigger_ms = now_ms
            self._trigger_count += 1
            break

        for cluster in clusters:
            self.history.append(cluster.rho, cluster.theta, now_ms)
        return fired

    @property
    def last_trigger_ms(self) -> Optional[float]:
        return self._last_trigger_ms

    def get_stats(self) -> Dict[str, Any]:
        return {
            'triggers': self._trigger_count,
            'blocked': self._blocked_count,
            'history_size': len(self.history),
        }

    def reset(self):
        """Forget history and cooldown for a new session."""
        self.history.clear()
        self._last_trigger_ms = None
        self._trigger_count = 0
        self._blocked_count = 0

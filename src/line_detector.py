"""
Background-Subtraction Line Detector

Finds straight, near-axis-aligned edges (paper held up, desk edges) that appear
in the foreground of a "check" session:

    frame -> grayscale -> MOG2 foreground mask -> HoughLines
          -> axis filter (0/90/180 deg +-15) -> merged line clusters

The background model is owned by the detector and only lives between
start() and close(); use the detector as a context manager to scope it.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Dict, Any
import numpy as np
import cv2
import time

import config


@dataclass(frozen=True)
class LineObservation:
    """Polar line parameters from HoughLines (theta in radians, [0, pi))."""
    rho: float
    theta: float


@dataclass
class LineCluster:
    """Running-average accumulator for nearby line observations."""
    theta_sum: float = 0.0
    rho_sum: float = 0.0
    count: int = 0

    @property
    def rho(self) -> float:
        return self.rho_sum / self.count if self.count else 0.0

    @property
    def theta(self) -> float:
        return self.theta_sum / self.count if self.count else 0.0

    def add(self, obs: LineObservation):
        self.rho_sum += obs.rho
        self.theta_sum += obs.theta
        self.count += 1

    def matches(self, obs: LineObservation, rho_tolerance: float, theta_tolerance: float) -> bool:
        return abs(obs.rho - self.rho) < rho_tolerance and abs(obs.theta - self.theta) < theta_tolerance


@dataclass
class LineDetection:
    """Per-frame detector output."""
    mask: Optional[np.ndarray] = None
    observations: List[LineObservation] = field(default_factory=list)
    clusters: List[LineCluster] = field(default_factory=list)
    raw_count: int = 0
    discarded: bool = False


def is_approximately_vertical_or_horizontal(
    theta: float,
    tolerance_deg: float = config.AXIS_TOLERANCE_DEG,
) -> bool:
    """True when theta lies within tolerance of 0, pi/2 or pi."""
    tolerance = np.radians(tolerance_deg)
    return any(abs(theta - axis) <= tolerance for axis in (0.0, np.pi / 2, np.pi))


def cluster_lines(
    observations: Sequence[LineObservation],
    rho_tolerance: float = config.CLUSTER_RHO_TOLERANCE,
    theta_tolerance_deg: float = config.CLUSTER_THETA_TOLERANCE_DEG,
) -> List[LineCluster]:
    """
    Merge observations into clusters.

    Each observation joins the first cluster whose running average is within
    tolerance, otherwise it starts a new cluster.
    """
    theta_tolerance = np.radians(theta_tolerance_deg)
    clusters: List[LineCluster] = []
    for obs in observations:
        for cluster in clusters:
            if cluster.matches(obs, rho_tolerance, theta_tolerance):
                cluster.add(obs)
                break
        else:
            cluster = LineCluster()
            cluster.add(obs)
            clusters.append(cluster)
    return clusters


class FrameBufferPool:
    """
    Reusable per-frame image buffers.

    Buffers are allocated for the current frame size and reused until the size
    changes, so the real-time loop does not allocate a new gray/mask image per
    frame.
    """

    def __init__(self):
        self._shape: Optional[Tuple[int, int]] = None
        self.gray: Optional[np.ndarray] = None
        self.mask: Optional[np.ndarray] = None
        self.allocations = 0

    def acquire(self, height: int, width: int):
        if self._shape != (height, width):
            self.gray = np.zeros((height, width), dtype=np.uint8)
            self.mask = np.zeros((height, width), dtype=np.uint8)
            self._shape = (height, width)
            self.allocations += 1
        return self.gray, self.mask

    def release(self):
        self._shape = None
        self.gray = None
        self.mask = None


class BackgroundLineDetector:
    """
    Session-scoped MOG2 background model plus Hough line extraction.

    Example:
        >>> with BackgroundLineDetector() as detector:
        ...     detection = detector.detect(frame)
        ...     draw_line_clusters(frame, detection.clusters)
    """

    def __init__(
        self,
        history: int = config.BG_HISTORY,
        var_threshold: float = config.BG_VAR_THRESHOLD,
        detect_shadows: bool = config.BG_DETECT_SHADOWS,
        hough_threshold: int = config.HOUGH_VOTE_THRESHOLD,
        max_raw_lines: int = config.MAX_RAW_LINES,
        axis_tolerance_deg: float = config.AXIS_TOLERANCE_DEG,
        rho_tolerance: float = config.CLUSTER_RHO_TOLERANCE,
        theta_tolerance_deg: float = config.CLUSTER_THETA_TOLERANCE_DEG,
    ):
        self.history = history
        self.var_threshold = var_threshold
        self.detect_shadows = detect_shadows
        self.hough_threshold = hough_threshold
        self.max_raw_lines = max_raw_lines
        self.axis_tolerance_deg = axis_tolerance_deg
        self.rho_tolerance = rho_tolerance
        self.theta_tolerance_deg = theta_tolerance_deg

        self._subtractor = None
        self._pool = FrameBufferPool()

        self._update_count = 0
        self._discarded_count = 0
        self._total_time_ms = 0.0

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """(Re)create the background model for a new session."""
        self._subtractor = cv2.createBackgroundSubtractorMOG2(
            history=self.history,
            varThreshold=self.var_threshold,
            detectShadows=self.detect_shadows,
        )
        self._update_count = 0
        self._discarded_count = 0
        self._total_time_ms = 0.0

    def close(self):
        """Release the background model and frame buffers."""
        self._subtractor = None
        self._pool.release()

    @property
    def is_active(self) -> bool:
        return self._subtractor is not None

    def __enter__(self) -> "BackgroundLineDetector":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Per-frame processing
    # ------------------------------------------------------------------

    def foreground_mask(self, frame: np.ndarray) -> np.ndarray:
        """Grayscale + background subtraction into the pooled mask buffer."""
        if self._subtractor is None:
            raise RuntimeError("BackgroundLineDetector.start() must be called before detect()")

        h, w = frame.shape[:2]
        gray, mask = self._pool.acquire(h, w)
        if frame.ndim == 2:
            np.copyto(gray, frame)
        elif frame.shape[2] == 4:
            cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY, dst=gray)
        else:
            cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY, dst=gray)
        self._subtractor.apply(gray, mask)
        return mask

    def extract_lines(self, mask: np.ndarray) -> Tuple[List[LineObservation], int, bool]:
        """
        Hough lines on a mask, filtered to near-axis orientations.

        Returns:
            (observations, raw_count, discarded). A frame with more than
            max_raw_lines candidates is too noisy and yields no observations.
        """
        lines = cv2.HoughLines(
            mask,
            config.HOUGH_RHO_RES,
            np.radians(config.HOUGH_THETA_RES_DEG),
            self.hough_threshold,
        )
        if lines is None:
            return [], 0, False

        raw_count = len(lines)
        if raw_count > self.max_raw_lines:
            return [], raw_count, True

        observations = []
        for rho, theta in lines.reshape(-1, 2):
            if is_approximately_vertical_or_horizontal(theta, self.axis_tolerance_deg):
                observations.append(LineObservation(rho=float(rho), theta=float(theta)))
        return observations, raw_count, False

    def detect(self, frame: np.ndarray) -> LineDetection:
        """Run mask -> lines -> clusters for one frame."""
        start_time = time.perf_counter()

        mask = self.foreground_mask(frame)
        observations, raw_count, discarded = self.extract_lines(mask)
        clusters = cluster_lines(observations, self.rho_tolerance, self.theta_tolerance_deg)

        if discarded:
            self._discarded_count += 1
        self._update_stats(start_time)
        return LineDetection(
            mask=mask,
            observations=observations,
            clusters=clusters,
            raw_count=raw_count,
            discarded=discarded,
        )

    def _update_stats(self, start_time: float):
        elapsed = (time.perf_counter() - start_time) * 1000
        self._update_count += 1
        self._total_time_ms += elapsed

    def get_stats(self) -> Dict[str, Any]:
        avg_time = self._total_time_ms / max(1, self._update_count)
        return {
            'update_count': self._update_count,
            'discarded_frames': self._discarded_count,
            'avg_time_ms': round(avg_time, 3),
            'buffer_allocations': self._pool.allocations,
        }


# ============================================================================
# Visualization
# ============================================================================

def draw_line_clusters(
    frame: np.ndarray,
    clusters: Sequence[LineCluster],
    color: Tuple[int, int, int] = (0, 0, 255),
    thickness: int = 2,
    half_length: int = 1000,
) -> np.ndarray:
    """Draw each cluster's averaged line as a long segment."""
    for cluster in clusters:
        a = np.cos(cluster.theta)
        b = np.sin(cluster.theta)
        x0 = a * cluster.rho
        y0 = b * cluster.rho
        pt1 = (int(x0 + half_length * (-b)), int(y0 + half_length * a))
        pt2 = (int(x0 - half_length * (-b)), int(y0 - half_length * a))
        cv2.line(frame, pt1, pt2, color, thickness)
    return frame


def edge_view(mask: np.ndarray) -> np.ndarray:
    """BGR image of the Canny edges of a foreground mask."""
    edges = cv2.Canny(mask, config.CANNY_LOW, config.CANNY_HIGH)
    return cv2.cvtColor(edges, cv2.COLOR_GRAY2BGR)

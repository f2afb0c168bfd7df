"""
Head Pose & Gaze Vector Estimation Module

This module recovers head pose from MediaPipe facial landmarks using the
Perspective-n-Point (PnP) algorithm, then projects each eye's optical axis to
a 2D on-screen endpoint with the head-rotation component removed.

ALGORITHM:
    1. Six stable landmarks (nose tip, chin, eye outer corners, mouth corners)
       are matched to a canonical 3D face model (mm) to solve the head pose.
    2. A 3x4 affine transform mapping the image plane (z=0) into model space is
       fitted by least squares over the same six points.
    3. Each pupil is mapped into model space, its offset from the eyeball center
       is amplified (10x) and projected back into the image. Subtracting the
       projection of a "straight ahead" point leaves the gaze component that
       head rotation alone does not explain.

PERFORMANCE TARGET: < 3ms per frame on CPU
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Dict, Any
import numpy as np
import cv2
import time

import config
from geometry_kernel import (
    CameraModel,
    GeometryError,
    PoseEstimate,
    least_squares,
    matmul,
    project,
    solve_pose,
    transpose,
)


@dataclass
class AffineFit:
    """
    Result of the image-plane -> model-space affine fit.

    Attributes:
        success: False when there were not enough correspondences.
        transformation: 3x4 matrix mapping homogeneous [x, y, 0, 1] to model space.
        reason: Human-readable failure cause.
    """
    success: bool
    transformation: Optional[np.ndarray] = None
    reason: str = ""


@dataclass
class GazeSample:
    """Per-eye gaze: pupil pixel location and the on-screen gaze endpoint."""
    pupil: Tuple[float, float]
    endpoint: Tuple[float, float]


@dataclass
class GazeResult:
    """
    Gaze estimation result for one frame.

    Attributes:
        success: True when both gaze samples are available.
        left: Gaze sample for the left pupil (None on failure).
        right: Gaze sample for the right pupil (None on failure).
        pose: Head pose for this frame (None if PnP failed).
        reason: Why no gaze samples were produced.
    """
    success: bool = False
    left: Optional[GazeSample] = None
    right: Optional[GazeSample] = None
    pose: Optional[PoseEstimate] = None
    reason: str = ""


def estimate_affine_3d(src, dst, min_points: int = config.MIN_AFFINE_POINTS) -> AffineFit:
    """
    Fit a 3x4 affine transform mapping src -> dst by least squares.

    Args:
        src: (N, 3) source points
        dst: (N, 3) destination points
        min_points: Minimum correspondences required

    Returns:
        AffineFit, with success=False when N < min_points.
    """
    src = np.asarray(src, dtype=np.float64).reshape(-1, 3)
    dst = np.asarray(dst, dtype=np.float64).reshape(-1, 3)
    n = src.shape[0]
    if n < min_points:
        return AffineFit(success=False, reason=f"not enough points ({n} < {min_points})")

    design = np.ones((n, 4), dtype=np.float64)
    design[:, :3] = src
    try:
        solution = least_squares(design, dst)
    except GeometryError as e:
        return AffineFit(success=False, reason=str(e))
    return AffineFit(success=True, transformation=transpose(solution))


class GazeEstimator:
    """
    Estimates per-eye gaze endpoints from MediaPipe face landmarks.

    LANDMARKS USED (MediaPipe FaceLandmarker indices):
        - Nose tip (4), chin (152)
        - Eye outer corners (263, 33)
        - Mouth corners (287, 57)
        - Pupils (468 left, 473 right) - requires iris refinement

    Example:
        >>> estimator = GazeEstimator()
        >>> result = estimator.update(landmarks, frame_width=640, frame_height=480)
        >>> if result.success:
        ...     print(result.left.endpoint, result.right.endpoint)
    """

    def __init__(
        self,
        pose_landmarks: Sequence[int] = config.POSE_LANDMARK_INDICES,
        affine_landmarks: Optional[Sequence[int]] = None,
        left_pupil: int = config.LEFT_PUPIL_INDEX,
        right_pupil: int = config.RIGHT_PUPIL_INDEX,
        gaze_gain: float = config.GAZE_GAIN,
        head_offset_mm: float = config.HEAD_POSE_OFFSET_MM,
        min_affine_points: int = config.MIN_AFFINE_POINTS,
    ):
        """
        Args:
            pose_landmarks: Indices matched to the canonical face model for PnP.
            affine_landmarks: Subset of pose_landmarks used for the affine fit
                              (defaults to all of them).
            left_pupil: Landmark index of the left pupil.
            right_pupil: Landmark index of the right pupil.
            gaze_gain: Amplification of the pupil offset from the eyeball center.
            head_offset_mm: Height of the "straight ahead" point above the pupil.
            min_affine_points: Fewer affine correspondences than this fail the frame.
        """
        self.pose_landmarks = list(pose_landmarks)
        self.affine_landmarks = list(affine_landmarks) if affine_landmarks is not None else list(pose_landmarks)
        if len(self.pose_landmarks) != len(config.CANONICAL_FACE_MODEL):
            raise ValueError("pose_landmarks must match the canonical face model point count")
        if not set(self.affine_landmarks) <= set(self.pose_landmarks):
            raise ValueError("affine_landmarks must be a subset of pose_landmarks")
        self.left_pupil = left_pupil
        self.right_pupil = right_pupil
        self.gaze_gain = gaze_gain
        self.head_offset_mm = head_offset_mm
        self.min_affine_points = min_affine_points

        self._model_points = np.array(config.CANONICAL_FACE_MODEL, dtype=np.float64)
        self._model_by_index = dict(zip(self.pose_landmarks, self._model_points))
        self._left_eyeball = np.array(config.LEFT_EYEBALL_CENTER, dtype=np.float64).reshape(3, 1)
        self._right_eyeball = np.array(config.RIGHT_EYEBALL_CENTER, dtype=np.float64).reshape(3, 1)

        # Pre-allocate per-frame buffers (reset, not reallocated)
        self._image_points = np.zeros((len(self.pose_landmarks), 2), dtype=np.float64)
        self._pupil_vec = np.zeros((4, 1), dtype=np.float64)
        self._pupil_vec[3, 0] = 1.0

        # Stats
        self._update_count = 0
        self._failure_count = 0
        self._total_time_ms = 0.0
        self._last_result: Optional[GazeResult] = None

    def _extract_image_points(self, landmarks, frame_width: int, frame_height: int) -> bool:
        try:
            for i, idx in enumerate(self.pose_landmarks):
                lm = landmarks[idx]
                self._image_points[i, 0] = lm.x * frame_width
                self._image_points[i, 1] = lm.y * frame_height
            return True
        except (IndexError, AttributeError, TypeError):
            return False

    @staticmethod
    def _pixel(landmarks, idx: int, frame_width: int, frame_height: int) -> Tuple[float, float]:
        lm = landmarks[idx]
        return lm.x * frame_width, lm.y * frame_height

    def _fit_affine(self, landmarks, frame_width: int, frame_height: int) -> AffineFit:
        src = []
        dst = []
        for idx in self.affine_landmarks:
            x, y = self._pixel(landmarks, idx, frame_width, frame_height)
            src.append((x, y, 0.0))
            dst.append(self._model_by_index[idx])
        return estimate_affine_3d(src, dst, self.min_affine_points)

    def _eye_gaze(
        self,
        pupil: Tuple[float, float],
        eyeball_center: np.ndarray,
        transformation: np.ndarray,
        pose: PoseEstimate,
        camera: CameraModel,
    ) -> GazeSample:
        px, py = pupil
        self._pupil_vec[0, 0] = px
        self._pupil_vec[1, 0] = py
        self._pupil_vec[2, 0] = 0.0

        world = matmul(transformation, self._pupil_vec)
        target = eyeball_center + (world - eyeball_center) * self.gaze_gain
        head_point = np.array([world[0, 0], world[1, 0], self.head_offset_mm])

        target_px = project(target.reshape(1, 3), pose, camera)[0]
        head_px = project(head_point.reshape(1, 3), pose, camera)[0]

        gx = px + (target_px[0] - px) - (head_px[0] - px)
        gy = py + (target_px[1] - py) - (head_px[1] - py)
        return GazeSample(pupil=(px, py), endpoint=(float(gx), float(gy)))

    def update(self, landmarks, frame_width: int, frame_height: int) -> GazeResult:
        """
        Estimate gaze for one frame.

        Never raises for bad per-frame data: incomplete landmarks, PnP failure
        and affine-fit failure all return GazeResult(success=False) so the
        caller can skip attention classification for this frame.
        """
        start_time = time.perf_counter()
        result = self._estimate(landmarks, frame_width, frame_height)
        if not result.success:
            self._failure_count += 1
        self._last_result = result
        self._update_stats(start_time)
        return result

    def _estimate(self, landmarks, frame_width: int, frame_height: int) -> GazeResult:
        if not self._extract_image_points(landmarks, frame_width, frame_height):
            return GazeResult(success=False, reason="incomplete landmark set")

        # Camera model follows the current frame size
        camera = CameraModel.from_frame(frame_width, frame_height)

        try:
            pose = solve_pose(self._model_points, self._image_points, camera)
        except GeometryError as e:
            return GazeResult(success=False, reason=str(e))

        try:
            left_px = self._pixel(landmarks, self.left_pupil, frame_width, frame_height)
            right_px = self._pixel(landmarks, self.right_pupil, frame_width, frame_height)
        except (IndexError, AttributeError, TypeError):
            return GazeResult(success=False, pose=pose, reason="missing pupil landmarks")

        fit = self._fit_affine(landmarks, frame_width, frame_height)
        if not fit.success:
            return GazeResult(success=False, pose=pose, reason=fit.reason)

        try:
            left = self._eye_gaze(left_px, self._left_eyeball, fit.transformation, pose, camera)
            right = self._eye_gaze(right_px, self._right_eyeball, fit.transformation, pose, camera)
        except (GeometryError, cv2.error) as e:
            return GazeResult(success=False, pose=pose, reason=str(e))

        return GazeResult(success=True, left=left, right=right, pose=pose)

    def _update_stats(self, start_time: float):
        """Update performance statistics."""
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._update_count += 1
        self._total_time_ms += elapsed_ms

    def get_stats(self) -> Dict[str, Any]:
        """Get estimator statistics for debugging and monitoring."""
        avg_time = self._total_time_ms / max(1, self._update_count)
        last_error = None
        if self._last_result is not None and self._last_result.pose is not None:
            last_error = round(self._last_result.pose.reprojection_error, 2)
        return {
            'update_count': self._update_count,
            'failure_count': self._failure_count,
            'avg_time_ms': round(avg_time, 3),
            'last_reprojection_error': last_error,
        }

    def reset(self):
        """Reset statistics for a new session."""
        self._update_count = 0
        self._failure_count = 0
        self._total_time_ms = 0.0
        self._last_result = None


# =============================================================================
# Visualization Utilities
# =============================================================================

def draw_gaze_lines(
    frame: np.ndarray,
    result: GazeResult,
    color: Tuple[int, int, int] = (255, 0, 0),
    thickness: int = 2,
) -> np.ndarray:
    """Draw pupil -> gaze endpoint lines for both eyes (modified in place)."""
    if not result.success:
        return frame
    for sample in (result.left, result.right):
        start = (int(round(sample.pupil[0])), int(round(sample.pupil[1])))
        end = (int(round(sample.endpoint[0])), int(round(sample.endpoint[1])))
        cv2.line(frame, start, end, color, thickness)
    return frame


def draw_eye_landmarks(
    frame: np.ndarray,
    landmarks,
    eye_indices: Sequence[int],
    iris_index: int,
    color: Tuple[int, int, int],
) -> np.ndarray:
    """Draw an eye contour and its iris center."""
    h, w = frame.shape[:2]
    points = []
    for idx in eye_indices:
        if idx < len(landmarks):
            lm = landmarks[idx]
            points.append((int(lm.x * w), int(lm.y * h)))
    if len(points) > 2:
        cv2.polylines(frame, [np.array(points, dtype=np.int32)], True, color, 1)
    if iris_index < len(landmarks):
        lm = landmarks[iris_index]
        cv2.circle(frame, (int(lm.x * w), int(lm.y * h)), 2, color, -1)
    return frame

"""
Geometry Kernel for the Gaze & Work-Check Monitoring System

Small matrix toolbox shared by the pose and gaze math:
    - transpose / matmul (gemm-style multiply-accumulate) / invert (SVD)
    - least-squares solve via the normal equations
    - pinhole camera model, PnP pose solving and point projection

All matrix operations raise GeometryError on shape problems instead of letting
numpy broadcasting or OpenCV assertions surface as arbitrary crashes.
"""

from dataclasses import dataclass
import numpy as np
import cv2

import config


class GeometryError(ValueError):
    """Raised when a geometric primitive cannot produce a result."""


def _as_matrix(m, name: str) -> np.ndarray:
    arr = np.asarray(m, dtype=np.float64)
    if arr.ndim != 2:
        raise GeometryError(f"{name} must be 2-D, got shape {arr.shape}")
    return arr


def _as_points(points, dims: int, name: str) -> np.ndarray:
    """(N, dims) float64 view of a point set; a single point may be 1-D."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 0 or arr.size == 0 or arr.shape[-1] != dims:
        raise GeometryError(f"{name} must be (N, {dims}) points, got shape {arr.shape}")
    return np.ascontiguousarray(arr.reshape(-1, dims))


def transpose(m) -> np.ndarray:
    """Return a contiguous transpose of a 2-D matrix."""
    return np.ascontiguousarray(_as_matrix(m, "matrix").T)


def matmul(a, b, alpha: float = 1.0, c=None, beta: float = 0.0) -> np.ndarray:
    """
    Generalized multiply: alpha * (a @ b) + beta * c.

    Args:
        a: (m, k) matrix
        b: (k, n) matrix
        alpha: Scale for the product
        c: Optional (m, n) accumulator
        beta: Scale for the accumulator (ignored when c is None)

    Raises:
        GeometryError: On inner or accumulator dimension mismatch.
    """
    a = _as_matrix(a, "a")
    b = _as_matrix(b, "b")
    if a.shape[1] != b.shape[0]:
        raise GeometryError(f"Cannot multiply {a.shape} by {b.shape}")

    result = alpha * (a @ b)
    if c is not None and beta != 0.0:
        c = _as_matrix(c, "c")
        if c.shape != result.shape:
            raise GeometryError(f"Accumulator shape {c.shape} != product shape {result.shape}")
        result += beta * c
    return result


def invert(m) -> np.ndarray:
    """
    Invert a square matrix with SVD decomposition.

    Rank-deficient input yields the Moore-Penrose pseudo-inverse rather than
    an error, which the affine fit relies on (its z column is all zeros).
    """
    m = _as_matrix(m, "matrix")
    if m.shape[0] != m.shape[1]:
        raise GeometryError(f"Cannot invert non-square matrix {m.shape}")
    _, inv = cv2.invert(np.ascontiguousarray(m), flags=cv2.DECOMP_SVD)
    return inv


def least_squares(x, y) -> np.ndarray:
    """
    Solve x @ A ~= y for A via (x^T x)^-1 x^T y.

    Returns:
        (x.cols, y.cols) solution matrix
    """
    x = _as_matrix(x, "x")
    y = _as_matrix(y, "y")
    if x.shape[0] != y.shape[0]:
        raise GeometryError(f"Row count mismatch: {x.shape[0]} vs {y.shape[0]}")

    xt = transpose(x)
    xtx_inv = invert(matmul(xt, x))
    xty = matmul(xt, y)
    return matmul(xtx_inv, xty)


@dataclass
class CameraModel:
    """
    Pinhole camera approximation.

    Focal length equals the frame width and the principal point is the frame
    center. No lens distortion is modeled.
    """
    focal_length: float
    center_x: float
    center_y: float

    @classmethod
    def from_frame(cls, frame_width: int, frame_height: int) -> "CameraModel":
        return cls(
            focal_length=float(frame_width),
            center_x=frame_width / 2.0,
            center_y=frame_height / 2.0,
        )

    @property
    def matrix(self) -> np.ndarray:
        return np.array([
            [self.focal_length, 0.0, self.center_x],
            [0.0, self.focal_length, self.center_y],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    @property
    def dist_coeffs(self) -> np.ndarray:
        return np.zeros((4, 1), dtype=np.float64)


@dataclass
class PoseEstimate:
    """Rotation (Rodrigues vector) and translation of the model in camera space."""
    rotation: np.ndarray
    translation: np.ndarray
    reprojection_error: float = 0.0


def project(points_3d, pose: PoseEstimate, camera: CameraModel) -> np.ndarray:
    """
    Project 3D model points into the image.

    Args:
        points_3d: (N, 3) points, or a single 3-vector
        pose: PoseEstimate from solve_pose
        camera: CameraModel used for the pose

    Returns:
        (N, 2) pixel coordinates

    Raises:
        GeometryError: On malformed points or pose vectors.
    """
    pts = _as_points(points_3d, 3, "points_3d")
    rvec = np.asarray(pose.rotation, dtype=np.float64)
    tvec = np.asarray(pose.translation, dtype=np.float64)
    if rvec.size != 3 or tvec.size != 3:
        raise GeometryError(f"Pose vectors must have 3 elements, got {rvec.shape} and {tvec.shape}")

    try:
        projected, _ = cv2.projectPoints(
            pts,
            rvec.reshape(3, 1),
            tvec.reshape(3, 1),
            camera.matrix,
            camera.dist_coeffs,
        )
    except cv2.error as e:
        raise GeometryError(f"projectPoints failed: {e}") from e
    return projected.reshape(-1, 2)


def reprojection_error(world_points, image_points, pose: PoseEstimate, camera: CameraModel) -> float:
    """Mean pixel distance between observed and reprojected points."""
    projected = project(world_points, pose, camera)
    observed = _as_points(image_points, 2, "image_points")
    if observed.shape[0] != projected.shape[0]:
        raise GeometryError(f"Point count mismatch: {projected.shape[0]} vs {observed.shape[0]}")
    return float(np.mean(np.linalg.norm(projected - observed, axis=1)))


def solve_pose(
    world_points,
    image_points,
    camera: CameraModel,
    min_points: int = config.MIN_POSE_POINTS,
) -> PoseEstimate:
    """
    Recover model rotation/translation from 2D/3D correspondences.

    Uses iterative (Levenberg-Marquardt) minimization of reprojection error,
    solved from scratch every frame. Near-planar or degenerate configurations
    may converge to a local optimum.

    Raises:
        GeometryError: On mismatched/too few correspondences or solver failure.
    """
    world = _as_points(world_points, 3, "world_points")
    image = _as_points(image_points, 2, "image_points")

    if world.shape[0] != image.shape[0]:
        raise GeometryError(
            f"Correspondence mismatch: {world.shape[0]} world vs {image.shape[0]} image points"
        )
    if world.shape[0] < min_points:
        raise GeometryError(f"Need at least {min_points} correspondences, got {world.shape[0]}")

    try:
        success, rvec, tvec = cv2.solvePnP(
            world,
            image,
            camera.matrix,
            camera.dist_coeffs,
            flags=cv2.SOLVEPNP_ITERATIVE,
        )
    except cv2.error as e:
        raise GeometryError(f"solvePnP failed: {e}") from e

    if not success:
        raise GeometryError("solvePnP did not converge")

    pose = PoseEstimate(rotation=rvec, translation=tvec)
    pose.reprojection_error = reprojection_error(world, image, pose, camera)
    return pose

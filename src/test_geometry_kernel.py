"""
Tests for the geometry kernel: matrix ops, SVD inversion, least squares,
pose solving and projection.
"""

import numpy as np
import pytest

import config
from geometry_kernel import (
    CameraModel,
    GeometryError,
    PoseEstimate,
    invert,
    least_squares,
    matmul,
    project,
    solve_pose,
    transpose,
)

MODEL = np.array(config.CANONICAL_FACE_MODEL, dtype=np.float64)


def _true_pose(rx=np.pi + 0.1, ry=-0.2, rz=0.05, t=(10.0, -5.0, 600.0)):
    return PoseEstimate(
        rotation=np.array([[rx], [ry], [rz]], dtype=np.float64),
        translation=np.array([[t[0]], [t[1]], [t[2]]], dtype=np.float64),
    )


def test_transpose_and_matmul():
    a = np.arange(6, dtype=np.float64).reshape(2, 3)
    assert transpose(a).shape == (3, 2)
    np.testing.assert_allclose(matmul(a, transpose(a)), a @ a.T)


def test_matmul_scale_and_accumulate():
    a = np.eye(2)
    b = np.array([[1.0, 2.0], [3.0, 4.0]])
    c = np.ones((2, 2))
    np.testing.assert_allclose(matmul(a, b, alpha=2.0, c=c, beta=3.0), 2.0 * b + 3.0)


def test_matmul_dimension_mismatch_raises():
    with pytest.raises(GeometryError):
        matmul(np.ones((2, 3)), np.ones((2, 3)))
    with pytest.raises(GeometryError):
        matmul(np.ones((2, 2)), np.ones((2, 2)), c=np.ones((3, 3)), beta=1.0)
    with pytest.raises(GeometryError):
        transpose(np.ones(3))


def test_invert_regular_and_singular():
    m = np.array([[4.0, 7.0], [2.0, 6.0]])
    np.testing.assert_allclose(matmul(invert(m), m), np.eye(2), atol=1e-9)

    # Rank-deficient: SVD gives the pseudo-inverse instead of failing
    singular = np.diag([2.0, 0.0])
    np.testing.assert_allclose(invert(singular), np.diag([0.5, 0.0]), atol=1e-9)

    with pytest.raises(GeometryError):
        invert(np.ones((2, 3)))


def test_least_squares_recovers_linear_map():
    rng = np.random.default_rng(7)
    x = np.hstack([rng.normal(size=(10, 3)), np.ones((10, 1))])
    true_a = rng.normal(size=(4, 3))
    y = x @ true_a
    np.testing.assert_allclose(least_squares(x, y), true_a, atol=1e-8)

    with pytest.raises(GeometryError):
        least_squares(np.ones((4, 2)), np.ones((3, 2)))


def test_camera_model_from_frame():
    cam = CameraModel.from_frame(640, 480)
    assert cam.focal_length == 640.0
    assert cam.matrix[0, 2] == 320.0
    assert cam.matrix[1, 2] == 240.0
    assert not cam.dist_coeffs.any()


def test_solve_pose_round_trip():
    cam = CameraModel.from_frame(640, 480)
    observed = project(MODEL, _true_pose(), cam)

    pose = solve_pose(MODEL, observed, cam)
    reprojected = project(MODEL, pose, cam)

    assert pose.reprojection_error < 0.5
    assert np.max(np.linalg.norm(reprojected - observed, axis=1)) < 0.5


def test_solve_pose_round_trip_multiple_poses():
    cam = CameraModel.from_frame(1280, 720)
    for ry in (-0.3, 0.0, 0.25):
        for rx in (np.pi - 0.15, np.pi + 0.15):
            observed = project(MODEL, _true_pose(rx=rx, ry=ry, t=(-20.0, 15.0, 700.0)), cam)
            pose = solve_pose(MODEL, observed, cam)
            assert pose.reprojection_error < 1.0


def test_solve_pose_rejects_bad_correspondences():
    cam = CameraModel.from_frame(640, 480)
    observed = project(MODEL, _true_pose(), cam)
    with pytest.raises(GeometryError):
        solve_pose(MODEL[:5], observed[:5], cam)
    with pytest.raises(GeometryError):
        solve_pose(MODEL, observed[:5], cam)


def test_project_single_point_and_bad_shapes():
    cam = CameraModel.from_frame(640, 480)
    pose = _true_pose(rx=np.pi, ry=0.0, rz=0.0, t=(0.0, 0.0, 500.0))

    center = project(np.array([0.0, 0.0, 0.0]), pose, cam)
    assert center.shape == (1, 2)
    np.testing.assert_allclose(center[0], (320.0, 240.0), atol=1e-6)

    with pytest.raises(GeometryError):
        project(np.ones((4, 2)), pose, cam)
    with pytest.raises(GeometryError):
        project(np.ones(5), pose, cam)
    with pytest.raises(GeometryError):
        project(np.empty((0, 3)), pose, cam)

    bad_pose = PoseEstimate(rotation=np.zeros(2), translation=pose.translation)
    with pytest.raises(GeometryError):
        project(MODEL, bad_pose, cam)


def test_solve_pose_rejects_malformed_points():
    cam = CameraModel.from_frame(640, 480)
    with pytest.raises(GeometryError):
        solve_pose(np.ones((6, 2)), np.ones((6, 2)), cam)
    with pytest.raises(GeometryError):
        solve_pose(MODEL, np.ones((6, 3)), cam)


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"  ✓ {name}")
    print("All geometry kernel tests passed! ✓")

"""
Tests for stereo rectification and remap tables.
"""

import cv2
import numpy as np
import pytest

from duocalib.data_structures import ExtrinsicModel, IntrinsicModel
from duocalib.errors import DegenerateGeometryError
from duocalib.rectification import Rectifier, rectification_from_extrinsics

SIZE = (640, 480)


def _rectified(points: np.ndarray, model: IntrinsicModel, R_rect: np.ndarray, P_rect: np.ndarray) -> np.ndarray:
    out = cv2.undistortPoints(points.reshape(-1, 1, 2), model.camera_matrix, model.dist_coeffs, R=R_rect, P=P_rect)
    return out.reshape(-1, 2)


def test_rectify_outputs(synthetic_solution):
    """Test shapes of transforms and remap tables."""
    rect = Rectifier().rectify_solution(synthetic_solution)
    assert rect.R1.shape == rect.R2.shape == (3, 3)
    assert rect.P1.shape == rect.P2.shape == (3, 4)
    assert rect.Q.shape == (4, 4)
    assert rect.left_map.size == SIZE
    assert rect.right_map.size == SIZE

    image = np.random.default_rng(0).integers(0, 255, (480, 640), dtype=np.uint8)
    rect_l, rect_r = rect.rectify_pair(image, image)
    assert rect_l.shape == rect_r.shape == image.shape


def test_zero_disparity_principal_points(synthetic_solution):
    """Both rectified cameras share the same principal point."""
    rect = Rectifier().rectify_solution(synthetic_solution)
    assert rect.P1[0, 2] == pytest.approx(rect.P2[0, 2])
    assert rect.P1[1, 2] == pytest.approx(rect.P2[1, 2])
    assert rect.Q[3, 3] == pytest.approx(0.0, abs=1e-9)


def test_rows_aligned_for_rotated_rig(synthetic_solution):
    """Corresponding points land on the same row with positive disparity."""
    K = synthetic_solution.left.camera_matrix
    dist = np.array([[-0.05, 0.01, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]])
    left = IntrinsicModel(K, dist)
    right = IntrinsicModel(K, dist)
    R, _ = cv2.Rodrigues(np.array([0.01, -0.03, 0.02]))
    T = np.array([[-6.0], [0.2], [0.1]])

    rect = Rectifier().rectify(left, right, R, T, SIZE)

    rng = np.random.default_rng(1)
    X = np.column_stack([rng.uniform(-15, 15, 30), rng.uniform(-10, 10, 30), rng.uniform(60, 200, 30)])
    pts_l, _ = cv2.projectPoints(X, np.zeros(3), np.zeros(3), K, dist)
    rvec, _ = cv2.Rodrigues(R)
    pts_r, _ = cv2.projectPoints(X, rvec, T, K, dist)

    rl = _rectified(pts_l, left, rect.R1, rect.P1)
    rr = _rectified(pts_r, right, rect.R2, rect.P2)
    np.testing.assert_allclose(rl[:, 1], rr[:, 1], atol=0.1)
    assert np.all(rl[:, 0] - rr[:, 0] > 0)


def test_extrinsics_combines_solution(synthetic_solution):
    """The extrinsic model carries raw pose and rectification transforms."""
    rect = Rectifier().rectify_solution(synthetic_solution)
    extr = rect.extrinsics(synthetic_solution)
    assert np.array_equal(extr.R, synthetic_solution.R)
    assert np.array_equal(extr.T, synthetic_solution.T)
    assert np.array_equal(extr.Q, rect.Q)


def test_deterministic(synthetic_solution):
    """Identical input gives identical transforms and maps."""
    a = Rectifier().rectify_solution(synthetic_solution)
    b = Rectifier().rectify_solution(synthetic_solution)
    assert np.array_equal(a.Q, b.Q)
    assert np.array_equal(a.left_map.map1, b.left_map.map1)


def test_zero_translation_rejected(synthetic_solution):
    """Coincident camera centers cannot be rectified."""
    with pytest.raises(DegenerateGeometryError):
        Rectifier().rectify(synthetic_solution.left, synthetic_solution.right, np.eye(3), np.zeros(3), SIZE)


def test_invalid_rotation_rejected(synthetic_solution):
    """Test that non-rotation matrices are rejected."""
    with pytest.raises(DegenerateGeometryError):
        Rectifier().rectify(synthetic_solution.left, synthetic_solution.right, np.zeros((3, 3)), synthetic_solution.T, SIZE)
    with pytest.raises(DegenerateGeometryError):
        Rectifier().rectify(
            synthetic_solution.left, synthetic_solution.right, 2.0 * np.eye(3), synthetic_solution.T, SIZE
        )


def test_singular_camera_rejected(synthetic_solution):
    """A singular camera matrix is degenerate."""
    singular = IntrinsicModel(np.zeros((3, 3)), np.zeros((1, 8)))
    with pytest.raises(DegenerateGeometryError):
        Rectifier().rectify(singular, synthetic_solution.right, np.eye(3), synthetic_solution.T, SIZE)


def test_non_finite_camera_rejected(synthetic_solution):
    """NaN intrinsics are degenerate."""
    K = np.array(synthetic_solution.left.camera_matrix)
    K[0, 0] = np.nan
    with pytest.raises(DegenerateGeometryError):
        Rectifier().rectify(IntrinsicModel(K, np.zeros((1, 8))), synthetic_solution.right, np.eye(3), synthetic_solution.T, SIZE)


def _render_dot(center: np.ndarray, sigma: float = 2.0) -> np.ndarray:
    """Grayscale image with a Gaussian spot at a sub-pixel position."""
    ys, xs = np.mgrid[0 : SIZE[1], 0 : SIZE[0]]
    spot = np.exp(-((xs - center[0]) ** 2 + (ys - center[1]) ** 2) / (2 * sigma**2))
    return np.round(255 * spot).astype(np.uint8)


def _centroid(image: np.ndarray) -> tuple[float, float]:
    weights = image.astype(np.float64)
    ys, xs = np.mgrid[0 : image.shape[0], 0 : image.shape[1]]
    total = weights.sum()
    return float((xs * weights).sum() / total), float((ys * weights).sum() / total)


def test_remap_aligns_rows_of_rendered_point(synthetic_solution):
    """A point seen by both cameras lands on one row after remapping the images."""
    K = synthetic_solution.left.camera_matrix
    dist = np.zeros((1, 8))
    model = IntrinsicModel(K, dist)
    R, _ = cv2.Rodrigues(np.array([0.02, -0.03, 0.015]))
    T = np.array([[-6.0], [0.3], [0.2]])
    rect = Rectifier().rectify(model, model, R, T, SIZE)

    X = np.array([[3.0, 8.0, 90.0]])
    rvec, _ = cv2.Rodrigues(R)
    pt_l, _ = cv2.projectPoints(X, np.zeros(3), np.zeros(3), K, dist)
    pt_r, _ = cv2.projectPoints(X, rvec, T, K, dist)

    rect_l, rect_r = rect.rectify_pair(_render_dot(pt_l.ravel()), _render_dot(pt_r.ravel()))
    x_l, y_l = _centroid(rect_l)
    x_r, y_r = _centroid(rect_r)

    assert abs(y_l - y_r) < 1.0
    assert x_l - x_r > 0
    # The remapped spot sits where the rectifying transform predicts
    expected_l = _rectified(pt_l, model, rect.R1, rect.P1)[0]
    assert abs(x_l - expected_l[0]) < 1.0
    assert abs(y_l - expected_l[1]) < 1.0


def test_rectification_from_saved_extrinsics(synthetic_solution):
    """Remap tables follow the stored projection matrices, not a fresh rectify."""
    wide = Rectifier(alpha=1.0).rectify_solution(synthetic_solution)
    saved = wide.extrinsics(synthetic_solution)

    rebuilt = rectification_from_extrinsics(synthetic_solution, saved)
    assert np.array_equal(rebuilt.P1, wide.P1)
    assert np.array_equal(rebuilt.left_map.map1, wide.left_map.map1)
    assert np.array_equal(rebuilt.right_map.map2, wide.right_map.map2)


def test_rectification_from_non_finite_extrinsics(synthetic_solution):
    """Corrupt saved transforms are rejected."""
    rect = Rectifier().rectify_solution(synthetic_solution)
    extr = rect.extrinsics(synthetic_solution)
    P1 = np.array(extr.P1)
    P1[0, 0] = np.inf
    corrupt = ExtrinsicModel(
        R=extr.R, T=extr.T, E=extr.E, F=extr.F, R1=extr.R1, R2=extr.R2, P1=P1, P2=extr.P2, Q=extr.Q
    )
    with pytest.raises(DegenerateGeometryError):
        rectification_from_extrinsics(synthetic_solution, corrupt)

"""
Shared fixtures for the duocalib tests.

Images are rendered synthetically so no camera or data files are needed.
"""

import cv2
import numpy as np
import pytest

from duocalib.data_structures import (
    CorrespondenceDataset,
    CorrespondenceFrame,
    IntrinsicModel,
    PatternGeometry,
    StereoSolution,
)

IMAGE_SIZE = (640, 480)
SQUARE_PX = 30


def render_chessboard(
    cols: int = 9, rows: int = 6, offset: tuple[int, int] = (170, 135), size: tuple[int, int] = IMAGE_SIZE
) -> tuple[np.ndarray, np.ndarray]:
    """
    Render a grayscale chessboard with ``cols`` x ``rows`` inner corners.

    Returns:
        Tuple of (image, expected inner corner pixel coordinates (N, 2))
    """
    width, height = size
    image = np.full((height, width), 255, np.uint8)
    ox, oy = offset
    for r in range(rows + 1):
        for c in range(cols + 1):
            if (r + c) % 2 == 0:
                x0, y0 = ox + c * SQUARE_PX, oy + r * SQUARE_PX
                image[y0 : y0 + SQUARE_PX, x0 : x0 + SQUARE_PX] = 0
    image = cv2.GaussianBlur(image, (3, 3), 0)

    expected = np.array(
        [[ox + (c + 1) * SQUARE_PX - 0.5, oy + (r + 1) * SQUARE_PX - 0.5] for r in range(rows) for c in range(cols)],
        np.float32,
    )
    return image, expected


def blank_image(size: tuple[int, int] = IMAGE_SIZE, value: int = 128) -> np.ndarray:
    return np.full((size[1], size[0]), value, np.uint8)


@pytest.fixture
def geometry():
    return PatternGeometry(cols=9, rows=6, square_length=2.533)


@pytest.fixture
def board_pair():
    """Stereo pair with the board visible in both images, shifted horizontally."""
    left, _ = render_chessboard(offset=(200, 135))
    right, _ = render_chessboard(offset=(150, 135))
    return left, right


@pytest.fixture
def synthetic_solution():
    """Ideal parallel rig: f=500 px, 6 cm baseline along x, no distortion."""
    K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
    dist = np.zeros((1, 8))
    R = np.eye(3)
    T = np.array([[-6.0], [0.0], [0.0]])
    E = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 6.0], [0.0, -6.0, 0.0]])
    F = np.linalg.inv(K).T @ E @ np.linalg.inv(K)
    return StereoSolution(
        left=IntrinsicModel(K, dist),
        right=IntrinsicModel(K, dist),
        R=R,
        T=T,
        E=E,
        F=F,
        rms=0.123456789,
        image_size=IMAGE_SIZE,
        num_frames=12,
    )


RIG_K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
RIG_T = np.array([-6.0, 0.0, 0.0])

# (rx, ry, rz) board tilt in radians, (x, y, z) board center in the left camera frame
BOARD_POSES = [
    ((0.0, 0.0, 0.0), (0.0, 0.0, 60.0)),
    ((0.35, 0.0, 0.0), (-4.0, 2.0, 55.0)),
    ((-0.35, 0.0, 0.1), (4.0, -2.0, 65.0)),
    ((0.0, 0.4, 0.0), (6.0, 3.0, 58.0)),
    ((0.0, -0.4, -0.1), (-6.0, -3.0, 62.0)),
    ((0.3, 0.3, 0.2), (2.0, 5.0, 50.0)),
    ((-0.3, -0.3, 0.0), (-2.0, -5.0, 70.0)),
    ((0.25, -0.35, 0.15), (8.0, 0.0, 60.0)),
    ((-0.25, 0.35, -0.15), (-8.0, 1.0, 57.0)),
    ((0.45, 0.1, 0.0), (0.0, -6.0, 66.0)),
    ((-0.1, -0.45, 0.3), (3.0, 6.0, 54.0)),
    ((0.15, 0.2, -0.3), (-3.0, 0.0, 48.0)),
]


def synthetic_dataset(geometry: PatternGeometry, poses=BOARD_POSES) -> CorrespondenceDataset:
    """Project the board through the ideal rig (f=500 px, 6 cm baseline) for every pose."""
    objp = geometry.object_points.astype(np.float64)
    center = objp.mean(axis=0)
    dataset = CorrespondenceDataset(geometry)
    zero = np.zeros(3)

    for rvec, tvec in poses:
        R_board, _ = cv2.Rodrigues(np.array(rvec, dtype=np.float64))
        X_left = (R_board @ (objp - center).T).T + np.array(tvec)
        left, _ = cv2.projectPoints(X_left, zero, zero, RIG_K, None)
        right, _ = cv2.projectPoints(X_left, zero, RIG_T, RIG_K, None)
        dataset.append(CorrespondenceFrame(geometry.object_points, left, right))
    return dataset

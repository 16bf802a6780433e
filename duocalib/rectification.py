"""
Stereo rectification transforms and undistort/rectify remap tables.

Derives the rotations that row-align both image planes, the rectified
projection matrices and the disparity-to-depth matrix, then bakes everything
into per-camera lookup tables applied to every live frame.
"""

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from .data_structures import ExtrinsicModel, IntrinsicModel, StereoSolution
from .errors import DegenerateGeometryError

logger = logging.getLogger(__name__)

ROTATION_TOLERANCE = 1e-4
MIN_CONDITION_RECIPROCAL = 1e-12


@dataclass(frozen=True)
class RemapTable:
    """
    Per-camera lookup from rectified output pixel to raw source pixel.

    Attributes:
        map1: Fixed-point source coordinates (H, W, 2) int16
        map2: Interpolation table (H, W) uint16
    """

    map1: np.ndarray
    map2: np.ndarray

    @property
    def size(self) -> tuple[int, int]:
        """Output dimensions (width, height)."""
        return self.map1.shape[1], self.map1.shape[0]

    def apply(self, image: np.ndarray) -> np.ndarray:
        """Undistort and rectify a raw image with bilinear interpolation."""
        return cv2.remap(image, self.map1, self.map2, interpolation=cv2.INTER_LINEAR)


@dataclass(frozen=True)
class Rectification:
    """
    Output of the rectifier for one calibration run.

    Attributes:
        R1, R2: Rectification rotations (3x3)
        P1, P2: Rectified projection matrices (3x4)
        Q: Disparity-to-depth mapping matrix (4x4)
        roi_left, roi_right: Valid pixel regions (x, y, w, h)
        left_map, right_map: Remap tables
    """

    R1: np.ndarray
    R2: np.ndarray
    P1: np.ndarray
    P2: np.ndarray
    Q: np.ndarray
    roi_left: tuple[int, int, int, int]
    roi_right: tuple[int, int, int, int]
    left_map: RemapTable
    right_map: RemapTable

    def rectify_pair(self, left: np.ndarray, right: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Apply both remap tables to a raw stereo pair."""
        return self.left_map.apply(left), self.right_map.apply(right)

    def extrinsics(self, solution: StereoSolution) -> ExtrinsicModel:
        """Combine the raw solve extrinsics with the rectification transforms."""
        return ExtrinsicModel(
            R=solution.R,
            T=solution.T,
            E=solution.E,
            F=solution.F,
            R1=self.R1,
            R2=self.R2,
            P1=self.P1,
            P2=self.P2,
            Q=self.Q,
        )


def _check_camera(name: str, model: IntrinsicModel) -> None:
    K = model.camera_matrix
    if not np.all(np.isfinite(K)) or not np.all(np.isfinite(model.dist_coeffs)):
        raise DegenerateGeometryError(f"{name} camera model contains non-finite values")
    s = np.linalg.svd(K, compute_uv=False)
    if s[-1] <= s[0] * MIN_CONDITION_RECIPROCAL:
        raise DegenerateGeometryError(f"{name} camera matrix is singular")


def _check_rotation(R: np.ndarray) -> None:
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        raise DegenerateGeometryError(f"Rotation must be a finite 3x3 matrix, got shape {R.shape}")
    if not np.allclose(R.T @ R, np.eye(3), atol=ROTATION_TOLERANCE):
        raise DegenerateGeometryError("Rotation matrix is not orthonormal")
    if abs(np.linalg.det(R) - 1.0) > ROTATION_TOLERANCE:
        raise DegenerateGeometryError(f"Rotation matrix has determinant {np.linalg.det(R):.6f}")


def compute_remap_table(
    model: IntrinsicModel, R_rect: np.ndarray, P_rect: np.ndarray, image_size: tuple[int, int]
) -> RemapTable:
    """Build the undistort+rectify lookup table for one camera."""
    try:
        map1, map2 = cv2.initUndistortRectifyMap(
            model.camera_matrix, model.dist_coeffs, R_rect, P_rect, image_size, cv2.CV_16SC2
        )
    except cv2.error as e:
        raise DegenerateGeometryError(f"Remap table construction failed: {e}") from e
    return RemapTable(map1, map2)


class Rectifier:
    """
    Deterministic rectification stage.

    ``alpha=0`` crops to valid pixels only and keeps the original focal length
    where possible; the zero-disparity convention puts both principal points
    on the same pixel so points at infinity have zero disparity.
    """

    def __init__(self, alpha: float = 0.0):
        self.alpha = alpha

    def rectify(
        self,
        left: IntrinsicModel,
        right: IntrinsicModel,
        R: np.ndarray,
        T: np.ndarray,
        image_size: tuple[int, int],
    ) -> Rectification:
        """
        Compute rectification transforms and remap tables.

        Args:
            left, right: Camera intrinsics
            R: Rotation from left to right camera
            T: Translation from left to right camera
            image_size: Image dimensions (width, height)

        Returns:
            Rectification with R1, R2, P1, P2, Q and both remap tables

        Raises:
            DegenerateGeometryError: On singular or non-finite input or output
        """
        R = np.asarray(R, dtype=np.float64)
        T = np.asarray(T, dtype=np.float64).reshape(3, 1)
        _check_camera("Left", left)
        _check_camera("Right", right)
        _check_rotation(R)
        if not np.all(np.isfinite(T)) or np.linalg.norm(T) == 0.0:
            raise DegenerateGeometryError("Translation between cameras must be finite and non-zero")

        size = (int(image_size[0]), int(image_size[1]))
        logger.info("Stereo rectify...")
        try:
            R1, R2, P1, P2, Q, roi1, roi2 = cv2.stereoRectify(
                left.camera_matrix,
                left.dist_coeffs,
                right.camera_matrix,
                right.dist_coeffs,
                size,
                R,
                T,
                flags=cv2.CALIB_ZERO_DISPARITY,
                alpha=self.alpha,
            )
        except cv2.error as e:
            raise DegenerateGeometryError(f"Stereo rectify failed: {e}") from e
        for name, value in (("R1", R1), ("R2", R2), ("P1", P1), ("P2", P2), ("Q", Q)):
            if not np.all(np.isfinite(value)):
                raise DegenerateGeometryError(f"Rectification produced non-finite {name}")

        logger.info("Undistort rectify maps...")
        left_map = compute_remap_table(left, R1, P1, size)
        right_map = compute_remap_table(right, R2, P2, size)
        logger.info(f"Rectification complete. ROIs: L={tuple(roi1)}, R={tuple(roi2)}")

        return Rectification(
            R1=R1,
            R2=R2,
            P1=P1,
            P2=P2,
            Q=Q,
            roi_left=tuple(int(v) for v in roi1),
            roi_right=tuple(int(v) for v in roi2),
            left_map=left_map,
            right_map=right_map,
        )

    def rectify_solution(self, solution: StereoSolution) -> Rectification:
        """Convenience wrapper taking a complete StereoSolution."""
        return self.rectify(solution.left, solution.right, solution.R, solution.T, solution.image_size)


def rectification_from_extrinsics(solution: StereoSolution, extrinsics: ExtrinsicModel) -> Rectification:
    """
    Rebuild the remap tables from saved rectification transforms.

    The stored R1/R2/P1/P2/Q are used as-is, so images rectified later match
    the projection matrices in the extrinsics document. Valid ROIs are not
    persisted and are reported as empty.

    Raises:
        DegenerateGeometryError: If the stored transforms are unusable
    """
    _check_camera("Left", solution.left)
    _check_camera("Right", solution.right)
    for name in ("R1", "R2", "P1", "P2", "Q"):
        if not np.all(np.isfinite(getattr(extrinsics, name))):
            raise DegenerateGeometryError(f"Saved {name} contains non-finite values")

    size = (int(solution.image_size[0]), int(solution.image_size[1]))
    return Rectification(
        R1=extrinsics.R1,
        R2=extrinsics.R2,
        P1=extrinsics.P1,
        P2=extrinsics.P2,
        Q=extrinsics.Q,
        roi_left=(0, 0, 0, 0),
        roi_right=(0, 0, 0, 0),
        left_map=compute_remap_table(solution.left, extrinsics.R1, extrinsics.P1, size),
        right_map=compute_remap_table(solution.right, extrinsics.R2, extrinsics.P2, size),
    )

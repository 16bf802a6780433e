"""
Stereo calibration solve.

Jointly estimates both cameras' intrinsics, lens distortion and the relative
pose from the accumulated correspondence dataset with OpenCV's
Levenberg-Marquardt stereo bundle adjustment.
"""

import logging

import cv2
import numpy as np

from .data_structures import CorrespondenceDataset, IntrinsicModel, StereoSolution
from .errors import DegenerateGeometryError, InsufficientDataError

logger = logging.getLogger(__name__)

MIN_FRAMES = 10
SOLVE_FLAGS = cv2.CALIB_RATIONAL_MODEL | cv2.CALIB_SAME_FOCAL_LENGTH


class StereoSolver:
    """
    Stereo solver with a fixed rig model.

    Uses the rational distortion model and forces both cameras to share one
    focal length. The RMS reprojection error is reported but never used to
    accept or reject the result.
    """

    def __init__(self, min_frames: int = MIN_FRAMES, max_iterations: int = 30, epsilon: float = 1e-6):
        self.min_frames = min_frames
        self.max_iterations = max_iterations
        self.epsilon = epsilon

    @property
    def criteria(self) -> tuple[int, int, float]:
        return (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, self.max_iterations, self.epsilon)

    def solve(self, dataset: CorrespondenceDataset, image_size: tuple[int, int]) -> StereoSolution:
        """
        Solve intrinsics and extrinsics from the full dataset.

        Args:
            dataset: Accepted frame pairs (order does not affect the result)
            image_size: Image dimensions (width, height)

        Returns:
            StereoSolution with both intrinsic models, R, T, E, F and RMS error

        Raises:
            InsufficientDataError: If fewer than ``min_frames`` pairs are available
            DegenerateGeometryError: If the optimization fails or returns non-finite values
        """
        if len(dataset) < self.min_frames:
            raise InsufficientDataError(len(dataset), self.min_frames)

        logger.info(f"Stereo calibrate with {len(dataset)} board pairs...")

        try:
            rms, K1, d1, K2, d2, R, T, E, F = cv2.stereoCalibrate(
                dataset.object_points(),
                dataset.left_points(),
                dataset.right_points(),
                None,
                None,
                None,
                None,
                tuple(int(v) for v in image_size),
                criteria=self.criteria,
                flags=SOLVE_FLAGS,
            )
        except cv2.error as e:
            raise DegenerateGeometryError(f"Stereo solve failed: {e}") from e

        for name, value in (("M1", K1), ("D1", d1), ("M2", K2), ("D2", d2), ("R", R), ("T", T)):
            if value is None or not np.all(np.isfinite(value)):
                raise DegenerateGeometryError(f"Stereo solve produced non-finite {name}")
        if not np.isfinite(rms):
            raise DegenerateGeometryError("Stereo solve produced a non-finite reprojection error")

        logger.info(f"Stereo reprojection error: {rms:.6f} px")

        return StereoSolution(
            left=IntrinsicModel(K1, d1),
            right=IntrinsicModel(K2, d2),
            R=R,
            T=T,
            E=E,
            F=F,
            rms=float(rms),
            image_size=(int(image_size[0]), int(image_size[1])),
            num_frames=len(dataset),
        )

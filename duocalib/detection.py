"""
Chessboard detection utilities for stereo calibration.

Locates the calibration pattern in both images of a stereo pair and refines
the corners to sub-pixel precision when, and only when, both sides succeed.
"""

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from .data_structures import PatternGeometry

logger = logging.getLogger(__name__)

SUBPIXEL_WINDOW = (5, 5)
SUBPIXEL_ZERO_ZONE = (-1, -1)
SUBPIXEL_CRITERIA = (cv2.TERM_CRITERIA_MAX_ITER | cv2.TERM_CRITERIA_EPS, 20, 0.1)


@dataclass(frozen=True)
class StereoDetection:
    """
    Outcome of one detection attempt on a stereo pair.

    Either side may be None when the board was not found there. Only a
    complete detection carries sub-pixel refined corners and may be committed.

    Attributes:
        left: Left corners (N, 1, 2) float32 or None
        right: Right corners (N, 1, 2) float32 or None
        corner_count: Expected number of corners for the board
    """

    left: np.ndarray | None
    right: np.ndarray | None
    corner_count: int

    @property
    def found_left(self) -> bool:
        return self.left is not None and len(self.left) == self.corner_count

    @property
    def found_right(self) -> bool:
        return self.right is not None and len(self.right) == self.corner_count

    @property
    def complete(self) -> bool:
        """True when both cameras yielded the full corner set."""
        return self.found_left and self.found_right

    def points(self) -> tuple[np.ndarray, np.ndarray] | None:
        """Return the (left, right) point sets for a complete detection, else None."""
        if not self.complete:
            return None
        return self.left, self.right


def find_chessboard(gray: np.ndarray, pattern_size: tuple[int, int]) -> np.ndarray | None:
    """
    Detect the chessboard inner corners in a single grayscale image.

    Args:
        gray: 8-bit grayscale image
        pattern_size: (cols, rows) inner corner counts

    Returns:
        Corner array (Nx1x2 float32), or None when the board was not found
    """
    found, corners = cv2.findChessboardCorners(gray, pattern_size)
    if not found or corners is None:
        return None
    return corners.reshape(-1, 1, 2).astype(np.float32, copy=False)


def refine_corners(gray: np.ndarray, corners: np.ndarray) -> np.ndarray:
    """Refine detected corners with a fixed 5x5 sub-pixel search window."""
    refined = cv2.cornerSubPix(gray, corners.copy(), SUBPIXEL_WINDOW, SUBPIXEL_ZERO_ZONE, SUBPIXEL_CRITERIA)
    return refined.reshape(-1, 1, 2)


def _as_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


class CorrespondenceExtractor:
    """
    Stateless stereo chessboard extractor.

    The only retained state is the pattern geometry, whose object point
    template is built eagerly by PatternGeometry itself.
    """

    def __init__(self, geometry: PatternGeometry):
        self.geometry = geometry

    def extract(self, left: np.ndarray, right: np.ndarray) -> StereoDetection:
        """
        Detect the board in both images.

        Args:
            left: Left image (grayscale or BGR)
            right: Right image, same size as left

        Returns:
            StereoDetection; complete only if both sides found every corner

        Raises:
            ValueError: If the two images differ in size
        """
        if left.shape[:2] != right.shape[:2]:
            raise ValueError(f"Image sizes differ: left={left.shape[:2]} right={right.shape[:2]}")

        gray_l = _as_gray(left)
        gray_r = _as_gray(right)
        corners_l = find_chessboard(gray_l, self.geometry.pattern_size)
        corners_r = find_chessboard(gray_r, self.geometry.pattern_size)

        detection = StereoDetection(corners_l, corners_r, self.geometry.corner_count)
        if not detection.complete:
            return detection

        return StereoDetection(
            refine_corners(gray_l, corners_l),
            refine_corners(gray_r, corners_r),
            self.geometry.corner_count,
        )

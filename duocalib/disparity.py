"""
SGBM (Semi-Global Block Matching) disparity for the rectified live preview.

Runs at a fixed downscaled resolution with fixed matcher parameters and
returns both the raw fixed-point disparity and a false-colored rendering.
"""

import logging
from dataclasses import dataclass

import cv2
import numpy as np

logger = logging.getLogger(__name__)

QVGA = (320, 240)

MIN_DISPARITY = 0
NUM_DISPARITIES = 48
BLOCK_SIZE = 5
P1 = 25
P2 = 50
DISP12_MAX_DIFF = 1
PRE_FILTER_CAP = 63
UNIQUENESS_RATIO = 40
SPECKLE_WINDOW_SIZE = 200
SPECKLE_RANGE = 2

# StereoSGBM output is fixed point with 4 fractional bits
DISPARITY_SCALE = 16
DISPLAY_SCALE = 255.0 / (NUM_DISPARITIES * DISPARITY_SCALE)


@dataclass(frozen=True)
class DisparityMap:
    """
    Disparity for one rectified pair.

    Attributes:
        raw: Fixed-point disparity (H, W) int16, 16 x pixels; invalid pixels
            are below ``MIN_DISPARITY * 16``
        scaled: 8-bit disparity scaled to the full search range
        color: BGR false-color rendering of ``scaled``
    """

    raw: np.ndarray
    scaled: np.ndarray
    color: np.ndarray

    @property
    def size(self) -> tuple[int, int]:
        return self.raw.shape[1], self.raw.shape[0]

    @property
    def valid_mask(self) -> np.ndarray:
        return self.raw >= MIN_DISPARITY * DISPARITY_SCALE

    def pixels(self) -> np.ndarray:
        """Disparity in pixels (float32) at the working resolution; invalid pixels are NaN."""
        disp = self.raw.astype(np.float32) / DISPARITY_SCALE
        disp[~self.valid_mask] = np.nan
        return disp

    def to_points(self, Q: np.ndarray, image_size: tuple[int, int]) -> np.ndarray:
        """
        Reproject the disparity to 3D using the rectification Q matrix.

        Q is defined for the full rectified resolution; it is rescaled to the
        working resolution, which must be a uniform downscale.

        Args:
            Q: 4x4 disparity-to-depth matrix from the rectifier
            image_size: Full rectified resolution (width, height)

        Returns:
            (H, W, 3) float32 points in board units; invalid pixels are NaN
        """
        scale = self.size[0] / float(image_size[0])
        Q_scaled = np.array(Q, dtype=np.float64, copy=True)
        Q_scaled[:, 3] *= scale

        disp = self.raw.astype(np.float32) / DISPARITY_SCALE
        points = cv2.reprojectImageTo3D(disp, Q_scaled)
        points[~self.valid_mask | (disp <= 0)] = np.nan
        return points


def create_matcher() -> cv2.StereoSGBM:
    """Create the StereoSGBM matcher with the tuned preview parameters."""
    return cv2.StereoSGBM_create(
        minDisparity=MIN_DISPARITY,
        numDisparities=NUM_DISPARITIES,
        blockSize=BLOCK_SIZE,
        P1=P1,
        P2=P2,
        disp12MaxDiff=DISP12_MAX_DIFF,
        preFilterCap=PRE_FILTER_CAP,
        uniquenessRatio=UNIQUENESS_RATIO,
        speckleWindowSize=SPECKLE_WINDOW_SIZE,
        speckleRange=SPECKLE_RANGE,
        mode=cv2.STEREO_SGBM_MODE_SGBM_3WAY,
    )


def colorize(raw: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Scale raw fixed-point disparity to 8 bits and apply the JET colormap."""
    scaled = np.clip(np.rint(raw.astype(np.float32) * DISPLAY_SCALE), 0, 255).astype(np.uint8)
    return scaled, cv2.applyColorMap(scaled, cv2.COLORMAP_JET)


class DisparityEngine:
    """
    Dense disparity for rectified pairs.

    The matcher carries only its configuration between calls, so identical
    inputs always give identical output.
    """

    def __init__(self, output_size: tuple[int, int] = QVGA):
        self.output_size = (int(output_size[0]), int(output_size[1]))
        self._matcher = create_matcher()

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if (image.shape[1], image.shape[0]) != self.output_size:
            image = cv2.resize(image, self.output_size)
        return image

    def compute(self, rect_left: np.ndarray, rect_right: np.ndarray) -> DisparityMap:
        """
        Compute the disparity map for a rectified stereo pair.

        Args:
            rect_left: Rectified left image
            rect_right: Rectified right image of the same size

        Returns:
            DisparityMap at ``output_size``

        Raises:
            ValueError: If the two images differ in size
        """
        if rect_left.shape[:2] != rect_right.shape[:2]:
            raise ValueError(f"Image shapes don't match: left={rect_left.shape}, right={rect_right.shape}")

        raw = self._matcher.compute(self._prepare(rect_left), self._prepare(rect_right))
        scaled, color = colorize(raw)
        return DisparityMap(raw=raw, scaled=scaled, color=color)

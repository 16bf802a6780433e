"""
Accumulation of stereo correspondences across operator-accepted frames.

Detection runs continuously through ``sample`` so the preview can draw live
overlays; a frame only enters the dataset on an explicit ``commit``.
"""

import logging

import numpy as np

from .data_structures import CorrespondenceDataset, CorrespondenceFrame, PatternGeometry
from .detection import CorrespondenceExtractor, StereoDetection

logger = logging.getLogger(__name__)


class CorrespondenceAccumulator:
    """
    Cache-then-commit accumulator over a CorrespondenceDataset.

    The most recent complete detection is held in ``pending``. A failed sample
    keeps whatever was pending; a successful one replaces it. ``commit``
    consumes the pending detection, so repeated commits without a new
    successful sample append at most one frame.
    """

    def __init__(self, geometry: PatternGeometry, extractor: CorrespondenceExtractor | None = None):
        self.geometry = geometry
        self.extractor = extractor if extractor is not None else CorrespondenceExtractor(geometry)
        self._dataset = CorrespondenceDataset(geometry)
        self._pending: StereoDetection | None = None

    @property
    def pending(self) -> StereoDetection | None:
        """Most recent complete, not yet committed detection."""
        return self._pending

    @property
    def dataset(self) -> CorrespondenceDataset:
        return self._dataset

    def sample(self, left: np.ndarray, right: np.ndarray) -> StereoDetection:
        """
        Run detection on a stereo pair and cache it if complete.

        Args:
            left: Left image
            right: Right image

        Returns:
            The detection, complete or not, for overlay drawing
        """
        detection = self.extractor.extract(left, right)
        if detection.complete:
            self._pending = detection
        return detection

    def commit(self) -> bool:
        """
        Append the pending detection to the dataset.

        Returns:
            True if a frame was appended, False if nothing usable was pending

        Raises:
            RuntimeError: If the dataset has been frozen
        """
        if self._dataset.is_frozen:
            raise RuntimeError("Cannot commit after the capture phase has ended")

        pending = self._pending
        if pending is None or not pending.complete:
            logger.debug("Commit ignored: no complete detection pending")
            return False

        left, right = pending.points()
        self._dataset.append(CorrespondenceFrame(self.geometry.object_points, left, right))
        self._pending = None
        logger.info(f"Accepted frame pair #{len(self._dataset)}")
        return True

    def count(self) -> int:
        """Number of accepted frame pairs."""
        return len(self._dataset)

    def freeze(self) -> CorrespondenceDataset:
        """End the capture phase and return the frozen dataset."""
        self._pending = None
        return self._dataset.freeze()

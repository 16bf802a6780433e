"""
Capture, solve and preview phases of a duo calibration session.

The phases run strictly one after another on the calling thread: the dataset
is frozen when capture ends, so the solve never races a commit.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
from tqdm.auto import tqdm

from .accumulator import CorrespondenceAccumulator
from .calibration import StereoSolver
from .camera import FrameSource
from .data_structures import (
    CalibrationConfig,
    CalibrationMetadata,
    CorrespondenceDataset,
    ExtrinsicModel,
    PatternGeometry,
    StereoSolution,
)
from .disparity import DisparityEngine, DisparityMap
from .errors import FrameSourceError
from .io import CalibrationStore, OutputPaths
from .rectification import Rectification, Rectifier
from .visualization import (
    compose_side_by_side,
    draw_detection,
    draw_epipolar_guides,
    draw_status,
    plot_rectification_preview,
)

logger = logging.getLogger(__name__)

ESC = 27


class Display(Protocol):
    """Operator surface: shows images and reports key presses."""

    def show(self, image: np.ndarray, window: str | None = None) -> None: ...

    def wait_key(self, delay_ms: int) -> int: ...


@dataclass(frozen=True)
class CalibrationResult:
    """Everything produced by one calibration run; read-only for the rest of the session."""

    solution: StereoSolution
    rectification: Rectification
    extrinsics: ExtrinsicModel
    metadata: CalibrationMetadata
    intrinsics_path: Path
    extrinsics_path: Path


def accumulate_from_source(
    accumulator: CorrespondenceAccumulator, source: FrameSource, total: int | None = None, progress: bool = True
) -> int:
    """
    Sample every pair of a finite source and commit each complete detection.

    Args:
        accumulator: Accumulator receiving the frames
        source: Finite frame source, exhausted when it raises FrameSourceError
        total: Number of pairs for the progress bar
        progress: Show a progress bar

    Returns:
        Number of pairs examined
    """
    examined = 0
    with tqdm(total=total, desc="Detecting boards", disable=not progress) as bar:
        while total is None or examined < total:
            try:
                left, right = source.next_pair()
            except FrameSourceError:
                if total is None:
                    break
                raise
            examined += 1
            if accumulator.sample(left, right).complete:
                accumulator.commit()
            bar.update(1)
    logger.info(f"Accepted {accumulator.count()} of {examined} image pairs")
    return examined


def solve_and_store(
    dataset: CorrespondenceDataset,
    image_size: tuple[int, int],
    store: CalibrationStore,
    solver: StereoSolver | None = None,
    rectifier: Rectifier | None = None,
) -> CalibrationResult:
    """
    Solve, persist the intrinsics, rectify and persist the extrinsics.

    The reprojection error is always reported and the results are always
    written; there is no acceptance threshold.

    Raises:
        InsufficientDataError: Too few frames
        IntrinsicsWriteError, ExtrinsicsWriteError: A document could not be written
        DegenerateGeometryError: Numerically unusable geometry
    """
    solver = solver or StereoSolver()
    rectifier = rectifier or Rectifier()

    logger.info("Stereo calibrate...")
    solution = solver.solve(dataset, image_size)
    metadata = CalibrationMetadata.from_solution(store.paths.date_time, dataset.geometry, solution)
    intrinsics_path = store.write_intrinsics(metadata, solution)

    rectification = rectifier.rectify_solution(solution)
    extrinsics = rectification.extrinsics(solution)
    extrinsics_path = store.write_extrinsics(metadata, extrinsics)

    logger.info("Stereo-calibration completed.")
    return CalibrationResult(
        solution=solution,
        rectification=rectification,
        extrinsics=extrinsics,
        metadata=metadata,
        intrinsics_path=intrinsics_path,
        extrinsics_path=extrinsics_path,
    )


class CalibrationSession:
    """
    Interactive session: capture accepted pairs, calibrate, then preview.

    Args:
        geometry: Calibration board
        image_size: Frame size delivered by ``source`` (width, height)
        source: Blocking stereo frame source
        display: Operator display
        store: Destination of the calibration documents
        solver, rectifier, engine: Pipeline stages (defaults if None)
        guide_lines: Number of horizontal guide lines in the preview
        disparity_window: Window name for the disparity view
    """

    def __init__(
        self,
        geometry: PatternGeometry,
        image_size: tuple[int, int],
        source: FrameSource,
        display: Display,
        store: CalibrationStore,
        solver: StereoSolver | None = None,
        rectifier: Rectifier | None = None,
        engine: DisparityEngine | None = None,
        guide_lines: int = 24,
        disparity_window: str = "Disparity",
    ):
        self.geometry = geometry
        self.image_size = image_size
        self.source = source
        self.display = display
        self.store = store
        self.solver = solver or StereoSolver()
        self.rectifier = rectifier or Rectifier()
        self.engine = engine or DisparityEngine()
        self.guide_lines = guide_lines
        self.disparity_window = disparity_window
        self.accumulator = CorrespondenceAccumulator(geometry)

    @classmethod
    def from_config(
        cls, config: CalibrationConfig, source: FrameSource, display: Display, paths: OutputPaths
    ) -> "CalibrationSession":
        return cls(
            geometry=config.board,
            image_size=config.image_size,
            source=source,
            display=display,
            store=CalibrationStore(paths),
            solver=StereoSolver(
                min_frames=int(config.get("calibration.min_frames")),
                max_iterations=int(config.get("calibration.max_iterations")),
                epsilon=float(config.get("calibration.epsilon")),
            ),
            rectifier=Rectifier(alpha=float(config.get("rectification.alpha"))),
            engine=DisparityEngine(config.disparity_size),
            guide_lines=int(config.get("display.guide_lines")),
            disparity_window=str(config.get("display.disparity_window_name")),
        )

    def capture(self) -> CorrespondenceDataset:
        """
        Show live detections until ESC; any key press accepts the latest pair.

        ESC also accepts the pending pair before ending the phase.

        Returns:
            The frozen dataset
        """
        logger.info("Press any key to capture a frame, ESC to begin calibration.")
        while True:
            left, right = self.source.next_pair()
            detection = self.accumulator.sample(left, right)

            view = draw_detection(left, right, detection, self.geometry.pattern_size)
            draw_status(
                view,
                [
                    "Press any key to capture a frame, ESC to begin calibration",
                    f"# Image Sets = {self.accumulator.count()}",
                ],
            )
            self.display.show(view)

            key = self.display.wait_key(10)
            if key < 0:
                continue
            self.accumulator.commit()
            if key & 0xFF == ESC:
                break

        logger.info(f"Finished taking calibration images ({self.accumulator.count()} pairs).")
        return self.accumulator.freeze()

    def calibrate(self, dataset: CorrespondenceDataset) -> CalibrationResult:
        return solve_and_store(dataset, self.image_size, self.store, self.solver, self.rectifier)

    def preview_frame(self, result: CalibrationResult, left: np.ndarray, right: np.ndarray) -> DisparityMap:
        """Rectify one raw pair, show it with guide lines and show its disparity."""
        rect_left, rect_right = result.rectification.rectify_pair(left, right)
        view = compose_side_by_side(rect_left, rect_right)
        draw_epipolar_guides(view, self.guide_lines)
        draw_status(view, ["Press ESC to terminate"])
        self.display.show(view)

        disparity = self.engine.compute(rect_left, rect_right)
        self.display.show(disparity.color, self.disparity_window)
        return disparity

    def preview(self, result: CalibrationResult) -> None:
        """Live rectified preview with disparity until ESC."""
        while True:
            left, right = self.source.next_pair()
            self.preview_frame(result, left, right)
            if self.display.wait_key(5) & 0xFF == ESC:
                break

    def run(self) -> CalibrationResult:
        dataset = self.capture()
        result = self.calibrate(dataset)
        self.preview(result)
        return result


def save_preview(
    result: CalibrationResult,
    left: np.ndarray,
    right: np.ndarray,
    output_path: Path,
    engine: DisparityEngine | None = None,
) -> Path:
    """Save a rectification preview figure for one raw pair."""
    engine = engine or DisparityEngine()
    rect_left, rect_right = result.rectification.rectify_pair(left, right)
    disparity = engine.compute(rect_left, rect_right)
    plot_rectification_preview(
        rect_left,
        rect_right,
        roi_left=result.rectification.roi_left,
        roi_right=result.rectification.roi_right,
        disparity_color=disparity.color,
        output_path=output_path,
    )
    logger.info(f"Rectification preview saved to {output_path}")
    return output_path

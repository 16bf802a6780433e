"""
Command-line entry point.

Subcommands:
    live     capture from the stereo camera, calibrate, then preview disparity
    folders  calibrate from saved left/right image folders
    rectify  rectify image folders with saved calibration documents
"""

import argparse
import logging
import sys
from pathlib import Path

import cv2

from .accumulator import CorrespondenceAccumulator
from .camera import FolderFrameSource, StereoCamera
from .calibration import StereoSolver
from .data_structures import CalibrationConfig
from .errors import (
    DegenerateGeometryError,
    ExtrinsicsWriteError,
    FrameSourceError,
    InsufficientDataError,
    IntrinsicsWriteError,
)
from .io import CalibrationStore, OutputPaths, load_calibration
from .rectification import Rectifier, rectification_from_extrinsics
from .session import CalibrationSession, accumulate_from_source, save_preview, solve_and_store
from .visualization import OpenCVDisplay

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INTRINSICS_WRITE = 1
EXIT_EXTRINSICS_WRITE = 2
EXIT_INSUFFICIENT_DATA = 3
EXIT_DEGENERATE_GEOMETRY = 4
EXIT_FRAME_SOURCE = 5

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def load_config(path: str | None) -> CalibrationConfig:
    if path is None:
        return CalibrationConfig()
    return CalibrationConfig.from_yaml(Path(path))


def _output_paths(config: CalibrationConfig, args: argparse.Namespace) -> OutputPaths:
    root = Path(args.output) if args.output else config.output_root
    return OutputPaths.for_session(root, tag=str(config.get("output.tag")))


def run_live(config: CalibrationConfig, args: argparse.Namespace) -> None:
    """Interactive capture, solve and disparity preview."""
    paths = _output_paths(config, args)
    camera = StereoCamera(
        devices=list(config.get("camera.devices")),
        image_size=config.image_size,
        fps=float(config.get("camera.fps")),
        side_by_side=bool(config.get("camera.side_by_side")),
        swap=bool(config.get("camera.swap")),
        flip=bool(config.get("camera.flip")),
    )
    display = OpenCVDisplay(str(config.get("display.window_name")))
    try:
        with camera:
            display.add_slider("Exposure", config.get("controls.exposure"), 100, camera.set_exposure)
            display.add_slider("Gain", config.get("controls.gain"), 100, camera.set_gain)
            display.add_slider("LED", config.get("controls.led"), 100, camera.set_led)
            CalibrationSession.from_config(config, camera, display, paths).run()
    finally:
        display.close()


def run_folders(config: CalibrationConfig, args: argparse.Namespace) -> None:
    """Offline calibration from saved image pairs."""
    paths = _output_paths(config, args)
    source = FolderFrameSource(args.left, args.right)
    accumulator = CorrespondenceAccumulator(config.board)
    accumulate_from_source(accumulator, source, total=len(source), progress=not args.no_progress)

    if source.image_size != config.image_size:
        logger.info(f"Using image size {source.image_size} from the image folders")

    solver = StereoSolver(
        min_frames=int(config.get("calibration.min_frames")),
        max_iterations=int(config.get("calibration.max_iterations")),
        epsilon=float(config.get("calibration.epsilon")),
    )
    result = solve_and_store(
        accumulator.freeze(),
        source.image_size,
        CalibrationStore(paths),
        solver=solver,
        rectifier=Rectifier(alpha=float(config.get("rectification.alpha"))),
    )

    if args.preview:
        left = cv2.imread(str(source.left_images[0]), cv2.IMREAD_GRAYSCALE)
        right = cv2.imread(str(source.right_images[0]), cv2.IMREAD_GRAYSCALE)
        preview_path = paths.extrinsics.with_name(f"rectificationPreview-{paths.date_time}.png")
        save_preview(result, left, right, preview_path)


def run_rectify(config: CalibrationConfig, args: argparse.Namespace) -> None:
    """Write rectified copies of image folders using saved documents."""
    solution, extrinsics, _ = load_calibration(args.intrinsics, args.extrinsics)
    rectification = rectification_from_extrinsics(solution, extrinsics)

    source = FolderFrameSource(args.left, args.right)
    out_left = Path(args.out_left)
    out_right = Path(args.out_right)
    out_left.mkdir(parents=True, exist_ok=True)
    out_right.mkdir(parents=True, exist_ok=True)

    for (name_l, name_r), (left, right) in zip(source.names(), source):
        if (left.shape[1], left.shape[0]) != solution.image_size:
            raise FrameSourceError(f"Pair {name_l} has size {left.shape[1]}x{left.shape[0]}, "
                                   f"calibration expects {solution.image_size}")
        rect_left, rect_right = rectification.rectify_pair(left, right)
        cv2.imwrite(str(out_left / f"{name_l}_rect.png"), rect_left)
        cv2.imwrite(str(out_right / f"{name_r}_rect.png"), rect_right)

    logger.info(f"Saved {len(source)} rectified pairs to '{out_left}' and '{out_right}'.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(prog="duocalib", description="Duo stereo camera calibration")
    p.add_argument("--config", help="Path to YAML configuration (defaults built in)")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="command", required=True)

    live = sub.add_parser("live", help="Capture from the camera, calibrate and preview")
    live.add_argument("--output", help="Directory for calibration documents (overrides config)")

    folders = sub.add_parser("folders", help="Calibrate from saved image folders")
    folders.add_argument("--left", required=True, help="Folder of left images")
    folders.add_argument("--right", required=True, help="Folder of right images")
    folders.add_argument("--output", help="Directory for calibration documents (overrides config)")
    folders.add_argument("--preview", action="store_true", help="Save a rectification preview figure")
    folders.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    rectify = sub.add_parser("rectify", help="Rectify image folders with saved calibration")
    rectify.add_argument("--intrinsics", required=True, help="Intrinsics document")
    rectify.add_argument("--extrinsics", required=True, help="Extrinsics document")
    rectify.add_argument("--left", required=True, help="Folder of left images")
    rectify.add_argument("--right", required=True, help="Folder of right images")
    rectify.add_argument("--out-left", required=True, help="Output folder for rectified left")
    rectify.add_argument("--out-right", required=True, help="Output folder for rectified right")
    return p.parse_args(argv)


COMMANDS = {"live": run_live, "folders": run_folders, "rectify": run_rectify}


def main(argv: list[str] | None = None) -> int:
    """Main entry point; returns the process exit status."""
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT, stream=sys.stdout)

    try:
        COMMANDS[args.command](load_config(args.config), args)
    except InsufficientDataError as e:
        logger.error(str(e))
        return EXIT_INSUFFICIENT_DATA
    except IntrinsicsWriteError as e:
        logger.error(f"File <intrinsics>.yml could not be opened: {e}")
        return EXIT_INTRINSICS_WRITE
    except ExtrinsicsWriteError as e:
        logger.error(f"File <extrinsics>.yml could not be opened: {e}")
        return EXIT_EXTRINSICS_WRITE
    except DegenerateGeometryError as e:
        logger.error(f"Degenerate calibration geometry: {e}")
        return EXIT_DEGENERATE_GEOMETRY
    except FrameSourceError as e:
        logger.error(f"Frame source failure: {e}")
        return EXIT_FRAME_SOURCE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

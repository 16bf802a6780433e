"""
Visualization utilities for the calibration session.

OpenCV drawing for the live side-by-side display and a matplotlib figure for
saving a rectification preview to disk.
"""

from pathlib import Path

import cv2
import matplotlib.patches as patches
import matplotlib.pyplot as plt
import numpy as np

from .detection import StereoDetection

WHITE = (255, 255, 255)
GREEN = (0, 255, 0)


def _to_bgr(img: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR) if img.ndim == 2 else img.copy()


def compose_side_by_side(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """Place two images next to each other as one BGR canvas."""
    return np.hstack([_to_bgr(left), _to_bgr(right)])


def draw_detection(
    left: np.ndarray, right: np.ndarray, detection: StereoDetection, pattern_size: tuple[int, int]
) -> np.ndarray:
    """
    Draw chessboard corners on both images and compose them side by side.

    Partial detections are drawn too, flagged as not found.
    """
    left_view = _to_bgr(left)
    right_view = _to_bgr(right)
    if detection.left is not None:
        cv2.drawChessboardCorners(left_view, pattern_size, detection.left, detection.found_left)
    if detection.right is not None:
        cv2.drawChessboardCorners(right_view, pattern_size, detection.right, detection.found_right)
    return np.hstack([left_view, right_view])


def draw_status(display: np.ndarray, lines: list[str]) -> np.ndarray:
    """Write status lines in the top-left corner, 30 px apart."""
    for i, text in enumerate(lines):
        cv2.putText(display, text, (10, 30 * (i + 1)), cv2.FONT_HERSHEY_SIMPLEX, 0.75, WHITE)
    return display


def draw_epipolar_guides(display: np.ndarray, num_lines: int = 24) -> np.ndarray:
    """Draw evenly spaced horizontal lines to judge row alignment of a rectified pair."""
    rows, cols = display.shape[:2]
    step = rows // num_lines
    for i in range(1, num_lines):
        cv2.line(display, (0, i * step), (cols, i * step), GREEN)
    return display


def plot_rectification_preview(
    rect_left: np.ndarray,
    rect_right: np.ndarray,
    roi_left: tuple[int, int, int, int] | None = None,
    roi_right: tuple[int, int, int, int] | None = None,
    disparity_color: np.ndarray | None = None,
    n_guides: int = 10,
    output_path: Path | None = None,
    figsize: tuple[float, float] = (16, 7),
) -> plt.Figure:
    """
    Plot a rectified stereo pair with epipolar line guides.

    Args:
        rect_left, rect_right: Rectified images
        roi_left, roi_right: Valid ROI tuples (x, y, w, h)
        disparity_color: Optional false-color disparity shown as a third panel
        n_guides: Number of horizontal guide lines
        output_path: Path to save figure; the figure is closed after saving
        figsize: Figure size

    Returns:
        The matplotlib figure
    """
    panels = [("Rectified Left", rect_left), ("Rectified Right", rect_right)]
    if disparity_color is not None:
        panels.append(("Disparity", disparity_color))

    fig, axes = plt.subplots(1, len(panels), figsize=figsize)
    for ax, (title, img) in zip(axes, panels):
        if img.ndim == 2:
            ax.imshow(img, cmap="gray")
        else:
            ax.imshow(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        ax.set_title(title)
        ax.axis("off")

    h = rect_left.shape[0]
    for y in np.linspace(0, h - 1, num=max(2, n_guides), dtype=int):
        axes[0].axhline(y=y, color="lime", linewidth=0.5, alpha=0.5)
        axes[1].axhline(y=y, color="lime", linewidth=0.5, alpha=0.5)

    for ax, roi in ((axes[0], roi_left), (axes[1], roi_right)):
        if roi is not None and tuple(roi) != (0, 0, 0, 0):
            x, y, w_roi, h_roi = roi
            ax.add_patch(patches.Rectangle((x, y), w_roi, h_roi, linewidth=2, edgecolor="red", facecolor="none"))

    plt.tight_layout()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        plt.close(fig)
    return fig


class OpenCVDisplay:
    """
    HighGUI windows for the live session.

    Sliders created with ``add_slider`` forward their value to a callback
    (typically a camera control) and are never read back by the pipeline.
    """

    def __init__(self, window_name: str = "Duo Calibration"):
        self.window_name = window_name
        self._windows: set[str] = set()
        self._open(window_name)

    def _open(self, name: str) -> None:
        if name not in self._windows:
            cv2.namedWindow(name, cv2.WINDOW_NORMAL | cv2.WINDOW_GUI_NORMAL)
            self._windows.add(name)

    def add_slider(self, label: str, value: int, maximum: int, on_change) -> None:
        cv2.createTrackbar(label, self.window_name, int(value), int(maximum), on_change)
        on_change(int(value))

    def show(self, image: np.ndarray, window: str | None = None) -> None:
        name = window or self.window_name
        self._open(name)
        cv2.imshow(name, image)

    def wait_key(self, delay_ms: int) -> int:
        """Return the pressed key code, or -1 if none within ``delay_ms``."""
        return cv2.waitKey(delay_ms)

    def close(self) -> None:
        for name in self._windows:
            cv2.destroyWindow(name)
        self._windows.clear()

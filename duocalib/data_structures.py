"""
Data structures for duo stereo calibration.

Provides type-safe containers for the calibration target, the accumulated
correspondence dataset, solved camera models and session configuration.
"""

import copy
import os
import re
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Iterator

import numpy as np

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


class CameraIndex(IntEnum):
    """Enum for camera indices in stereo rig."""

    LEFT = 0
    RIGHT = 1


def _readonly(array: Any, dtype: type = np.float64) -> np.ndarray:
    """Return a private, non-writeable copy of ``array``."""
    out = np.array(array, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class PatternGeometry:
    """
    Immutable description of the chessboard calibration target.

    The object point template is built once at construction and shared by every
    accepted frame. Point ``(i, j)`` (row ``i``, column ``j``) sits at index
    ``i * cols + j`` and has coordinates ``(i * square_length, j * square_length, 0)``.

    Attributes:
        cols: Inner corners per row (OpenCV pattern width)
        rows: Inner corners per column (OpenCV pattern height)
        square_length: Physical edge length of one square (any unit, e.g. cm)
        object_points: Read-only (rows*cols, 3) float32 template
    """

    cols: int
    rows: int
    square_length: float
    object_points: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.cols < 2 or self.rows < 2:
            raise ValueError(f"Board needs at least 2x2 inner corners, got {self.cols}x{self.rows}")
        if self.square_length <= 0:
            raise ValueError(f"square_length must be positive, got {self.square_length}")

        ii, jj = np.meshgrid(np.arange(self.rows), np.arange(self.cols), indexing="ij")
        objp = np.zeros((self.rows * self.cols, 3), np.float32)
        objp[:, 0] = ii.ravel() * self.square_length
        objp[:, 1] = jj.ravel() * self.square_length
        objp.setflags(write=False)
        object.__setattr__(self, "object_points", objp)

    @property
    def corner_count(self) -> int:
        """Number of inner corners on the board."""
        return self.rows * self.cols

    @property
    def pattern_size(self) -> tuple[int, int]:
        """Pattern size in OpenCV order (width, height)."""
        return (self.cols, self.rows)


@dataclass(frozen=True)
class CorrespondenceFrame:
    """
    One accepted calibration sample.

    Attributes:
        object_points: Shared (N, 3) board template
        left: Left image corners (N, 1, 2) float32
        right: Right image corners (N, 1, 2) float32
    """

    object_points: np.ndarray
    left: np.ndarray
    right: np.ndarray

    def __post_init__(self) -> None:
        left = _readonly(np.asarray(self.left).reshape(-1, 1, 2), np.float32)
        right = _readonly(np.asarray(self.right).reshape(-1, 1, 2), np.float32)
        n_obj = len(self.object_points)
        if not (n_obj == len(left) == len(right)):
            raise ValueError(
                f"Correspondence lengths differ: object={n_obj} left={len(left)} right={len(right)}"
            )
        object.__setattr__(self, "left", left)
        object.__setattr__(self, "right", right)

    def __len__(self) -> int:
        return len(self.object_points)


class CorrespondenceDataset:
    """
    Append-only, ordered collection of CorrespondenceFrame.

    Frames are never reordered or removed. Once frozen (when the capture phase
    ends) no further frames can be added.
    """

    def __init__(self, geometry: PatternGeometry):
        self.geometry = geometry
        self._frames: list[CorrespondenceFrame] = []
        self._frozen = False

    def append(self, frame: CorrespondenceFrame) -> None:
        """
        Append a frame.

        Raises:
            RuntimeError: If the dataset is frozen
            ValueError: If the frame does not have one point per board corner
        """
        if self._frozen:
            raise RuntimeError("Dataset is frozen; capture phase has ended")
        if len(frame) != self.geometry.corner_count:
            raise ValueError(f"Frame has {len(frame)} points, board has {self.geometry.corner_count} corners")
        self._frames.append(frame)

    def freeze(self) -> "CorrespondenceDataset":
        self._frozen = True
        return self

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def frames(self) -> tuple[CorrespondenceFrame, ...]:
        return tuple(self._frames)

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[CorrespondenceFrame]:
        return iter(tuple(self._frames))

    def __getitem__(self, idx: int) -> CorrespondenceFrame:
        return self._frames[idx]

    def object_points(self) -> list[np.ndarray]:
        return [f.object_points for f in self._frames]

    def left_points(self) -> list[np.ndarray]:
        return [f.left for f in self._frames]

    def right_points(self) -> list[np.ndarray]:
        return [f.right for f in self._frames]


@dataclass(frozen=True)
class IntrinsicModel:
    """
    Solved intrinsics of a single camera.

    Attributes:
        camera_matrix: 3x3 camera matrix (focal lengths, principal point)
        dist_coeffs: Distortion coefficients (1xN, rational model gives N=8)
    """

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray

    def __post_init__(self) -> None:
        K = _readonly(self.camera_matrix)
        if K.shape != (3, 3):
            raise ValueError(f"camera_matrix must be 3x3, got {K.shape}")
        object.__setattr__(self, "camera_matrix", K)
        object.__setattr__(self, "dist_coeffs", _readonly(np.atleast_2d(self.dist_coeffs)))

    @property
    def fx(self) -> float:
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.camera_matrix[1, 1])

    @property
    def principal_point(self) -> tuple[float, float]:
        return float(self.camera_matrix[0, 2]), float(self.camera_matrix[1, 2])


@dataclass(frozen=True)
class StereoSolution:
    """
    Result of the stereo solve.

    Attributes:
        left: Left camera intrinsics
        right: Right camera intrinsics
        R: Rotation from left to right camera (3x3)
        T: Translation from left to right camera (3x1)
        E: Essential matrix (3x3)
        F: Fundamental matrix (3x3)
        rms: RMS reprojection error in pixels
        image_size: Image dimensions (width, height)
        num_frames: Number of frame pairs used
    """

    left: IntrinsicModel
    right: IntrinsicModel
    R: np.ndarray
    T: np.ndarray
    E: np.ndarray
    F: np.ndarray
    rms: float
    image_size: tuple[int, int]
    num_frames: int

    def __post_init__(self) -> None:
        for name in ("R", "T", "E", "F"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))

    @property
    def baseline(self) -> float:
        """Distance between camera centers, in board units."""
        return float(np.linalg.norm(self.T))

    def get_camera(self, idx: CameraIndex) -> IntrinsicModel:
        """Get camera by index."""
        return self.left if idx == CameraIndex.LEFT else self.right


@dataclass(frozen=True)
class ExtrinsicModel:
    """
    Inter-camera geometry together with the derived rectification transforms.

    Attributes:
        R, T, E, F: Raw stereo extrinsics from the solve
        R1, R2: Rectification rotations for left/right camera (3x3)
        P1, P2: Projection matrices in the rectified frame (3x4)
        Q: Disparity-to-depth mapping matrix (4x4)
    """

    R: np.ndarray
    T: np.ndarray
    E: np.ndarray
    F: np.ndarray
    R1: np.ndarray
    R2: np.ndarray
    P1: np.ndarray
    P2: np.ndarray
    Q: np.ndarray

    def __post_init__(self) -> None:
        for name in ("R", "T", "E", "F", "R1", "R2", "P1", "P2", "Q"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))


@dataclass(frozen=True)
class CalibrationMetadata:
    """Metadata block shared by the intrinsics and extrinsics documents."""

    date_time: str
    board_width: int
    board_height: int
    square_length: float
    image_width: int
    image_height: int
    num_image_pairs: int
    reprojection_error: float

    @classmethod
    def from_solution(cls, date_time: str, geometry: PatternGeometry, solution: StereoSolution) -> "CalibrationMetadata":
        return cls(
            date_time=date_time,
            board_width=geometry.cols,
            board_height=geometry.rows,
            square_length=float(geometry.square_length),
            image_width=int(solution.image_size[0]),
            image_height=int(solution.image_size[1]),
            num_image_pairs=int(solution.num_frames),
            reprojection_error=float(solution.rms),
        )

    def as_fields(self) -> dict[str, Any]:
        """Return the metadata in document key order."""
        return {
            "DateTime": self.date_time,
            "BoardWidth": self.board_width,
            "BoardHeight": self.board_height,
            "SquareLength": self.square_length,
            "ImageWidth": self.image_width,
            "ImageHeight": self.image_height,
            "NumImagePairs": self.num_image_pairs,
            "ReprojectionError": self.reprojection_error,
        }

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> "CalibrationMetadata":
        return cls(
            date_time=str(fields["DateTime"]),
            board_width=int(fields["BoardWidth"]),
            board_height=int(fields["BoardHeight"]),
            square_length=float(fields["SquareLength"]),
            image_width=int(fields["ImageWidth"]),
            image_height=int(fields["ImageHeight"]),
            num_image_pairs=int(fields["NumImagePairs"]),
            reprojection_error=float(fields["ReprojectionError"]),
        )


def expand_environment_variables(text: str) -> str:
    """Replace ``${NAME}`` references with environment values; unset names expand to ''."""
    return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), text)


DEFAULT_CONFIG: dict[str, Any] = {
    "board": {"width": 9, "height": 6, "square_length": 2.533},
    "camera": {
        "width": 640,
        "height": 480,
        "fps": 30,
        "devices": [0, 1],
        "side_by_side": False,
        "swap": False,
        "flip": False,
    },
    "controls": {"exposure": 70, "gain": 0, "led": 20},
    "calibration": {"min_frames": 10, "max_iterations": 30, "epsilon": 1.0e-6},
    "rectification": {"alpha": 0.0},
    "disparity": {"output_width": 320, "output_height": 240},
    "output": {"root": "${CALIBDUO_ROOT}", "directory": "cameraFiles", "tag": "VGA"},
    "display": {"window_name": "Duo Calibration", "disparity_window_name": "Disparity", "guide_lines": 24},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class CalibrationConfig:
    """
    Configuration container loaded from YAML.

    Wraps configuration dictionary with type hints for common access patterns.
    Values missing from the file fall back to ``DEFAULT_CONFIG``.
    """

    config: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG))

    @classmethod
    def from_yaml(cls, path: Path | str) -> "CalibrationConfig":
        """Load configuration from YAML file."""
        import yaml

        with Path(path).open() as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")
        return cls(config=_deep_merge(DEFAULT_CONFIG, loaded))

    def get(self, key: str, default: Any = None) -> Any:
        """Get nested config value using dot notation (e.g., 'board.width')."""
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default
        return value

    @property
    def board(self) -> PatternGeometry:
        """Calibration target described by the ``board`` section."""
        return PatternGeometry(
            cols=int(self.get("board.width")),
            rows=int(self.get("board.height")),
            square_length=float(self.get("board.square_length")),
        )

    @property
    def image_size(self) -> tuple[int, int]:
        """Capture resolution (width, height)."""
        return int(self.get("camera.width")), int(self.get("camera.height"))

    @property
    def disparity_size(self) -> tuple[int, int]:
        """Working resolution of the disparity engine (width, height)."""
        return int(self.get("disparity.output_width")), int(self.get("disparity.output_height"))

    @property
    def output_root(self) -> Path:
        """Directory receiving calibration documents, with environment references expanded."""
        root = expand_environment_variables(str(self.get("output.root", "")))
        return Path(root) / str(self.get("output.directory", ""))

"""
I/O utilities for saving and loading calibration documents.

Each calibration run writes two human-readable YAML documents, one with the
intrinsics and one with the extrinsics/rectification, sharing a metadata block.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .data_structures import (
    CalibrationMetadata,
    ExtrinsicModel,
    IntrinsicModel,
    StereoSolution,
)
from .errors import ExtrinsicsWriteError, IntrinsicsWriteError, PersistenceError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"
INTRINSIC_MATRICES = ("M1", "D1", "M2", "D2")
EXTRINSIC_MATRICES = ("R", "T", "R1", "R2", "P1", "P2", "Q", "E", "F")


def _to_yaml_value(value: Any) -> Any:
    """Matrices become nested lists, numpy scalars their Python equivalent."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def write_document(path: Path | str, fields: dict[str, Any]) -> Path:
    """
    Serialize named scalar/matrix fields to a YAML document.

    Matrices are written as nested lists of float64; key order is preserved.

    Args:
        path: Output file, parent directories are created
        fields: Ordered mapping of document keys to values

    Returns:
        The written path

    Raises:
        PersistenceError: If the file cannot be created or written
    """
    path = Path(path)
    logger.info(f"Writing {path}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            document = {k: _to_yaml_value(v) for k, v in fields.items()}
            yaml.safe_dump(document, f, default_flow_style=None, sort_keys=False)
    except OSError as e:
        raise PersistenceError(f"File {path} could not be opened: {e}") from e
    return path


def read_document(path: Path | str) -> dict[str, Any]:
    """
    Read a document written by ``write_document``.

    List values come back as float64 arrays; scalars keep their YAML type.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Calibration file not found: {path}")

    with path.open() as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Calibration document is not a mapping: {path}")
    return {k: np.array(v, dtype=np.float64) if isinstance(v, list) else v for k, v in data.items()}


def intrinsics_fields(metadata: CalibrationMetadata, solution: StereoSolution) -> dict[str, Any]:
    fields = metadata.as_fields()
    fields.update(
        {
            "M1": solution.left.camera_matrix,
            "D1": solution.left.dist_coeffs,
            "M2": solution.right.camera_matrix,
            "D2": solution.right.dist_coeffs,
        }
    )
    return fields


def extrinsics_fields(metadata: CalibrationMetadata, extrinsics: ExtrinsicModel) -> dict[str, Any]:
    fields = metadata.as_fields()
    fields.update({name: getattr(extrinsics, name) for name in EXTRINSIC_MATRICES})
    return fields


@dataclass(frozen=True)
class OutputPaths:
    """
    Destination of the two documents of one calibration session.

    Attributes:
        date_time: Session timestamp embedded in the file names
        intrinsics: Intrinsics document path
        extrinsics: Extrinsics document path
    """

    date_time: str
    intrinsics: Path
    extrinsics: Path

    @classmethod
    def for_session(cls, root: Path | str, tag: str = "VGA", started: datetime | None = None) -> "OutputPaths":
        """Derive per-run file names from the output root and the session start time."""
        stamp = (started or datetime.now()).strftime(TIMESTAMP_FORMAT)
        root = Path(root)
        return cls(
            date_time=stamp,
            intrinsics=root / f"intrinsicsDuo{tag}-{stamp}.yml",
            extrinsics=root / f"extrinsicsDuo{tag}-{stamp}.yml",
        )


class CalibrationStore:
    """Writes the intrinsics and extrinsics documents of one session."""

    def __init__(self, paths: OutputPaths):
        self.paths = paths

    def write_intrinsics(self, metadata: CalibrationMetadata, solution: StereoSolution) -> Path:
        """
        Raises:
            IntrinsicsWriteError: If the intrinsics document cannot be written
        """
        try:
            return write_document(self.paths.intrinsics, intrinsics_fields(metadata, solution))
        except PersistenceError as e:
            raise IntrinsicsWriteError(str(e)) from e

    def write_extrinsics(self, metadata: CalibrationMetadata, extrinsics: ExtrinsicModel) -> Path:
        """
        Raises:
            ExtrinsicsWriteError: If the extrinsics document cannot be written
        """
        try:
            return write_document(self.paths.extrinsics, extrinsics_fields(metadata, extrinsics))
        except PersistenceError as e:
            raise ExtrinsicsWriteError(str(e)) from e


def load_calibration(
    intrinsics_path: Path | str, extrinsics_path: Path | str
) -> tuple[StereoSolution, ExtrinsicModel, CalibrationMetadata]:
    """
    Load a saved document pair.

    Args:
        intrinsics_path: Path to an intrinsics document
        extrinsics_path: Path to the matching extrinsics document

    Returns:
        Tuple of (solution, extrinsics, metadata)

    Raises:
        KeyError: If a required key is missing
    """
    intr = read_document(intrinsics_path)
    extr = read_document(extrinsics_path)

    metadata = CalibrationMetadata.from_fields(intr)
    extr_metadata = CalibrationMetadata.from_fields(extr)
    if extr_metadata.date_time != metadata.date_time:
        logger.warning(
            f"Intrinsics ({metadata.date_time}) and extrinsics ({extr_metadata.date_time}) come from different runs"
        )

    solution = StereoSolution(
        left=IntrinsicModel(intr["M1"], intr["D1"]),
        right=IntrinsicModel(intr["M2"], intr["D2"]),
        R=extr["R"],
        T=extr["T"],
        E=extr["E"],
        F=extr["F"],
        rms=metadata.reprojection_error,
        image_size=(metadata.image_width, metadata.image_height),
        num_frames=metadata.num_image_pairs,
    )
    extrinsics = ExtrinsicModel(**{name: extr[name] for name in EXTRINSIC_MATRICES})

    logger.info(f"Calibration loaded from {intrinsics_path} and {extrinsics_path}")
    return solution, extrinsics, metadata

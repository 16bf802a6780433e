"""
Stereo calibration and rectified disparity preview for dual-camera rigs.

This package provides modular tools for:
- Stereo chessboard detection and frame accumulation
- Stereo calibration and rectification
- SGBM disparity for the live preview
- Calibration document persistence
"""

from .accumulator import CorrespondenceAccumulator
from .calibration import StereoSolver
from .data_structures import (
    CalibrationConfig,
    CalibrationMetadata,
    CameraIndex,
    CorrespondenceDataset,
    CorrespondenceFrame,
    ExtrinsicModel,
    IntrinsicModel,
    PatternGeometry,
    StereoSolution,
)
from .detection import CorrespondenceExtractor, StereoDetection
from .disparity import DisparityEngine, DisparityMap
from .errors import (
    CalibrationError,
    DegenerateGeometryError,
    ExtrinsicsWriteError,
    FrameSourceError,
    InsufficientDataError,
    IntrinsicsWriteError,
    PersistenceError,
)
from .io import CalibrationStore, OutputPaths, load_calibration, read_document, write_document
from .rectification import Rectification, Rectifier, RemapTable, rectification_from_extrinsics

__all__ = [
    # Data structures
    "CalibrationConfig",
    "CalibrationMetadata",
    "CameraIndex",
    "CorrespondenceDataset",
    "CorrespondenceFrame",
    "ExtrinsicModel",
    "IntrinsicModel",
    "PatternGeometry",
    "StereoSolution",
    # Pipeline
    "CorrespondenceExtractor",
    "StereoDetection",
    "CorrespondenceAccumulator",
    "StereoSolver",
    "Rectifier",
    "Rectification",
    "RemapTable",
    "rectification_from_extrinsics",
    "DisparityEngine",
    "DisparityMap",
    # I/O
    "CalibrationStore",
    "OutputPaths",
    "load_calibration",
    "read_document",
    "write_document",
    # Errors
    "CalibrationError",
    "DegenerateGeometryError",
    "ExtrinsicsWriteError",
    "FrameSourceError",
    "InsufficientDataError",
    "IntrinsicsWriteError",
    "PersistenceError",
]

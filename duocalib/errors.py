"""
Exception types raised by the calibration pipeline.

Detection misses are not errors and never appear here; they are reported as an
incomplete detection by the extractor.
"""


class CalibrationError(Exception):
    """Base class for all fatal calibration session errors."""


class InsufficientDataError(CalibrationError, ValueError):
    """Too few accepted frame pairs to run the stereo solve."""

    def __init__(self, count: int, required: int):
        super().__init__(f"Too few frames, unable to continue with calibration ({count} < {required})")
        self.count = count
        self.required = required


class PersistenceError(CalibrationError, OSError):
    """A calibration document could not be opened or written."""


class IntrinsicsWriteError(PersistenceError):
    """The intrinsics document could not be written."""


class ExtrinsicsWriteError(PersistenceError):
    """The extrinsics document could not be written."""


class DegenerateGeometryError(CalibrationError, ArithmeticError):
    """Solve or rectification input/output is numerically unusable."""


class FrameSourceError(CalibrationError, RuntimeError):
    """The frame source failed or ran out of frames."""

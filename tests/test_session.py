"""
Tests for the capture/solve/preview session with scripted input.
"""

from datetime import datetime

import numpy as np
import pytest

from conftest import blank_image, synthetic_dataset
from duocalib.accumulator import CorrespondenceAccumulator
from duocalib.data_structures import CorrespondenceDataset
from duocalib.errors import FrameSourceError, InsufficientDataError
from duocalib.io import CalibrationStore, OutputPaths, read_document
from duocalib.rectification import Rectifier
from duocalib.session import ESC, CalibrationResult, CalibrationSession, accumulate_from_source, solve_and_store


class ScriptedSource:
    """Returns the same pair forever, counting calls."""

    def __init__(self, left, right):
        self.pair = (left, right)
        self.calls = 0

    def next_pair(self):
        self.calls += 1
        return self.pair


class ListSource:
    """Finite source; raises once the list is consumed."""

    def __init__(self, pairs):
        self.pairs = list(pairs)

    def next_pair(self):
        if not self.pairs:
            raise FrameSourceError("No more image pairs")
        return self.pairs.pop(0)


class ScriptedDisplay:
    """Records shown images and replays a fixed sequence of key codes."""

    def __init__(self, keys):
        self.keys = list(keys)
        self.shown = []

    def show(self, image, window=None):
        self.shown.append((window, image))

    def wait_key(self, delay_ms):
        return self.keys.pop(0) if self.keys else ESC


@pytest.fixture
def store(tmp_path):
    return CalibrationStore(OutputPaths.for_session(tmp_path, started=datetime(2026, 10, 19, 8, 0, 0)))


def _session(geometry, source, display, store):
    return CalibrationSession(geometry, (640, 480), source, display, store)


def test_capture_commits_on_keys(geometry, board_pair, store):
    """Every key press accepts a pair, ESC accepts one more and ends capture."""
    display = ScriptedDisplay([-1, ord(" "), ord("c"), ESC])
    session = _session(geometry, ScriptedSource(*board_pair), display, store)

    dataset = session.capture()
    assert dataset.is_frozen
    assert len(dataset) == 3
    assert len(display.shown) == 4
    assert display.shown[0][1].shape == (480, 1280, 3)


def test_capture_without_board(geometry, store):
    """Key presses without a complete detection add nothing."""
    display = ScriptedDisplay([ord(" "), ord(" "), ESC])
    session = _session(geometry, ScriptedSource(blank_image(), blank_image()), display, store)
    assert len(session.capture()) == 0


def test_capture_propagates_source_failure(geometry, store):
    """A failing frame source ends the session with its error."""
    session = _session(geometry, ListSource([]), ScriptedDisplay([]), store)
    with pytest.raises(FrameSourceError):
        session.capture()


def test_accumulate_from_finite_source(geometry, board_pair):
    """Offline accumulation commits each complete pair and skips the rest."""
    acc = CorrespondenceAccumulator(geometry)
    pairs = [board_pair, (blank_image(), blank_image()), board_pair]
    examined = accumulate_from_source(acc, ListSource(pairs), progress=False)
    assert examined == 3
    assert acc.count() == 2


def test_solve_and_store_writes_documents(geometry, store):
    """A successful solve writes both documents with shared metadata."""
    dataset = synthetic_dataset(geometry).freeze()
    result = solve_and_store(dataset, (640, 480), store)

    assert isinstance(result, CalibrationResult)
    assert result.intrinsics_path.is_file()
    assert result.extrinsics_path.is_file()
    intr = read_document(result.intrinsics_path)
    extr = read_document(result.extrinsics_path)
    assert intr["DateTime"] == extr["DateTime"] == "2026-10-19-08-00-00"
    assert intr["ReprojectionError"] == pytest.approx(result.solution.rms)
    assert result.metadata.num_image_pairs == len(dataset)


def test_solve_and_store_insufficient(geometry, store):
    """No documents are written when the solve cannot start."""
    dataset = CorrespondenceDataset(geometry)
    with pytest.raises(InsufficientDataError):
        solve_and_store(dataset.freeze(), (640, 480), store)
    assert not store.paths.intrinsics.exists()
    assert not store.paths.extrinsics.exists()


def test_preview_frame(geometry, store, synthetic_solution):
    """The preview shows the rectified pair and the disparity view."""
    rectification = Rectifier().rectify_solution(synthetic_solution)
    result = CalibrationResult(
        solution=synthetic_solution,
        rectification=rectification,
        extrinsics=rectification.extrinsics(synthetic_solution),
        metadata=None,
        intrinsics_path=store.paths.intrinsics,
        extrinsics_path=store.paths.extrinsics,
    )
    rng = np.random.default_rng(0)
    image = rng.integers(0, 256, (480, 640), dtype=np.uint8)
    display = ScriptedDisplay([ESC])
    session = _session(geometry, ScriptedSource(image, image), display, store)

    session.preview(result)
    windows = [w for w, _ in display.shown]
    assert windows == [None, "Disparity"]
    assert display.shown[1][1].shape == (240, 320, 3)

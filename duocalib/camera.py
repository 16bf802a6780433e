"""
Frame sources delivering synchronized grayscale stereo pairs.

``StereoCamera`` owns its capture devices and a background grab thread that
posts the newest pair into a single-slot mailbox; the pipeline thread blocks
on ``next_pair``. ``FolderFrameSource`` replays saved image pairs.
"""

import logging
import threading
from pathlib import Path
from typing import Protocol

import cv2
import numpy as np

from .errors import FrameSourceError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.bmp", "*.tif", "*.tiff")

StereoPair = tuple[np.ndarray, np.ndarray]


class FrameSource(Protocol):
    """Anything that hands out stereo pairs one at a time."""

    def next_pair(self) -> StereoPair: ...


class FrameMailbox:
    """
    Single-slot handoff between a producer callback and one consumer.

    A newer pair overwrites an unread one; ``take`` blocks until a pair
    posted after the previous ``take`` is available.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pair: StereoPair | None = None
        self._ready = False
        self._closed = False

    def post(self, left: np.ndarray, right: np.ndarray) -> None:
        with self._cond:
            self._pair = (left, right)
            self._ready = True
            self._cond.notify()

    def close(self) -> None:
        """Wake any waiting consumer; subsequent takes fail."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def take(self, timeout: float | None = None) -> StereoPair:
        """
        Wait for the next pair.

        Raises:
            FrameSourceError: If the mailbox is closed or the timeout expires
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._ready or self._closed, timeout=timeout):
                raise FrameSourceError(f"No frame received within {timeout} s")
            if self._closed and not self._ready:
                raise FrameSourceError("Frame source closed")
            self._ready = False
            return self._pair


class StereoCamera:
    """
    Owned stereo capture handle.

    Supports two separate devices or one device delivering side-by-side frames.
    Frames are converted to grayscale, optionally swapped between sides and
    flipped in both axes, then posted to the mailbox from a grab thread.
    """

    def __init__(
        self,
        devices: list[int | str],
        image_size: tuple[int, int],
        fps: float = 30.0,
        side_by_side: bool = False,
        swap: bool = False,
        flip: bool = False,
        timeout: float | None = 5.0,
    ):
        expected = 1 if side_by_side else 2
        if len(devices) != expected:
            raise ValueError(f"Expected {expected} device(s), got {len(devices)}")
        self.devices = list(devices)
        self.image_size = (int(image_size[0]), int(image_size[1]))
        self.fps = fps
        self.side_by_side = side_by_side
        self.swap = swap
        self.flip = flip
        self.timeout = timeout

        self._captures: list[cv2.VideoCapture] = []
        self._mailbox = FrameMailbox()
        self._running = threading.Event()
        self._thread: threading.Thread | None = None
        self.error: FrameSourceError | None = None

    # ----- lifecycle -----

    def open(self) -> "StereoCamera":
        """
        Open devices, configure resolution and start grabbing.

        Raises:
            FrameSourceError: If a device cannot be opened
        """
        if self._thread is not None:
            self.close()

        width, height = self.image_size
        if self.side_by_side:
            width *= 2
        for dev in self.devices:
            cap = cv2.VideoCapture(dev)
            if not cap.isOpened():
                self._release()
                raise FrameSourceError(f"Could not open camera {dev}")
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
            self._captures.append(cap)
            logger.info(f"Opened camera {dev} ({cap.get(cv2.CAP_PROP_BACKEND)} backend)")

        self._mailbox = FrameMailbox()
        self.error = None
        self._running.set()
        self._thread = threading.Thread(target=self._grab_loop, name="stereo-grab", daemon=True)
        self._thread.start()
        return self

    def close(self) -> None:
        """Stop capture and release the devices."""
        self._running.clear()
        self._mailbox.close()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self._release()

    def _release(self) -> None:
        for cap in self._captures:
            cap.release()
        self._captures = []

    def __enter__(self) -> "StereoCamera":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # ----- controls -----

    def set_exposure(self, value: float) -> None:
        for cap in self._captures:
            cap.set(cv2.CAP_PROP_EXPOSURE, value)

    def set_gain(self, value: float) -> None:
        for cap in self._captures:
            cap.set(cv2.CAP_PROP_GAIN, value)

    def set_led(self, value: float) -> None:
        # No standard VideoCapture property drives an illuminator; backlight is the closest.
        for cap in self._captures:
            if not cap.set(cv2.CAP_PROP_BACKLIGHT, value):
                logger.debug(f"Camera backend ignored LED level {value}")

    # ----- frames -----

    def _read(self) -> StereoPair:
        frames = []
        for cap in self._captures:
            ok, frame = cap.read()
            if not ok or frame is None:
                raise FrameSourceError("Camera read failed")
            frames.append(frame)

        if self.side_by_side:
            half = frames[0].shape[1] // 2
            frames = [frames[0][:, :half], frames[0][:, half:]]

        left, right = (to_gray(f, self.image_size) for f in frames)
        if self.flip:
            left, right = cv2.flip(left, -1), cv2.flip(right, -1)
        if self.swap:
            left, right = right, left
        return left, right

    def _grab_loop(self) -> None:
        while self._running.is_set():
            try:
                left, right = self._read()
            except FrameSourceError as e:
                self.error = e
                logger.error(str(e))
                self._mailbox.close()
                return
            self._mailbox.post(left, right)

    def next_pair(self, timeout: float | None = None) -> StereoPair:
        """
        Block until a new pair has been grabbed.

        Args:
            timeout: Seconds to wait, defaults to the camera's ``timeout``

        Raises:
            FrameSourceError: On hardware failure, timeout or after close
        """
        if self._thread is None:
            raise FrameSourceError("Camera is not open")
        try:
            return self._mailbox.take(self.timeout if timeout is None else timeout)
        except FrameSourceError:
            if self.error is not None:
                raise self.error from None
            raise


def to_gray(image: np.ndarray, size: tuple[int, int] | None = None) -> np.ndarray:
    """Convert to 8-bit grayscale and resize to ``size`` (width, height) if needed."""
    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
    if size is not None and (gray.shape[1], gray.shape[0]) != tuple(size):
        gray = cv2.resize(gray, tuple(size))
    return gray


def list_images(folder: Path | str) -> list[Path]:
    """List all image files in a folder, sorted by name."""
    folder_path = Path(folder)
    files = []
    for e in IMAGE_EXTENSIONS:
        files.extend(folder_path.glob(e))
    return sorted(files)


class FolderFrameSource:
    """
    Replays stereo pairs from a left and a right image folder.

    Pairs are matched by sorted position. Images are converted to grayscale
    and must all share the size of the first left image.
    """

    def __init__(self, left_dir: Path | str, right_dir: Path | str):
        self.left_images = list_images(left_dir)
        self.right_images = list_images(right_dir)
        if not self.left_images or not self.right_images:
            raise FrameSourceError(f"No images found in {left_dir} or {right_dir}")
        if len(self.left_images) != len(self.right_images):
            logger.warning(
                f"Left ({len(self.left_images)}) and right ({len(self.right_images)}) counts differ. "
                "Proceeding by index."
            )
        self._index = 0
        self.image_size: tuple[int, int] | None = None

    def __len__(self) -> int:
        return min(len(self.left_images), len(self.right_images))

    def next_pair(self) -> StereoPair:
        """
        Raises:
            FrameSourceError: When all pairs have been consumed or a file is unreadable
        """
        if self._index >= len(self):
            raise FrameSourceError("No more image pairs")

        l_path = self.left_images[self._index]
        r_path = self.right_images[self._index]
        self._index += 1

        left = cv2.imread(str(l_path), cv2.IMREAD_GRAYSCALE)
        right = cv2.imread(str(r_path), cv2.IMREAD_GRAYSCALE)
        if left is None or right is None:
            raise FrameSourceError(f"Failed to read pair {l_path.name} / {r_path.name}")

        if self.image_size is None:
            self.image_size = (left.shape[1], left.shape[0])
        if (left.shape[1], left.shape[0]) != self.image_size or left.shape != right.shape:
            raise FrameSourceError(f"Pair {l_path.name} / {r_path.name} does not match size {self.image_size}")
        return left, right

    def __iter__(self):
        while self._index < len(self):
            yield self.next_pair()

    def names(self) -> list[tuple[str, str]]:
        return [(l.stem, r.stem) for l, r in zip(self.left_images, self.right_images)]

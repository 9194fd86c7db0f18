"""
Synchronized frame capture from several local cameras.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from .errors import CameraError

logger = logging.getLogger(__name__)


class CameraRig:
    """
    A fixed set of cameras captured together.

    Frames are taken in two phases: every camera is told to grab before any
    frame is retrieved, which keeps the time skew between views small.
    Calls block until every camera has delivered; there is no timeout.
    """

    def __init__(self, camera_indexes: Sequence[int], fps: Optional[float] = None,
                 capture_factory: Callable = cv2.VideoCapture):
        """
        Open all cameras.

        Args:
            camera_indexes: Device index of each camera, in rig order
            fps: Requested frame rate (optional)
            capture_factory: Builds a capture object from a device index

        Raises:
            CameraError: If a camera can't be opened
        """
        self.camera_indexes = list(camera_indexes)
        self.cameras = []

        for index in self.camera_indexes:
            cap = capture_factory(index)
            if not cap.isOpened():
                cap.release()
                self.release()
                raise CameraError(f"Couldn't open camera at index {index}")
            if fps is not None:
                cap.set(cv2.CAP_PROP_FPS, fps)
            self.cameras.append(cap)
            logger.info("Opened camera at index %d", index)

    def __len__(self) -> int:
        return len(self.cameras)

    def __enter__(self) -> 'CameraRig':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def grab_all(self):
        for index, cap in zip(self.camera_indexes, self.cameras):
            if not cap.grab():
                raise CameraError(f"Camera {index} failed to grab a frame")

    def retrieve_all(self) -> List[np.ndarray]:
        frames = []
        for index, cap in zip(self.camera_indexes, self.cameras):
            ok, frame = cap.retrieve()
            if not ok or frame is None:
                raise CameraError(f"Camera {index} failed to retrieve a frame")
            frames.append(frame)
        return frames

    def capture(self) -> List[np.ndarray]:
        """One frame per camera, all from (approximately) the same instant."""
        self.grab_all()
        return self.retrieve_all()

    def release(self):
        for cap in self.cameras:
            cap.release()
        self.cameras = []


class FrameRateMeter:
    """Counts frames and reports the rate once per measurement window."""

    def __init__(self, window: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.clock = clock
        self.frame_count = 0
        self.begin_time = clock()
        self.last_rate: Optional[float] = None

    def tick(self) -> Optional[float]:
        """
        Count one frame.

        Returns:
            Frames per second when a window has just elapsed, else None
        """
        self.frame_count += 1
        now = self.clock()
        elapsed = now - self.begin_time

        if elapsed < self.window:
            return None

        self.last_rate = self.frame_count / elapsed
        self.frame_count = 0
        self.begin_time = now
        return self.last_rate


def is_lit(frame: np.ndarray, threshold: int = 85, fraction: float = 0.3) -> bool:
    """
    True when the display's white flash fills the camera view.

    Thresholds the blue channel, which stays dark while the display shows
    its red idle image.

    Args:
        frame: BGR (or single-channel) camera frame
        threshold: Binary threshold applied to the blue channel
        fraction: Share of pixels that must be above the threshold
    """
    blue = frame[:, :, 0] if frame.ndim == 3 else frame
    _, binary = cv2.threshold(np.ascontiguousarray(blue), threshold, 255, cv2.THRESH_BINARY)
    return cv2.countNonZero(binary) > binary.size * fraction

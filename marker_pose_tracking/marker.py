"""
Reference geometry of the chessboard marker.
"""

from dataclasses import dataclass
from typing import Sequence, Type

import numpy as np

from .config import BoardConfig
from .errors import TrackingError


@dataclass(frozen=True)
class MarkerPointSet:
    """
    Inner chessboard corners in the marker's initial (world) position.

    Points are in row-major grid order, x fastest: index ``z * width + x`` is
    the corner at ``(x * square_size, 0, z * square_size)``. This is the same
    order ``cv2.findChessboardCorners`` reports corners in, so index i always
    refers to the same physical corner.
    """
    points: np.ndarray  # (N, 3)
    width: int
    height: int
    square_size: float

    @classmethod
    def from_board(cls, board: BoardConfig) -> 'MarkerPointSet':
        return cls(
            points=grid_points(board.width, board.height, board.square_size),
            width=board.width,
            height=board.height,
            square_size=board.square_size,
        )

    def __len__(self) -> int:
        return len(self.points)

    @property
    def centroid(self) -> np.ndarray:
        return centroid(self.points)


def grid_points(width: int, height: int, square_size: float) -> np.ndarray:
    """Corners of a width x height grid lying on the y = 0 plane."""
    xs, zs = np.meshgrid(np.arange(width), np.arange(height))
    points = np.zeros((width * height, 3), dtype=np.float64)
    points[:, 0] = xs.ravel() * square_size
    points[:, 2] = zs.ravel() * square_size
    return points


def centroid(points: np.ndarray) -> np.ndarray:
    return np.asarray(points, dtype=np.float64).reshape(-1, 3).mean(axis=0)


def as_image_points(points) -> np.ndarray:
    """Coerce 2-D points (including OpenCV's (N, 1, 2) layout) to an (N, 2) float64 array."""
    return np.asarray(points, dtype=np.float64).reshape(-1, 2)


def check_cardinality(correspondences: Sequence, expected: int,
                      error_cls: Type[TrackingError]):
    """
    Reject per-camera correspondences that don't all have `expected` points.

    Args:
        correspondences: One point sequence per camera
        expected: Number of marker points
        error_cls: Exception type raised on mismatch
    """
    lengths = [len(as_image_points(c)) for c in correspondences]
    for cam_idx, n in enumerate(lengths):
        if n != expected:
            raise error_cls(
                f"Camera {cam_idx} has {n} correspondences, expected {expected} "
                f"(counts: {lengths})")

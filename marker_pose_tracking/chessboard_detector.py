"""
Chessboard corner detection for marker tracking.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .config import BoardConfig

FIND_FLAGS = (cv2.CALIB_CB_ADAPTIVE_THRESH
              | cv2.CALIB_CB_NORMALIZE_IMAGE
              | cv2.CALIB_CB_FAST_CHECK)


@dataclass
class DetectionResult:
    """Result of chessboard detection on an image."""
    success: bool
    corners: Optional[np.ndarray] = None  # (N, 2), row-major grid order

    @property
    def num_corners(self) -> int:
        return 0 if self.corners is None else len(self.corners)


class ChessboardDetector:
    """
    Finds the inner corners of the marker chessboard.

    Either every corner of the grid is found, in row-major order, or the
    detection fails. Partial boards are never reported.
    """

    def __init__(self, board: BoardConfig, refine_corners: bool = False):
        """
        Initialize the detector.

        Args:
            board: Chessboard geometry (inner corner grid)
            refine_corners: Refine corners to sub-pixel accuracy
        """
        self.pattern_size = board.size
        self.num_corners = board.num_corners
        self.refine_corners = refine_corners

    def detect(self, image: np.ndarray) -> DetectionResult:
        """
        Detect the chessboard in an image.

        Args:
            image: Input image (BGR or grayscale)

        Returns:
            DetectionResult
        """
        if image is None:
            return DetectionResult(success=False)

        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image

        found, corners = cv2.findChessboardCorners(gray, self.pattern_size, flags=FIND_FLAGS)

        if not found or corners is None or len(corners) != self.num_corners:
            return DetectionResult(success=False)

        if self.refine_corners:
            corners = cv2.cornerSubPix(
                gray, corners,
                winSize=(5, 5),
                zeroZone=(-1, -1),
                criteria=(cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)
            )

        return DetectionResult(success=True, corners=corners.reshape(-1, 2).astype(np.float64))

    def find_all(self, images: Sequence[np.ndarray]) -> Optional[List[np.ndarray]]:
        """Corners for every image, or None as soon as one image has no board."""
        corners = []
        for image in images:
            result = self.detect(image)
            if not result.success:
                return None
            corners.append(result.corners)
        return corners

    def draw(self, image: np.ndarray, result: DetectionResult) -> np.ndarray:
        """Copy of the image with the detected corners drawn on it."""
        vis_image = image.copy() if len(image.shape) == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if result.corners is not None:
            cv2.drawChessboardCorners(
                vis_image, self.pattern_size,
                result.corners.reshape(-1, 1, 2).astype(np.float32),
                result.success
            )
        return vis_image

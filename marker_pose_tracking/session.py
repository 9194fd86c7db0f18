"""
Tracking session: drives the pipeline from extrinsic bootstrap to per-frame
pose estimation.

    IDLE -> INSPECTING -> BOOTSTRAPPING -> TRACKING -> TERMINATED

Bootstrap failures terminate the session. Frames where the marker isn't seen
by every camera, or whose geometry is degenerate, are skipped and the last
published pose stays in effect.
"""

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .alignment import RigidTransform, align
from .capture import FrameRateMeter
from .chessboard_detector import ChessboardDetector
from .config import SessionConfig
from .errors import (
    AlignmentError, CalibrationError, CameraError, ConfigError, GeometryError, TrackingError
)
from .extrinsics import BootstrapResult, bootstrap
from .marker import MarkerPointSet, check_cardinality
from .sinks import PoseSink
from .triangulation import reprojection_errors, triangulate
from .utils import CameraIntrinsics, load_intrinsics

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = 'idle'
    INSPECTING = 'inspecting'
    BOOTSTRAPPING = 'bootstrapping'
    TRACKING = 'tracking'
    TERMINATED = 'terminated'


@dataclass
class FrameResult:
    """Outcome of one tracking iteration."""
    tracked: bool
    transform: Optional[RigidTransform] = None
    points: Optional[np.ndarray] = None
    reprojection_error: Optional[float] = None  # mean over cameras and corners, pixels
    reason: str = ''


class TrackingSession:
    """
    One tracking run over a static camera rig.

    The camera source must provide grab_all() and retrieve_all(); see
    capture.CameraRig.
    """

    def __init__(self, config: SessionConfig, camera_source,
                 detector: Optional[ChessboardDetector] = None,
                 sink: Optional[PoseSink] = None,
                 intrinsics: Optional[Sequence[CameraIntrinsics]] = None):
        """
        Args:
            config: Session configuration
            camera_source: Synchronized multi-camera frame source
            detector: Correspondence finder (defaults to a chessboard detector for config.board)
            sink: Receives camera poses and marker poses
            intrinsics: Per-camera intrinsics; loaded from config on bootstrap when omitted
        """
        self.config = config
        self.camera_source = camera_source
        self.detector = detector or ChessboardDetector(
            config.board, refine_corners=config.tracking.refine_corners)
        self.sink = sink or PoseSink()
        self.intrinsics: Optional[List[CameraIntrinsics]] = \
            list(intrinsics) if intrinsics is not None else None

        self.marker = MarkerPointSet.from_board(config.board)
        self.calibration: Optional[BootstrapResult] = None
        self.last_pose: Optional[RigidTransform] = None
        self.frames_tracked = 0
        self.frames_skipped = 0
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    def _require(self, *states: SessionState):
        if self._state not in states:
            raise TrackingError(
                f"Operation not allowed in state {self._state.value}, "
                f"expected one of {[s.value for s in states]}")

    def capture_frames(self) -> List[np.ndarray]:
        """Grab on every camera first, then retrieve every frame."""
        self.camera_source.grab_all()
        return self.camera_source.retrieve_all()

    def begin_inspection(self):
        """Enter manual framing; no computation happens until bootstrap()."""
        self._require(SessionState.IDLE)
        self._state = SessionState.INSPECTING

    def load_intrinsics(self) -> List[CameraIntrinsics]:
        if self.intrinsics is None:
            self.intrinsics = [load_intrinsics(cam.calibration_file)
                               for cam in self.config.cameras]
        if len(self.intrinsics) != len(self.config.cameras):
            raise ConfigError(
                f"Got intrinsics for {len(self.intrinsics)} cameras, "
                f"configured {len(self.config.cameras)}")
        return self.intrinsics

    def bootstrap(self) -> BootstrapResult:
        """
        Calibrate the rig from one synchronized frame set.

        Raises:
            ConfigError: If intrinsics can't be loaded
            CalibrationError: If the marker isn't found or PnP fails
            CameraError: If the rig fails to deliver frames
        """
        self._require(SessionState.IDLE, SessionState.INSPECTING)
        self._state = SessionState.BOOTSTRAPPING

        try:
            intrinsics = self.load_intrinsics()

            frames = self.capture_frames()
            correspondences = self.detector.find_all(frames)
            if correspondences is None:
                raise CalibrationError("Chessboard corners were not found in every camera")

            self.calibration = bootstrap(
                self.marker, correspondences, intrinsics,
                max_reprojection_error=self.config.tracking.max_reprojection_error)

            names = self.config.camera_names
            self.sink.on_bootstrap(
                dict(zip(names, self.calibration.camera_poses())),
                dict(zip(names, intrinsics)))
        except (ConfigError, CalibrationError, CameraError) as e:
            logger.error("Bootstrap failed: %s", e)
            self._state = SessionState.TERMINATED
            raise
        except Exception:
            logger.exception("Bootstrap failed")
            self._state = SessionState.TERMINATED
            raise

        self._state = SessionState.TRACKING
        return self.calibration

    def process(self, correspondences: Optional[Sequence[np.ndarray]]) -> FrameResult:
        """
        Estimate the marker pose from one set of per-camera correspondences.

        Args:
            correspondences: Per-camera corners, or None if some camera missed the marker

        Returns:
            FrameResult; skipped frames leave last_pose unchanged
        """
        self._require(SessionState.TRACKING)

        if correspondences is None:
            return self._skip("marker not found in every camera")

        try:
            check_cardinality(correspondences, len(self.marker), GeometryError)
            points = triangulate(
                self.calibration.projection_matrices, correspondences,
                expected_count=len(self.marker),
                rank_tolerance=self.config.tracking.rank_tolerance)
            transform = align(self.marker.points, points)
        except (GeometryError, AlignmentError) as e:
            logger.warning("Skipping frame: %s", e)
            return self._skip(str(e))

        error = float(np.mean(reprojection_errors(
            self.calibration.projection_matrices, correspondences, points)))
        logger.debug("Frame tracked: offset=%s, reprojection error=%.3fpx",
                     np.round(transform.offset, 3).tolist(), error)

        self.last_pose = transform
        self.frames_tracked += 1
        self.sink.on_pose(transform, points)
        return FrameResult(tracked=True, transform=transform, points=points,
                           reprojection_error=error)

    def _skip(self, reason: str) -> FrameResult:
        self.frames_skipped += 1
        logger.debug("Frame skipped: %s", reason)
        return FrameResult(tracked=False, transform=self.last_pose, reason=reason)

    def step(self) -> FrameResult:
        """Capture one frame set and track the marker in it."""
        self._require(SessionState.TRACKING)
        frames = self.capture_frames()
        return self.process(self.detector.find_all(frames))

    def run(self, stop_event, max_frames: Optional[int] = None):
        """
        Track until stop_event.is_set() (checked once per iteration).

        Args:
            stop_event: threading.Event or anything with is_set()
            max_frames: Stop after this many iterations (optional)
        """
        self._require(SessionState.TRACKING)
        meter = FrameRateMeter()
        iterations = 0

        try:
            while not stop_event.is_set():
                if max_frames is not None and iterations >= max_frames:
                    break
                self.step()
                iterations += 1

                rate = meter.tick()
                if rate is not None:
                    logger.debug("Tracking at %.1f fps (%d tracked, %d skipped)",
                                 rate, self.frames_tracked, self.frames_skipped)
        finally:
            self.stop()

    def stop(self):
        if self._state is not SessionState.TERMINATED:
            logger.info("Session terminated: %d frames tracked, %d skipped",
                        self.frames_tracked, self.frames_skipped)
        self._state = SessionState.TERMINATED

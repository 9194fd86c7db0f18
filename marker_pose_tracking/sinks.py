"""
Pose sinks: consumers of the bootstrap camera poses and the live marker pose.
"""

import logging
from typing import Dict, List, Sequence

import numpy as np

from .alignment import RigidTransform
from .utils import CameraIntrinsics, save_poses_yaml

logger = logging.getLogger(__name__)


class PoseSink:
    """Receives tracking output. Subclasses override what they need."""

    def on_bootstrap(self, camera_poses: Dict[str, np.ndarray],
                     intrinsics: Dict[str, CameraIntrinsics]):
        """Called once with each camera's 4x4 camera->world pose and intrinsics."""

    def on_pose(self, transform: RigidTransform, points: np.ndarray):
        """Called for every tracked frame with the marker pose and the reconstructed cloud."""

    def close(self):
        pass


class LoggingPoseSink(PoseSink):

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def on_bootstrap(self, camera_poses, intrinsics):
        for name, T in camera_poses.items():
            t = T[:3, 3]
            logger.log(self.level, "Camera %s at (%.3f, %.3f, %.3f)", name, t[0], t[1], t[2])

    def on_pose(self, transform, points):
        t = transform.translation
        r = transform.euler_degrees()
        logger.log(self.level,
                   "Marker at (%.3f, %.3f, %.3f), rotation xyz=(%.1f, %.1f, %.1f) deg",
                   t[0], t[1], t[2], r[0], r[1], r[2])


class YamlPoseRecorder(PoseSink):
    """Collects camera poses and the marker trajectory, writes them to YAML on close()."""

    def __init__(self, output_path: str, reference_frame: str = "marker_initial"):
        self.output_path = output_path
        self.reference_frame = reference_frame
        self.camera_poses: Dict[str, np.ndarray] = {}
        self.trajectory: List[np.ndarray] = []

    def on_bootstrap(self, camera_poses, intrinsics):
        self.camera_poses = dict(camera_poses)

    def on_pose(self, transform, points):
        self.trajectory.append(transform.matrix())

    def close(self):
        save_poses_yaml(self.camera_poses, self.trajectory,
                        self.output_path, self.reference_frame)


class CompositePoseSink(PoseSink):
    """Forwards every event to several sinks in order."""

    def __init__(self, sinks: Sequence[PoseSink]):
        self.sinks = list(sinks)

    def on_bootstrap(self, camera_poses, intrinsics):
        for sink in self.sinks:
            sink.on_bootstrap(camera_poses, intrinsics)

    def on_pose(self, transform, points):
        for sink in self.sinks:
            sink.on_pose(transform, points)

    def close(self):
        for sink in self.sinks:
            sink.close()

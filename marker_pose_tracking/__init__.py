# marker_pose_tracking package
"""
Real-time pose tracking of a planar chessboard marker seen by a static rig
of two or more calibrated cameras.

The rig is located once against the marker's initial position (extrinsic
bootstrap); afterwards every synchronized frame set is triangulated and the
reference marker is rigidly aligned to the reconstructed corners.
"""

from .alignment import RigidTransform, align
from .config import SessionConfig, load_session_config
from .errors import (
    AlignmentError, CalibrationError, CameraError, ConfigError, GeometryError, TrackingError
)
from .extrinsics import BootstrapResult, CameraExtrinsics, bootstrap
from .marker import MarkerPointSet
from .session import SessionState, TrackingSession
from .triangulation import triangulate
from .utils import CameraIntrinsics, load_intrinsics

__all__ = [
    'AlignmentError',
    'BootstrapResult',
    'CalibrationError',
    'CameraError',
    'CameraExtrinsics',
    'CameraIntrinsics',
    'ConfigError',
    'GeometryError',
    'MarkerPointSet',
    'RigidTransform',
    'SessionConfig',
    'SessionState',
    'TrackingError',
    'TrackingSession',
    'align',
    'bootstrap',
    'load_intrinsics',
    'load_session_config',
    'triangulate',
]

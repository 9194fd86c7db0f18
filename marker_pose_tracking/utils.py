"""
Utility functions for marker pose tracking: intrinsics loading, rigid
transform helpers and pose file I/O.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np
import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraIntrinsics:
    """Fixed intrinsic calibration of one camera."""
    camera_matrix: np.ndarray                  # 3x3
    dist_coeffs: Optional[np.ndarray] = None   # Loaded if present, not used for tracking
    source: str = ''

    @property
    def focal_length(self) -> Tuple[float, float]:
        return float(self.camera_matrix[0, 0]), float(self.camera_matrix[1, 1])

    @property
    def principal_point(self) -> Tuple[float, float]:
        return float(self.camera_matrix[0, 2]), float(self.camera_matrix[1, 2])


def _matrix_from_yaml_node(node: Any) -> np.ndarray:
    # {rows, cols, data} as written by OpenCV, or a plain nested list
    if isinstance(node, dict):
        data = np.asarray(node['data'], dtype=np.float64)
        if 'rows' in node and 'cols' in node:
            return data.reshape(int(node['rows']), int(node['cols']))
        return data
    return np.asarray(node, dtype=np.float64)


def _read_opencv_storage(intrinsics_path: str) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    try:
        fs = cv2.FileStorage(intrinsics_path, cv2.FILE_STORAGE_READ)
    except cv2.error as e:
        raise ConfigError(f"Couldn't parse {intrinsics_path}: {e}") from e

    try:
        if not fs.isOpened():
            raise ConfigError(f"Couldn't open {intrinsics_path}")

        camera_node = fs.getNode('cameraMatrix')
        camera_matrix = None if camera_node.empty() else camera_node.mat()

        dist_node = fs.getNode('distCoeffs')
        dist_coeffs = None if dist_node.empty() else dist_node.mat()
    finally:
        fs.release()

    return camera_matrix, dist_coeffs


def _read_plain_yaml(intrinsics_path: str) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    try:
        with open(intrinsics_path, 'r') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Couldn't read {intrinsics_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{intrinsics_path} does not contain a YAML mapping")

    # Native key first, then the ROS camera_info layout
    camera_node = data.get('cameraMatrix', data.get('camera_matrix'))
    dist_node = data.get('distCoeffs', data.get('distortion_coefficients'))

    try:
        camera_matrix = None if camera_node is None else _matrix_from_yaml_node(camera_node)
        dist_coeffs = None if dist_node is None else _matrix_from_yaml_node(dist_node)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Malformed matrix in {intrinsics_path}: {e}") from e

    return camera_matrix, dist_coeffs


def load_intrinsics(intrinsics_path: str) -> CameraIntrinsics:
    """
    Load a camera's intrinsic matrix from a calibration file.

    Supports OpenCV FileStorage documents (``%YAML:1.0`` / XML, as written by
    OpenCV calibration tools) and plain YAML, both with the matrix stored under
    ``cameraMatrix``. The ROS ``camera_matrix: {data: [...]}`` layout is also
    accepted.

    Args:
        intrinsics_path: Path of the calibration file

    Returns:
        CameraIntrinsics

    Raises:
        ConfigError: If the file is missing, unreadable, or lacks a valid 3x3 matrix
    """
    if not os.path.isfile(intrinsics_path):
        raise ConfigError(f"Couldn't open {intrinsics_path}: file not found")

    try:
        with open(intrinsics_path, 'r') as f:
            header = f.readline().strip()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Couldn't read {intrinsics_path}: {e}") from e

    if header.startswith('%YAML') or header.startswith('<?xml'):
        camera_matrix, dist_coeffs = _read_opencv_storage(intrinsics_path)
    else:
        camera_matrix, dist_coeffs = _read_plain_yaml(intrinsics_path)

    if camera_matrix is None:
        raise ConfigError(f"{intrinsics_path} has no cameraMatrix field")

    camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
    if camera_matrix.size == 9:
        camera_matrix = camera_matrix.reshape(3, 3)
    if camera_matrix.shape != (3, 3):
        raise ConfigError(
            f"cameraMatrix in {intrinsics_path} must be 3x3, got shape {camera_matrix.shape}")

    if not np.all(np.isfinite(camera_matrix)):
        raise ConfigError(f"cameraMatrix in {intrinsics_path} has non-finite entries")

    if camera_matrix[0, 0] <= 0 or camera_matrix[1, 1] <= 0:
        raise ConfigError(
            f"cameraMatrix in {intrinsics_path} has non-positive focal lengths "
            f"({camera_matrix[0, 0]}, {camera_matrix[1, 1]})")

    if dist_coeffs is not None:
        dist_coeffs = np.asarray(dist_coeffs, dtype=np.float64).flatten()

    logger.debug("Loaded intrinsics from %s: fx=%.2f fy=%.2f",
                 intrinsics_path, camera_matrix[0, 0], camera_matrix[1, 1])

    return CameraIntrinsics(camera_matrix=camera_matrix, dist_coeffs=dist_coeffs,
                            source=intrinsics_path)


def quaternion_from_matrix(R: np.ndarray) -> np.ndarray:
    """
    Convert a 3x3 rotation matrix to quaternion [x, y, z, w].

    Args:
        R: 3x3 rotation matrix

    Returns:
        Quaternion as [x, y, z, w]
    """
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    return np.array([x, y, z, w])


def matrix_from_quaternion(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [x, y, z, w] to a 3x3 rotation matrix."""
    x, y, z, w = q

    n = np.sqrt(x*x + y*y + z*z + w*w)
    x, y, z, w = x/n, y/n, z/n, w/n

    return np.array([
        [1 - 2*y*y - 2*z*z, 2*x*y - 2*z*w, 2*x*z + 2*y*w],
        [2*x*y + 2*z*w, 1 - 2*x*x - 2*z*z, 2*y*z - 2*x*w],
        [2*x*z - 2*y*w, 2*y*z + 2*x*w, 1 - 2*x*x - 2*y*y]
    ])


def transform_to_matrix(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """
    Create a 4x4 homogeneous transform from a 3x3 rotation and a translation.

    Args:
        rotation: 3x3 rotation matrix
        translation: [x, y, z] translation

    Returns:
        4x4 homogeneous transformation matrix
    """
    T = np.eye(4)
    T[:3, :3] = rotation
    T[:3, 3] = np.asarray(translation, dtype=np.float64).flatten()
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 rigid transformation matrix.

    Args:
        T: 4x4 homogeneous transformation matrix

    Returns:
        Inverted 4x4 transformation matrix
    """
    R = T[:3, :3]
    t = T[:3, 3]

    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ t

    return T_inv


def is_proper_rotation(R: np.ndarray, atol: float = 1e-6) -> bool:
    """True if R is orthonormal with determinant +1."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    return (np.allclose(R @ R.T, np.eye(3), atol=atol)
            and abs(np.linalg.det(R) - 1.0) < atol)


def save_poses_yaml(camera_poses: Dict[str, np.ndarray], trajectory: list,
                    output_path: str, reference_frame: str = "marker_initial"):
    """
    Save camera poses and a tracked marker trajectory to YAML.

    Args:
        camera_poses: Dict mapping camera_name -> 4x4 camera->world transform
        trajectory: List of 4x4 marker pose matrices (world frame)
        output_path: Path to save the YAML file
        reference_frame: Name of the world frame
    """
    def _pose_entry(T: np.ndarray) -> list:
        t = T[:3, 3]
        q = quaternion_from_matrix(T[:3, :3])
        return [round(float(v), 6) for v in (*t, *q)]

    document = {
        'reference_frame': reference_frame,
        'format': '[x, y, z, qx, qy, qz, qw]',
        'cameras': {name: _pose_entry(T) for name, T in camera_poses.items()},
        'trajectory': [_pose_entry(T) for T in trajectory],
    }

    with open(output_path, 'w') as f:
        yaml.safe_dump(document, f, default_flow_style=None, sort_keys=False)

    logger.info("Saved %d camera poses and %d marker poses to %s",
                len(camera_poses), len(trajectory), output_path)


def load_poses_yaml(filepath: str) -> Tuple[Dict[str, np.ndarray], list]:
    """Load camera poses and trajectory written by save_poses_yaml as 4x4 matrices."""
    try:
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Couldn't read {filepath}: {e}") from e

    def _to_matrix(value) -> np.ndarray:
        if len(value) != 7:
            raise ConfigError(f"Invalid pose entry in {filepath}: {value}")
        return transform_to_matrix(matrix_from_quaternion(np.array(value[3:])),
                                   np.array(value[:3]))

    cameras = {name: _to_matrix(v) for name, v in (data.get('cameras') or {}).items()}
    trajectory = [_to_matrix(v) for v in (data.get('trajectory') or [])]
    return cameras, trajectory

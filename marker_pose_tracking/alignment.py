"""
Rigid alignment of the reference marker onto a reconstructed point cloud.

Solves the absolute orientation problem with the SVD of the cross-covariance
matrix, with a mandatory reflection correction so the result is always a
proper rotation.
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation

from .errors import AlignmentError
from .marker import centroid
from .utils import is_proper_rotation, quaternion_from_matrix, transform_to_matrix

logger = logging.getLogger(__name__)

MIN_ALIGNMENT_POINTS = 3


def _check_spread(points: np.ndarray, centered: np.ndarray, name: str, tolerance: float):
    """Reject clouds whose spread is negligible next to their magnitude."""
    scale = max(1.0, float(np.abs(points).max()))
    s = np.linalg.svd(centered, compute_uv=False)

    if s[0] <= tolerance * scale * np.sqrt(len(points)):
        raise AlignmentError(f"Degenerate {name} cloud: points are coincident")
    if s[1] <= tolerance * s[0]:
        raise AlignmentError(f"Degenerate {name} cloud: points are collinear")


@dataclass(frozen=True)
class RigidTransform:
    """
    Live marker pose.

    ``rotation`` maps the centered reference marker onto the centered live
    cloud. ``translation`` is the live cloud's centroid in world coordinates,
    so ``rotation @ (p - reference_centroid) + translation`` maps a reference
    point p to its current position.
    """
    rotation: np.ndarray            # 3x3, det = +1
    translation: np.ndarray         # (3,)
    reference_centroid: np.ndarray  # (3,)

    @property
    def offset(self) -> np.ndarray:
        """Displacement of the marker's centroid from its reference position."""
        return self.translation - self.reference_centroid

    def matrix(self) -> np.ndarray:
        """4x4 pose of the marker's centered frame in the world."""
        return transform_to_matrix(self.rotation, self.translation)

    def quaternion(self) -> np.ndarray:
        """Rotation as [x, y, z, w]."""
        return quaternion_from_matrix(self.rotation)

    def euler_degrees(self, seq: str = 'xyz') -> np.ndarray:
        return Rotation.from_matrix(self.rotation).as_euler(seq, degrees=True)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Move reference-frame points to their current world positions."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return (points - self.reference_centroid) @ self.rotation.T + self.translation


def align(reference: np.ndarray, current: np.ndarray,
          degeneracy_tolerance: float = 1e-9) -> RigidTransform:
    """
    Fit the rotation and translation taking the reference marker to the live cloud.

    Args:
        reference: (N, 3) reference marker points
        current: (N, 3) reconstructed points, index-aligned with reference
        degeneracy_tolerance: Relative singular value threshold below which the
            covariance is treated as rank-deficient

    Returns:
        RigidTransform with a proper rotation

    Raises:
        AlignmentError: On mismatched, too few, coincident or collinear points
    """
    reference = np.asarray(reference, dtype=np.float64).reshape(-1, 3)
    current = np.asarray(current, dtype=np.float64).reshape(-1, 3)

    if len(reference) != len(current):
        raise AlignmentError(
            f"Point count mismatch: {len(reference)} reference vs {len(current)} current")

    if len(reference) < MIN_ALIGNMENT_POINTS:
        raise AlignmentError(
            f"Alignment needs at least {MIN_ALIGNMENT_POINTS} points, got {len(reference)}")

    if not (np.all(np.isfinite(reference)) and np.all(np.isfinite(current))):
        raise AlignmentError("Alignment input contains non-finite points")

    reference_centroid = centroid(reference)
    current_centroid = centroid(current)

    reference_centered = reference - reference_centroid
    current_centered = current - current_centroid

    _check_spread(reference, reference_centered, 'reference', degeneracy_tolerance)
    _check_spread(current, current_centered, 'current', degeneracy_tolerance)

    # H = sum of ref_i * cur_i^T
    covariance = reference_centered.T @ current_centered

    u, s, vt = np.linalg.svd(covariance)

    if s[1] <= degeneracy_tolerance * s[0]:
        raise AlignmentError(
            f"Degenerate covariance (singular values {s.tolist()}): "
            f"points are coincident or collinear")

    rotation = vt.T @ u.T

    if np.linalg.det(rotation) < 0:
        # Flip the axis of least variance instead of returning a reflection
        vt[2, :] *= -1
        rotation = vt.T @ u.T

    if not is_proper_rotation(rotation):
        raise AlignmentError(f"Fitted rotation is not proper (det={np.linalg.det(rotation):.6f})")

    return RigidTransform(rotation=rotation, translation=current_centroid,
                          reference_centroid=reference_centroid)

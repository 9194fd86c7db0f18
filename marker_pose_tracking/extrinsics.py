"""
Extrinsic bootstrap for a static multi-camera rig.

Locates every camera relative to the world frame defined by the marker's
initial position, using one synchronized observation of the marker per camera.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

import cv2
import numpy as np

from .errors import CalibrationError
from .marker import MarkerPointSet, as_image_points, check_cardinality
from .utils import CameraIntrinsics, invert_transform, is_proper_rotation, transform_to_matrix

logger = logging.getLogger(__name__)

MIN_PNP_POINTS = 4


@dataclass(frozen=True)
class CameraExtrinsics:
    """World -> camera pose of one camera: X_cam = rotation @ X_world + translation."""
    rotation: np.ndarray     # 3x3
    translation: np.ndarray  # (3,)
    reprojection_error: float = 0.0  # RMS, pixels

    def world_to_camera(self) -> np.ndarray:
        return transform_to_matrix(self.rotation, self.translation)

    def camera_to_world(self) -> np.ndarray:
        """4x4 pose of the camera in the world frame."""
        return invert_transform(self.world_to_camera())

    @property
    def position(self) -> np.ndarray:
        """Camera center in world coordinates."""
        return -self.rotation.T @ self.translation

    def projection_matrix(self, intrinsics: CameraIntrinsics) -> np.ndarray:
        return intrinsics.camera_matrix @ self.world_to_camera()[:3, :]


@dataclass(frozen=True)
class BootstrapResult:
    """Per-camera extrinsics and projection matrices, in camera order."""
    extrinsics: List[CameraExtrinsics]
    projection_matrices: List[np.ndarray]

    def __iter__(self) -> Iterator:
        return iter((self.extrinsics, self.projection_matrices))

    def camera_poses(self) -> List[np.ndarray]:
        return [ext.camera_to_world() for ext in self.extrinsics]


def _is_collinear(points: np.ndarray, tol: float = 1e-9) -> bool:
    centered = points - points.mean(axis=0)
    s = np.linalg.svd(centered, compute_uv=False)
    return s[0] <= tol or s[1] <= tol * s[0]


def solve_camera_pose(reference: np.ndarray, image_points: np.ndarray,
                      intrinsics: CameraIntrinsics,
                      max_reprojection_error: Optional[float] = None) -> CameraExtrinsics:
    """
    Estimate one camera's world -> camera pose from the marker's reference points.

    Uses iterative PnP (Levenberg-Marquardt minimisation of the reprojection
    error). Lens distortion is not modelled.

    Args:
        reference: (N, 3) marker points in world coordinates
        image_points: (N, 2) observed pixel positions, index-aligned with reference
        intrinsics: Camera intrinsics
        max_reprojection_error: Reject solutions with a larger RMS error (pixels)

    Returns:
        CameraExtrinsics

    Raises:
        CalibrationError: On too few or mismatched points, or an invalid solution
    """
    reference = np.asarray(reference, dtype=np.float64).reshape(-1, 3)
    image_points = as_image_points(image_points)

    if len(image_points) < MIN_PNP_POINTS:
        raise CalibrationError(
            f"PnP needs at least {MIN_PNP_POINTS} correspondences, got {len(image_points)}")

    if len(image_points) != len(reference):
        raise CalibrationError(
            f"Got {len(image_points)} correspondences for {len(reference)} reference points")

    if _is_collinear(reference):
        raise CalibrationError("Reference points are collinear, camera pose is undetermined")

    try:
        success, rvec, tvec = cv2.solvePnP(
            np.ascontiguousarray(reference), np.ascontiguousarray(image_points),
            intrinsics.camera_matrix, None,
            flags=cv2.SOLVEPNP_ITERATIVE
        )
    except cv2.error as e:
        raise CalibrationError(f"PnP solver failed: {e}") from e

    if not success or rvec is None or tvec is None:
        raise CalibrationError("Couldn't calibrate camera: PnP did not converge")

    if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
        raise CalibrationError("Couldn't calibrate camera: PnP returned non-finite pose")

    R, _ = cv2.Rodrigues(rvec)
    t = tvec.flatten()

    if not is_proper_rotation(R):
        raise CalibrationError("Couldn't calibrate camera: PnP rotation is not proper")

    depths = (reference @ R.T + t)[:, 2]
    if np.any(depths <= 0):
        raise CalibrationError(
            f"Couldn't calibrate camera: {int(np.sum(depths <= 0))} marker points "
            f"lie behind the camera")

    projected, _ = cv2.projectPoints(reference, rvec, tvec, intrinsics.camera_matrix, None)
    residuals = projected.reshape(-1, 2) - image_points
    rms = float(np.sqrt(np.mean(np.sum(residuals ** 2, axis=1))))

    if max_reprojection_error is not None and rms > max_reprojection_error:
        raise CalibrationError(
            f"Reprojection error {rms:.3f}px exceeds limit {max_reprojection_error:.3f}px")

    return CameraExtrinsics(rotation=R, translation=t, reprojection_error=rms)


def bootstrap(reference: MarkerPointSet,
              correspondences: Sequence[np.ndarray],
              intrinsics: Sequence[CameraIntrinsics],
              max_reprojection_error: Optional[float] = None) -> BootstrapResult:
    """
    Compute every camera's extrinsics and projection matrix.

    Each camera is solved independently against the marker's reference grid.

    Args:
        reference: Marker reference geometry (defines the world frame)
        correspondences: Per-camera (N, 2) marker observations
        intrinsics: Per-camera intrinsics, same order as correspondences
        max_reprojection_error: Optional per-camera RMS limit in pixels

    Returns:
        BootstrapResult with extrinsics and projection matrices per camera

    Raises:
        CalibrationError: If any camera can't be calibrated
    """
    if len(correspondences) != len(intrinsics):
        raise CalibrationError(
            f"Got correspondences for {len(correspondences)} cameras but "
            f"intrinsics for {len(intrinsics)}")

    if len(reference) < MIN_PNP_POINTS:
        raise CalibrationError(
            f"PnP needs at least {MIN_PNP_POINTS} correspondences, "
            f"marker only has {len(reference)}")

    check_cardinality(correspondences, len(reference), CalibrationError)

    extrinsics = []
    projection_matrices = []

    for cam_idx, (points, intr) in enumerate(zip(correspondences, intrinsics)):
        try:
            ext = solve_camera_pose(reference.points, points, intr, max_reprojection_error)
        except CalibrationError as e:
            raise CalibrationError(f"Camera {cam_idx}: {e}") from e

        extrinsics.append(ext)
        projection_matrices.append(ext.projection_matrix(intr))

        position = ext.position
        logger.info("Camera %d calibrated: position=(%.3f, %.3f, %.3f), "
                    "reprojection error=%.4fpx",
                    cam_idx, position[0], position[1], position[2], ext.reprojection_error)

    return BootstrapResult(extrinsics=extrinsics, projection_matrices=projection_matrices)

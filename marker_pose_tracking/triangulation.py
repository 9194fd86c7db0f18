"""
Multi-view triangulation of the marker's corners.

Linear (DLT) triangulation: every view contributes two rows to a homogeneous
4-column system per point, solved by SVD. Works for any number of views >= 2.
"""

from typing import Optional, Sequence

import numpy as np

from .errors import GeometryError
from .marker import as_image_points, check_cardinality


def _check_projections(projection_matrices: Sequence[np.ndarray]) -> np.ndarray:
    if len(projection_matrices) < 2:
        raise GeometryError(
            f"Triangulation needs at least 2 projection matrices, got {len(projection_matrices)}")

    Ps = []
    for cam_idx, P in enumerate(projection_matrices):
        P = np.asarray(P, dtype=np.float64)
        if P.shape != (3, 4):
            raise GeometryError(f"Projection matrix {cam_idx} should be 3x4, got {P.shape}")
        Ps.append(P)
    return np.stack(Ps)


def triangulate(projection_matrices: Sequence[np.ndarray],
                correspondences: Sequence[np.ndarray],
                expected_count: Optional[int] = None,
                rank_tolerance: float = 1e-9) -> np.ndarray:
    """
    Reconstruct 3-D points from their projections in two or more cameras.

    Args:
        projection_matrices: Per-camera 3x4 projection matrices
        correspondences: Per-camera (N, 2) pixel coordinates, index-aligned
        expected_count: Required number of points per camera (marker size)
        rank_tolerance: Relative singular value threshold for rank deficiency

    Returns:
        (N, 3) world points, same order as the correspondences

    Raises:
        GeometryError: On bad input or a degenerate point system
    """
    Ps = _check_projections(projection_matrices)

    if len(correspondences) != len(Ps):
        raise GeometryError(
            f"Got {len(correspondences)} correspondence arrays for {len(Ps)} cameras")

    reference_count = expected_count
    if reference_count is None:
        reference_count = len(as_image_points(correspondences[0]))
    check_cardinality(correspondences, reference_count, GeometryError)

    uv = np.stack([as_image_points(c) for c in correspondences], axis=1)  # (N, V, 2)
    if not np.all(np.isfinite(uv)):
        raise GeometryError("Correspondences contain non-finite coordinates")

    # Rows u * P[2] - P[0] and v * P[2] - P[1] for every point and view
    rows_u = uv[:, :, 0, None] * Ps[None, :, 2, :] - Ps[None, :, 0, :]
    rows_v = uv[:, :, 1, None] * Ps[None, :, 2, :] - Ps[None, :, 1, :]
    A = np.concatenate([rows_u, rows_v], axis=1)  # (N, 2V, 4)

    norms = np.linalg.norm(A, axis=2, keepdims=True)
    if np.any(norms == 0):
        raise GeometryError("Degenerate projection equation (zero row)")
    A = A / norms

    _, s, Vt = np.linalg.svd(A)
    X = Vt[:, -1, :]  # (N, 4)

    # Rank < 3 means the point is not pinned down (coincident rays)
    deficient = s[:, 2] <= rank_tolerance * s[:, 0]
    if np.any(deficient):
        idx = np.flatnonzero(deficient)
        raise GeometryError(f"Rank-deficient triangulation for points {idx.tolist()}")

    w = X[:, 3]
    at_infinity = np.abs(w) <= rank_tolerance * np.linalg.norm(X, axis=1)
    if np.any(at_infinity):
        idx = np.flatnonzero(at_infinity)
        raise GeometryError(f"Rays are parallel for points {idx.tolist()}")

    return X[:, :3] / w[:, None]


def project_points(P: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Project (N, 3) world points to (N, 2) pixel coordinates."""
    P = np.asarray(P, dtype=np.float64)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

    Xh = np.hstack([points, np.ones((len(points), 1))])
    x = Xh @ P.T
    with np.errstate(divide='ignore', invalid='ignore'):
        uv = x[:, :2] / x[:, 2:3]
    uv[np.abs(x[:, 2]) < 1e-12] = np.nan
    return uv


def reprojection_errors(projection_matrices: Sequence[np.ndarray],
                        correspondences: Sequence[np.ndarray],
                        points: np.ndarray) -> np.ndarray:
    """Pixel distance between observed and reprojected points, shape (cameras, N)."""
    return np.stack([
        np.linalg.norm(project_points(P, points) - as_image_points(uv), axis=1)
        for P, uv in zip(projection_matrices, correspondences)
    ])

"""
SE(3) Rigid Transform Utilities
===============================

Rigid transforms are plain 4x4 numpy arrays (float64):

    T = [R t]
        [0 1]

where R is a 3x3 rotation (orthonormal, det +1) and t a translation. Frame
names follow the ``<from>2<to>`` convention used across the toolkit, e.g.
``target2cam`` maps points from the calibration target frame into the camera
frame and ``end2base`` maps end-effector points into the robot base frame.

This module contains the construction helpers, composition/inversion, validity
checks and the SO(3) log/exp maps used by the solver and the pose averaging.
"""

from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import ArrayLike

from .exceptions import InvalidTransformError

DEFAULT_TOLERANCE = 1e-8

_BOTTOM_ROW = np.array([0.0, 0.0, 0.0, 1.0])


# ============================================================================
# Validity checks
# ============================================================================

def _transform_problem(T, tolerance: float) -> Optional[str]:
    """Return a description of the first failed SE(3) check, or None."""
    try:
        T = np.asarray(T, dtype=np.float64)
    except (TypeError, ValueError):
        return "matrix is not numeric"

    if T.shape != (4, 4):
        return f"matrix must be 4x4, got shape {T.shape}"
    if not np.all(np.isfinite(T)):
        return "matrix contains NaN or infinite values"

    R = T[:3, :3]
    orthonormality = np.linalg.norm(R.T @ R - np.eye(3))
    if orthonormality > tolerance:
        return f"rotation is not orthonormal (|R'R - I| = {orthonormality:.3e} > {tolerance:.1e})"

    det = np.linalg.det(R)
    if abs(det - 1.0) > tolerance:
        return f"rotation determinant is {det:.6f}, expected +1"

    if np.max(np.abs(T[3, :] - _BOTTOM_ROW)) > tolerance:
        return f"bottom row is not [0, 0, 0, 1]: {T[3, :]}"

    return None


def is_valid(T: ArrayLike, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """
    Check whether T is a rigid transform.

    Args:
        T: Candidate 4x4 matrix
        tolerance: Allowed deviation for orthonormality, determinant and bottom row

    Returns:
        bool: True if |R'R - I| <= tolerance, det(R) ~ +1 and the bottom row ~ [0, 0, 0, 1]
    """
    return _transform_problem(T, tolerance) is None


def validate_transform(T: ArrayLike, tolerance: float = DEFAULT_TOLERANCE,
                       name: str = "transform") -> np.ndarray:
    """
    Validate a rigid transform and return it as a float64 array.

    Raises:
        InvalidTransformError: If T fails any of the SE(3) checks
    """
    problem = _transform_problem(T, tolerance)
    if problem is not None:
        raise InvalidTransformError(f"{name} is not a valid rigid transform: {problem}")
    return np.array(T, dtype=np.float64)


def nearest_valid(T: ArrayLike) -> np.ndarray:
    """
    Project a near-rigid 4x4 matrix onto the closest element of SE(3).

    The rotation block is replaced by the closest rotation in the Frobenius
    sense (SVD orthonormalization with a determinant fix), the bottom row is
    reset to [0, 0, 0, 1] and the translation is kept.

    Args:
        T: 4x4 matrix with a slightly non-orthonormal rotation block

    Returns:
        np.ndarray: Valid 4x4 rigid transform
    """
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 matrix, got shape {T.shape}")
    if not np.all(np.isfinite(T)):
        raise InvalidTransformError("Cannot project a matrix with NaN or infinite values onto SE(3)")

    U, _, Vt = np.linalg.svd(T[:3, :3])
    D = np.diag([1.0, 1.0, np.sign(np.linalg.det(U @ Vt)) or 1.0])

    result = np.eye(4)
    result[:3, :3] = U @ D @ Vt
    result[:3, 3] = T[:3, 3]
    return result


# ============================================================================
# Composition and inversion
# ============================================================================

def invert(T: ArrayLike) -> np.ndarray:
    """
    Invert a rigid transform using R' and -R't.

    Args:
        T: 4x4 rigid transform

    Returns:
        np.ndarray: Inverse transform
    """
    T = np.asarray(T, dtype=np.float64)
    R = T[:3, :3]
    t = T[:3, 3]

    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ t
    return T_inv


def compose(*transforms: ArrayLike, tolerance: float = DEFAULT_TOLERANCE) -> np.ndarray:
    """
    Multiply rigid transforms left to right: compose(T1, T2, T3) = T1 @ T2 @ T3.

    Raises:
        InvalidTransformError: If any input is not a valid rigid transform
        ValueError: If no transform is given
    """
    if not transforms:
        raise ValueError("compose() needs at least one transform")

    result = np.eye(4)
    for i, T in enumerate(transforms):
        result = result @ validate_transform(T, tolerance, name=f"transform {i}")
    return result


# ============================================================================
# Construction helpers
# ============================================================================

def from_rotation_translation(R: ArrayLike, t: ArrayLike = (0.0, 0.0, 0.0)) -> np.ndarray:
    """Build a 4x4 transform from a 3x3 rotation and a 3-vector translation."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Rotation must be 3x3, got shape {R.shape}")
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = np.asarray(t, dtype=np.float64).reshape(3)
    return T


def translation(x: float, y: float, z: float) -> np.ndarray:
    """Pure translation."""
    T = np.eye(4)
    T[:3, 3] = [x, y, z]
    return T


def rotation_x(angle: float) -> np.ndarray:
    """Rotation about the x-axis (radians)."""
    c, s = np.cos(angle), np.sin(angle)
    return from_rotation_translation([[1, 0, 0], [0, c, -s], [0, s, c]])


def rotation_y(angle: float) -> np.ndarray:
    """Rotation about the y-axis (radians)."""
    c, s = np.cos(angle), np.sin(angle)
    return from_rotation_translation([[c, 0, s], [0, 1, 0], [-s, 0, c]])


def rotation_z(angle: float) -> np.ndarray:
    """Rotation about the z-axis (radians)."""
    c, s = np.cos(angle), np.sin(angle)
    return from_rotation_translation([[c, -s, 0], [s, c, 0], [0, 0, 1]])


def rotation_about_axis(axis: ArrayLike, angle: float) -> np.ndarray:
    """Rotation of ``angle`` radians about an arbitrary (not necessarily unit) axis."""
    axis = np.asarray(axis, dtype=np.float64).reshape(3)
    norm = np.linalg.norm(axis)
    if norm < 1e-12:
        raise ValueError("Rotation axis must be non-zero")
    return from_rotation_translation(rotation_exp(axis / norm * angle))


def from_rvec_tvec(rvec: ArrayLike, tvec: ArrayLike) -> np.ndarray:
    """
    Convert an OpenCV extrinsic (Rodrigues rotation vector + translation) to a 4x4 matrix.

    This is the form returned by cv2.solvePnP / cv2.calibrateCamera, i.e. target2cam.
    """
    return from_rotation_translation(rotation_exp(rvec), tvec)


def to_rvec_tvec(T: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """Convert a 4x4 transform to an OpenCV (rvec, tvec) pair of 3x1 arrays."""
    T = np.asarray(T, dtype=np.float64)
    return rotation_log(T[:3, :3]).reshape(3, 1), T[:3, 3].reshape(3, 1).copy()


def rpy_to_matrix(coords: ArrayLike) -> np.ndarray:
    """
    Calculate a 3x3 rotation from roll-pitch-yaw angles (radians).

    R = Rz(yaw) @ Ry(pitch) @ Rx(roll)
    """
    roll, pitch, yaw = np.asarray(coords, dtype=np.float64).reshape(3)
    return (rotation_z(yaw) @ rotation_y(pitch) @ rotation_x(roll))[:3, :3]


def xyz_rpy_to_matrix(xyz_rpy: ArrayLike) -> np.ndarray:
    """
    Calculate a 4x4 transform from [x, y, z, roll, pitch, yaw].

    Args:
        xyz_rpy: Array of [x, y, z, roll, pitch, yaw], angles in radians

    Returns:
        4x4 transformation matrix
    """
    xyz_rpy = np.asarray(xyz_rpy, dtype=np.float64).reshape(6)
    return from_rotation_translation(rpy_to_matrix(xyz_rpy[3:]), xyz_rpy[:3])


def matrix_to_xyz_rpy(matrix: ArrayLike) -> np.ndarray:
    """
    Calculate [x, y, z, roll, pitch, yaw] from a 4x4 transform.

    Inverse of xyz_rpy_to_matrix away from the pitch = +-90 deg singularity;
    at the singularity yaw is set to zero.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    R = matrix[:3, :3]

    sy = np.hypot(R[0, 0], R[1, 0])
    if sy >= 1e-6:
        roll = np.arctan2(R[2, 1], R[2, 2])
        pitch = np.arctan2(-R[2, 0], sy)
        yaw = np.arctan2(R[1, 0], R[0, 0])
    else:
        roll = np.arctan2(-R[1, 2], R[1, 1])
        pitch = np.arctan2(-R[2, 0], sy)
        yaw = 0.0

    return np.array([matrix[0, 3], matrix[1, 3], matrix[2, 3], roll, pitch, yaw])


# ============================================================================
# SO(3) log / exp
# ============================================================================

def rotation_log(R: ArrayLike) -> np.ndarray:
    """Axis-angle vector (length = angle in radians) of a 3x3 rotation."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape == (4, 4):
        R = R[:3, :3]
    rvec, _ = cv2.Rodrigues(np.ascontiguousarray(R))
    return rvec.reshape(3)


def rotation_exp(w: ArrayLike) -> np.ndarray:
    """3x3 rotation for an axis-angle vector."""
    w = np.asarray(w, dtype=np.float64).reshape(3, 1)
    R, _ = cv2.Rodrigues(w)
    return R


def rotation_angle(R: ArrayLike) -> float:
    """Rotation angle in [0, pi] of a 3x3 rotation (or of the rotation block of a 4x4)."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape == (4, 4):
        R = R[:3, :3]
    s = 0.5 * np.linalg.norm([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    c = 0.5 * (np.trace(R) - 1.0)
    return float(np.arctan2(s, c))


def rotation_distance(R1: ArrayLike, R2: ArrayLike) -> float:
    """Geodesic distance (radians) between two rotations."""
    R1 = np.asarray(R1, dtype=np.float64)
    R2 = np.asarray(R2, dtype=np.float64)
    if R1.shape == (4, 4):
        R1 = R1[:3, :3]
    if R2.shape == (4, 4):
        R2 = R2[:3, :3]
    return rotation_angle(R1.T @ R2)


def transform_points(T: ArrayLike, points: Sequence) -> np.ndarray:
    """Apply a 4x4 transform to an (N, 3) array of points."""
    T = np.asarray(T, dtype=np.float64)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return points @ T[:3, :3].T + T[:3, 3]

"""
Reprojection Validation
=======================

Scores a hand-eye result by projecting the calibration target's known points
through the camera extrinsic implied by the robot chain and comparing them to
the detected image points.

This is diagnostic only: it never changes the solved transform and never
raises for a "bad" calibration. Accept/reject thresholds belong to the caller.

Camera models:
- PinholeIntrinsics: 3x3 camera matrix + optional OpenCV distortion coefficients
- FisheyeIntrinsics: 3x3 camera matrix + 4 OpenCV fisheye coefficients
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from numpy.typing import ArrayLike

from .correspondence import HandEyeVariant, Observation, estimate_fixed_frame, predicted_target2cam
from .exceptions import InvalidIntrinsicsError
from .se3 import DEFAULT_TOLERANCE, to_rvec_tvec


def _check_camera_matrix(camera_matrix: np.ndarray) -> None:
    if camera_matrix.shape != (3, 3):
        raise InvalidIntrinsicsError(f"camera_matrix must be 3x3, got shape {camera_matrix.shape}")
    if not np.all(np.isfinite(camera_matrix)):
        raise InvalidIntrinsicsError("camera_matrix contains NaN or infinite values")
    if camera_matrix[0, 0] <= 0 or camera_matrix[1, 1] <= 0:
        raise InvalidIntrinsicsError(
            f"Focal lengths must be positive, got fx={camera_matrix[0, 0]}, fy={camera_matrix[1, 1]}")
    principal_point = camera_matrix[:2, 2]
    if np.any(principal_point < 0):
        raise InvalidIntrinsicsError(
            f"Camera calibration produced a negative principal point {principal_point}. "
            "Try adding handheld images with larger target pose variations.")


@dataclass(frozen=True, eq=False)
class PinholeIntrinsics:
    """Standard pinhole camera with OpenCV distortion coefficients."""

    camera_matrix: np.ndarray
    distortion_coefficients: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, 'camera_matrix', np.array(self.camera_matrix, dtype=np.float64))
        if self.distortion_coefficients is None:
            object.__setattr__(self, 'distortion_coefficients', np.zeros(5))
        else:
            object.__setattr__(self, 'distortion_coefficients',
                               np.array(self.distortion_coefficients, dtype=np.float64).reshape(-1))

    def validate(self) -> None:
        _check_camera_matrix(self.camera_matrix)
        if self.distortion_coefficients.shape[0] < 4:
            raise InvalidIntrinsicsError(
                f"distortion_coefficients must have at least 4 elements, got {self.distortion_coefficients.shape[0]}")

    def project(self, object_points: np.ndarray, rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
        projected, _ = cv2.projectPoints(object_points.reshape(-1, 1, 3), rvec, tvec,
                                         self.camera_matrix, self.distortion_coefficients)
        return projected.reshape(-1, 2)


@dataclass(frozen=True, eq=False)
class FisheyeIntrinsics:
    """OpenCV fisheye (equidistant) camera model."""

    camera_matrix: np.ndarray
    distortion_coefficients: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, 'camera_matrix', np.array(self.camera_matrix, dtype=np.float64))
        object.__setattr__(self, 'distortion_coefficients',
                           np.array(self.distortion_coefficients, dtype=np.float64).reshape(-1))

    def validate(self) -> None:
        _check_camera_matrix(self.camera_matrix)
        if self.distortion_coefficients.shape[0] != 4:
            raise InvalidIntrinsicsError(
                f"Fisheye model needs exactly 4 distortion coefficients, got {self.distortion_coefficients.shape[0]}")

    def project(self, object_points: np.ndarray, rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
        projected, _ = cv2.fisheye.projectPoints(object_points.reshape(-1, 1, 3), rvec, tvec,
                                                 self.camera_matrix, self.distortion_coefficients)
        return projected.reshape(-1, 2)


IntrinsicsModel = Union[PinholeIntrinsics, FisheyeIntrinsics]


def generate_checkerboard_points(columns: int, rows: int, square_size: float) -> np.ndarray:
    """
    Generate 3D coordinates of checkerboard inner corners in the target frame.

    Args:
        columns: Number of inner corners along x
        rows: Number of inner corners along y
        square_size: Square size (world units)

    Returns:
        (columns * rows, 3) float64 array, x varying fastest, z = 0
    """
    if columns < 1 or rows < 1:
        raise ValueError(f"Checkerboard needs at least one corner per axis, got {columns}x{rows}")
    points = np.zeros((columns * rows, 3), np.float64)
    points[:, :2] = np.mgrid[0:columns, 0:rows].T.reshape(-1, 2)
    points *= square_size
    return points


def project_points(intrinsics: IntrinsicsModel, target2cam: ArrayLike,
                   fiducial_points: ArrayLike) -> np.ndarray:
    """
    Project target-frame points into the image.

    Args:
        intrinsics: PinholeIntrinsics or FisheyeIntrinsics
        target2cam: 4x4 target pose in the camera frame
        fiducial_points: (N, 3) points in the target frame

    Returns:
        (N, 2) pixel coordinates
    """
    object_points = np.asarray(fiducial_points, dtype=np.float64).reshape(-1, 3)
    rvec, tvec = to_rvec_tvec(target2cam)
    return intrinsics.project(object_points, rvec, tvec)


def rms_distance(points_a: ArrayLike, points_b: ArrayLike) -> float:
    """RMS Euclidean distance between corresponding 2D points."""
    points_a = np.asarray(points_a, dtype=np.float64).reshape(-1, 2)
    points_b = np.asarray(points_b, dtype=np.float64).reshape(-1, 2)
    if points_a.shape != points_b.shape:
        raise ValueError(f"Point sets differ in size: {points_a.shape[0]} vs {points_b.shape[0]}")
    return float(np.sqrt(np.mean(np.sum((points_a - points_b) ** 2, axis=1))))


def reprojection_error(intrinsics: IntrinsicsModel, X: ArrayLike,
                       observations: Sequence[Observation], fiducial_points: ArrayLike,
                       variant: HandEyeVariant = HandEyeVariant.FIXED_CAMERA,
                       fixed_frame: Optional[ArrayLike] = None,
                       tolerance: float = DEFAULT_TOLERANCE,
                       verbose: bool = False) -> Tuple[List[float], float]:
    """
    Per-observation reprojection error of a hand-eye result.

    For every observation the extrinsic implied by X, the world-fixed frame and
    the robot pose is used to project the fiducial points, and the RMS pixel
    distance to the reference points is computed. The reference points are the
    observation's detected image points; when an observation carries none, the
    points projected through its own camera extrinsic are used instead.

    Args:
        intrinsics: PinholeIntrinsics or FisheyeIntrinsics
        X: Solved hand-eye transform (end2target or cam2end depending on variant)
        observations: Calibration observations
        fiducial_points: (N, 3) target points, ordered like the image points
        variant: FIXED_CAMERA or EYE_IN_HAND
        fixed_frame: cam2base / target2base; estimated by pose averaging when None.
            An unconverged average is used with a warning rather than raised
        tolerance: SE(3) tolerance used when estimating the fixed frame
        verbose: Whether to print per-observation errors

    Returns:
        Tuple of (per_observation_errors, mean_error) in pixels. An observation
        whose projection is not finite gets inf.

    Raises:
        InvalidIntrinsicsError: If the intrinsics are unusable
    """
    variant = HandEyeVariant.from_string(variant)
    intrinsics.validate()
    fiducial_points = np.asarray(fiducial_points, dtype=np.float64).reshape(-1, 3)

    if not observations:
        return [], float('inf')

    if fixed_frame is None:
        fixed_frame = estimate_fixed_frame(X, observations, variant, tolerance=tolerance,
                                           allow_unconverged=True)

    per_observation_errors = []
    for i, obs in enumerate(observations):
        if obs.image_points is not None:
            reference = obs.image_points
        else:
            reference = project_points(intrinsics, obs.target2cam, fiducial_points)

        target2cam = predicted_target2cam(X, fixed_frame, obs.end2base, variant)
        projected = project_points(intrinsics, target2cam, fiducial_points)

        if reference.shape[0] != projected.shape[0]:
            raise ValueError(f"Observation {i} has {reference.shape[0]} image points "
                             f"but the fiducial has {projected.shape[0]} points")

        error = rms_distance(reference, projected)
        if not np.isfinite(error):
            error = float('inf')
        per_observation_errors.append(error)

        if verbose:
            name = obs.label if obs.label is not None else f"Observation {i}"
            print(f"   {name}: Reprojection error = {error:.4f} pixels")

    mean_error = float(np.mean(per_observation_errors))
    if verbose:
        print(f"   Mean reprojection error: {mean_error:.4f} pixels ({len(per_observation_errors)} observations)")

    return per_observation_errors, mean_error


def accept_calibration(mean_error: float, threshold: float) -> bool:
    """Quality gate for drivers: True if the mean error is finite and below the caller's threshold."""
    return bool(np.isfinite(mean_error) and mean_error <= threshold)

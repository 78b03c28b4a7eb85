"""
Hand-Eye Calibration Toolkit
============================

Robot hand-eye calibration by solving AX = XB:

- SE(3) helpers for 4x4 rigid transforms
- Closed-form AX = XB solver (rotation via SVD, translation via least squares)
- Relative pose pair construction for fixed-camera and eye-in-hand set-ups
- Pose averaging (geodesic mean) for the world-fixed frame
- Reprojection error scoring with pinhole and fisheye cameras
- Optional nonlinear refinement with nlopt
"""

from .ax_xb_solver import SolvedTransform, solve_ax_xb
from .config import CalibrationConfig, load_config, save_config
from .correspondence import (
    HandEyeVariant,
    Observation,
    RelativePosePair,
    build_relative_pose_pairs,
    estimate_fixed_frame,
    pairs_from_observations,
)
from .exceptions import (
    DegenerateSolutionError,
    HandEyeCalibrationError,
    InsufficientDataError,
    InvalidIntrinsicsError,
    InvalidTransformError,
    NonConvergenceError,
)
from .hand_eye_calibration import HandEyeCalibrator, solve_hand_eye, solve_hand_eye_from_poses
from .optimization import refine_calibration
from .pose_averaging import average_poses, average_poses_with_info
from .reprojection import (
    FisheyeIntrinsics,
    PinholeIntrinsics,
    accept_calibration,
    generate_checkerboard_points,
    project_points,
    reprojection_error,
)
from .se3 import compose, invert, is_valid, matrix_to_xyz_rpy, nearest_valid, xyz_rpy_to_matrix

__version__ = "1.0.0"

__all__ = [
    'SolvedTransform',
    'solve_ax_xb',
    'CalibrationConfig',
    'load_config',
    'save_config',
    'HandEyeVariant',
    'Observation',
    'RelativePosePair',
    'build_relative_pose_pairs',
    'estimate_fixed_frame',
    'pairs_from_observations',
    'HandEyeCalibrationError',
    'InvalidTransformError',
    'InsufficientDataError',
    'DegenerateSolutionError',
    'InvalidIntrinsicsError',
    'NonConvergenceError',
    'HandEyeCalibrator',
    'solve_hand_eye',
    'solve_hand_eye_from_poses',
    'refine_calibration',
    'average_poses',
    'average_poses_with_info',
    'PinholeIntrinsics',
    'FisheyeIntrinsics',
    'accept_calibration',
    'generate_checkerboard_points',
    'project_points',
    'reprojection_error',
    'compose',
    'invert',
    'is_valid',
    'nearest_valid',
    'matrix_to_xyz_rpy',
    'xyz_rpy_to_matrix',
]

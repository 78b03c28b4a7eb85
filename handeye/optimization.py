"""
Nonlinear Refinement
====================

Jointly refines the hand-eye transform and the world-fixed frame by minimizing
the mean reprojection error with nlopt's derivative-free Nelder-Mead.

Both transforms are parameterized as [x, y, z, roll, pitch, yaw], so every
candidate the optimizer visits is a valid rigid transform.
"""

from typing import Sequence, Tuple

import nlopt
import numpy as np
from numpy.typing import ArrayLike

from .correspondence import HandEyeVariant, Observation
from .reprojection import IntrinsicsModel, reprojection_error
from .se3 import DEFAULT_TOLERANCE, matrix_to_xyz_rpy, validate_transform, xyz_rpy_to_matrix

# Objective value for parameter vectors whose projection is not finite.
_INFEASIBLE_ERROR = 1e12


def refine_calibration(X: ArrayLike, fixed_frame: ArrayLike,
                       observations: Sequence[Observation],
                       intrinsics: IntrinsicsModel,
                       fiducial_points: ArrayLike,
                       variant: HandEyeVariant = HandEyeVariant.FIXED_CAMERA,
                       ftol_rel: float = 1e-6,
                       max_evaluations: int = 2000,
                       tolerance: float = DEFAULT_TOLERANCE,
                       verbose: bool = False) -> Tuple[np.ndarray, np.ndarray, float, float]:
    """
    Refine X and the fixed frame together.

    Args:
        X: Initial hand-eye transform (end2target or cam2end)
        fixed_frame: Initial world-fixed frame (cam2base or target2base)
        observations: Observations, ideally with detected image points
        intrinsics: Camera model used for projection
        fiducial_points: (N, 3) target points
        variant: FIXED_CAMERA or EYE_IN_HAND
        ftol_rel: Relative tolerance on the objective for convergence
        max_evaluations: Cap on objective evaluations
        tolerance: SE(3) validity tolerance for the initial transforms
        verbose: Whether to print optimization progress

    Returns:
        Tuple of (X, fixed_frame, initial_error, final_error). When the
        optimizer does not improve the mean error the initial matrices are
        returned and final_error equals initial_error.
    """
    variant = HandEyeVariant.from_string(variant)
    initial_X = validate_transform(X, tolerance, name=variant.hand_eye_name)
    initial_fixed = validate_transform(fixed_frame, tolerance, name=variant.fixed_frame_name)
    intrinsics.validate()
    if not observations:
        raise ValueError("Refinement needs at least one observation")

    def mean_error(X_candidate, fixed_candidate):
        _, error = reprojection_error(intrinsics, X_candidate, observations, fiducial_points,
                                      variant, fixed_frame=fixed_candidate)
        return error

    def joint_objective(params, grad):
        error = mean_error(xyz_rpy_to_matrix(params[:6]), xyz_rpy_to_matrix(params[6:]))
        return float(error) if np.isfinite(error) else _INFEASIBLE_ERROR

    initial_params = np.concatenate([matrix_to_xyz_rpy(initial_X), matrix_to_xyz_rpy(initial_fixed)])
    initial_error = mean_error(initial_X, initial_fixed)

    if verbose:
        print("Starting joint optimization...")
        print(f"   Initial mean reprojection error: {initial_error:.4f} pixels")

    # Simplex sized at 1% of the translation scale and 0.01 rad
    translation_scale = max(np.linalg.norm(initial_X[:3, 3]), np.linalg.norm(initial_fixed[:3, 3]), 1e-3)
    initial_step = np.array([0.01 * translation_scale] * 3 + [0.01] * 3)

    opt = nlopt.opt(nlopt.LN_NELDERMEAD, 12)
    opt.set_min_objective(joint_objective)
    opt.set_ftol_rel(ftol_rel)
    opt.set_maxeval(int(max_evaluations))
    opt.set_initial_step(np.concatenate([initial_step, initial_step]))

    try:
        optimized_params = opt.optimize(initial_params)
    except nlopt.RoundoffLimited:
        if verbose:
            print("   Joint optimization stopped by roundoff; keeping initial matrices")
        return initial_X, initial_fixed, initial_error, initial_error

    optimized_X = xyz_rpy_to_matrix(optimized_params[:6])
    optimized_fixed = xyz_rpy_to_matrix(optimized_params[6:])
    final_error = mean_error(optimized_X, optimized_fixed)

    if not final_error < initial_error:
        if verbose:
            print(f"   Joint optimization did not improve: {initial_error:.4f} -> {final_error:.4f} pixels")
            print("   Keeping initial matrices")
        return initial_X, initial_fixed, initial_error, initial_error

    if verbose:
        improvement = (initial_error - final_error) / initial_error * 100 if initial_error > 0 else 0.0
        print(f"   Joint optimization: {initial_error:.4f} -> {final_error:.4f} pixels")
        print(f"   Improvement: {improvement:.1f}%")

    return optimized_X, optimized_fixed, initial_error, final_error

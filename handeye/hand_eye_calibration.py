"""
Hand-Eye Calibration Module
===========================

Driver-level entry points for hand-eye calibration.

- solve_hand_eye / solve_hand_eye_from_poses: one-shot functional API around
  the AX = XB solver.
- HandEyeCalibrator: stateful calibrator that holds observations, camera
  intrinsics and the fiducial geometry, runs the closed-form solve, estimates
  the world-fixed frame, scores the result by reprojection and optionally
  refines it with nonlinear optimization.

The same class handles both set-ups, selected by HandEyeVariant:

- FIXED_CAMERA (eye-to-hand): solves end2target, fixed frame is cam2base
- EYE_IN_HAND: solves cam2end, fixed frame is target2base

Errors raised by the core (InsufficientDataError, DegenerateSolutionError,
InvalidTransformError, ...) propagate to the caller unchanged.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike

from .ax_xb_solver import SolvedTransform, solve_ax_xb
from .config import CalibrationConfig
from .correspondence import (
    HandEyeVariant,
    Observation,
    RelativePosePair,
    build_relative_pose_pairs,
    estimate_fixed_frame,
    pairs_from_observations,
)
from .exceptions import InsufficientDataError
from .optimization import refine_calibration
from .reprojection import IntrinsicsModel, reprojection_error
from .se3 import DEFAULT_TOLERANCE


def solve_hand_eye(pairs: Sequence[RelativePosePair], variant: Optional[HandEyeVariant] = None,
                   **solver_options) -> SolvedTransform:
    """
    Solve AX = XB for a list of relative pose pairs.

    Args:
        pairs: Pairs produced by build_relative_pose_pairs
        variant: Optional variant recorded on the result
        **solver_options: Forwarded to solve_ax_xb

    Returns:
        SolvedTransform
    """
    solution = solve_ax_xb([p.A for p in pairs], [p.B for p in pairs], **solver_options)
    if variant is not None:
        solution = solution.with_variant(HandEyeVariant.from_string(variant))
    return solution


def solve_hand_eye_from_poses(target2cam_list: Sequence[ArrayLike], end2base_list: Sequence[ArrayLike],
                              variant: HandEyeVariant = HandEyeVariant.FIXED_CAMERA,
                              tolerance: float = DEFAULT_TOLERANCE,
                              **solver_options) -> SolvedTransform:
    """Build all relative pose pairs from per-observation poses and solve them."""
    variant = HandEyeVariant.from_string(variant)
    pairs = build_relative_pose_pairs(target2cam_list, end2base_list, variant, tolerance)
    return solve_hand_eye(pairs, variant, tolerance=tolerance, **solver_options)


class HandEyeCalibrator:
    """
    Stateful hand-eye calibrator for both fixed-camera and eye-in-hand set-ups.

    Typical use::

        calibrator = HandEyeCalibrator(observations, variant='eye_in_hand',
                                       intrinsics=PinholeIntrinsics(K, dist),
                                       fiducial_points=generate_checkerboard_points(11, 8, 0.02))
        result = calibrator.calibrate(verbose=True)
        calibrator.remove_observations([w for w, _ in calibrator.worst_observations(2)])
        result = calibrator.calibrate()
        calibrator.optimize_calibration()
    """

    def __init__(self,
                 observations: Optional[Sequence[Observation]] = None,
                 variant: Optional[HandEyeVariant] = None,
                 intrinsics: Optional[IntrinsicsModel] = None,
                 fiducial_points: Optional[ArrayLike] = None,
                 config: Optional[CalibrationConfig] = None):
        """
        Initialize the calibrator.

        Args:
            observations: Optional list of Observation
            variant: Optional variant; overrides the one in config
            intrinsics: Optional PinholeIntrinsics or FisheyeIntrinsics
            fiducial_points: Optional (N, 3) target points in the target frame
            config: Optional CalibrationConfig (defaults are used when None)
        """
        config = config if config is not None else CalibrationConfig()
        if variant is not None:
            config = replace(config, variant=HandEyeVariant.from_string(variant))
        self.config = config

        self.observations: List[Observation] = []
        self.intrinsics = None
        self.fiducial_points = None

        self._reset_results()

        if observations is not None:
            self.set_observations(observations)
        if intrinsics is not None:
            self.set_intrinsics(intrinsics)
        if fiducial_points is not None:
            self.set_fiducial_points(fiducial_points)

    @property
    def variant(self) -> HandEyeVariant:
        return self.config.variant

    def _reset_results(self) -> None:
        self.solution = None
        self.hand_eye_matrix = None
        self.fixed_frame_matrix = None
        self.rms_error = None
        self.per_image_errors = None
        self.calibration_completed = False
        self.optimized = False

    # ============================================================================
    # Data setters
    # ============================================================================

    def set_observations(self, observations: Sequence[Observation]) -> None:
        """
        Replace all observations. Previous results are discarded.

        Raises:
            ValueError: If an element is not an Observation
        """
        observations = list(observations)
        for i, obs in enumerate(observations):
            if not isinstance(obs, Observation):
                raise ValueError(f"Observation {i} must be an Observation instance, got {type(obs).__name__}")
        self.observations = observations
        self._reset_results()

    def add_observation(self, target2cam: ArrayLike, end2base: ArrayLike,
                        image_points: Optional[ArrayLike] = None,
                        label: Optional[str] = None) -> Observation:
        """Append one camera extrinsic / robot pose sample and return it."""
        obs = Observation(target2cam, end2base, image_points=image_points, label=label)
        self.observations.append(obs)
        self._reset_results()
        return obs

    def remove_observations(self, indices: Sequence[int]) -> int:
        """
        Discard observations by index, e.g. outliers found with worst_observations().

        Returns:
            int: Number of observations removed

        Raises:
            IndexError: If an index is out of range
        """
        to_remove = set()
        for index in indices:
            if not -len(self.observations) <= index < len(self.observations):
                raise IndexError(f"Observation index {index} out of range "
                                 f"(have {len(self.observations)} observations)")
            to_remove.add(index % len(self.observations))
        self.observations = [obs for i, obs in enumerate(self.observations) if i not in to_remove]
        self._reset_results()
        return len(to_remove)

    def set_intrinsics(self, intrinsics: IntrinsicsModel) -> None:
        """Set the camera model used for reprojection scoring."""
        intrinsics.validate()
        self.intrinsics = intrinsics
        self._update_reprojection_errors()

    def set_fiducial_points(self, fiducial_points: ArrayLike) -> None:
        """Set the (N, 3) target-frame points matching each observation's image points."""
        points = np.asarray(fiducial_points, dtype=np.float64)
        if points.size == 0 or points.size % 3 != 0:
            raise ValueError(f"fiducial_points must be an (N, 3) array, got shape {points.shape}")
        self.fiducial_points = points.reshape(-1, 3)
        self._update_reprojection_errors()

    def _can_reproject(self) -> bool:
        return self.intrinsics is not None and self.fiducial_points is not None

    def _update_reprojection_errors(self) -> None:
        """Rescore the current calibration after the camera model or fiducial changes."""
        if self.is_calibrated() and self._can_reproject():
            self.rms_error, self.per_image_errors = self.calculate_reprojection_errors()
            self.solution = self.solution.with_reprojection_error(self.rms_error)
        else:
            self.rms_error = None
            self.per_image_errors = None

    # ============================================================================
    # Calibration
    # ============================================================================

    def calibrate(self, verbose: bool = False) -> Dict[str, Any]:
        """
        Run the closed-form hand-eye calibration on the stored observations.

        Args:
            verbose: Whether to print calibration progress and results

        Returns:
            Dict[str, Any]: Calibration results:
            - 'success': bool - always True (failures raise)
            - 'variant': str - 'eye_to_hand' or 'eye_in_hand'
            - 'hand_eye_matrix': np.ndarray - solved X
            - 'fixed_frame_matrix': np.ndarray - averaged world-fixed frame
            - 'end2target_matrix' / 'cam2base_matrix' (fixed camera) or
              'cam2end_matrix' / 'target2base_matrix' (eye-in-hand)
            - 'pair_count': int - number of A/B pairs used
            - 'rms_error': float or None - mean reprojection error in pixels
            - 'per_image_errors': List[float] or None
            - 'valid_images': int - observations with a finite reprojection error
            - 'total_images': int - number of observations

        Raises:
            InsufficientDataError: Fewer than two observations or no rotation diversity
            DegenerateSolutionError: The solve produced no valid rigid transform
            InvalidTransformError: An observation pose is not a rigid transform
            NonConvergenceError: Fixed-frame averaging did not converge and
                allow_unconverged_average is off
        """
        self._reset_results()
        config = self.config
        variant = self.variant

        if len(self.observations) < 2:
            raise InsufficientDataError(
                f"Need at least 2 observations for hand-eye calibration, got {len(self.observations)}")

        if verbose:
            print(f"🤖 Running {variant.value} calibration with {len(self.observations)} observations")

        for obs in self.observations:
            obs.validate(config.tolerance)

        pairs = pairs_from_observations(self.observations, variant, config.tolerance)
        solution = solve_hand_eye(pairs, variant, verbose=verbose, **config.solver_options())

        fixed_frame = estimate_fixed_frame(solution.transform, self.observations, variant,
                                           tolerance=config.tolerance,
                                           max_iterations=config.max_iterations,
                                           allow_unconverged=config.allow_unconverged_average)

        self.solution = solution
        self.hand_eye_matrix = solution.transform.copy()
        self.fixed_frame_matrix = fixed_frame

        if self._can_reproject():
            self.rms_error, self.per_image_errors = self.calculate_reprojection_errors(verbose=verbose)
            self.solution = solution.with_reprojection_error(self.rms_error)

        self.calibration_completed = True

        if verbose:
            print(f"✅ Hand-eye calibration completed ({solution.pair_count} pairs)")
            print(f"   {variant.hand_eye_name}:\n{self.hand_eye_matrix}")
            if self.rms_error is not None:
                print(f"   Mean reprojection error: {self.rms_error:.4f} pixels")

        return self._build_result()

    def _build_result(self) -> Dict[str, Any]:
        variant = self.variant
        per_image_errors = list(self.per_image_errors) if self.per_image_errors is not None else None
        if per_image_errors is not None:
            valid_images = int(sum(1 for e in per_image_errors if np.isfinite(e)))
        else:
            valid_images = len(self.observations)

        return {
            'success': True,
            'variant': variant.value,
            'hand_eye_matrix': self.hand_eye_matrix.copy(),
            'fixed_frame_matrix': self.fixed_frame_matrix.copy(),
            f'{variant.hand_eye_name}_matrix': self.hand_eye_matrix.copy(),
            f'{variant.fixed_frame_name}_matrix': self.fixed_frame_matrix.copy(),
            'pair_count': self.solution.pair_count,
            'rms_error': self.rms_error,
            'per_image_errors': per_image_errors,
            'valid_images': valid_images,
            'total_images': len(self.observations),
        }

    def calculate_reprojection_errors(self, hand_eye_matrix: Optional[np.ndarray] = None,
                                      fixed_frame_matrix: Optional[np.ndarray] = None,
                                      verbose: bool = False) -> Tuple[float, List[float]]:
        """
        Calculate reprojection errors for the stored observations.

        Args:
            hand_eye_matrix: X to evaluate (defaults to the calibrated one)
            fixed_frame_matrix: Fixed frame to evaluate (defaults to the calibrated one)
            verbose: Whether to print per-observation errors

        Returns:
            Tuple[float, List[float]]: (mean_error, per_image_errors) in pixels

        Raises:
            ValueError: If intrinsics or fiducial points are missing, or no
                hand-eye matrix is available
        """
        if not self._can_reproject():
            raise ValueError("Intrinsics and fiducial points are required for reprojection errors. "
                             "Call set_intrinsics() and set_fiducial_points() first.")
        if hand_eye_matrix is None:
            hand_eye_matrix = self.hand_eye_matrix
        if fixed_frame_matrix is None:
            fixed_frame_matrix = self.fixed_frame_matrix
        if hand_eye_matrix is None:
            raise ValueError("No hand-eye matrix available. Call calibrate() first.")

        per_image_errors, mean_error = reprojection_error(
            self.intrinsics, hand_eye_matrix, self.observations, self.fiducial_points,
            self.variant, fixed_frame=fixed_frame_matrix, tolerance=self.config.tolerance,
            verbose=verbose)
        return mean_error, per_image_errors

    def optimize_calibration(self, ftol_rel: float = 1e-6, max_evaluations: int = 2000,
                             verbose: bool = False) -> Tuple[float, float]:
        """
        Jointly refine the hand-eye matrix and the fixed frame by minimizing reprojection error.

        The calibrated matrices are only replaced when the mean error improves.

        Returns:
            Tuple[float, float]: (initial_error, final_error)

        Raises:
            ValueError: If calibration has not been completed or reprojection
                inputs are missing
        """
        if not self.is_calibrated():
            raise ValueError("Initial calibration must be completed before optimization. Call calibrate() first.")
        if not self._can_reproject():
            raise ValueError("Intrinsics and fiducial points are required for optimization.")

        optimized_X, optimized_fixed, initial_error, final_error = refine_calibration(
            self.hand_eye_matrix, self.fixed_frame_matrix, self.observations,
            self.intrinsics, self.fiducial_points, self.variant,
            ftol_rel=ftol_rel, max_evaluations=max_evaluations,
            tolerance=self.config.tolerance, verbose=verbose)

        if final_error < initial_error:
            self.hand_eye_matrix = optimized_X
            self.fixed_frame_matrix = optimized_fixed
            self._update_reprojection_errors()
            self.optimized = True

        return initial_error, final_error

    # ============================================================================
    # Results
    # ============================================================================

    def is_calibrated(self) -> bool:
        return self.calibration_completed and self.hand_eye_matrix is not None

    def get_hand_eye_matrix(self) -> Optional[np.ndarray]:
        """Solved X (end2target or cam2end), or None before calibration."""
        return None if self.hand_eye_matrix is None else self.hand_eye_matrix.copy()

    def get_fixed_frame_matrix(self) -> Optional[np.ndarray]:
        """Averaged world-fixed frame (cam2base or target2base), or None before calibration."""
        return None if self.fixed_frame_matrix is None else self.fixed_frame_matrix.copy()

    def get_rms_error(self) -> Optional[float]:
        return self.rms_error

    def get_per_image_errors(self) -> Optional[List[float]]:
        return None if self.per_image_errors is None else list(self.per_image_errors)

    def worst_observations(self, count: int = 1) -> List[Tuple[int, float]]:
        """
        Observations with the largest reprojection errors.

        Returns:
            List of (index, error) sorted by decreasing error

        Raises:
            ValueError: If no reprojection errors are available
        """
        if self.per_image_errors is None:
            raise ValueError("No reprojection errors available. Calibrate with intrinsics and fiducial points first.")
        order = sorted(range(len(self.per_image_errors)), key=lambda i: self.per_image_errors[i], reverse=True)
        return [(i, self.per_image_errors[i]) for i in order[:max(0, count)]]

    def get_calibration_info(self) -> dict:
        """
        Get calibration status and diagnostics.

        Returns:
            dict: Variant, status, data counts and residual statistics
        """
        info = {
            "calibration_type": self.variant.value,
            "calibration_completed": self.calibration_completed,
            "optimized": self.optimized,
            "observation_count": len(self.observations),
            "has_intrinsics": self.intrinsics is not None,
            "has_fiducial_points": self.fiducial_points is not None,
            "pair_count": self.solution.pair_count if self.solution is not None else 0,
            "rms_error": self.rms_error,
        }
        if self.solution is not None:
            info["rotation_residual_rms"] = self.solution.rotation_rms
            info["translation_residual_rms"] = self.solution.translation_rms
            info["was_corrected"] = self.solution.was_corrected
        return info

    def to_json(self) -> dict:
        """
        Serialize configuration and results to a JSON-compatible dictionary.

        Returns:
            dict: Config, matrices as nested lists and reprojection errors
        """
        data = {
            'calibration_type': self.variant.value,
            'config': self.config.to_dict(),
            'observation_count': len(self.observations),
        }
        if self.hand_eye_matrix is not None:
            data[f'{self.variant.hand_eye_name}_matrix'] = self.hand_eye_matrix.tolist()
        if self.fixed_frame_matrix is not None:
            data[f'{self.variant.fixed_frame_name}_matrix'] = self.fixed_frame_matrix.tolist()
        if self.rms_error is not None:
            data['rms_error'] = float(self.rms_error)
            data['per_image_errors'] = [float(e) for e in self.per_image_errors]
        return data

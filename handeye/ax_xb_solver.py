"""
AX = XB Solver
==============

Closed-form least-squares solution of the hand-eye equation A_i X = X B_i.

The problem is split into two stages:

1. Rotation: R_A R_X = R_X R_B implies log(R_A) = R_X log(R_B), so R_X is the
   rotation that best maps the axis-angle vectors of the B rotations onto
   those of the A rotations. It is recovered from the SVD of
   M = sum(beta_i alpha_i^T) with a determinant fix, which is also the
   orthonormal projection of the least-squares estimate back onto SO(3).
   Axis signs of near half-turn logs are fixed first with a Kronecker-product
   estimate of R_X.
2. Translation: with R_X fixed, (R_A - I) t_X = R_X t_B - t_A is stacked over
   all pairs and solved by linear least squares.

All pairs are used; pairs with near-parallel rotation axes are not
down-weighted. At least two pairs with non-parallel rotation axes are needed.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike

from .exceptions import DegenerateSolutionError, InsufficientDataError
from .se3 import (
    DEFAULT_TOLERANCE,
    from_rotation_translation,
    is_valid,
    nearest_valid,
    rotation_distance,
    rotation_log,
    validate_transform,
)

DEFAULT_MIN_PAIRS = 2
DEFAULT_AXIS_DIVERSITY_THRESHOLD = 1e-4
DEFAULT_RANK_THRESHOLD = 1e-8

# Below this the relative motions are treated as pure translations.
_MIN_ROTATION_SIGNAL = 1e-12

# Rotation logs above this angle get their axis sign checked against the Kronecker estimate.
_SIGN_CHECK_ANGLE = np.pi / 2


@dataclass(frozen=True, eq=False)
class SolvedTransform:
    """Result of an AX = XB solve."""

    transform: np.ndarray
    is_valid: bool
    was_corrected: bool
    pair_count: int
    rotation_residuals: np.ndarray
    translation_residuals: np.ndarray
    reprojection_error: Optional[float] = None
    variant: Optional[object] = None

    @property
    def rotation(self) -> np.ndarray:
        return self.transform[:3, :3]

    @property
    def translation(self) -> np.ndarray:
        return self.transform[:3, 3]

    @property
    def rotation_rms(self) -> float:
        """RMS rotation residual over all pairs (radians)."""
        return float(np.sqrt(np.mean(self.rotation_residuals ** 2)))

    @property
    def translation_rms(self) -> float:
        """RMS translation residual over all pairs (input units)."""
        return float(np.sqrt(np.mean(self.translation_residuals ** 2)))

    def with_reprojection_error(self, error: float) -> 'SolvedTransform':
        return replace(self, reprojection_error=float(error))

    def with_variant(self, variant) -> 'SolvedTransform':
        return replace(self, variant=variant)


def pair_residuals(A: Sequence[np.ndarray], B: Sequence[np.ndarray], X: np.ndarray):
    """
    Per-pair residuals of A_i X = X B_i.

    Returns:
        Tuple of (rotation_residuals, translation_residuals):
        - rotation_residuals: angle between R_A R_X and R_X R_B (radians)
        - translation_residuals: |(A X - X B) translation| in input units
    """
    rotation_residuals = []
    translation_residuals = []
    for A_i, B_i in zip(A, B):
        AX = A_i @ X
        XB = X @ B_i
        rotation_residuals.append(rotation_distance(AX[:3, :3], XB[:3, :3]))
        translation_residuals.append(np.linalg.norm(AX[:3, 3] - XB[:3, 3]))
    return np.array(rotation_residuals), np.array(translation_residuals)


def _kronecker_rotation(rotations_A: Sequence[np.ndarray], rotations_B: Sequence[np.ndarray]) -> np.ndarray:
    """
    Rotation estimate from the null space of the vectorized R_A R_X - R_X R_B = 0.

    Works on the rotation matrices directly, so it has no axis sign ambiguity
    for half-turn rotations.
    """
    K = np.vstack([np.kron(R_A, np.eye(3)) - np.kron(np.eye(3), R_B.T)
                   for R_A, R_B in zip(rotations_A, rotations_B)])
    _, _, Vt = np.linalg.svd(K, full_matrices=False)
    R = Vt[-1].reshape(3, 3)
    if np.linalg.det(R) < 0:
        R = -R
    U, _, Vt = np.linalg.svd(R)
    return U @ np.diag([1.0, 1.0, np.sign(np.linalg.det(U @ Vt)) or 1.0]) @ Vt


def solve_rotation(rotations_A: Sequence[np.ndarray], rotations_B: Sequence[np.ndarray],
                   axis_diversity_threshold: float = DEFAULT_AXIS_DIVERSITY_THRESHOLD) -> np.ndarray:
    """
    Solve R_A R_X = R_X R_B for R_X in the least-squares sense.

    Near a half turn the log of a rotation is only defined up to the sign of
    its axis, and A_i and B_i may come back with opposite signs. Each large beta_i is
    oriented against a Kronecker estimate of R_X before it enters M.

    Raises:
        InsufficientDataError: If the data carries no rotation or all rotation
            axes are parallel (rotation about that axis is unobservable)
    """
    rotations_A = list(rotations_A)
    rotations_B = list(rotations_B)
    R_initial = _kronecker_rotation(rotations_A, rotations_B)

    M = np.zeros((3, 3))
    for R_A, R_B in zip(rotations_A, rotations_B):
        alpha = rotation_log(R_A)
        beta = rotation_log(R_B)
        if (np.linalg.norm(beta) > _SIGN_CHECK_ANGLE
                and np.linalg.norm(alpha + R_initial @ beta) < np.linalg.norm(alpha - R_initial @ beta)):
            beta = -beta
        M += np.outer(beta, alpha)

    U, S, Vt = np.linalg.svd(M)
    if S[0] < _MIN_ROTATION_SIGNAL:
        raise InsufficientDataError(
            "Relative motions contain no rotation; the hand-eye rotation is unobservable. "
            "Collect observations with varied end-effector orientations.")
    if S[1] / S[0] < axis_diversity_threshold:
        raise InsufficientDataError(
            f"All relative rotations share (nearly) the same axis "
            f"(singular value ratio {S[1] / S[0]:.2e} < {axis_diversity_threshold:.1e}). "
            "At least two pairs with distinct rotation axes are required.")

    V = Vt.T
    D = np.diag([1.0, 1.0, np.sign(np.linalg.det(V @ U.T)) or 1.0])
    return V @ D @ U.T


def solve_translation(A: Sequence[np.ndarray], B: Sequence[np.ndarray], R_X: np.ndarray,
                      rank_threshold: float = DEFAULT_RANK_THRESHOLD) -> np.ndarray:
    """
    Solve (R_A - I) t_X = R_X t_B - t_A for t_X over all pairs.

    Raises:
        DegenerateSolutionError: If the stacked system is rank deficient
    """
    C = np.vstack([A_i[:3, :3] - np.eye(3) for A_i in A])
    d = np.concatenate([R_X @ B_i[:3, 3] - A_i[:3, 3] for A_i, B_i in zip(A, B)])

    singular_values = np.linalg.svd(C, compute_uv=False)
    if singular_values[0] <= 0 or singular_values[-1] / singular_values[0] < rank_threshold:
        raise DegenerateSolutionError(
            "Translation system is singular; relative rotations are not diverse enough "
            "to recover the hand-eye translation.")

    t_X, _, _, _ = np.linalg.lstsq(C, d, rcond=None)
    return t_X


def solve_ax_xb(A: Sequence[ArrayLike], B: Sequence[ArrayLike],
                tolerance: float = DEFAULT_TOLERANCE,
                min_pairs: int = DEFAULT_MIN_PAIRS,
                axis_diversity_threshold: float = DEFAULT_AXIS_DIVERSITY_THRESHOLD,
                rank_threshold: float = DEFAULT_RANK_THRESHOLD,
                verbose: bool = False) -> SolvedTransform:
    """
    Solve A_i X = X B_i for the rigid transform X.

    Args:
        A: List of 4x4 rigid transforms
        B: List of 4x4 rigid transforms, same length as A
        tolerance: SE(3) validity tolerance for inputs and result
        min_pairs: Minimum number of (A, B) pairs
        axis_diversity_threshold: Minimum ratio of the second to the first
            singular value of the rotation correlation matrix
        rank_threshold: Minimum inverse condition number of the translation system
        verbose: Whether to print solver diagnostics

    Returns:
        SolvedTransform: X with per-pair residuals

    Raises:
        ValueError: If A and B have different lengths
        InvalidTransformError: If an input is not a rigid transform
        InsufficientDataError: Too few pairs or no rotation-axis diversity
        DegenerateSolutionError: Singular translation system or invalid result
    """
    if len(A) != len(B):
        raise ValueError(f"Number of A transforms ({len(A)}) must match number of B transforms ({len(B)})")
    if len(A) < min_pairs:
        raise InsufficientDataError(
            f"Need at least {min_pairs} A/B pairs with distinct rotation axes, got {len(A)}")

    A = [validate_transform(A_i, tolerance, name=f"A[{i}]") for i, A_i in enumerate(A)]
    B = [validate_transform(B_i, tolerance, name=f"B[{i}]") for i, B_i in enumerate(B)]

    if verbose:
        print(f"Solving AX = XB with {len(A)} pairs...")

    R_X = solve_rotation([A_i[:3, :3] for A_i in A], [B_i[:3, :3] for B_i in B],
                         axis_diversity_threshold)
    t_X = solve_translation(A, B, R_X, rank_threshold)

    X_raw = from_rotation_translation(R_X, t_X)
    if not np.all(np.isfinite(X_raw)):
        raise DegenerateSolutionError("Solved transform contains NaN or infinite values")
    was_corrected = not is_valid(X_raw, tolerance)
    X = nearest_valid(X_raw)
    if not is_valid(X, tolerance):
        raise DegenerateSolutionError("Solved transform is not a valid rigid transform after correction")

    rotation_residuals, translation_residuals = pair_residuals(A, B, X)

    if verbose:
        print(f"   Rotation residual RMS: {np.degrees(np.sqrt(np.mean(rotation_residuals ** 2))):.6f} deg")
        print(f"   Translation residual RMS: {np.sqrt(np.mean(translation_residuals ** 2)):.6f}")
        if was_corrected:
            print("   ⚠️ Solved rotation needed orthonormal correction")

    return SolvedTransform(
        transform=X,
        is_valid=True,
        was_corrected=was_corrected,
        pair_count=len(A),
        rotation_residuals=rotation_residuals,
        translation_residuals=translation_residuals,
    )

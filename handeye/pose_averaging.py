"""
Pose Averaging
==============

Average several estimates of the same rigid transform.

Translations are averaged arithmetically. Rotations are averaged with the
iterative geodesic (Karcher) mean on SO(3): every sample is mapped into the
tangent space at the current estimate, the tangent vectors are averaged and
the estimate is moved along the mean until the step is below the tolerance.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike

from .exceptions import InsufficientDataError, NonConvergenceError
from .se3 import DEFAULT_TOLERANCE, from_rotation_translation, rotation_exp, rotation_log, validate_transform

DEFAULT_MAX_ITERATIONS = 100


def _normalized_weights(weights: Optional[ArrayLike], count: int) -> np.ndarray:
    if weights is None:
        return np.full(count, 1.0 / count)

    weights = np.asarray(weights, dtype=np.float64).reshape(-1)
    if weights.shape[0] != count:
        raise ValueError(f"Number of weights ({weights.shape[0]}) must match number of transforms ({count})")
    if not np.all(np.isfinite(weights)) or np.any(weights < 0):
        raise ValueError("Weights must be finite and non-negative")
    total = weights.sum()
    if total <= 0:
        raise ValueError("Weights must have a positive sum")
    return weights / total


def average_poses_with_info(transforms: Sequence[ArrayLike],
                            tolerance: float = DEFAULT_TOLERANCE,
                            weights: Optional[ArrayLike] = None,
                            max_iterations: int = DEFAULT_MAX_ITERATIONS,
                            verbose: bool = False) -> Tuple[np.ndarray, int, float]:
    """
    Average rigid transforms and report how the rotation mean converged.

    Args:
        transforms: Non-empty list of 4x4 rigid transforms estimating the same relationship
        tolerance: Convergence threshold on the tangent-space update norm (radians);
            also used as the SE(3) validity tolerance for the inputs
        weights: Optional non-negative weight per transform
        max_iterations: Iteration cap for the geodesic mean
        verbose: Whether to print convergence information

    Returns:
        Tuple of (mean_transform, iterations, final_update_norm)

    Raises:
        InsufficientDataError: If no transforms are given
        InvalidTransformError: If an input is not a rigid transform
        NonConvergenceError: If the iteration cap is reached; the exception
            carries the last estimate in ``transform``
    """
    if transforms is None or len(transforms) == 0:
        raise InsufficientDataError("Cannot average an empty list of transforms")

    matrices = [validate_transform(T, tolerance, name=f"transform {i}") for i, T in enumerate(transforms)]
    w = _normalized_weights(weights, len(matrices))

    if len(matrices) == 1:
        return matrices[0].copy(), 0, 0.0

    rotations = np.array([T[:3, :3] for T in matrices])
    mean_translation = np.einsum('i,ij->j', w, np.array([T[:3, 3] for T in matrices]))

    estimate = rotations[0].copy()
    update_norm = float('inf')
    for iteration in range(max_iterations):
        tangent = np.zeros(3)
        for weight, R in zip(w, rotations):
            tangent += weight * rotation_log(estimate.T @ R)

        update_norm = float(np.linalg.norm(tangent))
        if verbose:
            print(f"   Iteration {iteration}: update norm = {update_norm:.3e}")
        if update_norm < tolerance:
            return from_rotation_translation(estimate, mean_translation), iteration, update_norm

        estimate = estimate @ rotation_exp(tangent)

    best_effort = from_rotation_translation(estimate, mean_translation)
    raise NonConvergenceError(
        f"Rotation mean did not converge within {max_iterations} iterations "
        f"(last update norm {update_norm:.3e}, tolerance {tolerance:.1e})",
        transform=best_effort, update_norm=update_norm, iterations=max_iterations)


def average_poses(transforms: Sequence[ArrayLike],
                  tolerance: float = DEFAULT_TOLERANCE,
                  weights: Optional[ArrayLike] = None,
                  max_iterations: int = DEFAULT_MAX_ITERATIONS) -> np.ndarray:
    """
    Compute the mean rigid transform of a set of estimates.

    A single-element list is returned unchanged. See average_poses_with_info
    for the arguments and raised errors.
    """
    mean, _, _ = average_poses_with_info(transforms, tolerance, weights, max_iterations)
    return mean

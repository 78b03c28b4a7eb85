"""
Calibration Errors
==================

Exception types raised by the hand-eye calibration core.

All errors derive from ValueError so callers that already guard calibration
calls with ``except ValueError`` keep working. The driver decides what to do
with them (collect more images, drop outliers, abort); the core never retries.
"""

from typing import Optional

import numpy as np


class HandEyeCalibrationError(ValueError):
    """Base class for all hand-eye calibration errors."""


class InvalidTransformError(HandEyeCalibrationError):
    """A matrix that should be a rigid transform fails the SE(3) checks."""


class InsufficientDataError(HandEyeCalibrationError):
    """Not enough independent pose pairs (or observations) to solve."""


class DegenerateSolutionError(HandEyeCalibrationError):
    """The solved transform is not a valid rigid transform even after correction."""


class InvalidIntrinsicsError(HandEyeCalibrationError):
    """Camera intrinsics that cannot be used for reprojection."""


class NonConvergenceError(HandEyeCalibrationError):
    """
    Pose averaging hit its iteration cap.

    The best-effort estimate is kept on the exception so the caller can accept
    it as an unvalidated result.
    """

    def __init__(self, message: str, transform: Optional[np.ndarray] = None,
                 update_norm: float = float('inf'), iterations: int = 0):
        super().__init__(message)
        self.transform = transform
        self.update_norm = update_norm
        self.iterations = iterations

"""
Observation Correspondences
===========================

Turns per-image observations (camera extrinsic + robot pose captured at the
same instant) into the relative-motion pairs used by the AX = XB solver.

Two geometric set-ups are supported. They share the solver and differ only in
how A and B are assembled:

FIXED_CAMERA (eye-to-hand)
    Camera fixed in the world, calibration target rigidly mounted on the
    gripper. For observations i < j::

        A = inv(target2cam_j) @ target2cam_i
        B = inv(end2base_j)   @ end2base_i

    and X = end2target, the end-effector pose in the target frame.
    The frame fixed in the world is cam2base.

EYE_IN_HAND
    Camera mounted on the gripper, calibration target fixed in the world::

        A = inv(end2base_j) @ end2base_i
        B = target2cam_j    @ inv(target2cam_i)

    and X = cam2end. The frame fixed in the world is target2base.
"""

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike

from .exceptions import InsufficientDataError, NonConvergenceError
from .pose_averaging import DEFAULT_MAX_ITERATIONS, average_poses
from .se3 import DEFAULT_TOLERANCE, compose, invert, validate_transform


class HandEyeVariant(Enum):
    """Which hand-eye set-up the observations come from."""

    FIXED_CAMERA = "eye_to_hand"
    EYE_IN_HAND = "eye_in_hand"

    @classmethod
    def from_string(cls, name: str) -> 'HandEyeVariant':
        """
        Parse a variant name.

        Accepts the enum values and member names plus the usual spellings
        ('fixed_camera', 'eye-to-hand', 'eye-in-hand', ...).
        """
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower().replace('-', '_').replace(' ', '_')
        aliases = {
            'eye_to_hand': cls.FIXED_CAMERA,
            'fixed_camera': cls.FIXED_CAMERA,
            'fixed': cls.FIXED_CAMERA,
            'eye_in_hand': cls.EYE_IN_HAND,
            'hand_in_eye': cls.EYE_IN_HAND,
            'eye_on_hand': cls.EYE_IN_HAND,
        }
        if key not in aliases:
            available = ', '.join(sorted(aliases))
            raise ValueError(f"Unknown hand-eye variant: '{name}'. Available variants: {available}")
        return aliases[key]

    @property
    def hand_eye_name(self) -> str:
        """Frame name of the solved transform X."""
        return 'end2target' if self is HandEyeVariant.FIXED_CAMERA else 'cam2end'

    @property
    def fixed_frame_name(self) -> str:
        """Frame name of the transform that stays constant in the world."""
        return 'cam2base' if self is HandEyeVariant.FIXED_CAMERA else 'target2base'


def _frozen_array(value: ArrayLike, name: str, shape=None) -> np.ndarray:
    array = np.array(value, dtype=np.float64)
    if shape is not None and array.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Observation:
    """
    One calibration sample.

    Attributes:
        target2cam: 4x4 pose of the calibration target in the camera frame
        end2base: 4x4 pose of the end-effector in the robot base frame
        image_points: Optional (N, 2) detected target points in pixels, ordered
            like the target's fiducial points
        label: Optional identifier (image file name, index, ...)
    """

    target2cam: np.ndarray
    end2base: np.ndarray
    image_points: Optional[np.ndarray] = None
    label: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'target2cam', _frozen_array(self.target2cam, 'target2cam', (4, 4)))
        object.__setattr__(self, 'end2base', _frozen_array(self.end2base, 'end2base', (4, 4)))
        if self.image_points is not None:
            points = _frozen_array(self.image_points, 'image_points').reshape(-1, 2)
            points.setflags(write=False)
            object.__setattr__(self, 'image_points', points)

    def validate(self, tolerance: float = DEFAULT_TOLERANCE) -> None:
        """Raise InvalidTransformError if either pose is not a rigid transform."""
        name = self.label if self.label is not None else 'observation'
        validate_transform(self.target2cam, tolerance, name=f"{name} target2cam")
        validate_transform(self.end2base, tolerance, name=f"{name} end2base")


@dataclass(frozen=True, eq=False)
class RelativePosePair:
    """A/B relative motions between observations i < j."""

    A: np.ndarray
    B: np.ndarray
    i: int
    j: int


def relative_motions(target2cam_i: np.ndarray, target2cam_j: np.ndarray,
                     end2base_i: np.ndarray, end2base_j: np.ndarray,
                     variant: HandEyeVariant, tolerance: float = DEFAULT_TOLERANCE):
    """A and B for one ordered pair of observations."""
    if variant is HandEyeVariant.FIXED_CAMERA:
        A = compose(invert(target2cam_j), target2cam_i, tolerance=tolerance)
        B = compose(invert(end2base_j), end2base_i, tolerance=tolerance)
    else:
        A = compose(invert(end2base_j), end2base_i, tolerance=tolerance)
        B = compose(target2cam_j, invert(target2cam_i), tolerance=tolerance)
    return A, B


def build_relative_pose_pairs(target2cam_list: Sequence[ArrayLike],
                              end2base_list: Sequence[ArrayLike],
                              variant: HandEyeVariant = HandEyeVariant.FIXED_CAMERA,
                              tolerance: float = DEFAULT_TOLERANCE) -> List[RelativePosePair]:
    """
    Build all N(N-1)/2 relative pose pairs (i < j) from per-observation poses.

    Args:
        target2cam_list: N camera extrinsics (target pose in camera frame)
        end2base_list: N forward-kinematics poses (end-effector pose in base frame)
        variant: FIXED_CAMERA or EYE_IN_HAND
        tolerance: SE(3) validity tolerance

    Returns:
        List of RelativePosePair, ordered by (i, j)

    Raises:
        ValueError: If the two lists have different lengths
        InsufficientDataError: If fewer than two observations are given
        InvalidTransformError: If a pose is not a rigid transform
    """
    variant = HandEyeVariant.from_string(variant)
    if len(target2cam_list) != len(end2base_list):
        raise ValueError(f"Number of camera extrinsics ({len(target2cam_list)}) must match "
                         f"number of robot poses ({len(end2base_list)})")
    n = len(target2cam_list)
    if n < 2:
        raise InsufficientDataError(f"Need at least 2 observations to form A/B pairs, got {n}")

    target2cam = [validate_transform(T, tolerance, name=f"target2cam[{i}]") for i, T in enumerate(target2cam_list)]
    end2base = [validate_transform(T, tolerance, name=f"end2base[{i}]") for i, T in enumerate(end2base_list)]

    pairs = []
    for i in range(n):
        for j in range(i + 1, n):
            A, B = relative_motions(target2cam[i], target2cam[j], end2base[i], end2base[j],
                                    variant, tolerance)
            pairs.append(RelativePosePair(A=A, B=B, i=i, j=j))
    return pairs


def pairs_from_observations(observations: Sequence[Observation],
                            variant: HandEyeVariant = HandEyeVariant.FIXED_CAMERA,
                            tolerance: float = DEFAULT_TOLERANCE) -> List[RelativePosePair]:
    """build_relative_pose_pairs for a list of Observation."""
    return build_relative_pose_pairs([obs.target2cam for obs in observations],
                                     [obs.end2base for obs in observations],
                                     variant, tolerance)


def fixed_frame_candidates(X: ArrayLike, observations: Sequence[Observation],
                           variant: HandEyeVariant,
                           tolerance: float = DEFAULT_TOLERANCE) -> List[np.ndarray]:
    """
    Per-observation estimates of the frame that does not move during calibration.

    FIXED_CAMERA: cam2base_i = end2base_i @ inv(X) @ inv(target2cam_i)
    EYE_IN_HAND: target2base_i = end2base_i @ X @ target2cam_i
    """
    variant = HandEyeVariant.from_string(variant)
    X = validate_transform(X, tolerance, name=variant.hand_eye_name)
    if variant is HandEyeVariant.FIXED_CAMERA:
        return [compose(obs.end2base, invert(X), invert(obs.target2cam), tolerance=tolerance)
                for obs in observations]
    return [compose(obs.end2base, X, obs.target2cam, tolerance=tolerance) for obs in observations]


def estimate_fixed_frame(X: ArrayLike, observations: Sequence[Observation],
                         variant: HandEyeVariant,
                         tolerance: float = DEFAULT_TOLERANCE,
                         max_iterations: int = DEFAULT_MAX_ITERATIONS,
                         allow_unconverged: bool = False) -> np.ndarray:
    """
    Average the per-observation estimates of the world-fixed frame.

    Args:
        X: Solved hand-eye transform
        observations: Observations used for the calibration
        variant: FIXED_CAMERA (returns cam2base) or EYE_IN_HAND (returns target2base)
        tolerance: Pose averaging tolerance
        max_iterations: Pose averaging iteration cap
        allow_unconverged: Return the best-effort mean with a warning instead of
            raising NonConvergenceError

    Returns:
        np.ndarray: 4x4 mean transform
    """
    candidates = fixed_frame_candidates(X, observations, variant, tolerance)
    try:
        return average_poses(candidates, tolerance=tolerance, max_iterations=max_iterations)
    except NonConvergenceError as e:
        if not allow_unconverged or e.transform is None:
            raise
        warnings.warn(f"Using unvalidated {HandEyeVariant.from_string(variant).fixed_frame_name} estimate: {e}")
        return e.transform


def predicted_target2cam(X: ArrayLike, fixed_frame: ArrayLike, end2base: ArrayLike,
                         variant: HandEyeVariant) -> np.ndarray:
    """
    Camera extrinsic implied by the robot chain for one robot pose.

    FIXED_CAMERA: inv(cam2base) @ end2base @ inv(end2target)
    EYE_IN_HAND: inv(cam2end) @ inv(end2base) @ target2base
    """
    variant = HandEyeVariant.from_string(variant)
    X = np.asarray(X, dtype=np.float64)
    fixed_frame = np.asarray(fixed_frame, dtype=np.float64)
    end2base = np.asarray(end2base, dtype=np.float64)
    if variant is HandEyeVariant.FIXED_CAMERA:
        return invert(fixed_frame) @ end2base @ invert(X)
    return invert(X) @ invert(end2base) @ fixed_frame

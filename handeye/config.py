"""
Calibration Configuration
=========================

Solver settings for a hand-eye calibration run, kept as a small dataclass that
serializes to plain JSON dictionaries.
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict

from .ax_xb_solver import DEFAULT_AXIS_DIVERSITY_THRESHOLD, DEFAULT_MIN_PAIRS, DEFAULT_RANK_THRESHOLD
from .correspondence import HandEyeVariant
from .pose_averaging import DEFAULT_MAX_ITERATIONS
from .se3 import DEFAULT_TOLERANCE


@dataclass
class CalibrationConfig:
    """
    Settings shared by the solver, pose averaging and reprojection steps.

    Attributes:
        variant: Hand-eye set-up (HandEyeVariant or any accepted alias)
        tolerance: SE(3) validity tolerance and pose-averaging convergence threshold
        max_iterations: Pose-averaging iteration cap
        min_pairs: Minimum number of A/B pairs accepted by the solver
        axis_diversity_threshold: Minimum singular value ratio of the rotation stage
        rank_threshold: Minimum inverse condition number of the translation stage
        allow_unconverged_average: Accept a non-converged fixed-frame mean with a warning
    """

    variant: HandEyeVariant = HandEyeVariant.FIXED_CAMERA
    tolerance: float = DEFAULT_TOLERANCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    min_pairs: int = DEFAULT_MIN_PAIRS
    axis_diversity_threshold: float = DEFAULT_AXIS_DIVERSITY_THRESHOLD
    rank_threshold: float = DEFAULT_RANK_THRESHOLD
    allow_unconverged_average: bool = False

    def __post_init__(self):
        self.variant = HandEyeVariant.from_string(self.variant)
        self.validate()

    def validate(self) -> None:
        if not self.tolerance > 0:
            raise ValueError(f"tolerance must be a positive number, got {self.tolerance}")
        if int(self.max_iterations) < 1:
            raise ValueError(f"max_iterations must be at least 1, got {self.max_iterations}")
        if int(self.min_pairs) < 2:
            raise ValueError(f"min_pairs must be at least 2, got {self.min_pairs}")
        if not 0 < self.axis_diversity_threshold < 1:
            raise ValueError(f"axis_diversity_threshold must be in (0, 1), got {self.axis_diversity_threshold}")
        if not 0 < self.rank_threshold < 1:
            raise ValueError(f"rank_threshold must be in (0, 1), got {self.rank_threshold}")

    def solver_options(self) -> Dict[str, Any]:
        """Keyword arguments for solve_ax_xb."""
        return {
            'tolerance': self.tolerance,
            'min_pairs': int(self.min_pairs),
            'axis_diversity_threshold': self.axis_diversity_threshold,
            'rank_threshold': self.rank_threshold,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['variant'] = self.variant.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalibrationConfig':
        """
        Create a configuration from a dictionary.

        Missing keys keep their defaults.

        Raises:
            ValueError: If the dictionary holds unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}. "
                             f"Available keys: {', '.join(sorted(known))}")
        return cls(**data)


def load_config(path: str) -> CalibrationConfig:
    """Load a CalibrationConfig from a JSON file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with open(path, 'r') as f:
        data = json.load(f)
    return CalibrationConfig.from_dict(data)


def save_config(config: CalibrationConfig, path: str) -> None:
    """Write a CalibrationConfig to a JSON file, creating parent directories."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)


def get_configuration_schema() -> Dict[str, Any]:
    """
    Describe the configuration fields for UIs and documentation.

    Returns:
        Dict with a name, description and one entry per parameter
    """
    return {
        "name": "Hand-Eye Calibration",
        "description": "Closed-form AX = XB hand-eye calibration settings",
        "parameters": [
            {
                "name": "variant",
                "label": "Set-up",
                "type": "choice",
                "default": HandEyeVariant.FIXED_CAMERA.value,
                "choices": [v.value for v in HandEyeVariant],
                "description": "Fixed camera with target on the gripper, or camera on the gripper"
            },
            {
                "name": "tolerance",
                "label": "SE(3) Tolerance",
                "type": "float",
                "default": DEFAULT_TOLERANCE,
                "min": 0.0,
                "description": "Rigid-transform validity tolerance and averaging convergence threshold"
            },
            {
                "name": "max_iterations",
                "label": "Averaging Iterations",
                "type": "integer",
                "default": DEFAULT_MAX_ITERATIONS,
                "min": 1,
                "description": "Iteration cap for the rotation mean"
            },
            {
                "name": "min_pairs",
                "label": "Minimum Pairs",
                "type": "integer",
                "default": DEFAULT_MIN_PAIRS,
                "min": 2,
                "description": "Minimum number of relative-motion pairs"
            },
            {
                "name": "axis_diversity_threshold",
                "label": "Axis Diversity",
                "type": "float",
                "default": DEFAULT_AXIS_DIVERSITY_THRESHOLD,
                "min": 0.0,
                "max": 1.0,
                "description": "Minimum second-to-first singular value ratio of the rotation stage"
            },
            {
                "name": "rank_threshold",
                "label": "Rank Threshold",
                "type": "float",
                "default": DEFAULT_RANK_THRESHOLD,
                "min": 0.0,
                "max": 1.0,
                "description": "Minimum inverse condition number of the translation system"
            },
            {
                "name": "allow_unconverged_average",
                "label": "Accept Unconverged Mean",
                "type": "boolean",
                "default": False,
                "description": "Return a non-converged fixed-frame mean with a warning instead of failing"
            },
        ]
    }

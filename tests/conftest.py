"""
pytest configuration file for hand-eye calibration toolkit
"""
import pytest
import sys
import numpy as np
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from handeye.correspondence import HandEyeVariant
from handeye.reprojection import generate_checkerboard_points
from handeye.se3 import rotation_z, translation
from tests.synthetic_data import make_scene


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def temp_output_dir(tmp_path):
    """Create a temporary directory for test outputs."""
    output_dir = tmp_path / "test_output"
    output_dir.mkdir()
    return output_dir


@pytest.fixture
def mock_camera_matrix():
    """Sample camera matrix for testing."""
    return np.array([
        [800.0, 0.0, 320.0],
        [0.0, 800.0, 240.0],
        [0.0, 0.0, 1.0]
    ], dtype=np.float64)


@pytest.fixture
def mock_distortion_coefficients():
    """Sample distortion coefficients for testing."""
    return np.array([-0.2, 0.1, 0.001, 0.001, -0.05], dtype=np.float64)


@pytest.fixture
def checkerboard_points():
    return generate_checkerboard_points(6, 5, 0.02)


@pytest.fixture
def true_hand_eye():
    """X = translation (100, 0, 50) with a 30 degree rotation about z."""
    return translation(100.0, 0.0, 50.0) @ rotation_z(np.radians(30.0))


@pytest.fixture
def fixed_camera_scene():
    return make_scene(HandEyeVariant.FIXED_CAMERA)


@pytest.fixture
def eye_in_hand_scene():
    return make_scene(HandEyeVariant.EYE_IN_HAND)


@pytest.fixture(params=[HandEyeVariant.FIXED_CAMERA, HandEyeVariant.EYE_IN_HAND], ids=lambda v: v.value)
def scene(request):
    """Synthetic scene for each hand-eye variant."""
    return make_scene(request.param)


@pytest.fixture
def scene_factory():
    return make_scene


# Test markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )

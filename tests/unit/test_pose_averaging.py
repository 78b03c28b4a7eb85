"""
Unit tests for pose averaging.
"""
import pytest
import numpy as np

from handeye.exceptions import InsufficientDataError, InvalidTransformError, NonConvergenceError
from handeye.pose_averaging import average_poses, average_poses_with_info
from handeye.se3 import is_valid, rotation_distance, rotation_exp, translation, xyz_rpy_to_matrix


def true_mean():
    return xyz_rpy_to_matrix([0.5, -0.2, 1.0, 0.3, 0.6, -1.1])


def perturbed(T, w, dt):
    result = T.copy()
    result[:3, :3] = T[:3, :3] @ rotation_exp(w)
    result[:3, 3] = T[:3, 3] + dt
    return result


class TestAveragePoses:
    """Test the geodesic mean of rigid transforms."""

    @pytest.mark.unit
    def test_single_element_returned_exactly(self):
        T = true_mean()
        result = average_poses([T])
        np.testing.assert_array_equal(result, T)
        assert result is not T

    @pytest.mark.unit
    def test_identical_copies_are_idempotent(self):
        T = true_mean()
        result, iterations, update_norm = average_poses_with_info([T.copy() for _ in range(5)])
        np.testing.assert_array_almost_equal(result, T, decimal=12)
        assert iterations == 0
        assert update_norm < 1e-8

    @pytest.mark.unit
    def test_symmetric_perturbations_recover_mean(self):
        T = true_mean()
        samples = []
        for w in ([0.05, 0.0, 0.0], [0.0, 0.08, 0.0], [0.0, 0.0, 0.03]):
            w = np.array(w)
            dt = np.array([0.01, -0.02, 0.005])
            samples.append(perturbed(T, w, dt))
            samples.append(perturbed(T, -w, -dt))

        result = average_poses(samples)

        assert is_valid(result)
        assert rotation_distance(result, T) < 1e-6
        np.testing.assert_array_almost_equal(result[:3, 3], T[:3, 3], decimal=10)

    @pytest.mark.unit
    def test_random_perturbations_converge_close_to_mean(self, rng):
        T = true_mean()
        samples = [perturbed(T, rng.normal(scale=0.01, size=3), rng.normal(scale=0.001, size=3))
                   for _ in range(200)]
        result, iterations, update_norm = average_poses_with_info(samples)
        assert update_norm < 1e-8
        assert iterations < 100
        assert rotation_distance(result, T) < 5e-3
        np.testing.assert_allclose(result[:3, 3], T[:3, 3], atol=5e-4)

    @pytest.mark.unit
    def test_weights(self):
        A = translation(0.0, 0.0, 0.0)
        B = translation(4.0, 0.0, 0.0)
        result = average_poses([A, B], weights=[3.0, 1.0])
        np.testing.assert_array_almost_equal(result[:3, 3], [1.0, 0.0, 0.0])

    @pytest.mark.unit
    def test_invalid_weights(self):
        T = true_mean()
        with pytest.raises(ValueError):
            average_poses([T, T], weights=[1.0])
        with pytest.raises(ValueError):
            average_poses([T, T], weights=[1.0, -1.0])
        with pytest.raises(ValueError):
            average_poses([T, T], weights=[0.0, 0.0])

    @pytest.mark.unit
    def test_empty_input(self):
        with pytest.raises(InsufficientDataError):
            average_poses([])

    @pytest.mark.unit
    def test_invalid_input(self):
        bad = np.eye(4)
        bad[:3, :3] *= 2.0
        with pytest.raises(InvalidTransformError):
            average_poses([np.eye(4), bad])

    @pytest.mark.unit
    def test_iteration_cap_raises_with_best_effort(self):
        T = true_mean()
        samples = [perturbed(T, np.array([0.3, 0.0, 0.0]), np.zeros(3)),
                   perturbed(T, np.array([0.0, 0.4, 0.0]), np.zeros(3))]

        with pytest.raises(NonConvergenceError) as exc_info:
            average_poses(samples, max_iterations=1)

        error = exc_info.value
        assert error.iterations == 1
        assert error.update_norm > 1e-8
        assert error.transform is not None
        assert is_valid(error.transform)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

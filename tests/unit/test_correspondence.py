"""
Unit tests for observation correspondences and fixed-frame estimation.
"""
import warnings

import pytest
import numpy as np

from handeye.correspondence import (
    HandEyeVariant,
    Observation,
    build_relative_pose_pairs,
    estimate_fixed_frame,
    fixed_frame_candidates,
    pairs_from_observations,
    predicted_target2cam,
)
from handeye.exceptions import InsufficientDataError, InvalidTransformError, NonConvergenceError
from handeye.se3 import rotation_distance, rotation_x, translation


class TestHandEyeVariant:
    """Test variant parsing and naming."""

    @pytest.mark.unit
    @pytest.mark.parametrize("name,expected", [
        ("eye_to_hand", HandEyeVariant.FIXED_CAMERA),
        ("Fixed-Camera", HandEyeVariant.FIXED_CAMERA),
        ("eye in hand", HandEyeVariant.EYE_IN_HAND),
        ("hand_in_eye", HandEyeVariant.EYE_IN_HAND),
        (HandEyeVariant.EYE_IN_HAND, HandEyeVariant.EYE_IN_HAND),
    ])
    def test_from_string(self, name, expected):
        assert HandEyeVariant.from_string(name) is expected

    @pytest.mark.unit
    def test_unknown_variant_lists_choices(self):
        with pytest.raises(ValueError, match="Available variants"):
            HandEyeVariant.from_string("stereo")

    @pytest.mark.unit
    def test_frame_names(self):
        assert HandEyeVariant.FIXED_CAMERA.hand_eye_name == "end2target"
        assert HandEyeVariant.FIXED_CAMERA.fixed_frame_name == "cam2base"
        assert HandEyeVariant.EYE_IN_HAND.hand_eye_name == "cam2end"
        assert HandEyeVariant.EYE_IN_HAND.fixed_frame_name == "target2base"


class TestObservation:
    """Test the observation container."""

    @pytest.mark.unit
    def test_arrays_are_read_only(self):
        obs = Observation(np.eye(4), np.eye(4), image_points=np.zeros((4, 1, 2)), label="img")
        assert obs.image_points.shape == (4, 2)
        with pytest.raises(ValueError):
            obs.target2cam[0, 3] = 1.0

    @pytest.mark.unit
    def test_input_not_aliased(self):
        pose = np.eye(4)
        obs = Observation(pose, np.eye(4))
        pose[0, 3] = 5.0
        assert obs.target2cam[0, 3] == 0.0

    @pytest.mark.unit
    def test_shape_checked(self):
        with pytest.raises(ValueError, match="target2cam"):
            Observation(np.eye(3), np.eye(4))

    @pytest.mark.unit
    def test_validate_names_label(self):
        bad = np.eye(4)
        bad[0, 0] = 3.0
        with pytest.raises(InvalidTransformError, match="image_007 end2base"):
            Observation(np.eye(4), bad, label="image_007").validate()


class TestRelativePosePairs:
    """Test A/B construction for both variants."""

    @pytest.mark.unit
    def test_pair_count_and_order(self, fixed_camera_scene):
        pairs = build_relative_pose_pairs(fixed_camera_scene['target2cam_list'],
                                          fixed_camera_scene['end2base_list'])
        n = len(fixed_camera_scene['observations'])
        assert len(pairs) == n * (n - 1) // 2
        assert [(p.i, p.j) for p in pairs[:3]] == [(0, 1), (0, 2), (0, 3)]
        assert all(p.i < p.j for p in pairs)

    @pytest.mark.unit
    def test_pairs_satisfy_ax_xb(self, scene):
        X = scene['X']
        pairs = pairs_from_observations(scene['observations'], scene['variant'])
        for pair in pairs:
            np.testing.assert_allclose(pair.A @ X, X @ pair.B, atol=1e-9)

    @pytest.mark.unit
    def test_variants_differ(self, fixed_camera_scene):
        observations = fixed_camera_scene['observations']
        fixed = pairs_from_observations(observations, HandEyeVariant.FIXED_CAMERA)
        in_hand = pairs_from_observations(observations, HandEyeVariant.EYE_IN_HAND)
        assert not np.allclose(fixed[0].A, in_hand[0].A)

    @pytest.mark.unit
    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="must match"):
            build_relative_pose_pairs([np.eye(4)] * 3, [np.eye(4)] * 2)

    @pytest.mark.unit
    def test_needs_two_observations(self):
        with pytest.raises(InsufficientDataError):
            build_relative_pose_pairs([np.eye(4)], [np.eye(4)])

    @pytest.mark.unit
    def test_invalid_pose_reported_by_index(self):
        bad = np.eye(4)
        bad[3, 3] = 2.0
        with pytest.raises(InvalidTransformError, match=r"end2base\[2\]"):
            build_relative_pose_pairs([np.eye(4)] * 3, [np.eye(4), np.eye(4), bad])


class TestFixedFrame:
    """Test estimation of the world-fixed frame."""

    @pytest.mark.unit
    def test_candidates_agree_for_exact_data(self, scene):
        candidates = fixed_frame_candidates(scene['X'], scene['observations'], scene['variant'])
        assert len(candidates) == len(scene['observations'])
        for candidate in candidates:
            np.testing.assert_allclose(candidate, scene['fixed_frame'], atol=1e-9)

    @pytest.mark.unit
    def test_estimate_recovers_fixed_frame(self, scene):
        fixed_frame = estimate_fixed_frame(scene['X'], scene['observations'], scene['variant'])
        np.testing.assert_allclose(fixed_frame, scene['fixed_frame'], atol=1e-9)

    @pytest.mark.unit
    def test_predicted_extrinsics_match_observations(self, scene):
        for obs in scene['observations']:
            predicted = predicted_target2cam(scene['X'], scene['fixed_frame'], obs.end2base, scene['variant'])
            np.testing.assert_allclose(predicted, obs.target2cam, atol=1e-9)

    @pytest.mark.unit
    def test_unconverged_mean_raises_by_default(self, fixed_camera_scene):
        observations = fixed_camera_scene['observations'][:2]
        X = fixed_camera_scene['X'] @ rotation_x(0.4) @ translation(0.01, 0.0, 0.0)
        with pytest.raises(NonConvergenceError):
            estimate_fixed_frame(X, observations, HandEyeVariant.FIXED_CAMERA, max_iterations=1)

    @pytest.mark.unit
    def test_unconverged_mean_accepted_with_warning(self, fixed_camera_scene):
        observations = fixed_camera_scene['observations'][:2]
        X = fixed_camera_scene['X'] @ rotation_x(0.4)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            fixed_frame = estimate_fixed_frame(X, observations, HandEyeVariant.FIXED_CAMERA,
                                               max_iterations=1, allow_unconverged=True)
        assert any("cam2base" in str(w.message) for w in caught)
        assert rotation_distance(fixed_frame, fixed_camera_scene['fixed_frame']) < np.pi


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Synthetic calibration data shared by the test suite.
"""
import numpy as np

from handeye.correspondence import HandEyeVariant, Observation
from handeye.reprojection import PinholeIntrinsics, generate_checkerboard_points, project_points
from handeye.se3 import from_rotation_translation, invert, rotation_about_axis, translation


def random_rotation(rng, min_angle=0.3, max_angle=2.5):
    """Random 4x4 rotation with an angle away from 0 and pi."""
    axis = rng.normal(size=3)
    return rotation_about_axis(axis, rng.uniform(min_angle, max_angle))


def random_transform(rng, translation_scale=200.0, min_angle=0.3, max_angle=2.5):
    T = random_rotation(rng, min_angle, max_angle)
    T[:3, 3] = rng.uniform(-translation_scale, translation_scale, 3)
    return T


def make_scene(variant, count=8, seed=0, pixel_noise=0.0):
    """
    Synthetic calibration scene with consistent camera extrinsics and robot poses.

    Units are meters; the 6x5 checkerboard stays in front of the camera.
    """
    rng = np.random.default_rng(seed)
    variant = HandEyeVariant.from_string(variant)

    camera_matrix = np.array([[800.0, 0.0, 320.0],
                              [0.0, 800.0, 240.0],
                              [0.0, 0.0, 1.0]])
    intrinsics = PinholeIntrinsics(camera_matrix)
    fiducial_points = generate_checkerboard_points(6, 5, 0.02)

    if variant is HandEyeVariant.FIXED_CAMERA:
        # end2target and cam2base
        X = translation(0.05, -0.02, 0.1) @ rotation_about_axis([0.2, 1.0, 0.3], 0.6)
        fixed_frame = translation(0.8, 0.1, 0.6) @ rotation_about_axis([1.0, 0.0, 0.2], 2.2)
    else:
        # cam2end and target2base
        X = translation(0.03, 0.07, 0.12) @ rotation_about_axis([0.1, 0.3, 1.0], 0.9)
        fixed_frame = translation(0.5, -0.2, 0.05) @ rotation_about_axis([0.0, 0.4, 1.0], 1.2)

    observations = []
    for i in range(count):
        orientation = rotation_about_axis(rng.normal(size=3), rng.uniform(0.2, 0.5))
        target2cam = from_rotation_translation(
            orientation[:3, :3], [-0.05, -0.04, 0.5] + rng.uniform(-0.05, 0.05, 3))

        if variant is HandEyeVariant.FIXED_CAMERA:
            end2base = fixed_frame @ target2cam @ X
        else:
            end2base = fixed_frame @ invert(target2cam) @ invert(X)

        image_points = project_points(intrinsics, target2cam, fiducial_points)
        if pixel_noise > 0:
            image_points = image_points + rng.normal(scale=pixel_noise, size=image_points.shape)

        observations.append(Observation(target2cam, end2base, image_points=image_points, label=f"image_{i:03d}"))

    return {
        'variant': variant,
        'X': X,
        'fixed_frame': fixed_frame,
        'observations': observations,
        'intrinsics': intrinsics,
        'fiducial_points': fiducial_points,
        'target2cam_list': [obs.target2cam for obs in observations],
        'end2base_list': [obs.end2base for obs in observations],
    }


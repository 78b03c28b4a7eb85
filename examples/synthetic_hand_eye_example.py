#!/usr/bin/env python3
"""
Synthetic Hand-Eye Calibration Example
======================================

Runs both hand-eye set-ups on synthetic data:
1. Build a scene with a known hand-eye transform and world-fixed frame
2. Generate camera extrinsics, robot poses and noisy checkerboard detections
3. Calibrate, drop the worst observation and calibrate again
4. Refine with nonlinear optimization and print the recovered transforms
"""

import os
import sys

import numpy as np

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from handeye import (
    HandEyeCalibrator,
    HandEyeVariant,
    Observation,
    PinholeIntrinsics,
    accept_calibration,
    generate_checkerboard_points,
    project_points,
)
from handeye.se3 import (
    from_rotation_translation,
    invert,
    matrix_to_xyz_rpy,
    rotation_about_axis,
    rotation_distance,
    translation,
)


def generate_observations(variant, X, fixed_frame, intrinsics, fiducial_points, count=10, pixel_noise=0.3, seed=0):
    """Camera extrinsics, matching robot poses and noisy detections for one set-up."""
    rng = np.random.default_rng(seed)
    observations = []
    for i in range(count):
        orientation = rotation_about_axis(rng.normal(size=3), rng.uniform(0.2, 0.5))
        target2cam = from_rotation_translation(orientation[:3, :3],
                                               [-0.1, -0.07, 0.6] + rng.uniform(-0.05, 0.05, 3))
        if variant is HandEyeVariant.FIXED_CAMERA:
            end2base = fixed_frame @ target2cam @ X
        else:
            end2base = fixed_frame @ invert(target2cam) @ invert(X)

        image_points = project_points(intrinsics, target2cam, fiducial_points)
        image_points += rng.normal(scale=pixel_noise, size=image_points.shape)
        observations.append(Observation(target2cam, end2base, image_points=image_points, label=f"pose_{i:02d}"))
    return observations


def run_variant(variant, X_true, fixed_true, intrinsics, fiducial_points):
    print(f"\n{variant.value} calibration")
    print("-" * 40)

    observations = generate_observations(variant, X_true, fixed_true, intrinsics, fiducial_points)
    calibrator = HandEyeCalibrator(observations, variant=variant, intrinsics=intrinsics,
                                   fiducial_points=fiducial_points)

    calibrator.calibrate(verbose=True)

    worst_index, worst_error = calibrator.worst_observations(1)[0]
    print(f"Worst observation: {calibrator.observations[worst_index].label} ({worst_error:.3f} pixels)")
    calibrator.remove_observations([worst_index])
    result = calibrator.calibrate()

    initial_error, final_error = calibrator.optimize_calibration(verbose=True)

    X = calibrator.get_hand_eye_matrix()
    print(f"\n{variant.hand_eye_name} [x, y, z, roll, pitch, yaw]:")
    print(f"   recovered: {np.round(matrix_to_xyz_rpy(X), 5)}")
    print(f"   true:      {np.round(matrix_to_xyz_rpy(X_true), 5)}")
    print(f"   rotation error: {np.degrees(rotation_distance(X, X_true)):.5f} deg")
    print(f"   translation error: {np.linalg.norm(X[:3, 3] - X_true[:3, 3]) * 1000:.3f} mm")
    print(f"Reprojection error: {initial_error:.4f} -> {final_error:.4f} pixels "
          f"({result['total_images']} observations)")

    if accept_calibration(final_error, threshold=1.0):
        print("✅ Calibration accepted")
    else:
        print("❌ Calibration rejected, collect more observations")


def main():
    """Main synthetic hand-eye calibration example."""
    print("Synthetic Hand-Eye Calibration Example")
    print("=" * 40)

    camera_matrix = np.array([[900.0, 0.0, 640.0],
                              [0.0, 900.0, 360.0],
                              [0.0, 0.0, 1.0]])
    intrinsics = PinholeIntrinsics(camera_matrix, [0.05, -0.02, 0.0, 0.0, 0.0])
    fiducial_points = generate_checkerboard_points(11, 8, 0.02)

    # Fixed camera: X = end2target, fixed frame = cam2base
    end2target = translation(0.0, 0.05, 0.12) @ rotation_about_axis([1.0, 0.2, 0.0], 0.4)
    cam2base = translation(1.0, 0.0, 0.8) @ rotation_about_axis([1.0, 0.0, 0.0], 2.4)
    run_variant(HandEyeVariant.FIXED_CAMERA, end2target, cam2base, intrinsics, fiducial_points)

    # Eye in hand: X = cam2end, fixed frame = target2base
    cam2end = translation(0.04, -0.06, 0.1) @ rotation_about_axis([0.0, 0.0, 1.0], 1.57)
    target2base = translation(0.6, 0.1, 0.0) @ rotation_about_axis([0.0, 1.0, 0.3], 0.3)
    run_variant(HandEyeVariant.EYE_IN_HAND, cam2end, target2base, intrinsics, fiducial_points)


if __name__ == "__main__":
    main()

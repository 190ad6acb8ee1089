"""
Pose Solver Validation Script

This script validates PnPSolver on synthetic poses. Device landmarks are
projected with a known rotation and translation (plus optional pixel noise),
solved with PnPSolver and with cv2.solvePnP, and both results are compared
against ground truth.

No images are needed: every trial is a random pose in front of the camera.
"""

import argparse
import logging

import cv2
import numpy as np
from scipy.spatial.transform import Rotation as R

from ledpose import CameraIntrinsics, PnPSolver, get_device


# Device frame (X right, Y up, Z toward camera) to camera frame (x right, y down, z forward)
FACING_CAMERA = np.diag([1.0, -1.0, -1.0])

IMAGE_SIZE = (1280, 720)


def random_pose(rng: np.random.Generator, max_tilt_deg: float = 35.0):
    """Random rotation facing the camera and a translation in front of it (mm)."""
    angles = rng.uniform(-max_tilt_deg, max_tilt_deg, size=3)
    rot = R.from_euler('xyz', angles, degrees=True).as_matrix() @ FACING_CAMERA
    tz = rng.uniform(300.0, 1500.0)
    tvec = np.array([rng.uniform(-0.15, 0.15) * tz, rng.uniform(-0.1, 0.1) * tz, tz])
    return rot, tvec


def project_points(points_3d, rot, tvec, camera_matrix):
    """Project 3D points to 2D pixel coordinates (no distortion)."""
    rvec, _ = cv2.Rodrigues(rot)
    points_2d, _ = cv2.projectPoints(points_3d, rvec, tvec, camera_matrix, np.zeros(5))
    return points_2d.reshape(-1, 2)


def rotation_error_deg(r_est, r_true):
    return float(np.degrees(R.from_matrix(r_est @ r_true.T).magnitude()))


def reprojection_rms(points_3d, points_2d, rvec, tvec, camera_matrix):
    projected, _ = cv2.projectPoints(points_3d, rvec, tvec, camera_matrix, np.zeros(5))
    errors = np.linalg.norm(projected.reshape(-1, 2) - points_2d, axis=1)
    return float(np.sqrt(np.mean(errors ** 2)))


def solve_opencv(points_3d, points_2d, camera_matrix):
    """Reference pose from OpenCV (SQPnP followed by LM refinement)."""
    ok, rvec, tvec = cv2.solvePnP(points_3d, points_2d, camera_matrix, np.zeros(5),
                                  flags=cv2.SOLVEPNP_SQPNP)
    if not ok:
        return None, None
    rvec, tvec = cv2.solvePnPRefineLM(points_3d, points_2d, camera_matrix, np.zeros(5), rvec, tvec)
    return rvec.reshape(3), tvec.reshape(3)


def summarize(name, values, unit):
    values = np.asarray(values)
    print(f"  {name}:")
    print(f"    Mean: {np.mean(values):.4f} {unit}")
    print(f"    Max:  {np.max(values):.4f} {unit}")
    print(f"    Min:  {np.min(values):.4f} {unit}")
    print(f"    Std:  {np.std(values):.4f} {unit}")


def validate(trials: int = 100, noise: float = 0.0, seed: int = 0, device_name: str = 'led_beacon'):
    """Run synthetic trials and print a comparison summary."""
    print("=" * 80)
    print("Pose Solver Validation")
    print("=" * 80)

    device = get_device(device_name)
    intrinsics = CameraIntrinsics.from_resolution(*IMAGE_SIZE)
    camera_matrix = intrinsics.matrix
    solver = PnPSolver(intrinsics=intrinsics)
    points_3d = np.array(device.points, dtype=np.float64)

    print(f"\nDevice: {device.name} ({len(device.feature_ids)} landmarks)")
    print(f"Camera: fx={intrinsics.fx:.1f} fy={intrinsics.fy:.1f} "
          f"cx={intrinsics.cx:.1f} cy={intrinsics.cy:.1f}")
    print(f"Trials: {trials} | Pixel noise: {noise:.2f}px | Seed: {seed}\n")

    rng = np.random.default_rng(seed)
    ours = {'rot': [], 'trans': [], 'reproj': [], 'iters': []}
    ref = {'rot': [], 'trans': [], 'reproj': []}
    failures = []

    for trial in range(trials):
        rot, tvec = random_pose(rng)
        clean = project_points(points_3d, rot, tvec, camera_matrix)
        observed = clean + rng.normal(0.0, noise, clean.shape) if noise > 0 else clean

        result = solver.solve(points_3d, observed)
        if not result.success:
            failures.append((trial, result.reason))
        else:
            pose = result.pose
            ours['rot'].append(rotation_error_deg(pose.rotation_matrix, rot))
            ours['trans'].append(float(np.linalg.norm(pose.tvec - tvec)))
            ours['reproj'].append(pose.reproj_error)
            ours['iters'].append(pose.iterations)

        rvec_cv, tvec_cv = solve_opencv(points_3d, observed, camera_matrix)
        if rvec_cv is not None:
            r_cv, _ = cv2.Rodrigues(rvec_cv)
            ref['rot'].append(rotation_error_deg(r_cv, rot))
            ref['trans'].append(float(np.linalg.norm(tvec_cv - tvec)))
            ref['reproj'].append(reprojection_rms(points_3d, observed, rvec_cv, tvec_cv, camera_matrix))

    print("-" * 80)
    print(f"PnPSolver: {len(ours['rot'])}/{trials} solved")
    if failures:
        for trial, reason in failures[:10]:
            print(f"  Trial {trial}: {reason}")
    if ours['rot']:
        summarize("Rotation error", ours['rot'], "deg")
        summarize("Translation error", ours['trans'], "mm")
        summarize("Reprojection error", ours['reproj'], "px")
        print(f"  Mean LM iterations: {np.mean(ours['iters']):.1f}")

    print("-" * 80)
    print(f"cv2.solvePnP: {len(ref['rot'])}/{trials} solved")
    if ref['rot']:
        summarize("Rotation error", ref['rot'], "deg")
        summarize("Translation error", ref['trans'], "mm")
        summarize("Reprojection error", ref['reproj'], "px")

    if ours['reproj']:
        print("\n" + "=" * 80)
        print("VALIDATION SUMMARY")
        print("=" * 80)
        mean_err = np.mean(ours['reproj'])
        excess = mean_err - (np.mean(ref['reproj']) if ref['reproj'] else 0.0)
        print(f"  Mean reprojection error: {mean_err:.3f} pixels ({excess:+.3f} vs OpenCV)")
        print(f"  Mean rotation error:     {np.mean(ours['rot']):.3f} degrees")
        print(f"  Mean translation error:  {np.mean(ours['trans']):.2f} mm")
        print("-" * 80)

        if mean_err < 1.0:
            print("  EXCELLENT: Mean error < 1 pixel - Pose solver is very accurate!")
        elif mean_err < 2.0:
            print("  GOOD: Mean error < 2 pixels - Pose solver is accurate.")
        elif mean_err < 5.0:
            print("  FAIR: Mean error < 5 pixels - Pose solver is acceptable.")
        else:
            print("  POOR: Mean error >= 5 pixels - Check the solver configuration.")

    return ours, ref, failures


def main():
    parser = argparse.ArgumentParser(description='Validate PnPSolver against cv2.solvePnP')
    parser.add_argument('--trials', type=int, default=100, help='Number of random poses')
    parser.add_argument('--noise', type=float, default=0.0, help='Gaussian pixel noise (std, px)')
    parser.add_argument('--seed', type=int, default=0, help='Random seed')
    parser.add_argument('--device', type=str, default='led_beacon', help='Target model name')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    validate(args.trials, args.noise, args.seed, args.device)


if __name__ == "__main__":
    main()

"""Pytest configuration and shared fixtures for the LED pose pipeline tests.

Provides synthetic score maps, candidate/strip builders, camera intrinsics and
a pinhole projection helper so tests can generate exact observations from a
known pose.
"""
import logging
import sys
from pathlib import Path

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ledpose import (BlobCandidate, CameraIntrinsics, LED_BEACON, STRIP_BEACON, ScoreMap,
                     StripFeature)


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logging.getLogger('matplotlib').setLevel(logging.WARNING)

# Device frame (X right, Y up, Z toward camera) to camera frame (x right, y down, z forward)
FACING_CAMERA = np.diag([1.0, -1.0, -1.0])


def facing_rotation(rx: float = 0.0, ry: float = 0.0, rz: float = 0.0) -> np.ndarray:
    """Rotation showing the device front to the camera, tilted by xyz Euler angles in degrees."""
    return Rotation.from_euler('xyz', [rx, ry, rz], degrees=True).as_matrix() @ FACING_CAMERA


def project(points_3d, rotation, tvec, intrinsics: CameraIntrinsics) -> np.ndarray:
    """Pinhole projection to pixels."""
    cam = np.asarray(points_3d, dtype=np.float64) @ np.asarray(rotation).T + np.asarray(tvec)
    u = intrinsics.fx * cam[:, 0] / cam[:, 2] + intrinsics.cx
    v = intrinsics.fy * cam[:, 1] / cam[:, 2] + intrinsics.cy
    return np.column_stack([u, v])


def render_score_map(width: int = 160, height: int = 120, spots=(), strips=(),
                     downscale: int = 1, diff_value: int = 120) -> ScoreMap:
    """
    Synthetic score map.

    Args:
        spots: (x, y, radius) discs with a Gaussian brightness falloff
        strips: (x0, y0, x1, y1) inclusive rectangles of uniform brightness
    """
    yy, xx = np.mgrid[0:height, 0:width]
    mask = np.zeros((height, width), dtype=bool)
    bright = np.zeros((height, width))
    diff = np.zeros((height, width))

    for x, y, r in spots:
        d2 = (xx - x) ** 2 + (yy - y) ** 2
        disc = d2 <= r * r
        mask |= disc
        bright = np.maximum(bright, np.where(disc, 255.0 * np.exp(-d2 / (2.0 * max(r, 1) ** 2)), 0.0))
        diff[disc] = diff_value

    for x0, y0, x1, y1 in strips:
        mask[y0:y1 + 1, x0:x1 + 1] = True
        bright[y0:y1 + 1, x0:x1 + 1] = np.maximum(bright[y0:y1 + 1, x0:x1 + 1], 220.0)
        diff[y0:y1 + 1, x0:x1 + 1] = diff_value

    return ScoreMap(mask.astype(np.uint8) * 255, diff.astype(np.uint8), bright.astype(np.uint8), downscale)


def make_candidate(x: float, y: float, brightness: float = 200.0) -> BlobCandidate:
    return BlobCandidate(x=x, y=y, px=x * 100, py=y * 100, area=9,
                         brightness=brightness, max_brightness=brightness,
                         real_brightness=brightness, max_real_brightness=brightness)


def make_strip(left, right) -> StripFeature:
    """Strip feature from normalized left/right edge midpoints."""
    cx = (left[0] + right[0]) / 2.0
    cy = (left[1] + right[1]) / 2.0
    return StripFeature(x=cx, y=cy, px=cx * 100, py=cy * 100, area=120,
                        brightness=150.0, max_brightness=150.0,
                        real_brightness=220.0, max_real_brightness=220.0,
                        edge_left=tuple(left), edge_right=tuple(right))


@pytest.fixture
def intrinsics():
    """640x480 camera with an 800 px focal length."""
    return CameraIntrinsics(800.0, 800.0, 320.0, 240.0)


@pytest.fixture
def led_beacon():
    return LED_BEACON


@pytest.fixture
def strip_beacon():
    return STRIP_BEACON


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def beacon_score_map():
    """
    Score map with the five LED_BEACON lights seen at 400 mm.

    Returns:
        (score_map, intrinsics, rotation, tvec)
    """
    intr = CameraIntrinsics(300.0, 300.0, 160.0, 120.0)
    rotation = facing_rotation(8.0, -6.0, 4.0)
    tvec = np.array([5.0, -3.0, 400.0])
    pixels = project(LED_BEACON.points, rotation, tvec, intr)
    score_map = render_score_map(320, 240, spots=[(u, v, 2) for u, v in pixels])
    return score_map, intr, rotation, tvec

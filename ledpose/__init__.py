"""
LED Pose Modules

This package contains the components of the LED target 6-DoF pose pipeline:
- preprocessing: Builds the blue-differential score map from a BGR frame
- blob_detection: Union-Find blobs, light strips and strip edge midpoints
- peak_detection: Point LEDs via blur + non-maximum suppression
- geometry_matching: 2D-3D correspondences (strip-anchored or rigid pattern)
- pnp_solver: DLT + Levenberg-Marquardt pose solver
- tracking: Per-feature Kalman filter bank
- localizer: Detection state machine driving the per-frame pipeline
"""

from .blob_detection import BlobDetector, UnionFind
from .config import PipelineConfig
from .device import DEVICES, LED_BEACON, STRIP_BEACON, DeviceGeometry, Landmark, get_device
from .geometry_matching import GeometryMatcher, MatchResult, QuickCheck
from .localizer import DetectionState, FrameResult, LEDPoseLocalizer, merge_candidates
from .peak_detection import PeakDetector
from .pnp_solver import CameraIntrinsics, PnPSolver, PoseEstimate, PoseResult
from .preprocessing import ScoreMapBuilder
from .tracking import FeatureTracker, ScalarKalman, TrackerUpdate
from .types import (BlobCandidate, Candidate, CorrespondenceSet, FeatureObservation,
                    PeakCandidate, ScoreMap, StripFeature, TrackedFeature)

__all__ = [
    'PipelineConfig',
    'ScoreMap',
    'Candidate',
    'BlobCandidate',
    'PeakCandidate',
    'StripFeature',
    'CorrespondenceSet',
    'FeatureObservation',
    'TrackedFeature',
    'Landmark',
    'DeviceGeometry',
    'LED_BEACON',
    'STRIP_BEACON',
    'DEVICES',
    'get_device',
    'ScoreMapBuilder',
    'UnionFind',
    'BlobDetector',
    'PeakDetector',
    'GeometryMatcher',
    'MatchResult',
    'QuickCheck',
    'CameraIntrinsics',
    'PnPSolver',
    'PoseEstimate',
    'PoseResult',
    'ScalarKalman',
    'FeatureTracker',
    'TrackerUpdate',
    'DetectionState',
    'FrameResult',
    'LEDPoseLocalizer',
    'merge_candidates'
]

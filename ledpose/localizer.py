"""
Localizer Module

Frame-by-frame orchestration of the LED pose pipeline and its detection state
machine:

    idle -> scanning -> candidate -> locked -> tracking
    tracking -> scanning   (tracker reports loss)
    candidate -> scanning  (quick check no longer promising or patience spent)

While scanning, every frame runs feature extraction plus the full geometry
match. Once locked, fresh candidates are matched to the tracker predictions
and the pose is solved from the tracked features directly.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .blob_detection import BlobDetector
from .config import PipelineConfig
from .device import LED_BEACON, DeviceGeometry
from .geometry_matching import GeometryMatcher, MatchResult, QuickCheck
from .peak_detection import PeakDetector
from .pnp_solver import CameraIntrinsics, PnPSolver, PoseEstimate, PoseResult
from .tracking import FeatureTracker
from .types import Candidate, CorrespondenceSet, FeatureObservation, ScoreMap, StripFeature, TrackedFeature

logger = logging.getLogger(__name__)


class DetectionState(str, Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    CANDIDATE = 'candidate'
    LOCKED = 'locked'
    TRACKING = 'tracking'


@dataclass
class FrameResult:
    frame_index: int
    state: DetectionState
    transitions: List[DetectionState] = field(default_factory=list)
    candidates: List[Candidate] = field(default_factory=list)
    strips: List[StripFeature] = field(default_factory=list)
    quick_check: Optional[QuickCheck] = None
    match: Optional[MatchResult] = None
    correspondences: Optional[CorrespondenceSet] = None
    tracked: List[TrackedFeature] = field(default_factory=list)
    pose: Optional[PoseEstimate] = None
    pose_result: Optional[PoseResult] = None
    stability: float = 0.0
    reason: str = ''

    def to_dict(self) -> dict:
        """JSON-friendly summary."""
        return {
            'frame': self.frame_index,
            'state': self.state.value,
            'transitions': [s.value for s in self.transitions],
            'candidates': len(self.candidates),
            'strips': len(self.strips),
            'matched': list(self.correspondences.feature_ids) if self.correspondences is not None else [],
            'stability': self.stability,
            'pose': self.pose.to_dict() if self.pose is not None else None,
            'reason': self.reason,
        }


def merge_candidates(peaks: Sequence[Candidate], blobs: Sequence[Candidate],
                     merge_distance: float = 0.02) -> List[Candidate]:
    """
    Merge peak and blob candidates.

    Peaks keep priority; a blob is added only when no peak lies within
    merge_distance (normalized units).
    """
    merged = list(peaks)
    if not peaks:
        return merged + list(blobs)
    peak_xy = np.array([p.position for p in peaks], dtype=np.float64)
    for blob in blobs:
        if np.min(np.hypot(peak_xy[:, 0] - blob.x, peak_xy[:, 1] - blob.y)) > merge_distance:
            merged.append(blob)
    return merged


def greedy_assign(predictions: Sequence[FeatureObservation], points: Sequence[Tuple[float, float]],
                  radius: float) -> Dict[str, Tuple[float, float]]:
    """Globally greedy nearest assignment; every point and prediction is used once."""
    if not predictions or not points:
        return {}
    pred = np.array([(p.x, p.y) for p in predictions], dtype=np.float64)
    pts = np.asarray(points, dtype=np.float64)
    dist = np.hypot(pred[:, None, 0] - pts[None, :, 0], pred[:, None, 1] - pts[None, :, 1])

    pairs = np.argwhere(dist <= radius)
    order = np.argsort(dist[pairs[:, 0], pairs[:, 1]], kind='stable')
    used_pred, used_pts = set(), set()
    assigned = {}
    for i, j in pairs[order]:
        if i in used_pred or j in used_pts:
            continue
        used_pred.add(i)
        used_pts.add(j)
        assigned[predictions[i].feature_id] = (float(pts[j, 0]), float(pts[j, 1]))
    return assigned


class LEDPoseLocalizer:
    """Drives detection, matching, tracking and pose solving for one target."""

    def __init__(self, config: dict = None, device: DeviceGeometry = None,
                 intrinsics: CameraIntrinsics = None):
        """
        Initialize localizer.

        Args:
            config: Optional config dict, uses PipelineConfig.LOCALIZER if None
            device: Target model, LED_BEACON if None
            intrinsics: Camera intrinsics; estimated from the frame size if None
        """
        self.config = config or PipelineConfig.LOCALIZER
        self.point_search_radius = self.config['POINT_SEARCH_RADIUS']
        self.edge_search_radius = self.config['EDGE_SEARCH_RADIUS']
        self.merge_distance = self.config['MERGE_DISTANCE']
        self.max_reproj_error = self.config['MAX_REPROJ_ERROR']
        self.candidate_patience = self.config['CANDIDATE_PATIENCE']
        self.use_peaks = self.config['USE_PEAKS']
        self.use_strips = self.config['USE_STRIPS']

        self.device = device or LED_BEACON
        self.blob_detector = BlobDetector()
        self.peak_detector = PeakDetector()
        self.matcher = GeometryMatcher(device=self.device)
        self.solver = PnPSolver(intrinsics=intrinsics)
        self.tracker = FeatureTracker(feature_ids=self.device.feature_ids)
        self.min_correspondences = self.solver.min_correspondences

        self._explicit_intrinsics = intrinsics is not None
        self._frame_size = None
        self.state = DetectionState.IDLE
        self.frame_index = 0
        self.failed_matches = 0
        self.last_pose: Optional[PoseEstimate] = None

    # Control -------------------------------------------------------------

    def _enter(self, state: DetectionState, transitions: List[DetectionState]):
        if state == self.state:
            return
        logger.info("Detection state %s -> %s", self.state.value, state.value)
        self.state = state
        transitions.append(state)

    def start(self):
        if self.state == DetectionState.IDLE:
            self._enter(DetectionState.SCANNING, [])

    def stop(self):
        self.tracker.reset()
        self.failed_matches = 0
        self._enter(DetectionState.IDLE, [])

    def reset(self):
        """Drop tracking state and go back to a full search."""
        self.tracker.reset()
        self.failed_matches = 0
        self.last_pose = None
        if self.state != DetectionState.IDLE:
            self._enter(DetectionState.SCANNING, [])

    def set_device(self, device: DeviceGeometry):
        logger.info("Switching device model to %s", device.name)
        self.device = device
        self.matcher.set_device(device)
        self.tracker.set_feature_ids(device.feature_ids)
        self.reset()

    def set_intrinsics(self, intrinsics: CameraIntrinsics):
        self.solver.set_intrinsics(intrinsics)
        self._explicit_intrinsics = True

    def set_sensitivity(self, level: str):
        self.matcher.set_sensitivity(level)

    def set_expected_feature_size(self, pixel_diameter: float):
        self.peak_detector.set_expected_feature_size(pixel_diameter)

    # Per-frame stages ------------------------------------------------------

    def detect_candidates(self, score_map: ScoreMap) -> List[Candidate]:
        blobs = self.blob_detector.detect(score_map)
        if not self.use_peaks:
            return list(blobs)
        peaks = self.peak_detector.detect(score_map)
        return merge_candidates(peaks, blobs, self.merge_distance)

    def detect_strips(self, score_map: ScoreMap) -> List[StripFeature]:
        if not (self.use_strips and self.device.has_strips):
            return []
        return self.blob_detector.detect_strips_with_edges(score_map)

    def reacquire(self, candidates: Sequence[Candidate], strips: Sequence[StripFeature]) -> List[FeatureObservation]:
        """Match fresh detections to tracker predictions by feature kind."""
        predictions = self.tracker.get_predictions()
        led_preds = [p for p in predictions if not self.device.is_edge(p.feature_id)]
        edge_preds = [p for p in predictions if self.device.is_edge(p.feature_id)]

        edge_points = []
        for strip in strips:
            if strip.edge_left is not None:
                edge_points.append(strip.edge_left)
            if strip.edge_right is not None:
                edge_points.append(strip.edge_right)

        assigned = greedy_assign(led_preds, [c.position for c in candidates], self.point_search_radius)
        assigned.update(greedy_assign(edge_preds, edge_points, self.edge_search_radius))
        return [FeatureObservation(fid, x, y) for fid, (x, y) in assigned.items()]

    def solve_pose(self, features: Sequence[Tuple[str, float, float]], score_map: ScoreMap) -> PoseResult:
        """Solve from (feature_id, x, y) tuples in normalized coordinates."""
        if len(features) < self.min_correspondences:
            return PoseResult(False, reason=f"only {len(features)} features for pose")
        obj = np.array([self.device.point3d(fid) for fid, _, _ in features])
        img = np.array([(x * score_map.frame_width, y * score_map.frame_height) for _, x, y in features])
        return self.solver.solve(obj, img)

    def _update_intrinsics(self, score_map: ScoreMap):
        size = (score_map.frame_width, score_map.frame_height)
        if self._explicit_intrinsics or size == self._frame_size:
            return
        self._frame_size = size
        intr = self.solver.estimate_intrinsics(*size)
        logger.debug("Estimated intrinsics for %dx%d: f=%.1f", size[0], size[1], intr.fx)

    def _publish(self, result: FrameResult, pose_result: PoseResult):
        result.pose_result = pose_result
        if not pose_result.success:
            result.reason = pose_result.reason
            return
        if pose_result.pose.reproj_error >= self.max_reproj_error:
            result.reason = f"reprojection error {pose_result.pose.reproj_error:.1f}px too high"
            return
        result.pose = pose_result.pose
        self.last_pose = pose_result.pose
        result.reason = 'pose published'

    def _search(self, score_map: ScoreMap, result: FrameResult):
        qc = self.matcher.quick_check(result.candidates, result.strips)
        result.quick_check = qc
        if qc.promising and self.state == DetectionState.SCANNING:
            self._enter(DetectionState.CANDIDATE, result.transitions)

        match = self.matcher.match(result.candidates, result.strips, score_map.aspect)
        result.match = match

        if match.success and len(match.correspondences) >= self.min_correspondences:
            cs = match.correspondences
            result.correspondences = cs
            self.failed_matches = 0
            self.tracker.reset()
            update = self.tracker.update(
                FeatureObservation(fid, float(x), float(y)) for fid, (x, y) in zip(cs.feature_ids, cs.points_2d))
            result.tracked = update.tracked
            result.stability = update.stability
            self._enter(DetectionState.LOCKED, result.transitions)
            self._enter(DetectionState.TRACKING, result.transitions)
            self._publish(result, self.solve_pose([(t.feature_id, t.x, t.y) for t in update.tracked], score_map))
            return

        result.reason = match.reason or qc.info
        if self.state == DetectionState.CANDIDATE:
            self.failed_matches += 1
            if not qc.promising or self.failed_matches >= self.candidate_patience:
                self.failed_matches = 0
                self._enter(DetectionState.SCANNING, result.transitions)

    def _track(self, score_map: ScoreMap, result: FrameResult):
        observations = self.reacquire(result.candidates, result.strips)
        update = self.tracker.update(observations)
        result.tracked = update.tracked
        result.stability = update.stability

        if not update.is_tracking:
            self.tracker.reset()
            self._enter(DetectionState.SCANNING, result.transitions)
            result.reason = 'tracking lost'
            return

        if update.tracked:
            ids = [t.feature_id for t in update.tracked]
            result.correspondences = CorrespondenceSet(
                [(t.x, t.y) for t in update.tracked], [self.device.point3d(i) for i in ids], ids)

        self._publish(result, self.solve_pose([(t.feature_id, t.x, t.y) for t in update.tracked], score_map))

    def process_frame(self, score_map: ScoreMap) -> FrameResult:
        """
        Run one pipeline pass.

        Args:
            score_map: Preprocessed frame

        Returns:
            FrameResult describing detections, state and (if any) the published pose
        """
        self.frame_index += 1
        if self.state == DetectionState.IDLE:
            return FrameResult(self.frame_index, self.state, reason='localizer is idle')

        self._update_intrinsics(score_map)
        result = FrameResult(self.frame_index, self.state)
        result.candidates = self.detect_candidates(score_map)
        result.strips = self.detect_strips(score_map)

        if self.state in (DetectionState.LOCKED, DetectionState.TRACKING):
            self._track(score_map, result)
        else:
            self._search(score_map, result)

        result.state = self.state
        logger.debug("Frame %d: %s, %d candidates, %d strips, %s", self.frame_index, self.state.value,
                     len(result.candidates), len(result.strips), result.reason)
        return result

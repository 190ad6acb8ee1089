"""
Tracking Module

Per-feature temporal smoothing. Every recognized feature id owns a pair of
independent scalar Kalman filters (x and y) with a constant-position model,
so brief occlusions can be bridged with predicted positions.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .config import PipelineConfig
from .types import FeatureObservation, TrackedFeature

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_IDS = ('LED1', 'LED2', 'LED3', 'LED4', 'LED5',
                       'ST_L', 'ST_R', 'SM_L', 'SM_R', 'SB_L', 'SB_R')


class ScalarKalman:
    """1D Kalman filter with a static state model."""

    def __init__(self, process_noise: float = 0.01, measurement_noise: float = 1.0):
        self.q = process_noise
        self.r = measurement_noise
        self.reset()

    def reset(self):
        self.x = 0.0
        self.p = 1.0
        self.initialized = False

    def update(self, measurement: float) -> float:
        if not self.initialized:
            self.x = float(measurement)
            self.p = 1.0
            self.initialized = True
            return self.x

        p_pred = self.p + self.q
        gain = p_pred / (p_pred + self.r)
        self.x += gain * (measurement - self.x)
        self.p = (1.0 - gain) * p_pred
        return self.x

    def predict(self) -> float:
        return self.x


@dataclass
class TrackerUpdate:
    tracked: List[TrackedFeature] = field(default_factory=list)
    is_tracking: bool = False
    stability: float = 0.0
    tracked_count: int = 0
    consecutive_lost: int = 0


class FeatureTracker:
    """Bank of per-feature filters indexed by a dense feature index."""

    def __init__(self, config: dict = None, feature_ids: Sequence[str] = None):
        """
        Initialize feature tracker.

        Args:
            config: Optional config dict, uses PipelineConfig.TRACKER if None
            feature_ids: Recognized feature ids, LED1-5 plus strip edges if None
        """
        self.config = config or PipelineConfig.TRACKER
        self.process_noise = self.config['PROCESS_NOISE']
        self.measurement_noise = self.config['MEASUREMENT_NOISE']
        self.max_lost_frames = self.config['MAX_LOST_FRAMES']
        self.min_tracking_features = self.config['MIN_TRACKING_FEATURES']
        self.set_feature_ids(feature_ids or DEFAULT_FEATURE_IDS)

    def set_feature_ids(self, feature_ids: Iterable[str]):
        """Replace the recognized id set, discarding all filter state."""
        self.feature_ids = tuple(feature_ids)
        self._index = {fid: i for i, fid in enumerate(self.feature_ids)}
        n = len(self.feature_ids)
        self._filters: List[Tuple[ScalarKalman, ScalarKalman]] = [
            (ScalarKalman(self.process_noise, self.measurement_noise),
             ScalarKalman(self.process_noise, self.measurement_noise))
            for _ in range(n)
        ]
        self._lost = np.zeros(n, dtype=np.int64)
        self._last = np.full((n, 2), np.nan)
        self.is_tracking = False
        self.consecutive_lost = 0

    def reset(self):
        """Clear filters and counters, keeping the id set."""
        for fx, fy in self._filters:
            fx.reset()
            fy.reset()
        self._lost[:] = 0
        self._last[:] = np.nan
        self.is_tracking = False
        self.consecutive_lost = 0

    def _has_position(self, i: int) -> bool:
        return not np.isnan(self._last[i, 0])

    def update(self, observations: Iterable[FeatureObservation]) -> TrackerUpdate:
        """
        Push one frame of observations through the filters.

        Unknown ids are ignored; a repeated id keeps its first observation.
        Unobserved features are emitted as predictions for up to
        max_lost_frames frames after their last sighting.
        """
        observed = {}
        for obs in observations:
            i = self._index.get(obs.feature_id)
            if i is not None and i not in observed:
                observed[i] = obs

        tracked = []
        for i, fid in enumerate(self.feature_ids):
            fx, fy = self._filters[i]
            obs = observed.get(i)
            if obs is not None:
                x = fx.update(obs.x)
                y = fy.update(obs.y)
                self._lost[i] = 0
                self._last[i] = (x, y)
                tracked.append(TrackedFeature(fid, x, y, detected=True, predicted=False))
                continue

            self._lost[i] += 1
            if self._lost[i] <= self.max_lost_frames and self._has_position(i):
                tracked.append(TrackedFeature(fid, fx.predict(), fy.predict(), detected=False, predicted=True))

        count = len(tracked)
        if count >= self.min_tracking_features:
            self.consecutive_lost = 0
            self.is_tracking = True
        else:
            self.consecutive_lost += 1
            if self.consecutive_lost > self.max_lost_frames:
                if self.is_tracking:
                    logger.debug("Tracking lost after %d frames below %d features",
                                 self.consecutive_lost, self.min_tracking_features)
                self.is_tracking = False

        stability = count / len(self.feature_ids) if self.feature_ids else 0.0
        return TrackerUpdate(tracked, self.is_tracking, stability, count, self.consecutive_lost)

    def get_predictions(self) -> List[FeatureObservation]:
        """Predicted positions for every id with a known last position."""
        return [FeatureObservation(fid, self._filters[i][0].predict(), self._filters[i][1].predict())
                for i, fid in enumerate(self.feature_ids) if self._has_position(i)]

    def lost_frames(self, feature_id: str) -> int:
        return int(self._lost[self._index[feature_id]])

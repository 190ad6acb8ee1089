"""
Peak Detection Module

Finds point-like LEDs as local maxima of a weighted brightness/colour score.
Separates point sources from the glow of a nearby strip, where a blob
detector would merge them into a single component.
"""

import logging
import math
from typing import List, Tuple

import numpy as np
from scipy import ndimage

from .config import PipelineConfig
from .types import PeakCandidate, ScoreMap

logger = logging.getLogger(__name__)


def _signal_mask(signal_pixels: np.ndarray, shape: Tuple[int, int]):
    """Boolean image of the in-range flat indices, or None when there are none."""
    if signal_pixels is None:
        return None
    size = shape[0] * shape[1]
    pixels = signal_pixels[(signal_pixels >= 0) & (signal_pixels < size)]
    if pixels.size == 0:
        return None
    active = np.zeros(size, dtype=bool)
    active[pixels] = True
    return active.reshape(shape)


class PeakDetector:
    """Blur + non-maximum suppression + sub-pixel refinement + shape analysis."""

    def __init__(self, config: dict = None):
        """
        Initialize peak detector.

        Args:
            config: Optional config dict, uses PipelineConfig.PEAK_DETECTION if None
        """
        self.config = config or PipelineConfig.PEAK_DETECTION
        self.nms_radius = self.config['NMS_RADIUS']
        self.nms_radius_limits = self.config['NMS_RADIUS_LIMITS']
        self.min_peak_score = self.config['MIN_PEAK_SCORE']
        self.min_pointiness = self.config['MIN_POINTINESS']
        self.min_isotropy = self.config['MIN_ISOTROPY']
        self.max_candidates = self.config['MAX_CANDIDATES']
        self.brightness_weight = self.config['BRIGHTNESS_WEIGHT']
        self.color_diff_weight = self.config['COLOR_DIFF_WEIGHT']
        self.saturated_brightness = self.config['SATURATED_BRIGHTNESS']
        self.saturated_floor = self.config['SATURATED_FLOOR']
        self.refine_radius = self.config['REFINE_RADIUS']
        self.ring_inner = self.config['RING_INNER']
        self.ring_outer = self.config['RING_OUTER']
        self.isotropy_radius = self.config['ISOTROPY_RADIUS']
        self.area_radius = self.config['AREA_RADIUS']

    def set_expected_feature_size(self, pixel_diameter: float):
        """Scale the NMS radius to 1.5x the expected on-screen LED diameter."""
        lo, hi = self.nms_radius_limits
        self.nms_radius = int(max(lo, min(hi, math.floor(pixel_diameter * 1.5 + 0.5))))
        logger.debug("NMS radius set to %d for LED diameter %.1f px", self.nms_radius, pixel_diameter)

    def compute_score_map(self, score_map: ScoreMap) -> np.ndarray:
        """Weighted per-pixel score, zero outside signal pixels."""
        bright = score_map.brightness.astype(np.float64)
        diff = score_map.color_diff.astype(np.float64)

        base = bright * self.brightness_weight + diff * self.color_diff_weight
        saturated = bright > self.saturated_brightness
        score = np.where(saturated, np.maximum(base, bright * self.saturated_floor), base)

        active = _signal_mask(score_map.signal_pixels, score.shape)
        if active is None:
            active = (score_map.mask > 0) | saturated
        return np.where(active, score, 0.0)

    def smooth(self, scores: np.ndarray) -> np.ndarray:
        """3x3 box blur with replicated edges."""
        return ndimage.uniform_filter(scores, size=3, mode='nearest')

    def find_peaks(self, smoothed: np.ndarray, signal_pixels: np.ndarray = None) -> List[Tuple[int, int, float]]:
        """
        Non-maximum suppression over a (2R+1)^2 window clipped at the borders.

        A pixel survives when no neighbour is strictly greater and its score
        reaches the minimum peak score.

        Returns:
            (x, y, score) tuples sorted by descending score
        """
        size = 2 * self.nms_radius + 1
        local_max = ndimage.maximum_filter(smoothed, size=size, mode='constant', cval=-np.inf)
        is_peak = (smoothed >= local_max) & (smoothed >= self.min_peak_score)

        restrict = _signal_mask(signal_pixels, smoothed.shape)
        if restrict is not None:
            is_peak &= restrict

        flat = np.flatnonzero(is_peak)
        values = smoothed.ravel()[flat]
        order = np.argsort(-values, kind='stable')[:self.max_candidates * 2]
        width = smoothed.shape[1]
        return [(int(flat[k] % width), int(flat[k] // width), float(values[k])) for k in order]

    def _window(self, shape: Tuple[int, int], cx: int, cy: int, radius: int):
        h, w = shape
        return max(0, cy - radius), min(h - 1, cy + radius), max(0, cx - radius), min(w - 1, cx + radius)

    def refine(self, smoothed: np.ndarray, cx: int, cy: int) -> Tuple[float, float]:
        """Score-squared weighted centroid around the peak, clamped to the image."""
        y0, y1, x0, x1 = self._window(smoothed.shape, cx, cy, self.refine_radius)
        patch = smoothed[y0:y1 + 1, x0:x1 + 1]
        weights = np.where(patch > 0, patch * patch, 0.0)
        total = weights.sum()
        if total <= 0:
            return float(cx), float(cy)
        ys, xs = np.mgrid[y0:y1 + 1, x0:x1 + 1]
        h, w = smoothed.shape
        rx = float(np.clip((xs * weights).sum() / total, 0, w - 1))
        ry = float(np.clip((ys * weights).sum() / total, 0, h - 1))
        return rx, ry

    def pointiness(self, smoothed: np.ndarray, cx: int, cy: int) -> float:
        """Centre value over the mean of the surrounding ring."""
        center = smoothed[cy, cx]
        if center <= 0:
            return 0.0
        y0, y1, x0, x1 = self._window(smoothed.shape, cx, cy, self.ring_outer)
        ys, xs = np.mgrid[y0:y1 + 1, x0:x1 + 1]
        dist = np.hypot(xs - cx, ys - cy)
        ring = (dist >= self.ring_inner) & (dist <= self.ring_outer)
        ring_avg = smoothed[y0:y1 + 1, x0:x1 + 1][ring].mean() if ring.any() else 0.0
        return float(center / max(1.0, ring_avg))

    def isotropy(self, smoothed: np.ndarray, cx: int, cy: int) -> float:
        """Ratio of the weaker to the stronger of horizontal/vertical falloff."""
        center = smoothed[cy, cx]
        if center <= 0:
            return 0.0
        h, w = smoothed.shape
        r = self.isotropy_radius

        def sample(x, y):
            return smoothed[y, x] if 0 <= x < w and 0 <= y < h else 0.0

        h_falloff = center - (sample(cx - r, cy) + sample(cx + r, cy)) / 2
        v_falloff = center - (sample(cx, cy - r) + sample(cx, cy + r)) / 2
        hi = max(h_falloff, v_falloff)
        lo = min(h_falloff, v_falloff)
        if hi <= 0:
            return 0.0
        return float(max(0.0, lo) / hi)

    def estimate_area(self, smoothed: np.ndarray, cx: int, cy: int, peak_score: float) -> int:
        y0, y1, x0, x1 = self._window(smoothed.shape, cx, cy, self.area_radius)
        return int((smoothed[y0:y1 + 1, x0:x1 + 1] >= peak_score * 0.5).sum())

    def detect(self, score_map: ScoreMap) -> List[PeakCandidate]:
        """
        Detect point-like peaks.

        Args:
            score_map: Preprocessed score map

        Returns:
            Peak candidates ranked by peak_score * pointiness * isotropy
        """
        h, w = score_map.height, score_map.width
        smoothed = self.smooth(self.compute_score_map(score_map))
        peaks = self.find_peaks(smoothed, score_map.signal_pixels)

        candidates = []
        for px, py, value in peaks:
            rx, ry = self.refine(smoothed, px, py)
            diff = float(score_map.color_diff[py, px])
            bright = float(score_map.brightness[py, px])
            candidates.append(PeakCandidate(
                x=rx / w,
                y=ry / h,
                px=rx,
                py=ry,
                area=max(1, self.estimate_area(smoothed, px, py, value)),
                brightness=diff,
                max_brightness=diff,
                real_brightness=bright,
                max_real_brightness=bright,
                bbox={
                    'x': max(0, px - 3) / w,
                    'y': max(0, py - 3) / h,
                    'w': min(7, w) / w,
                    'h': min(7, h) / h,
                },
                downscale=score_map.downscale,
                peak_score=value,
                pointiness=self.pointiness(smoothed, px, py),
                isotropy=self.isotropy(smoothed, px, py),
            ))

        kept = [c for c in candidates
                if c.pointiness >= self.min_pointiness and c.isotropy >= self.min_isotropy]
        kept.sort(key=lambda c: c.peak_score * c.pointiness * c.isotropy, reverse=True)
        logger.debug("Peak detection: %d maxima, %d passed shape filters (radius %d)",
                     len(peaks), len(kept), self.nms_radius)
        return kept[:self.max_candidates]

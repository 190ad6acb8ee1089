"""
Geometry Matching Module

Establishes 2D-3D correspondences between detected features and the device
model. Two strategies are selected by input shape:

- strip-anchored: strips give the vertical frame, LEDs are classified around them
- rigid pattern: 5-point subsets are tested against the LED rectangle + top LED

The two strategies keep their own scores. Strip scores are 0-100 (higher is
better), pattern scores are a geometric error (lower is better).
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import PipelineConfig, sensitivity_preset
from .device import LED_BEACON, DeviceGeometry
from .types import Candidate, CorrespondenceSet, StripFeature

logger = logging.getLogger(__name__)

STRIP_PREFIXES = ('ST', 'SM', 'SB')


@dataclass
class QuickCheck:
    promising: bool
    info: str
    center: Optional[Tuple[float, float]] = None


@dataclass
class MatchResult:
    success: bool
    correspondences: Optional[CorrespondenceSet] = None
    score: float = 0.0
    strategy: Optional[str] = None
    reason: str = ''
    metrics: Dict[str, float] = field(default_factory=dict)
    diagnostics: Dict[str, object] = field(default_factory=dict)


class GeometryMatcher:
    """Matches candidates (and strips) to the landmarks of a device model."""

    def __init__(self, config: dict = None, device: DeviceGeometry = None):
        """
        Initialize geometry matcher.

        Args:
            config: Optional config dict, uses PipelineConfig.GEOMETRY_MATCHING if None
            device: Device model, LED_BEACON if None
        """
        self.config = config or PipelineConfig.GEOMETRY_MATCHING
        self.device = device or LED_BEACON
        self.min_features = self.config['MIN_FEATURES']
        self.left_right_threshold = self.config['LED_LEFT_RIGHT_THRESHOLD']
        self.above_strips_margin = self.config['ABOVE_STRIPS_MARGIN']
        self.max_pattern_candidates = self.config['MAX_PATTERN_CANDIDATES']
        self.cluster_neighbors = self.config['CLUSTER_NEIGHBORS']
        self.max_combinations = self.config['MAX_COMBINATIONS']
        self.quick_cluster_size = self.config['QUICK_CLUSTER_SIZE']
        self.set_sensitivity(self.config['SENSITIVITY'])

    def set_sensitivity(self, level: str):
        """Apply a named tolerance preset (strict | normal | relaxed)."""
        preset = sensitivity_preset(level, self.config)
        self.sensitivity = level
        self.strip_spacing_tolerance = preset['STRIP_SPACING_TOLERANCE']
        self.led_strip_align_tolerance = preset['LED_STRIP_ALIGN_TOLERANCE']
        self.min_spatial_spread = preset['MIN_SPATIAL_SPREAD']
        self.ratio_tolerance = preset['RATIO_TOLERANCE']
        self.horizontal_offset_tolerance = preset['HORIZONTAL_OFFSET_TOLERANCE']
        self.side_cv_tolerance = preset['SIDE_CV_TOLERANCE']

    def set_device(self, device: DeviceGeometry):
        self.device = device

    # ------------------------------------------------------------------
    # Quick check
    # ------------------------------------------------------------------

    def _tight_cluster(self, candidates: Sequence[Candidate]) -> Optional[Tuple[float, float]]:
        if len(candidates) < 5:
            return None
        pts = np.array([c.position for c in candidates], dtype=np.float64)
        dist = np.linalg.norm(pts[:, None, :] - pts[None, :, :], axis=2)
        counts = (dist <= self.quick_cluster_size).sum(axis=1)
        best = int(np.argmax(counts))
        if counts[best] < 5:
            return None
        members = pts[dist[best] <= self.quick_cluster_size]
        return float(members[:, 0].mean()), float(members[:, 1].mean())

    def quick_check(self, candidates: Sequence[Candidate], strips: Sequence[StripFeature] = None) -> QuickCheck:
        """Cheap promising/not-promising verdict for early feedback."""
        n_strips = len(strips) if strips else 0
        n_leds = len(candidates) if candidates else 0

        if n_strips >= 2:
            return QuickCheck(True, f"{n_strips} strips detected")
        if n_strips >= 1 and n_leds >= 2:
            return QuickCheck(True, f"{n_strips} strip(s) + {n_leds} LEDs detected")

        center = self._tight_cluster(candidates or [])
        if center is not None:
            return QuickCheck(True, f"tight cluster of LEDs near ({center[0]:.2f}, {center[1]:.2f})", center)
        if n_leds >= 4:
            return QuickCheck(True, f"{n_leds} LED candidates detected")

        return QuickCheck(False, f"Insufficient features: {n_strips} strips, {n_leds} LEDs")

    # ------------------------------------------------------------------
    # Full match
    # ------------------------------------------------------------------

    def match(self, candidates: Sequence[Candidate], strips: Sequence[StripFeature] = None,
              image_aspect: float = 1.0) -> MatchResult:
        """
        Match detected features to the device model.

        Args:
            candidates: Point candidates, strongest first
            strips: Optional strip features with edges
            image_aspect: width / height of the frame, used to undo normalized-coordinate squash

        Returns:
            MatchResult; on success its correspondences hold normalized 2D points
        """
        candidates = list(candidates or [])
        strips = list(strips or [])

        if strips and self.device.has_strips:
            result = self.match_strips(candidates, strips)
            if result.success:
                return result
            if len(candidates) < 5:
                return result
            logger.debug("Strip matching failed (%s), trying rigid pattern", result.reason)
            fallback = self.match_pattern(candidates, image_aspect)
            fallback.diagnostics['strip_failure'] = result.reason
            return fallback

        return self.match_pattern(candidates, image_aspect)

    # Strip-anchored ----------------------------------------------------

    def _spacing_variation(self, sorted_strips: List[StripFeature]) -> float:
        if len(sorted_strips) < 2:
            return 0.0
        spacings = np.diff([s.y for s in sorted_strips])
        avg = spacings.mean()
        if avg <= 0:
            return float('inf')
        return float(np.max(np.abs(spacings - avg) / avg))

    def _classify_leds(self, candidates: List[Candidate], matched: List[StripFeature]) -> Tuple[List[Tuple[str, Candidate]], Dict[str, float]]:
        center_x = float(np.mean([s.x for s in matched]))
        top_y = matched[0].y
        bottom_y = matched[-1].y

        top, left, right = [], [], []
        for c in candidates:
            if c.y < top_y - self.above_strips_margin:
                top.append(c)
            elif c.x < center_x - self.left_right_threshold:
                left.append(c)
            elif c.x > center_x + self.left_right_threshold:
                right.append(c)

        assigned = []
        if top:
            assigned.append(('LED5', min(top, key=lambda c: abs(c.x - 0.5))))

        def closer_to_top(c):
            return abs(c.y - top_y) < abs(c.y - bottom_y)

        if len(right) >= 2:
            right.sort(key=lambda c: c.y)
            assigned += [('LED1', right[0]), ('LED2', right[1])]
        elif right:
            assigned.append(('LED1' if closer_to_top(right[0]) else 'LED2', right[0]))

        if len(left) >= 2:
            left.sort(key=lambda c: c.y, reverse=True)
            assigned += [('LED3', left[0]), ('LED4', left[1])]
        elif left:
            assigned.append(('LED4' if closer_to_top(left[0]) else 'LED3', left[0]))

        # Corner LEDs sit level with the outer strips once all strips are seen
        alignment = {}
        if len(matched) == self.device.strip_count and bottom_y > top_y:
            span = bottom_y - top_y
            kept = []
            for fid, c in assigned:
                if fid == 'LED5':
                    kept.append((fid, c))
                    continue
                ref = top_y if fid in ('LED1', 'LED4') else bottom_y
                alignment[fid] = abs(c.y - ref) / span
                if alignment[fid] <= self.led_strip_align_tolerance:
                    kept.append((fid, c))
            assigned = kept

        return assigned, alignment

    def match_strips(self, candidates: List[Candidate], strips: List[StripFeature]) -> MatchResult:
        """Assign strips top to bottom, then classify LEDs around them."""
        sorted_strips = sorted(strips, key=lambda s: s.y)[:self.device.strip_count]
        variation = self._spacing_variation(sorted_strips)
        diagnostics = {'strips': len(sorted_strips), 'spacing_variation': variation}

        if variation > self.strip_spacing_tolerance:
            logger.warning("Strip spacing inconsistent: variation %.1f%%", variation * 100)
            return MatchResult(False, strategy='strip', diagnostics=diagnostics,
                               reason=f"strip spacing variation {variation:.2f} exceeds "
                                      f"{self.strip_spacing_tolerance:.2f}")

        ids, pts2d = [], []
        for prefix, strip in zip(STRIP_PREFIXES, sorted_strips):
            if strip.edge_left is not None:
                ids.append(f"{prefix}_L")
                pts2d.append(strip.edge_left)
            if strip.edge_right is not None:
                ids.append(f"{prefix}_R")
                pts2d.append(strip.edge_right)

        leds, alignment = self._classify_leds(candidates, sorted_strips)
        for fid, c in leds:
            ids.append(fid)
            pts2d.append(c.position)

        diagnostics['matched_leds'] = [fid for fid, _ in leds]
        diagnostics['alignment'] = alignment

        spread = 0.0
        if len(pts2d) >= 2:
            arr = np.asarray(pts2d)
            spread = float(np.hypot(*(arr.max(axis=0) - arr.min(axis=0))))

        score = round(min(len(sorted_strips) / 3, 1.0) * 40
                      + min(len(leds) / 5, 1.0) * 40
                      + min(spread, 1.0) * 20)
        metrics = {'spatial_spread': spread, 'strip_count': len(sorted_strips), 'led_count': len(leds)}

        if len(ids) < self.min_features:
            return MatchResult(False, score=score, strategy='strip', metrics=metrics, diagnostics=diagnostics,
                               reason=f"only {len(ids)} features matched (need {self.min_features})")
        if spread < self.min_spatial_spread:
            return MatchResult(False, score=score, strategy='strip', metrics=metrics, diagnostics=diagnostics,
                               reason=f"spatial spread {spread:.3f} below {self.min_spatial_spread:.2f}")

        correspondences = CorrespondenceSet(pts2d, [self.device.point3d(i) for i in ids], ids, score)
        logger.debug("Strip match: %s score=%d", list(ids), score)
        return MatchResult(True, correspondences, score, 'strip', 'matched', metrics, diagnostics)

    # Rigid pattern -----------------------------------------------------

    def verify_pattern(self, points: np.ndarray) -> Optional[Dict[str, object]]:
        """
        Check whether five aspect-corrected points form the LED pattern.

        Args:
            points: (5, 2) array in aspect-corrected image units (y down)

        Returns:
            Dict with 'order' (indices for LED1..LED5), 'error' and 'metrics', or None
        """
        top = int(np.argmin(points[:, 1]))
        rest = [i for i in range(5) if i != top]
        centroid = points[rest].mean(axis=0)

        quadrants = {}
        for i in rest:
            dx, dy = points[i] - centroid
            if dx > 0 and dy < 0:
                q = 1
            elif dx > 0 and dy > 0:
                q = 2
            elif dx < 0 and dy > 0:
                q = 3
            else:
                q = 4
            if q in quadrants:
                return None
            quadrants[q] = i

        p1, p2, p3, p4 = (points[quadrants[q]] for q in (1, 2, 3, 4))
        p5 = points[top]

        width = abs(p1[0] - p3[0])
        height = abs(p1[1] - p2[1])
        if width == 0 or height == 0:
            return None

        expected = self.device.expected_aspect_ratio
        aspect = width / height
        ratio_error = abs(aspect - expected) / expected
        if ratio_error > self.ratio_tolerance:
            return None

        rect = np.array([p1, p2, p3, p4])
        if p5[1] >= rect[:, 1].mean():
            return None

        offset = abs(p5[0] - rect[:, 0].mean())
        if offset > width * self.horizontal_offset_tolerance:
            return None

        sides = np.linalg.norm(rect - np.roll(rect, -1, axis=0), axis=1)
        side_cv = sides.std() / sides.mean()
        if side_cv > self.side_cv_tolerance:
            return None

        error = 2.0 * ratio_error + 1.5 * (offset / width) + 1.5 * side_cv
        return {
            'order': [quadrants[1], quadrants[2], quadrants[3], quadrants[4], top],
            'error': float(error),
            'metrics': {
                'aspect_ratio': float(aspect),
                'ratio_error': float(ratio_error),
                'horizontal_offset': float(offset / width),
                'side_cv': float(side_cv),
                'width': float(width),
                'height': float(height),
            },
        }

    def _subsets(self, points: np.ndarray):
        n = len(points)
        if n <= self.cluster_neighbors + 1:
            yield from itertools.combinations(range(n), 5)
            return

        seen = set()
        dist = np.linalg.norm(points[:, None, :] - points[None, :, :], axis=2)
        for i in range(n):
            cluster = sorted(np.argsort(dist[i], kind='stable')[:self.cluster_neighbors + 1].tolist())
            for combo in itertools.combinations(cluster, 5):
                key = frozenset(combo)
                if key in seen:
                    continue
                seen.add(key)
                yield combo

    def match_pattern(self, candidates: List[Candidate], image_aspect: float = 1.0) -> MatchResult:
        """Exhaustive search for the best 5-LED rigid configuration."""
        if len(candidates) < 5:
            return MatchResult(False, strategy='pattern',
                               reason=f"only {len(candidates)} candidates (need 5)")

        pool = candidates[:self.max_pattern_candidates]
        points = np.array([(c.x * image_aspect, c.y) for c in pool], dtype=np.float64)

        best = None
        tested = 0
        valid = 0
        for combo in self._subsets(points):
            if tested >= self.max_combinations:
                break
            tested += 1
            verdict = self.verify_pattern(points[list(combo)])
            if verdict is None:
                continue
            valid += 1
            if best is None or verdict['error'] < best[1]['error']:
                best = (combo, verdict)

        diagnostics = {'candidates': len(pool), 'combinations': tested, 'valid': valid}
        logger.debug("Pattern search: %d combinations, %d valid", tested, valid)

        if best is None:
            return MatchResult(False, strategy='pattern', diagnostics=diagnostics,
                               reason=f"no 5-LED configuration among {len(pool)} candidates")

        combo, verdict = best
        chosen = [pool[combo[k]] for k in verdict['order']]
        ids = list(DeviceGeometry.LED_IDS)
        correspondences = CorrespondenceSet(
            [c.position for c in chosen],
            [self.device.point3d(i) for i in ids],
            ids,
            verdict['error'],
        )
        return MatchResult(True, correspondences, verdict['error'], 'pattern', 'matched',
                           verdict['metrics'], diagnostics)

"""
Blob Detection Module

Connected-component detection of point LEDs and light strips on a score map.
Components are labelled with a Union-Find over 4-connected signal pixels, then
filtered by area, aspect ratio, signal strength and compactness.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import numpy as np

from .config import PipelineConfig
from .types import BlobCandidate, ScoreMap, StripFeature

logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint-set forest over flat pixel indices (path halving, union by rank)."""

    def __init__(self, size: int):
        self.parent = np.arange(size, dtype=np.int64)
        self.rank = np.zeros(size, dtype=np.int8)

    def find(self, i: int) -> int:
        parent = self.parent
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return int(i)

    def union(self, a: int, b: int) -> int:
        ra = self.find(a)
        rb = self.find(b)
        if ra == rb:
            return ra
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1
        return ra


class BlobDetector:
    """Detects compact LED blobs and elongated strips via connected components."""

    def __init__(self, config: dict = None, strip_config: dict = None):
        """
        Initialize blob detector.

        Args:
            config: Optional config dict, uses PipelineConfig.BLOB_DETECTION if None
            strip_config: Optional config dict, uses PipelineConfig.STRIP_DETECTION if None
        """
        self.config = config or PipelineConfig.BLOB_DETECTION
        self.min_area = self.config['MIN_AREA']
        self.max_area = self.config['MAX_AREA']
        self.max_aspect_ratio = self.config['MAX_ASPECT_RATIO']
        self.min_color_diff = self.config['MIN_COLOR_DIFF']
        self.saturated_brightness = self.config['SATURATED_BRIGHTNESS']
        self.min_compactness = self.config['MIN_COMPACTNESS']

        self.strip_config = strip_config or PipelineConfig.STRIP_DETECTION
        self.strip_min_area = self.strip_config['MIN_AREA']
        self.strip_max_area = self.strip_config['MAX_AREA']
        self.strip_min_aspect = self.strip_config['MIN_ASPECT_RATIO']
        self.edge_columns = self.strip_config['EDGE_COLUMNS']

    def _signal_pixels(self, score_map: ScoreMap) -> np.ndarray:
        mask_flat = score_map.mask.ravel()
        if score_map.signal_pixels is not None:
            pixels = score_map.signal_pixels
            pixels = pixels[(pixels >= 0) & (pixels < mask_flat.size)]
            return pixels[mask_flat[pixels] != 0]
        return np.flatnonzero(mask_flat)

    def label_components(self, score_map: ScoreMap, order: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Label 4-connected foreground components.

        Args:
            score_map: Score map whose mask defines the foreground
            order: Optional permutation of the scan order (result does not depend on it)

        Returns:
            (pixels, labels): flat pixel indices and a dense component label per pixel.
            Labels are numbered by each component's first pixel in raster order.
        """
        width = score_map.width
        pixels = self._signal_pixels(score_map)
        if pixels.size == 0:
            return pixels, np.zeros(0, dtype=np.int64)
        if order is not None:
            pixels = pixels[order]

        is_signal = np.zeros(score_map.mask.size, dtype=bool)
        is_signal[pixels] = True
        uf = UnionFind(score_map.mask.size)

        for idx in pixels.tolist():
            if idx % width > 0 and is_signal[idx - 1]:
                uf.union(idx, idx - 1)
            if idx >= width and is_signal[idx - width]:
                uf.union(idx, idx - width)

        roots = np.fromiter((uf.find(i) for i in pixels.tolist()), dtype=np.int64, count=pixels.size)
        _, inverse = np.unique(roots, return_inverse=True)
        inverse = inverse.ravel()

        first_pixel = np.full(inverse.max() + 1, np.iinfo(np.int64).max, dtype=np.int64)
        np.minimum.at(first_pixel, inverse, pixels)
        rank = np.empty_like(first_pixel)
        rank[np.argsort(first_pixel, kind='stable')] = np.arange(first_pixel.size)
        return pixels, rank[inverse]

    def _collect_stats(self, score_map: ScoreMap) -> Dict[str, np.ndarray]:
        pixels, labels = self.label_components(score_map)
        n = int(labels.max()) + 1 if labels.size else 0
        width = score_map.width
        xs = pixels % width
        ys = pixels // width
        diff = score_map.color_diff.ravel()[pixels].astype(np.float64)
        bright = score_map.brightness.ravel()[pixels].astype(np.float64)

        stats = {
            'area': np.bincount(labels, minlength=n),
            'sum_x': np.bincount(labels, weights=xs, minlength=n),
            'sum_y': np.bincount(labels, weights=ys, minlength=n),
            'sum_diff': np.bincount(labels, weights=diff, minlength=n),
            'sum_bright': np.bincount(labels, weights=bright, minlength=n),
            'min_x': np.full(n, np.iinfo(np.int64).max, dtype=np.int64),
            'min_y': np.full(n, np.iinfo(np.int64).max, dtype=np.int64),
            'max_x': np.full(n, -1, dtype=np.int64),
            'max_y': np.full(n, -1, dtype=np.int64),
            'max_diff': np.zeros(n),
            'max_bright': np.zeros(n),
        }
        np.minimum.at(stats['min_x'], labels, xs)
        np.minimum.at(stats['min_y'], labels, ys)
        np.maximum.at(stats['max_x'], labels, xs)
        np.maximum.at(stats['max_y'], labels, ys)
        np.maximum.at(stats['max_diff'], labels, diff)
        np.maximum.at(stats['max_bright'], labels, bright)
        return stats

    def _component_fields(self, stats: Dict[str, np.ndarray], i: int, score_map: ScoreMap) -> dict:
        area = int(stats['area'][i])
        bbox_w = int(stats['max_x'][i] - stats['min_x'][i] + 1)
        bbox_h = int(stats['max_y'][i] - stats['min_y'][i] + 1)
        cx = stats['sum_x'][i] / area
        cy = stats['sum_y'][i] / area
        return {
            'x': float(cx / score_map.width),
            'y': float(cy / score_map.height),
            'px': float(cx),
            'py': float(cy),
            'area': area,
            'brightness': float(stats['sum_diff'][i] / area),
            'max_brightness': float(stats['max_diff'][i]),
            'real_brightness': float(stats['sum_bright'][i] / area),
            'max_real_brightness': float(stats['max_bright'][i]),
            'bbox': {
                'x': float(stats['min_x'][i] / score_map.width),
                'y': float(stats['min_y'][i] / score_map.height),
                'w': bbox_w / score_map.width,
                'h': bbox_h / score_map.height,
            },
            'downscale': score_map.downscale,
        }

    def detect(self, score_map: ScoreMap) -> List[BlobCandidate]:
        """
        Detect compact point blobs.

        Args:
            score_map: Preprocessed score map

        Returns:
            Blob candidates sorted by descending composite brightness score
        """
        stats = self._collect_stats(score_map)
        blobs = []
        rejected = {'area': 0, 'aspect': 0, 'signal': 0, 'compactness': 0}

        for i in range(stats['area'].size):
            area = int(stats['area'][i])
            if area < self.min_area or area > self.max_area:
                rejected['area'] += 1
                continue

            bbox_w = int(stats['max_x'][i] - stats['min_x'][i] + 1)
            bbox_h = int(stats['max_y'][i] - stats['min_y'][i] + 1)
            aspect = max(bbox_w, bbox_h) / max(1, min(bbox_w, bbox_h))
            if aspect > self.max_aspect_ratio:
                rejected['aspect'] += 1
                continue

            avg_diff = stats['sum_diff'][i] / area
            avg_bright = stats['sum_bright'][i] / area
            if avg_diff < self.min_color_diff and avg_bright < self.saturated_brightness:
                rejected['signal'] += 1
                continue

            if area / (bbox_w * bbox_h) < self.min_compactness:
                rejected['compactness'] += 1
                continue

            blobs.append(BlobCandidate(**self._component_fields(stats, i, score_map)))

        blobs.sort(key=lambda b: b.score, reverse=True)
        logger.debug("Blob detection: %d components, %d kept, rejected %s",
                     stats['area'].size, len(blobs), rejected)
        return blobs

    def detect_strips(self, score_map: ScoreMap) -> List[StripFeature]:
        """
        Detect horizontally elongated strip components.

        Returns:
            Strips sorted top to bottom, edges not yet extracted
        """
        stats = self._collect_stats(score_map)
        strips = []

        for i in range(stats['area'].size):
            area = int(stats['area'][i])
            if area < self.strip_min_area or area > self.strip_max_area:
                continue

            bbox_w = int(stats['max_x'][i] - stats['min_x'][i] + 1)
            bbox_h = int(stats['max_y'][i] - stats['min_y'][i] + 1)
            if bbox_w <= bbox_h:
                continue
            if bbox_w / max(1, bbox_h) < self.strip_min_aspect:
                continue

            bbox_px = (int(stats['min_x'][i]), int(stats['min_y'][i]),
                       int(stats['max_x'][i]), int(stats['max_y'][i]))
            strips.append(StripFeature(bbox_px=bbox_px, **self._component_fields(stats, i, score_map)))

        strips.sort(key=lambda s: s.y)
        logger.debug("Strip detection: %d strips", len(strips))
        return strips

    def _column_centroid(self, score_map: ScoreMap, col: int, y0: int, y1: int) -> float:
        on = score_map.mask[y0:y1 + 1, col] != 0
        weights = score_map.brightness[y0:y1 + 1, col].astype(np.float64) * on
        total = weights.sum()
        if total > 0:
            return float(np.dot(np.arange(y0, y1 + 1), weights) / total)
        return (y0 + y1) / 2.0

    def extract_strip_edges(self, strip: StripFeature, score_map: ScoreMap) -> StripFeature:
        """
        Locate the left and right edge midpoints of a strip.

        Each edge is the mean position over the outermost columns of the
        bounding box that contain mask pixels, with the vertical position of
        each column taken as its brightness-weighted centroid.

        Args:
            strip: Strip from detect_strips
            score_map: Score map the strip was detected on

        Returns:
            A new StripFeature with edge_left/edge_right set (normalized)
        """
        x0, y0, x1, y1 = strip.bbox_px
        occupied = np.flatnonzero((score_map.mask[y0:y1 + 1, x0:x1 + 1] != 0).any(axis=0)) + x0
        if occupied.size == 0:
            return strip

        def edge(columns: np.ndarray) -> Tuple[float, float]:
            ys = [self._column_centroid(score_map, int(c), y0, y1) for c in columns]
            return (float(columns.mean() / score_map.width), float(np.mean(ys) / score_map.height))

        left = edge(occupied[:self.edge_columns])
        right = edge(occupied[::-1][:self.edge_columns])
        return replace(strip, edge_left=left, edge_right=right)

    def detect_strips_with_edges(self, score_map: ScoreMap) -> List[StripFeature]:
        return [self.extract_strip_edges(s, score_map) for s in self.detect_strips(score_map)]

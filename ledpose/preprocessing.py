"""
Preprocessing Module

Turns a BGR frame into the downscaled ScoreMap consumed by the detectors:
binary mask, colour-difference strength, raw brightness and the list of
signal pixels. The detection threshold adapts to the scene and lives on the
builder instance.
"""

import logging

import cv2
import numpy as np

from .config import PipelineConfig
from .types import ScoreMap

logger = logging.getLogger(__name__)


class ScoreMapBuilder:
    """Blue-differential score map builder."""

    def __init__(self, config: dict = None):
        """
        Initialize score map builder.

        Args:
            config: Optional config dict, uses PipelineConfig.PREPROCESSING if None
        """
        self.config = config or PipelineConfig.PREPROCESSING
        self.downscale = self.config['DOWNSCALE']
        self.threshold_limits = self.config['THRESHOLD_LIMITS']
        self.brightness_floor = self.config['BRIGHTNESS_FLOOR']
        self.hue_center = self.config['HUE_CENTER']
        self.hue_range = self.config['HUE_RANGE']
        self.sat_min = self.config['SAT_MIN']
        self.saturated_brightness = self.config['SATURATED_BRIGHTNESS']
        self.saturated_blue_excess = self.config['SATURATED_BLUE_EXCESS']
        self.signal_brightness = self.config['SIGNAL_BRIGHTNESS']
        self.adaptive = dict(self.config['ADAPTIVE'])
        self.threshold = self.config['THRESHOLD']
        self.set_threshold(self.threshold)

        self.erode_kernel = cv2.getStructuringElement(cv2.MORPH_CROSS, (3, 3))
        self.dilate_kernel = np.ones((3, 3), dtype=np.uint8)

    def set_threshold(self, value: float):
        lo, hi = self.threshold_limits
        self.threshold = float(max(lo, min(hi, value)))

    def downsample(self, frame: np.ndarray) -> np.ndarray:
        h, w = frame.shape[:2]
        out_w = max(1, int(round(w / self.downscale)))
        out_h = max(1, int(round(h / self.downscale)))
        if (out_w, out_h) == (w, h):
            return frame
        return cv2.resize(frame, (out_w, out_h), interpolation=cv2.INTER_AREA)

    def detection_mask(self, frame: np.ndarray) -> tuple:
        """
        Per-pixel detection before cleanup.

        Returns:
            (raw_mask bool, color_diff uint8, brightness uint8)
        """
        rgb = frame.astype(np.float32) / 255.0
        b, g, r = rgb[:, :, 0], rgb[:, :, 1], rgb[:, :, 2]
        diff = b - (r + g) / 2.0
        bright = rgb.max(axis=2)

        hsv = cv2.cvtColor(rgb, cv2.COLOR_BGR2HSV)
        hue = hsv[:, :, 0] / 360.0
        sat = hsv[:, :, 1]
        hue_dist = np.abs(hue - self.hue_center)
        hue_dist = np.minimum(hue_dist, 1.0 - hue_dist)

        normal = ((diff >= self.threshold) & (bright >= self.brightness_floor)
                  & (hue_dist <= self.hue_range) & (sat >= self.sat_min))
        saturated = ((bright >= self.saturated_brightness) & (diff >= self.saturated_blue_excess)
                     & (b >= g) & (b >= r))

        color_diff = np.clip(diff * 255.0, 0, 255).astype(np.uint8)
        brightness = np.clip(bright * 255.0, 0, 255).astype(np.uint8)
        return normal | saturated, color_diff, brightness

    def cleanup(self, raw_mask: np.ndarray) -> np.ndarray:
        """Morphological opening: 4-neighbour erosion then 8-neighbour dilation."""
        mask = raw_mask.astype(np.uint8) * 255
        eroded = cv2.erode(mask, self.erode_kernel, borderType=cv2.BORDER_CONSTANT, borderValue=0)
        dilated = cv2.dilate(eroded, self.dilate_kernel, borderType=cv2.BORDER_CONSTANT, borderValue=0)
        dilated[0, :] = 0
        dilated[-1, :] = 0
        dilated[:, 0] = 0
        dilated[:, -1] = 0
        return dilated

    def update_adaptive_threshold(self, color_diff: np.ndarray) -> float:
        """Blend the threshold toward a fraction of the colour-difference percentile."""
        hist = np.bincount(color_diff.ravel(), minlength=256)
        target = int(color_diff.size * self.adaptive['PERCENTILE'])
        percentile = int(np.searchsorted(np.cumsum(hist), target))
        suggested = min(self.adaptive['MAX'], max(self.adaptive['MIN'], percentile / 255.0 * self.adaptive['FACTOR']))
        blend = self.adaptive['BLEND']
        self.set_threshold(self.threshold * (1.0 - blend) + suggested * blend)
        return self.threshold

    def build(self, frame_bgr: np.ndarray) -> ScoreMap:
        """
        Build a ScoreMap from a full-resolution BGR frame.

        Args:
            frame_bgr: uint8 BGR image

        Returns:
            ScoreMap at 1/downscale resolution
        """
        if frame_bgr is None or frame_bgr.ndim != 3 or frame_bgr.shape[2] != 3:
            raise ValueError("Expected a BGR image with three channels")

        small = self.downsample(frame_bgr)
        raw_mask, color_diff, brightness = self.detection_mask(small)
        mask = self.cleanup(raw_mask)
        signal = np.flatnonzero((mask.ravel() > 0) | (brightness.ravel() > self.signal_brightness))

        used_threshold = self.threshold
        if self.adaptive['ENABLED']:
            self.update_adaptive_threshold(color_diff)

        logger.debug("Score map %dx%d: %d mask pixels, %d signal pixels, threshold %.3f -> %.3f",
                     mask.shape[1], mask.shape[0], int((mask > 0).sum()), signal.size,
                     used_threshold, self.threshold)
        return ScoreMap(mask, color_diff, brightness, self.downscale, signal)

"""
Shared data types for the LED pose pipeline.

Everything here is created fresh per frame and treated as read-only once
built. Candidates form a small tagged union: BlobCandidate and PeakCandidate
share the Candidate projection, StripFeature adds edge midpoints.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np


Point2D = Tuple[float, float]


@dataclass
class ScoreMap:
    """
    Downscaled per-pixel score arrays produced by the preprocessing stage.

    Args:
        mask: Binary (0/255) detection mask
        color_diff: Colour-difference strength, 0-255
        brightness: Raw brightness (max channel), 0-255
        downscale: Integer factor relating these pixels to the full frame
        signal_pixels: Optional flat indices worth scanning
    """
    mask: np.ndarray
    color_diff: np.ndarray
    brightness: np.ndarray
    downscale: int = 1
    signal_pixels: Optional[np.ndarray] = None

    def __post_init__(self):
        self.mask = np.asarray(self.mask)
        self.color_diff = np.asarray(self.color_diff)
        self.brightness = np.asarray(self.brightness)
        if self.mask.ndim != 2:
            raise ValueError(f"Score map must be 2-D, got shape {self.mask.shape}")
        if self.color_diff.shape != self.mask.shape or self.brightness.shape != self.mask.shape:
            raise ValueError("mask, color_diff and brightness must share one shape: "
                             f"{self.mask.shape}, {self.color_diff.shape}, {self.brightness.shape}")
        if self.downscale < 1:
            raise ValueError(f"downscale must be >= 1, got {self.downscale}")
        if self.signal_pixels is not None:
            self.signal_pixels = np.asarray(self.signal_pixels, dtype=np.int64).ravel()

    @property
    def height(self) -> int:
        return self.mask.shape[0]

    @property
    def width(self) -> int:
        return self.mask.shape[1]

    @property
    def frame_width(self) -> int:
        return self.width * self.downscale

    @property
    def frame_height(self) -> int:
        return self.height * self.downscale

    @property
    def aspect(self) -> float:
        return self.width / max(1, self.height)


@dataclass(frozen=True)
class Candidate:
    """Point feature candidate in normalized and working-frame pixel coordinates."""
    x: float
    y: float
    px: float
    py: float
    area: int
    brightness: float
    max_brightness: float
    real_brightness: float
    max_real_brightness: float
    bbox: Dict[str, float] = field(default_factory=dict)
    downscale: int = 1

    @property
    def score(self) -> float:
        return 0.5 * self.max_real_brightness + 0.5 * self.max_brightness

    @property
    def position(self) -> Point2D:
        return (self.x, self.y)


@dataclass(frozen=True)
class BlobCandidate(Candidate):
    """Connected-component candidate."""


@dataclass(frozen=True)
class PeakCandidate(Candidate):
    """Local-maximum candidate with shape diagnostics."""
    peak_score: float = 0.0
    pointiness: float = 0.0
    isotropy: float = 0.0


@dataclass(frozen=True)
class StripFeature(Candidate):
    """Elongated light strip with optional left/right edge midpoints."""
    bbox_px: Tuple[int, int, int, int] = (0, 0, 0, 0)
    edge_left: Optional[Point2D] = None
    edge_right: Optional[Point2D] = None

    @property
    def bbox_w_px(self) -> int:
        return self.bbox_px[2] - self.bbox_px[0] + 1

    @property
    def bbox_h_px(self) -> int:
        return self.bbox_px[3] - self.bbox_px[1] + 1

    @property
    def has_edges(self) -> bool:
        return self.edge_left is not None and self.edge_right is not None


class CorrespondenceSet:
    """Parallel 2D observations, 3D model points and feature ids."""

    def __init__(self, points_2d, points_3d, feature_ids, score: float = 0.0):
        self.points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        self.points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        self.feature_ids = tuple(feature_ids)
        self.score = float(score)

        n = len(self.feature_ids)
        if len(self.points_2d) != n or len(self.points_3d) != n:
            raise ValueError(f"Correspondence arrays differ in length: "
                             f"{len(self.points_2d)} 2D, {len(self.points_3d)} 3D, {n} ids")

    def __len__(self) -> int:
        return len(self.feature_ids)

    def __repr__(self) -> str:
        return f"CorrespondenceSet(n={len(self)}, ids={list(self.feature_ids)}, score={self.score:.2f})"

    def as_dict(self) -> Dict[str, Point2D]:
        return {fid: (float(p[0]), float(p[1])) for fid, p in zip(self.feature_ids, self.points_2d)}


@dataclass(frozen=True)
class FeatureObservation:
    feature_id: str
    x: float
    y: float


@dataclass(frozen=True)
class TrackedFeature:
    feature_id: str
    x: float
    y: float
    detected: bool
    predicted: bool

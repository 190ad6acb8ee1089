"""
Visualization utilities for the LED pose pipeline.
Overlay helpers for candidates, strips, matched features, state and pose axes.
"""

import cv2
import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple

from .config import PipelineConfig
from .pnp_solver import CameraIntrinsics, PoseEstimate
from .types import Candidate, PeakCandidate, ScoreMap, StripFeature


def add_label_to_image(img: np.ndarray,
                       text: str,
                       color: Tuple[int, int, int] = (255, 255, 255),
                       bg_color: Tuple[int, int, int] = (0, 0, 0),
                       position: str = 'top') -> np.ndarray:
    """
    Add a labeled banner to an image.

    Args:
        img: Input image (BGR or grayscale)
        text: Label text
        color: Text color
        bg_color: Background color
        position: 'top' or 'bottom'

    Returns:
        Image with label added
    """
    if len(img.shape) == 2:
        vis = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    else:
        vis = img.copy()

    h, w = vis.shape[:2]
    font_scale = w / 900.0
    thickness = max(1, int(w / 500.0))
    bar_h = max(18, int(h * 0.06))

    if position == 'top':
        y_start, y_end = 0, bar_h
        text_y = int(bar_h * 0.7)
    else:
        y_start, y_end = h - bar_h, h
        text_y = h - int(bar_h * 0.3)

    cv2.rectangle(vis, (0, y_start), (w, y_end), bg_color, -1)
    cv2.putText(vis, text, (10, text_y), cv2.FONT_HERSHEY_SIMPLEX,
                font_scale, color, thickness, cv2.LINE_AA)
    return vis


def create_grid_visualization(images: List[np.ndarray],
                              labels: Optional[List[str]] = None) -> np.ndarray:
    """Place images side by side (resized to the first image's height)."""
    if not images:
        raise ValueError("No images provided")

    h = images[0].shape[0]
    panels = []
    for i, img in enumerate(images):
        if len(img.shape) == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
        if img.shape[0] != h:
            scale = h / img.shape[0]
            img = cv2.resize(img, (int(img.shape[1] * scale), h), interpolation=cv2.INTER_NEAREST)
        if labels:
            img = add_label_to_image(img, labels[i])
        panels.append(img)
    return np.hstack(panels)


def dim_image(img: np.ndarray, factor: float = 0.4) -> np.ndarray:
    return (img.astype(float) * factor).astype(np.uint8)


def score_map_to_image(score_map: ScoreMap) -> np.ndarray:
    """False-colour view: mask in red, colour difference in green, brightness in blue."""
    return np.dstack([score_map.brightness, score_map.color_diff, score_map.mask]).astype(np.uint8)


def _to_px(x: float, y: float, shape: Tuple[int, ...]) -> Tuple[int, int]:
    return int(round(x * shape[1])), int(round(y * shape[0]))


def draw_candidates(img: np.ndarray, candidates: Sequence[Candidate]) -> np.ndarray:
    vis = img.copy()
    colors = PipelineConfig.VIZ_COLORS
    for c in candidates:
        color = colors['PEAK'] if isinstance(c, PeakCandidate) else colors['CANDIDATE']
        cv2.circle(vis, _to_px(c.x, c.y, vis.shape), 6, color, 1, cv2.LINE_AA)
    return vis


def draw_strips(img: np.ndarray, strips: Sequence[StripFeature]) -> np.ndarray:
    vis = img.copy()
    colors = PipelineConfig.VIZ_COLORS
    for s in strips:
        b = s.bbox
        top_left = _to_px(b['x'], b['y'], vis.shape)
        bottom_right = _to_px(b['x'] + b['w'], b['y'] + b['h'], vis.shape)
        cv2.rectangle(vis, top_left, bottom_right, colors['STRIP'], 1)
        for edge in (s.edge_left, s.edge_right):
            if edge is not None:
                cv2.drawMarker(vis, _to_px(edge[0], edge[1], vis.shape), colors['STRIP_EDGE'],
                               cv2.MARKER_CROSS, 10, 2)
    return vis


def draw_features_with_labels(img: np.ndarray,
                              features: Dict[str, Tuple[float, float]],
                              color: Tuple[int, int, int],
                              show_labels: bool = True) -> np.ndarray:
    """
    Draw named feature markers.

    Args:
        img: Input image
        features: Dict of feature_id -> normalized (x, y)
        color: Marker color
        show_labels: Whether to show feature ids

    Returns:
        Image with features drawn
    """
    vis = img.copy()
    for name, (x, y) in features.items():
        px, py = _to_px(x, y, vis.shape)
        cv2.circle(vis, (px, py), 5, color, thickness=-1)
        if show_labels:
            cv2.putText(vis, name, (px + 8, py - 8), cv2.FONT_HERSHEY_SIMPLEX, 0.45, (0, 0, 0), 3)
            cv2.putText(vis, name, (px + 8, py - 8), cv2.FONT_HERSHEY_SIMPLEX, 0.45, color, 1)
    return vis


def draw_pose_axes(img: np.ndarray, pose: PoseEstimate, intrinsics: CameraIntrinsics,
                   frame_size: Tuple[int, int], length: float = None) -> np.ndarray:
    """Project the device axes with the solved pose (intrinsics scaled to the image)."""
    vis = img.copy()
    colors = PipelineConfig.VIZ_COLORS
    length = length or PipelineConfig.AXIS_LENGTH_MM

    sx = vis.shape[1] / frame_size[0]
    sy = vis.shape[0] / frame_size[1]
    k = intrinsics.matrix.copy()
    k[0] *= sx
    k[1] *= sy

    axes = np.float64([[0, 0, 0], [length, 0, 0], [0, length, 0], [0, 0, length]])
    pts, _ = cv2.projectPoints(axes, pose.rvec, pose.tvec, k, np.zeros(5))
    pts = pts.reshape(-1, 2)
    if not np.all(np.isfinite(pts)):
        return vis
    origin = tuple(int(v) for v in pts[0])
    for end, key in zip(pts[1:], ('AXIS_X', 'AXIS_Y', 'AXIS_Z')):
        cv2.line(vis, origin, tuple(int(v) for v in end), colors[key], 2, cv2.LINE_AA)
    return vis


def draw_frame_result(img: np.ndarray, result, intrinsics: CameraIntrinsics = None,
                      frame_size: Tuple[int, int] = None) -> np.ndarray:
    """
    Compose the full overlay for one FrameResult.

    Args:
        img: Frame to draw on (any resolution)
        result: FrameResult from LEDPoseLocalizer.process_frame
        intrinsics: Intrinsics used for the pose, needed to draw axes
        frame_size: (width, height) the intrinsics refer to

    Returns:
        Annotated image
    """
    colors = PipelineConfig.VIZ_COLORS
    vis = dim_image(img, colors['BG_DIM'])
    vis = draw_candidates(vis, result.candidates)
    vis = draw_strips(vis, result.strips)

    measured = {t.feature_id: (t.x, t.y) for t in result.tracked if t.detected}
    predicted = {t.feature_id: (t.x, t.y) for t in result.tracked if t.predicted}
    vis = draw_features_with_labels(vis, predicted, colors['PREDICTED'])
    vis = draw_features_with_labels(vis, measured, colors['MATCHED'])

    if result.pose is not None and intrinsics is not None and frame_size is not None:
        vis = draw_pose_axes(vis, result.pose, intrinsics, frame_size)

    state = result.state.value
    text = f"{state.upper()}  stability {result.stability:.2f}"
    if result.pose is not None:
        p = result.pose
        text += f"  d={p.distance:.2f}m  r/p/y={p.roll:.0f}/{p.pitch:.0f}/{p.yaw:.0f}  err={p.reproj_error:.1f}px"
    banner = PipelineConfig.STATE_COLORS.get(state, (0, 0, 0))
    return add_label_to_image(vis, text, colors['TEXT'], banner, position='bottom')

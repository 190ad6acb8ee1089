"""End-to-end tests: BGR frames through the pipeline and its overlays."""
import json
import sys

import cv2
import numpy as np
import pytest

from ledpose import LED_BEACON, CameraIntrinsics, DetectionState

import pipeline
from pipeline import LEDPosePipeline, format_summary, iter_frames

from conftest import facing_rotation, project

FRAME_SIZE = (640, 480)
INTRINSICS = CameraIntrinsics(600.0, 600.0, 320.0, 240.0)
TVEC = np.array([10.0, -5.0, 500.0])


def render_led_frame(rotation=None, tvec=TVEC, sigma=3.0) -> np.ndarray:
    """BGR frame with Gaussian blue lights at the projected LED_BEACON positions."""
    if rotation is None:
        rotation = facing_rotation(5.0, -5.0, 2.0)
    w, h = FRAME_SIZE
    yy, xx = np.mgrid[0:h, 0:w]
    weight = np.zeros((h, w))
    for u, v in project(LED_BEACON.points, rotation, tvec, INTRINSICS):
        weight = np.maximum(weight, np.exp(-((xx - u) ** 2 + (yy - v) ** 2) / (2 * sigma ** 2)))
    weight[weight < 0.3] = 0.0
    return (weight[:, :, None] * np.array([255.0, 80.0, 40.0])).astype(np.uint8)


class TestLEDPosePipeline:
    """Test suite for LEDPosePipeline."""

    def test_blue_leds_give_a_pose(self):
        """Test five blue lights are detected, matched and solved."""
        pipe = LEDPosePipeline(downscale=2, intrinsics=INTRINSICS)

        result = pipe.process_frame(render_led_frame())

        assert pipe.last_score_map.mask.shape == (240, 320)
        assert len(result.candidates) >= 5
        assert result.state == DetectionState.TRACKING
        assert result.pose is not None
        assert result.pose.tvec[2] == pytest.approx(TVEC[2], rel=0.1)

    def test_dark_frame_keeps_scanning(self):
        pipe = LEDPosePipeline(intrinsics=INTRINSICS)
        data = pipe.process_image(np.zeros((480, 640, 3), dtype=np.uint8))

        assert data['state'] == 'scanning'
        assert data['pose'] is None
        assert data['candidates'] == 0

    def test_unknown_device_raises(self):
        with pytest.raises(ValueError):
            LEDPosePipeline(device='lamp_post')

    def test_visualize_results(self):
        pipe = LEDPosePipeline(downscale=2, intrinsics=INTRINSICS)
        frame = render_led_frame()
        result = pipe.process_frame(frame)

        vis = pipe.visualize_results(frame, result)

        assert vis.shape == (480, 1280, 3)
        assert vis.dtype == np.uint8

    def test_format_summary(self):
        pipe = LEDPosePipeline(intrinsics=INTRINSICS)
        line = format_summary(pipe.process_frame(np.zeros((480, 640, 3), dtype=np.uint8)))
        assert 'State: scanning' in line


class TestCommandLine:
    """Test suite for frame iteration and the CLI entry point."""

    def test_iter_frames_from_directory(self, tmp_path):
        for name in ('b', 'a'):
            cv2.imwrite(str(tmp_path / f"{name}.png"), np.zeros((20, 30, 3), dtype=np.uint8))
        (tmp_path / 'notes.txt').write_text('not an image')

        frames = list(iter_frames(tmp_path))

        assert [name for name, _ in frames] == ['a', 'b']
        assert frames[0][1].shape == (20, 30, 3)

    def test_unreadable_video_raises(self, tmp_path):
        bogus = tmp_path / 'clip.avi'
        bogus.write_bytes(b'not a video')
        with pytest.raises(ValueError):
            list(iter_frames(bogus))

    def test_main_writes_results(self, tmp_path, monkeypatch):
        frames_dir = tmp_path / 'frames'
        frames_dir.mkdir()
        for i in range(2):
            cv2.imwrite(str(frames_dir / f"frame_{i:02d}.png"), render_led_frame())
        out_dir = tmp_path / 'out'

        monkeypatch.setattr(sys, 'argv', ['pipeline', str(frames_dir), '-o', str(out_dir), '--downscale', '2',
                                          '--fx', '600', '--fy', '600', '--cx', '320', '--cy', '240'])
        pipeline.main()

        data = json.loads((out_dir / 'results.json').read_text())
        assert data['device'] == 'led_beacon'
        assert [f['name'] for f in data['frames']] == ['frame_00', 'frame_01']
        assert data['frames'][1]['state'] == 'tracking'

    def test_partial_intrinsics_rejected(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, 'argv', ['pipeline', str(tmp_path), '--fx', '600'])
        with pytest.raises(SystemExit):
            pipeline.main()

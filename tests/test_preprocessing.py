"""Unit tests for the BGR to score map stage."""
import numpy as np
import pytest

from ledpose import PipelineConfig, ScoreMapBuilder

BLUE_BGR = (255, 80, 40)


def builder_config(**overrides) -> dict:
    config = dict(PipelineConfig.PREPROCESSING)
    config.update(overrides)
    return config


def disc_frame(width=100, height=80, center=(50, 40), radius=8, color=BLUE_BGR) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    yy, xx = np.mgrid[0:height, 0:width]
    frame[(xx - center[0]) ** 2 + (yy - center[1]) ** 2 <= radius ** 2] = color
    return frame


class TestScoreMapBuilder:
    """Test suite for ScoreMapBuilder."""

    def test_blue_disc_in_mask(self):
        builder = ScoreMapBuilder(builder_config(DOWNSCALE=1))
        score_map = builder.build(disc_frame())

        assert score_map.mask.shape == (80, 100)
        assert score_map.mask[40, 50] == 255
        assert score_map.mask[5, 5] == 0
        assert score_map.color_diff[40, 50] > 150
        assert score_map.brightness[40, 50] == 255

    def test_white_is_signal_but_not_mask(self):
        """Test a white patch is kept as a bright signal pixel but not detected."""
        builder = ScoreMapBuilder(builder_config(DOWNSCALE=1))
        score_map = builder.build(disc_frame(color=(255, 255, 255)))

        assert score_map.mask[40, 50] == 0
        assert 40 * 100 + 50 in set(score_map.signal_pixels.tolist())

    def test_red_disc_not_detected(self):
        builder = ScoreMapBuilder(builder_config(DOWNSCALE=1))
        score_map = builder.build(disc_frame(color=(40, 40, 255)))
        assert not score_map.mask.any()

    def test_single_pixel_noise_removed(self):
        """Test the opening removes isolated specks."""
        frame = np.zeros((40, 40, 3), dtype=np.uint8)
        frame[20, 20] = BLUE_BGR
        score_map = ScoreMapBuilder(builder_config(DOWNSCALE=1)).build(frame)
        assert not score_map.mask.any()

    def test_downscale(self):
        """Test the working map is smaller but reports the full frame size."""
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        score_map = ScoreMapBuilder(builder_config(DOWNSCALE=4)).build(frame)

        assert (score_map.width, score_map.height) == (160, 120)
        assert (score_map.frame_width, score_map.frame_height) == (640, 480)
        assert score_map.downscale == 4

    @pytest.mark.parametrize("shape", [(40, 40), (40, 40, 4)])
    def test_non_bgr_input_raises(self, shape):
        with pytest.raises(ValueError):
            ScoreMapBuilder().build(np.zeros(shape, dtype=np.uint8))

    @pytest.mark.parametrize("value, expected", [(0.0, 0.02), (0.3, 0.3), (0.9, 0.5)])
    def test_set_threshold_clamps(self, value, expected):
        builder = ScoreMapBuilder()
        builder.set_threshold(value)
        assert builder.threshold == pytest.approx(expected)

    def test_adaptive_threshold_blends(self):
        """Test a dark frame pulls the threshold toward the adaptive minimum."""
        builder = ScoreMapBuilder(builder_config(DOWNSCALE=1))
        builder.build(np.zeros((30, 30, 3), dtype=np.uint8))

        # 0.12 * 0.9 + 0.08 * 0.1
        assert builder.threshold == pytest.approx(0.116)

    def test_adaptive_threshold_disabled(self):
        adaptive = dict(PipelineConfig.PREPROCESSING['ADAPTIVE'], ENABLED=False)
        builder = ScoreMapBuilder(builder_config(DOWNSCALE=1, ADAPTIVE=adaptive))
        builder.build(np.zeros((30, 30, 3), dtype=np.uint8))
        assert builder.threshold == pytest.approx(0.12)

    def test_shared_config_untouched(self):
        builder = ScoreMapBuilder()
        builder.set_threshold(0.3)
        assert PipelineConfig.PREPROCESSING['THRESHOLD'] == 0.12

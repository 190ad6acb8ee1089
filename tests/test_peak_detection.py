"""Unit tests for peak (NMS) point detection."""
import numpy as np
import pytest

from ledpose import PeakCandidate, PeakDetector, PipelineConfig, ScoreMap

from conftest import render_score_map


def profile_score_map(profile: np.ndarray) -> ScoreMap:
    """Score map whose brightness and colour difference follow a 0-1 intensity profile."""
    mask = (profile > 0.05).astype(np.uint8) * 255
    return ScoreMap(mask, (120 * profile).astype(np.uint8), (250 * profile).astype(np.uint8))


def gaussian_profile(width, height, center, sigma_x, sigma_y) -> np.ndarray:
    yy, xx = np.mgrid[0:height, 0:width]
    cx, cy = center
    return np.exp(-((xx - cx) ** 2 / (2.0 * sigma_x ** 2) + (yy - cy) ** 2 / (2.0 * sigma_y ** 2)))


class TestPeakDetection:
    """Test suite for PeakDetector."""

    def test_single_spot(self):
        """Test one disc yields one centred, point-like peak."""
        score_map = render_score_map(80, 60, spots=[(30, 20, 2)])
        peaks = PeakDetector().detect(score_map)

        assert len(peaks) == 1
        peak = peaks[0]
        assert isinstance(peak, PeakCandidate)
        assert peak.px == pytest.approx(30.0, abs=1e-6)
        assert peak.py == pytest.approx(20.0, abs=1e-6)
        assert peak.x == pytest.approx(30 / 80)
        assert peak.isotropy == pytest.approx(1.0)
        assert peak.pointiness >= PipelineConfig.PEAK_DETECTION['MIN_POINTINESS']

    def test_separate_spots(self):
        """Test two well separated discs give two peaks."""
        score_map = render_score_map(100, 60, spots=[(20, 30, 2), (70, 30, 2)])
        peaks = PeakDetector().detect(score_map)

        assert sorted(round(p.px) for p in peaks) == [20, 70]

    def test_rerun_is_identical(self):
        """Test detection has no state leaking between calls."""
        score_map = render_score_map(120, 90, spots=[(20, 30, 2), (70, 50, 2), (100, 20, 1)])
        detector = PeakDetector()

        first = detector.detect(score_map)
        second = detector.detect(score_map)
        assert first == second

    def test_empty_map(self):
        """Test that a blank score map has no peaks."""
        assert PeakDetector().detect(render_score_map(40, 30)) == []

    def test_capped_at_max_candidates(self):
        """Test the output never exceeds the configured candidate count."""
        spots = [(10 + 15 * i, 10 + 15 * j, 2) for i in range(6) for j in range(4)]
        score_map = render_score_map(100, 70, spots=spots)
        peaks = PeakDetector().detect(score_map)

        assert len(peaks) == PipelineConfig.PEAK_DETECTION['MAX_CANDIDATES']

    def test_out_of_range_signal_pixels_ignored(self):
        """Test stray flat indices outside the map are dropped instead of raising."""
        base = render_score_map(80, 60, spots=[(30, 20, 2)])
        pixels = np.concatenate(([-1], np.flatnonzero(base.mask), [80 * 60, 10 ** 9]))
        score_map = ScoreMap(base.mask, base.color_diff, base.brightness, signal_pixels=pixels)

        peaks = PeakDetector().detect(score_map)

        assert [(round(p.px), round(p.py)) for p in peaks] == [(30, 20)]

    def test_only_out_of_range_signal_pixels_fall_back_to_mask(self):
        base = render_score_map(80, 60, spots=[(30, 20, 2)])
        score_map = ScoreMap(base.mask, base.color_diff, base.brightness, signal_pixels=[-5, 10 ** 6])

        peaks = PeakDetector().detect(score_map)

        assert len(peaks) == 1


class TestShapeFilters:
    """Test suite for the pointiness and isotropy filters."""

    def test_ridge_is_anisotropic(self):
        """Test a horizontal line has no horizontal falloff along its length."""
        smoothed = np.zeros((20, 40))
        smoothed[10, :] = 200.0
        assert PeakDetector().isotropy(smoothed, 20, 10) == 0.0

    def test_round_spot_is_isotropic(self):
        smoothed = 200.0 * gaussian_profile(40, 40, (20, 20), 2.0, 2.0)
        assert PeakDetector().isotropy(smoothed, 20, 20) == pytest.approx(1.0)

    def test_flat_glow_is_not_pointy(self):
        """Test a uniform patch scores a pointiness of one."""
        smoothed = np.full((30, 30), 150.0)
        assert PeakDetector().pointiness(smoothed, 15, 15) == pytest.approx(1.0)

    def test_elongated_maximum_rejected(self):
        """Test the maximum of a long thin streak is found but filtered out as a non-point."""
        score_map = profile_score_map(gaussian_profile(80, 60, (40, 30), 15.0, 1.0))
        detector = PeakDetector()
        smoothed = detector.smooth(detector.compute_score_map(score_map))

        assert detector.find_peaks(smoothed)
        assert detector.isotropy(smoothed, 40, 30) < detector.min_isotropy
        assert detector.detect(score_map) == []

    def test_diffuse_glow_rejected(self):
        """Test a wide soft glow is found but filtered out for lacking a sharp centre."""
        score_map = profile_score_map(gaussian_profile(80, 60, (40, 30), 8.0, 8.0))
        detector = PeakDetector()
        smoothed = detector.smooth(detector.compute_score_map(score_map))

        assert detector.find_peaks(smoothed)
        assert detector.isotropy(smoothed, 40, 30) == pytest.approx(1.0, abs=0.05)
        assert detector.pointiness(smoothed, 40, 30) < detector.min_pointiness
        assert detector.detect(score_map) == []


class TestNonMaximumSuppression:
    """Test suite for find_peaks."""

    def test_weaker_neighbour_suppressed(self):
        """Test a lower maximum inside the radius is suppressed."""
        smoothed = np.zeros((20, 20))
        smoothed[10, 10] = 200
        smoothed[10, 12] = 150

        peaks = PeakDetector().find_peaks(smoothed)
        assert [(x, y) for x, y, _ in peaks] == [(10, 10)]

    def test_neighbour_outside_radius_survives(self):
        """Test both maxima survive with a smaller window."""
        smoothed = np.zeros((20, 20))
        smoothed[10, 10] = 200
        smoothed[10, 12] = 150
        detector = PeakDetector()
        detector.nms_radius = 1

        peaks = detector.find_peaks(smoothed)
        assert [(x, y) for x, y, _ in peaks] == [(10, 10), (12, 10)]

    def test_plateau_keeps_equal_values(self):
        """Test pixels equal to their neighbourhood maximum all survive."""
        smoothed = np.zeros((10, 10))
        smoothed[5, 5] = smoothed[5, 6] = 100

        peaks = PeakDetector().find_peaks(smoothed)
        assert len(peaks) == 2

    def test_below_min_score_ignored(self):
        """Test maxima under the minimum peak score are dropped."""
        smoothed = np.zeros((10, 10))
        smoothed[5, 5] = 50
        assert PeakDetector().find_peaks(smoothed) == []

    def test_peak_at_border(self):
        """Test the window is clipped at the image border."""
        smoothed = np.zeros((10, 10))
        smoothed[0, 0] = 150
        peaks = PeakDetector().find_peaks(smoothed)
        assert [(x, y) for x, y, _ in peaks] == [(0, 0)]


class TestExpectedFeatureSize:
    """Test suite for set_expected_feature_size."""

    @pytest.mark.parametrize("diameter, radius", [(4, 6), (2, 3), (3, 5), (10, 8), (0.5, 2)])
    def test_radius_scaled_and_clamped(self, diameter, radius):
        """Test the NMS radius is 1.5x the diameter, rounded half up and clamped to [2, 8]."""
        detector = PeakDetector()
        detector.set_expected_feature_size(diameter)
        assert detector.nms_radius == radius

    def test_shared_defaults_untouched(self):
        """Test runtime changes stay on the instance."""
        detector = PeakDetector()
        detector.set_expected_feature_size(5)
        assert PipelineConfig.PEAK_DETECTION['NMS_RADIUS'] == 3
        assert PeakDetector().nms_radius == 3

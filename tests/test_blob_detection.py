"""Unit tests for Union-Find labelling, blob filters and strip extraction."""
import numpy as np
import pytest
from scipy import ndimage

from ledpose import BlobDetector, ScoreMap, StripFeature, UnionFind

from conftest import render_score_map


def score_map_from_mask(mask, diff=120, bright=230) -> ScoreMap:
    mask = np.asarray(mask, dtype=bool)
    return ScoreMap(mask.astype(np.uint8) * 255,
                    np.where(mask, diff, 0).astype(np.uint8),
                    np.where(mask, bright, 0).astype(np.uint8))


def spiral_mask(size: int = 31) -> np.ndarray:
    """One-pixel-wide inward spiral with one-pixel gaps between turns."""
    mask = np.zeros((size, size), dtype=bool)
    y = x = 0
    mask[0, 0] = True
    directions = [(0, 1), (1, 0), (0, -1), (-1, 0)]
    lengths = [size - 1] * 3
    k = size - 3
    while k > 0:
        lengths += [k, k]
        k -= 2
    for i, length in enumerate(lengths):
        dy, dx = directions[i % 4]
        for _ in range(length):
            y += dy
            x += dx
            mask[y, x] = True
    return mask


def component_sets(pixels, labels):
    groups = {}
    for p, l in zip(pixels.tolist(), labels.tolist()):
        groups.setdefault(l, set()).add(p)
    return {frozenset(g) for g in groups.values()}


def reference_sets(mask):
    labeled, n = ndimage.label(mask)
    return {frozenset(np.flatnonzero(labeled.ravel() == i).tolist()) for i in range(1, n + 1)}


class TestUnionFind:
    """Test suite for the disjoint-set forest."""

    def test_union_and_find(self):
        """Test that unions merge sets and find returns a shared root."""
        uf = UnionFind(6)
        uf.union(0, 1)
        uf.union(2, 3)
        uf.union(1, 3)

        assert uf.find(0) == uf.find(3)
        assert uf.find(4) != uf.find(0)
        assert uf.find(5) == 5

    def test_long_chain(self):
        """Test a long chain collapses to one root."""
        uf = UnionFind(1000)
        for i in range(999):
            uf.union(i, i + 1)
        roots = {uf.find(i) for i in range(1000)}
        assert len(roots) == 1


class TestLabelComponents:
    """Test suite for 4-connected component labelling."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_matches_reference_flood_fill(self, seed):
        """Test labelling against scipy.ndimage.label on random masks."""
        mask = np.random.default_rng(seed).random((40, 50)) < 0.45
        pixels, labels = BlobDetector().label_components(score_map_from_mask(mask))

        assert component_sets(pixels, labels) == reference_sets(mask)

    def test_single_pixel_component(self):
        """Test an isolated pixel forms its own component."""
        mask = np.zeros((10, 10), dtype=bool)
        mask[4, 7] = True
        pixels, labels = BlobDetector().label_components(score_map_from_mask(mask))

        assert pixels.tolist() == [47]
        assert labels.tolist() == [0]

    def test_spiral_is_one_component(self):
        """Test a spiral (deep Union-Find trees) resolves to a single label."""
        mask = spiral_mask(31)
        pixels, labels = BlobDetector().label_components(score_map_from_mask(mask))

        assert len(set(labels.tolist())) == 1
        assert component_sets(pixels, labels) == reference_sets(mask)

    def test_diagonal_pixels_are_separate(self):
        """Test that 8-neighbours without a 4-neighbour link stay apart."""
        mask = np.eye(5, dtype=bool)
        _, labels = BlobDetector().label_components(score_map_from_mask(mask))
        assert len(set(labels.tolist())) == 5

    def test_scan_order_does_not_change_labels(self):
        """Test shuffling the scan order yields identical pixel labels."""
        mask = np.random.default_rng(7).random((30, 30)) < 0.5
        score_map = score_map_from_mask(mask)
        detector = BlobDetector()

        pixels, labels = detector.label_components(score_map)
        order = np.random.default_rng(8).permutation(pixels.size)
        shuffled_pixels, shuffled_labels = detector.label_components(score_map, order=order)

        expected = dict(zip(pixels.tolist(), labels.tolist()))
        actual = dict(zip(shuffled_pixels.tolist(), shuffled_labels.tolist()))
        assert actual == expected

    def test_signal_pixels_outside_mask_are_ignored(self):
        """Test that signal pixels not in the mask do not join components."""
        mask = np.zeros((5, 5), dtype=bool)
        mask[2, 1] = True
        mask[2, 3] = True
        score_map = score_map_from_mask(mask)
        score_map.signal_pixels = np.array([11, 12, 13])

        _, labels = BlobDetector().label_components(score_map)
        assert len(set(labels.tolist())) == 2

    def test_empty_mask(self):
        """Test that an empty mask yields no pixels and no blobs."""
        score_map = score_map_from_mask(np.zeros((8, 8), dtype=bool))
        detector = BlobDetector()

        pixels, labels = detector.label_components(score_map)
        assert pixels.size == 0 and labels.size == 0
        assert detector.detect(score_map) == []
        assert detector.detect_strips(score_map) == []


class TestBlobFilters:
    """Test suite for area, aspect, signal and compactness filters."""

    def test_compact_spot_is_detected(self):
        """Test a small disc becomes one candidate at its centroid."""
        score_map = render_score_map(80, 60, spots=[(40, 30, 2)])
        blobs = BlobDetector().detect(score_map)

        assert len(blobs) == 1
        assert blobs[0].px == pytest.approx(40.0)
        assert blobs[0].py == pytest.approx(30.0)
        assert blobs[0].x == pytest.approx(0.5)
        assert blobs[0].area == 13

    def test_large_blob_rejected_by_area(self):
        """Test that components above the maximum area are dropped."""
        mask = np.zeros((40, 40), dtype=bool)
        mask[5:20, 5:20] = True
        assert BlobDetector().detect(score_map_from_mask(mask)) == []

    def test_elongated_blob_rejected_by_aspect(self):
        """Test a thin line is rejected by the aspect ratio filter."""
        mask = np.zeros((20, 20), dtype=bool)
        mask[10, 2:10] = True
        assert BlobDetector().detect(score_map_from_mask(mask)) == []

    def test_dim_blob_rejected_by_signal(self):
        """Test a weak, low colour-difference blob is rejected."""
        mask = np.zeros((20, 20), dtype=bool)
        mask[8:11, 8:11] = True
        assert BlobDetector().detect(score_map_from_mask(mask, diff=5, bright=100)) == []

    def test_saturated_blob_kept_without_colour(self):
        """Test a saturated white blob passes despite zero colour difference."""
        mask = np.zeros((20, 20), dtype=bool)
        mask[8:11, 8:11] = True
        blobs = BlobDetector().detect(score_map_from_mask(mask, diff=0, bright=240))
        assert len(blobs) == 1

    def test_sparse_shape_rejected_by_compactness(self):
        """Test an L-shape filling little of its bounding box is rejected."""
        mask = np.zeros((20, 20), dtype=bool)
        mask[2:11, 2] = True
        mask[10, 2:11] = True
        assert BlobDetector().detect(score_map_from_mask(mask)) == []

    def test_sorted_by_score(self):
        """Test blobs are sorted by descending composite score."""
        mask = np.zeros((30, 30), dtype=bool)
        mask[5:8, 5:8] = True
        mask[20:23, 20:23] = True
        bright = np.zeros((30, 30), dtype=np.uint8)
        bright[5:8, 5:8] = 120
        bright[20:23, 20:23] = 250
        score_map = ScoreMap(mask.astype(np.uint8) * 255,
                             np.where(mask, 60, 0).astype(np.uint8), bright)

        blobs = BlobDetector().detect(score_map)
        assert [round(b.px) for b in blobs] == [21, 6]
        assert blobs[0].score > blobs[1].score


class TestStrips:
    """Test suite for strip detection and edge extraction."""

    def test_horizontal_strip_detected(self):
        """Test a wide rectangle is reported as a strip with its pixel bbox."""
        score_map = render_score_map(100, 60, strips=[(20, 30, 59, 33)])
        strips = BlobDetector().detect_strips(score_map)

        assert len(strips) == 1
        assert isinstance(strips[0], StripFeature)
        assert strips[0].bbox_px == (20, 30, 59, 33)
        assert strips[0].bbox_w_px == 40
        assert strips[0].bbox_h_px == 4
        assert not strips[0].has_edges

    def test_vertical_strip_ignored(self):
        """Test that a tall rectangle is not a strip."""
        score_map = render_score_map(100, 60, strips=[(40, 5, 43, 44)])
        assert BlobDetector().detect_strips(score_map) == []

    def test_strips_sorted_top_to_bottom(self):
        """Test strips are ordered by vertical position."""
        score_map = render_score_map(100, 80, strips=[(20, 60, 59, 62), (20, 10, 59, 12), (20, 35, 59, 37)])
        strips = BlobDetector().detect_strips(score_map)

        ys = [s.y for s in strips]
        assert ys == sorted(ys)
        assert len(strips) == 3

    def test_edge_midpoints(self):
        """Test edges are the mean of the outermost occupied columns."""
        score_map = render_score_map(100, 60, strips=[(20, 30, 59, 33)])
        detector = BlobDetector()
        strip = detector.detect_strips(score_map)[0]

        with_edges = detector.extract_strip_edges(strip, score_map)

        assert with_edges is not strip
        assert strip.edge_left is None
        assert with_edges.has_edges
        assert with_edges.edge_left[0] == pytest.approx(21 / 100)
        assert with_edges.edge_right[0] == pytest.approx(58 / 100)
        assert with_edges.edge_left[1] == pytest.approx(31.5 / 60)
        assert with_edges.edge_right[1] == pytest.approx(31.5 / 60)

    def test_detect_strips_with_edges(self):
        """Test the combined call returns strips with both edges."""
        score_map = render_score_map(100, 80, strips=[(10, 10, 49, 12), (10, 40, 49, 42)])
        strips = BlobDetector().detect_strips_with_edges(score_map)

        assert len(strips) == 2
        assert all(s.has_edges for s in strips)

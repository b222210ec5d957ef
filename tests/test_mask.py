# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np

from samj.annotation.douglas_peucker import simplify
from samj.annotation.mask import Mask, remap_contour, remap_rle, split_runs_at_rows
from samj.annotation.polygon_to_rle import polygon_to_rle
from samj.encoding.region import EncodedRegion


def square_outline(side):
    """Every boundary pixel of a side x side square, traced clockwise from (0, 0)."""
    top = [(x, 0) for x in range(side)]
    right = [(side - 1, y) for y in range(1, side)]
    bottom = [(x, side - 1) for x in range(side - 2, -1, -1)]
    left = [(0, y) for y in range(side - 2, 0, -1)]
    return np.array(top + right + bottom + left)


class TestRemap:
    def test_split_runs_at_rows(self):
        starts, lengths = split_runs_at_rows([2, 3, 6, 2], width=3)
        np.testing.assert_array_equal(starts, [2, 3, 6])
        np.testing.assert_array_equal(lengths, [1, 2, 2])

    def test_identity_region(self):
        region = EncodedRegion((0, 0), (100, 80))
        np.testing.assert_array_equal(remap_rle([2010, 4], region, 100), [2010, 4])

    def test_offset_region(self):
        region = EncodedRegion((10, 20), (30, 30))
        # local row 1, columns 2..4
        np.testing.assert_array_equal(remap_rle([32, 3], region, 100), [(21 * 100 + 12), 3])

    def test_scale_expands_runs_to_blocks(self):
        region = EncodedRegion((10, 20), (6, 4), scale=2)
        np.testing.assert_array_equal(remap_rle([0, 2], region, 100), [2010, 4, 2110, 4])

    def test_scaled_runs_are_clipped_to_region(self):
        region = EncodedRegion((10, 20), (5, 3), scale=2)
        np.testing.assert_array_equal(remap_rle([1, 2], region, 100), [2012, 3, 2112, 3])
        # the second block row only has one full-resolution row left
        np.testing.assert_array_equal(remap_rle([3, 1], region, 100), [2210, 2])

    def test_empty_rle(self):
        region = EncodedRegion((10, 20), (5, 3), scale=2)
        assert len(remap_rle([], region, 100)) == 0

    def test_remap_contour(self):
        region = EncodedRegion((10, 20), (6, 4), scale=2)
        np.testing.assert_array_equal(remap_contour([0, 1], [2, 0], region), [[10, 24], [12, 20]])

    def test_from_local_keeps_contour_and_rle_consistent(self):
        region = EncodedRegion((941, 941), (128, 128))
        mask = Mask.from_local([59, 60], [59, 59], [59 * 128 + 59, 2], region, (2048, 2048))
        np.testing.assert_array_equal(mask.contour, [[1000, 1000], [1001, 1000]])
        np.testing.assert_array_equal(mask.rle, [1000 * 2048 + 1000, 2])


class TestMask:
    def test_area_and_runs(self):
        mask = Mask([[0, 0], [2, 0]], [0, 3, 10, 2], image_size=(10, 10))
        assert mask.area() == 5
        np.testing.assert_array_equal(mask.runs, [[0, 3], [10, 2]])

    def test_from_outputs(self):
        outputs = {"contours_x": [[0, 1], [5]], "contours_y": [[0, 0], [5]], "rle": [[0, 2], [55, 1]]}
        masks = Mask.from_outputs(outputs, EncodedRegion((0, 0), (10, 10)), (10, 10))
        assert [m.area() for m in masks] == [2, 1]
        assert masks[0].uuid != masks[1].uuid

    def test_simplify_and_complicate(self):
        outline = square_outline(10)
        rle = np.ravel([[y * 10, 10] for y in range(10)])
        mask = Mask(outline, rle, image_size=(10, 10))
        assert len(mask) == 36

        mask.simplify()
        assert mask.complication_level == 0.5
        np.testing.assert_array_equal(mask.contour, [[0, 0], [9, 0], [9, 9], [0, 9], [0, 1]])
        # the stored RLE no longer matches the polygon and is rebuilt from it
        assert mask.area() == 90

        mask.complicate()
        assert mask.complication_level == 0
        assert len(mask) == 36
        np.testing.assert_array_equal(mask.rle, rle)

    def test_complicate_at_full_detail_is_noop(self):
        mask = Mask(square_outline(4), [0, 4], image_size=(4, 4))
        mask.complicate()
        assert mask.complication_level == 0
        assert len(mask) == 12

    def test_simplify_is_memoized(self):
        mask = Mask(square_outline(10), [0, 1], image_size=(10, 10))
        mask.simplify()
        first = mask.contour
        mask.complicate()
        mask.simplify()
        assert mask.contour is first

    def test_set_contour_rebuilds_rle(self):
        mask = Mask(square_outline(4), [0, 4], image_size=(10, 10))
        mask.set_contour([[2, 2], [6, 2], [6, 6], [2, 6]])
        np.testing.assert_array_equal(mask.rle, [22, 5, 32, 5, 42, 5, 52, 5])

    def test_clear(self):
        mask = Mask(square_outline(4), [0, 4], image_size=(4, 4))
        mask.clear()
        assert len(mask) == 0
        assert mask.area() == 0

    def test_get_mask_labels(self):
        first = Mask([[0, 0]], [0, 3])
        second = Mask([[2, 0]], [2, 2])
        label_image = Mask.get_mask(4, 2, [first, second])
        assert label_image.dtype == np.uint16
        np.testing.assert_array_equal(label_image, [[1, 1, 2, 2], [0, 0, 0, 0]])


class TestPolygonToRle:
    def test_square(self):
        rle = polygon_to_rle([[2, 2], [6, 2], [6, 6], [2, 6]], 10, 10)
        np.testing.assert_array_equal(rle, [22, 5, 32, 5, 42, 5, 52, 5])

    def test_clipped_to_image(self):
        rle = polygon_to_rle([[-5, 0], [3, 0], [3, 2], [-5, 2]], 10, 10)
        np.testing.assert_array_equal(rle, [0, 4, 10, 4])

    def test_degenerate_polygon(self):
        assert len(polygon_to_rle([[0, 0], [5, 5]], 10, 10)) == 0


class TestDouglasPeucker:
    def test_collinear_points_are_dropped(self):
        line = [(x, 0) for x in range(10)]
        np.testing.assert_array_equal(simplify(line, 0.5), [[0, 0], [9, 0]])

    def test_corner_is_kept(self):
        path = [(0, 0), (5, 0), (5, 5)]
        np.testing.assert_array_equal(simplify(path, 0.5), path)

    def test_small_deviation_is_dropped(self):
        path = [(0, 0), (5, 0.4), (10, 0)]
        np.testing.assert_array_equal(simplify(path, 0.5), [[0, 0], [10, 0]])

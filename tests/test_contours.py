# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np

from samj.remote.contours import encode_rle, get_polygons_from_binary_mask, trace_contour
from samj.remote.server import add_roi_manager_border


def test_encode_rle():
    mask = np.array([[0, 1, 1], [1, 0, 0]])
    assert encode_rle(mask) == [1, 3]


def test_encode_rle_runs_to_the_end():
    mask = np.array([[1, 0], [1, 1]])
    assert encode_rle(mask) == [0, 1, 2, 2]


def test_encode_rle_empty():
    assert encode_rle(np.zeros((3, 3))) == []


def test_trace_block_outline():
    xs, ys = trace_contour(np.ones((3, 3), dtype=np.uint8), max_iters=9, offset_x=5, offset_y=7)
    assert xs == [5, 6, 7, 7, 7, 6, 5, 5]
    assert ys == [7, 7, 7, 8, 9, 9, 9, 8]


def test_polygons_drop_small_objects():
    mask = np.zeros((10, 10), dtype=bool)
    mask[1:4, 1:4] = True  # 9 pixels
    mask[6:8, 6:8] = True  # 4 pixels
    xs, ys, rles = get_polygons_from_binary_mask(mask, min_size=6)
    assert len(rles) == 1
    assert sum(rles[0][1::2]) == 9
    assert min(xs[0]) == 1 and max(xs[0]) == 3
    assert min(ys[0]) == 1 and max(ys[0]) == 3


def test_polygons_return_all_or_biggest():
    mask = np.zeros((10, 10), dtype=bool)
    mask[1:4, 1:4] = True
    mask[6:8, 6:8] = True
    _, _, rles = get_polygons_from_binary_mask(mask, min_size=1)
    assert len(rles) == 2
    _, _, rles = get_polygons_from_binary_mask(mask, min_size=1, only_biggest=True)
    assert len(rles) == 1
    assert sum(rles[0][1::2]) == 9


def test_diagonal_pixels_are_separate_objects():
    mask = np.zeros((4, 4), dtype=bool)
    mask[0, 0] = mask[1, 1] = True
    _, _, rles = get_polygons_from_binary_mask(mask, min_size=1)
    assert len(rles) == 2


def test_roi_manager_border_grows_right_and_down():
    mask = np.zeros((3, 3), dtype=bool)
    mask[0, 0] = True
    grown = add_roi_manager_border(mask)
    assert grown[0, 0] and grown[1, 1]
    assert grown.sum() == 2
    assert mask.sum() == 1

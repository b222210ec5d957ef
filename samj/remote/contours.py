# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Mask post-processing run next to the model: boundary tracing and RLE encoding.

The output contract is fixed: per object an ordered list of boundary x
coordinates, the matching y coordinates, and a flat [start, length, ...] RLE
over the row-major flattened mask the object was found in.
"""

from typing import List, Tuple

import numpy as np
from skimage import measure

# Directions are coded as on a numeric keypad (8 = up, 6 = right, ...).
CCW_DIR = [8, 9, 6, 3, 2, 1, 4, 7]
DIR_IDX = [0, 5, 4, 3, 6, 0, 2, 7, 0, 1]
COUNTER_SHIFTED_DIR = [0, 6, 9, 8, 3, 0, 7, 2, 1, 4]
DIR_DX = [0, -1, 0, 1, -1, 0, 1, -1, 0, 1]
DIR_DY = [0, 1, 1, 1, 0, 0, 0, -1, -1, -1]


def encode_rle(mask) -> List[int]:
    """
    Encode a binary mask using run-length encoding.

    Args:
        mask: 2D array, non-zero values are foreground.

    Returns:
        List[int]: [start1, length1, start2, length2, ...] over the row-major
            flattened mask, 0-based.
    """
    binary = np.asarray(mask).reshape(-1) != 0
    if binary.size == 0:
        return []
    padded = np.concatenate(([False], binary, [False]))
    changes = np.flatnonzero(padded[1:] != padded[:-1])
    starts, ends = changes[0::2], changes[1::2]
    rle = np.empty(2 * len(starts), dtype=np.int64)
    rle[0::2] = starts
    rle[1::2] = ends - starts
    return rle.tolist()


def is_edge_pixel(image: np.ndarray, cx: int, cy: int) -> bool:
    h, w = image.shape
    if cx < 0 or cx >= w or cy < 0 or cy >= h:
        return False
    return (
        cy == 0
        or image[cy - 1, cx] == 0
        or cx == 0
        or image[cy, cx - 1] == 0
        or cx == w - 1
        or image[cy, cx + 1] == 0
        or cy == h - 1
        or image[cy + 1, cx] == 0
    )


def find_contour_neighbor(image: np.ndarray, cx: int, cy: int, last_forward_dir: int):
    """Next boundary pixel counter-clockwise from the direction we came from."""
    test_dir = COUNTER_SHIFTED_DIR[last_forward_dir]
    for _ in range(8):
        nx = cx + DIR_DX[test_dir]
        ny = cy + DIR_DY[test_dir]
        if is_edge_pixel(image, nx, ny) and image[ny, nx] != 0:
            return nx, ny, test_dir
        test_dir = CCW_DIR[(DIR_IDX[test_dir] + 1) % 8]
    # isolated pixel
    return cx, cy, last_forward_dir


def trace_contour(image: np.ndarray, max_iters: int, offset_x: int = 0, offset_y: int = 0):
    """
    Trace the outer boundary of the object touching the first row of `image`.

    Returns:
        Tuple[List[int], List[int]]: boundary x and y coordinates, shifted by
            the offsets.
    """
    sy = 0
    sx = int(np.flatnonzero(image[0])[0])
    x_coords = [sx + offset_x]
    y_coords = [sy + offset_y]
    x, y, last_forward_dir = find_contour_neighbor(image, sx, sy, 1)
    count = 1
    while not (x == sx and y == sy) and count < max_iters:
        x_coords.append(int(x + offset_x))
        y_coords.append(int(y + offset_y))
        x, y, last_forward_dir = find_contour_neighbor(image, x, y, last_forward_dir)
        count += 1
    return x_coords, y_coords


def get_polygons_from_binary_mask(
    mask: np.ndarray, min_size: int = 6, only_biggest: bool = False
) -> Tuple[List[List[int]], List[List[int]], List[List[int]]]:
    """
    Split a binary mask into 4-connected objects and describe each of them.

    Args:
        mask (np.ndarray): 2D mask, non-zero is foreground.
        min_size (int): objects with fewer pixels are dropped.
        only_biggest (bool): keep only the largest object.

    Returns:
        Tuple of lists (contours_x, contours_y, rles), one entry per object.
    """
    labeled = measure.label(np.asarray(mask) > 0, connectivity=1)
    x_contours, y_contours, rles, sizes = [], [], [], []
    for obj in measure.regionprops(labeled):
        if obj.area < min_size:
            continue
        min_row, min_col = obj.bbox[0], obj.bbox[1]
        xs, ys = trace_contour(obj.image, int(obj.area), min_col, min_row)
        x_contours.append(xs)
        y_contours.append(ys)
        rles.append(encode_rle(labeled == obj.label))
        sizes.append(int(obj.area))
    if only_biggest and sizes:
        biggest = int(np.argmax(sizes))
        return [x_contours[biggest]], [y_contours[biggest]], [rles[biggest]]
    return x_contours, y_contours, rles

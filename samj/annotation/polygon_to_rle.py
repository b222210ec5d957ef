# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Scan-line rasterization of a polygon into a run-length encoded mask.

Used when a contour has been modified (for example simplified) and the RLE
stored with it no longer describes the same pixel set.
"""

import math

import numpy as np


def polygon_to_rle(contour, width: int, height: int) -> np.ndarray:
    """
    Rasterize a closed polygon into [start, length, start, length, ...] runs.

    Each image row y is sampled at y + 0.5; the pixels between pairs of edge
    intersections are foreground. Starts are row-major linear indices over an
    image of the given width.

    Args:
        contour: (N, 2) array-like of (x, y) vertices. The polygon is closed
            implicitly when the last vertex differs from the first.
        width (int): image width in pixels.
        height (int): image height in pixels.

    Returns:
        np.ndarray: flat int64 array of start/length pairs.
    """
    contour = np.asarray(contour, dtype=float)
    if len(contour) < 3:
        return np.zeros(0, dtype=np.int64)
    if not np.array_equal(contour[0], contour[-1]):
        contour = np.vstack([contour, contour[:1]])

    # Edge table with y0 <= y1, horizontal edges dropped
    edges = []
    for (ax, ay), (bx, by) in zip(contour[:-1], contour[1:]):
        if ay == by:
            continue
        if ay > by:
            ax, ay, bx, by = bx, by, ax, ay
        edges.append((ay, by, ax, (bx - ax) / (by - ay)))

    runs = []
    for y in range(height):
        scan_y = y + 0.5
        xs = sorted(x0 + dxdy * (scan_y - y0) for y0, y1, x0, dxdy in edges if y0 <= scan_y < y1)
        for left, right in zip(xs[0::2], xs[1::2]):
            x0 = max(0, math.ceil(left))
            x1 = min(width - 1, math.floor(right))
            if x1 < x0:
                continue
            runs.extend((y * width + x0, x1 - x0 + 1))
    return np.asarray(runs, dtype=np.int64)

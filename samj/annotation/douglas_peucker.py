# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np


def perpendicular_distance(points: np.ndarray, start: np.ndarray, end: np.ndarray) -> np.ndarray:
    """Distance of every point to the line through start and end."""
    d = end - start
    norm = np.hypot(d[0], d[1])
    if norm == 0:
        return np.hypot(points[:, 0] - start[0], points[:, 1] - start[1])
    cross = np.abs(d[1] * (points[:, 0] - start[0]) - d[0] * (points[:, 1] - start[1]))
    return cross / norm


def simplify(points, epsilon: float) -> np.ndarray:
    """
    Simplify a polyline with the Ramer-Douglas-Peucker algorithm.

    Args:
        points: (N, 2) array-like of ordered vertices, endpoints included.
        epsilon (float): largest perpendicular distance, in pixels, that may
            be dropped.

    Returns:
        np.ndarray: (M, 2) array with the retained vertices, M <= N.
    """
    points = np.asarray(points, dtype=float)
    if len(points) < 3:
        return points.copy()

    # Iterative version of the recursion to avoid deep stacks on long contours
    keep = np.zeros(len(points), dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, len(points) - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        dists = perpendicular_distance(points[first + 1 : last], points[first], points[last])
        index = int(np.argmax(dists))
        if dists[index] > epsilon:
            split = first + 1 + index
            keep[split] = True
            stack.append((first, split))
            stack.append((split, last))
    return points[keep]

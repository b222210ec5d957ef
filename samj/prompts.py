# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Prompt validation and translation into region-local commands.

Callers always give prompts in full-image coordinates. Once the session has
settled on the encoded region, PromptAdapter rewrites them into the local
coordinates of that region, local = ceil((full - origin) / scale), and wraps
them into the command sent to the inference process.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from samj.commands import BatchCommand, BoxCommand, PointsCommand
from samj.encoding.region import EncodedRegion, Rect
from samj.errors import InvalidArgumentError
from samj.remote.shm import SharedArrayRef


def as_points(points, name: str = "points") -> Tuple[Tuple[int, int], ...]:
    if points is None:
        return ()
    array = np.asarray(points)
    if array.size == 0:
        return ()
    if array.ndim != 2 or array.shape[1] != 2:
        raise InvalidArgumentError(f"{name} must be a sequence of (x, y) pairs, got shape {array.shape}")
    return tuple((int(x), int(y)) for x, y in array)


def as_box(box) -> Tuple[int, int, int, int]:
    values = np.asarray(box).reshape(-1)
    if values.size != 4:
        raise InvalidArgumentError(f"A box needs 4 values [x0, y0, x1, y1], got {values.size}")
    x0, y0, x1, y1 = (int(v) for v in values)
    if x1 < x0 or y1 < y0:
        raise InvalidArgumentError(f"Box {[x0, y0, x1, y1]} is not ordered as [x0, y0, x1, y1]")
    return (x0, y0, x1, y1)


def validate_points(points: Sequence, width: int, height: int, roi: Optional[Rect] = None):
    """Points must lie in the image, and inside the region of interest when one is given."""
    image_rect = Rect(0, 0, width, height)
    for x, y in points:
        if not image_rect.contains_point(x, y):
            raise InvalidArgumentError(f"Point ({x}, {y}) is outside the image ({width}x{height})")
        if roi is not None and not roi.contains_point(x, y):
            raise InvalidArgumentError(f"Point ({x}, {y}) is outside the encodable region {roi}")


def validate_box(box: Sequence[int], width: int, height: int):
    x0, y0, x1, y1 = box
    if x0 < 0 or y0 < 0 or x1 > width or y1 > height:
        raise InvalidArgumentError(f"Box {list(box)} is outside the image ({width}x{height})")


class PromptAdapter:
    def __init__(self, region: EncodedRegion, roi_manager_border: bool = False):
        self.region = region
        self.roi_manager_border = roi_manager_border

    def points_to_local(self, points) -> Tuple[Tuple[int, int], ...]:
        return tuple(self.region.to_local(x, y) for x, y in points)

    def box_to_local(self, box) -> Tuple[int, int, int, int]:
        return self.region.box_to_local(box)

    def mask_to_local(self, mask: np.ndarray) -> np.ndarray:
        """
        Check a label mask against the encoded region and subsample it by the scale.

        The mask must be an integer (H, W) array with the full-resolution size
        of the encoded region.
        """
        mask = np.asarray(mask)
        if not (np.issubdtype(mask.dtype, np.integer) or mask.dtype == bool):
            raise InvalidArgumentError(f"Label masks must be integer arrays, got {mask.dtype}")
        width, height = self.region.size
        if mask.shape != (height, width):
            raise InvalidArgumentError(
                f"Mask shape {mask.shape} does not match the encoded region ({height}, {width})"
            )
        scale = self.region.scale
        return np.ascontiguousarray(mask[::scale, ::scale])

    def points_command(self, positive, negative=(), return_all: bool = True) -> PointsCommand:
        local = self.points_to_local(positive) + self.points_to_local(negative)
        labels = (1,) * len(positive) + (0,) * len(negative)
        return PointsCommand(local, labels, return_all, self.roi_manager_border)

    def box_command(self, box, return_all: bool = True) -> BoxCommand:
        return BoxCommand(self.box_to_local(box), return_all, self.roi_manager_border)

    def batch_command(
        self,
        points=(),
        rects=(),
        mask: Optional[SharedArrayRef] = None,
        return_all: bool = True,
        seed: Optional[int] = None,
    ) -> BatchCommand:
        return BatchCommand(
            points=self.points_to_local(points),
            boxes=tuple(self.box_to_local(r) for r in rects),
            mask=mask,
            return_all=return_all,
            roi_manager_border=self.roi_manager_border,
            seed=seed,
        )

# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Mask / contour result model.

Every object found by the model is returned as a Mask holding:
- contour: (N, 2) int array of (x, y) boundary vertices, full-image coordinates
- rle: flat int64 array [start, length, start, length, ...] of row-major
  linear indices over the full image

The inference process produces both in region-local coordinates. Mask.from_local
applies the same origin/scale remapping to the two representations so they keep
describing the same pixel set.
"""

import uuid
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from samj.annotation.douglas_peucker import simplify as douglas_peucker
from samj.annotation.polygon_to_rle import polygon_to_rle
from samj.encoding.region import EncodedRegion

COMPLEXITY_DELTA = 0.5


def split_runs_at_rows(rle, width: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split runs of a flattened-mask RLE so that none crosses a row boundary.

    Returns the starts and lengths as two int64 arrays.
    """
    rle = np.asarray(rle, dtype=np.int64)
    starts, lengths = [], []
    for start, length in zip(rle[0::2].tolist(), rle[1::2].tolist()):
        while length > 0:
            n = min(length, width - start % width)
            starts.append(start)
            lengths.append(n)
            start += n
            length -= n
    return np.asarray(starts, dtype=np.int64), np.asarray(lengths, dtype=np.int64)


def remap_rle(rle, region: EncodedRegion, image_width: int) -> np.ndarray:
    """
    Re-project a region-local RLE onto the full image.

    Each local run (x, y, length) becomes `scale` runs, one per full-image row
    of the scale x scale block, starting at column x * scale + origin_x with
    length length * scale. Runs are clipped to the region.
    """
    scale = region.scale
    local_width = region.local_size[0]
    starts, lengths = split_runs_at_rows(rle, local_width)
    if len(starts) == 0:
        return np.zeros(0, dtype=np.int64)

    ox, oy = region.origin
    x = starts % local_width * scale + ox
    y = starts // local_width * scale + oy
    lengths = np.minimum(lengths * scale, ox + region.size[0] - x)

    rows = y[:, None] + np.arange(scale)[None, :]
    full_starts = x[:, None] + rows * image_width
    keep = rows < oy + region.size[1]
    full_lengths = np.broadcast_to(lengths[:, None], rows.shape)
    out = np.stack([full_starts[keep], full_lengths[keep]], axis=1)
    return out.reshape(-1).astype(np.int64)


def remap_contour(xs, ys, region: EncodedRegion) -> np.ndarray:
    xs = np.asarray(xs, dtype=np.int64) * region.scale + region.origin[0]
    ys = np.asarray(ys, dtype=np.int64) * region.scale + region.origin[1]
    return np.stack([xs, ys], axis=1)


class Mask:
    """
    One segmented object: a polygon contour and the run-length encoded pixels.

    The contour can be simplified for display (Ramer-Douglas-Peucker with
    increasing tolerance in steps of 0.5 px) and complicated back; every level
    is memoized. While a simplified contour is shown the stored RLE no longer
    matches it, so `rle` is rebuilt from the polygon when the image size is
    known.
    """

    def __init__(self, contour, rle, image_size: Optional[Tuple[int, int]] = None):
        self.name: Optional[str] = None
        self.uuid = str(uuid.uuid4())
        self.image_size = image_size
        self._contour = np.asarray(contour, dtype=np.int64).reshape(-1, 2)
        self._rle = np.asarray(rle, dtype=np.int64).reshape(-1)
        self._simplification = 0.0
        self._memory: Dict[float, np.ndarray] = {0.0: self._contour}
        self._rle_valid = True

    @classmethod
    def from_local(
        cls,
        contour_x: Sequence[int],
        contour_y: Sequence[int],
        rle: Sequence[int],
        region: EncodedRegion,
        image_size: Tuple[int, int],
    ) -> "Mask":
        """Build a full-image Mask from region-local outputs of the model."""
        contour = remap_contour(contour_x, contour_y, region)
        return cls(contour, remap_rle(rle, region, image_size[0]), image_size)

    @classmethod
    def from_outputs(
        cls, outputs: dict, region: EncodedRegion, image_size: Tuple[int, int]
    ) -> List["Mask"]:
        """Build the masks of a result dict with `contours_x`, `contours_y` and `rle` lists."""
        return [
            cls.from_local(xs, ys, rle, region, image_size)
            for xs, ys, rle in zip(outputs["contours_x"], outputs["contours_y"], outputs["rle"])
        ]

    @property
    def contour(self) -> np.ndarray:
        return self._contour

    @property
    def rle(self) -> np.ndarray:
        if self._rle_valid or self._contour is None or self.image_size is None:
            return self._rle
        return polygon_to_rle(self._contour, *self.image_size)

    @property
    def runs(self) -> np.ndarray:
        """RLE as an (K, 2) array of (start, length) rows."""
        return self.rle.reshape(-1, 2)

    @property
    def complication_level(self) -> float:
        return self._simplification

    def area(self) -> int:
        return int(self.rle[1::2].sum())

    def simplify(self):
        level = self._simplification + COMPLEXITY_DELTA
        if level not in self._memory:
            simple = douglas_peucker(self._contour, level).astype(np.int64)
            # drop consecutive duplicates created by the integer cast
            if len(simple) > 1:
                moved = np.any(simple != np.roll(simple, 1, axis=0), axis=1)
                simple = simple[moved] if moved.any() else simple[:1]
            self._memory[level] = simple
        self._set_level(level)

    def complicate(self):
        level = self._simplification - COMPLEXITY_DELTA
        if level in self._memory:
            self._set_level(level)

    def _set_level(self, level: float):
        self._simplification = level
        self._contour = self._memory[level]
        self._rle_valid = level == 0 and len(self._rle) > 0

    def clear(self):
        self._contour = None
        self._memory = {}
        self._rle_valid = False
        self._rle = np.zeros(0, dtype=np.int64)
        self._simplification = 0.0

    def set_contour(self, contour):
        """Replace the contour; the RLE is rebuilt from it on access."""
        self.clear()
        self._contour = np.asarray(contour, dtype=np.int64).reshape(-1, 2)
        self._memory = {0.0: self._contour}

    @staticmethod
    def get_mask(width: int, height: int, masks: Sequence["Mask"]) -> np.ndarray:
        """
        Paint the masks into an (height, width) uint16 label image.

        The i-th mask is written with label i + 1; later masks overwrite
        earlier ones where they overlap.
        """
        flat = np.zeros(width * height, dtype=np.uint16)
        for label, mask in enumerate(masks, start=1):
            rle = mask.rle
            for start, length in zip(rle[0::2], rle[1::2]):
                flat[start : start + length] = label
        return flat.reshape(height, width)

    def __len__(self):
        return 0 if self._contour is None else len(self._contour)

    def __repr__(self):
        return (
            f"Mask(name={self.name!r}, vertices={len(self)}, "
            f"pixels={self.area()}, level={self._simplification})"
        )


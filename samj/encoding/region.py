# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Encoded Region Value Types

The segmentation network can only embed a bounded-resolution image, so for
large images SAMJ encodes a crop of the full image, optionally subsampled by
an integer factor. This module holds the immutable values that describe that
state:

- Rect: an axis-aligned integer rectangle in full-image pixel coordinates.
- EncodedRegion: which rectangle of the image is currently embedded by the
  remote model and at which downsample scale. It also owns the coordinate
  mapping between full-image and region-local coordinates.
- EncodingState: the coarse state of a session's encoding.
- EncodingThresholds: every tunable constant used by the re-encoding policy.

Region-local coordinates are defined as ceil((full - origin) / scale), and
the inverse mapping used for results is local * scale + origin.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Tuple


@dataclass(frozen=True)
class Rect:
    """Integer rectangle with its top-left corner at (x, y)."""

    x: int
    y: int
    width: int
    height: int

    @property
    def x1(self) -> int:
        return self.x + self.width

    @property
    def y1(self) -> int:
        return self.y + self.height

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains_point(self, x, y) -> bool:
        """Half-open containment: the right and bottom edges are excluded."""
        if self.is_empty():
            return False
        return self.x <= x < self.x1 and self.y <= y < self.y1

    def contains_rect(self, other: "Rect") -> bool:
        """Closed containment, an identical rectangle is contained."""
        return (
            self.x <= other.x
            and self.y <= other.y
            and self.x1 >= other.x1
            and self.y1 >= other.y1
        )

    @classmethod
    def from_box(cls, box) -> "Rect":
        """Build from an [x0, y0, x1, y1] box."""
        x0, y0, x1, y1 = (int(v) for v in box)
        return cls(x0, y0, x1 - x0, y1 - y0)

    def to_box(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.x1, self.y1)


class EncodingState(Enum):
    UNSET = "unset"
    FULLY_ENCODED = "fully_encoded"
    PARTIALLY_ENCODED = "partially_encoded"
    TOO_LARGE_UNENCODED = "too_large_unencoded"


@dataclass(frozen=True)
class EncodedRegion:
    """
    The part of the full image embedded by the remote model.

    A new value always replaces the previous one wholesale once an encode
    has completed; instances are never modified.

    Attributes:
        origin (Tuple[int, int]): (x, y) of the top-left corner in full-image pixels.
        size (Tuple[int, int]): (width, height) of the region in full-image pixels.
        scale (int): integer downsample factor applied before encoding.
    """

    origin: Tuple[int, int]
    size: Tuple[int, int]
    scale: int = 1

    @classmethod
    def from_rect(cls, rect: Rect, scale: int = 1) -> "EncodedRegion":
        return cls((rect.x, rect.y), (rect.width, rect.height), scale)

    @property
    def rect(self) -> Rect:
        return Rect(self.origin[0], self.origin[1], self.size[0], self.size[1])

    @property
    def local_size(self) -> Tuple[int, int]:
        """(width, height) of the array actually handed to the model."""
        return (
            math.ceil(self.size[0] / self.scale),
            math.ceil(self.size[1] / self.scale),
        )

    def to_local(self, x, y) -> Tuple[int, int]:
        return (
            math.ceil((x - self.origin[0]) / self.scale),
            math.ceil((y - self.origin[1]) / self.scale),
        )

    def to_full(self, x, y) -> Tuple[int, int]:
        return (
            int(x) * self.scale + self.origin[0],
            int(y) * self.scale + self.origin[1],
        )

    def box_to_local(self, box) -> Tuple[int, int, int, int]:
        lx0, ly0 = self.to_local(box[0], box[1])
        lx1, ly1 = self.to_local(box[2], box[3])
        return (lx0, ly0, lx1, ly1)

    def fits_in(self, image_width: int, image_height: int) -> bool:
        return (
            self.origin[0] >= 0
            and self.origin[1] >= 0
            and self.origin[0] + self.size[0] <= image_width
            and self.origin[1] + self.size[1] <= image_height
        )

    def covers_whole(self, image_width: int, image_height: int) -> bool:
        return self.origin == (0, 0) and self.size == (image_width, image_height)


@dataclass
class EncodingThresholds:
    """
    Tunable constants of the re-encoding policy.

    Args:
        max_encoded_area_rs (int): square root of the largest area encoded in full.
        max_encoded_side (int): largest side encoded in full.
        min_encoded_area_side (int): smallest side of any re-encoded region.
        encode_margin (int): minimum padding, in pixels, around prompts.
        lower_reencode_thresh (int): a box whose sides are this many times smaller
            than the encoded region triggers a re-encode for resolution.
        upper_reencode_thresh (float): a box this many times larger than the
            encoded region is reported as too big.
        optimal_bbox_im_ratio (int): size ratio between a new region and the box.
        elongated_bbox_ratio (int): aspect ratio above which a box is elongated.
        extend_percentage (int): padding, in percent, added around a region of interest.
        occupancy_threshold (float): the current region is kept only if the
            extended region of interest exceeds this fraction of it.
        needed_area_padding (float): relative padding around the prompt bounding box.
        max_img_size (int): largest crop side sent without subsampling.
        full_reencode_side_for_batch (int): batches on images larger than this
            re-encode the whole image first.
        batch_num_workers (int): size of the remote worker pool for batches.
        points_per_component (int): seeds sampled per labelled component.
        min_object_size (int): smallest connected object, in pixels, returned.
        roi_manager_border (bool): grow masks one pixel right and down.
    """

    max_encoded_area_rs: int = 512
    max_encoded_side: int = 512 * 3
    min_encoded_area_side: int = 128
    encode_margin: int = 64
    lower_reencode_thresh: int = 50
    upper_reencode_thresh: float = 1.1
    optimal_bbox_im_ratio: int = 10
    elongated_bbox_ratio: int = 3
    extend_percentage: int = 20
    occupancy_threshold: float = 0.7
    needed_area_padding: float = 0.1
    max_img_size: int = 2024
    full_reencode_side_for_batch: int = 512
    batch_num_workers: int = 3
    points_per_component: int = 3
    min_object_size: int = 6
    roi_manager_border: bool = False

    def is_small(self, width: int, height: int) -> bool:
        """Whether an image of this size is encoded in full at set_image time."""
        return (
            width * height <= self.max_encoded_area_rs * self.max_encoded_area_rs
            and width <= self.max_encoded_side
            and height <= self.max_encoded_side
        )

    def scale_for(self, width: int, height: int) -> int:
        """Integer subsampling applied to a crop before it is sent."""
        return max(1, min(width, height) // self.max_img_size)

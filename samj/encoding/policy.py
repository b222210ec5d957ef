# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Region Re-encoding Policy

Segmentation quality depends on the ratio between the size of the object and
the size of the encoded image: a small object inside a large encoding loses
resolution. Encoding is expensive (seconds), so the policy only asks for a
new encoding when the current one cannot answer a prompt well.

All methods are pure: they receive the image size and the currently encoded
rectangle and return either None (keep the current encoding) or the Rect
that has to be encoded next. The session is responsible for executing the
encode and replacing its EncodedRegion.

Box prompts:
    Re-encode when the box is more than `lower_reencode_thresh` times smaller
    than the encoded region on both axes, or when any of its corners is not
    strictly inside the encoded region. The new region is centred on the box
    and is `optimal_bbox_im_ratio` times larger than it.

Point prompts:
    The bounding box of all positive and negative points is padded into a
    "needed" rectangle. The current region is kept if it contains the needed
    rectangle without being oversized, otherwise the region of interest
    extended by `extend_percentage` is used if it contains the needed
    rectangle, otherwise the needed rectangle itself is encoded.
"""

import logging
from typing import Optional, Sequence

from samj.encoding.region import EncodedRegion, EncodingThresholds, Rect

EMPTY_RECT = Rect(0, 0, 0, 0)


class RegionEncodingPolicy:
    def __init__(self, thresholds: Optional[EncodingThresholds] = None):
        self.thresholds = thresholds or EncodingThresholds()

    # Box prompts

    def is_area_encoded(self, box, region: Optional[EncodedRegion]) -> bool:
        """Whether every corner of the box lies strictly inside the region."""
        if region is None:
            return False
        rect = region.rect
        return (
            rect.x < box[0] < rect.x1
            and rect.x < box[2] < rect.x1
            and rect.y < box[1] < rect.y1
            and rect.y < box[3] < rect.y1
        )

    def needs_more_resolution(self, box, region: Optional[EncodedRegion]) -> bool:
        """Whether the box is too small for the encoded region on both axes."""
        if region is None:
            return False
        ratio = self.thresholds.lower_reencode_thresh
        x_size = box[2] - box[0]
        y_size = box[3] - box[1]
        return x_size * ratio < region.size[0] and y_size * ratio < region.size[1]

    def bounding_box_too_big(self, box, region: Optional[EncodedRegion]) -> bool:
        if region is None:
            return True
        ratio = self.thresholds.upper_reencode_thresh
        x_size = box[2] - box[0]
        y_size = box[3] - box[1]
        return x_size * ratio > region.size[0] and y_size * ratio > region.size[1]

    def region_for_box(self, box, image_width: int, image_height: int) -> Rect:
        """
        Compute the rectangle to encode so that the box is well resolved.

        The short side of the new region is `optimal_bbox_im_ratio` times the
        short side of the box. Nearly square boxes keep their aspect ratio;
        elongated boxes get a long side of `elongated_bbox_ratio` times the
        short side of the region. Both sides are clamped to the minimum
        encodable side and to the image, and the region is shifted so that it
        stays inside the image.
        """
        t = self.thresholds
        x_size = max(1, int(box[2] - box[0]))
        y_size = max(1, int(box[3] - box[1]))
        short_box, long_box = min(x_size, y_size), max(x_size, y_size)

        short_side = short_box * t.optimal_bbox_im_ratio
        if long_box < short_box * t.elongated_bbox_ratio:
            long_side = long_box * t.optimal_bbox_im_ratio
        else:
            long_side = short_side * t.elongated_bbox_ratio

        if x_size >= y_size:
            width, height = long_side, short_side
        else:
            width, height = short_side, long_side
        width = min(max(t.min_encoded_area_side, width), image_width)
        height = min(max(t.min_encoded_area_side, height), image_height)

        center_x = box[0] + x_size / 2
        center_y = box[1] + y_size / 2
        x = min(max(0, int(round(center_x - width / 2))), image_width - width)
        y = min(max(0, int(round(center_y - height / 2))), image_height - height)
        return Rect(x, y, int(width), int(height))

    def box_decision(
        self, box, region: Optional[EncodedRegion], image_width: int, image_height: int
    ) -> Optional[Rect]:
        """Return the rectangle to re-encode for the box, or None to keep the region."""
        if self.needs_more_resolution(box, region):
            logging.info(f"Box {list(box)} needs more resolution than {region}")
            return self.region_for_box(box, image_width, image_height)
        if not self.is_area_encoded(box, region):
            logging.info(f"Box {list(box)} is not inside the encoded region {region}")
            return self.region_for_box(box, image_width, image_height)
        return None

    # Point prompts

    def extend_rect(self, rect: Rect, image_width: int, image_height: int) -> Rect:
        """Pad a rectangle by `extend_percentage` (never less than the margin)."""
        pct = self.thresholds.extend_percentage
        margin = self.thresholds.encode_margin
        new_x = max(0, min(rect.x - pct * rect.width / 2 / 100, rect.x - margin))
        new_y = max(0, min(rect.y - pct * rect.height / 2 / 100, rect.y - margin))
        new_w = (
            min(max(2 * pct * rect.width / 100, 2 * margin) + rect.width + new_x, image_width)
            - new_x
        )
        new_h = (
            min(max(2 * pct * rect.height / 100, 2 * margin) + rect.height + new_y, image_height)
            - new_y
        )
        return Rect(int(new_x), int(new_y), int(new_w), int(new_h))

    def approximate_area_needed(
        self,
        points: Sequence,
        image_width: int,
        image_height: int,
        focused_area: Optional[Rect] = None,
    ) -> Rect:
        """
        Padded bounding box of the points.

        The padding is a fraction of the points' own extent, or of the focused
        area when one is given, and never less than the encode margin. The
        result is at least `min_encoded_area_side` wide and high and is shifted
        back inside the image.
        """
        t = self.thresholds
        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        min_x, max_x, min_y, max_y = min(xs), max(xs), min(ys), max(ys)
        if focused_area is None:
            pad_x = max((max_x - min_x) * t.needed_area_padding, t.encode_margin)
            pad_y = max((max_y - min_y) * t.needed_area_padding, t.encode_margin)
        else:
            pad_x = max(focused_area.width * t.needed_area_padding, t.encode_margin)
            pad_y = max(focused_area.height * t.needed_area_padding, t.encode_margin)
        x0 = int(max(0, min_x - pad_x))
        y0 = int(max(0, min_y - pad_y))
        x1 = int(max_x + pad_x)
        y1 = int(max_y + pad_y)

        width = max(x1 - x0, t.min_encoded_area_side)
        height = max(y1 - y0, t.min_encoded_area_side)
        x0 = max(x0 - max(x0 + width - image_width, 0), 0)
        y0 = max(y0 - max(y0 + height - image_height, 0), 0)
        return Rect(x0, y0, min(width, image_width), min(height, image_height))

    def points_decision(
        self,
        points: Sequence,
        roi: Rect,
        current: Optional[EncodedRegion],
        image_width: int,
        image_height: int,
    ) -> Optional[Rect]:
        """
        Return the rectangle to re-encode for the points, or None to keep the region.

        Args:
            points: all positive and negative points, full-image coordinates.
            roi: the caller's region of interest, or the current region.
            current: the currently encoded region, None when nothing is encoded.
        """
        already_encoded = current.rect if current is not None else EMPTY_RECT
        extended = self.extend_rect(roi, image_width, image_height)
        if roi == already_encoded:
            needed = self.approximate_area_needed(points, image_width, image_height)
        else:
            needed = self.approximate_area_needed(points, image_width, image_height, roi)

        occupancy = self.thresholds.occupancy_threshold
        if (
            already_encoded.contains_rect(needed)
            and already_encoded.width * occupancy < extended.width
            and already_encoded.height * occupancy < extended.height
        ):
            return None
        if extended.contains_rect(needed):
            candidate = extended
        else:
            candidate = Rect(
                min(needed.x, image_width - needed.width),
                min(needed.y, image_height - needed.height),
                needed.width,
                needed.height,
            )
        if candidate == already_encoded:
            return None
        logging.info(f"Points need region {candidate}, currently encoded {already_encoded}")
        return candidate

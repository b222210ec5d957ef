# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Client side of batch prompting: the caller's callback interface and the
listener that turns streamed task updates into remapped masks.
"""

import logging
import threading
from typing import List, MutableSequence, Optional, Sequence, Tuple

from samj.annotation.mask import Mask
from samj.encoding.region import EncodedRegion


def drop_indices(items: MutableSequence, indices: Sequence[int]):
    """Remove the given positions in place, highest first so positions stay valid."""
    for index in sorted(set(indices), reverse=True):
        del items[index]
    return items


class BatchCallback:
    """
    Receives progress of process_batch_of_prompts.

    All methods are no-ops; override the ones of interest. They are called
    from the thread that delivers task updates, not the caller's thread.
    """

    def set_total_number_of_rois(self, n: int):
        pass

    def update_progress(self, n: int):
        """`n` prompts have been resolved so far."""
        pass

    def draw_roi(self, masks: List[Mask]):
        pass

    def delete_point_prompt(self, points: List[Tuple[int, int]]):
        """The listed point prompts (full-image coordinates) have been answered."""
        pass

    def delete_rect_prompt(self, rects: List[Tuple[int, int, int, int]]):
        """The listed box prompts (full-image coordinates) have been answered."""
        pass


class BatchEventHandler:
    """
    Task listener for a batch: counts prompts, remaps streamed contours and
    reports them to a BatchCallback.

    `point_prompts` and `rect_prompts` are the caller's prompts in full-image
    coordinates, in the order they were sent.
    """

    def __init__(
        self,
        callback: Optional[BatchCallback],
        region: EncodedRegion,
        image_size: Tuple[int, int],
        n_contours_tag: str,
        contour_tag: str,
        point_prompts: Sequence = (),
        rect_prompts: Sequence = (),
    ):
        self.callback = callback or BatchCallback()
        self.region = region
        self.image_size = image_size
        self.n_contours_tag = n_contours_tag
        self.contour_tag = contour_tag
        self.point_prompts = list(point_prompts)
        self.rect_prompts = list(rect_prompts)
        self.total: Optional[int] = None
        self.resolved = 0
        self._lock = threading.Lock()

    def __call__(self, event):
        if event.message == self.n_contours_tag:
            self.on_total(int(event.outputs["n"]))
        elif event.message == self.contour_tag:
            self.on_contour(event.outputs)

    def on_total(self, n: int):
        self.total = n
        self.callback.set_total_number_of_rois(n)

    def on_contour(self, outputs: dict):
        if self.total is None:
            logging.error("Contour update received before the prompt count")
        masks = Mask.from_outputs(
            {"contours_x": outputs["temp_x"], "contours_y": outputs["temp_y"], "rle": outputs["temp_mask"]},
            self.region,
            self.image_size,
        )
        with self._lock:
            self.resolved += 1
            resolved = self.resolved
        self.callback.draw_roi(masks)
        if "point" in outputs:
            self.callback.delete_point_prompt([self.point_prompts[outputs["kind_index"]]])
        elif "rect" in outputs:
            self.callback.delete_rect_prompt([self.rect_prompts[outputs["kind_index"]]])
        self.callback.update_progress(resolved)

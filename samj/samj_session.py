# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAMJ Session

SamJSession is the object an interactive application talks to. It holds the
full image, the currently encoded region and the names of persisted
encodings, and turns every prompt into the short sequence of remote commands
needed to answer it:

1. Validate the prompt against the image (InvalidArgumentError otherwise).
2. Ask RegionEncodingPolicy whether the current encoding can answer it, and
   re-encode another crop of the image if not. Encoding always completes
   before the prompt is sent.
3. Translate the prompt into region-local coordinates and run it.
4. Remap the returned contours and RLE masks into full-image coordinates.

Small images (see EncodingThresholds.is_small) are encoded in full by
set_image and never re-encoded. Larger images are encoded lazily, one crop at
a time, as prompts arrive.

Calls block the calling thread until the inference process answers. A session
is not thread-safe: applications calling it from worker threads must
serialize access.
"""

import logging
import threading
import uuid
from contextlib import suppress
from typing import List, Optional, Sequence

import numpy as np

from samj.annotation.mask import Mask
from samj.batch import BatchCallback, BatchEventHandler
from samj.commands import (
    UPDATE_ID_CONTOUR,
    UPDATE_ID_N_CONTOURS,
    DeleteEncodingCommand,
    EncodeCommand,
    PersistEncodingCommand,
    SelectEncodingCommand,
)
from samj.debug_utils import capture_debug_state
from samj.encoding.policy import EMPTY_RECT, RegionEncodingPolicy
from samj.encoding.region import EncodedRegion, EncodingState, EncodingThresholds, Rect
from samj.errors import InvalidArgumentError, MissingOutputError
from samj.models.base import ModelAdapter
from samj.prompts import PromptAdapter, as_box, as_points, validate_box, validate_points
from samj.remote.service import Service
from samj.remote.shm import SharedArray

# how often a blocked batch call checks the caller's stop event, in seconds
STOP_POLL_INTERVAL = 0.05


class SamJSession:
    """
    Interactive segmentation session over one image at a time.

    Args:
        service (Service): channel to the inference process running `adapter`.
        adapter (ModelAdapter): the model family; used locally only to
            normalize images.
        thresholds (EncodingThresholds): re-encoding policy constants.
    """

    def __init__(
        self,
        service: Service,
        adapter: ModelAdapter,
        thresholds: Optional[EncodingThresholds] = None,
    ):
        self.service = service
        self.adapter = adapter
        self.thresholds = thresholds or EncodingThresholds()
        self.policy = RegionEncodingPolicy(self.thresholds)
        self.roi_manager_border = self.thresholds.roi_manager_border
        self._image: Optional[np.ndarray] = None
        self._region: Optional[EncodedRegion] = None
        self._encodings: List[str] = []

    # State

    @property
    def image_size(self):
        """(width, height) of the current image."""
        if self._image is None:
            return None
        return (self._image.shape[1], self._image.shape[0])

    @property
    def region(self) -> Optional[EncodedRegion]:
        return self._region

    @property
    def state(self) -> EncodingState:
        if self._image is None:
            return EncodingState.UNSET
        width, height = self.image_size
        if self._region is None:
            if self.thresholds.is_small(width, height):
                return EncodingState.UNSET
            return EncodingState.TOO_LARGE_UNENCODED
        if self._region.covers_whole(width, height) and self._region.scale == 1:
            return EncodingState.FULLY_ENCODED
        return EncodingState.PARTIALLY_ENCODED

    def get_currently_encoded_area(self) -> Optional[Rect]:
        return None if self._region is None else self._region.rect

    def is_area_encoded(self, box) -> bool:
        return self.policy.is_area_encoded(as_box(box), self._region)

    def needs_more_resolution(self, box) -> bool:
        return self.policy.needs_more_resolution(as_box(box), self._region)

    def bounding_box_too_big(self, box) -> bool:
        return self.policy.bounding_box_too_big(as_box(box), self._region)

    def set_roi_manager_border(self, enabled: bool):
        """Grow every returned mask by one pixel right and down (ROI-manager convention)."""
        self.roi_manager_border = bool(enabled)

    # Image and encoding

    def set_image(self, image):
        """
        Replace the working image.

        The image is normalized by the model adapter. Images within the
        encodable size are encoded immediately; larger ones are encoded crop
        by crop when prompts arrive.
        """
        normalized = self.adapter.normalize_image(image)
        height, width = normalized.shape[:2]
        if width == 0 or height == 0:
            raise InvalidArgumentError(f"Image has an empty dimension: {normalized.shape}")
        self._image = normalized
        self._region = None
        logging.info(f"New image {width}x{height}")
        if self.thresholds.is_small(width, height):
            self._encode(Rect(0, 0, width, height))
        else:
            logging.info("Image is too large to be encoded at once, waiting for prompts")

    def _require_image(self):
        if self._image is None:
            raise InvalidArgumentError("No image set, call set_image() first")

    def _encode(self, rect: Rect):
        """Encode a crop of the image and make it the current region."""
        width, height = self.image_size
        region = EncodedRegion.from_rect(rect, self.thresholds.scale_for(rect.width, rect.height))
        if not region.fits_in(width, height):
            raise InvalidArgumentError(f"Region {rect} is outside the image ({width}x{height})")
        crop = self._image[rect.y : rect.y1 : region.scale, rect.x : rect.x1 : region.scale]
        shared = SharedArray.from_array(crop)
        try:
            self._run(EncodeCommand(shared.ref()))
        except BaseException:
            with suppress(FileNotFoundError):
                shared.unlink()
            # the remote side may hold the new crop already; no region is trusted
            self._region = None
            raise
        finally:
            shared.close()
        logging.info(f"Encoded {region} (previous: {self._region})")
        capture_debug_state("session", "encoded_region", region, {"previous": self._region})
        self._region = region

    def _encode_if_changed(self, rect: Optional[Rect]):
        if rect is None or (self._region is not None and rect == self._region.rect):
            return
        self._encode(rect)

    def _ensure_small_image_encoded(self) -> bool:
        """Encode a small image whose initial encode failed; True when fully encoded."""
        if self.state == EncodingState.FULLY_ENCODED:
            return True
        width, height = self.image_size
        if self._region is None and self.thresholds.is_small(width, height):
            self._encode(Rect(0, 0, width, height))
            return True
        return False

    def _run(self, command, listener=None, stop_event: Optional[threading.Event] = None) -> dict:
        task = self.service.task(command)
        if listener is not None:
            task.listen(listener)
        task.start()
        try:
            if stop_event is None:
                task.wait_for()
            else:
                cancel_sent = False
                while not task.wait_for(STOP_POLL_INTERVAL):
                    if stop_event.is_set() and not cancel_sent:
                        logging.info(f"Cancelling task {task.uuid}")
                        task.cancel()
                        cancel_sent = True
        except KeyboardInterrupt:
            task.cancel()
            raise
        task.raise_for_status()
        return task.outputs

    def _masks(self, outputs: dict) -> List[Mask]:
        missing = [key for key in ("contours_x", "contours_y", "rle") if key not in outputs]
        if missing:
            raise MissingOutputError(f"Prediction returned no {missing}")
        masks = Mask.from_outputs(outputs, self._region, self.image_size)
        capture_debug_state("session", "masks", masks)
        return masks

    # Prompts

    def process_points(
        self,
        positive,
        negative=None,
        roi=None,
        return_all: bool = True,
    ) -> List[Mask]:
        """
        Segment the object(s) marked by positive points, excluding negative points.

        Args:
            positive: (x, y) points on the object, full-image coordinates.
            negative: (x, y) points off the object.
            roi: optional [x0, y0, x1, y1] region of interest; every point
                must be inside it and it guides the choice of the region to
                encode.
            return_all (bool): return every connected object of the predicted
                mask instead of only the largest one.

        Returns:
            List[Mask]: masks in full-image coordinates.
        """
        self._require_image()
        positive = as_points(positive, "positive points")
        negative = as_points(negative, "negative points")
        if not positive:
            raise InvalidArgumentError("At least one positive point is required")
        width, height = self.image_size
        roi_rect = Rect.from_box(as_box(roi)) if roi is not None else None
        validate_points(positive + negative, width, height, roi_rect)

        if not self._ensure_small_image_encoded():
            current = roi_rect
            if current is None:
                current = self._region.rect if self._region is not None else EMPTY_RECT
            rect = self.policy.points_decision(positive + negative, current, self._region, width, height)
            capture_debug_state("session", "points_decision", rect, {"points": positive + negative})
            self._encode_if_changed(rect)
        validate_points(positive + negative, width, height, self._region.rect)

        command = PromptAdapter(self._region, self.roi_manager_border).points_command(
            positive, negative, return_all
        )
        return self._masks(self._run(command))

    def process_box(self, box, return_all: bool = True) -> List[Mask]:
        """Segment the object inside an [x0, y0, x1, y1] box given in full-image coordinates."""
        self._require_image()
        box = as_box(box)
        width, height = self.image_size
        validate_box(box, width, height)

        if not self._ensure_small_image_encoded():
            rect = self.policy.box_decision(box, self._region, width, height)
            capture_debug_state("session", "box_decision", rect, {"box": box})
            self._encode_if_changed(rect)

        command = PromptAdapter(self._region, self.roi_manager_border).box_command(box, return_all)
        return self._masks(self._run(command))

    def process_mask(self, label_mask, return_all: bool = True) -> List[Mask]:
        """
        Segment every object of an integer label mask.

        The mask must have the size of the full image. Each connected component
        is prompted with a few random interior points.
        """
        return self.process_batch_of_prompts(label_mask=label_mask, return_all=return_all)

    def process_batch_of_points(
        self, points, return_all: bool = True, callback: Optional[BatchCallback] = None
    ) -> List[Mask]:
        """Segment one object per point."""
        return self.process_batch_of_prompts(points=points, callback=callback, return_all=return_all)

    def process_batch_of_prompts(
        self,
        points=None,
        rects=None,
        label_mask=None,
        callback: Optional[BatchCallback] = None,
        return_all: bool = True,
        stop_event: Optional[threading.Event] = None,
        seed: Optional[int] = None,
    ) -> List[Mask]:
        """
        Answer many prompts against one encoding in a single remote task.

        Prompts are resolved concurrently by the inference process: first the
        components of `label_mask`, then `points` (one object per point), then
        `rects`. `callback` receives the total number of prompts before any
        result, then every resolved prompt's masks as they arrive.

        Setting `stop_event` cancels the prompts that have not started yet;
        the call then returns the results of the prompts that did run.

        Returns:
            List[Mask]: all masks, in full-image coordinates.
        """
        self._require_image()
        width, height = self.image_size
        points = as_points(points)
        rects = tuple(as_box(r) for r in rects or ())
        validate_points(points, width, height)
        for rect in rects:
            validate_box(rect, width, height)
        if not points and not rects and label_mask is None:
            return []

        side = self.thresholds.full_reencode_side_for_batch
        if (width > side or height > side) and self.state != EncodingState.FULLY_ENCODED:
            logging.info("Encoding the whole image for a batch of prompts")
            self._encode_if_changed(Rect(0, 0, width, height))
        self._ensure_small_image_encoded()

        adapter = PromptAdapter(self._region, self.roi_manager_border)
        shared = None
        if label_mask is not None:
            shared = SharedArray.from_array(adapter.mask_to_local(label_mask))
        handler = BatchEventHandler(
            callback,
            self._region,
            self.image_size,
            UPDATE_ID_N_CONTOURS,
            UPDATE_ID_CONTOUR,
            point_prompts=points,
            rect_prompts=rects,
        )
        command = adapter.batch_command(
            points, rects, shared.ref() if shared is not None else None, return_all, seed
        )
        try:
            outputs = self._run(command, listener=handler, stop_event=stop_event)
        except BaseException:
            if shared is not None:
                with suppress(FileNotFoundError):
                    shared.unlink()
            raise
        finally:
            if shared is not None:
                shared.close()
        if outputs.get("canceled"):
            logging.info(f"{len(outputs['canceled'])} prompts were canceled before they started")
        return self._masks(outputs)

    # Encoding cache

    def persist_encoding(self) -> str:
        """Snapshot the current embedding remotely and return its id."""
        if self._region is None:
            raise InvalidArgumentError("Nothing has been encoded yet")
        name = str(uuid.uuid4())
        self._run(PersistEncodingCommand(name))
        self._encodings.append(name)
        return name

    def select_encoding(self, name: str):
        """
        Make a persisted embedding the active one.

        The session's region bookkeeping is left unchanged; callers switching
        encodings track which region a snapshot belongs to.
        """
        if name not in self._encodings:
            raise InvalidArgumentError(f"Unknown encoding '{name}'")
        self._run(SelectEncodingCommand(name))

    def delete_encoding(self, name: str):
        if name not in self._encodings:
            return
        self._run(DeleteEncodingCommand(name))
        self._encodings.remove(name)

    @property
    def encodings(self) -> Sequence[str]:
        return tuple(self._encodings)

    # Lifecycle

    def close(self):
        self.service.close()
        self._image = None
        self._region = None
        self._encodings = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

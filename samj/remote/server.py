# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Inference side of the task channel.

InferenceServer owns the model adapter and the map of persisted encodings and
executes decoded commands. It does not know about transports: a service
hands it a request, a callable to emit responses on and a cancel flag, and
gets back LAUNCH, UPDATE and one terminal response through that callable.
A request other than a batch whose cancel flag is already set when it is
picked up is answered with CANCELATION alone and never runs.

Batches are run by PromptBatchRunner on a small thread pool. The total number
of prompts is streamed before any prediction starts; every resolved prompt
streams its own contour update; a cancel request cancels the prompts that
have not started yet and the batch completes with the remaining results.
"""

import logging
import threading
import traceback
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np
from scipy import ndimage

from samj.batch import drop_indices
from samj.commands import (
    UPDATE_ID_CONTOUR,
    UPDATE_ID_N_CONTOURS,
    BatchCommand,
    BoxCommand,
    CommandSerializer,
    DeleteEncodingCommand,
    EncodeCommand,
    PersistEncodingCommand,
    PointsCommand,
    SelectEncodingCommand,
)
from samj.encoding.region import EncodingThresholds
from samj.models.base import ModelAdapter
from samj.remote.contours import get_polygons_from_binary_mask
from samj.remote.service import ResponseType, response
from samj.remote.shm import SharedArray, SharedArrayRef


class TaskContext:
    """What a running command can do with its task: stream updates, see cancel requests."""

    def __init__(self, emit: Callable[[dict], None], cancel_event: Optional[threading.Event] = None):
        self._emit = emit
        self.cancel_event = cancel_event or threading.Event()

    def update(self, message: Optional[str] = None, outputs: Optional[dict] = None):
        self._emit(response(ResponseType.UPDATE, message=message, outputs=outputs))

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


def read_shared(ref: SharedArrayRef) -> np.ndarray:
    """Copy a handed-over array and release the segment for good."""
    shared = SharedArray.attach(ref)
    try:
        return shared.read()
    finally:
        shared.close()
        shared.unlink()


def add_roi_manager_border(mask: np.ndarray) -> np.ndarray:
    """Grow the mask by one pixel to the right and down."""
    grown = mask.copy()
    grown[1:, 1:] |= mask[:-1, :-1]
    return grown


class InferenceServer:
    def __init__(
        self,
        adapter: ModelAdapter,
        thresholds: Optional[EncodingThresholds] = None,
        n_contours_tag: str = UPDATE_ID_N_CONTOURS,
        contour_tag: str = UPDATE_ID_CONTOUR,
    ):
        self.adapter = adapter
        self.thresholds = thresholds or EncodingThresholds()
        self.n_contours_tag = n_contours_tag
        self.contour_tag = contour_tag
        self.encodings: Dict[str, object] = {}
        self._handlers = {
            EncodeCommand: self.encode,
            PointsCommand: self.predict_points,
            BoxCommand: self.predict_box,
            BatchCommand: self.predict_batch,
            PersistEncodingCommand: self.persist_encoding,
            SelectEncodingCommand: self.select_encoding,
            DeleteEncodingCommand: self.delete_encoding,
        }

    def serve(
        self,
        request: dict,
        emit: Callable[[dict], None],
        cancel_event: Optional[threading.Event] = None,
    ):
        """Run one request, reporting every state change through `emit`."""
        context = TaskContext(emit, cancel_event)
        # a started batch handles cancel itself and completes with what it has
        if context.cancel_requested and request.get("op") != "batch":
            logging.info(f"Request '{request.get('op')}' was canceled before it started")
            emit(response(ResponseType.CANCELATION))
            return
        emit(response(ResponseType.LAUNCH))
        try:
            outputs = self.execute(request, context)
        except Exception:
            logging.error(f"Request '{request.get('op')}' failed")
            emit(response(ResponseType.FAILURE, error=traceback.format_exc()))
            return
        emit(response(ResponseType.COMPLETION, outputs=outputs))

    def execute(self, request: dict, context: TaskContext) -> dict:
        command = CommandSerializer.from_request(request)
        logging.debug(f"Executing {request['op']} with inputs {sorted(request['inputs'])}")
        return self._handlers[type(command)](command, context)

    # Encoding

    def encode(self, command: EncodeCommand, context: TaskContext) -> dict:
        image = read_shared(command.image)
        self.adapter.set_image(image)
        return {}

    def persist_encoding(self, command: PersistEncodingCommand, context: TaskContext) -> dict:
        self.encodings[command.name] = self.adapter.get_features()
        return {}

    def select_encoding(self, command: SelectEncodingCommand, context: TaskContext) -> dict:
        if command.name not in self.encodings:
            raise KeyError(f"Unknown encoding '{command.name}'")
        self.adapter.set_features(self.encodings[command.name])
        return {}

    def delete_encoding(self, command: DeleteEncodingCommand, context: TaskContext) -> dict:
        self.encodings.pop(command.name, None)
        return {}

    # Prediction

    def mask_to_objects(self, mask, return_all: bool, roi_manager_border: bool):
        mask = np.asarray(mask, dtype=bool)
        if roi_manager_border:
            mask = add_roi_manager_border(mask)
        return get_polygons_from_binary_mask(
            mask, min_size=self.thresholds.min_object_size, only_biggest=not return_all
        )

    def predict_points(self, command: PointsCommand, context: TaskContext) -> dict:
        mask = self.adapter.predict(
            point_coords=np.asarray(command.points, dtype=np.float32).reshape(-1, 2),
            point_labels=np.asarray(command.labels, dtype=np.int32),
        )
        xs, ys, rles = self.mask_to_objects(mask, command.return_all, command.roi_manager_border)
        return {"contours_x": xs, "contours_y": ys, "rle": rles}

    def predict_box(self, command: BoxCommand, context: TaskContext) -> dict:
        mask = self.adapter.predict(box=np.asarray(command.box, dtype=np.float32))
        xs, ys, rles = self.mask_to_objects(mask, command.return_all, command.roi_manager_border)
        return {"contours_x": xs, "contours_y": ys, "rle": rles}

    def predict_batch(self, command: BatchCommand, context: TaskContext) -> dict:
        return PromptBatchRunner(self, command, context).run()


@dataclass
class BatchPrompt:
    kind: str  # "component", "point" or "rect"
    point_coords: Optional[np.ndarray] = None
    point_labels: Optional[np.ndarray] = None
    box: Optional[np.ndarray] = None
    source: Optional[list] = None
    kind_index: int = 0


class PromptBatchRunner:
    """Fan the prompts of one BatchCommand out over a bounded thread pool."""

    def __init__(self, server: InferenceServer, command: BatchCommand, context: TaskContext):
        self.server = server
        self.command = command
        self.context = context
        self._lock = threading.Lock()
        self._n_objects = 0

    def collect_prompts(self) -> List[BatchPrompt]:
        """Label mask components first, then points, then boxes."""
        prompts = []
        if self.command.mask is not None:
            prompts.extend(self.component_prompts(read_shared(self.command.mask)))
        for i, point in enumerate(self.command.points):
            prompts.append(
                BatchPrompt(
                    "point",
                    point_coords=np.asarray([point], dtype=np.float32),
                    point_labels=np.ones(1, dtype=np.int32),
                    source=list(point),
                    kind_index=i,
                )
            )
        for i, rect in enumerate(self.command.boxes):
            prompts.append(
                BatchPrompt("rect", box=np.asarray(rect, dtype=np.float32), source=list(rect), kind_index=i)
            )
        return prompts

    def component_prompts(self, label_image: np.ndarray) -> List[BatchPrompt]:
        rng = np.random.default_rng(self.command.seed)
        labeled, num_features = ndimage.label(label_image)
        prompts = []
        for feature in range(1, num_features + 1):
            rows, cols = np.nonzero(labeled == feature)
            n_points = min(self.server.thresholds.points_per_component, len(rows))
            chosen = rng.choice(len(rows), n_points, replace=False)
            coords = np.stack([cols[chosen], rows[chosen]], axis=1).astype(np.float32)
            prompts.append(
                BatchPrompt("component", point_coords=coords, point_labels=np.ones(n_points, dtype=np.int32))
            )
        return prompts

    def run_prompt(self, index: int, prompt: BatchPrompt):
        mask = self.server.adapter.predict(
            point_coords=prompt.point_coords, point_labels=prompt.point_labels, box=prompt.box
        )
        xs, ys, rles = self.server.mask_to_objects(
            mask, self.command.return_all, self.command.roi_manager_border
        )
        with self._lock:
            first = self._n_objects
            self._n_objects += len(rles)
        outputs = {
            "temp_x": xs,
            "temp_y": ys,
            "temp_mask": rles,
            "index": index,
            "objects": [first, first + len(rles)],
        }
        if prompt.kind in ("point", "rect"):
            outputs[prompt.kind] = prompt.source
            outputs["kind_index"] = prompt.kind_index
        self.context.update(self.server.contour_tag, outputs)
        return xs, ys, rles

    def run(self) -> dict:
        prompts = self.collect_prompts()
        self.context.update(self.server.n_contours_tag, {"n": str(len(prompts))})

        with ThreadPoolExecutor(max_workers=self.server.thresholds.batch_num_workers) as executor:
            futures = [executor.submit(self.run_prompt, i, p) for i, p in enumerate(prompts)]
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=0.05, return_when=FIRST_EXCEPTION)
                for future in done:
                    if not future.cancelled() and future.exception() is not None:
                        cancel_unstarted(futures)
                        raise future.exception()
                if self.context.cancel_requested:
                    cancel_unstarted(futures)

        results = [future.result() if not future.cancelled() else None for future in futures]
        canceled = [i for i, future in enumerate(futures) if future.cancelled()]
        indices = list(range(len(prompts)))
        drop_indices(results, canceled)
        drop_indices(indices, canceled)
        if canceled:
            logging.info(f"Batch canceled {len(canceled)} of {len(prompts)} prompts")

        contours_x, contours_y, rles, prompt_indices = [], [], [], []
        for index, (xs, ys, rs) in zip(indices, results):
            contours_x += xs
            contours_y += ys
            rles += rs
            prompt_indices += [index] * len(rs)
        return {
            "contours_x": contours_x,
            "contours_y": contours_y,
            "rle": rles,
            "prompt_indices": prompt_indices,
            "canceled": canceled,
            "n": str(len(prompts)),
        }


def cancel_unstarted(futures):
    for future in futures:
        if not future.running() and not future.done():
            future.cancel()

# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Requests sent to the inference process.

Each request is a small frozen command object built per call by the session
and discarded once the call returns. CommandSerializer is the only place that
knows the wire form ({"op": name, "inputs": {...}}), so the transport can
change without touching the region or prompt logic.

All coordinates carried by commands are region-local.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from samj.remote.shm import SharedArrayRef

# Update tags streamed by batch tasks. The random suffix keeps them from
# colliding with free-form progress messages.
UPDATE_ID_N_CONTOURS = "PROMPT_NUMBER_" + str(uuid.uuid4())
UPDATE_ID_CONTOUR = "FOUND_CONTOUR_" + str(uuid.uuid4())

Point = Tuple[int, int]
Box = Tuple[int, int, int, int]


@dataclass(frozen=True)
class EncodeCommand:
    """Embed the (cropped, subsampled) image held in shared memory."""

    image: SharedArrayRef


@dataclass(frozen=True)
class PointsCommand:
    points: Tuple[Point, ...]
    labels: Tuple[int, ...]  # 1 = positive, 0 = negative
    return_all: bool = True
    roi_manager_border: bool = False


@dataclass(frozen=True)
class BoxCommand:
    box: Box
    return_all: bool = True
    roi_manager_border: bool = False


@dataclass(frozen=True)
class BatchCommand:
    """
    Answer many prompts against the current encoding.

    Objects of the label mask are prompted first, then the points, then the
    boxes. Each prompt streams one UPDATE_ID_CONTOUR event when it resolves.
    """

    points: Tuple[Point, ...] = ()
    boxes: Tuple[Box, ...] = ()
    mask: Optional[SharedArrayRef] = None
    return_all: bool = True
    roi_manager_border: bool = False
    seed: Optional[int] = None


@dataclass(frozen=True)
class PersistEncodingCommand:
    name: str


@dataclass(frozen=True)
class SelectEncodingCommand:
    name: str


@dataclass(frozen=True)
class DeleteEncodingCommand:
    name: str


class CommandSerializer:
    """Translate commands to and from {"op": str, "inputs": dict} requests."""

    _OPS = {
        EncodeCommand: "encode",
        PointsCommand: "points",
        BoxCommand: "box",
        BatchCommand: "batch",
        PersistEncodingCommand: "persist_encoding",
        SelectEncodingCommand: "select_encoding",
        DeleteEncodingCommand: "delete_encoding",
    }

    @classmethod
    def op_name(cls, command) -> str:
        try:
            return cls._OPS[type(command)]
        except KeyError:
            raise TypeError(f"Unsupported command type {type(command).__name__}") from None

    @classmethod
    def to_request(cls, command) -> dict:
        op = cls.op_name(command)
        if isinstance(command, EncodeCommand):
            inputs = {"image": command.image}
        elif isinstance(command, PointsCommand):
            inputs = {
                "point_coords": np.asarray(command.points, dtype=np.int64).reshape(-1, 2),
                "point_labels": np.asarray(command.labels, dtype=np.int64),
                "return_all": command.return_all,
                "roi_manager_border": command.roi_manager_border,
            }
        elif isinstance(command, BoxCommand):
            inputs = {
                "box": np.asarray(command.box, dtype=np.int64),
                "return_all": command.return_all,
                "roi_manager_border": command.roi_manager_border,
            }
        elif isinstance(command, BatchCommand):
            inputs = {
                "point_prompts": np.asarray(command.points, dtype=np.int64).reshape(-1, 2),
                "rect_prompts": np.asarray(command.boxes, dtype=np.int64).reshape(-1, 4),
                "mask": command.mask,
                "return_all": command.return_all,
                "roi_manager_border": command.roi_manager_border,
                "seed": command.seed,
            }
        else:
            inputs = {"encoding_name": command.name}
        return {"op": op, "inputs": inputs}

    @classmethod
    def from_request(cls, request: dict):
        op = request["op"]
        inputs = request["inputs"]
        if op == "encode":
            return EncodeCommand(inputs["image"])
        if op == "points":
            return PointsCommand(
                points=tuple(tuple(int(v) for v in p) for p in inputs["point_coords"]),
                labels=tuple(int(v) for v in inputs["point_labels"]),
                return_all=bool(inputs["return_all"]),
                roi_manager_border=bool(inputs["roi_manager_border"]),
            )
        if op == "box":
            return BoxCommand(
                box=tuple(int(v) for v in inputs["box"]),
                return_all=bool(inputs["return_all"]),
                roi_manager_border=bool(inputs["roi_manager_border"]),
            )
        if op == "batch":
            return BatchCommand(
                points=tuple(tuple(int(v) for v in p) for p in inputs["point_prompts"]),
                boxes=tuple(tuple(int(v) for v in b) for b in inputs["rect_prompts"]),
                mask=inputs["mask"],
                return_all=bool(inputs["return_all"]),
                roi_manager_border=bool(inputs["roi_manager_border"]),
                seed=inputs["seed"],
            )
        if op == "persist_encoding":
            return PersistEncodingCommand(inputs["encoding_name"])
        if op == "select_encoding":
            return SelectEncodingCommand(inputs["encoding_name"])
        if op == "delete_encoding":
            return DeleteEncodingCommand(inputs["encoding_name"])
        raise ValueError(f"Unknown request op '{op}'")

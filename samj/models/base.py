# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Model-family adapters.

An adapter is the only piece of SAMJ that knows a concrete network. It is
constructed cheaply in the controlling process, where normalize_image is used
to bring caller images into the layout the family expects, and it is shipped
(unloaded) to the inference process, where load / set_image / predict run.

All coordinates given to an adapter are local to the image last passed to
set_image, with points as (x, y) and boxes as [x0, y0, x1, y1].
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import numpy as np
from PIL import Image

from samj.errors import InvalidArgumentError


def to_numpy_image(image) -> np.ndarray:
    if isinstance(image, Image.Image):
        # palette, CMYK and other modes are flattened to RGB
        if image.mode not in ("L", "RGB", "RGBA", "I", "I;16", "F"):
            image = image.convert("RGB")
        return np.asarray(image)
    return np.asarray(image)


def to_rgb(image: np.ndarray) -> np.ndarray:
    """Bring an (H, W), (H, W, 1), (H, W, 3) or (H, W, 4) array to (H, W, 3)."""
    if image.ndim == 2:
        return np.repeat(image[..., None], 3, axis=2)
    if image.ndim == 3 and image.shape[2] == 1:
        return np.repeat(image, 3, axis=2)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    if image.ndim == 3 and image.shape[2] == 4:
        return image[..., :3]
    raise InvalidArgumentError(
        f"Unsupported image shape {image.shape}, expected (H, W) or (H, W, C) with C in 1, 3, 4"
    )


def min_max_scale(image: np.ndarray) -> np.ndarray:
    """Scale to float32 in [0, 1] using the image's own range."""
    image = image.astype(np.float32)
    low, high = float(image.min()), float(image.max())
    if high == low:
        return np.zeros_like(image)
    return (image - low) / (high - low)


class ModelAdapter(ABC):
    """
    Base class for one Segment-Anything model family.

    Subclasses load their network lazily in load(); until then the adapter
    holds only its constructor arguments and can be pickled to the inference
    process.
    """

    def __init__(self, checkpoint: Optional[str] = None, device: Optional[str] = None):
        self.checkpoint = checkpoint
        self.device = device
        self._predictor: Any = None

    @property
    def is_loaded(self) -> bool:
        return self._predictor is not None

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_predictor"] = None
        return state

    def normalize_image(self, image) -> np.ndarray:
        """
        Convert a caller image to a contiguous (H, W, 3) uint8 array.

        Non-uint8 inputs are min-max scaled to the full 0-255 range.
        """
        image = to_rgb(to_numpy_image(image))
        if image.dtype != np.uint8:
            image = (min_max_scale(image) * 255).round().astype(np.uint8)
        return np.ascontiguousarray(image)

    def ensure_loaded(self):
        if not self.is_loaded:
            logging.info(f"Loading {type(self).__name__} on {self.device or 'default device'}")
            self.load()

    @abstractmethod
    def load(self):
        """Build the network and predictor. Called once in the inference process."""

    @abstractmethod
    def set_image(self, image: np.ndarray):
        """Compute the embedding of an already normalized image."""

    @abstractmethod
    def predict(
        self,
        point_coords: Optional[np.ndarray] = None,
        point_labels: Optional[np.ndarray] = None,
        box: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Return one (H, W) boolean mask for the prompt."""

    @abstractmethod
    def get_features(self) -> Any:
        """Snapshot of the current embedding state."""

    @abstractmethod
    def set_features(self, features: Any):
        """Make a snapshot returned by get_features the current embedding."""

    def close(self):
        self._predictor = None

# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
EfficientSAM adapter.

EfficientSAM takes float RGB images in [0, 1] and is driven directly through
its get_image_embeddings / predict_masks methods. It always predicts several
candidate masks; the one with the highest predicted IoU is returned.
"""

from typing import Any, Dict, Optional

import numpy as np
import torch
from hydra.utils import instantiate
from omegaconf import DictConfig, OmegaConf

from samj.models.base import ModelAdapter, min_max_scale, to_numpy_image, to_rgb

# point labels understood by EfficientSAM for the two box corners
BOX_CORNER_LABELS = (2, 3)


class EfficientSamAdapter(ModelAdapter):
    """
    Args:
        network: Hydra node whose instantiation returns the EfficientSAM module,
            for instance `efficient_sam.build_efficient_sam.build_efficient_sam`.
        checkpoint (str): forwarded to the node as `checkpoint` when given.
        device (str): torch device for the network and its inputs.
    """

    def __init__(self, network: Any, checkpoint: Optional[str] = None, device: Optional[str] = None):
        super().__init__(checkpoint=checkpoint, device=device)
        if isinstance(network, DictConfig):
            network = OmegaConf.to_container(network, resolve=True)
        self.network: Dict[str, Any] = dict(network)
        self._embeddings = None
        self._input_hw = None

    def normalize_image(self, image) -> np.ndarray:
        image = to_rgb(to_numpy_image(image))
        if image.dtype == np.uint8:
            return np.ascontiguousarray(image, dtype=np.float32) / 255.0
        return np.ascontiguousarray(min_max_scale(image))

    def load(self):
        overrides = {"checkpoint": self.checkpoint} if self.checkpoint else {}
        model = instantiate(self.network, **overrides)
        self._predictor = model.to(self.device or "cpu").eval()

    def set_image(self, image: np.ndarray):
        self.ensure_loaded()
        tensor = torch.from_numpy(np.ascontiguousarray(image, dtype=np.float32)).permute(2, 0, 1)
        tensor = tensor[None].to(self.device or "cpu")
        with torch.inference_mode():
            self._embeddings = self._predictor.get_image_embeddings(tensor)
        self._input_hw = image.shape[:2]

    def predict(self, point_coords=None, point_labels=None, box=None) -> np.ndarray:
        self.ensure_loaded()
        if self._embeddings is None:
            raise RuntimeError("An image must be set with set_image() before mask prediction.")
        if box is not None:
            points = np.asarray(box, dtype=np.float32).reshape(2, 2)
            labels = np.asarray(BOX_CORNER_LABELS)
        else:
            points = np.asarray(point_coords, dtype=np.float32).reshape(-1, 2)
            labels = np.asarray(point_labels)
        device = self.device or "cpu"
        points = torch.from_numpy(points).reshape(1, 1, -1, 2).to(device)
        labels = torch.from_numpy(labels.astype(np.int64)).reshape(1, 1, -1).to(device)
        input_h, input_w = self._input_hw
        with torch.inference_mode():
            logits, iou = self._predictor.predict_masks(
                self._embeddings,
                points,
                labels,
                multimask_output=True,
                input_h=input_h,
                input_w=input_w,
                output_h=input_h,
                output_w=input_w,
            )
        best = int(torch.argmax(iou[0, 0]))
        return torch.ge(logits[0, 0, best], 0).cpu().numpy()

    def get_features(self):
        return {"embeddings": self._embeddings, "input_hw": self._input_hw}

    def set_features(self, features):
        self._embeddings = features["embeddings"]
        self._input_hw = features["input_hw"]

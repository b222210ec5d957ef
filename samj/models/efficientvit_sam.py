# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

from typing import Any, Dict, Optional

import numpy as np
import torch
from hydra.utils import instantiate
from omegaconf import DictConfig, OmegaConf

from samj.models.base import ModelAdapter


class EfficientViTSamAdapter(ModelAdapter):
    """
    EfficientViT-SAM through its SamPredictor-style predictor.

    `predictor` is a Hydra node instantiating the predictor around the model,
    e.g. `efficientvit.models.efficientvit.sam.EfficientViTSamPredictor` with a
    nested `sam_model` node.
    """

    def __init__(self, predictor: Any, checkpoint: Optional[str] = None, device: Optional[str] = None):
        super().__init__(checkpoint=checkpoint, device=device)
        if isinstance(predictor, DictConfig):
            predictor = OmegaConf.to_container(predictor, resolve=True)
        self.predictor_node: Dict[str, Any] = dict(predictor)

    def load(self):
        predictor = instantiate(self.predictor_node)
        if self.checkpoint:
            state = torch.load(self.checkpoint, map_location="cpu", weights_only=True)
            predictor.model.load_state_dict(state.get("state_dict", state))
        predictor.model.to(self.device or "cpu").eval()
        self._predictor = predictor

    def set_image(self, image: np.ndarray):
        self.ensure_loaded()
        with torch.inference_mode():
            self._predictor.set_image(image)

    def predict(self, point_coords=None, point_labels=None, box=None) -> np.ndarray:
        self.ensure_loaded()
        with torch.inference_mode():
            masks, _, _ = self._predictor.predict(
                point_coords=point_coords,
                point_labels=point_labels,
                box=box,
                multimask_output=False,
            )
        return np.asarray(masks[0]) > 0

    def get_features(self):
        p = self._predictor
        return {
            "features": p.features,
            "original_size": p.original_size,
            "input_size": p.input_size,
        }

    def set_features(self, features):
        p = self._predictor
        p.features = features["features"]
        p.original_size = features["original_size"]
        p.input_size = features["input_size"]
        p.is_image_set = True

# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAM2 adapter.

Wraps sam2.SAM2ImagePredictor. The sam2 package is an optional dependency
(`pip install samj[sam2]`) and is only imported when the adapter is loaded in
the inference process.

The embedding snapshot used by the encoding cache is the predictor's cached
features together with the original image size they were computed for.
"""

import logging
from typing import Optional

import numpy as np
import torch
from hydra import initialize_config_module
from hydra.core.global_hydra import GlobalHydra

from samj.models.base import ModelAdapter

# SAM2.1 image encoder configs shipped in the sam2 package
SAM2_VARIANT_CONFIGS = {
    "tiny": "configs/sam2.1/sam2.1_hiera_t.yaml",
    "small": "configs/sam2.1/sam2.1_hiera_s.yaml",
    "base_plus": "configs/sam2.1/sam2.1_hiera_b+.yaml",
    "large": "configs/sam2.1/sam2.1_hiera_l.yaml",
}


class Sam2Adapter(ModelAdapter):
    def __init__(
        self,
        variant: str = "tiny",
        checkpoint: Optional[str] = None,
        device: Optional[str] = None,
        config_file: Optional[str] = None,
    ):
        super().__init__(checkpoint=checkpoint, device=device)
        if config_file is None and variant not in SAM2_VARIANT_CONFIGS:
            raise ValueError(
                f"Unknown SAM2 variant '{variant}', expected one of {sorted(SAM2_VARIANT_CONFIGS)}"
            )
        self.variant = variant
        self.config_file = config_file or SAM2_VARIANT_CONFIGS[variant]

    def load(self):
        from sam2.build_sam import build_sam2
        from sam2.sam2_image_predictor import SAM2ImagePredictor

        if self.checkpoint is None:
            logging.warning(f"No checkpoint given for SAM2 {self.variant}, using random weights")
        # sam2 composes its configs from its own Hydra config module
        GlobalHydra.instance().clear()
        with initialize_config_module("sam2", version_base="1.2"):
            model = build_sam2(self.config_file, ckpt_path=self.checkpoint, device=self.device)
        if not GlobalHydra.instance().is_initialized():
            initialize_config_module("samj", version_base="1.2")
        self._predictor = SAM2ImagePredictor(model)

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
        return masks[0] > 0

    def get_features(self):
        self.ensure_loaded()
        return {
            "features": self._predictor._features,
            "orig_hw": self._predictor._orig_hw,
        }

    def set_features(self, features):
        self.ensure_loaded()
        self._predictor._features = features["features"]
        self._predictor._orig_hw = features["orig_hw"]
        self._predictor._is_image_set = True

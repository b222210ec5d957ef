# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAMJ - Interactive Segment-Anything Sessions

SAMJ lets an interactive application drive Segment-Anything-family models
(SAM2, EfficientSAM, EfficientViT-SAM) that run in a separate inference
process. The application hands over a (possibly huge) image once and then
clicks points or draws boxes on it; SAMJ decides which sub-region of the
image has to be encoded for each prompt, translates the prompt into the
coordinates of that encoding, runs the prediction remotely and maps the
resulting contours and run-length-encoded masks back to the full image.

Main Components:
- SamJSession: the facade exposing set_image / process_points / process_box /
  process_mask / process_batch_of_prompts and the encoding cache
- RegionEncodingPolicy: decides when and where the image must be re-encoded
- PromptAdapter: full-image to region-local prompt translation
- Mask: contour + RLE result value
- Service / InferenceServer: the task channel and the remote executor
- ModelAdapter: per-model-family image layout and prediction call

The library uses Hydra for configuration management, so every re-encoding
threshold can be tuned from YAML or from command line style overrides.

Usage:
    from samj import build_samj

    with build_samj("configs/samj.yaml") as session:
        session.set_image(image)
        masks = session.process_box([100, 120, 180, 200])
"""

from hydra import initialize_config_module
from hydra.core.global_hydra import GlobalHydra

# Initialize Hydra so that configs/samj.yaml can be composed by name
if not GlobalHydra.instance().is_initialized():
    initialize_config_module("samj", version_base="1.2")

from samj.annotation.mask import Mask  # noqa: E402
from samj.build_samj import build_samj, build_samj_hf  # noqa: E402
from samj.samj_session import SamJSession  # noqa: E402

__all__ = ["Mask", "SamJSession", "build_samj", "build_samj_hf"]

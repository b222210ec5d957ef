# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAMJ Session Builder

Factory functions that compose a Hydra config, instantiate the re-encoding
thresholds and the model adapter it names, start the inference process and
return a ready SamJSession.

Key Functions:
- build_samj(): builds a session from a config in samj/configs
- build_samj_hf(): same, with a SAM2 checkpoint fetched from the Hugging Face hub
- get_best_available_device(): CUDA, then MPS, then CPU

Three configs are shipped, one per model family:
- configs/samj.yaml: SAM2.1 (tiny by default, see `model.variant`)
- configs/samj_efficient_sam.yaml: EfficientSAM ViT-S
- configs/samj_efficientvit_sam.yaml: EfficientViT-SAM

Any value can be overridden Hydra style, e.g.
`hydra_overrides_extra=["session.lower_reencode_thresh=30", "model.variant=large"]`.
"""

import logging

import torch
from hydra import compose
from hydra.utils import instantiate
from omegaconf import OmegaConf

from samj.remote.local import LocalService
from samj.remote.server import InferenceServer
from samj.remote.subprocess_service import SubprocessService
from samj.samj_session import SamJSession

# Mapping of Hugging Face model IDs to the sam2 config and checkpoint names
HF_MODEL_ID_TO_FILENAMES = {
    "facebook/sam2-hiera-tiny": (
        "configs/sam2/sam2_hiera_t.yaml",
        "sam2_hiera_tiny.pt",
    ),
    "facebook/sam2-hiera-small": (
        "configs/sam2/sam2_hiera_s.yaml",
        "sam2_hiera_small.pt",
    ),
    "facebook/sam2-hiera-base-plus": (
        "configs/sam2/sam2_hiera_b+.yaml",
        "sam2_hiera_base_plus.pt",
    ),
    "facebook/sam2-hiera-large": (
        "configs/sam2/sam2_hiera_l.yaml",
        "sam2_hiera_large.pt",
    ),
    "facebook/sam2.1-hiera-tiny": (
        "configs/sam2.1/sam2.1_hiera_t.yaml",
        "sam2.1_hiera_tiny.pt",
    ),
    "facebook/sam2.1-hiera-small": (
        "configs/sam2.1/sam2.1_hiera_s.yaml",
        "sam2.1_hiera_small.pt",
    ),
    "facebook/sam2.1-hiera-base-plus": (
        "configs/sam2.1/sam2.1_hiera_b+.yaml",
        "sam2.1_hiera_base_plus.pt",
    ),
    "facebook/sam2.1-hiera-large": (
        "configs/sam2.1/sam2.1_hiera_l.yaml",
        "sam2.1_hiera_large.pt",
    ),
}

REMOTES = ("subprocess", "local")


def get_best_available_device():
    """
    Return the best available torch device string.

    Preference order is CUDA, then Apple MPS, then CPU.
    """
    if torch.cuda.is_available():
        return "cuda"
    elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return "mps"
    else:
        return "cpu"


def build_samj(
    config_file="configs/samj.yaml",
    ckpt_path=None,
    device=None,
    remote="subprocess",
    hydra_overrides_extra=[],
    adapter=None,
    **kwargs,
):
    """
    Build a SamJSession.

    Args:
        config_file (str): config name relative to the samj package, e.g.
            "configs/samj_efficient_sam.yaml".
        ckpt_path (str, optional): model checkpoint; random weights if None.
        device (str, optional): device for the model, auto-detected if None.
        remote (str): "subprocess" runs the model in a child process,
            "local" in a worker thread of this process.
        hydra_overrides_extra (list): additional Hydra overrides.
        adapter (ModelAdapter, optional): use this adapter instead of the one
            named by the config's `model` node. The `session` node is still
            read from the config.
        **kwargs: passed to the service (e.g. start_method for "subprocess").

    Returns:
        SamJSession: a session with no image set.
    """
    if remote not in REMOTES:
        raise ValueError(f"Unknown remote '{remote}', expected one of {REMOTES}")

    hydra_overrides_extra = hydra_overrides_extra.copy()
    if adapter is None:
        # Use the provided device or get the best available one
        device = device or get_best_available_device()
        logging.info(f"Using device: {device}")
        hydra_overrides_extra.append(f"++model.device={device}")
        if ckpt_path is not None:
            hydra_overrides_extra.append(f"++model.checkpoint={ckpt_path}")

    # Load configuration using Hydra and resolve any variable references
    cfg = compose(config_name=config_file, overrides=hydra_overrides_extra)
    OmegaConf.resolve(cfg)

    thresholds = instantiate(cfg.session)
    if adapter is None:
        adapter = instantiate(cfg.model)
    logging.info(f"Building {remote} session for {type(adapter).__name__}")

    if remote == "local":
        service = LocalService(InferenceServer(adapter, thresholds))
    else:
        service = SubprocessService(adapter, thresholds, **kwargs)
    return SamJSession(service, adapter, thresholds)


def _hf_download(model_id):
    """
    Download a SAM2 checkpoint from the Hugging Face hub.

    Returns:
        tuple: (sam2 config name, local checkpoint path)
    """
    from huggingface_hub import hf_hub_download

    config_name, checkpoint_name = HF_MODEL_ID_TO_FILENAMES[model_id]
    ckpt_path = hf_hub_download(repo_id=model_id, filename=checkpoint_name)
    return config_name, ckpt_path


def build_samj_hf(model_id, **kwargs):
    """
    Build a SAM2 session from the Hugging Face model hub.

    Example:
        >>> session = build_samj_hf("facebook/sam2.1-hiera-small")
    """
    config_name, ckpt_path = _hf_download(model_id)
    kwargs = dict(kwargs)
    overrides = list(kwargs.pop("hydra_overrides_extra", []))
    overrides.append(f"++model.config_file={config_name}")
    return build_samj(
        config_file="configs/samj.yaml", ckpt_path=ckpt_path, hydra_overrides_extra=overrides, **kwargs
    )

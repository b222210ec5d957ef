# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import pytest
from hydra import compose

from fakes import FakeAdapter
from samj import build_samj
from samj.build_samj import HF_MODEL_ID_TO_FILENAMES, get_best_available_device
from samj.encoding.region import EncodingThresholds
from samj.models import EfficientSamAdapter, EfficientViTSamAdapter, Sam2Adapter


def test_thresholds_come_from_config():
    with build_samj(adapter=FakeAdapter(), remote="local") as session:
        assert isinstance(session.thresholds, EncodingThresholds)
        assert session.thresholds == EncodingThresholds()


def test_overrides_reach_the_thresholds():
    overrides = ["session.lower_reencode_thresh=30", "session.roi_manager_border=true"]
    with build_samj(adapter=FakeAdapter(), remote="local", hydra_overrides_extra=overrides) as session:
        assert session.thresholds.lower_reencode_thresh == 30
        assert session.roi_manager_border is True


def test_override_list_is_not_modified():
    overrides = []
    build_samj(adapter=FakeAdapter(), remote="local", hydra_overrides_extra=overrides).close()
    build_samj(config_file="configs/samj.yaml", device="cpu", remote="local").close()
    assert overrides == []


def test_sam2_adapter_from_config():
    with build_samj(device="cpu", ckpt_path="/tmp/sam2.1_hiera_small.pt", remote="local",
                    hydra_overrides_extra=["model.variant=small"]) as session:
        adapter = session.adapter
        assert isinstance(adapter, Sam2Adapter)
        assert adapter.variant == "small"
        assert adapter.config_file == "configs/sam2.1/sam2.1_hiera_s.yaml"
        assert adapter.checkpoint == "/tmp/sam2.1_hiera_small.pt"
        assert adapter.device == "cpu"
        # the network is only built by the inference side on first use
        assert not adapter.is_loaded


def test_efficient_sam_config():
    with build_samj(config_file="configs/samj_efficient_sam.yaml", device="cpu", remote="local") as session:
        adapter = session.adapter
        assert isinstance(adapter, EfficientSamAdapter)
        assert adapter.network["_target_"] == "efficient_sam.build_efficient_sam.build_efficient_sam"
        assert adapter.network["encoder_num_heads"] == 6


def test_efficientvit_sam_config():
    cfg = compose(config_name="configs/samj_efficientvit_sam.yaml")
    assert cfg.model._target_ == "samj.models.efficientvit_sam.EfficientViTSamAdapter"
    with build_samj(config_file="configs/samj_efficientvit_sam.yaml", device="cpu", remote="local") as session:
        assert isinstance(session.adapter, EfficientViTSamAdapter)
        assert session.adapter.predictor_node["sam_model"]["name"] == "efficientvit-sam-l0"


def test_unknown_remote():
    with pytest.raises(ValueError):
        build_samj(adapter=FakeAdapter(), remote="carrier-pigeon")


def test_unknown_sam2_variant():
    with pytest.raises(ValueError):
        Sam2Adapter(variant="gigantic")


def test_hf_ids_name_sam2_configs():
    for config_name, checkpoint_name in HF_MODEL_ID_TO_FILENAMES.values():
        assert config_name.startswith("configs/sam2")
        assert checkpoint_name.endswith(".pt")


def test_best_available_device():
    assert get_best_available_device() in ("cuda", "mps", "cpu")

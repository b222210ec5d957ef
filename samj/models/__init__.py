# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

from samj.models.base import ModelAdapter
from samj.models.efficient_sam import EfficientSamAdapter
from samj.models.efficientvit_sam import EfficientViTSamAdapter
from samj.models.sam2 import Sam2Adapter

__all__ = ["ModelAdapter", "EfficientSamAdapter", "EfficientViTSamAdapter", "Sam2Adapter"]

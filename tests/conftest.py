# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
import pytest

from fakes import FakeAdapter
from samj import build_samj
from samj.debug_utils import disable_debug_mode

# small images are encoded in full by set_image
SMALL_W, SMALL_H = 100, 80
LARGE_SIDE = 2048


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def session(fake_adapter):
    session = build_samj(adapter=fake_adapter, remote="local")
    yield session
    session.close()


@pytest.fixture
def small_image():
    return np.zeros((SMALL_H, SMALL_W), dtype=np.uint8)


@pytest.fixture
def large_image():
    return np.zeros((LARGE_SIDE, LARGE_SIDE), dtype=np.uint8)


@pytest.fixture(autouse=True)
def _reset_debug_capture():
    yield
    disable_debug_mode()

# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import matplotlib

matplotlib.use("Agg")

from samj.debug_utils import (  # noqa: E402
    capture_debug_state,
    disable_debug_mode,
    enable_debug_mode,
    get_debug_states,
    is_debug_enabled,
    visualize_debug_states,
)
from samj.encoding.region import Rect  # noqa: E402


def test_capture_is_off_by_default():
    assert not is_debug_enabled()
    capture_debug_state("session", "encoded_region", Rect(0, 0, 1, 1))
    assert get_debug_states() == {}


def test_capture_counts_and_keeps_latest():
    enable_debug_mode()
    capture_debug_state("session", "encoded_region", Rect(0, 0, 10, 10))
    capture_debug_state("session", "encoded_region", Rect(5, 5, 10, 10))
    state = get_debug_states()["session"]["encoded_region"]
    assert state["count"] == 2
    assert state["data"] == Rect(5, 5, 10, 10)
    disable_debug_mode()
    assert get_debug_states() == {}


def test_session_decisions_are_captured(session, large_image):
    enable_debug_mode()
    session.set_image(large_image)
    session.process_box([1000, 1000, 1010, 1010])
    states = get_debug_states()["session"]
    assert states["box_decision"]["data"] == Rect(941, 941, 128, 128)
    assert states["encoded_region"]["data"].rect == Rect(941, 941, 128, 128)
    assert len(states["masks"]["data"]) == 1


def test_visualize_writes_figure_and_summary(session, small_image, tmp_path):
    enable_debug_mode()
    session.set_image(small_image)
    session.process_points([(50, 40)])
    fig = visualize_debug_states(image=small_image, save_path=str(tmp_path))
    assert fig is not None
    assert (tmp_path / "session_regions.png").exists()
    summary = (tmp_path / "debug_summary.txt").read_text()
    assert "encoded_region" in summary
    assert "masks" in summary


def test_visualize_without_states():
    assert visualize_debug_states() is None

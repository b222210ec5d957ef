# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Debug Utilities for SAMJ Encoding Decisions

Captures the decisions a SamJSession takes (which region was encoded, which
region a prompt asked for, which masks came back) and draws them over the
image, to make re-encoding behaviour on large images easy to inspect.

Capture is off by default and costs one flag check per call when disabled.

Usage:
    from samj.debug_utils import enable_debug_mode, visualize_debug_states

    enable_debug_mode()
    session.set_image(image)
    masks = session.process_box([1000, 1000, 1010, 1010])
    visualize_debug_states(image=image, save_path="debug_output/")
"""

import logging
import os
from collections import defaultdict
from typing import Any, Dict, Optional

import matplotlib.patches as patches
import matplotlib.pyplot as plt
import numpy as np


class DebugStateCapture:
    """
    Registry of captured session states, keyed by component and state name.

    Only the latest value of every state is kept, together with the number of
    times it was captured.
    """

    def __init__(self):
        self.states = defaultdict(dict)
        self.enabled = False

    def enable(self):
        self.enabled = True

    def disable(self):
        """Disable capture and clear stored states."""
        self.enabled = False
        self.clear()

    def clear(self):
        self.states.clear()

    def capture(self, component_name: str, state_name: str, data: Any, metadata: Optional[Dict] = None):
        if not self.enabled:
            return
        previous = self.states[component_name].get(state_name)
        self.states[component_name][state_name] = {
            "data": data,
            "type": type(data).__name__,
            "count": 1 if previous is None else previous["count"] + 1,
            "metadata": metadata or {},
        }

    def get_state(self, component_name: str, state_name: str = None):
        """Retrieve captured state(s) for a component."""
        if state_name is None:
            return self.states.get(component_name, {})
        return self.states.get(component_name, {}).get(state_name)

    def get_all_states(self):
        return dict(self.states)


# Global debug capture instance
_debug_capture = DebugStateCapture()


def enable_debug_mode():
    _debug_capture.enable()


def disable_debug_mode():
    _debug_capture.disable()


def capture_debug_state(component_name: str, state_name: str, data: Any, metadata: Optional[Dict] = None):
    """Capture debug state using the global capture instance."""
    _debug_capture.capture(component_name, state_name, data, metadata)


def get_debug_states():
    return _debug_capture.get_all_states()


def clear_debug_states():
    _debug_capture.clear()


def is_debug_enabled():
    return _debug_capture.enabled


def _as_rect_tuple(value):
    """(x, y, w, h) of a Rect or an EncodedRegion, None for anything else."""
    if value is None:
        return None
    rect = getattr(value, "rect", value)
    if all(hasattr(rect, attr) for attr in ("x", "y", "width", "height")):
        return (rect.x, rect.y, rect.width, rect.height)
    return None


class SamJVisualizer:
    """Draws encoded regions, requested regions, prompts and contours over an image."""

    def __init__(self, figsize=(10, 10), dpi=100):
        self.figsize = figsize
        self.dpi = dpi
        self.region_colors = {
            "encoded_region": "lime",
            "box_decision": "orange",
            "points_decision": "magenta",
        }

    def draw_regions(self, ax, session_states: Dict):
        for state_name, color in self.region_colors.items():
            state = session_states.get(state_name)
            if state is None:
                continue
            rect = _as_rect_tuple(state["data"])
            if rect is None:
                continue
            x, y, w, h = rect
            ax.add_patch(
                patches.Rectangle((x, y), w, h, fill=False, edgecolor=color, linewidth=2, label=state_name)
            )
            metadata = state["metadata"]
            if "box" in metadata:
                x0, y0, x1, y1 = metadata["box"]
                ax.add_patch(
                    patches.Rectangle((x0, y0), x1 - x0, y1 - y0, fill=False, edgecolor="red", linestyle="--")
                )
            if "points" in metadata and len(metadata["points"]):
                points = np.asarray(metadata["points"])
                ax.scatter(points[:, 0], points[:, 1], c="red", marker="*", s=80)

    def draw_masks(self, ax, masks):
        for mask in masks or ():
            contour = np.asarray(mask.contour)
            if len(contour) == 0:
                continue
            closed = np.vstack([contour, contour[:1]])
            ax.plot(closed[:, 0], closed[:, 1], color="yellow", linewidth=1)

    def visualize_session(
        self,
        session_states: Dict,
        image: Optional[np.ndarray] = None,
        save_path: Optional[str] = None,
        show: bool = False,
    ):
        """
        Draw the latest session decisions.

        Args:
            session_states: the "session" component of the captured states.
            image: the full image, drawn underneath when given.
            save_path: directory to write session_regions.png to.
            show: open an interactive window.

        Returns:
            matplotlib.figure.Figure: the figure, already closed unless `show`.
        """
        fig, ax = plt.subplots(1, 1, figsize=self.figsize, dpi=self.dpi)
        if image is not None:
            ax.imshow(image, cmap="gray" if image.ndim == 2 else None)
        self.draw_regions(ax, session_states)
        masks_state = session_states.get("masks")
        if masks_state is not None:
            self.draw_masks(ax, masks_state["data"])
        if image is None:
            ax.autoscale_view()
            ax.invert_yaxis()
        ax.set_title("SAMJ encoding decisions")
        handles, labels = ax.get_legend_handles_labels()
        if handles:
            ax.legend(loc="upper right")
        ax.axis("off")

        plt.tight_layout()
        if save_path:
            fig.savefig(os.path.join(save_path, "session_regions.png"), bbox_inches="tight", dpi=self.dpi)
        if show:
            plt.show()
        else:
            plt.close(fig)
        return fig


def visualize_debug_states(
    debug_states: Optional[Dict] = None,
    image: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
    create_summary: bool = True,
    show: bool = False,
):
    """
    Visualize all captured debug states.

    Args:
        debug_states: debug states dictionary (global states if None)
        image: full image to draw the decisions on
        save_path: directory to save the figure and the summary to
        create_summary: write a debug_summary.txt next to the figure
        show: open an interactive window

    Returns:
        The figure, or None when nothing was captured.
    """
    if debug_states is None:
        debug_states = get_debug_states()

    if not debug_states:
        logging.warning("No debug states captured. Enable debug mode first.")
        return None

    if save_path:
        os.makedirs(save_path, exist_ok=True)

    fig = SamJVisualizer().visualize_session(debug_states.get("session", {}), image, save_path, show)

    if create_summary and save_path:
        _create_debug_summary(debug_states, save_path)
    return fig


def _create_debug_summary(debug_states: Dict, save_path: str):
    """Create a text summary of captured debug states."""
    summary_path = os.path.join(save_path, "debug_summary.txt")

    with open(summary_path, "w") as f:
        f.write("SAMJ Debug States Summary\n")
        f.write("=" * 50 + "\n\n")

        for component_name, component_states in debug_states.items():
            f.write(f"Component: {component_name}\n")
            f.write("-" * 30 + "\n")

            for state_name, state_info in component_states.items():
                f.write(f"  State: {state_name}\n")
                f.write(f"    Type: {state_info['type']}\n")
                f.write(f"    Captured: {state_info['count']} times\n")
                f.write(f"    Latest: {state_info['data']!r}\n")
                if state_info["metadata"]:
                    f.write(f"    Metadata: {state_info['metadata']}\n")
                f.write("\n")
            f.write("\n")

    logging.info(f"Debug summary saved to: {summary_path}")

"""
Objectness node for coarse sliding-window detection.

Windows of the smallest template's size are slid over the scene and kept when
they contain enough depth edges, counted in O(1) per window with an integral
image of the depth edge mask.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..core.criteria import ClassifierCriteria
from ..core.errors import ConfigurationError
from ..core.node import Node
from ..interfaces import Group, Scene, Window
from ..utils.processing import compute_edge_mask, integral_image, window_edgels

logger = logging.getLogger(__name__)


class ObjectnessNode(Node):
    """
    Node producing candidate windows of a scene.

    The node must be trained on the template groups before use: training
    fixes the window size and the minimum number of depth edgels a window
    needs.

    Args:
        criteria: Detector configuration
        name: Optional name for the node
    """

    def __init__(self, criteria: ClassifierCriteria = None, name: str = None, **kwargs):
        super().__init__(criteria=criteria, name=name, **kwargs)
        self.window_size: Optional[Tuple[int, int]] = None
        self.min_edgels = 0

    @property
    def is_trained(self) -> bool:
        return self.window_size is not None and self.min_edgels > 0

    def train(self, groups: Sequence[Group]) -> ObjectnessNode:
        """
        Derive window size and minimum edgels from the templates.

        Args:
            groups: Template groups

        Returns:
            Self for method chaining

        Raises:
            ConfigurationError: If there are no templates
            DataQualityError: If a template is malformed
        """
        templates = [template for group in groups for template in group]
        if not templates:
            raise ConfigurationError("Cannot train objectness on an empty template set")
        for template in templates:
            template.validate()

        smallest = min(templates, key=lambda t: t.area)
        self.window_size = (int(smallest.obj_bb[2]), int(smallest.obj_bb[3]))

        counts = []
        for template in templates:
            depth_norm = np.asarray(template.depth, dtype=np.float32) * self.criteria.depth_scale
            mask = compute_edge_mask(
                depth_norm, self.criteria.objectness_t_min, self.criteria.objectness_t_max
            )
            x, y, w, h = template.obj_bb
            counts.append(window_edgels(integral_image(mask), x, y, w, h))

        self.min_edgels = int(min(counts))
        if self.min_edgels <= 0:
            logger.warning(
                "A template has no depth edgels inside its bounding box, "
                "objectness detection is disabled until retrained"
            )
        logger.info(
            f"Objectness trained on {len(templates)} templates: "
            f"window {self.window_size}, min edgels {self.min_edgels}"
        )
        return self

    def detect(self, scene: Scene) -> List[Window]:
        """
        Slide windows over the scene and keep those with enough edgels.

        Args:
            scene: Scene with normalized depth

        Returns:
            Windows in row-major order

        Raises:
            ConfigurationError: If the node has not been trained
        """
        if not self.is_trained:
            raise ConfigurationError(
                f"{self.name} has no minimum edgel threshold, call train() first"
            )
        scene.validate()

        width, height = self.window_size
        rows, cols = scene.shape
        if width > cols or height > rows:
            logger.warning(
                f"Window {self.window_size} does not fit into scene of shape {scene.shape}"
            )
            return []

        mask = compute_edge_mask(
            scene.depth_norm, self.criteria.objectness_t_min, self.criteria.objectness_t_max
        )
        integral = integral_image(mask)

        step = self.criteria.window_step
        ys, xs = np.meshgrid(
            np.arange(0, rows - height + 1, step),
            np.arange(0, cols - width + 1, step),
            indexing="ij",
        )
        sums = np.rint(
            integral[ys + height, xs + width]
            - integral[ys, xs + width]
            - integral[ys + height, xs]
            + integral[ys, xs]
        ).astype(np.int64)

        threshold = self.min_edgels * self.criteria.window_step_factor
        keep = sums >= threshold
        windows = [
            Window(int(x), int(y), width, height, edgels=int(edgels))
            for x, y, edgels in zip(xs[keep], ys[keep], sums[keep])
        ]
        logger.info(
            f"Objectness kept {len(windows)} of {sums.size} windows "
            f"(threshold {threshold:.1f} edgels)"
        )
        return windows

    def process(self, scene: Scene) -> Scene:
        """Return a copy of the scene holding the detected windows."""
        windows = self.detect(scene)
        return scene.derive(
            windows=windows, matches=[], metadata={"objectness_windows": len(windows)}
        )

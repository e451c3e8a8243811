"""
Rerun logging utility for schablone framework.

This module provides functionality to log scenes, objectness windows and
verified matches to Rerun for interactive inspection of a detection run.
"""

import logging
import os
from typing import Any, Dict, Sequence

import cv2
import numpy as np
import rerun as rr

from ..interfaces import BoundingBoxes, Match, Scene, Window

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def windows_to_bounding_boxes(windows: Sequence[Window]) -> BoundingBoxes:
    """
    Convert windows to BoundingBoxes, scored by their edgel count.

    Args:
        windows: Objectness windows

    Returns:
        BoundingBoxes with one box per window
    """
    boxes = np.array(
        [[w.x, w.y, w.x + w.width, w.y + w.height] for w in windows], dtype=np.float32
    ).reshape(-1, 4)
    return BoundingBoxes(
        boxes=boxes,
        scores=np.array([w.edgels for w in windows], dtype=np.float32),
        labels=np.zeros(len(windows), dtype=np.int32),
        class_names=["window"],
        metadata={"num_candidates": [len(w.candidates) for w in windows]},
    )


def matches_to_bounding_boxes(matches: Sequence[Match]) -> BoundingBoxes:
    """
    Convert matches to BoundingBoxes labelled by object id.

    Args:
        matches: Verified matches

    Returns:
        BoundingBoxes with one box per match
    """
    boxes = np.array(
        [[m.bbox[0], m.bbox[1], m.bbox[0] + m.bbox[2], m.bbox[1] + m.bbox[3]] for m in matches],
        dtype=np.float32,
    ).reshape(-1, 4)
    obj_ids = sorted({m.obj_id for m in matches})
    label_of = {obj_id: i for i, obj_id in enumerate(obj_ids)}
    return BoundingBoxes(
        boxes=boxes,
        scores=np.array([m.score for m in matches], dtype=np.float32),
        labels=np.array([label_of[m.obj_id] for m in matches], dtype=np.int32),
        class_names=[f"obj_{obj_id:02d}" for obj_id in obj_ids],
        metadata={"template_ids": [m.template.id for m in matches]},
    )


class RerunLogger:
    """
    Logger for detection results using Rerun.

    This class handles logging scenes, windows and matches to Rerun for
    interactive visualization during pipeline execution. All methods are
    no-ops when logging is disabled.
    """

    def __init__(
        self,
        recording_name: str = "schablone_pipeline",
        enabled: bool = True,
        spawn: bool = True,
    ):
        """
        Initialize the Rerun logger.

        Args:
            recording_name: Name for the Rerun recording
            enabled: Whether logging is enabled
            spawn: Whether to spawn the Rerun viewer
        """
        self.recording_name = recording_name
        # Disable viewer spawning in CI environments to avoid connection issues
        self.spawn = spawn and not bool(os.getenv("CI"))
        self._initialized = False
        self.enabled = enabled

    def _ensure_initialized(self):
        """Ensure Rerun is initialized."""
        if not self.enabled:
            return

        if not self._initialized:
            rr.init(self.recording_name, spawn=self.spawn)
            self._initialized = True

    def set_time_sequence(self, timeline_name: str, sequence_number: int):
        """
        Set the time sequence for timeline-based logging.

        Args:
            timeline_name: Name of the timeline (e.g., "stage")
            sequence_number: Sequence number for this point in time
        """
        if not self.enabled:
            return

        self._ensure_initialized()
        rr.set_time(timeline_name, sequence=sequence_number)

    def log_scene(self, scene: Scene, entity_path: str = "scene"):
        """
        Log the color and depth grids of a scene.

        Args:
            scene: Scene to log
            entity_path: Entity path for the scene
        """
        if not self.enabled:
            return

        self._ensure_initialized()

        if scene.hsv is not None:
            rgb = cv2.cvtColor(scene.hsv, cv2.COLOR_HSV2RGB)
            rr.log(f"{entity_path}/rgb", rr.Image(rgb))

        if scene.depth is not None:
            rr.log(f"{entity_path}/depth", rr.DepthImage(scene.depth))

    def log_bounding_boxes(self, boxes: BoundingBoxes, entity_path: str = "detections"):
        """
        Log BoundingBoxes to Rerun.

        Args:
            boxes: BoundingBoxes object containing detection results
            entity_path: Entity path for logging
        """
        if not self.enabled:
            return

        self._ensure_initialized()

        box_array = []
        labels = []

        for box, score, label in zip(boxes.boxes, boxes.scores, boxes.labels):
            x1, y1, x2, y2 = box
            box_array.append([x1, y1, x2 - x1, y2 - y1])

            class_name = (
                boxes.class_names[label]
                if label < len(boxes.class_names)
                else f"class_{label}"
            )
            labels.append(f"{class_name} ({score:.2f})")

        if box_array:
            rr.log(
                f"{entity_path}/boxes",
                rr.Boxes2D(
                    array=np.array(box_array),
                    array_format=rr.Box2DFormat.XYWH,
                    labels=labels,
                ),
            )

    def log_windows(self, windows: Sequence[Window], entity_path: str = "windows"):
        """Log objectness windows as boxes."""
        if not self.enabled or not windows:
            return
        self.log_bounding_boxes(windows_to_bounding_boxes(windows), entity_path)

    def log_matches(self, matches: Sequence[Match], entity_path: str = "matches"):
        """Log verified matches as labelled boxes."""
        if not self.enabled or not matches:
            return
        self.log_bounding_boxes(matches_to_bounding_boxes(matches), entity_path)

    def log_metadata(self, metadata: Dict[str, Any], entity_path: str = "metadata"):
        """
        Log metadata as text.

        Args:
            metadata: Metadata dictionary
            entity_path: Entity path for logging
        """
        if not self.enabled or not metadata:
            return

        self._ensure_initialized()

        metadata_text = "\n".join([f"{k}: {v}" for k, v in metadata.items()])
        rr.log(entity_path, rr.TextLog(metadata_text))

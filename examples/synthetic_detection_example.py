"""
Synthetic detection example.

This example demonstrates how to:
1. Build templates of two simple objects (a tilted disk and a tilted square)
2. Train the feature extractor, objectness and hashing stages
3. Run the detection pipeline on a scene containing both objects
4. Optionally inspect windows and matches in the Rerun viewer
"""

from __future__ import annotations

import argparse
import logging
from typing import Tuple

import cv2
import numpy as np

from schablone import ClassifierCriteria, Group, Pipeline, Scene, Template
from schablone.nodes import FeatureExtractorNode, HasherNode, MatcherNode, ObjectnessNode

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TEMPLATE_SIZE = 40
DEPTH_SCALE = 1.0 / 2000.0


def render_template(
    template_id: int, obj_id: int, shape: str, color_rgb: Tuple[int, int, int]
) -> Template:
    """
    Rasterize a flat object tilted away from the camera.

    Args:
        template_id: Template identifier
        obj_id: Object identifier
        shape: "disk" or "square"
        color_rgb: Object color

    Returns:
        Raw template
    """
    yy, xx = np.mgrid[0:TEMPLATE_SIZE, 0:TEMPLATE_SIZE]
    c = TEMPLATE_SIZE // 2
    if shape == "disk":
        mask = (xx - c) ** 2 + (yy - c) ** 2 <= 14**2
    else:
        mask = (np.abs(xx - c) <= 12) & (np.abs(yy - c) <= 12)

    depth = np.where(mask, 1000.0 + 3.0 * yy, 0.0).astype(np.float32)
    gray = np.where(mask, 0.7, 0.0).astype(np.float32)
    rgb = np.zeros((TEMPLATE_SIZE, TEMPLATE_SIZE, 3), dtype=np.uint8)
    rgb[mask] = color_rgb
    hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)

    ys, xs = np.nonzero(mask)
    obj_bb = (int(xs.min()), int(ys.min()), int(np.ptp(xs)) + 1, int(np.ptp(ys)) + 1)
    return Template(
        id=template_id,
        obj_id=obj_id,
        gray=gray,
        hsv=hsv,
        depth=depth,
        obj_bb=obj_bb,
        diameter=float(max(obj_bb[2], obj_bb[3])) * 3.0,
    )


def compose_scene(templates, offsets, size: Tuple[int, int] = (120, 160)) -> Scene:
    """Paste templates into a flat background at the given (x, y) offsets."""
    rows, cols = size
    depth = np.full(size, 1400.0, dtype=np.float32)
    gray = np.full(size, 0.2, dtype=np.float32)
    hsv = np.zeros((rows, cols, 3), dtype=np.uint8)
    hsv[..., 2] = 60

    for template, (ox, oy) in zip(templates, offsets):
        ys, xs = np.nonzero(template.depth > 0)
        depth[ys + oy, xs + ox] = template.depth[ys, xs]
        gray[ys + oy, xs + ox] = template.gray[ys, xs]
        hsv[ys + oy, xs + ox] = template.hsv[ys, xs]

    return Scene.from_depth(hsv, gray, depth, DEPTH_SCALE, metadata={"source": "synthetic"})


def main():
    parser = argparse.ArgumentParser(description="Synthetic template detection example")
    parser.add_argument("--rerun", action="store_true", help="Log results to Rerun")
    parser.add_argument("--criteria", default=None, help="Load criteria from a JSON file")
    parser.add_argument("--save-criteria", default=None, help="Save the used criteria as JSON")
    args = parser.parse_args()

    if args.criteria:
        criteria = ClassifierCriteria.load(args.criteria)
    else:
        criteria = ClassifierCriteria(
            grid_size=(8, 8),
            hash_table_count=80,
            max_triplet_distance=2,
            window_step=2,
            objectness_t_max=1.0,
            depth_scale=DEPTH_SCALE,
            feature_points_count=30,
            t_match=0.7,
            t_overlap=0.3,
            neighbourhood=1,
            depth_deviation_factor=0.1,
        )
    if args.save_criteria:
        criteria.save(args.save_criteria)

    disk = render_template(0, 1, "disk", (200, 40, 40))
    square = render_template(1, 2, "square", (40, 40, 200))
    groups = FeatureExtractorNode(criteria).process([Group(1, (disk,)), Group(2, (square,))])

    objectness = ObjectnessNode(criteria).train(groups)
    hasher = HasherNode(criteria)
    hasher.train(groups)

    pipeline = Pipeline(
        name="synthetic_detection",
        enable_rerun_logging=args.rerun,
        rerun_spawn_viewer=args.rerun,
    )
    pipeline.add_node(objectness).add_node(hasher).add_node(MatcherNode(criteria))

    scene = compose_scene([disk, square], [(10, 20), (90, 50)])
    result = pipeline.process(scene)

    logger.info(f"Found {len(result.matches)} matches")
    for match in result.matches:
        logger.info(f"  {match}")


if __name__ == "__main__":
    main()

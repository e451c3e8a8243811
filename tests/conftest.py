"""
Shared synthetic data for the schablone tests.

The template is a 30x30 view of a disk of radius 10 whose depth rises by 2
units per row, so every valid pixel has the same surface normal bin. Scenes
are 50x50 grids with a flat background the disk can be pasted into.
"""

import numpy as np
import pytest

from schablone.core import ClassifierCriteria
from schablone.interfaces import Camera, Group, Scene, Template

TEMPLATE_SIZE = 30
DISK_CENTER = 15
DISK_RADIUS = 10
DISK_BB = (5, 5, 21, 21)
SCENE_SIZE = 50
OBJECT_OFFSET = (12, 9)
BACKGROUND_DEPTH = 800.0
DEPTH_SCALE = 1.0 / 1000.0


def make_criteria(**overrides) -> ClassifierCriteria:
    """Criteria tuned for the small synthetic grids."""
    values = dict(
        grid_size=(8, 8),
        hash_table_count=80,
        max_triplet_distance=2,
        min_votes_per_template=3,
        window_step=1,
        objectness_t_min=0.01,
        objectness_t_max=1.0,
        depth_scale=DEPTH_SCALE,
        feature_points_count=20,
        t_match=0.8,
        t_overlap=0.3,
        t_color_test=5,
        neighbourhood=1,
        normal_bin_tolerance=0,
        gradient_bin_tolerance=0,
        object_size_tolerance=0.2,
        depth_deviation_factor=0.1,
    )
    values.update(overrides)
    return ClassifierCriteria(**values)


def disk_mask(size: int = TEMPLATE_SIZE) -> np.ndarray:
    yy, xx = np.mgrid[0:size, 0:size]
    return (xx - DISK_CENTER) ** 2 + (yy - DISK_CENTER) ** 2 <= DISK_RADIUS**2


def make_disk_template(template_id: int = 0, obj_id: int = 1, hue: int = 60) -> Template:
    """Raw template of the tilted disk."""
    disk = disk_mask()
    rows = np.mgrid[0:TEMPLATE_SIZE, 0:TEMPLATE_SIZE][0]

    depth = np.where(disk, 500.0 + 2.0 * rows, 0.0).astype(np.float32)
    gray = np.where(disk, 0.8, 0.0).astype(np.float32)
    hsv = np.zeros((TEMPLATE_SIZE, TEMPLATE_SIZE, 3), dtype=np.uint8)
    hsv[disk] = (hue, 200, 200)

    camera = Camera(
        K=np.array([[50.0, 0.0, 15.0], [0.0, 50.0, 15.0], [0.0, 0.0, 1.0]]),
        R=np.eye(3),
        t=np.array([0.0, 0.0, 530.0]),
    )
    return Template(
        id=template_id,
        obj_id=obj_id,
        gray=gray,
        hsv=hsv,
        depth=depth,
        obj_bb=DISK_BB,
        diameter=40.0,
        camera=camera,
    )


def make_background(size: int = SCENE_SIZE):
    depth = np.full((size, size), BACKGROUND_DEPTH, dtype=np.float32)
    gray = np.full((size, size), 0.2, dtype=np.float32)
    hsv = np.zeros((size, size, 3), dtype=np.uint8)
    hsv[..., 2] = 51
    return hsv, gray, depth


def make_scene_with_object(template: Template, offset=OBJECT_OFFSET) -> Scene:
    """Scene with the template's disk pasted at ``offset`` (x, y)."""
    hsv, gray, depth = make_background()
    disk = disk_mask()
    ys, xs = np.nonzero(disk)
    sx, sy = xs + offset[0], ys + offset[1]
    depth[sy, sx] = template.depth[ys, xs]
    gray[sy, sx] = template.gray[ys, xs]
    hsv[sy, sx] = template.hsv[ys, xs]
    return Scene.from_depth(hsv, gray, depth, DEPTH_SCALE)


def make_scene_without_object() -> Scene:
    """Scene with a flat, differently colored block instead of the disk."""
    hsv, gray, depth = make_background()
    depth[15:35, 10:30] = 600.0
    gray[15:35, 10:30] = 0.8
    hsv[15:35, 10:30] = (120, 200, 200)
    return Scene.from_depth(hsv, gray, depth, DEPTH_SCALE)


@pytest.fixture
def criteria():
    return make_criteria()


@pytest.fixture
def disk_template():
    return make_disk_template()


@pytest.fixture
def raw_groups():
    return [Group(1, (make_disk_template(0, 1),))]


@pytest.fixture
def trained_groups(criteria, raw_groups):
    from schablone.nodes import FeatureExtractorNode

    return FeatureExtractorNode(criteria).process(raw_groups)


@pytest.fixture
def scene_with_object(disk_template):
    return make_scene_with_object(disk_template)


@pytest.fixture
def scene_without_object():
    return make_scene_without_object()

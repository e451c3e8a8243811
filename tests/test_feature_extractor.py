"""
Tests for the feature extractor node.
"""

import numpy as np
import pytest

from schablone.core import ConfigurationError, DataQualityError
from schablone.interfaces import Group
from schablone.nodes import FeatureExtractorNode
from schablone.nodes.feature_extractor import (
    edge_candidates,
    extract_template_features,
    stable_candidates,
)

from conftest import DISK_CENTER, DISK_RADIUS, make_criteria, make_disk_template


def test_candidates_lie_on_the_object(criteria, disk_template):
    edges = edge_candidates(disk_template, criteria)
    stable = stable_candidates(disk_template, criteria)

    assert len(edges) >= criteria.feature_points_count
    assert len(stable) >= criteria.feature_points_count

    edge_radius = np.hypot(edges[:, 0] - DISK_CENTER, edges[:, 1] - DISK_CENTER)
    assert np.all(np.abs(edge_radius - DISK_RADIUS) <= 2.0)

    stable_radius = np.hypot(stable[:, 0] - DISK_CENTER, stable[:, 1] - DISK_CENTER)
    assert np.all(stable_radius < DISK_RADIUS)
    assert np.all(disk_template.depth[stable[:, 1], stable[:, 0]] > 0)


def test_extracted_features(criteria, disk_template):
    rng = np.random.default_rng(criteria.random_seed)
    trained = extract_template_features(disk_template, criteria, rng)

    n = criteria.feature_points_count
    assert trained.is_trained
    assert not disk_template.is_trained
    assert trained.edge_points.shape == (n, 2)
    assert trained.stable_points.shape == (n, 2)
    assert len(trained.features) == n
    assert trained.features.colors.shape == (n, 3)

    # Sampling is without replacement
    assert len({tuple(p) for p in trained.edge_points}) == n
    assert len({tuple(p) for p in trained.stable_points}) == n

    # The disk is a plane tilted along the rows
    assert np.all(trained.features.surface_normals == 6)
    assert np.all(trained.features.orientation_gradients < 5)
    assert np.all(trained.features.colors[:, 0] == 60)
    sx, sy = trained.stable_points[:, 0], trained.stable_points[:, 1]
    np.testing.assert_array_equal(trained.features.depths, 500.0 + 2.0 * sy)
    assert trained.features.median_depth > 500.0
    assert np.all(sx > 0)


def test_process_is_deterministic(criteria, raw_groups):
    node = FeatureExtractorNode(criteria)

    first = node.process(raw_groups)
    second = node.process(raw_groups)

    a = first[0].templates[0]
    b = second[0].templates[0]
    np.testing.assert_array_equal(a.edge_points, b.edge_points)
    np.testing.assert_array_equal(a.stable_points, b.stable_points)


def test_seed_changes_sampling(raw_groups):
    a = FeatureExtractorNode(make_criteria(random_seed=1)).process(raw_groups)
    b = FeatureExtractorNode(make_criteria(random_seed=2)).process(raw_groups)

    assert not np.array_equal(a[0].templates[0].stable_points, b[0].templates[0].stable_points)


def test_process_keeps_group_structure(criteria):
    groups = [
        Group(1, (make_disk_template(0, 1), make_disk_template(1, 1))),
        Group(2, (make_disk_template(2, 2, hue=100),)),
    ]

    trained = FeatureExtractorNode(criteria).process(groups)

    assert [g.obj_id for g in trained] == [1, 2]
    assert [t.id for g in trained for t in g] == [0, 1, 2]
    assert all(t.is_trained for g in trained for t in g)


def test_too_few_points_is_a_data_error():
    criteria = make_criteria(feature_points_count=5000)
    with pytest.raises(DataQualityError, match="point candidates"):
        FeatureExtractorNode(criteria).process([Group(1, (make_disk_template(),))])


def test_blank_template_is_a_data_error(criteria):
    template = make_disk_template()
    template.depth[:] = 0.0
    template.gray[:] = 0.0

    with pytest.raises(DataQualityError):
        FeatureExtractorNode(criteria).process([Group(1, (template,))])


def test_bounding_box_outside_template_is_a_data_error(criteria):
    template = make_disk_template()
    object.__setattr__(template, "obj_bb", (20, 20, 21, 21))

    with pytest.raises(DataQualityError, match="outside the image"):
        FeatureExtractorNode(criteria).process([Group(1, (template,))])


def test_empty_template_set_is_a_configuration_error(criteria):
    with pytest.raises(ConfigurationError):
        FeatureExtractorNode(criteria).process([])
    with pytest.raises(ConfigurationError):
        FeatureExtractorNode(criteria).process([Group(1, ())])

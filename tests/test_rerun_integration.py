"""
Test Rerun logging functionality.
"""

import numpy as np
import pytest

from schablone import Pipeline
from schablone.interfaces import Match, Window
from schablone.nodes import FeatureExtractorNode, HasherNode, MatcherNode, ObjectnessNode
from schablone.utils import RerunLogger
from schablone.utils.rerun_logger import matches_to_bounding_boxes, windows_to_bounding_boxes

from conftest import make_disk_template


def test_rerun_logger_creation():
    """Test that RerunLogger can be created."""
    logger = RerunLogger("test_recording", enabled=True)
    assert logger.recording_name == "test_recording"
    assert logger.enabled is True


def test_rerun_logger_disabled():
    """Test that a disabled RerunLogger never initializes Rerun."""
    logger = RerunLogger("test_recording", enabled=False)
    logger.log_windows([Window(0, 0, 5, 5)])
    logger.log_metadata({"a": 1})
    assert logger.enabled is False
    assert logger._initialized is False


def test_windows_to_bounding_boxes():
    windows = [Window(0, 0, 10, 20, edgels=7), Window(5, 6, 10, 20, edgels=3)]

    boxes = windows_to_bounding_boxes(windows)

    np.testing.assert_array_equal(boxes.boxes, [[0, 0, 10, 20], [5, 6, 15, 26]])
    np.testing.assert_array_equal(boxes.scores, [7, 3])
    assert boxes.class_names == ["window"]


def test_matches_to_bounding_boxes():
    matches = [
        Match(template=make_disk_template(0, obj_id=3), bbox=(1, 2, 10, 10), score=0.9),
        Match(template=make_disk_template(1, obj_id=1), bbox=(4, 4, 10, 10), score=0.7),
    ]

    boxes = matches_to_bounding_boxes(matches)

    np.testing.assert_array_equal(boxes.boxes, [[1, 2, 11, 12], [4, 4, 14, 14]])
    assert boxes.class_names == ["obj_01", "obj_03"]
    np.testing.assert_array_equal(boxes.labels, [1, 0])
    assert boxes.metadata["template_ids"] == [0, 1]


def test_empty_boxes():
    assert windows_to_bounding_boxes([]).boxes.shape == (0, 4)
    assert matches_to_bounding_boxes([]).boxes.shape == (0, 4)


def test_pipeline_with_rerun_logging(criteria, raw_groups, scene_with_object):
    """Test pipeline with Rerun logging enabled."""
    trained = FeatureExtractorNode(criteria).process(raw_groups)
    hasher = HasherNode(criteria)
    hasher.train(trained)

    # No viewer spawn for testing
    pipeline = Pipeline(
        name="Test_Pipeline", enable_rerun_logging=True, rerun_spawn_viewer=False
    )
    pipeline.add_node(ObjectnessNode(criteria).train(trained))
    pipeline.add_node(hasher)
    pipeline.add_node(MatcherNode(criteria))

    # Process through pipeline (should not raise errors)
    result = pipeline.process(scene_with_object)

    assert len(result.matches) == 1
    assert pipeline.rerun_logger._initialized is True


def test_pipeline_without_rerun_logging():
    """Test pipeline with Rerun logging disabled (default behavior)."""
    pipeline = Pipeline(name="Test_Pipeline", enable_rerun_logging=False)

    assert pipeline.enable_rerun_logging is False
    assert pipeline.rerun_logger.enabled is False


if __name__ == "__main__":
    pytest.main([__file__])

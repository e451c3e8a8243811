"""
Tests for the verification cascade and non-maxima suppression.
"""

import numpy as np
import pytest

from schablone.core import ConfigurationError
from schablone.core.criteria import TEST_NAMES
from schablone.interfaces import HashTableCandidate, Match, Scene, Window
from schablone.nodes import HasherNode, MatcherNode, ObjectnessNode, non_maxima_suppression
from schablone.nodes.matcher import SceneMaps, Verdict, bbox_iou

from conftest import (
    DEPTH_SCALE,
    DISK_BB,
    OBJECT_OFFSET,
    make_criteria,
    make_disk_template,
    make_scene_with_object,
)

OBJECT_WINDOW = Window(OBJECT_OFFSET[0] + DISK_BB[0], OBJECT_OFFSET[1] + DISK_BB[1], 21, 21)


def _recording_tests(calls, failing):
    def make(name):
        def test(maps, window, template):
            calls.append(name)
            return Verdict(name not in failing, 0.0 if name in failing else 1.0)

        return test

    return {name: make(name) for name in TEST_NAMES}


def test_all_tests_pass_on_the_object(criteria, trained_groups, scene_with_object):
    template = trained_groups[0].templates[0]
    node = MatcherNode(criteria)
    maps = SceneMaps.from_scene(scene_with_object, criteria)

    size = node.test_object_size(maps, OBJECT_WINDOW, template)
    assert size.passed
    assert size.ratio == pytest.approx(1.0, abs=0.05)

    for test in (node.test_surface_normals, node.test_gradients, node.test_depth, node.test_color):
        verdict = test(maps, OBJECT_WINDOW, template)
        assert verdict.passed
        assert verdict.ratio >= criteria.t_match

    assert node.test_depth(maps, OBJECT_WINDOW, template).ratio == 1.0
    assert node.test_color(maps, OBJECT_WINDOW, template).ratio == 1.0


def test_size_test_rejects_distant_surface(criteria, trained_groups, scene_with_object):
    template = trained_groups[0].templates[0]
    far = Scene.from_depth(
        scene_with_object.hsv, scene_with_object.gray, scene_with_object.depth * 2.0, DEPTH_SCALE
    )

    verdict = MatcherNode(criteria).test_object_size(
        SceneMaps.from_scene(far, criteria), OBJECT_WINDOW, template
    )

    assert not verdict.passed
    assert verdict.ratio == pytest.approx(0.5, abs=0.05)


def test_size_test_fails_without_scene_depth(criteria, trained_groups, scene_with_object):
    template = trained_groups[0].templates[0]
    empty = Scene.from_depth(
        scene_with_object.hsv, scene_with_object.gray,
        np.zeros_like(scene_with_object.depth), DEPTH_SCALE,
    )

    verdict = MatcherNode(criteria).test_object_size(
        SceneMaps.from_scene(empty, criteria), OBJECT_WINDOW, template
    )

    assert verdict == Verdict(False, 0.0)


def test_color_test_rejects_other_hue(criteria, trained_groups):
    template = trained_groups[0].templates[0]
    scene = make_scene_with_object(make_disk_template(hue=120))

    verdict = MatcherNode(criteria).test_color(
        SceneMaps.from_scene(scene, criteria), OBJECT_WINDOW, template
    )

    assert not verdict.passed
    assert verdict.ratio == 0.0


def test_depth_test_rejects_noisy_depth(criteria, trained_groups, scene_with_object):
    template = trained_groups[0].templates[0]
    rng = np.random.default_rng(3)
    noisy = scene_with_object.depth + rng.uniform(-300.0, 300.0, scene_with_object.depth.shape)
    scene = Scene.from_depth(
        scene_with_object.hsv, scene_with_object.gray, noisy.astype(np.float32), DEPTH_SCALE
    )

    verdict = MatcherNode(criteria).test_depth(
        SceneMaps.from_scene(scene, criteria), OBJECT_WINDOW, template
    )

    assert not verdict.passed


def test_depth_test_ignores_constant_offset(criteria, trained_groups, scene_with_object):
    """The median offset absorbs a global depth shift."""
    template = trained_groups[0].templates[0]
    shifted = Scene.from_depth(
        scene_with_object.hsv, scene_with_object.gray, scene_with_object.depth + 40.0, DEPTH_SCALE
    )

    verdict = MatcherNode(criteria).test_depth(
        SceneMaps.from_scene(shifted, criteria), OBJECT_WINDOW, template
    )

    assert verdict.passed
    assert verdict.ratio == 1.0


def test_gradient_test_rejects_misaligned_window(criteria, trained_groups, scene_with_object):
    template = trained_groups[0].templates[0]
    shifted = Window(OBJECT_WINDOW.x + 3, OBJECT_WINDOW.y, 21, 21)

    verdict = MatcherNode(criteria).test_gradients(
        SceneMaps.from_scene(scene_with_object, criteria), shifted, template
    )

    assert not verdict.passed


def test_points_outside_the_scene_disagree(criteria, trained_groups, scene_with_object):
    template = trained_groups[0].templates[0]
    outside = Window(-30, -30, 21, 21)
    maps = SceneMaps.from_scene(scene_with_object, criteria)
    node = MatcherNode(criteria)

    assert node.test_surface_normals(maps, outside, template) == Verdict(False, 0.0)
    assert node.test_depth(maps, outside, template) == Verdict(False, 0.0)
    assert node.test_color(maps, outside, template) == Verdict(False, 0.0)


def test_cascade_short_circuits(criteria, trained_groups):
    calls = []
    node = MatcherNode(criteria)
    node.tests = _recording_tests(calls, failing={"gradient"})
    candidate = HashTableCandidate(trained_groups[0].templates[0], votes=5)

    assert node.verify_candidate(None, OBJECT_WINDOW, candidate) is None
    assert calls == ["size", "normal", "gradient"]


def test_cascade_follows_configured_order(trained_groups):
    order = ("color", "depth", "gradient", "normal", "size")
    calls = []
    node = MatcherNode(make_criteria(test_order=order))
    node.tests = _recording_tests(calls, failing={"normal"})
    candidate = HashTableCandidate(trained_groups[0].templates[0], votes=5)

    assert node.verify_candidate(None, OBJECT_WINDOW, candidate) is None
    assert calls == ["color", "depth", "gradient", "normal"]


def test_cascade_promotes_survivors(criteria, trained_groups):
    calls = []
    node = MatcherNode(criteria)
    node.tests = _recording_tests(calls, failing=set())
    candidate = HashTableCandidate(trained_groups[0].templates[0], votes=7)

    match = node.verify_candidate(None, OBJECT_WINDOW, candidate)

    assert calls == list(TEST_NAMES)
    assert match.votes == 7
    assert match.score == 1.0
    assert set(match.test_scores) == {"normal", "gradient", "depth", "color"}
    assert match.bbox == (OBJECT_WINDOW.x, OBJECT_WINDOW.y, DISK_BB[2], DISK_BB[3])


def test_untrained_candidate_is_a_configuration_error(criteria):
    candidate = HashTableCandidate(make_disk_template(), votes=5)
    with pytest.raises(ConfigurationError, match="no features"):
        MatcherNode(criteria).verify_candidate(None, OBJECT_WINDOW, candidate)


def test_cascade_only_removes_candidates(criteria, trained_groups, scene_with_object):
    windows = ObjectnessNode(criteria).train(trained_groups).detect(scene_with_object)
    hasher = HasherNode(criteria)
    hasher.train(trained_groups)
    before = hasher.verify_template_candidates(scene_with_object, windows)

    after, matches = MatcherNode(criteria).match(scene_with_object, before)

    assert len(after) == len(before)
    for old, new in zip(before, after):
        old_ids = [id(c) for c in old.candidates]
        assert all(id(c) in old_ids for c in new.candidates)
        assert (new.x, new.y) == (old.x, old.y)
    assert matches


def test_empty_window_list_is_valid(criteria, scene_with_object):
    assert MatcherNode(criteria).match(scene_with_object, []) == ([], [])


def _match(bbox, score, votes=0, template_id=0):
    return Match(template=make_disk_template(template_id), bbox=bbox, score=score, votes=votes)


def test_bbox_iou():
    assert bbox_iou((0, 0, 10, 10), (0, 0, 10, 10)) == 1.0
    assert bbox_iou((0, 0, 10, 10), (20, 20, 5, 5)) == 0.0
    assert bbox_iou((0, 0, 10, 10), (5, 0, 10, 10)) == pytest.approx(50 / 150)


def test_nms_keeps_higher_scoring_of_overlapping_pair():
    weaker = _match((10, 10, 20, 20), score=0.7, template_id=1)
    stronger = _match((12, 11, 20, 20), score=0.9, template_id=2)

    kept = non_maxima_suppression([weaker, stronger], t_overlap=0.3)

    assert kept == [stronger]


def test_nms_keeps_separate_matches():
    a = _match((0, 0, 10, 10), score=0.5)
    b = _match((30, 30, 10, 10), score=0.9)

    assert non_maxima_suppression([a, b], t_overlap=0.1) == [b, a]


def test_nms_breaks_score_ties_by_votes_then_input_order():
    few = _match((0, 0, 10, 10), score=0.8, votes=3)
    many = _match((1, 1, 10, 10), score=0.8, votes=9)
    same = _match((2, 2, 10, 10), score=0.8, votes=9)

    assert non_maxima_suppression([few, many, same], t_overlap=0.3) == [many]


@pytest.mark.parametrize("seed", range(5))
def test_nms_is_idempotent(seed):
    rng = np.random.default_rng(seed)
    matches = [
        _match(
            tuple(int(v) for v in (*rng.integers(0, 60, 2), *rng.integers(5, 25, 2))),
            score=float(rng.random()),
            votes=int(rng.integers(0, 10)),
        )
        for _ in range(40)
    ]

    once = non_maxima_suppression(matches, t_overlap=0.2)
    twice = non_maxima_suppression(once, t_overlap=0.2)

    assert twice == once
    for i, a in enumerate(once):
        for b in once[i + 1 :]:
            assert bbox_iou(a.bbox, b.bbox) <= 0.2


def test_process_fills_scene_matches(criteria, trained_groups, scene_with_object):
    objectness = ObjectnessNode(criteria).train(trained_groups)
    hasher = HasherNode(criteria)
    hasher.train(trained_groups)

    scene = MatcherNode(criteria)(hasher(objectness(scene_with_object)))

    assert len(scene.matches) == 1
    assert scene.metadata["matches"] == 1
    assert all(w.has_candidates() for w in scene.windows)

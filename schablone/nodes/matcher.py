"""
Matcher node verifying hashing candidates.

Every candidate template of a window runs through a cascade of cheap tests
(object size, surface normals, gradients, depth, color). The first failing
test rejects the candidate. Survivors become matches, which are reduced by
non-maxima suppression across overlapping windows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from multiprocessing.pool import ThreadPool
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage

from ..core.criteria import ClassifierCriteria
from ..core.errors import ConfigurationError
from ..core.node import Node
from ..interfaces import HashTableCandidate, Match, Scene, Template, Window
from ..utils.processing import (
    GRADIENT_BINS,
    NORMAL_BINS,
    circular_bin_distance,
    gradient_maps,
    normalize_hue,
    surface_normal_bins,
)

logger = logging.getLogger(__name__)

HUE_RANGE = 180


class Verdict(NamedTuple):
    """Outcome of a single verification test."""

    passed: bool
    ratio: float


def _accept_masks(
    bins: np.ndarray, valid: np.ndarray, bin_count: int, tolerance: int, radius: int
) -> np.ndarray:
    """Per template bin, scene pixels having an acceptable bin within ``radius``."""
    structure = np.ones((2 * radius + 1, 2 * radius + 1), dtype=bool)
    masks = np.zeros((bin_count,) + bins.shape, dtype=bool)
    for b in range(bin_count):
        close = valid & (circular_bin_distance(bins, b, bin_count) <= tolerance)
        masks[b] = ndimage.binary_dilation(close, structure=structure) if close.any() else close
    return masks


@dataclass
class SceneMaps:
    """
    Per scene lookup maps shared by all candidate tests.

    Attributes:
        depth: Raw scene depth (H, W)
        normal_accept: Acceptance mask per template normal bin (8, H, W)
        gradient_accept: Acceptance mask per template gradient bin (5, H, W)
        hue: Normalized scene hue (H, W)
    """

    depth: np.ndarray
    normal_accept: np.ndarray
    gradient_accept: np.ndarray
    hue: np.ndarray

    @classmethod
    def from_scene(cls, scene: Scene, criteria: ClassifierCriteria) -> SceneMaps:
        depth = np.asarray(scene.depth, dtype=np.float32)
        gradient_bins, magnitude = gradient_maps(scene.gray)
        return cls(
            depth=depth,
            normal_accept=_accept_masks(
                surface_normal_bins(depth),
                depth > 0,
                NORMAL_BINS,
                criteria.normal_bin_tolerance,
                criteria.neighbourhood,
            ),
            gradient_accept=_accept_masks(
                gradient_bins,
                magnitude >= criteria.gradient_magnitude_threshold,
                GRADIENT_BINS,
                criteria.gradient_bin_tolerance,
                criteria.neighbourhood,
            ),
            hue=normalize_hue(scene.hsv, criteria.hsv_value_min, criteria.hsv_saturation_min),
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.depth.shape[0], self.depth.shape[1]


def map_points(
    points: np.ndarray, template: Template, window: Window, shape: Tuple[int, int]
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Map template points into the scene, placing the template box at the window.

    Args:
        points: Template points (N, 2) as (x, y)
        template: Template the points belong to
        window: Window the template is tested in
        shape: Scene shape (rows, cols)

    Returns:
        Tuple of (x, y, inside) where x and y are clipped to the scene and
        ``inside`` flags points that were within bounds before clipping
    """
    rows, cols = shape
    xs = window.x + points[:, 0] - template.obj_bb[0]
    ys = window.y + points[:, 1] - template.obj_bb[1]
    inside = (xs >= 0) & (xs < cols) & (ys >= 0) & (ys < rows)
    return np.clip(xs, 0, cols - 1), np.clip(ys, 0, rows - 1), inside


def bbox_iou(a: Sequence[int], b: Sequence[int]) -> float:
    """Intersection over union of two (x, y, width, height) boxes."""
    ix = max(0, min(a[0] + a[2], b[0] + b[2]) - max(a[0], b[0]))
    iy = max(0, min(a[1] + a[3], b[1] + b[3]) - max(a[1], b[1]))
    intersection = ix * iy
    union = a[2] * a[3] + b[2] * b[3] - intersection
    return float(intersection) / union if union > 0 else 0.0


def non_maxima_suppression(matches: Sequence[Match], t_overlap: float) -> List[Match]:
    """
    Greedy non-maxima suppression over all matches.

    Matches are visited by descending (score, votes), ties keep input order.
    A match is kept if its IoU with every kept match is at most ``t_overlap``.

    Args:
        matches: Matches to reduce
        t_overlap: Maximum IoU between two kept matches

    Returns:
        Kept matches in visiting order
    """
    ordered = sorted(matches, key=lambda m: (m.score, m.votes), reverse=True)
    kept: List[Match] = []
    for match in ordered:
        if all(bbox_iou(match.bbox, other.bbox) <= t_overlap for other in kept):
            kept.append(match)
    return kept


class MatcherNode(Node):
    """
    Node running the verification cascade on all window candidates.

    The cascade order follows ``criteria.test_order``. Test implementations
    are looked up in ``self.tests`` by name.

    Args:
        criteria: Detector configuration
        name: Optional name for the node
    """

    def __init__(self, criteria: ClassifierCriteria = None, name: str = None, **kwargs):
        super().__init__(criteria=criteria, name=name, **kwargs)
        self.tests: Dict[str, Callable[[SceneMaps, Window, Template], Verdict]] = {
            "size": self.test_object_size,
            "normal": self.test_surface_normals,
            "gradient": self.test_gradients,
            "depth": self.test_depth,
            "color": self.test_color,
        }

    def test_object_size(self, maps: SceneMaps, window: Window, template: Template) -> Verdict:
        """
        Compare the template depth with the scene depth at the box centre.

        The ratio of the template's median stable point depth to the median
        valid scene depth around the mapped box centre is the scale the
        template would need. The verdict ratio is that scale.
        """
        rows, cols = maps.shape
        r = self.criteria.neighbourhood
        cx = window.x + template.obj_bb[2] // 2
        cy = window.y + template.obj_bb[3] // 2
        if not (0 <= cx < cols and 0 <= cy < rows):
            return Verdict(False, 0.0)

        patch = maps.depth[max(0, cy - r) : cy + r + 1, max(0, cx - r) : cx + r + 1]
        valid = patch[patch > 0]
        template_depth = template.features.median_depth
        if len(valid) == 0 or template_depth <= 0:
            return Verdict(False, 0.0)

        scale = template_depth / float(np.median(valid))
        return Verdict(abs(scale - 1.0) <= self.criteria.object_size_tolerance, scale)

    def _bin_test(
        self, accept: np.ndarray, bins: np.ndarray, points: np.ndarray, window: Window, template: Template
    ) -> Verdict:
        xs, ys, inside = map_points(points, template, window, accept.shape[1:])
        agree = inside & accept[bins.astype(np.int64), ys, xs]
        ratio = float(np.mean(agree)) if len(agree) else 0.0
        return Verdict(ratio >= self.criteria.t_match, ratio)

    def test_surface_normals(self, maps: SceneMaps, window: Window, template: Template) -> Verdict:
        """Stable points whose neighbourhood holds a close scene normal bin."""
        return self._bin_test(
            maps.normal_accept,
            template.features.surface_normals,
            template.stable_points,
            window,
            template,
        )

    def test_gradients(self, maps: SceneMaps, window: Window, template: Template) -> Verdict:
        """Edge points whose neighbourhood holds a close, strong scene gradient bin."""
        return self._bin_test(
            maps.gradient_accept,
            template.features.orientation_gradients,
            template.edge_points,
            window,
            template,
        )

    def test_depth(self, maps: SceneMaps, window: Window, template: Template) -> Verdict:
        """
        Robust depth agreement at stable points.

        The offset between scene and template depth is estimated by the median
        over valid points. A point agrees when its offset is within
        ``depth_deviation_factor`` times the object diameter of that median.
        Points outside the scene or without depth disagree.
        """
        xs, ys, inside = map_points(template.stable_points, template, window, maps.shape)
        template_depths = template.features.depths.astype(np.float64)
        scene_depths = maps.depth[ys, xs].astype(np.float64)
        valid = inside & (scene_depths > 0) & (template_depths > 0)
        if not valid.any():
            return Verdict(False, 0.0)

        diffs = scene_depths - template_depths
        median = float(np.median(diffs[valid]))
        band = self.criteria.depth_deviation_factor * template.diameter
        agree = valid & (np.abs(diffs - median) < band)
        ratio = float(np.mean(agree))
        return Verdict(ratio >= self.criteria.t_match, ratio)

    def test_color(self, maps: SceneMaps, window: Window, template: Template) -> Verdict:
        """Stable points whose neighbourhood holds a scene hue close to the template hue."""
        rows, cols = maps.shape
        r = self.criteria.neighbourhood
        template_hue = normalize_hue(
            template.features.colors, self.criteria.hsv_value_min, self.criteria.hsv_saturation_min
        )
        xs = window.x + template.stable_points[:, 0] - template.obj_bb[0]
        ys = window.y + template.stable_points[:, 1] - template.obj_bb[1]

        agree = np.zeros(len(xs), dtype=bool)
        for dy in range(-r, r + 1):
            for dx in range(-r, r + 1):
                px, py = xs + dx, ys + dy
                inside = (px >= 0) & (px < cols) & (py >= 0) & (py < rows)
                hue = maps.hue[np.clip(py, 0, rows - 1), np.clip(px, 0, cols - 1)]
                close = circular_bin_distance(hue, template_hue, HUE_RANGE) <= self.criteria.t_color_test
                agree |= inside & close

        ratio = float(np.mean(agree)) if len(agree) else 0.0
        return Verdict(ratio >= self.criteria.t_match, ratio)

    def verify_candidate(
        self, maps: SceneMaps, window: Window, candidate: HashTableCandidate
    ) -> Optional[Match]:
        """
        Run the cascade on one candidate.

        Args:
            maps: Scene lookup maps
            window: Window the candidate was found in
            candidate: Candidate to verify

        Returns:
            Match if every test passed, None otherwise
        """
        template = candidate.template
        if not template.is_trained:
            raise ConfigurationError(f"Template {template.id} has no features, train it first")

        scores: Dict[str, float] = {}
        for test_name in self.criteria.test_order:
            verdict = self.tests[test_name](maps, window, template)
            if not verdict.passed:
                logger.debug(
                    f"Template {template.id} rejected at {window.tl} by {test_name} "
                    f"test ({verdict.ratio:.2f})"
                )
                return None
            if test_name != "size":
                scores[test_name] = verdict.ratio
        return Match.from_candidate(candidate, window, scores)

    def _verify_window(self, maps: SceneMaps, window: Window) -> Tuple[Window, List[Match]]:
        survivors = []
        matches = []
        for candidate in window.candidates:
            match = self.verify_candidate(maps, window, candidate)
            if match is not None:
                survivors.append(candidate)
                matches.append(match)
        return window.with_candidates(survivors), matches

    def match(
        self, scene: Scene, windows: Optional[Sequence[Window]] = None
    ) -> Tuple[List[Window], List[Match]]:
        """
        Verify the candidates of all windows.

        Args:
            scene: Scene the windows belong to
            windows: Windows with candidates, defaults to ``scene.windows``

        Returns:
            Tuple of (windows with their surviving candidates, matches after
            non-maxima suppression)
        """
        scene.validate()
        windows = list(scene.windows if windows is None else windows)
        if not windows:
            return [], []

        maps = SceneMaps.from_scene(scene, self.criteria)
        if self.criteria.num_workers > 1:
            with ThreadPool(self.criteria.num_workers) as pool:
                results = pool.map(lambda w: self._verify_window(maps, w), windows)
        else:
            results = [self._verify_window(maps, w) for w in windows]

        verified_windows = [window for window, _ in results]
        matches = [match for _, window_matches in results for match in window_matches]
        kept = non_maxima_suppression(matches, self.criteria.t_overlap)
        logger.info(
            f"Verification accepted {len(matches)} candidates, "
            f"{len(kept)} matches after non-maxima suppression"
        )
        return verified_windows, kept

    def process(self, scene: Scene) -> Scene:
        """Return a copy of the scene with verified windows and final matches."""
        windows, matches = self.match(scene)
        windows = [w for w in windows if w.has_candidates()]
        return scene.derive(
            windows=windows, matches=matches, metadata={"matches": len(matches)}
        )

"""
Hasher node for candidate template voting.

Training decomposes every template into triplets of reference points laid on
a grid over its bounding box and hashes the quantized relative depths and
surface normals of each triplet. At query time the same keys are derived
from the scene inside every window and each hit votes for its templates.
"""

from __future__ import annotations

import logging
from multiprocessing.pool import ThreadPool
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.criteria import ClassifierCriteria
from ..core.errors import ConfigurationError, DataQualityError
from ..core.node import Node
from ..interfaces import (
    Group,
    HashIndex,
    HashKey,
    HashTable,
    HashTableCandidate,
    Scene,
    TableKey,
    Template,
    Triplet,
    Window,
)
from ..utils.processing import reference_points, surface_normal_bins

logger = logging.getLogger(__name__)

# Raw triplet measurement: (d1, d2, n1, n2, n3)
_Measurement = Tuple[float, float, int, int, int]


def measure_triplet(
    depth: np.ndarray,
    normals: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray,
    triplet: Triplet,
) -> Optional[_Measurement]:
    """
    Relative depths and normal bins of a triplet placed on a reference grid.

    Args:
        depth: Raw depth map (H, W)
        normals: Surface normal bins (H, W)
        xs: Reference point x coordinate per grid column
        ys: Reference point y coordinate per grid row
        triplet: Grid cells to measure

    Returns:
        Measurement tuple, or None if a point is outside the map or has no depth
    """
    rows, cols = depth.shape
    z = []
    n = []
    for col, row in triplet:
        x, y = int(xs[col]), int(ys[row])
        if not (0 <= x < cols and 0 <= y < rows):
            return None
        value = float(depth[y, x])
        if not value > 0:
            return None
        z.append(value)
        n.append(int(normals[y, x]))
    return z[1] - z[0], z[2] - z[0], n[0], n[1], n[2]


class HasherNode(Node):
    """
    Node voting for candidate templates in every objectness window.

    Args:
        criteria: Detector configuration
        index: Previously trained HashIndex, if any
        name: Optional name for the node
    """

    def __init__(
        self,
        criteria: ClassifierCriteria = None,
        index: Optional[HashIndex] = None,
        name: str = None,
        **kwargs,
    ):
        super().__init__(criteria=criteria, name=name, **kwargs)
        self.index = index

    def generate_triplets(self, rng: np.random.Generator) -> List[Triplet]:
        """
        Draw distinct triplets of grid cells.

        ``p2`` and ``p3`` lie within ``max_triplet_distance`` (Chebyshev) of
        the anchor ``p1`` and all three cells differ. Triplets sharing the
        anchor and the unordered pair ``{p2, p3}`` count as duplicates.

        Args:
            rng: Random source

        Returns:
            ``hash_table_count`` triplets
        """
        cols, rows = self.criteria.grid_size
        count = self.criteria.hash_table_count
        distance = self.criteria.max_triplet_distance
        if cols * rows < 3:
            raise ConfigurationError(f"Grid {self.criteria.grid_size} has fewer than 3 cells")

        def near(anchor: Tuple[int, int]) -> Tuple[int, int]:
            col = rng.integers(max(0, anchor[0] - distance), min(cols - 1, anchor[0] + distance) + 1)
            row = rng.integers(max(0, anchor[1] - distance), min(rows - 1, anchor[1] + distance) + 1)
            return int(col), int(row)

        triplets: List[Triplet] = []
        seen = set()
        max_attempts = 1000 * count
        attempts = 0
        while len(triplets) < count:
            attempts += 1
            if attempts > max_attempts:
                raise ConfigurationError(
                    f"Could only draw {len(triplets)} of {count} distinct triplets on grid "
                    f"{self.criteria.grid_size} with max distance {distance}"
                )
            p1 = (int(rng.integers(cols)), int(rng.integers(rows)))
            p2 = near(p1)
            p3 = near(p1)
            if len({p1, p2, p3}) < 3:
                continue
            signature = (p1, frozenset((p2, p3)))
            if signature in seen:
                continue
            seen.add(signature)
            triplets.append(Triplet(p1, p2, p3))
        return triplets

    def train(self, groups: Sequence[Group]) -> HashIndex:
        """
        Build the hash index from template groups.

        Relative depths of all valid triplets are collected first to derive
        equal-frequency bin edges, then every template is inserted into the
        bucket of each of its keys. Templates are visited group by group in
        input order, so bucket contents are reproducible.

        Args:
            groups: Template groups

        Returns:
            Trained HashIndex, also stored on the node

        Raises:
            ConfigurationError: If there are no templates
            DataQualityError: If a template is malformed or yields no valid
                triplet
        """
        templates = [template for group in groups for template in group]
        if not templates:
            raise ConfigurationError("Cannot train the hash index on an empty template set")

        rng = np.random.default_rng(self.criteria.random_seed)
        triplets = self.generate_triplets(rng)

        measurements: List[Tuple[Template, int, _Measurement]] = []
        for template in templates:
            template.validate()
            depth = np.asarray(template.depth, dtype=np.float32)
            normals = surface_normal_bins(depth)
            xs, ys = reference_points(*template.obj_bb, self.criteria.grid_size)
            valid = 0
            for i, triplet in enumerate(triplets):
                measurement = measure_triplet(depth, normals, xs, ys, triplet)
                if measurement is not None:
                    measurements.append((template, i, measurement))
                    valid += 1
            if valid == 0:
                raise DataQualityError(
                    f"Template {template.id} of object {template.obj_id} has no triplet "
                    f"with valid depth at its reference points"
                )
            logger.debug(f"Template {template.id}: {valid} of {len(triplets)} triplets valid")

        relative_depths = np.array(
            [m[2][:2] for m in measurements], dtype=np.float64
        ).ravel()
        bins = self.criteria.histogram_bin_count
        edges = np.quantile(relative_depths, np.arange(1, bins) / bins)

        index = HashIndex(self.criteria.grid_size, edges)
        ordinals: Dict[Tuple[int, int], int] = {}
        tables = []
        for triplet in triplets:
            ordinal = ordinals.get(triplet.p1, 0)
            ordinals[triplet.p1] = ordinal + 1
            table = HashTable(triplet)
            index.add_table(TableKey(triplet.p1, ordinal), table)
            tables.append(table)

        for template, i, measurement in measurements:
            tables[i].insert(self._hash_key(index, measurement), template)

        self.index = index
        logger.info(
            f"Trained {len(index)} hash tables on {len(templates)} templates "
            f"({len(measurements)} valid triplets)"
        )
        return index

    @staticmethod
    def _hash_key(index: HashIndex, measurement: _Measurement) -> HashKey:
        d1, d2, n1, n2, n3 = measurement
        return HashKey(index.quantize_depth(d1), index.quantize_depth(d2), n1, n2, n3)

    def _rank(self, votes: Dict[Template, HashTableCandidate]) -> List[HashTableCandidate]:
        minimum = self.criteria.min_votes_per_template
        candidates = [c for c in votes.values() if c.votes >= minimum]
        if self.criteria.vote_tie_break == "template_id":
            return sorted(candidates, key=lambda c: (-c.votes, c.template.id))
        return sorted(candidates, key=lambda c: -c.votes)

    def _query_window(self, scene: Scene, normals: np.ndarray, window: Window) -> Window:
        xs, ys = reference_points(
            window.x, window.y, window.width, window.height, self.index.grid_size
        )
        votes: Dict[Template, HashTableCandidate] = {}
        for _, table in self.index.items():
            measurement = measure_triplet(scene.depth, normals, xs, ys, table.triplet)
            if measurement is None:
                continue
            key = self._hash_key(self.index, measurement)
            for template, weight in table.lookup(key).items():
                candidate = votes.get(template) or HashTableCandidate(template)
                votes[template] = candidate.vote(weight)
        return window.with_candidates(self._rank(votes))

    def verify_template_candidates(
        self, scene: Scene, windows: Optional[Sequence[Window]] = None
    ) -> List[Window]:
        """
        Vote for candidate templates in every window.

        Args:
            scene: Scene with raw depth
            windows: Windows to query, defaults to ``scene.windows``

        Returns:
            New windows, one per input window, holding candidates with at least
            ``min_votes_per_template`` votes ordered by descending votes

        Raises:
            ConfigurationError: If no index has been trained
        """
        if self.index is None:
            raise ConfigurationError(f"{self.name} has no hash index, call train() first")
        scene.validate()
        windows = list(scene.windows if windows is None else windows)
        if not windows:
            return []

        normals = surface_normal_bins(scene.depth)
        if self.criteria.num_workers > 1:
            with ThreadPool(self.criteria.num_workers) as pool:
                results = pool.map(lambda w: self._query_window(scene, normals, w), windows)
        else:
            results = [self._query_window(scene, normals, w) for w in windows]

        with_candidates = sum(1 for w in results if w.has_candidates())
        logger.info(f"Hashing found candidates in {with_candidates} of {len(results)} windows")
        return results

    def process(self, scene: Scene) -> Scene:
        """Return a copy of the scene keeping only windows with candidates."""
        windows = [w for w in self.verify_template_candidates(scene) if w.has_candidates()]
        return scene.derive(windows=windows, metadata={"hashing_windows": len(windows)})

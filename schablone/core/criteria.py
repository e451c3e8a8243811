"""
Classifier criteria shared by all detection nodes.

Every tunable of the detector lives here as an explicit field. The defaults
reproduce the reference configuration used on the T-LESS dataset.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

TEST_NAMES = ("size", "normal", "gradient", "depth", "color")
TIE_BREAKS = ("insertion", "template_id")


@dataclass
class ClassifierCriteria:
    """
    Configuration of the objectness, hashing and verification stages.

    Attributes:
        grid_size: Reference point grid (columns, rows) laid over a box
        hash_table_count: Number of triplet hash tables
        histogram_bin_count: Quantization bins for relative depths
        min_votes_per_template: Minimum votes a template needs to stay a candidate
        max_triplet_distance: Max Chebyshev grid distance between triplet points
        window_step: Sliding window stride in pixels
        window_step_factor: Fraction of the trained minimum edgels a window needs
        objectness_t_min: Lower bound of the depth edge band
        objectness_t_max: Upper bound of the depth edge band
        depth_scale: Factor mapping raw template depth to normalized depth
        feature_points_count: Number of edge and stable points per template
        canny_threshold1: Lower Canny hysteresis threshold
        canny_threshold2: Upper Canny hysteresis threshold
        sobel_max_threshold: Max local gradient of a stable point
        grayscale_min_threshold: Min intensity of a stable point
        gradient_magnitude_threshold: Min central difference magnitude of an edge pixel
        t_match: Fraction of points that must agree for a test to pass
        t_overlap: IoU above which non-maxima suppression drops a match
        t_color_test: Hue tolerance of the color test
        neighbourhood: Radius of the local search window used by the tests
        normal_bin_tolerance: Circular bin distance accepted by the normal test
        gradient_bin_tolerance: Circular bin distance accepted by the gradient test
        object_size_tolerance: Accepted deviation of the depth implied scale from 1
        depth_deviation_factor: Depth test band as a fraction of the object diameter
        hsv_value_min: HSV value below which a color counts as black
        hsv_saturation_min: HSV saturation below which a color counts as white
        test_order: Order of the verification cascade
        vote_tie_break: Ordering of candidates with equal votes
        random_seed: Seed for feature point sampling and triplet generation
        num_workers: Threads used for per-window hashing and verification
    """

    grid_size: Tuple[int, int] = (12, 12)
    hash_table_count: int = 100
    histogram_bin_count: int = 5
    min_votes_per_template: int = 3
    max_triplet_distance: int = 5

    window_step: int = 5
    window_step_factor: float = 0.3
    objectness_t_min: float = 0.01
    objectness_t_max: float = 0.1
    depth_scale: float = 1.0 / 65536.0

    feature_points_count: int = 100
    canny_threshold1: int = 100
    canny_threshold2: int = 200
    sobel_max_threshold: int = 50
    grayscale_min_threshold: int = 50
    gradient_magnitude_threshold: float = 0.05

    t_match: float = 0.6
    t_overlap: float = 0.1
    t_color_test: int = 5
    neighbourhood: int = 2
    normal_bin_tolerance: int = 1
    gradient_bin_tolerance: int = 0
    object_size_tolerance: float = 0.2
    depth_deviation_factor: float = 0.05
    hsv_value_min: int = 31
    hsv_saturation_min: int = 31
    test_order: Tuple[str, ...] = TEST_NAMES
    vote_tie_break: str = "insertion"

    random_seed: int = 1
    num_workers: int = 1

    def __post_init__(self):
        self.grid_size = tuple(int(v) for v in self.grid_size)
        self.test_order = tuple(self.test_order)
        self.validate()

    def validate(self) -> None:
        """
        Check all values and fail before any stage runs.

        Raises:
            ConfigurationError: If a value is out of its valid range
        """
        if len(self.grid_size) != 2 or min(self.grid_size) < 1:
            raise ConfigurationError(f"grid_size must be two positive ints, got {self.grid_size}")

        positive_ints = (
            "hash_table_count",
            "min_votes_per_template",
            "max_triplet_distance",
            "window_step",
            "feature_points_count",
            "canny_threshold1",
            "canny_threshold2",
            "sobel_max_threshold",
            "num_workers",
        )
        for name in positive_ints:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {getattr(self, name)}")

        positive_floats = (
            "window_step_factor",
            "objectness_t_min",
            "objectness_t_max",
            "depth_scale",
            "gradient_magnitude_threshold",
            "t_match",
            "t_overlap",
            "object_size_tolerance",
            "depth_deviation_factor",
        )
        for name in positive_floats:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {getattr(self, name)}")

        if self.histogram_bin_count < 2:
            raise ConfigurationError(
                f"histogram_bin_count must be >= 2, got {self.histogram_bin_count}"
            )
        if self.objectness_t_min >= self.objectness_t_max:
            raise ConfigurationError(
                f"objectness_t_min ({self.objectness_t_min}) must be below "
                f"objectness_t_max ({self.objectness_t_max})"
            )
        if self.t_match > 1.0 or self.t_overlap > 1.0:
            raise ConfigurationError("t_match and t_overlap are ratios and must be <= 1")
        if self.grayscale_min_threshold < 0 or self.t_color_test < 0 or self.neighbourhood < 0:
            raise ConfigurationError(
                "grayscale_min_threshold, t_color_test and neighbourhood must be >= 0"
            )
        if self.normal_bin_tolerance < 0 or self.gradient_bin_tolerance < 0:
            raise ConfigurationError("bin tolerances must be >= 0")
        if sorted(self.test_order) != sorted(TEST_NAMES):
            raise ConfigurationError(
                f"test_order must be a permutation of {TEST_NAMES}, got {self.test_order}"
            )
        if self.vote_tie_break not in TIE_BREAKS:
            raise ConfigurationError(
                f"Unknown vote_tie_break '{self.vote_tie_break}', expected one of {TIE_BREAKS}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Return the criteria as a JSON serializable dictionary."""
        data = asdict(self)
        data["grid_size"] = list(self.grid_size)
        data["test_order"] = list(self.test_order)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ClassifierCriteria:
        """
        Build criteria from a dictionary, rejecting unknown keys.

        Args:
            data: Mapping of field names to values

        Returns:
            Validated ClassifierCriteria
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown criteria keys: {sorted(unknown)}")
        return cls(**data)

    def save(self, path: str) -> None:
        """Save criteria as JSON."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=4)
        logger.info(f"Saved classifier criteria to {path}")

    @classmethod
    def load(cls, path: str) -> ClassifierCriteria:
        """Load criteria from a JSON file written by save()."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        logger.info(f"Loaded classifier criteria from {path}")
        return cls.from_dict(data)

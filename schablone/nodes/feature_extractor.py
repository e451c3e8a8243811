"""
Feature extractor node for template training.

Samples edge points and stable points of every template and stores the
quantized descriptors the hashing and verification stages compare against.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import List, Sequence, Tuple

import cv2
import numpy as np

from ..core.criteria import ClassifierCriteria
from ..core.errors import ConfigurationError, DataQualityError
from ..core.node import Node
from ..interfaces import Group, Template, TemplateFeatures
from ..utils.processing import gradient_maps, surface_normal_bins

logger = logging.getLogger(__name__)


def _interior_mask(shape: Tuple[int, int]) -> np.ndarray:
    mask = np.zeros(shape, dtype=bool)
    mask[1:-1, 1:-1] = True
    return mask


def edge_candidates(template: Template, criteria: ClassifierCriteria) -> np.ndarray:
    """
    Pixels on strong intensity edges of a template.

    Args:
        template: Raw template
        criteria: Detector configuration

    Returns:
        Candidate points (M, 2) as (x, y), in row-major scan order
    """
    gray8 = cv2.convertScaleAbs(np.asarray(template.gray, dtype=np.float32), alpha=255)
    blurred = cv2.blur(gray8, (3, 3))
    edges = cv2.Canny(blurred, criteria.canny_threshold1, criteria.canny_threshold2)

    _, magnitude = gradient_maps(template.gray)
    mask = (
        (edges > 0)
        & _interior_mask(edges.shape)
        & (magnitude >= criteria.gradient_magnitude_threshold)
    )
    ys, xs = np.nonzero(mask)
    return np.column_stack((xs, ys)).astype(np.int64)


def stable_candidates(template: Template, criteria: ClassifierCriteria) -> np.ndarray:
    """
    Bright, locally flat pixels with valid depth.

    Args:
        template: Raw template
        criteria: Detector configuration

    Returns:
        Candidate points (M, 2) as (x, y), in row-major scan order
    """
    gray8 = cv2.convertScaleAbs(np.asarray(template.gray, dtype=np.float32), alpha=255)
    blurred = cv2.blur(gray8, (3, 3))

    # 16 bit derivatives so negative slopes are not clipped before abs
    sobel_x = cv2.convertScaleAbs(cv2.Sobel(blurred, cv2.CV_16S, 1, 0, ksize=3))
    sobel_y = cv2.convertScaleAbs(cv2.Sobel(blurred, cv2.CV_16S, 0, 1, ksize=3))
    sobel = cv2.addWeighted(sobel_x, 0.5, sobel_y, 0.5, 0)

    mask = (
        (blurred > criteria.grayscale_min_threshold)
        & (sobel <= criteria.sobel_max_threshold)
        & (np.asarray(template.depth) > 0)
        & _interior_mask(blurred.shape)
    )
    ys, xs = np.nonzero(mask)
    return np.column_stack((xs, ys)).astype(np.int64)


def _sample(
    candidates: np.ndarray, count: int, rng: np.random.Generator, kind: str, template: Template
) -> np.ndarray:
    if len(candidates) < count:
        raise DataQualityError(
            f"Template {template.id} of object {template.obj_id} has {len(candidates)} "
            f"{kind} point candidates, {count} are required"
        )
    chosen = np.sort(rng.choice(len(candidates), size=count, replace=False))
    return candidates[chosen]


def extract_template_features(
    template: Template, criteria: ClassifierCriteria, rng: np.random.Generator
) -> Template:
    """
    Sample points of a template and compute their descriptors.

    Args:
        template: Raw template
        criteria: Detector configuration
        rng: Random source used for point sampling

    Returns:
        Trained copy of the template

    Raises:
        DataQualityError: If the template is malformed or has too few usable points
    """
    template.validate()
    count = criteria.feature_points_count

    edge_points = _sample(edge_candidates(template, criteria), count, rng, "edge", template)
    stable_points = _sample(
        stable_candidates(template, criteria), count, rng, "stable", template
    )

    gradient_bins, _ = gradient_maps(template.gray)
    normal_bins = surface_normal_bins(template.depth)
    ex, ey = edge_points[:, 0], edge_points[:, 1]
    sx, sy = stable_points[:, 0], stable_points[:, 1]

    features = TemplateFeatures(
        orientation_gradients=gradient_bins[ey, ex].astype(np.uint8),
        surface_normals=normal_bins[sy, sx].astype(np.uint8),
        depths=np.asarray(template.depth, dtype=np.float32)[sy, sx],
        colors=np.asarray(template.hsv, dtype=np.uint8)[sy, sx],
    )
    return dataclasses.replace(
        template, edge_points=edge_points, stable_points=stable_points, features=features
    )


class FeatureExtractorNode(Node):
    """
    Node that trains every template of the given groups.

    A fresh random generator seeded with ``criteria.random_seed`` is created
    per call, so processing the same groups twice yields identical points.

    Args:
        criteria: Detector configuration
        name: Optional name for the node
    """

    def process(self, groups: Sequence[Group]) -> List[Group]:
        """
        Extract features of all templates.

        Args:
            groups: Groups of raw templates

        Returns:
            Groups of trained templates, in input order
        """
        groups = list(groups)
        if not any(len(group) for group in groups):
            raise ConfigurationError("Cannot extract features from an empty template set")

        rng = np.random.default_rng(self.criteria.random_seed)
        trained = []
        for group in groups:
            templates = [
                extract_template_features(template, self.criteria, rng) for template in group
            ]
            trained.append(Group(group.obj_id, tuple(templates)))
            logger.debug(f"Extracted features of {len(templates)} templates of object {group.obj_id}")

        total = sum(len(group) for group in trained)
        logger.info(f"Trained {total} templates of {len(trained)} objects")
        return trained

"""
Core data interfaces for schablone framework.

These interfaces define the standardized data structures used for communication
between nodes in the pipeline.
"""

from .hashing import HashIndex, HashKey, HashTable, TableKey, Triplet
from .interfaces import (
    BoundingBoxes,
    Camera,
    Group,
    HashTableCandidate,
    Match,
    Pose,
    Scene,
    Template,
    TemplateFeatures,
    Window,
)

__all__ = [
    "BoundingBoxes",
    "Camera",
    "Group",
    "HashIndex",
    "HashKey",
    "HashTable",
    "HashTableCandidate",
    "Match",
    "Pose",
    "Scene",
    "TableKey",
    "Template",
    "TemplateFeatures",
    "Triplet",
    "Window",
]

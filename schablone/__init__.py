"""
schablone - Template based rigid object detection in RGB-D scenes

Objectness windows, triplet hashing of rendered object views and a cascade
of cheap verification tests, built as a pipeline of nodes.
"""

__version__ = "0.1.0"

from .core import (
    ClassifierCriteria,
    ConfigurationError,
    DataQualityError,
    Node,
    Pipeline,
    SchabloneError,
)
from .interfaces import (
    BoundingBoxes,
    Camera,
    Group,
    HashIndex,
    HashTableCandidate,
    Match,
    Pose,
    Scene,
    Template,
    Window,
)

__all__ = [
    "Pipeline",
    "Node",
    "ClassifierCriteria",
    "SchabloneError",
    "ConfigurationError",
    "DataQualityError",
    "Camera",
    "Template",
    "Group",
    "Scene",
    "Window",
    "HashIndex",
    "HashTableCandidate",
    "Match",
    "Pose",
    "BoundingBoxes",
]

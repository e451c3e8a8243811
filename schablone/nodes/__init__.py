"""
Nodes for the schablone framework.

This module uses lazy importing so that OpenCV and SciPy are only loaded
once a node is actually needed.
"""

from __future__ import annotations

import importlib
from typing import Any

# Define all available nodes
__all__ = [
    "FeatureExtractorNode",
    "HasherNode",
    "MatcherNode",
    "ObjectnessNode",
    "non_maxima_suppression",
]

# Mapping of node names to their module paths
_NODE_MODULES = {
    "FeatureExtractorNode": "schablone.nodes.feature_extractor",
    "HasherNode": "schablone.nodes.hasher",
    "MatcherNode": "schablone.nodes.matcher",
    "ObjectnessNode": "schablone.nodes.objectness",
    "non_maxima_suppression": "schablone.nodes.matcher",
}

# Cache for loaded modules
_loaded = {}


def __getattr__(name: str) -> Any:
    """
    Lazy import nodes on first access.

    Args:
        name: The name of the node class to import

    Returns:
        The requested node class

    Raises:
        AttributeError: If the node name is not recognized
    """
    if name in _loaded:
        return _loaded[name]

    if name not in _NODE_MODULES:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

    module = importlib.import_module(_NODE_MODULES[name])
    node = getattr(module, name)
    _loaded[name] = node
    return node


def __dir__() -> list[str]:
    """Return the list of available nodes for tab completion."""
    return __all__

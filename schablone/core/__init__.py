"""Core components of the schablone framework."""

from .errors import ConfigurationError, DataQualityError, SchabloneError
from .criteria import ClassifierCriteria
from .node import Node
from .pipeline import Pipeline

__all__ = [
    "ClassifierCriteria",
    "ConfigurationError",
    "DataQualityError",
    "Node",
    "Pipeline",
    "SchabloneError",
]

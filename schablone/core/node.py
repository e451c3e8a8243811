"""
Base Node class for schablone framework.

All processing nodes inherit from this base class and implement the process method.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from .criteria import ClassifierCriteria

logger = logging.getLogger(__name__)


class Node(ABC):
    """
    Base class for all processing nodes in the schablone framework.

    Each node represents a single detection stage and communicates through the
    standardized data interfaces. Nodes share a ClassifierCriteria instance
    holding every tunable of the detector.

    Example:
        class MyNode(Node):
            def process(self, scene: Scene) -> Scene:
                return scene
    """

    def __init__(self, criteria: ClassifierCriteria = None, name: str = None, **kwargs):
        """
        Initialize the node.

        Args:
            criteria: Detector configuration. If None, the reference defaults are used.
            name: Optional name for the node. If None, uses class name.
            **kwargs: Additional configuration parameters.
        """
        self.criteria = criteria if criteria is not None else ClassifierCriteria()
        self.name = name or self.__class__.__name__
        self.config = kwargs
        self.metadata = {}

    @abstractmethod
    def process(self, input_data: Any) -> Any:
        """
        Process input data and return output.

        Args:
            input_data: Input data following framework interfaces

        Returns:
            Output data following framework interfaces
        """
        pass

    def __call__(self, input_data: Any = None) -> Any:
        """
        Execute the node and record its runtime in the output metadata.

        Args:
            input_data: Input data for process()

        Returns:
            Output of process()
        """
        start_time = time.time()

        try:
            output = self.process(input_data)
        except Exception as e:
            logger.error(f"Error in node {self.name}: {str(e)}")
            raise

        runtime = time.time() - start_time
        if hasattr(output, "metadata"):
            output.metadata = output.metadata or {}
            output.metadata[f"{self.name}_runtime"] = runtime

        logger.debug(f"Node {self.name} completed in {runtime:.3f}s")
        return output

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"

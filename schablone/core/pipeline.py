"""
Pipeline class for schablone framework.

The Pipeline runs detection nodes in sequence on a Scene.
"""

import logging
import time
from typing import Any, Iterable, Iterator, List, Optional

from ..core.node import Node
from ..utils.rerun_logger import RerunLogger

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Pipeline for orchestrating the execution of detection nodes.

    The usual detection pipeline is ObjectnessNode -> HasherNode -> MatcherNode,
    each consuming the Scene produced by the previous node. The pipeline
    measures runtimes and can log intermediate windows and matches to Rerun.
    """

    def __init__(
        self,
        name: str = "Pipeline",
        enable_rerun_logging: bool = False,
        rerun_recording_name: Optional[str] = None,
        rerun_spawn_viewer: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            name: Name of the pipeline
            enable_rerun_logging: Whether to enable Rerun logging for intermediate results
            rerun_recording_name: Custom name for Rerun recording (defaults to pipeline name)
            rerun_spawn_viewer: Whether to spawn the Rerun viewer
        """
        self.name = name
        self.nodes: List[Node] = []
        self.metadata = {}

        self.enable_rerun_logging = enable_rerun_logging
        recording_name = (
            rerun_recording_name or f"schablone_{name.lower().replace(' ', '_')}"
        )
        self.rerun_logger = RerunLogger(
            recording_name, enabled=enable_rerun_logging, spawn=rerun_spawn_viewer
        )

    def add_node(self, node: Node) -> "Pipeline":
        """
        Add a node to the pipeline.

        Args:
            node: Node to add to the pipeline

        Returns:
            Self for method chaining
        """
        if not isinstance(node, Node):
            raise TypeError(f"Expected Node instance, got {type(node)}")

        self.nodes.append(node)
        logger.debug(f"Added node {node.name} to pipeline {self.name}")
        return self

    def process(self, input_data: Any) -> Any:
        """
        Process input data through all nodes in sequence.

        Args:
            input_data: Input data for the first node, usually a Scene

        Returns:
            Output data from the last node
        """
        if not self.nodes:
            raise ValueError("Pipeline has no nodes")

        start_time = time.time()
        current_data = input_data

        logger.info(f"Starting pipeline {self.name} with {len(self.nodes)} nodes")

        if self.enable_rerun_logging:
            self.rerun_logger.set_time_sequence("stage", 0)
            if hasattr(current_data, "depth"):
                self.rerun_logger.log_scene(current_data, "scene")

        for i, node in enumerate(self.nodes):
            logger.debug(f"Processing node {i + 1}/{len(self.nodes)}: {node.name}")
            current_data = node(current_data)

            if self.enable_rerun_logging:
                self.rerun_logger.set_time_sequence("stage", i + 1)
                if hasattr(current_data, "windows"):
                    self.rerun_logger.log_windows(current_data.windows, "scene/windows")
                if hasattr(current_data, "matches"):
                    self.rerun_logger.log_matches(current_data.matches, "scene/matches")

        total_runtime = time.time() - start_time
        logger.info(f"Pipeline {self.name} completed in {total_runtime:.3f}s")

        if hasattr(current_data, "metadata"):
            current_data.metadata = current_data.metadata or {}
            current_data.metadata[f"{self.name}_total_runtime"] = total_runtime
            current_data.metadata[f"{self.name}_node_count"] = len(self.nodes)

            if self.enable_rerun_logging:
                self.rerun_logger.log_metadata(
                    current_data.metadata, "pipeline/final_metadata"
                )

        return current_data

    def process_stream(self, scenes: Iterable[Any]) -> Iterator[Any]:
        """
        Process a stream of scenes through the pipeline.

        Args:
            scenes: Iterable of inputs for the first node

        Yields:
            Output data from the last node for each input item
        """
        if not self.nodes:
            raise ValueError("Pipeline has no nodes")

        logger.info(
            f"Starting stream pipeline {self.name} with {len(self.nodes)} nodes"
        )

        for item_index, item in enumerate(scenes):
            start_time = time.time()
            if self.enable_rerun_logging:
                self.rerun_logger.set_time_sequence("scene", item_index)

            current_data = self.process(item)

            item_runtime = time.time() - start_time
            logger.debug(
                f"Pipeline item {item_index + 1} completed in {item_runtime:.3f}s"
            )

            if hasattr(current_data, "metadata"):
                current_data.metadata[f"{self.name}_item_index"] = item_index

            yield current_data

    def get_node(self, name: str) -> Optional[Node]:
        """
        Get a node by name.

        Args:
            name: Name of the node to find

        Returns:
            Node if found, None otherwise
        """
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def remove_node(self, name: str) -> bool:
        """
        Remove a node by name.

        Args:
            name: Name of the node to remove

        Returns:
            True if node was removed, False if not found
        """
        for i, node in enumerate(self.nodes):
            if node.name == name:
                del self.nodes[i]
                logger.debug(f"Removed node {name} from pipeline {self.name}")
                return True
        return False

    def clear(self):
        """Clear all nodes from the pipeline."""
        self.nodes.clear()
        logger.debug(f"Cleared all nodes from pipeline {self.name}")

    def __len__(self) -> int:
        """Return the number of nodes in the pipeline."""
        return len(self.nodes)

    def __repr__(self) -> str:
        node_names = [node.name for node in self.nodes]
        return f"Pipeline(name='{self.name}', nodes={node_names})"

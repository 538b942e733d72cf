"""
Base node executor interface.

All node executors inherit from NodeExecutor and implement execute().
An executor performs one node's work against the run and returns a
NodeOutcome naming the edges the engine should follow next.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List

from flowrunner.core.models import FlowEdge


@dataclass
class NodeOutcome:
    """What a node executor hands back to the engine on success."""
    edges: List[FlowEdge] = field(default_factory=list)
    data: Any = None
    request: Any = None
    response: Any = None


class NodeExecutor(ABC):
    """
    Abstract base class for node executors.

    Executors raise to fail the node. They must not swallow FlowCancelled,
    and they must not touch the run context before their work has succeeded
    so that a failed or cancelled node leaves no partial effects behind.
    """

    @property
    @abstractmethod
    def node_type(self) -> str:
        """Node type handled by this executor, e.g. 'request' or 'loop'."""
        pass

    @abstractmethod
    async def execute(self, node, run) -> NodeOutcome:
        """
        Execute a node.

        Args:
            node: Validated node model
            run: The FlowRun the node belongs to

        Returns:
            NodeOutcome with the successor edges to traverse
        """
        pass

    def __repr__(self):
        return f'<{type(self).__name__} node_type={self.node_type!r}>'

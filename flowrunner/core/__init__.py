"""
Flow Runner Core Module

Documents, run-state types, cancellation and the collaborator interfaces
the engine depends on.
"""

from .models import (
    Flow,
    FlowEdge,
    FlowNode,
    HttpRequest,
    HttpResponse,
    Collection,
    Environment,
    parse_flow,
)
from .types import (
    RunStatus,
    NodeStatus,
    LogLevel,
    LogEntry,
    NodeExecutionResult,
    TimelineEvent,
    TimelineEventType,
    ExecutionContext,
)
from .cancellation import CancellationToken
from .collaborators import FlowRepository, HttpExecutor, InMemoryRepository

__all__ = [
    "Flow",
    "FlowEdge",
    "FlowNode",
    "HttpRequest",
    "HttpResponse",
    "Collection",
    "Environment",
    "parse_flow",
    "RunStatus",
    "NodeStatus",
    "LogLevel",
    "LogEntry",
    "NodeExecutionResult",
    "TimelineEvent",
    "TimelineEventType",
    "ExecutionContext",
    "CancellationToken",
    "FlowRepository",
    "HttpExecutor",
    "InMemoryRepository",
]

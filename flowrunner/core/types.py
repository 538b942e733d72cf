"""
Run-State Types

Dataclasses describing one run: the mutable execution context, per-node
results, timeline events and the run/node status enumerations.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .models import HttpRequest, HttpResponse
from flowrunner.utils.time import now_ms


class RunStatus(str, Enum):
    """Run lifecycle: idle -> running -> success | error | stopped."""
    IDLE = 'idle'
    RUNNING = 'running'
    SUCCESS = 'success'
    ERROR = 'error'
    STOPPED = 'stopped'

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.ERROR, RunStatus.STOPPED)


class NodeStatus(str, Enum):
    """Status of a node during a run."""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCESS = 'success'
    ERROR = 'error'
    STOPPED = 'stopped'


class LogLevel(str, Enum):
    """Levels of the run log shown to the flow author."""
    INFO = 'info'
    WARN = 'warn'
    ERROR = 'error'


class TimelineEventType(str, Enum):
    START = 'start'
    SUCCESS = 'success'
    ERROR = 'error'


@dataclass
class LogEntry:
    """One line of the run log."""
    level: LogLevel
    msg: str
    ts: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {'ts': self.ts, 'level': self.level.value, 'msg': self.msg}


@dataclass
class NodeExecutionResult:
    """Result of executing a single node. Re-executions overwrite it."""
    node_id: str
    status: NodeStatus
    start_time: datetime
    end_time: datetime
    request: Optional[HttpRequest] = None
    response: Optional[HttpResponse] = None
    error: Optional[str] = None
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'nodeId': self.node_id,
            'status': self.status.value,
            'startTime': self.start_time.isoformat(),
            'endTime': self.end_time.isoformat(),
        }
        if self.request is not None:
            result['request'] = self.request.to_dict()
        if self.response is not None:
            result['response'] = self.response.to_dict()
        if self.error is not None:
            result['error'] = self.error
        if self.data is not None:
            result['data'] = self.data
        return result


@dataclass
class TimelineEvent:
    """Append-only record of a node starting, succeeding or failing."""
    id: str
    node_id: str
    type: TimelineEventType
    message: str
    ts: int = field(default_factory=now_ms)
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'ts': self.ts,
            'nodeId': self.node_id,
            'type': self.type.value,
            'message': self.message,
        }
        if self.data is not None:
            result['data'] = self.data
        return result


@dataclass
class ExecutionContext:
    """
    Run-scoped mutable state shared by all nodes of a run.

    Created fresh at run start, seeded from the flow's declared variables.
    results and logs only grow during a run.
    """
    flow_vars: Dict[str, Any] = field(default_factory=dict)
    last_request: Optional[HttpRequest] = None
    last_response: Optional[HttpResponse] = None
    logs: List[LogEntry] = field(default_factory=list)
    results: Dict[str, NodeExecutionResult] = field(default_factory=dict)

    def snapshot(self) -> 'ExecutionContext':
        """Independent copy handed to observers."""
        return ExecutionContext(
            flow_vars=copy.deepcopy(self.flow_vars),
            last_request=self.last_request,
            last_response=self.last_response,
            logs=list(self.logs),
            results=dict(self.results),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'flowVars': self.flow_vars,
            'logs': [entry.to_dict() for entry in self.logs],
            'results': {k: r.to_dict() for k, r in self.results.items()},
        }
        if self.last_request is not None:
            result['lastRequest'] = self.last_request.to_dict()
        if self.last_response is not None:
            result['lastResponse'] = self.last_response.to_dict()
        return result

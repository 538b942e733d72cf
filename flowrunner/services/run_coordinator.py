"""
Run Coordinator

Owns the observable state of a flow run: the run status state machine,
per-node statuses, the timeline and the latest context snapshot. It adapts
engine callbacks into that state and exposes run / stop / reset.

Run status transitions:
    idle -> running -> success | error | stopped
    any  -> idle       (reset, not allowed while running)
"""

import asyncio
import uuid
from typing import Any, Callable, Dict, List, Optional

from flowrunner.core.cancellation import CancellationToken
from flowrunner.core.models import Flow
from flowrunner.core.types import (
    ExecutionContext,
    NodeStatus,
    RunStatus,
    TimelineEvent,
    TimelineEventType,
)
from flowrunner.utils.errors import FlowCancelled, InvalidStateTransition
from .flow_engine import ExecutionCallbacks, FlowEngine, error_message
from .logging_service import get_logger, LogSource

logger = get_logger(__name__, LogSource.COORDINATOR)

_TRANSITIONS = {
    RunStatus.IDLE: (RunStatus.RUNNING,),
    RunStatus.RUNNING: (RunStatus.SUCCESS, RunStatus.ERROR, RunStatus.STOPPED),
    RunStatus.SUCCESS: (),
    RunStatus.ERROR: (),
    RunStatus.STOPPED: (),
}


def node_label(node) -> str:
    """Display label: a request node's name, otherwise "<type> <id>"."""
    name = getattr(getattr(node, 'data', None), 'name', None)
    return name or f'{node.type} {node.id}'


class RunCoordinator:
    """
    Drives one flow run at a time and records what happened.

    Usage:
        coordinator = RunCoordinator(engine)
        status = await coordinator.run(flow)      # from one task
        coordinator.stop()                        # from another
        for event in coordinator.timeline: ...

    An optional listener is called with (event_name, payload) whenever the
    state changes; event names are 'status', 'node', 'timeline', 'log' and
    'context'.
    """

    def __init__(self, engine: FlowEngine,
                 listener: Optional[Callable[[str, Any], None]] = None):
        self.engine = engine
        self.listener = listener
        self.status = RunStatus.IDLE
        self.node_statuses: Dict[str, NodeStatus] = {}
        self.timeline: List[TimelineEvent] = []
        self.context = ExecutionContext()
        self.error: Optional[str] = None
        self._token: Optional[CancellationToken] = None
        self._labels: Dict[str, str] = {}

    @property
    def is_running(self) -> bool:
        return self.status == RunStatus.RUNNING

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def run(self, flow: Flow) -> RunStatus:
        """
        Run a flow to completion and return the terminal status.

        A finished previous run is reset first. Failures and cancellation
        are recorded on the coordinator rather than raised.

        Raises:
            InvalidStateTransition: if a run is already in progress
        """
        if self.status.is_terminal:
            self.reset()
        self._transition(RunStatus.RUNNING)

        self._labels = {node.id: node_label(node) for node in flow.nodes}
        self._token = CancellationToken()

        logger.info(f"Run started for flow {flow.id}", flow_id=flow.id, category='run')

        try:
            await self.engine.execute(flow, self.callbacks(), self._token)
        except FlowCancelled:
            self._finish(RunStatus.STOPPED)
        except asyncio.CancelledError:
            self._finish(RunStatus.STOPPED)
            raise
        except Exception as e:
            self.error = error_message(e)
            self._finish(RunStatus.ERROR)
        else:
            self._finish(RunStatus.SUCCESS)

        logger.info(
            f"Run for flow {flow.id} ended with status {self.status.value}",
            flow_id=flow.id,
            category='run',
        )
        return self.status

    def stop(self) -> bool:
        """
        Request cancellation of the active run.

        Returns:
            True if a running run was signalled
        """
        if not self.is_running or self._token is None:
            return False
        self._token.cancel()
        logger.info("Stop requested", category='run')
        return True

    def reset(self) -> None:
        """Clear statuses, timeline, context and error; back to idle."""
        if self.is_running:
            raise InvalidStateTransition(self.status.value, RunStatus.IDLE.value)
        self.status = RunStatus.IDLE
        self.node_statuses = {}
        self.timeline = []
        self.context = ExecutionContext()
        self.error = None
        self._token = None
        self._notify('status', self.status)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'status': self.status.value,
            'nodeStatuses': {k: v.value for k, v in self.node_statuses.items()},
            'timeline': [event.to_dict() for event in self.timeline],
            'context': self.context.to_dict(),
        }
        if self.error:
            result['error'] = self.error
        return result

    # -------------------------------------------------------------------------
    # Engine callbacks
    # -------------------------------------------------------------------------

    def callbacks(self) -> ExecutionCallbacks:
        return ExecutionCallbacks(
            on_node_start=self._on_node_start,
            on_node_success=self._on_node_success,
            on_node_error=self._on_node_error,
            on_log=self._on_log,
            on_context_update=self._on_context_update,
        )

    def _on_node_start(self, node_id: str) -> None:
        self._set_node_status(node_id, NodeStatus.RUNNING)
        self._add_event(node_id, TimelineEventType.START, f'Node {self._label(node_id)} started')

    def _on_node_success(self, node_id: str, data: Any) -> None:
        self._set_node_status(node_id, NodeStatus.SUCCESS)
        self._add_event(node_id, TimelineEventType.SUCCESS,
                        f'Node {self._label(node_id)} completed', data)

    def _on_node_error(self, node_id: str, message: str) -> None:
        self._set_node_status(node_id, NodeStatus.ERROR)
        self._add_event(node_id, TimelineEventType.ERROR,
                        f'Node {self._label(node_id)} failed: {message}')

    def _on_log(self, level: str, msg: str) -> None:
        self._notify('log', {'level': level, 'msg': msg})

    def _on_context_update(self, context: ExecutionContext) -> None:
        self.context = context
        self._notify('context', context)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _label(self, node_id: str) -> str:
        return self._labels.get(node_id, node_id)

    def _transition(self, status: RunStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidStateTransition(self.status.value, status.value)
        self.status = status
        self._notify('status', status)

    def _finish(self, status: RunStatus) -> None:
        # Nodes interrupted by a stop or a sibling failure get a closing event
        for node_id, node_status in list(self.node_statuses.items()):
            if node_status == NodeStatus.RUNNING:
                self._set_node_status(node_id, NodeStatus.STOPPED)
                self._add_event(node_id, TimelineEventType.ERROR,
                                f'Node {self._label(node_id)} stopped')
        self._token = None
        self._transition(status)

    def _set_node_status(self, node_id: str, status: NodeStatus) -> None:
        self.node_statuses[node_id] = status
        self._notify('node', {'nodeId': node_id, 'status': status})

    def _add_event(self, node_id: str, event_type: TimelineEventType,
                   message: str, data: Any = None) -> None:
        event = TimelineEvent(
            id=f'event-{uuid.uuid4().hex}',
            node_id=node_id,
            type=event_type,
            message=message,
            data=data,
        )
        self.timeline.append(event)
        self._notify('timeline', event)

    def _notify(self, event: str, payload: Any) -> None:
        if self.listener is not None:
            self.listener(event, payload)

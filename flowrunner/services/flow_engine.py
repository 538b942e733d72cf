"""
Flow Execution Engine

Executes flows by traversing the node graph and running each node's executor.
Handles control flow (conditions, loops, parallel fan-out), cooperative
cancellation, and variable passing between nodes through the run context.
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from flowrunner.config import get_settings
from flowrunner.core.cancellation import CancellationToken
from flowrunner.core.collaborators import FlowRepository, HttpExecutor
from flowrunner.core.models import Flow, FlowEdge
from flowrunner.core.types import (
    ExecutionContext,
    LogEntry,
    LogLevel,
    NodeExecutionResult,
    NodeStatus,
)
from flowrunner.utils.errors import AppError, FlowCancelled, FlowConfigurationError, NotFoundError
from flowrunner.utils.time import duration_ms, now_utc
from .logging_service import get_logger, LogSource
from .node_executors.base import NodeOutcome
from .script_executor import ScriptExecutor, ScriptResult
from .variable_resolver import VariableResolver, env_map

logger = get_logger(__name__, LogSource.ENGINE)


def _noop(*args, **kwargs):
    return None


@dataclass
class ExecutionCallbacks:
    """
    Observer hooks the engine reports through. All are plain callables
    invoked on the event loop; none may block.
    """
    on_node_start: Callable[[str], None] = _noop
    on_node_success: Callable[[str, Any], None] = _noop
    on_node_error: Callable[[str, str], None] = _noop
    on_log: Callable[[str, str], None] = _noop
    on_context_update: Callable[[ExecutionContext], None] = _noop


def error_message(error: BaseException) -> str:
    """Human-readable message for timeline entries and the run log."""
    if isinstance(error, AppError):
        return error.message
    return str(error) or type(error).__name__


class FlowRun:
    """
    State of one run: the flow snapshot, the mutable context, environment
    variables, callbacks and the cancellation token. Node executors receive
    it and use it to read/write variables, log, and traverse sub-graphs.
    """

    def __init__(self, engine: 'FlowEngine', flow: Flow, callbacks: ExecutionCallbacks,
                 cancellation: CancellationToken):
        self.run_id = str(uuid.uuid4())
        self.engine = engine
        self.flow = flow
        self.callbacks = callbacks
        self.cancellation = cancellation
        self.env_vars: Mapping[str, str] = env_map({})
        self.context = ExecutionContext(flow_vars=flow.initial_variables())

    @property
    def flow_vars(self) -> Dict[str, Any]:
        return self.context.flow_vars

    # -------------------------------------------------------------------------
    # Helpers for executors
    # -------------------------------------------------------------------------

    def log(self, level, msg: str) -> None:
        """Append to the run log and notify observers."""
        level = LogLevel(level)
        self.context.logs.append(LogEntry(level=level, msg=msg))
        self.callbacks.on_log(level.value, msg)

    def publish_context(self) -> None:
        self.callbacks.on_context_update(self.context.snapshot())

    def resolver(self) -> VariableResolver:
        return VariableResolver(self.context.flow_vars, self.env_vars)

    def resolve(self, template: str) -> str:
        return self.resolver().resolve_string(template)

    def next_edges(self, node, handle: Optional[str] = None) -> List[FlowEdge]:
        """
        The single successor edge of a node.

        With a handle, only an edge leaving through that handle qualifies.
        An empty list ends the path.
        """
        for edge in self.flow.outgoing(node.id):
            if handle is None or edge.source_handle == handle:
                return [edge]
        return []

    async def run_script(self, code: str, bindings: Dict[str, Any],
                         mode: str = 'statements') -> ScriptResult:
        """
        Run a script off the event loop, abandoning it if the run is cancelled.
        Console output is forwarded to the run log once the script returns.
        An abandoned script is stopped at its next line through `abort`.
        """
        scripts = self.engine.script_executor
        abort = threading.Event()
        try:
            result = await self.cancellation.guard(
                asyncio.to_thread(scripts.run, code, bindings, mode, None, abort)
            )
        except (FlowCancelled, asyncio.CancelledError):
            abort.set()
            raise
        for level, msg in result.logs:
            self.log(level, msg)
        return result

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    async def traverse(self, edge: FlowEdge) -> None:
        await self.execute_node(edge.target)

    async def follow(self, edges: List[FlowEdge]) -> None:
        for edge in edges:
            await self.traverse(edge)

    async def execute_node(self, node_id: str) -> None:
        """
        Execute a node and then its successors, depth first.

        Raises:
            FlowCancelled: if the run was cancelled before or during the node
            Exception: the node's failure, after it has been reported
        """
        self.cancellation.raise_if_cancelled()

        node = self.flow.get_node(node_id)
        if node is None:
            self.log(LogLevel.WARN, f'Node {node_id} not found, path ends here')
            return

        executor = self.engine.get_executor(node.type)

        self.callbacks.on_node_start(node_id)
        started_at = now_utc()

        try:
            outcome = await executor.execute(node, self)
        except (FlowCancelled, asyncio.CancelledError):
            raise
        except Exception as e:
            finished_at = now_utc()
            message = error_message(e)
            self.context.results[node_id] = NodeExecutionResult(
                node_id=node_id,
                status=NodeStatus.ERROR,
                start_time=started_at,
                end_time=finished_at,
                error=message,
            )
            logger.warning(
                f"Node {node_id} failed: {message}",
                flow_id=self.flow.id,
                run_id=self.run_id,
                node_id=node_id,
                node_type=node.type,
                duration_ms=duration_ms(started_at, finished_at),
                category='node_execution',
            )
            self.callbacks.on_node_error(node_id, message)
            raise

        finished_at = now_utc()
        outcome = outcome or NodeOutcome()
        self.context.results[node_id] = NodeExecutionResult(
            node_id=node_id,
            status=NodeStatus.SUCCESS,
            start_time=started_at,
            end_time=finished_at,
            request=outcome.request,
            response=outcome.response,
            data=outcome.data,
        )
        logger.debug(
            f"Node {node_id} ({node.type}) completed",
            flow_id=self.flow.id,
            run_id=self.run_id,
            node_id=node_id,
            node_type=node.type,
            duration_ms=duration_ms(started_at, finished_at),
            category='node_execution',
        )
        self.callbacks.on_node_success(node_id, outcome.data)

        await self.follow(outcome.edges)


class FlowEngine:
    """
    Engine for executing flows.

    Locates the start node, dispatches each node to the executor registered
    for its type and walks the outgoing edges the executor selects.

    Usage:
        engine = FlowEngine(repository, HttpxRequestExecutor())
        context = await engine.execute(flow, callbacks, CancellationToken())
    """

    def __init__(self, repository: FlowRepository, http_executor: HttpExecutor,
                 script_executor: Optional[ScriptExecutor] = None, settings=None):
        """
        Initialize the flow engine.

        Args:
            repository: Collection/environment lookups
            http_executor: Issues request nodes' HTTP calls
            script_executor: Runs map/script/request hooks (sandboxed default)
            settings: Settings instance (defaults to get_settings())
        """
        self.repository = repository
        self.http_executor = http_executor
        self.settings = settings or get_settings()
        self.script_executor = script_executor or ScriptExecutor.from_settings(self.settings)
        self.node_executors: Dict[str, Any] = {}
        self._register_default_executors()

    def _register_default_executors(self):
        """Register one executor per node kind."""
        from .node_executors import build_default_executors

        self.node_executors = build_default_executors()

    def register_executor(self, node_type: str, executor) -> None:
        """Register (or replace) the executor for a node type."""
        self.node_executors[node_type] = executor

    def get_executor(self, node_type: str):
        executor = self.node_executors.get(node_type)
        if executor is None:
            raise FlowConfigurationError(f'No executor registered for node type "{node_type}"')
        return executor

    async def execute(self, flow: Flow, callbacks: Optional[ExecutionCallbacks] = None,
                      cancellation: Optional[CancellationToken] = None) -> ExecutionContext:
        """
        Execute a flow.

        Args:
            flow: Validated flow document (a private copy is taken)
            callbacks: Observer hooks
            cancellation: Token that stops the run when cancelled

        Returns:
            The final execution context

        Raises:
            FlowCancelled: the run was stopped
            AppError / Exception: the first failure that ended the run
        """
        run = FlowRun(
            self,
            flow.model_copy(deep=True),
            callbacks or ExecutionCallbacks(),
            cancellation or CancellationToken(),
        )
        started_at = now_utc()

        logger.info(
            f"Starting flow run {run.run_id} for flow {flow.id}",
            flow_id=flow.id,
            run_id=run.run_id,
            category='execution',
        )

        try:
            start_node = self._find_start_node(run.flow)
            run.env_vars = await self._load_environment(run.flow)
            run.publish_context()
            await run.execute_node(start_node.id)

        except FlowCancelled:
            run.log(LogLevel.INFO, 'Flow execution stopped')
            logger.info(
                f"Flow run {run.run_id} stopped",
                flow_id=flow.id,
                run_id=run.run_id,
                duration_ms=duration_ms(started_at, now_utc()),
                category='execution',
            )
            raise

        except Exception as e:
            run.log(LogLevel.ERROR, error_message(e))
            logger.error(
                f"Flow run {run.run_id} failed: {error_message(e)}",
                flow_id=flow.id,
                run_id=run.run_id,
                duration_ms=duration_ms(started_at, now_utc()),
                category='execution',
            )
            raise

        finally:
            run.publish_context()

        logger.info(
            f"Flow run {run.run_id} completed",
            flow_id=flow.id,
            run_id=run.run_id,
            duration_ms=duration_ms(started_at, now_utc()),
            category='execution',
        )
        return run.context

    @staticmethod
    def _find_start_node(flow: Flow):
        start_nodes = flow.start_nodes()
        if not start_nodes:
            raise FlowConfigurationError('No start node found')
        if len(start_nodes) > 1:
            raise FlowConfigurationError(
                'Flow has more than one start node',
                details={'start_nodes': [n.id for n in start_nodes]}
            )
        return start_nodes[0]

    async def _load_environment(self, flow: Flow) -> Mapping[str, str]:
        """Enabled variables of the flow's environment, read-only."""
        if not flow.environment_id:
            return env_map({})

        environment = await self.repository.get_environment(flow.environment_id)
        if environment is None:
            raise NotFoundError('Environment', flow.environment_id)
        return env_map(environment.enabled_variables())

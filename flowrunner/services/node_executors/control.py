"""
Control Node Executors

Start/end markers, branching, delays, iteration and parallel fan-out.
Loop and parallel nodes drive their own sub-traversals through the run
and hand no edges back to the engine.
"""

import asyncio
import json
from typing import List

from flowrunner.core.types import LogLevel
from flowrunner.utils.errors import FlowConfigurationError, NodeExecutionError
from ..condition_evaluator import OPERATORS, evaluate_condition
from ..logging_service import get_logger, LogSource
from ..variable_resolver import extract_json_path, stringify
from .base import NodeExecutor, NodeOutcome

logger = get_logger(__name__, LogSource.EXECUTOR)


class StartExecutor(NodeExecutor):
    node_type = 'start'

    async def execute(self, node, run) -> NodeOutcome:
        return NodeOutcome(edges=run.next_edges(node))


class EndExecutor(NodeExecutor):
    """Ends the current path. Other parallel branches keep running."""
    node_type = 'end'

    async def execute(self, node, run) -> NodeOutcome:
        run.log(LogLevel.INFO, 'Flow completed successfully')
        return NodeOutcome()


class ErrorHandlerExecutor(NodeExecutor):
    """Pass-through; errors are not routed to handler nodes."""
    node_type = 'errorHandler'

    async def execute(self, node, run) -> NodeOutcome:
        return NodeOutcome(edges=run.next_edges(node))


class ConditionExecutor(NodeExecutor):
    """
    Evaluates `left op right` and follows the edge leaving through the
    'true' or 'false' handle. A missing edge for the outcome ends the path.
    """
    node_type = 'condition'

    async def execute(self, node, run) -> NodeOutcome:
        data = node.data
        if data.op not in OPERATORS:
            run.log(LogLevel.WARN, f'Unknown operator "{data.op}", condition is false')
        left = self._left_value(data.left, run, node.id)
        right = self._right_value(data.right, run)
        result = evaluate_condition(left, data.op, right)

        run.log(
            LogLevel.INFO,
            f'Condition: {stringify(left)} {data.op} {stringify(right)} = {stringify(result)}'
        )
        handle = 'true' if result else 'false'
        return NodeOutcome(edges=run.next_edges(node, handle), data={'result': result})

    @staticmethod
    def _left_value(left, run, node_id):
        context = run.context
        if left.kind == 'flowVar':
            return context.flow_vars.get(left.value)
        if left.kind == 'lastStatus':
            return context.last_response.status if context.last_response else None
        if left.kind == 'lastResponseBodyPath':
            if context.last_response is None:
                raise NodeExecutionError('No response available', node_id=node_id)
            try:
                body = json.loads(context.last_response.body)
            except ValueError:
                return None
            return extract_json_path(body, left.value)
        return None

    @staticmethod
    def _right_value(right, run):
        if right.kind == 'flowVar':
            return run.context.flow_vars.get(right.value)
        return right.value


class DelayExecutor(NodeExecutor):
    """Pauses the path. Cancellation interrupts the wait immediately."""
    node_type = 'delay'

    async def execute(self, node, run) -> NodeOutcome:
        ms = run.engine.settings.clamp_delay(node.data.ms)
        await run.cancellation.sleep(ms / 1000)
        run.log(LogLevel.INFO, f'Delayed {ms}ms')
        return NodeOutcome(edges=run.next_edges(node), data={'ms': ms})


class LoopExecutor(NodeExecutor):
    """
    Runs the body (the first outgoing edge) once per element of an array
    flow variable, binding the element and optionally its index first.
    Iterations run strictly one after another.
    """
    node_type = 'loop'

    async def execute(self, node, run) -> NodeOutcome:
        data = node.data
        items = run.flow_vars.get(data.array_var)
        if not isinstance(items, (list, tuple)):
            raise FlowConfigurationError(
                f'Variable {data.array_var} is not an array',
                node_id=node.id,
                details={'variable': data.array_var},
            )

        body = run.next_edges(node)
        # Iterate over a copy; the body may reassign the array variable
        items = list(items)

        for index, item in enumerate(items):
            run.cancellation.raise_if_cancelled()

            run.flow_vars[data.item_var] = item
            if data.index_var:
                run.flow_vars[data.index_var] = index
            run.publish_context()

            for edge in body:
                await run.traverse(edge)

        logger.debug(
            f"Loop {node.id} finished {len(items)} iterations",
            node_id=node.id,
            node_type=self.node_type,
            category='loop',
        )
        return NodeOutcome(data={'iterations': len(items)})


class ParallelExecutor(NodeExecutor):
    """
    Starts one branch per outgoing edge and waits for all of them.

    The first branch failure fails the node; the remaining branches are
    cancelled and awaited before the error propagates.
    """
    node_type = 'parallel'

    async def execute(self, node, run) -> NodeOutcome:
        edges = run.flow.outgoing(node.id)
        run.cancellation.raise_if_cancelled()

        if not edges:
            return NodeOutcome(data={'branches': 0})

        branches = [asyncio.ensure_future(run.traverse(edge)) for edge in edges]
        await join_branches(branches)
        return NodeOutcome(data={'branches': len(branches)})


async def join_branches(branches: List[asyncio.Future]) -> None:
    """
    Wait for all branches, failing fast.

    Raises:
        The first branch error (in edge order among those finished together)
    """
    try:
        done, pending = await asyncio.wait(branches, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        await _cancel_all(branches)
        raise

    failure = None
    for branch in branches:
        if branch in done and not branch.cancelled() and branch.exception() is not None:
            failure = branch.exception()
            break

    if pending:
        await _cancel_all(pending)

    if failure is not None:
        raise failure


async def _cancel_all(branches) -> None:
    for branch in branches:
        branch.cancel()
    results = await asyncio.gather(*branches, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.debug(f"Discarded sibling branch outcome: {result!r}", category='parallel')

"""
Unit tests for the flow engine: traversal, control flow, errors and cancellation.
"""

import asyncio
import sys
import os
import threading
import time

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from flowrunner.core.cancellation import CancellationToken
from flowrunner.core.types import NodeStatus
from flowrunner.services.flow_engine import FlowEngine
from flowrunner.services.node_executors import NodeExecutor, NodeOutcome
from flowrunner.services.script_executor import ScriptExecutor
from flowrunner.utils.errors import (
    FlowCancelled,
    FlowConfigurationError,
    NodeExecutionError,
    NotFoundError,
)


def script(code):
    return {'script': code}


class RecordingScriptExecutor(ScriptExecutor):
    """ScriptExecutor without a timeout that remembers each result."""

    def __init__(self):
        super().__init__(timeout=None)
        self.results = []
        self.finished = threading.Event()

    def run(self, *args, **kwargs):
        result = super().run(*args, **kwargs)
        self.results.append(result)
        self.finished.set()
        return result


class TestLinearFlows:
    """Tests for straight-line traversal."""

    @pytest.mark.asyncio
    async def test_set_var_and_log(self, engine, recorder, make_flow):
        """Test variables flow from setVar into later templates."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('set', 'setVar', {'key': 'greeting', 'valueTemplate': 'hello {{username}}'}),
                ('log', 'log', {'messageTemplate': '{{greeting}} at {{base_url}}'}),
                ('e', 'end', None),
            ],
            edges=[('s', 'set'), ('set', 'log'), ('log', 'e')],
            environment_id='env-dev',
        )

        context = await engine.execute(flow, recorder.callbacks())

        assert context.flow_vars['greeting'] == 'hello alice'
        assert recorder.started() == ['s', 'set', 'log', 'e']
        assert recorder.succeeded() == ['s', 'set', 'log', 'e']
        assert 'Set greeting = hello alice' in recorder.messages()
        assert 'hello alice at https://api.test' in recorder.messages()
        assert 'Flow completed successfully' in recorder.messages()
        assert context.results['log'].status == NodeStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_declared_variables_seed_context(self, engine, make_flow):
        """Test flow variables start from the declared values."""
        flow = make_flow(
            nodes=[('s', 'start', None), ('set', 'setVar', {'key': 'copy', 'valueTemplate': '{{limit}}'})],
            edges=[('s', 'set')],
            variables={'limit': {'value': 10, 'description': 'page size'}},
        )

        context = await engine.execute(flow)

        assert context.flow_vars == {'limit': 10, 'copy': '10'}

    @pytest.mark.asyncio
    async def test_disabled_env_var_not_resolved(self, engine, make_flow):
        """Test disabled environment variables are not visible."""
        flow = make_flow(
            nodes=[('s', 'start', None),
                   ('set', 'setVar', {'key': 'v', 'valueTemplate': '{{disabled_var}}'})],
            edges=[('s', 'set')],
            environment_id='env-dev',
        )

        context = await engine.execute(flow)

        assert context.flow_vars['v'] == '{{disabled_var}}'

    @pytest.mark.asyncio
    async def test_edge_to_missing_node(self, engine, recorder, make_flow):
        """Test a dangling edge ends the path with a warning."""
        flow = make_flow(nodes=[('s', 'start', None)], edges=[('s', 'ghost')])

        await engine.execute(flow, recorder.callbacks())

        assert recorder.succeeded() == ['s']
        assert ('warn', 'Node ghost not found, path ends here') in recorder.logs

    @pytest.mark.asyncio
    async def test_only_first_edge_followed(self, engine, recorder, make_flow):
        """Test non-branching nodes follow a single successor."""
        flow = make_flow(
            nodes=[('s', 'start', None), ('a', 'log', {'messageTemplate': 'a'}),
                   ('b', 'log', {'messageTemplate': 'b'})],
            edges=[('s', 'a'), ('s', 'b')],
        )

        await engine.execute(flow, recorder.callbacks())

        assert recorder.started() == ['s', 'a']

    @pytest.mark.asyncio
    async def test_input_flow_not_mutated(self, engine, make_flow):
        """Test a run works on its own copy of the flow."""
        flow = make_flow(
            nodes=[('s', 'start', None), ('set', 'setVar', {'key': 'items', 'valueTemplate': 'x'})],
            edges=[('s', 'set')],
            variables={'items': [1, 2]},
        )

        await engine.execute(flow)

        assert flow.variables == {'items': [1, 2]}


class TestStartValidation:
    """Tests for start node and environment checks."""

    @pytest.mark.asyncio
    async def test_no_start_node(self, engine, recorder, make_flow):
        """Test a flow without start fails before running anything."""
        flow = make_flow(nodes=[('e', 'end', None)])

        with pytest.raises(FlowConfigurationError, match='No start node found'):
            await engine.execute(flow, recorder.callbacks())

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_two_start_nodes(self, engine, recorder, make_flow):
        """Test more than one start node is a configuration error."""
        flow = make_flow(nodes=[('s1', 'start', None), ('s2', 'start', None)])

        with pytest.raises(FlowConfigurationError):
            await engine.execute(flow, recorder.callbacks())

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_unknown_environment(self, engine, make_flow):
        """Test a missing environment is a not-found error."""
        flow = make_flow(nodes=[('s', 'start', None)], environment_id='env-nope')

        with pytest.raises(NotFoundError) as exc_info:
            await engine.execute(flow)

        assert exc_info.value.code == 'ENVIRONMENT_NOT_FOUND'


class TestConditionNode:
    """Tests for condition branching."""

    def _flow(self, make_flow, left, op, right, variables=None, with_false=True):
        nodes = [
            ('s', 'start', None),
            ('c', 'condition', {'left': left, 'op': op, 'right': right}),
            ('yes', 'log', {'messageTemplate': 'yes'}),
            ('no', 'log', {'messageTemplate': 'no'}),
        ]
        edges = [('s', 'c'), ('c', 'yes', 'true')]
        if with_false:
            edges.append(('c', 'no', 'false'))
        return make_flow(nodes=nodes, edges=edges, variables=variables)

    @pytest.mark.asyncio
    async def test_true_branch(self, engine, recorder, make_flow):
        """Test a true result follows the true handle."""
        flow = self._flow(make_flow, {'kind': 'flowVar', 'value': 'count'}, 'equals',
                          {'kind': 'literal', 'value': '5'}, variables={'count': 5})

        await engine.execute(flow, recorder.callbacks())

        assert recorder.started() == ['s', 'c', 'yes']
        assert 'Condition: 5 equals 5 = true' in recorder.messages()

    @pytest.mark.asyncio
    async def test_false_branch(self, engine, recorder, make_flow):
        """Test a false result follows the false handle."""
        flow = self._flow(make_flow, {'kind': 'flowVar', 'value': 'count'}, 'gt',
                          {'kind': 'flowVar', 'value': 'limit'}, variables={'count': 1, 'limit': 2})

        context = await engine.execute(flow, recorder.callbacks())

        assert recorder.started() == ['s', 'c', 'no']
        assert context.results['c'].data == {'result': False}

    @pytest.mark.asyncio
    async def test_missing_branch_ends_path(self, engine, recorder, make_flow):
        """Test no edge for the outcome simply stops."""
        flow = self._flow(make_flow, {'kind': 'flowVar', 'value': 'x'}, 'equals',
                          {'kind': 'literal', 'value': 'y'}, with_false=False)

        await engine.execute(flow, recorder.callbacks())

        assert recorder.started() == ['s', 'c']

    @pytest.mark.asyncio
    async def test_unknown_operator_is_false(self, engine, recorder, make_flow):
        """Test an unknown operator warns and takes the false branch."""
        flow = self._flow(make_flow, {'kind': 'flowVar', 'value': 'x'}, 'matches',
                          {'kind': 'literal', 'value': 'y'}, variables={'x': 'y'})

        await engine.execute(flow, recorder.callbacks())

        assert recorder.started() == ['s', 'c', 'no']
        assert 'Unknown operator "matches", condition is false' in recorder.messages()

    @pytest.mark.asyncio
    async def test_last_status(self, engine, fake_http, recorder, make_flow):
        """Test lastStatus compares the previous response status."""
        fake_http.add('GET', 'https://api.test/ping', {'pong': True})
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('r', 'request', {'requestRef': {'kind': 'adhoc', 'request': {
                    'method': 'GET', 'url': 'https://api.test/ping'}}}),
                ('c', 'condition', {'left': {'kind': 'lastStatus', 'value': ''}, 'op': 'equals',
                                    'right': {'kind': 'literal', 'value': '200'}}),
                ('ok', 'log', {'messageTemplate': 'ok'}),
            ],
            edges=[('s', 'r'), ('r', 'c'), ('c', 'ok', 'true')],
        )

        await engine.execute(flow, recorder.callbacks())

        assert recorder.started()[-1] == 'ok'

    @pytest.mark.asyncio
    async def test_body_path_without_response_fails(self, engine, recorder, make_flow):
        """Test reading a body path before any request is an error."""
        flow = self._flow(make_flow, {'kind': 'lastResponseBodyPath', 'value': 'a'}, 'equals',
                          {'kind': 'literal', 'value': 1})

        with pytest.raises(NodeExecutionError, match='No response available'):
            await engine.execute(flow, recorder.callbacks())

        assert recorder.failed() == ['c']


class TestLoopNode:
    """Tests for loop iteration."""

    @pytest.mark.asyncio
    async def test_loop_runs_body_per_item(self, engine, recorder, make_flow):
        """Test the body runs once per element, in order."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('loop', 'loop', {'arrayVar': 'items', 'itemVar': 'item', 'indexVar': 'i'}),
                ('body', 'script', script('flow_vars["x"] = flow_vars["x"] + 1\n'
                                          'flow_vars["seen"] = flow_vars["seen"] + [flow_vars["item"]]')),
            ],
            edges=[('s', 'loop'), ('loop', 'body')],
            variables={'items': ['a', 'b', 'c'], 'x': 0, 'seen': []},
        )

        context = await engine.execute(flow, recorder.callbacks())

        assert context.flow_vars['x'] == 3
        assert context.flow_vars['seen'] == ['a', 'b', 'c']
        assert context.flow_vars['item'] == 'c'
        assert context.flow_vars['i'] == 2
        assert recorder.started().count('body') == 3
        assert context.results['loop'].data == {'iterations': 3}

    @pytest.mark.asyncio
    async def test_loop_body_chain(self, engine, recorder, make_flow):
        """Test the whole chain after the loop edge runs per iteration."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('loop', 'loop', {'arrayVar': 'items', 'itemVar': 'item'}),
                ('set', 'setVar', {'key': 'last', 'valueTemplate': 'item={{item}}'}),
                ('log', 'log', {'messageTemplate': '{{last}}'}),
            ],
            edges=[('s', 'loop'), ('loop', 'set'), ('set', 'log')],
            variables={'items': [1, 2]},
        )

        await engine.execute(flow, recorder.callbacks())

        assert recorder.started() == ['s', 'loop', 'set', 'log', 'set', 'log']
        assert recorder.succeeded()[-1] == 'loop'
        assert 'item=1' in recorder.messages()
        assert 'item=2' in recorder.messages()

    @pytest.mark.asyncio
    async def test_loop_over_non_array(self, engine, recorder, make_flow):
        """Test a non-list variable is a configuration error."""
        flow = make_flow(
            nodes=[('s', 'start', None),
                   ('loop', 'loop', {'arrayVar': 'items', 'itemVar': 'item'})],
            edges=[('s', 'loop')],
            variables={'items': 'not a list'},
        )

        with pytest.raises(FlowConfigurationError, match='is not an array'):
            await engine.execute(flow, recorder.callbacks())

        assert recorder.failed() == ['loop']

    @pytest.mark.asyncio
    async def test_body_failure_fails_loop(self, engine, recorder, make_flow):
        """Test a failing body node fails the loop node too."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('loop', 'loop', {'arrayVar': 'items', 'itemVar': 'item'}),
                ('bad', 'script', script('raise ValueError("boom")')),
            ],
            edges=[('s', 'loop'), ('loop', 'bad')],
            variables={'items': [1, 2, 3]},
        )

        with pytest.raises(NodeExecutionError):
            await engine.execute(flow, recorder.callbacks())

        assert recorder.failed() == ['bad', 'loop']
        assert recorder.started().count('bad') == 1


class TestParallelNode:
    """Tests for parallel fan-out."""

    @pytest.mark.asyncio
    async def test_all_branches_run(self, engine, recorder, make_flow):
        """Test every outgoing edge runs as a branch."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('p', 'parallel', {'branches': 2}),
                ('a', 'setVar', {'key': 'a', 'valueTemplate': '1'}),
                ('b', 'setVar', {'key': 'b', 'valueTemplate': '2'}),
            ],
            edges=[('s', 'p'), ('p', 'a'), ('p', 'b')],
        )

        context = await engine.execute(flow, recorder.callbacks())

        assert context.flow_vars == {'a': '1', 'b': '2'}
        assert recorder.succeeded()[-1] == 'p'
        assert context.results['p'].data == {'branches': 2}

    @pytest.mark.asyncio
    async def test_branch_failure_fails_run(self, engine, recorder, make_flow):
        """Test a failing branch fails the run; earlier sibling effects stay."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('p', 'parallel', None),
                ('a', 'setVar', {'key': 'a', 'valueTemplate': 'done'}),
                ('b', 'extract', {'from': 'lastResponseBody', 'jsonPath': 'x', 'toFlowVar': 'x'}),
            ],
            edges=[('s', 'p'), ('p', 'a'), ('p', 'b')],
        )

        with pytest.raises(NodeExecutionError):
            await engine.execute(flow, recorder.callbacks())

        final = recorder.contexts[-1]
        assert final.flow_vars['a'] == 'done'
        assert 'x' not in final.flow_vars
        assert recorder.failed() == ['b', 'p']

    @pytest.mark.asyncio
    async def test_failure_cancels_siblings(self, engine, recorder, make_flow):
        """Test a slow sibling is cancelled when another branch fails."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('p', 'parallel', None),
                ('slow', 'delay', {'ms': 5000}),
                ('after', 'setVar', {'key': 'after', 'valueTemplate': 'yes'}),
                ('bad', 'script', script('raise ValueError("nope")')),
            ],
            edges=[('s', 'p'), ('p', 'slow'), ('slow', 'after'), ('p', 'bad')],
        )

        with pytest.raises(NodeExecutionError, match='Script error: nope'):
            await asyncio.wait_for(engine.execute(flow, recorder.callbacks()), timeout=3)

        assert 'after' not in recorder.started()
        assert 'slow' not in recorder.failed()
        assert 'after' not in recorder.contexts[-1].flow_vars

    @pytest.mark.asyncio
    async def test_branches_overlap(self, engine, recorder, make_flow):
        """Test branches run concurrently rather than one after another."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('p', 'parallel', None),
                ('d1', 'delay', {'ms': 300}),
                ('d2', 'delay', {'ms': 300}),
            ],
            edges=[('s', 'p'), ('p', 'd1'), ('p', 'd2')],
        )

        started = time.monotonic()
        await engine.execute(flow, recorder.callbacks())
        elapsed = time.monotonic() - started

        assert elapsed < 0.5
        # Both branches start before either finishes
        order = [(event[0], event[1]) for event in recorder.events if event[1] in ('d1', 'd2')]
        assert order[:2] == [('start', 'd1'), ('start', 'd2')]


class TestCancellation:
    """Tests for stopping a run."""

    @pytest.mark.asyncio
    async def test_stop_during_delay(self, engine, recorder, make_flow):
        """Test cancelling during a delay stops the run before successors."""
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('d', 'delay', {'ms': 5000}),
                ('after', 'setVar', {'key': 'after', 'valueTemplate': 'yes'}),
            ],
            edges=[('s', 'd'), ('d', 'after')],
        )
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(FlowCancelled):
            await asyncio.wait_for(engine.execute(flow, recorder.callbacks(), token), timeout=3)

        assert recorder.started() == ['s', 'd']
        assert recorder.failed() == []
        assert 'Flow execution stopped' in recorder.messages()
        assert 'after' not in recorder.contexts[-1].flow_vars

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, engine, recorder, make_flow):
        """Test a pre-cancelled token runs no nodes."""
        flow = make_flow(nodes=[('s', 'start', None)])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(FlowCancelled):
            await engine.execute(flow, recorder.callbacks(), token)

        assert recorder.started() == []

    @pytest.mark.asyncio
    async def test_stop_during_request(self, engine, fake_http, recorder, make_flow):
        """Test an in-flight request is abandoned and nothing is committed."""
        fake_http.add('GET', 'https://api.test/slow', {'a': 1}, delay=5)
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('r', 'request', {'requestRef': {'kind': 'adhoc', 'request': {
                    'method': 'GET', 'url': 'https://api.test/slow'}}, 'saveResponseAs': 'saved'}),
            ],
            edges=[('s', 'r')],
        )
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(FlowCancelled):
            await asyncio.wait_for(engine.execute(flow, recorder.callbacks(), token), timeout=3)

        final = recorder.contexts[-1]
        assert final.last_response is None
        assert 'saved' not in final.flow_vars

    @pytest.mark.asyncio
    async def test_stop_aborts_running_script(self, repository, fake_http, settings,
                                              recorder, make_flow):
        """Test stopping a run also stops the script's worker thread."""
        scripts = RecordingScriptExecutor()
        engine = FlowEngine(repository, fake_http, script_executor=scripts, settings=settings)
        flow = make_flow(
            nodes=[
                ('s', 'start', None),
                ('spin', 'script', script('n = 0\nwhile True:\n    n += 1')),
            ],
            edges=[('s', 'spin')],
        )
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(FlowCancelled):
            await asyncio.wait_for(engine.execute(flow, recorder.callbacks(), token), timeout=3)

        assert await asyncio.to_thread(scripts.finished.wait, 3)
        assert scripts.results[-1].error == 'Script aborted'
        assert recorder.failed() == []

    @pytest.mark.asyncio
    async def test_delay_is_clamped(self, engine, recorder, make_flow):
        """Test the configured cap shortens long delays."""
        engine.settings.max_delay_ms = 1
        flow = make_flow(nodes=[('s', 'start', None), ('d', 'delay', {'ms': 60000})],
                         edges=[('s', 'd')])

        await asyncio.wait_for(engine.execute(flow, recorder.callbacks()), timeout=3)

        assert 'Delayed 1ms' in recorder.messages()


class TestExecutorRegistry:
    """Tests for executor registration."""

    @pytest.mark.asyncio
    async def test_register_custom_executor(self, engine, recorder, make_flow):
        """Test a registered executor replaces the built-in one."""

        class ShoutingLog(NodeExecutor):
            node_type = 'log'

            async def execute(self, node, run):
                run.log('info', run.resolve(node.data.message_template).upper())
                return NodeOutcome(edges=run.next_edges(node))

        engine.register_executor('log', ShoutingLog())
        flow = make_flow(nodes=[('s', 'start', None), ('l', 'log', {'messageTemplate': 'hi'})],
                         edges=[('s', 'l')])

        await engine.execute(flow, recorder.callbacks())

        assert 'HI' in recorder.messages()

    def test_default_executors_cover_all_node_types(self, engine):
        """Test every node type has an executor."""
        from flowrunner.core.models import NODE_TYPES

        assert set(engine.node_executors) == set(NODE_TYPES)

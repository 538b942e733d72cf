"""
Scripting Node Executors

Map and script nodes run user code through the engine's ScriptExecutor.
Scripts see copies of the flow variables; their effects are applied to
the run only after the script has succeeded.
"""

import copy

from flowrunner.utils.errors import NodeExecutionError
from .base import NodeExecutor, NodeOutcome


class MapExecutor(NodeExecutor):
    """
    Transforms one flow variable into another.

    The transform is an expression over `input` (e.g. `[x['id'] for x in input]`)
    or a block of statements that assigns `result`.
    """
    node_type = 'map'

    async def execute(self, node, run) -> NodeOutcome:
        data = node.data
        flow_vars = copy.deepcopy(run.flow_vars)
        bindings = {
            'input': flow_vars.get(data.input_var),
            'flow_vars': flow_vars,
            'flowVars': flow_vars,
        }

        result = await run.run_script(data.transform_script, bindings, mode='auto')
        if not result.success:
            raise NodeExecutionError(f'Map script error: {result.error}', node_id=node.id)

        run.flow_vars[data.output_var] = result.value
        run.publish_context()
        return NodeOutcome(edges=run.next_edges(node), data={'output': result.value})


class ScriptNodeExecutor(NodeExecutor):
    """
    Runs a script that may read and write flow variables through
    `flow_vars`, `set_var(key, value)` and `get_var(key)`.

    Variables the script added, changed or deleted are committed when it
    finishes; a failing script commits nothing.
    """
    node_type = 'script'

    async def execute(self, node, run) -> NodeOutcome:
        before = copy.deepcopy(run.flow_vars)
        working = copy.deepcopy(run.flow_vars)

        def set_var(key, value):
            working[key] = value

        bindings = {
            'flow_vars': working,
            'flowVars': working,
            'set_var': set_var,
            'setVar': set_var,
            'get_var': working.get,
            'getVar': working.get,
        }

        result = await run.run_script(node.data.script, bindings, mode='statements')
        if not result.success:
            raise NodeExecutionError(f'Script error: {result.error}', node_id=node.id)

        changed = {
            key: value for key, value in working.items()
            if key not in before or before[key] != value
        }
        removed = [key for key in before if key not in working]

        run.flow_vars.update(changed)
        for key in removed:
            run.flow_vars.pop(key, None)
        if changed or removed:
            run.publish_context()

        return NodeOutcome(
            edges=run.next_edges(node),
            data={'changed': sorted(changed), 'removed': sorted(removed)},
        )

"""
Data Node Executors

Nodes that move values between the last response, flow variables and the
run log.
"""

from flowrunner.core.types import LogLevel
from flowrunner.utils.errors import FlowConfigurationError, NodeExecutionError
from ..variable_resolver import extract_json_path, parse_json_or_text
from .base import NodeExecutor, NodeOutcome


class ExtractExecutor(NodeExecutor):
    """
    Copies a value found by a dot path into a flow variable.

    The source is the last response body (JSON-decoded when possible) or
    another flow variable. A path that leads nowhere stores None.
    """
    node_type = 'extract'

    async def execute(self, node, run) -> NodeOutcome:
        data = node.data

        if data.source == 'lastResponseBody':
            response = run.context.last_response
            if response is None:
                raise NodeExecutionError('No response available to extract from', node_id=node.id)
            source = parse_json_or_text(response.body)
        else:
            if not data.flow_var_name:
                raise FlowConfigurationError('Flow variable name not specified', node_id=node.id)
            source = run.flow_vars.get(data.flow_var_name)

        value = extract_json_path(source, data.json_path)
        run.flow_vars[data.to_flow_var] = value
        run.publish_context()
        run.log(LogLevel.INFO, f'Extracted "{data.json_path}" → {data.to_flow_var}')

        return NodeOutcome(
            edges=run.next_edges(node),
            data={'variable': data.to_flow_var, 'value': value},
        )


class SetVarExecutor(NodeExecutor):
    node_type = 'setVar'

    async def execute(self, node, run) -> NodeOutcome:
        value = run.resolve(node.data.value_template)
        run.flow_vars[node.data.key] = value
        run.publish_context()
        run.log(LogLevel.INFO, f'Set {node.data.key} = {value}')
        return NodeOutcome(edges=run.next_edges(node), data={node.data.key: value})


class LogExecutor(NodeExecutor):
    node_type = 'log'

    async def execute(self, node, run) -> NodeOutcome:
        message = run.resolve(node.data.message_template)
        run.log(LogLevel.INFO, message)
        return NodeOutcome(edges=run.next_edges(node), data={'message': message})

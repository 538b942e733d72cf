"""
Request Node Executor

Looks up (or takes inline) an HTTP request, resolves its templates against
the run, runs the pre/post-request hooks and issues it through the engine's
HttpExecutor.
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError

from flowrunner.core.models import HttpRequest, HttpResponse
from flowrunner.core.types import LogLevel
from flowrunner.utils.errors import NotFoundError
from ..logging_service import get_logger, LogSource
from ..variable_resolver import VariableResolver, parse_json_or_text
from .base import NodeExecutor, NodeOutcome

logger = get_logger(__name__, LogSource.EXECUTOR)


def resolve_request(request: HttpRequest, resolver: VariableResolver) -> HttpRequest:
    """
    Copy of the request with templates substituted in the URL, header and
    query values, a raw body and a bearer token.
    """
    resolved = request.model_copy(deep=True)

    resolved.url = resolver.resolve_string(request.url)
    for header in resolved.headers:
        header.value = resolver.resolve_string(header.value)
    for param in resolved.query_params:
        param.value = resolver.resolve_string(param.value)

    if resolved.body.type == 'raw':
        resolved.body.content = resolver.resolve_string(resolved.body.content)

    if resolved.auth.type == 'bearer' and resolved.auth.token:
        resolved.auth.token = resolver.resolve_string(resolved.auth.token)

    return resolved


class _HookScope:
    """
    Variables written by a pre/post-request hook.

    Writes are held back until the request node commits; reads see the
    pending writes first, then flow variables, then the environment.
    """

    def __init__(self, run):
        self.run = run
        self.pending: Dict[str, Any] = {}

    def set_env(self, key, value):
        self.pending[key] = value

    def get_env(self, key):
        if key in self.pending:
            return self.pending[key]
        if key in self.run.flow_vars:
            return self.run.flow_vars[key]
        return self.run.env_vars.get(key)


class RequestExecutor(NodeExecutor):
    node_type = 'request'

    async def execute(self, node, run) -> NodeOutcome:
        data = node.data
        request = await self._load_request(data.request_ref, run)
        request = resolve_request(request, run.resolver())

        pre_scope = _HookScope(run)
        if request.pre_request_script:
            request = await self._run_pre_hook(request, pre_scope, run)

        response = await run.engine.http_executor.execute(request, run.cancellation)

        post_scope = _HookScope(run)
        post_scope.pending = dict(pre_scope.pending)
        if data.save_response_as:
            post_scope.pending[data.save_response_as] = parse_json_or_text(response.body)
        if request.post_request_script:
            await self._run_hook(request.post_request_script, 'post', request.to_dict(), response,
                                 post_scope, run)

        # Commit everything at once; nothing above touched the context
        run.context.last_request = request
        run.context.last_response = response
        run.flow_vars.update(post_scope.pending)
        run.publish_context()

        self._log_response(node, request, response, run)

        return NodeOutcome(
            edges=run.next_edges(node),
            data={'status': response.status, 'timeMs': response.time_ms},
            request=request,
            response=response,
        )

    @staticmethod
    async def _load_request(ref, run) -> HttpRequest:
        if ref.kind == 'adhoc':
            return ref.request

        repository = run.engine.repository
        collection = await repository.get_collection(ref.collection_id)
        if collection is None:
            raise NotFoundError('Collection', ref.collection_id)

        request = await repository.get_request_in_collection(ref.collection_id, ref.request_id)
        if request is None:
            raise NotFoundError('Request', ref.request_id)
        return request

    @classmethod
    async def _run_pre_hook(cls, request: HttpRequest, scope: _HookScope, run) -> HttpRequest:
        """
        Run the pre-request script. Changes it makes to `request` are sent;
        if it leaves the request invalid, the error is logged and the
        unmodified request is sent.
        """
        request_data = request.to_dict()
        if not await cls._run_hook(request.pre_request_script, 'pre', request_data, None, scope, run):
            return request
        try:
            return HttpRequest.model_validate(request_data)
        except ValidationError as e:
            run.log(LogLevel.ERROR, f'Script error: invalid request ({e.error_count()} validation errors)')
            logger.warning(
                f"pre-request script left an invalid request: {e}",
                run_id=run.run_id,
                category='request_script',
            )
            return request

    @staticmethod
    async def _run_hook(code: str, phase: str, request_data: Dict[str, Any],
                        response: Optional[HttpResponse], scope: _HookScope, run) -> bool:
        bindings = {
            'request': request_data,
            'response': response.to_dict() if response is not None else None,
            'environment': dict(run.env_vars),
            'set_env': scope.set_env,
            'setEnv': scope.set_env,
            'get_env': scope.get_env,
            'getEnv': scope.get_env,
        }
        result = await run.run_script(code, bindings, mode='statements')
        if not result.success:
            # Hook failures are reported but do not fail the request
            run.log(LogLevel.ERROR, f'Script error: {result.error}')
            logger.warning(
                f"{phase}-request script failed: {result.error}",
                run_id=run.run_id,
                category='request_script',
            )
        return result.success

    @staticmethod
    def _log_response(node, request: HttpRequest, response: HttpResponse, run) -> None:
        if response.error:
            run.log(LogLevel.WARN, f'{request.method} {request.url} failed: {response.error}')
        else:
            run.log(
                LogLevel.INFO,
                f'{request.method} {request.url} → {response.status} ({response.time_ms}ms)'
            )
        logger.debug(
            f"Request node {node.id} got status {response.status}",
            run_id=run.run_id,
            node_id=node.id,
            status_code=response.status,
            duration_ms=response.time_ms,
            category='request',
        )

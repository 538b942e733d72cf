"""
Pytest configuration and fixtures.
"""

import json
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flowrunner.config import Settings
from flowrunner.core.collaborators import InMemoryRepository
from flowrunner.core.models import HttpResponse, parse_flow
from flowrunner.services.flow_engine import ExecutionCallbacks, FlowEngine


class FakeHttpExecutor:
    """
    Scripted HttpExecutor.

    Responses are registered per "METHOD url" key. A registered value may be
    a dict/list (served as JSON), a string, an HttpResponse, or a callable
    taking the request. Unknown requests get a 404.
    """

    def __init__(self):
        self.routes = {}
        self.delays = {}
        self.calls = []

    def add(self, method, url, body=None, status=200, delay=0.0):
        self.routes[f'{method} {url}'] = (body, status)
        self.delays[f'{method} {url}'] = delay

    async def execute(self, request, cancellation):
        key = f'{request.method} {request.url}'
        self.calls.append(request)

        delay = self.delays.get(key, 0.0)
        if delay:
            await cancellation.sleep(delay)

        if key not in self.routes:
            return HttpResponse(status=404, status_text='Not Found', body='not found')

        body, status = self.routes[key]
        if callable(body):
            body = body(request)
        if isinstance(body, HttpResponse):
            return body
        if isinstance(body, (dict, list)):
            return HttpResponse(status=status, status_text='OK', body=json.dumps(body),
                                body_type='json', time_ms=5)
        return HttpResponse(status=status, status_text='OK', body=body or '', time_ms=5)


class CallbackRecorder:
    """Collects engine callbacks as (event, args) tuples."""

    def __init__(self):
        self.events = []
        self.logs = []
        self.contexts = []

    def callbacks(self):
        return ExecutionCallbacks(
            on_node_start=lambda node_id: self.events.append(('start', node_id)),
            on_node_success=lambda node_id, data: self.events.append(('success', node_id)),
            on_node_error=lambda node_id, error: self.events.append(('error', node_id, error)),
            on_log=lambda level, msg: self.logs.append((level, msg)),
            on_context_update=self.contexts.append,
        )

    def started(self):
        return [e[1] for e in self.events if e[0] == 'start']

    def succeeded(self):
        return [e[1] for e in self.events if e[0] == 'success']

    def failed(self):
        return [e[1] for e in self.events if e[0] == 'error']

    def messages(self):
        return [msg for _, msg in self.logs]


def build_flow(nodes, edges=(), variables=None, environment_id=None, flow_id='flow-1'):
    """
    Build a Flow from compact node/edge tuples.

    nodes: list of (id, type, data) tuples
    edges: list of (source, target) or (source, target, source_handle) tuples
    """
    document = {
        'id': flow_id,
        'name': 'Test flow',
        'nodes': [
            {'id': node_id, 'type': node_type, 'data': data or {}}
            for node_id, node_type, data in nodes
        ],
        'edges': [
            {
                'id': f'e{i}',
                'source': edge[0],
                'target': edge[1],
                'sourceHandle': edge[2] if len(edge) > 2 else None,
            }
            for i, edge in enumerate(edges, start=1)
        ],
        'variables': variables or {},
    }
    if environment_id:
        document['environmentId'] = environment_id
    return parse_flow(document)


@pytest.fixture
def settings():
    """Settings with defaults, independent of the process environment."""
    s = Settings()
    s.max_delay_ms = 0
    s.script_max_log_entries = 1000
    s.script_timeout_ms = 5000
    return s


@pytest.fixture
def fake_http():
    return FakeHttpExecutor()


@pytest.fixture
def repository():
    """Repository with an auth collection and a dev environment."""
    return InMemoryRepository.from_documents(
        collections=[{
            'id': 'col-auth',
            'name': 'Auth API',
            'requests': [
                {
                    'id': 'req-login',
                    'name': 'Login',
                    'method': 'POST',
                    'url': '{{base_url}}/login',
                    'body': {'type': 'raw', 'rawType': 'json',
                             'content': '{"user": "{{username}}"}'},
                },
                {
                    'id': 'req-profile',
                    'name': 'Profile',
                    'method': 'GET',
                    'url': '{{base_url}}/profile',
                    'auth': {'type': 'bearer', 'token': '{{token}}'},
                },
            ],
        }],
        environments=[{
            'id': 'env-dev',
            'name': 'Dev',
            'variables': [
                {'key': 'base_url', 'value': 'https://api.test'},
                {'key': 'username', 'value': 'alice'},
                {'key': 'disabled_var', 'value': 'nope', 'enabled': False},
            ],
        }],
    )


@pytest.fixture
def engine(repository, fake_http, settings):
    return FlowEngine(repository, fake_http, settings=settings)


@pytest.fixture
def recorder():
    return CallbackRecorder()


@pytest.fixture
def make_flow():
    return build_flow

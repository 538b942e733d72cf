"""
Flow Runner Document Models

Pydantic models for the documents the engine consumes: flows, their nodes
and edges, and the request/collection/environment objects handed over by
the repository collaborator. JSON uses camelCase field names; Python code
uses the snake_case attribute names.
"""

import copy
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from flowrunner.utils.errors import FlowConfigurationError


class _Document(BaseModel):
    """Base for all document models."""

    class Config:
        populate_by_name = True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the camelCase JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Requests, responses, collections, environments
# =============================================================================

HttpMethod = Literal['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS']
AuthType = Literal['none', 'bearer', 'basic', 'apiKey', 'oauth2', 'digest']
BodyType = Literal['none', 'raw', 'form-data', 'x-www-form-urlencoded', 'binary']


class KeyValue(_Document):
    """Header or query parameter row."""
    id: Optional[str] = None
    key: str = ''
    value: str = ''
    enabled: bool = True


class ApiKeyItem(KeyValue):
    location: Literal['header', 'query', 'cookie'] = 'header'


class AuthConfig(_Document):
    type: AuthType = 'none'
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_keys: List[ApiKeyItem] = Field(default_factory=list, alias='apiKeys')
    oauth2_access_token: Optional[str] = Field(None, alias='oauth2AccessToken')


class FormDataItem(_Document):
    id: Optional[str] = None
    key: str = ''
    value: str = ''
    type: Literal['text', 'file'] = 'text'
    file_name: Optional[str] = Field(None, alias='fileName')
    file_content: Optional[str] = Field(None, alias='fileContent')
    file_mime_type: Optional[str] = Field(None, alias='fileMimeType')
    enabled: bool = True


class RequestBody(_Document):
    type: BodyType = 'none'
    content: str = ''
    raw_type: Optional[str] = Field(None, alias='rawType')
    form_data: List[FormDataItem] = Field(default_factory=list, alias='formData')
    binary_content: Optional[str] = Field(None, alias='binaryContent')
    binary_mime_type: Optional[str] = Field(None, alias='binaryMimeType')


class HttpRequest(_Document):
    """A fully described HTTP request, as built by the request builder."""
    id: str = ''
    name: str = ''
    method: HttpMethod = 'GET'
    url: str
    query_params: List[KeyValue] = Field(default_factory=list, alias='queryParams')
    headers: List[KeyValue] = Field(default_factory=list)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    body: RequestBody = Field(default_factory=RequestBody)
    pre_request_script: Optional[str] = Field(None, alias='preRequestScript')
    post_request_script: Optional[str] = Field(None, alias='postRequestScript')


class HttpResponse(_Document):
    """Outcome of one HTTP call. A transport failure has status 0 and an error."""
    status: int
    status_text: str = Field('', alias='statusText')
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ''
    body_type: Literal['json', 'text'] = Field('text', alias='bodyType')
    time_ms: int = Field(0, alias='timeMs')
    size_bytes: int = Field(0, alias='sizeBytes')
    error: Optional[str] = None


class Collection(_Document):
    id: str
    name: str = ''
    description: Optional[str] = None
    requests: List[HttpRequest] = Field(default_factory=list)

    def find_request(self, request_id: str) -> Optional[HttpRequest]:
        for request in self.requests:
            if request.id == request_id:
                return request
        return None


class EnvironmentVariable(_Document):
    id: Optional[str] = None
    key: str
    value: str = ''
    enabled: bool = True


class Environment(_Document):
    id: str
    name: str = ''
    variables: List[EnvironmentVariable] = Field(default_factory=list)

    def enabled_variables(self) -> Dict[str, str]:
        """Key/value map of the enabled variables; later rows win."""
        return {v.key: v.value for v in self.variables if v.enabled}


# =============================================================================
# Flow nodes
# =============================================================================

class XY(_Document):
    x: float = 0
    y: float = 0


class _Node(_Document):
    id: str
    position: Optional[XY] = None


class StartNode(_Node):
    type: Literal['start'] = 'start'


class EndNode(_Node):
    type: Literal['end'] = 'end'


class CollectionRequestRef(_Document):
    kind: Literal['collectionRequest'] = 'collectionRequest'
    collection_id: str = Field(alias='collectionId')
    request_id: str = Field(alias='requestId')


class AdhocRequestRef(_Document):
    kind: Literal['adhoc'] = 'adhoc'
    request: HttpRequest


RequestRef = Annotated[
    Union[CollectionRequestRef, AdhocRequestRef],
    Field(discriminator='kind'),
]


class RequestNodeData(_Document):
    request_ref: RequestRef = Field(alias='requestRef')
    name: Optional[str] = None
    save_response_as: Optional[str] = Field(None, alias='saveResponseAs')


class RequestNode(_Node):
    type: Literal['request'] = 'request'
    data: RequestNodeData


class ExtractNodeData(_Document):
    source: Literal['lastResponseBody', 'flowVar'] = Field('lastResponseBody', alias='from')
    flow_var_name: Optional[str] = Field(None, alias='flowVarName')
    json_path: str = Field('', alias='jsonPath')
    to_flow_var: str = Field(alias='toFlowVar')


class ExtractNode(_Node):
    type: Literal['extract'] = 'extract'
    data: ExtractNodeData


class ConditionLeft(_Document):
    kind: Literal['flowVar', 'lastStatus', 'lastResponseBodyPath'] = 'flowVar'
    value: str = ''


class ConditionRight(_Document):
    kind: Literal['literal', 'flowVar'] = 'literal'
    value: Any = ''


class ConditionNodeData(_Document):
    left: ConditionLeft
    # Left open: an unknown operator evaluates to False instead of failing validation
    op: str
    right: ConditionRight


class ConditionNode(_Node):
    type: Literal['condition'] = 'condition'
    data: ConditionNodeData


class SetVarNodeData(_Document):
    key: str
    value_template: str = Field('', alias='valueTemplate')


class SetVarNode(_Node):
    type: Literal['setVar'] = 'setVar'
    data: SetVarNodeData


class DelayNodeData(_Document):
    ms: int = Field(0, ge=0)


class DelayNode(_Node):
    type: Literal['delay'] = 'delay'
    data: DelayNodeData


class LogNodeData(_Document):
    message_template: str = Field('', alias='messageTemplate')


class LogNode(_Node):
    type: Literal['log'] = 'log'
    data: LogNodeData


class LoopNodeData(_Document):
    array_var: str = Field(alias='arrayVar')
    item_var: str = Field(alias='itemVar')
    index_var: Optional[str] = Field(None, alias='indexVar')


class LoopNode(_Node):
    type: Literal['loop'] = 'loop'
    data: LoopNodeData


class ParallelNodeData(_Document):
    branches: int = 2


class ParallelNode(_Node):
    type: Literal['parallel'] = 'parallel'
    data: ParallelNodeData = Field(default_factory=ParallelNodeData)


class MapNodeData(_Document):
    input_var: str = Field(alias='inputVar')
    transform_script: str = Field(alias='transformScript')
    output_var: str = Field(alias='outputVar')


class MapNode(_Node):
    type: Literal['map'] = 'map'
    data: MapNodeData


class ScriptNodeData(_Document):
    script: str = ''


class ScriptNode(_Node):
    type: Literal['script'] = 'script'
    data: ScriptNodeData


class ErrorHandlerNode(_Node):
    type: Literal['errorHandler'] = 'errorHandler'
    data: Dict[str, Any] = Field(default_factory=dict)


FlowNode = Annotated[
    Union[
        StartNode, EndNode, RequestNode, ExtractNode, ConditionNode,
        SetVarNode, DelayNode, LogNode, LoopNode, ParallelNode,
        MapNode, ScriptNode, ErrorHandlerNode,
    ],
    Field(discriminator='type'),
]

NODE_TYPES = (
    'start', 'end', 'request', 'extract', 'condition', 'setVar', 'delay',
    'log', 'loop', 'parallel', 'map', 'script', 'errorHandler',
)


class FlowEdge(_Document):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias='sourceHandle')
    target_handle: Optional[str] = Field(None, alias='targetHandle')


# =============================================================================
# Flow
# =============================================================================

class Flow(_Document):
    """A saved workflow definition: nodes, edges and declared variables."""
    id: str
    name: str = ''
    description: Optional[str] = None
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    environment_id: Optional[str] = Field(None, alias='environmentId')
    version: int = 1

    def initial_variables(self) -> Dict[str, Any]:
        """
        Flow variables to seed a run with.

        A declared variable is either a bare value or a
        {"value": ..., "description": ...} record.
        """
        seeded = {}
        for name, declared in self.variables.items():
            if isinstance(declared, dict) and 'value' in declared \
                    and set(declared) <= {'value', 'description'}:
                declared = declared['value']
            seeded[name] = copy.deepcopy(declared)
        return seeded

    def get_node(self, node_id: str):
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        """Outgoing edges of a node, in document order."""
        return [e for e in self.edges if e.source == node_id]

    def start_nodes(self) -> list:
        return [n for n in self.nodes if n.type == 'start']


def parse_flow(document: Dict[str, Any]) -> Flow:
    """
    Validate a raw flow document.

    Raises:
        FlowConfigurationError: if the document does not describe a valid flow
    """
    try:
        return Flow.model_validate(document)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise FlowConfigurationError(
            'Invalid flow document',
            details={'errors': errors}
        ) from e

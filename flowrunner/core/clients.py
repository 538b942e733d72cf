"""
HTTP Client

Default HttpExecutor used by request nodes. Wraps httpx with the
request-builder conventions (enabled rows only, auth schemes, body types)
and standardized responses: non-2xx statuses are returned as-is and
transport failures come back as status 0 with an error message.
"""

import base64
import json
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .cancellation import CancellationToken
from .models import AuthConfig, HttpRequest, HttpResponse, KeyValue, RequestBody
from flowrunner.services.logging_service import get_logger, LogSource

logger = get_logger(__name__, LogSource.HTTP)

RAW_CONTENT_TYPES = {
    'json': 'application/json',
    'xml': 'application/xml',
    'html': 'text/html',
    'text': 'text/plain',
    'javascript': 'application/javascript',
    'graphql': 'application/graphql',
    'yaml': 'application/x-yaml',
}

_BODYLESS_METHODS = ('GET', 'HEAD')


def _decode_data_url(content: str) -> bytes:
    """Decode a 'data:<mime>;base64,<payload>' string (or bare base64)."""
    payload = content.split(',', 1)[1] if ',' in content else content
    return base64.b64decode(payload)


class HttpxRequestExecutor:
    """
    Async HTTP executor backed by httpx.

    Usage:
        executor = HttpxRequestExecutor(timeout=10)
        response = await executor.execute(request, token)
    """

    def __init__(self, timeout: float = 30.0, verify_ssl: bool = True,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            timeout: Request timeout in seconds
            verify_ssl: Verify SSL certificates
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.transport = transport

    @classmethod
    def from_settings(cls, settings) -> 'HttpxRequestExecutor':
        return cls(timeout=settings.http_timeout, verify_ssl=settings.http_verify_ssl)

    async def execute(self, request: HttpRequest,
                      cancellation: CancellationToken) -> HttpResponse:
        """
        Issue the request, aborting it if the run is cancelled.

        Raises:
            FlowCancelled: if the token fires while the call is in flight
        """
        start = time.monotonic()
        try:
            return await cancellation.guard(self._send(request, start))
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning(
                f"Request failed: {request.method} {request.url} - {e}",
                category='request',
                duration_ms=elapsed,
            )
            return HttpResponse(
                status=0,
                status_text='Error',
                headers={},
                body='',
                body_type='text',
                time_ms=elapsed,
                size_bytes=0,
                error=str(e) or type(e).__name__,
            )

    async def _send(self, request: HttpRequest, start: float) -> HttpResponse:
        params = self.build_query(request.query_params, request.auth)
        headers = self.build_headers(request.headers, request.auth, request.body.type)
        body_kwargs, body_headers = self.build_body(request.body)
        headers.update(body_headers)

        if request.method in _BODYLESS_METHODS:
            body_kwargs = {}

        async with httpx.AsyncClient(verify=self.verify_ssl, timeout=self.timeout,
                                     transport=self.transport) as client:
            response = await client.request(
                method=request.method,
                url=request.url,
                params=params or None,
                headers=headers,
                **body_kwargs
            )

        elapsed = int((time.monotonic() - start) * 1000)
        text = response.text

        body_type = 'text'
        try:
            json.loads(text)
            body_type = 'json'
        except ValueError:
            pass

        logger.debug(
            f"{request.method} {request.url} -> {response.status_code}",
            category='request',
            status_code=response.status_code,
            duration_ms=elapsed,
        )

        return HttpResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            body=text,
            body_type=body_type,
            time_ms=elapsed,
            size_bytes=len(text.encode('utf-8')),
        )

    @staticmethod
    def build_query(query_params: List[KeyValue], auth: AuthConfig) -> List[Tuple[str, str]]:
        """Enabled query rows plus API keys placed in the query string."""
        params = [(p.key, p.value) for p in query_params if p.enabled and p.key]
        if auth.type == 'apiKey':
            params.extend(
                (k.key, k.value) for k in auth.api_keys
                if k.enabled and k.location == 'query'
            )
        return params

    @staticmethod
    def build_headers(headers: List[KeyValue], auth: AuthConfig, body_type: str) -> Dict[str, str]:
        """Enabled header rows, the Authorization header, default content types."""
        result = {h.key: h.value for h in headers if h.enabled and h.key}

        if auth.type == 'bearer' and auth.token:
            result['Authorization'] = f'Bearer {auth.token}'
        elif auth.type in ('basic', 'digest') and auth.username and auth.password:
            encoded = base64.b64encode(f'{auth.username}:{auth.password}'.encode()).decode()
            result['Authorization'] = f'Basic {encoded}'
        elif auth.type == 'oauth2' and auth.oauth2_access_token:
            result['Authorization'] = f'Bearer {auth.oauth2_access_token}'
        elif auth.type == 'apiKey':
            for k in auth.api_keys:
                if k.enabled and k.location == 'header':
                    result[k.key] = k.value

        if body_type == 'raw' and 'Content-Type' not in result:
            result['Content-Type'] = 'application/json'
        elif body_type == 'x-www-form-urlencoded' and 'Content-Type' not in result:
            result['Content-Type'] = 'application/x-www-form-urlencoded'

        return result

    @staticmethod
    def build_body(body: RequestBody) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Translate the request body into httpx keyword arguments.

        Returns:
            (kwargs for client.request, headers the body dictates)
        """
        headers: Dict[str, str] = {}

        if body.type == 'raw':
            headers['Content-Type'] = RAW_CONTENT_TYPES.get(body.raw_type or 'json', 'text/plain')
            return {'content': body.content}, headers

        if body.type == 'x-www-form-urlencoded':
            fields = [(item.key, item.value) for item in body.form_data
                      if item.enabled and item.key]
            headers['Content-Type'] = 'application/x-www-form-urlencoded'
            return {'data': dict(fields)}, headers

        if body.type == 'form-data':
            files = []
            for item in body.form_data:
                if not (item.enabled and item.key):
                    continue
                if item.type == 'file' and item.file_content and item.file_name:
                    files.append((item.key, (
                        item.file_name,
                        _decode_data_url(item.file_content),
                        item.file_mime_type or 'application/octet-stream',
                    )))
                else:
                    files.append((item.key, (None, item.value)))
            # httpx sets the multipart boundary header itself
            return ({'files': files} if files else {}), headers

        if body.type == 'binary' and body.binary_content:
            headers['Content-Type'] = body.binary_mime_type or 'application/octet-stream'
            return {'content': _decode_data_url(body.binary_content)}, headers

        return {}, headers

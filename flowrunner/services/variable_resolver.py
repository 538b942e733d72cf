"""
Variable Resolver

Resolves {{variable}} template syntax in node parameters and navigates
parsed JSON values with dot-separated paths.

Syntax:
    {{token}}           - flow variable, falling back to the environment
    {{ base_url }}      - surrounding whitespace is ignored
    {{missing}}         - left verbatim when neither scope defines it
"""

import json
import math
import re
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


# Pattern to match {{variable}} references
VARIABLE_PATTERN = re.compile(r'\{\{([^}]+)\}\}')

_MISSING = object()


def stringify(value: Any) -> str:
    """
    Render a flow value the way templates and string comparisons see it.

    None -> 'null', booleans -> 'true'/'false', integral floats without
    a trailing '.0', lists and dicts as JSON, everything else via str().
    """
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        if math.isnan(value):
            return 'NaN'
        if math.isinf(value):
            return 'Infinity' if value > 0 else '-Infinity'
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


class VariableResolver:
    """
    Resolves variable references against one run's scopes.

    Lookup order is flow variables first, then environment variables.
    Both mappings are read live, so values set by earlier nodes are seen.
    """

    def __init__(self, flow_vars: Mapping[str, Any], env_vars: Optional[Mapping[str, str]] = None):
        self.flow_vars = flow_vars
        self.env_vars = env_vars or {}

    def lookup(self, name: str) -> Any:
        """Value of a variable, or the module sentinel when undefined."""
        if name in self.flow_vars:
            return self.flow_vars[name]
        if name in self.env_vars:
            return self.env_vars[name]
        return _MISSING

    def resolve(self, value: Any) -> Any:
        """
        Resolve all variable references in a value.

        Args:
            value: String, dict, list, or primitive to resolve

        Returns:
            Value with all {{variable}} references replaced
        """
        if isinstance(value, str):
            return self.resolve_string(value)
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(item) for item in value]
        else:
            return value

    def resolve_string(self, text: str) -> str:
        """Substitute every placeholder in text; unknown names stay as {{name}}."""
        if not text or '{{' not in text:
            return text

        def replace_match(match):
            name = match.group(1).strip()
            value = self.lookup(name)
            if value is _MISSING:
                return '{{' + name + '}}'
            return stringify(value)

        return VARIABLE_PATTERN.sub(replace_match, text)


def resolve_template(template: str, context, env_vars: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve a template against a run context.

    Args:
        template: Text containing {{name}} placeholders
        context: ExecutionContext (or anything with a flow_vars mapping)
        env_vars: Static environment variables

    Returns:
        The substituted string
    """
    return VariableResolver(context.flow_vars, env_vars).resolve_string(template)


def extract_json_path(obj: Any, path: str) -> Any:
    """
    Navigate a dot-separated path through a parsed JSON value.

    "a.b.1" on {"a": {"b": [10, 20, 30]}} -> 20

    Segments against a list must be non-negative integer indexes. A missing
    key, a bad index, or a scalar/None midway all yield None.
    """
    if not path:
        return obj

    current = obj
    for segment in path.split('.'):
        if current is None:
            return None

        if isinstance(current, list):
            if not (segment.isascii() and segment.isdigit()):
                return None
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
            continue

        if not isinstance(current, dict):
            return None

        current = current.get(segment)

    return current


def parse_json_or_text(text: Optional[str]) -> Any:
    """JSON-decode a response body, falling back to the raw text."""
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def env_map(variables: Dict[str, str]) -> Mapping[str, str]:
    """Read-only view used for environment lookups during a run."""
    return MappingProxyType(dict(variables))

"""
Script Executor

Runs user-authored Python snippets for map, script and pre/post-request
hooks against an explicit set of bindings.

Restrictions:
    - only a small set of safe builtins is available (no open, no __import__)
    - import statements are rejected
    - names and attributes starting with an underscore are rejected
    - frame, generator and traceback attributes (gi_*, f_*, tb_*, ...) are
      rejected, as are str.format and str.format_map
    - string literals starting with a double underscore are rejected
    - a script past its timeout, or whose abort event is set, is stopped
      at its next line
A failing or rejected script never raises out of run(); the failure is
reported in the returned ScriptResult.

Modes:
    expression  - the code must be a single expression; its value is returned
    statements  - the code is executed; the value of `result` is returned
    auto        - expression when the code parses as one, otherwise statements
"""

import ast
import json
import sys
import threading
import time
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from .logging_service import get_logger, LogSource
from .variable_resolver import stringify

logger = get_logger(__name__, LogSource.SCRIPT)

RESULT_NAME = 'result'
SCRIPT_FILENAME = '<flow-script>'

# Introspection attributes of frames, generators, coroutines and tracebacks
DENIED_ATTRIBUTE_PREFIXES = ('gi_', 'cr_', 'ag_', 'f_', 'tb_')
DENIED_ATTRIBUTES = frozenset(('format', 'format_map'))

SAFE_BUILTINS = {
    'abs': abs, 'all': all, 'any': any, 'bool': bool, 'dict': dict,
    'enumerate': enumerate, 'filter': filter, 'float': float, 'int': int,
    'isinstance': isinstance, 'len': len, 'list': list, 'map': map,
    'max': max, 'min': min, 'range': range, 'reversed': reversed,
    'round': round, 'set': set, 'sorted': sorted, 'str': str, 'sum': sum,
    'tuple': tuple, 'zip': zip,
    'Exception': Exception, 'ValueError': ValueError,
    'KeyError': KeyError, 'TypeError': TypeError,
}


class ScriptRejected(ValueError):
    """The script uses a construct the sandbox does not allow."""


class ScriptInterrupted(RuntimeError):
    """The script ran past its timeout or was aborted."""


@dataclass
class ScriptResult:
    """Outcome of one script invocation."""
    success: bool
    value: Any = None
    error: Optional[str] = None
    logs: List[Tuple[str, str]] = field(default_factory=list)


class ScriptConsole:
    """
    Logging sink exposed to scripts as `console` (and `print`).

    Lines are buffered as (level, message) and handed back with the result;
    the engine forwards them to the run log once the script returns.
    """

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self.entries: List[Tuple[str, str]] = []

    def _emit(self, level: str, args) -> None:
        if len(self.entries) < self.max_entries:
            self.entries.append((level, ' '.join(stringify(a) for a in args)))

    def log(self, *args):
        self._emit('info', args)

    def info(self, *args):
        self._emit('info', args)

    def warn(self, *args):
        self._emit('warn', args)

    warning = warn

    def error(self, *args):
        self._emit('error', args)


class _SafetyChecker(ast.NodeVisitor):

    def visit_Import(self, node):
        raise ScriptRejected('import statements are not allowed')

    def visit_ImportFrom(self, node):
        raise ScriptRejected('import statements are not allowed')

    def visit_Attribute(self, node):
        attr = node.attr
        if (attr.startswith('_') or attr.startswith(DENIED_ATTRIBUTE_PREFIXES)
                or attr in DENIED_ATTRIBUTES):
            raise ScriptRejected(f'access to attribute "{attr}" is not allowed')
        self.generic_visit(node)

    def visit_Name(self, node):
        if node.id.startswith('_'):
            raise ScriptRejected(f'access to name "{node.id}" is not allowed')
        self.generic_visit(node)

    def visit_Constant(self, node):
        if isinstance(node.value, str) and node.value.startswith('__'):
            raise ScriptRejected(f'string literal "{node.value}" is not allowed')


class _Watchdog:
    """
    Trace function that stops a script at its next line once the deadline
    passes or the abort event is set. Only frames of the script are traced.
    """

    def __init__(self, timeout: Optional[float], abort: Optional[threading.Event]):
        self.deadline = time.monotonic() + timeout if timeout else None
        self.abort = abort

    def check(self):
        if self.abort is not None and self.abort.is_set():
            raise ScriptInterrupted('Script aborted')
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ScriptInterrupted('Script timed out')

    def trace(self, frame, event, arg):
        if frame.f_code.co_filename != SCRIPT_FILENAME:
            return None
        self.check()
        return self.trace_lines

    def trace_lines(self, frame, event, arg):
        if event == 'line':
            self.check()
        return self.trace_lines


class ScriptExecutor:
    """
    Sandboxed Python script runner.

    Usage:
        scripts = ScriptExecutor()
        result = scripts.run('input * 2', {'input': 21}, mode='expression')
        result.value  # 42
    """

    def __init__(self, max_log_entries: int = 1000, timeout: Optional[float] = None):
        self.max_log_entries = max_log_entries
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> 'ScriptExecutor':
        timeout = settings.script_timeout_ms / 1000 if settings.script_timeout_ms else None
        return cls(max_log_entries=settings.script_max_log_entries, timeout=timeout)

    def new_console(self) -> ScriptConsole:
        return ScriptConsole(self.max_log_entries)

    def run(self, code: str, bindings: Dict[str, Any], mode: str = 'statements',
            console: Optional[ScriptConsole] = None,
            abort: Optional[threading.Event] = None) -> ScriptResult:
        """
        Execute a script.

        Args:
            code: Python source
            bindings: Names visible to the script
            mode: 'expression', 'statements' or 'auto'
            console: Console to capture output (a fresh one by default)
            abort: Event that stops the script at its next line when set

        Returns:
            ScriptResult with the value or the error message
        """
        console = console or self.new_console()

        if not code or not code.strip():
            return ScriptResult(success=True, logs=console.entries)

        watchdog = _Watchdog(self.timeout, abort)
        previous_trace = sys.gettrace()
        try:
            compiled, is_expression = self._compile(code.strip(), mode)

            namespace = dict(bindings)
            namespace.setdefault('console', console)
            namespace['print'] = console.log
            namespace['json'] = SimpleNamespace(loads=json.loads, dumps=json.dumps)
            namespace['__builtins__'] = SAFE_BUILTINS

            sys.settrace(watchdog.trace)
            try:
                if is_expression:
                    value = eval(compiled, namespace)
                else:
                    exec(compiled, namespace)
                    value = namespace.get(RESULT_NAME)
            finally:
                sys.settrace(previous_trace)

            return ScriptResult(success=True, value=value, logs=console.entries)

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.debug(f"Script execution error: {message}", category='script')
            return ScriptResult(success=False, error=message, logs=console.entries)

    def _compile(self, code: str, mode: str):
        if mode not in ('expression', 'statements', 'auto'):
            raise ValueError(f'Unknown script mode: {mode}')

        if mode in ('expression', 'auto'):
            try:
                tree = ast.parse(code, mode='eval')
            except SyntaxError:
                if mode == 'expression':
                    raise
            else:
                _SafetyChecker().visit(tree)
                return compile(tree, SCRIPT_FILENAME, 'eval'), True

        tree = ast.parse(code, mode='exec')
        _SafetyChecker().visit(tree)
        return compile(tree, SCRIPT_FILENAME, 'exec'), False

"""Flow runner services package - execution layer."""

from .logging_service import get_logger, LogSource, logging_service
from .variable_resolver import VariableResolver, resolve_template, extract_json_path
from .condition_evaluator import evaluate_condition
from .script_executor import ScriptExecutor, ScriptResult
from .flow_engine import FlowEngine, FlowRun, ExecutionCallbacks
from .run_coordinator import RunCoordinator

__all__ = [
    'get_logger',
    'LogSource',
    'logging_service',
    'VariableResolver',
    'resolve_template',
    'extract_json_path',
    'evaluate_condition',
    'ScriptExecutor',
    'ScriptResult',
    'FlowEngine',
    'FlowRun',
    'ExecutionCallbacks',
    'RunCoordinator',
]

"""
Node Executors Package

Contains executor implementations for each node type a flow can use.
"""

from .base import NodeExecutor, NodeOutcome
from .control import (
    StartExecutor, EndExecutor, ConditionExecutor, DelayExecutor,
    LoopExecutor, ParallelExecutor, ErrorHandlerExecutor,
)
from .data import ExtractExecutor, SetVarExecutor, LogExecutor
from .request import RequestExecutor, resolve_request
from .scripting import MapExecutor, ScriptNodeExecutor

EXECUTOR_CLASSES = (
    StartExecutor,
    EndExecutor,
    RequestExecutor,
    ExtractExecutor,
    ConditionExecutor,
    SetVarExecutor,
    DelayExecutor,
    LogExecutor,
    LoopExecutor,
    ParallelExecutor,
    MapExecutor,
    ScriptNodeExecutor,
    ErrorHandlerExecutor,
)


def build_default_executors() -> dict:
    """Fresh registry mapping every built-in node type to its executor."""
    return {cls.node_type: cls() for cls in EXECUTOR_CLASSES}


__all__ = [
    'NodeExecutor',
    'NodeOutcome',
    'StartExecutor',
    'EndExecutor',
    'RequestExecutor',
    'ExtractExecutor',
    'ConditionExecutor',
    'SetVarExecutor',
    'DelayExecutor',
    'LogExecutor',
    'LoopExecutor',
    'ParallelExecutor',
    'MapExecutor',
    'ScriptNodeExecutor',
    'ErrorHandlerExecutor',
    'EXECUTOR_CLASSES',
    'build_default_executors',
    'resolve_request',
]

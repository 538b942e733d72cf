"""Flow runner utilities package."""

from .errors import (
    AppError,
    NotFoundError,
    FlowConfigurationError,
    NodeExecutionError,
    InvalidStateTransition,
    FlowCancelled,
)
from .time import now_utc, now_ms, duration_ms

__all__ = [
    'AppError',
    'NotFoundError',
    'FlowConfigurationError',
    'NodeExecutionError',
    'InvalidStateTransition',
    'FlowCancelled',
    'now_utc',
    'now_ms',
    'duration_ms',
]

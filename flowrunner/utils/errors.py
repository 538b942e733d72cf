"""
Custom exception classes for standardized error handling.

All flow errors inherit from AppError and include:
- code: Machine-readable error code (e.g., 'COLLECTION_NOT_FOUND')
- message: Human-readable error message
- details: Optional structured context (node id, variable name, ...)

FlowCancelled sits outside the hierarchy. A cancelled run ends as
'stopped' and its interrupted node is never reported as failed.
"""


class AppError(Exception):
    """Base application error class."""

    def __init__(self, code: str, message: str, details: dict = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert error to dictionary for JSON output."""
        result = {
            'code': self.code,
            'message': self.message,
        }
        if self.details:
            result['details'] = self.details
        return result


class NotFoundError(AppError):
    """Referenced collection, request or environment does not exist."""

    def __init__(self, resource: str, identifier: str = None):
        message = f'{resource} not found'
        if identifier:
            message = f'{resource} {identifier} not found'
        super().__init__(
            code=f'{resource.upper().replace(" ", "_")}_NOT_FOUND',
            message=message,
            details={'id': identifier} if identifier else {}
        )


class FlowConfigurationError(AppError):
    """The flow document cannot be executed as configured."""

    def __init__(self, message: str, node_id: str = None, details: dict = None):
        super().__init__(
            code='FLOW_CONFIGURATION_ERROR',
            message=message,
            details=details or {}
        )
        if node_id:
            self.details['node_id'] = node_id


class NodeExecutionError(AppError):
    """A node failed while running (missing input, script failure, ...)."""

    def __init__(self, message: str, node_id: str = None, details: dict = None):
        super().__init__(
            code='NODE_EXECUTION_ERROR',
            message=message,
            details=details or {}
        )
        if node_id:
            self.details['node_id'] = node_id


class InvalidStateTransition(AppError):
    """Run status change that the run state machine does not allow."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            code='INVALID_STATE_TRANSITION',
            message=f'Cannot move run from {current} to {requested}',
            details={'current': current, 'requested': requested}
        )


class FlowCancelled(Exception):
    """Raised at a suspension point once the run has been cancelled."""

    def __init__(self, message: str = 'Flow execution stopped'):
        super().__init__(message)
        self.message = message

"""
Controller Exceptions

Error taxonomy shared by the chain engine, the store and the API layer.
"""

from typing import Any, Dict, List, Optional


class ControllerError(Exception):
    """Base class for all controller errors"""
    pass


class ChainValidationError(ControllerError):
    """Raised when a chain definition is invalid (rejected before any step runs)"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class TemplateResolutionError(ChainValidationError):
    """Raised when a template is malformed (unbalanced or empty {{ }} token)"""
    pass


class StepExecutionError(ControllerError):
    """Raised inside the step executor; always normalized into a failed StepResult"""
    pass


class RoutingCycleError(ControllerError):
    """Raised when a run exceeds its routing jump budget"""

    def __init__(self, jumps: int, limit: int, last_target: Any = None):
        super().__init__(
            f"Routing jump limit exceeded ({jumps} > {limit}), last target: {last_target}"
        )
        self.jumps = jumps
        self.limit = limit
        self.last_target = last_target


class ExecutionCancelledError(ControllerError):
    """Raised when a run is cancelled through its cancellation event"""
    pass


class ChainNotFoundError(ControllerError):
    """Raised when a chain or execution does not exist or belongs to another user"""
    pass


class PersistenceError(ControllerError):
    """Raised when the chain store fails to read or write"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}

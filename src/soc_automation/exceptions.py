"""Exception taxonomy for the automation core."""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Structured error kinds carried by failed action results."""
    INVALID_PARAMETERS = "invalid_parameters"
    PERMISSION_DENIED = "permission_denied"
    ACTION_NOT_FOUND = "action_not_found"
    EXTERNAL_CALL_FAILED = "external_call_failed"
    TIMEOUT = "timeout"


class AutomationError(Exception):
    """Base exception for automation core errors."""

    error_code: Optional[ErrorCode] = None


class ActionNotFoundError(AutomationError):
    """Raised when an action name is not registered."""

    error_code = ErrorCode.ACTION_NOT_FOUND

    def __init__(self, action_name: str) -> None:
        super().__init__(f"Action '{action_name}' not found")
        self.action_name = action_name


class PermissionDeniedError(AutomationError):
    """Raised when an action refuses to run for the given context."""

    error_code = ErrorCode.PERMISSION_DENIED

    def __init__(self, action_name: str) -> None:
        super().__init__(f"Insufficient permissions to execute action '{action_name}'")
        self.action_name = action_name


class InvalidParametersError(AutomationError):
    """Raised when parameters do not satisfy an action's schema."""

    error_code = ErrorCode.INVALID_PARAMETERS

    def __init__(self, action_name: str, errors: list[dict[str, Any]]) -> None:
        summary = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())) or '<root>'}: {e.get('msg', '')}"
            for e in errors
        )
        super().__init__(f"Invalid parameters for action '{action_name}': {summary}")
        self.action_name = action_name
        self.errors = errors


class ExternalCallFailedError(AutomationError):
    """Raised by actions when a third-party system call fails."""

    error_code = ErrorCode.EXTERNAL_CALL_FAILED

    def __init__(
        self,
        message: str,
        service: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.retryable = retryable
        self.original_error = original_error


class ActionTimeoutError(ExternalCallFailedError):
    """Raised when an action exceeds its time budget."""

    error_code = ErrorCode.TIMEOUT

    def __init__(self, action_name: str, timeout: float) -> None:
        super().__init__(
            f"Action '{action_name}' timed out after {timeout:g}s",
            service=action_name,
            retryable=True,
        )
        self.timeout = timeout


class DuplicateActionError(AutomationError):
    """Raised when two actions are registered under the same name."""

    def __init__(self, action_name: str) -> None:
        super().__init__(f"Action with name '{action_name}' is already registered")
        self.action_name = action_name


class RegistryFrozenError(AutomationError):
    """Raised when the registry is mutated after startup."""


class ConditionEvaluationError(AutomationError):
    """Raised when a trigger condition cannot be evaluated."""

    def __init__(self, condition: Any, reason: str) -> None:
        super().__init__(f"Cannot evaluate condition {condition!r}: {reason}")
        self.condition = condition
        self.reason = reason


class PlaybookValidationError(AutomationError):
    """Raised when a playbook definition violates its invariants."""

"""
Base Action Interface

Defines the abstract interface that every automation action implements.
Actions are named, schema-validated units of external side effect that
playbooks invoke through the action registry.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from soc_automation.exceptions import ErrorCode
from soc_automation.store.models import ActionResult


class ActionCategory(str, Enum):
    """Action categories."""
    NOTIFICATION = "notification"
    REMEDIATION = "remediation"
    INVESTIGATION = "investigation"
    CLOUD = "cloud"
    AGENT = "agent"


@dataclass
class ActionContext:
    """
    Execution context passed to every action.

    Attributes:
        playbook_id: Playbook being executed, if any.
        execution_id: Execution record the action belongs to.
        organization_id: Tenant the action acts on behalf of.
        user_id: User who triggered the run (None for automatic triggers).
        data: Variables visible to the action (event data plus outputs of
            earlier steps).
        logger: structlog logger bound with execution identifiers.
    """
    playbook_id: Optional[str] = None
    execution_id: Optional[str] = None
    organization_id: Any = None
    user_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    logger: Any = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = structlog.get_logger("soc_automation.actions").bind(
                playbook_id=self.playbook_id,
                execution_id=self.execution_id,
                organization_id=self.organization_id,
            )


@dataclass
class ParameterValidation:
    """Outcome of validating raw parameters against an action schema."""
    success: bool
    params: Optional[BaseModel] = None
    errors: list[dict[str, Any]] = field(default_factory=list)


class BaseAction(ABC):
    """
    Abstract base class for automation actions.

    Subclasses declare ``name``, ``description``, ``category`` and a pydantic
    ``parameter_schema``, and implement ``execute``. The registry validates
    parameters and checks permissions before ``execute`` is called, so
    ``execute`` always receives a validated schema instance.
    """

    name: str = ""
    description: str = ""
    category: ActionCategory = ActionCategory.NOTIFICATION
    parameter_schema: type[BaseModel] = BaseModel
    # Per-action timeout override in seconds (None = registry default)
    timeout: Optional[float] = None

    def validate_parameters(self, params: dict[str, Any]) -> ParameterValidation:
        """
        Validate raw parameters against the action's schema.

        Args:
            params: Raw parameter mapping.

        Returns:
            ParameterValidation with the parsed model or pydantic diagnostics.
        """
        try:
            parsed = self.parameter_schema.model_validate(params)
        except ValidationError as e:
            return ParameterValidation(
                success=False,
                errors=json.loads(e.json(include_url=False)),
            )
        return ParameterValidation(success=True, params=parsed)

    def check_permissions(self, context: ActionContext) -> Union[bool, Awaitable[bool]]:
        """Check whether the action may run in this context. Allows by default."""
        return True

    @abstractmethod
    async def execute(self, params: Any, context: ActionContext) -> ActionResult:
        """
        Perform the action.

        Args:
            params: Validated instance of ``parameter_schema``.
            context: Execution context.

        Returns:
            ActionResult describing the outcome.

        Raises:
            ExternalCallFailedError: If the external system call fails.
        """
        ...

    async def close(self) -> None:
        """Release resources held by the action."""
        return None

    def schema_info(self) -> dict[str, Any]:
        """Read-only metadata describing the action for UIs and the API."""
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "schema": self.parameter_schema.model_json_schema(),
        }

    # === Result helpers ===

    def success(self, message: Optional[str] = None, data: Optional[dict[str, Any]] = None) -> ActionResult:
        return ActionResult.ok(message=message, data=data)

    def failure(
        self,
        error: str,
        data: Optional[dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.EXTERNAL_CALL_FAILED,
        abort_playbook: bool = False,
    ) -> ActionResult:
        return ActionResult.fail(
            error=error,
            error_code=error_code,
            data=data,
            abort_playbook=abort_playbook,
        )

    def log(self, context: ActionContext, message: str, level: str = "info", **kwargs: Any) -> None:
        """Log through the context logger with the action name attached."""
        if level == "warn":
            level = "warning"
        getattr(context.logger, level)(message, action=self.name, **kwargs)

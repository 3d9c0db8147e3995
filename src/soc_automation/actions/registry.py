"""
Action Registry

Holds every action by name and is the single dispatch point for action
execution. Lookup, permission checks, parameter validation and timeouts
are enforced here; failures come back as ActionResult values, never as
exceptions.
"""

import asyncio
import inspect
import threading
from email.message import EmailMessage
from typing import Any, Callable, Optional

import httpx
import structlog

from soc_automation.actions.base import ActionCategory, ActionContext, BaseAction
from soc_automation.config.settings import Settings
from soc_automation.exceptions import (
    ActionNotFoundError,
    ActionTimeoutError,
    AutomationError,
    DuplicateActionError,
    ErrorCode,
    InvalidParametersError,
    PermissionDeniedError,
    RegistryFrozenError,
)
from soc_automation.store.models import ActionResult

logger = structlog.get_logger(__name__)


class ActionRegistry:
    """
    Registry for automation actions.

    Registration happens at startup; ``freeze()`` then makes the registry
    read-only for the rest of the process lifetime.
    """

    def __init__(self, default_timeout: float = 30.0):
        """
        Initialize the action registry.

        Args:
            default_timeout: Seconds an action may run before it is failed
                with a timeout error.
        """
        self._actions: dict[str, BaseAction] = {}
        self._lock = threading.Lock()
        self._frozen = False
        self.default_timeout = default_timeout

    # === Registration ===

    def register(self, action: BaseAction) -> None:
        """
        Register an action.

        Raises:
            DuplicateActionError: If an action with the same name exists.
                The first registration stays active.
            RegistryFrozenError: If the registry has been frozen.
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(f"Cannot register '{action.name}': registry is frozen")
            if not action.name:
                raise ValueError(f"{type(action).__name__} has no name")
            if action.name in self._actions:
                raise DuplicateActionError(action.name)
            self._actions[action.name] = action
        logger.debug("Action registered", action=action.name, category=action.category.value)

    def unregister(self, action_name: str) -> None:
        """Remove an action. Unknown names are ignored."""
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(f"Cannot unregister '{action_name}': registry is frozen")
            self._actions.pop(action_name, None)

    def freeze(self) -> None:
        """Make the registry read-only."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # === Lookup ===

    def get_action(self, action_name: str) -> Optional[BaseAction]:
        return self._actions.get(action_name)

    def has_action(self, action_name: str) -> bool:
        return action_name in self._actions

    def action_names(self) -> list[str]:
        return list(self._actions)

    def get_actions_by_category(self, category: ActionCategory | str) -> list[BaseAction]:
        value = category.value if isinstance(category, ActionCategory) else category
        return [a for a in self._actions.values() if a.category.value == value]

    def get_action_schema(self, action_name: str) -> dict[str, Any]:
        """
        Get schema metadata for an action.

        Raises:
            ActionNotFoundError: If the action is not registered.
        """
        action = self.get_action(action_name)
        if action is None:
            raise ActionNotFoundError(action_name)
        return action.schema_info()

    def get_all_action_schemas(self) -> list[dict[str, Any]]:
        return [a.schema_info() for a in self._actions.values()]

    # === Execution ===

    async def execute(
        self,
        action_name: str,
        params: dict[str, Any],
        context: Optional[ActionContext] = None,
        timeout: Optional[float] = None,
    ) -> ActionResult:
        """
        Execute an action with permission and parameter checks.

        Args:
            action_name: Registered action name.
            params: Raw parameters; validated against the action schema.
            context: Execution context. A bare context is used if omitted.
            timeout: Override for the action's time budget in seconds.

        Returns:
            ActionResult. Failures carry an ``error_code``.
        """
        action = self.get_action(action_name)
        if action is None:
            error = ActionNotFoundError(action_name)
            logger.error("Action not found", action=action_name)
            return ActionResult.fail(str(error), error_code=error.error_code)

        context = context or ActionContext()

        try:
            permitted = action.check_permissions(context)
            if inspect.isawaitable(permitted):
                permitted = await permitted
        except Exception:
            logger.exception("Permission check failed", action=action_name)
            permitted = False
        if not permitted:
            error = PermissionDeniedError(action_name)
            logger.warning("Action permission denied", action=action_name, user_id=context.user_id)
            return ActionResult.fail(str(error), error_code=error.error_code)

        validation = action.validate_parameters(params or {})
        if not validation.success:
            error = InvalidParametersError(action_name, validation.errors)
            logger.warning("Invalid action parameters", action=action_name, errors=len(validation.errors))
            return ActionResult.fail(
                str(error),
                error_code=error.error_code,
                data={"errors": validation.errors},
            )

        budget = timeout or action.timeout or self.default_timeout
        try:
            result = await asyncio.wait_for(action.execute(validation.params, context), budget)
        except asyncio.TimeoutError:
            error = ActionTimeoutError(action_name, budget)
            logger.error("Action timed out", action=action_name, timeout=budget)
            return ActionResult.fail(str(error), error_code=error.error_code)
        except AutomationError as e:
            logger.error("Action failed", action=action_name, error=str(e))
            data = {"status_code": e.status_code} if getattr(e, "status_code", None) else None
            return ActionResult.fail(
                str(e),
                error_code=e.error_code or ErrorCode.EXTERNAL_CALL_FAILED,
                data=data,
            )
        except Exception as e:
            logger.exception("Action raised unexpectedly", action=action_name)
            return ActionResult.fail(
                f"Action '{action_name}' failed: {e}",
                error_code=ErrorCode.EXTERNAL_CALL_FAILED,
            )

        if not isinstance(result, ActionResult):
            logger.error("Action returned invalid result", action=action_name, type=type(result).__name__)
            return ActionResult.fail(
                f"Action '{action_name}' returned {type(result).__name__}, expected ActionResult",
                error_code=ErrorCode.EXTERNAL_CALL_FAILED,
            )
        return result

    async def close(self) -> None:
        """Close all action resources."""
        for action in self._actions.values():
            await action.close()


def create_default_registry(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
    email_sender: Optional[Callable[[EmailMessage], None]] = None,
) -> ActionRegistry:
    """
    Create a registry with all built-in actions.

    Args:
        settings: Application settings used by the actions.
        client: Optional HTTP client shared by all HTTP-backed actions.
        email_sender: Optional replacement for SMTP delivery.

    Returns:
        ActionRegistry (not yet frozen).
    """
    from soc_automation.actions.notification import (
        EmailNotificationAction,
        PushNotificationAction,
        SlackNotificationAction,
        TeamsNotificationAction,
        WebhookNotificationAction,
    )
    from soc_automation.actions.remediation import BlockIpAction, IsolateHostAction
    from soc_automation.actions.ticketing import CreateJiraTicketAction

    registry = ActionRegistry(default_timeout=settings.action_timeout)
    registry.register(EmailNotificationAction(settings, sender=email_sender))
    registry.register(SlackNotificationAction(settings, client))
    registry.register(TeamsNotificationAction(settings, client))
    registry.register(WebhookNotificationAction(settings, client))
    registry.register(PushNotificationAction(settings, client))
    registry.register(BlockIpAction(settings, client))
    registry.register(IsolateHostAction(settings, client))
    registry.register(CreateJiraTicketAction(settings, client))
    return registry

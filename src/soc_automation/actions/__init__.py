"""
Actions Module

Pluggable, schema-validated side effects invoked by playbooks and the
notification manager through the action registry.
"""

from soc_automation.actions.base import (
    ActionCategory,
    ActionContext,
    BaseAction,
    ParameterValidation,
)
from soc_automation.actions.registry import ActionRegistry, create_default_registry

__all__ = [
    "ActionCategory",
    "ActionContext",
    "BaseAction",
    "ParameterValidation",
    "ActionRegistry",
    "create_default_registry",
]

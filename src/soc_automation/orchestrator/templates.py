"""
Parameter Templates

Resolves ``{{ path }}`` placeholders in step parameters. A string that is
exactly one placeholder keeps the referenced value's type; placeholders
embedded in longer strings are substituted as text. Unknown placeholders
are left untouched.
"""

import json
import re
from typing import Any, Mapping

from soc_automation.orchestrator.conditions import MISSING, resolve_path


PLACEHOLDER = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")


def _to_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if value is None:
        return ""
    return str(value)


def render_string(template: str, variables: Mapping[str, Any]) -> Any:
    """Render one string template."""
    lone = PLACEHOLDER.fullmatch(template.strip())
    if lone:
        value = resolve_path(variables, lone.group(1))
        return template if value is MISSING else value

    def substitute(match: re.Match) -> str:
        value = resolve_path(variables, match.group(1))
        return match.group(0) if value is MISSING else _to_text(value)

    return PLACEHOLDER.sub(substitute, template)


def render(value: Any, variables: Mapping[str, Any]) -> Any:
    """
    Recursively render templates inside strings, lists and mappings.

    Args:
        value: Parameter value (any JSON-like structure).
        variables: Values placeholders resolve against.

    Returns:
        A new structure with placeholders resolved.
    """
    if isinstance(value, str):
        return render_string(value, variables)
    if isinstance(value, Mapping):
        return {k: render(v, variables) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render(v, variables) for v in value]
    return value

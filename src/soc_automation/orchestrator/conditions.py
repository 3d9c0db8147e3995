"""
Trigger Conditions

Evaluates playbook trigger conditions against event data. Supported forms:

- ``None`` / empty: always matches.
- Mapping filter: ``{"severity": ["high", "critical"], "category": "malware"}``.
  A list value means membership, a scalar means equality, and a mapping of
  operators (``{"gte": 5}``) applies each operator.
- List of ``{"field", "operator", "value"}`` conditions, all of which must hold.
- Expression string: ``"severity == 'critical' and tags.contains('ransomware')"``.
- A callable taking the event data and returning a bool.

Anything that cannot be evaluated raises ConditionEvaluationError.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from soc_automation.exceptions import ConditionEvaluationError


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def resolve_path(data: Any, path: str) -> Any:
    """
    Navigate a dotted path (``alert.source_ip``, ``steps.0.data``).

    Returns:
        The value, or MISSING if any segment is absent.
    """
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


class TriggerOperator(str, Enum):
    """Operators for condition evaluation."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    REGEX = "regex"
    IN = "in"
    EXISTS = "exists"


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return str(item) in container
    if isinstance(container, Mapping):
        return item in container
    if isinstance(container, Sequence):
        return item in container
    raise TypeError(f"cannot test membership in {type(container).__name__}")


def apply_operator(operator: TriggerOperator, actual: Any, expected: Any) -> bool:
    """Apply one operator. A missing field only satisfies ``exists: false``."""
    if operator == TriggerOperator.EXISTS:
        present = actual is not MISSING and actual is not None
        return present == bool(expected)

    if actual is MISSING or actual is None:
        return False

    if operator == TriggerOperator.EQ:
        return actual == expected
    elif operator == TriggerOperator.NE:
        return actual != expected
    elif operator == TriggerOperator.GT:
        return actual > expected
    elif operator == TriggerOperator.GTE:
        return actual >= expected
    elif operator == TriggerOperator.LT:
        return actual < expected
    elif operator == TriggerOperator.LTE:
        return actual <= expected
    elif operator == TriggerOperator.CONTAINS:
        return _contains(actual, expected)
    elif operator == TriggerOperator.REGEX:
        return re.search(str(expected), str(actual)) is not None
    elif operator == TriggerOperator.IN:
        return _contains(expected, actual)

    return False


@dataclass
class Condition:
    """A single field/operator/value test."""
    field: str
    operator: TriggerOperator
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        try:
            return cls(
                field=data["field"],
                operator=TriggerOperator(str(data.get("operator", "eq")).lower()),
                value=data.get("value"),
            )
        except (KeyError, ValueError) as e:
            raise ConditionEvaluationError(dict(data), f"malformed condition: {e}")

    def evaluate(self, data: Mapping[str, Any]) -> bool:
        return apply_operator(self.operator, resolve_path(data, self.field), self.value)


# === Expression strings ===

_TOKEN = re.compile(
    r"""\s*(?:
        (?P<number>-?\d+(?:\.\d+)?)
      | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<op>==|!=|>=|<=|>|<)
      | (?P<punct>[()\[\],])
      | (?P<name>[A-Za-z_][\w]*(?:\.[A-Za-z_\d][\w]*)*)
    )""",
    re.VERBOSE,
)

_COMPARISONS = {
    "==": TriggerOperator.EQ,
    "!=": TriggerOperator.NE,
    ">": TriggerOperator.GT,
    ">=": TriggerOperator.GTE,
    "<": TriggerOperator.LT,
    "<=": TriggerOperator.LTE,
}

_METHODS = {
    "contains": TriggerOperator.CONTAINS,
    "matches": TriggerOperator.REGEX,
}

_KEYWORDS = {"and", "or", "not", "in", "true", "false", "null", "none"}


def _tokenize(expression: str) -> list[tuple[str, Any]]:
    tokens: list[tuple[str, Any]] = []
    pos = 0
    text = expression.strip()
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if not match or match.end() == pos:
            raise ConditionEvaluationError(expression, f"unexpected input at position {pos}")
        pos = match.end()
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "number":
            tokens.append(("literal", float(value) if "." in value else int(value)))
        elif kind == "string":
            tokens.append(("literal", re.sub(r"\\(.)", r"\1", value[1:-1])))
        elif kind == "name" and value.lower() in _KEYWORDS:
            lowered = value.lower()
            if lowered in ("true", "false"):
                tokens.append(("literal", lowered == "true"))
            elif lowered in ("null", "none"):
                tokens.append(("literal", None))
            else:
                tokens.append(("keyword", lowered))
        else:
            tokens.append((kind, value))
    return tokens


class _ExpressionParser:
    """Recursive-descent evaluator for condition expressions."""

    def __init__(self, expression: str, data: Mapping[str, Any]):
        self.expression = expression
        self.data = data
        self.tokens = _tokenize(expression)
        self.pos = 0

    def error(self, reason: str) -> ConditionEvaluationError:
        return ConditionEvaluationError(self.expression, reason)

    def peek(self) -> tuple[str, Any]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else ("eof", None)

    def take(self, kind: str, value: Any = None) -> Any:
        tok_kind, tok_value = self.peek()
        if tok_kind != kind or (value is not None and tok_value != value):
            raise self.error(f"expected {value or kind}, got {tok_value!r}")
        self.pos += 1
        return tok_value

    def parse(self) -> bool:
        if not self.tokens:
            raise self.error("empty expression")
        result = self.parse_or()
        if self.peek()[0] != "eof":
            raise self.error(f"unexpected token {self.peek()[1]!r}")
        return result

    def parse_or(self) -> bool:
        result = self.parse_and()
        while self.peek() == ("keyword", "or"):
            self.pos += 1
            rhs = self.parse_and()
            result = result or rhs
        return result

    def parse_and(self) -> bool:
        result = self.parse_not()
        while self.peek() == ("keyword", "and"):
            self.pos += 1
            rhs = self.parse_not()
            result = result and rhs
        return result

    def parse_not(self) -> bool:
        if self.peek() == ("keyword", "not"):
            self.pos += 1
            return not self.parse_not()
        return self.parse_atom()

    def parse_atom(self) -> bool:
        kind, value = self.peek()
        if (kind, value) == ("punct", "("):
            self.pos += 1
            result = self.parse_or()
            self.take("punct", ")")
            return result
        if kind == "literal":
            self.pos += 1
            return bool(value)
        if kind != "name":
            raise self.error(f"unexpected token {value!r}")
        self.pos += 1
        return self.parse_predicate(value)

    def parse_predicate(self, name: str) -> bool:
        # Method call: path.contains('x')
        head, _, method = name.rpartition(".")
        if head and method in _METHODS and self.peek() == ("punct", "("):
            self.pos += 1
            argument = self.take("literal")
            self.take("punct", ")")
            return self.apply(_METHODS[method], resolve_path(self.data, head), argument)

        kind, value = self.peek()
        if kind == "op":
            self.pos += 1
            expected = self.take("literal")
            return self.apply(_COMPARISONS[value], resolve_path(self.data, name), expected)
        if (kind, value) == ("keyword", "in"):
            self.pos += 1
            return self.apply(TriggerOperator.IN, resolve_path(self.data, name), self.parse_list())

        actual = resolve_path(self.data, name)
        return actual is not MISSING and bool(actual)

    def parse_list(self) -> list[Any]:
        self.take("punct", "[")
        items: list[Any] = []
        while self.peek() != ("punct", "]"):
            items.append(self.take("literal"))
            if self.peek() == ("punct", ","):
                self.pos += 1
        self.take("punct", "]")
        return items

    def apply(self, operator: TriggerOperator, actual: Any, expected: Any) -> bool:
        try:
            return apply_operator(operator, actual, expected)
        except (TypeError, re.error) as e:
            raise self.error(str(e))


# === Entry point ===

def _evaluate_mapping(conditions: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    for path, expected in conditions.items():
        actual = resolve_path(data, path)
        if isinstance(expected, Mapping):
            for op, operand in expected.items():
                try:
                    operator = TriggerOperator(str(op).lower())
                except ValueError:
                    raise ConditionEvaluationError(dict(conditions), f"unknown operator '{op}'")
                if not apply_operator(operator, actual, operand):
                    return False
        elif isinstance(expected, (list, tuple, set, frozenset)):
            if actual is MISSING or actual not in expected:
                return False
        elif actual is MISSING or actual != expected:
            return False
    return True


def evaluate_conditions(conditions: Any, data: Mapping[str, Any]) -> bool:
    """
    Evaluate trigger conditions against event data.

    Args:
        conditions: Any supported condition form.
        data: Event data.

    Returns:
        True when the conditions hold.

    Raises:
        ConditionEvaluationError: If the conditions are malformed or cannot
            be evaluated against this data.
    """
    if conditions is None or conditions == {} or conditions == [] or conditions == "":
        return True

    try:
        if callable(conditions):
            return bool(conditions(data))
        if isinstance(conditions, str):
            return _ExpressionParser(conditions, data).parse()
        if isinstance(conditions, Mapping):
            return _evaluate_mapping(conditions, data)
        if isinstance(conditions, Sequence):
            parsed = [
                c if isinstance(c, Condition) else Condition.from_dict(c)
                for c in conditions
            ]
            return all(c.evaluate(data) for c in parsed)
    except ConditionEvaluationError:
        raise
    except Exception as e:
        raise ConditionEvaluationError(
            getattr(conditions, "__name__", conditions), f"{type(e).__name__}: {e}"
        )

    raise ConditionEvaluationError(conditions, f"unsupported condition type {type(conditions).__name__}")

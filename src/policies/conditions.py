"""Typed condition union shared by policies and automation rules.

Stored conditions are JSON mappings of ``field -> entry``. An entry is either a
bare value (equality) or ``{"operator": "eq|gt|lt|in", "value": ...}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

from autopilot_shared.errors import ValidationError, codes


@dataclass(frozen=True)
class Eq:
    value: Any


@dataclass(frozen=True)
class Gt:
    value: float


@dataclass(frozen=True)
class Lt:
    value: float


@dataclass(frozen=True)
class In:
    values: tuple[Any, ...]


Condition = Union[Eq, Gt, Lt, In]

OPERATORS = ("eq", "gt", "lt", "in")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_condition(field: str, raw: Any) -> Condition:
    """Parse one stored condition entry into a typed condition."""
    if not isinstance(raw, Mapping) or "operator" not in raw:
        return Eq(raw)
    operator = raw.get("operator")
    value = raw.get("value")
    if operator == "eq":
        return Eq(value)
    if operator in ("gt", "lt"):
        if not is_number(value):
            raise ValidationError(
                f"Condition '{field}' operator '{operator}' requires a numeric value.",
                code=codes.INVALID_CONDITION,
                metadata={"field": field, "operator": str(operator)},
            )
        return Gt(value) if operator == "gt" else Lt(value)
    if operator == "in":
        if not isinstance(value, (list, tuple)):
            raise ValidationError(
                f"Condition '{field}' operator 'in' requires a list value.",
                code=codes.INVALID_CONDITION,
                metadata={"field": field, "operator": "in"},
            )
        return In(tuple(value))
    raise ValidationError(
        f"Unknown condition operator '{operator}' for field '{field}'.",
        code=codes.INVALID_CONDITION,
        metadata={"field": field, "operator": str(operator)},
    )


def parse_conditions(raw: Mapping[str, Any] | None) -> dict[str, Condition]:
    """Parse a stored condition mapping, raising ValidationError on bad operators."""
    if not raw:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("Conditions must be a mapping.", code=codes.INVALID_CONDITION)
    return {field: parse_condition(field, entry) for field, entry in raw.items()}


def condition_holds(condition: Condition, actual: Any) -> bool:
    """Evaluate a single condition against a context value.

    Numeric comparisons against non-numeric or missing values do not match.
    """
    if isinstance(condition, Eq):
        return actual == condition.value
    if isinstance(condition, Gt):
        return is_number(actual) and actual > condition.value
    if isinstance(condition, Lt):
        return is_number(actual) and actual < condition.value
    if isinstance(condition, In):
        return actual in condition.values
    raise TypeError(f"Unsupported condition type: {type(condition).__name__}")


def conditions_hold(conditions: Mapping[str, Condition], context: Mapping[str, Any]) -> bool:
    """Return True when every condition holds against the context."""
    return all(
        condition_holds(condition, context.get(field))
        for field, condition in conditions.items()
    )


__all__ = [
    "Condition",
    "Eq",
    "Gt",
    "In",
    "Lt",
    "OPERATORS",
    "condition_holds",
    "conditions_hold",
    "is_number",
    "parse_condition",
    "parse_conditions",
]

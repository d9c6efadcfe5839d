"""
Edge condition language.

Grammar::

    condition := "true" | "false"
               | "exists(" key ")"
               | "eq(" key "," value ")"
               | "contains(" key "," value ")"
               | "not(" condition ")"
               | "and(" condition ("," condition)+ ")"
               | "or(" condition ("," condition)+ ")"

Values may be wrapped in single or double quotes. A key that was never
set makes ``exists``, ``eq`` and ``contains`` evaluate to False; there is
no stricter typing.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Union

from helmsman.domain.exceptions import ConditionSyntaxError

_CALL = re.compile(r"^(\w+)\s*\((.*)\)$", re.DOTALL)


# =============================================================================
# SYNTAX TREE
# =============================================================================


@dataclass(frozen=True)
class Literal:
    value: bool


@dataclass(frozen=True)
class Exists:
    key: str


@dataclass(frozen=True)
class Eq:
    key: str
    value: str


@dataclass(frozen=True)
class Contains:
    key: str
    value: str


@dataclass(frozen=True)
class Not:
    operand: "ConditionNode"


@dataclass(frozen=True)
class And:
    operands: tuple["ConditionNode", ...]


@dataclass(frozen=True)
class Or:
    operands: tuple["ConditionNode", ...]


ConditionNode = Union[Literal, Exists, Eq, Contains, Not, And, Or]


# =============================================================================
# PARSING
# =============================================================================


def split_top_level(args: str) -> list[str]:
    """Split on commas that sit outside parentheses and quoted strings."""
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    start = 0
    for i, char in enumerate(args):
        if char in ("'", '"') and (i == 0 or args[i - 1] != "\\"):
            if quote is None:
                quote = char
            elif char == quote:
                quote = None
            continue
        if quote is not None:
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(args[start:i])
            start = i + 1
    parts.append(args[start:])
    return parts


def _parens_balanced(args: str) -> bool:
    depth = 0
    quote: str | None = None
    for i, char in enumerate(args):
        if char in ("'", '"') and (i == 0 or args[i - 1] != "\\"):
            if quote is None:
                quote = char
            elif char == quote:
                quote = None
            continue
        if quote is not None:
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _unquote(arg: str) -> str:
    arg = arg.strip()
    if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in ("'", '"'):
        return arg[1:-1]
    return arg


def _key_value(operator: str, expr: str, args: str) -> tuple[str, str]:
    parts = split_top_level(args)
    if len(parts) != 2:
        raise ConditionSyntaxError(expr, f"{operator}() requires two arguments: key, value")
    key = parts[0].strip()
    if not key or "(" in key or ")" in key:
        raise ConditionSyntaxError(expr, f"{operator}() requires a key argument")
    return key, _unquote(parts[1])


def _parse(expr: str, source: str) -> ConditionNode:
    trimmed = expr.strip()
    if trimmed == "true":
        return Literal(True)
    if trimmed == "false":
        return Literal(False)

    match = _CALL.match(trimmed)
    if not match:
        raise ConditionSyntaxError(source, f"cannot parse '{trimmed}'")
    operator, args = match.group(1), match.group(2)
    if not _parens_balanced(args):
        raise ConditionSyntaxError(source, f"unbalanced parentheses in '{trimmed}'")

    if operator == "exists":
        key = args.strip()
        if not key or any(c in key for c in ",()"):
            raise ConditionSyntaxError(source, "exists() requires a single key argument")
        return Exists(key)
    if operator == "eq":
        return Eq(*_key_value(operator, source, args))
    if operator == "contains":
        return Contains(*_key_value(operator, source, args))
    if operator == "not":
        return Not(_parse(args, source))
    if operator in ("and", "or"):
        parts = split_top_level(args)
        if len(parts) < 2:
            raise ConditionSyntaxError(source, f"{operator}() requires at least two arguments")
        operands = tuple(_parse(part, source) for part in parts)
        return And(operands) if operator == "and" else Or(operands)
    raise ConditionSyntaxError(source, f"unknown operator '{operator}'")


@lru_cache(maxsize=256)
def parse_condition(expr: str) -> ConditionNode:
    """
    Parse a condition string into a syntax tree.

    Raises:
        ConditionSyntaxError: On any syntax error or unknown operator.
    """
    return _parse(expr, expr)


def validate_condition(expr: str) -> str | None:
    """Return an error message if ``expr`` does not parse, else None."""
    try:
        parse_condition(expr)
    except ConditionSyntaxError as e:
        return e.detail
    return None


# =============================================================================
# EVALUATION
# =============================================================================


def stringify(value: Any) -> str:
    """String form used for comparisons (``True`` -> ``"true"``, ``2.0`` -> ``"2"``)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list | tuple):
        return ",".join(stringify(v) for v in value)
    return str(value)


def evaluate_node(node: ConditionNode, state: Mapping[str, Any]) -> bool:
    match node:
        case Literal(value=value):
            return value
        case Exists(key=key):
            return state.get(key) is not None
        case Eq(key=key, value=value):
            if key not in state or state[key] is None:
                return False
            return stringify(state[key]) == value
        case Contains(key=key, value=value):
            collection = state.get(key)
            if not isinstance(collection, list | tuple | set | frozenset):
                return False
            return any(stringify(item) == value for item in collection)
        case Not(operand=operand):
            return not evaluate_node(operand, state)
        case And(operands=operands):
            return all(evaluate_node(op, state) for op in operands)
        case Or(operands=operands):
            return any(evaluate_node(op, state) for op in operands)
    raise TypeError(f"Unknown condition node: {node!r}")


def evaluate_condition(condition: str | None, state: Mapping[str, Any]) -> bool:
    """
    Evaluate an edge condition against instance state.

    A ``None`` condition marks the default edge and is always satisfied.
    """
    if condition is None:
        return True
    return evaluate_node(parse_condition(condition), state)

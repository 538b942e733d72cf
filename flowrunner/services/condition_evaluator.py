"""
Condition Evaluator

Evaluates the binary predicates used by condition nodes over dynamically
typed operands: flow variables, response statuses, values pulled out of
response bodies and literals typed into the editor (usually strings).

Supported operators:
    equals      - loose equality ("5" equals 5, true equals 1)
    notEquals   - negation of equals
    contains    - substring test on the stringified operands
    gt / lt     - numeric comparison after coercion; NaN is never ordered
Unknown operators evaluate to False.
"""

import math
import re
from typing import Any

from .variable_resolver import stringify

_NUMERIC = re.compile(r'^[+-]?(\d+\.?\d*([eE][+-]?\d+)?|\.\d+([eE][+-]?\d+)?)$')
_HEX = re.compile(r'^0[xX][0-9a-fA-F]+$')

OPERATORS = ('equals', 'notEquals', 'contains', 'gt', 'lt')


def to_number(value: Any) -> float:
    """
    Numeric coercion of a flow value.

    Booleans become 1/0, numeric strings are parsed (blank strings are 0),
    single-element lists coerce through their element, anything else is NaN.
    """
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _NUMERIC.match(text):
            return float(text)
        if _HEX.match(text):
            return float(int(text, 16))
        if text in ('Infinity', '+Infinity'):
            return math.inf
        if text == '-Infinity':
            return -math.inf
        return math.nan
    if isinstance(value, list):
        if not value:
            return 0.0
        if len(value) == 1:
            return to_number(value[0])
        return math.nan
    return math.nan


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def loose_equals(left: Any, right: Any) -> bool:
    """Type-coercing equality between two flow values."""
    if left is None or right is None:
        return left is None and right is None

    # Booleans compare as numbers against anything that is not a boolean
    if isinstance(left, bool) and isinstance(right, bool):
        return left == right
    if isinstance(left, bool):
        return loose_equals(1 if left else 0, right)
    if isinstance(right, bool):
        return loose_equals(left, 1 if right else 0)

    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right

    if _is_number(left) and isinstance(right, str):
        return left == to_number(right)
    if isinstance(left, str) and _is_number(right):
        return to_number(left) == right

    # Containers compare by their string form against primitives
    if isinstance(left, (dict, list)) and isinstance(right, (dict, list)):
        return left is right
    if isinstance(left, (dict, list)):
        return loose_equals(stringify(left), right)
    if isinstance(right, (dict, list)):
        return loose_equals(left, stringify(right))

    return left == right


def evaluate_condition(left: Any, op: str, right: Any) -> bool:
    """
    Evaluate `left op right`.

    Args:
        left: Left operand
        op: One of OPERATORS
        right: Right operand

    Returns:
        Result of the predicate; False for unknown operators
    """
    if op == 'equals':
        return loose_equals(left, right)
    if op == 'notEquals':
        return not loose_equals(left, right)
    if op == 'contains':
        return stringify(right) in stringify(left)
    if op == 'gt':
        return to_number(left) > to_number(right)
    if op == 'lt':
        return to_number(left) < to_number(right)
    return False

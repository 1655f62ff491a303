"""CEL expression evaluation against a single resource.

Expressions see the resource as the variable ``object``; results are
converted back to plain JSON-compatible Python values.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

import celpy
import structlog
from celpy import celtypes

from fleet_plugin_operator.exceptions import ExpressionError

logger = structlog.get_logger()

OBJECT_VARIABLE = "object"


@lru_cache(maxsize=256)
def _compile(expression: str) -> celpy.Runner:
    env = celpy.Environment()
    try:
        ast = env.compile(expression)
    except celpy.CELParseError as e:
        raise ExpressionError(f"failed to compile expression: {e}", expression=expression) from e
    return env.program(ast)


def to_json_value(value: Any) -> Any:
    """Convert a CEL result to plain JSON-compatible Python values."""
    match value:
        case None:
            return None
        case celtypes.BoolType() | bool():
            return bool(value)
        case celtypes.IntType() | celtypes.UintType() | int():
            return int(value)
        case celtypes.DoubleType() | float():
            return float(value)
        case celtypes.StringType() | str():
            return str(value)
        case celtypes.BytesType() | bytes():
            return bytes(value).decode("utf-8", errors="replace")
        case datetime():
            return value.isoformat()
        case timedelta():
            return f"{value.total_seconds()}s"
        case Mapping():
            return {str(to_json_value(k)): to_json_value(v) for k, v in value.items()}
        case list() | tuple():
            return [to_json_value(item) for item in value]
    return value


def evaluate(expression: str, obj: Mapping[str, Any] | None) -> Any:
    """Evaluate a CEL expression against one resource.

    Args:
        expression: CEL source text.
        obj: The resource in its plain dict representation.

    Returns:
        The JSON-compatible result.

    Raises:
        ExpressionError: If the expression is empty, does not compile or
            fails to evaluate.
    """
    if obj is None:
        raise ExpressionError("object cannot be nil", expression=expression)
    if not expression:
        raise ExpressionError("expression cannot be empty", expression=expression)

    program = _compile(expression)
    activation = {OBJECT_VARIABLE: celpy.json_to_cel(dict(obj))}
    try:
        result = program.evaluate(activation)
    except celpy.CELEvalError as e:
        raise ExpressionError(f"failed to evaluate expression: {e}", expression=expression) from e
    if isinstance(result, celpy.CELEvalError):
        raise ExpressionError(f"failed to evaluate expression: {result}", expression=expression)
    return to_json_value(result)

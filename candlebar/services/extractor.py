"""Value extractor — pulls one scalar out of an arbitrary JSON document.

Two forms are accepted:

* ``data.value`` / ``rates.USD`` — plain dotted path, walked field by field.
  Used whenever the text contains neither ``(`` nor ``[``.
* ``data["items"][0]["price"] * 100`` — a small expression language
  evaluated over the parsed Python AST. Only ``data`` is bound, and only
  the node types in ``_ALLOWED_BINOPS`` / ``_ALLOWED_FUNCS`` plus
  attribute and subscript access are evaluated. No Python code ever runs.

``extract()`` never raises; a miss comes back as an ExtractionFailure.
"""

from __future__ import annotations

import ast
import operator
from dataclasses import dataclass
from typing import Any, Callable

from candlebar.utils.errors import ExtractionError

ROOT_NAME = "data"
MAX_EXPRESSION_LEN = 200

_ALLOWED_BINOPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_ALLOWED_UNARY: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_ALLOWED_FUNCS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "float": float,
    "int": int,
    "len": len,
    "max": max,
    "min": min,
    "round": round,
    "str": str,
    "sum": sum,
}


@dataclass(frozen=True)
class ExtractionFailure:
    """Value-form of a failed extraction."""

    expression: str
    reason: str

    def __str__(self) -> str:
        return f"Could not extract '{self.expression}': {self.reason}"


def is_expression(path: str) -> bool:
    return "(" in path or "[" in path


def extract(document: Any, expression: str) -> Any:
    """Resolve ``expression`` against ``document``.

    Returns the scalar (int, float or str), or an ExtractionFailure.
    """
    try:
        return resolve(document, expression)
    except ExtractionError as exc:
        return ExtractionFailure(expression=expression, reason=exc.message)


def resolve(document: Any, expression: str) -> Any:
    """Like extract() but raises ExtractionError on a miss."""
    expression = (expression or "").strip()
    if not expression:
        raise ExtractionError("empty path")
    if len(expression) > MAX_EXPRESSION_LEN:
        raise ExtractionError("path is longer than 200 characters")

    if is_expression(expression):
        value = _evaluate_expression(document, expression)
    else:
        value = _walk_path(document, expression)
    return _require_scalar(value)


# ── Dotted paths ──────────────────────────────────────────────────


def _walk_path(document: Any, path: str) -> Any:
    current = document
    for segment in path.split("."):
        current = _child(current, segment)
    return current


def _child(node: Any, key: Any) -> Any:
    """One step of lookup on a dict (by key) or list (by index)."""
    if isinstance(node, dict):
        if key in node:
            return node[key]
        if isinstance(key, int) and str(key) in node:
            return node[str(key)]
        raise ExtractionError(f"field '{key}' not found")
    if isinstance(node, (list, str)):
        if key == "length":
            return len(node)
        index = _as_index(key)
        try:
            return node[index]
        except IndexError:
            raise ExtractionError(f"index {index} out of range") from None
    raise ExtractionError(f"cannot read '{key}' of {type(node).__name__}")


def _as_index(key: Any) -> int:
    if isinstance(key, bool):
        raise ExtractionError("boolean is not a valid index")
    if isinstance(key, int):
        return key
    if isinstance(key, str):
        try:
            return int(key)
        except ValueError:
            pass
    raise ExtractionError(f"'{key}' is not a list index")


def _require_scalar(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        raise ExtractionError(f"resolved to {value!r}, not a number or string")
    if isinstance(value, (int, float, str)):
        return value
    raise ExtractionError(f"resolved to a {type(value).__name__}, not a scalar")


# ── Restricted expressions ────────────────────────────────────────


def _evaluate_expression(document: Any, expression: str) -> Any:
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise ExtractionError(f"invalid expression: {exc.msg}") from None
    try:
        return _eval_node(tree.body, document)
    except ExtractionError:
        raise
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise ExtractionError(f"evaluation failed: {exc}") from None


def _eval_node(node: ast.AST, document: Any) -> Any:
    if isinstance(node, ast.Name):
        if node.id == ROOT_NAME:
            return document
        raise ExtractionError(f"unknown name '{node.id}'")

    if isinstance(node, ast.Constant):
        if isinstance(node.value, (int, float, str)) and not isinstance(node.value, bool):
            return node.value
        raise ExtractionError(f"unsupported literal {node.value!r}")

    if isinstance(node, ast.Attribute):
        if node.attr.startswith("_"):
            raise ExtractionError(f"attribute '{node.attr}' is not allowed")
        return _child(_eval_node(node.value, document), node.attr)

    if isinstance(node, ast.Subscript):
        if isinstance(node.slice, ast.Slice):
            raise ExtractionError("slices are not supported")
        target = _eval_node(node.value, document)
        key = _eval_node(node.slice, document)
        return _child(target, key)

    if isinstance(node, ast.UnaryOp) and type(node.op) in _ALLOWED_UNARY:
        return _ALLOWED_UNARY[type(node.op)](_number(_eval_node(node.operand, document)))

    if isinstance(node, ast.BinOp) and type(node.op) in _ALLOWED_BINOPS:
        left = _eval_node(node.left, document)
        right = _eval_node(node.right, document)
        if isinstance(node.op, ast.Add) and isinstance(left, str) and isinstance(right, str):
            return left + right
        if isinstance(node.op, ast.Pow) and abs(_number(right)) > 100:
            raise ExtractionError("exponent too large")
        return _ALLOWED_BINOPS[type(node.op)](_number(left), _number(right))

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _ALLOWED_FUNCS:
            raise ExtractionError("only abs, float, int, len, max, min, round, str, sum may be called")
        if node.keywords:
            raise ExtractionError("keyword arguments are not supported")
        args = [_eval_node(arg, document) for arg in node.args]
        return _ALLOWED_FUNCS[node.func.id](*args)

    if isinstance(node, (ast.List, ast.Tuple)):
        return [_eval_node(elt, document) for elt in node.elts]

    raise ExtractionError(f"unsupported syntax: {type(node).__name__}")


def _number(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ExtractionError(f"{value!r} is not a number")
    return value

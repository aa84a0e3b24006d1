"""
Small formula language used by authored activity data.

  - literals and + - * / % with parentheses
  - references: {burn.layers}, {burn.potency}, {pooled.extra}, {pooled.used},
    {pooled.available}, {dice.finalValue}, {dice.baseValue}
  - functions: floor, ceil, round, max, min, abs

The text is parsed with ``ast`` and only whitelisted nodes are interpreted, so
nothing in an expression can reach Python builtins. Evaluation never raises:
anything that cannot be computed is logged and counts as 0.
"""
import ast
import logging
import math
import re
from typing import Any, Callable, Dict, Optional, Tuple

from .buffs import active_layers, active_potency
from .constants import POOL_BONUS, POOL_PRIMARY
from .rolls import is_dice_formula

logger = logging.getLogger(__name__)

REF_RE = re.compile(r"\{([^{}]*)\}")
REF_SHAPE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*\.[A-Za-z_][A-Za-z0-9_]*$")


def _round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


FUNCTIONS: Dict[str, Tuple[Callable[..., Any], int, Optional[int]]] = {
    # name: (impl, min_args, max_args)
    "floor": (math.floor, 1, 1),
    "ceil": (math.ceil, 1, 1),
    "round": (_round_half_up, 1, 1),
    "abs": (abs, 1, 1),
    "max": (max, 1, None),
    "min": (min, 1, None),
}

BINARY_OPS = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
    ast.Mod: math.fmod,
}


def _resolve_reference(ref: str, context) -> float:
    parts = ref.strip().split(".")
    if len(parts) != 2:
        logger.warning("Unresolvable expression reference: {%s}", ref)
        return 0
    source, prop = parts
    actor = getattr(context, "actor", None)

    if source == "pooled":
        if actor is None:
            return 0
        if prop == "extra":
            return actor.pool.spent(POOL_BONUS)
        if prop == "used":
            return actor.pool.spent(POOL_PRIMARY)
        if prop == "available":
            return actor.pool.available(POOL_BONUS)
        logger.warning("Unknown pooled property: {%s}", ref)
        return 0

    if source == "dice":
        dice = getattr(context, "dice", None)
        if dice is None:
            return 0
        if prop == "finalValue":
            return dice.final_value
        if prop == "baseValue":
            return dice.base_value
        logger.warning("Unknown dice property: {%s}", ref)
        return 0

    if prop == "layers":
        return active_layers(actor, source) if actor is not None else 0
    if prop in ("potency", "strength"):
        return active_potency(actor, source) if actor is not None else 0

    logger.warning("Unresolvable expression reference: {%s}", ref)
    return 0


def _substitute_references(text: str, resolve: Callable[[str], float]) -> Tuple[str, Dict[str, float]]:
    refs: Dict[str, float] = {}

    def replace(match: re.Match) -> str:
        name = f"_ref{len(refs)}"
        refs[name] = resolve(match.group(1))
        return f" {name} "

    return REF_RE.sub(replace, text), refs


def _eval_node(node: ast.AST, refs: Dict[str, float]) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body, refs)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ValueError(f"Unsupported literal: {node.value!r}")
        return node.value

    if isinstance(node, ast.BinOp):
        op = BINARY_OPS.get(type(node.op))
        if op is None:
            raise ValueError("Unsupported operator")
        return op(_eval_node(node.left, refs), _eval_node(node.right, refs))

    if isinstance(node, ast.UnaryOp):
        operand = _eval_node(node.operand, refs)
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return operand
        raise ValueError("Unsupported unary operator")

    if isinstance(node, ast.Call):
        func_name = _checked_call_name(node)
        impl = FUNCTIONS[func_name][0]
        return impl(*[_eval_node(arg, refs) for arg in node.args])

    if isinstance(node, ast.Name):
        if node.id in refs:
            return refs[node.id]
        raise ValueError(f"Unknown name: {node.id}")

    raise ValueError("Unsupported expression node")


def _checked_call_name(node: ast.Call) -> str:
    if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
        raise ValueError("Unsupported function call")
    if node.keywords:
        raise ValueError("Keyword arguments are not allowed")
    _, min_args, max_args = FUNCTIONS[node.func.id]
    if len(node.args) < min_args or (max_args is not None and len(node.args) > max_args):
        raise ValueError(f"Wrong number of arguments for {node.func.id}()")
    return node.func.id


def _check_node(node: ast.AST, refs: Dict[str, float]) -> None:
    if isinstance(node, ast.Expression):
        _check_node(node.body, refs)
    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ValueError(f"Unsupported literal: {node.value!r}")
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in BINARY_OPS:
            raise ValueError("Unsupported operator")
        _check_node(node.left, refs)
        _check_node(node.right, refs)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.USub, ast.UAdd)):
            raise ValueError("Unsupported unary operator")
        _check_node(node.operand, refs)
    elif isinstance(node, ast.Call):
        _checked_call_name(node)
        for arg in node.args:
            _check_node(arg, refs)
    elif isinstance(node, ast.Name):
        if node.id not in refs:
            raise ValueError(f"Unknown name: {node.id}")
    else:
        raise ValueError("Unsupported expression node")


def _normalize(value: float) -> float:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def evaluate(expression, context=None) -> float:
    """Evaluate an authored formula against an ExecutionContext; 0 on any failure."""
    if isinstance(expression, bool):
        return int(expression)
    if isinstance(expression, (int, float)):
        return _normalize(expression) if math.isfinite(expression) else 0
    if expression is None:
        return 0

    text = str(expression).strip()
    if not text:
        return 0

    try:
        value = float(text)
    except ValueError:
        pass
    else:
        return _normalize(value) if math.isfinite(value) else 0

    try:
        source, refs = _substitute_references(text, lambda ref: _resolve_reference(ref, context))
        value = _eval_node(ast.parse(source.strip(), mode="eval"), refs)
    except (SyntaxError, ValueError, TypeError, ArithmeticError, RecursionError) as exc:
        logger.warning("Expression evaluation failed for %r: %s", text, exc)
        return 0

    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        logger.warning("Expression %r did not produce a finite number: %r", text, value)
        return 0
    return _normalize(value)


def validate(expression) -> Dict[str, Any]:
    """Check an expression's shape without evaluating it. Used by authoring tools."""
    if isinstance(expression, bool):
        return {"valid": False, "error": "expression must be a string or number"}
    if isinstance(expression, (int, float)):
        return {"valid": True, "error": None}
    if not isinstance(expression, str):
        return {"valid": False, "error": "expression must be a string or number"}

    depth = 0
    for char in expression:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        if depth < 0 or depth > 1:
            return {"valid": False, "error": "unbalanced braces"}
    if depth != 0:
        return {"valid": False, "error": "unbalanced braces"}

    for match in REF_RE.finditer(expression):
        if not REF_SHAPE_RE.match(match.group(1).strip()):
            return {"valid": False, "error": f"malformed reference: {{{match.group(1)}}}"}

    text = expression.strip()
    if not text:
        return {"valid": False, "error": "empty expression"}
    if is_dice_formula(text):
        return {"valid": True, "error": None}

    try:
        source, refs = _substitute_references(text, lambda ref: 0)
        _check_node(ast.parse(source.strip(), mode="eval"), refs)
    except SyntaxError:
        return {"valid": False, "error": "syntax error"}
    except ValueError as exc:
        return {"valid": False, "error": str(exc)}
    return {"valid": True, "error": None}

import logging
from typing import Callable, Dict, Iterable, Optional

from .buffs import active_layers, active_potency
from .constants import OPERATOR_ALIASES, POOL_ALIASES, POOL_TYPES
from .expressions import evaluate
from .models import ConditionSpec, EngineConfig, ExecutionContext

logger = logging.getLogger(__name__)


def normalize_operator(op: Optional[str]) -> str:
    op = str(op or "").strip()
    return OPERATOR_ALIASES.get(op.lower(), op)


def compare(value: float, op: str, target: float) -> bool:
    """
    op examples: '>=', '<=', '==', '!=', '>', '<' (and the 'gte'/'reach' style aliases)
    An operator we do not know never matches.
    """
    op = normalize_operator(op)
    if op == ">=":
        return value >= target
    if op == "<=":
        return value <= target
    if op == "==":
        return value == target
    if op == "!=":
        return value != target
    if op == ">":
        return value > target
    if op == "<":
        return value < target
    logger.warning("Unsupported comparison operator: %r", op)
    return False


def _target_value(cond: ConditionSpec, ctx: ExecutionContext) -> float:
    return evaluate(cond.value, ctx)


def _has_buff(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    target = ctx.get_target(cond.target)
    if target is None or not cond.buff_id:
        return False
    return active_layers(target, cond.buff_id, cond.name) > 0


def _buff_layer(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    target = ctx.get_target(cond.target)
    if target is None or not cond.buff_id:
        return False
    return compare(active_layers(target, cond.buff_id, cond.name), cond.operator, _target_value(cond, ctx))


def _buff_potency(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    target = ctx.get_target(cond.target)
    if target is None or not cond.buff_id:
        return False
    return compare(active_potency(target, cond.buff_id, cond.name), cond.operator, _target_value(cond, ctx))


def _resource_count(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    target = ctx.get_target(cond.target)
    pool = POOL_ALIASES.get(cond.resource or "", cond.resource)
    if target is None or pool not in POOL_TYPES:
        return False
    return compare(target.pool.available(pool), cond.operator, _target_value(cond, ctx))


def _health_percent(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    target = ctx.get_target(cond.target)
    if target is None:
        return False
    return compare(target.health_percent(), cond.operator, _target_value(cond, ctx))


def _attribute(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    target = ctx.get_target(cond.target)
    if target is None:
        return False
    attr = (cond.attribute or "").strip().lower()
    values = {"hp": target.hp, "corruption": target.corruption, "chaos": target.chaos}
    if attr not in values:
        ctx.warnings.append(f"UNKNOWN_ATTRIBUTE: {cond.attribute}")
        return False
    return compare(values[attr], cond.operator, _target_value(cond, ctx))


def _custom_expression(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    return evaluate(cond.expression, ctx) > 0


def _round_limit(cond: ConditionSpec, ctx: ExecutionContext) -> bool:
    """Holds while the named activity has run fewer than ``value`` times this round."""
    entry = ctx.actor.usage.get(f"{cond.activity_id}:round") or {}
    used = entry.get("count", 0) if entry.get("round") == ctx.round else 0
    return used < _target_value(cond, ctx)


CONDITION_HANDLERS: Dict[str, Callable[[ConditionSpec, ExecutionContext], bool]] = {
    "hasBuff": _has_buff,
    "buffLayer": _buff_layer,
    "buffPotency": _buff_potency,
    "buffStrength": _buff_potency,
    "resourceCount": _resource_count,
    "healthPercent": _health_percent,
    "hpPercent": _health_percent,
    "attribute": _attribute,
    "customExpression": _custom_expression,
    "roundLimit": _round_limit,
}

SUPPORTED_CONDITION_KINDS = set(CONDITION_HANDLERS.keys())


def eval_condition(cond: ConditionSpec, ctx: ExecutionContext, config: Optional[EngineConfig] = None) -> bool:
    handler = CONDITION_HANDLERS.get(cond.kind)
    if handler is None:
        config = config or EngineConfig()
        logger.warning("Unknown condition kind %r treated as %s", cond.kind, config.unknown_condition_passes)
        ctx.warnings.append(f"UNKNOWN_CONDITION_KIND: {cond.kind}")
        return config.unknown_condition_passes
    return handler(cond, ctx)


def check_conditions(
    conditions: Iterable[ConditionSpec],
    ctx: ExecutionContext,
    config: Optional[EngineConfig] = None,
) -> Optional[ConditionSpec]:
    """AND over the list. Returns the first condition that fails, or None when all hold."""
    for cond in conditions:
        if not eval_condition(cond, ctx, config):
            return cond
    return None


def describe_condition(cond: ConditionSpec) -> str:
    if cond.kind == "hasBuff":
        return f"{cond.target} has {cond.name or cond.buff_id}"
    if cond.kind in ("buffLayer", "buffPotency", "buffStrength"):
        return f"{cond.target} {cond.name or cond.buff_id} {cond.kind} {cond.operator} {cond.value}"
    if cond.kind == "resourceCount":
        return f"{cond.target} {cond.resource} available {cond.operator} {cond.value}"
    if cond.kind in ("healthPercent", "hpPercent"):
        return f"{cond.target} hp% {cond.operator} {cond.value}"
    if cond.kind == "attribute":
        return f"{cond.target} {cond.attribute} {cond.operator} {cond.value}"
    if cond.kind == "customExpression":
        return f"expression {cond.expression}"
    if cond.kind == "roundLimit":
        return f"{cond.activity_id} used fewer than {cond.value} times this round"
    return cond.kind

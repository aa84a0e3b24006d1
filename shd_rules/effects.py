import logging
import math
from typing import Callable, Dict, List, Optional, Tuple

from .buff_triggers import fire_buff_trigger
from .buffs import add_stack, clear_stack, consume_stack, find_buff_def
from .constants import (
    CUSTOM_BUFF_ID,
    EFFECT_ERROR,
    INSUFFICIENT_RESOURCE,
    INVALID_AMOUNT,
    NO_DICE_CONTEXT,
    NO_TARGET,
    POOL_ALIASES,
    POOL_TYPES,
    UNKNOWN_CATALOG_ID,
    UNKNOWN_EFFECT_KIND,
)
from .expressions import evaluate
from .models import ActorState, EffectResult, EffectSpec, Engine, ExecutionContext, PendingHeal
from .rolls import DiceRoller, is_dice_formula

logger = logging.getLogger(__name__)


def resolve_amount(value, ctx: ExecutionContext) -> Tuple[int, Optional[str]]:
    """
    Dice formulas ('2d6+3') go to the roller, everything else to the expression parser.
    Returns (amount, formula) where formula is set only when dice were rolled.
    """
    if is_dice_formula(value):
        roller = ctx.roller or DiceRoller()
        return int(roller.roll(value).total), str(value).strip()
    return int(math.floor(evaluate(value, ctx))), None


def _fail(spec: EffectSpec, failure: str, reason: str) -> EffectResult:
    return EffectResult(kind=spec.kind, success=False, failure=failure, reason=reason)


def _target(spec: EffectSpec, ctx: ExecutionContext) -> Optional[ActorState]:
    return ctx.get_target(spec.target)


def _stack_label(buff_id: str, name: Optional[str], engine: Engine) -> str:
    if buff_id == CUSTOM_BUFF_ID:
        return name or CUSTOM_BUFF_ID
    buff = engine.buff_catalog.get(buff_id)
    return buff.name if buff else buff_id


def _add_buff(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    if spec.buff_id == CUSTOM_BUFF_ID:
        return _custom_buff(spec, ctx, engine, log)
    buff = find_buff_def(engine.buff_catalog, spec.buff_id)
    if buff is None:
        return _fail(spec, UNKNOWN_CATALOG_ID, f"unknown buff: {spec.buff_id}")
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} for {buff.name}")

    layers, _ = resolve_amount(spec.layers, ctx)
    if layers <= 0:
        return _fail(spec, INVALID_AMOUNT, f"{buff.name} layers resolved to {layers}")
    potency = buff.default_potency if spec.potency is None else resolve_amount(spec.potency, ctx)[0]

    stack = add_stack(target, buff.id, layers, potency, spec.timing, max_layers=buff.max_layers)
    message = f"{target.name} gains {buff.name} x{layers} ({spec.timing}, now {stack.layers})"
    log.append(f"[BUFF] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=layers)


def _custom_buff(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    name = (spec.name or "").strip()
    if not name:
        return _fail(spec, UNKNOWN_CATALOG_ID, "custom buff without a name")
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} for {name}")
    layers, _ = resolve_amount(spec.layers, ctx)
    if layers <= 0:
        return _fail(spec, INVALID_AMOUNT, f"{name} layers resolved to {layers}")
    potency = 0 if spec.potency is None else resolve_amount(spec.potency, ctx)[0]

    stack = add_stack(target, CUSTOM_BUFF_ID, layers, potency, spec.timing, name=name)
    message = f"{target.name} gains {name} x{layers} ({spec.timing}, now {stack.layers})"
    log.append(f"[BUFF] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=layers)


def _consume_buff(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    buff_id = spec.buff_id or ""
    if buff_id != CUSTOM_BUFF_ID:
        buff = find_buff_def(engine.buff_catalog, buff_id)
        if buff is None:
            return _fail(spec, UNKNOWN_CATALOG_ID, f"unknown buff: {spec.buff_id}")
        buff_id = buff.id
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} to consume from")
    label = _stack_label(buff_id, spec.name, engine)

    layers, _ = resolve_amount(spec.layers, ctx)
    if layers <= 0:
        return _fail(spec, INVALID_AMOUNT, f"{label} layers resolved to {layers}")
    if not consume_stack(target, buff_id, layers, spec.name):
        return _fail(spec, INSUFFICIENT_RESOURCE, f"{target.name} lacks {layers} {label}")
    message = f"{target.name} loses {label} x{layers}"
    log.append(f"[BUFF] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=layers)


def _clear_buff(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    buff_id = spec.buff_id or ""
    if buff_id != CUSTOM_BUFF_ID:
        buff = find_buff_def(engine.buff_catalog, buff_id)
        if buff is None:
            return _fail(spec, UNKNOWN_CATALOG_ID, f"unknown buff: {spec.buff_id}")
        buff_id = buff.id
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} to clear")
    label = _stack_label(buff_id, spec.name, engine)
    removed = clear_stack(target, buff_id, spec.name)
    message = f"{target.name} cleared {label}" if removed else f"{target.name} had no {label}"
    log.append(f"[BUFF] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=removed)


def _trigger_buff_effect(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} for {spec.buff_id}")
    outcome = fire_buff_trigger(spec.buff_id or "", target, log, ctx.dice)
    if outcome is None:
        return _fail(spec, UNKNOWN_CATALOG_ID, f"{spec.buff_id} has no triggered effect")
    if not outcome.triggered:
        return EffectResult(
            kind=spec.kind,
            success=False,
            reason=outcome.message or f"{target.name} has no active {spec.buff_id}",
        )
    return EffectResult(kind=spec.kind, success=True, message=outcome.message, amount=outcome.amount)


def _heal(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} to heal")
    amount, formula = resolve_amount(spec.amount, ctx)
    if amount <= 0:
        return _fail(spec, INVALID_AMOUNT, f"heal amount resolved to {amount}")

    if formula is not None:
        # Rolled heals wait for the player to confirm them.
        pending = PendingHeal(target=target, amount=amount, formula=formula)
        message = f"{target.name} heal rolled {formula} = {amount}, awaiting confirmation"
        log.append(f"[HEAL] {message}")
        return EffectResult(kind=spec.kind, success=True, message=message, amount=amount, pending=pending)

    healed = target.heal(amount)
    message = f"{target.name} heals {healed} ({target.hp}/{target.hp_max})"
    log.append(f"[HEAL] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=healed)


def _deal_damage(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} to damage")
    amount, _ = resolve_amount(spec.amount, ctx)
    if amount <= 0:
        return _fail(spec, INVALID_AMOUNT, f"damage amount resolved to {amount}")
    dealt = target.take_damage(amount)
    message = f"{target.name} takes {dealt} {spec.damage_type} damage ({target.hp}/{target.hp_max})"
    log.append(f"[DMG] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=dealt)


def _modify_dice(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    if ctx.dice is None:
        return _fail(spec, NO_DICE_CONTEXT, "no dice roll to modify")
    delta, _ = resolve_amount(spec.amount, ctx)
    if spec.modify_type == "baseValue":
        ctx.dice.base_value += delta
        ctx.dice.final_value += delta
    else:
        ctx.dice.final_value += delta
    message = f"dice {delta:+d} -> {ctx.dice.final_value}"
    log.append(f"[DICE] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=delta)


def _move_slots(spec: EffectSpec, ctx: ExecutionContext, restore: bool, log: List[str]) -> EffectResult:
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} for {spec.resource}")
    pool = POOL_ALIASES.get(spec.resource, spec.resource)
    if pool not in POOL_TYPES:
        return _fail(spec, UNKNOWN_CATALOG_ID, f"unknown resource pool: {spec.resource}")
    count, _ = resolve_amount(1 if spec.amount is None else spec.amount, ctx)
    if count <= 0:
        return _fail(spec, INVALID_AMOUNT, f"{pool} count resolved to {count}")

    moved = target.pool.restore(pool, count) if restore else target.pool.spend(pool, count)
    verb = "restored" if restore else "spent"
    if moved == 0:
        return _fail(spec, INSUFFICIENT_RESOURCE, f"{target.name} has no {pool} slots to be {verb}")
    message = f"{target.name} {verb} {moved} {pool}"
    if moved < count:
        message += f" (wanted {count})"
    log.append(f"[POOL] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=moved)


def _restore_resource(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    return _move_slots(spec, ctx, True, log)


def _deduct_resource(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    return _move_slots(spec, ctx, False, log)


def _change_attribute(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    target = _target(spec, ctx)
    if target is None:
        return _fail(spec, NO_TARGET, f"no {spec.target} for {spec.attribute}")
    attr = (spec.attribute or "").strip().lower()
    delta, _ = resolve_amount(spec.amount, ctx)

    if attr == "hp":
        changed = target.heal(delta) if delta >= 0 else -target.take_damage(-delta)
        after, cap = target.hp, target.hp_max
    elif attr == "corruption":
        before = target.corruption
        upper = target.corruption_max if target.corruption_max > 0 else before + max(0, delta)
        target.corruption = max(0, min(upper, before + delta))
        changed, after, cap = target.corruption - before, target.corruption, target.corruption_max
    elif attr == "chaos":
        before = target.chaos
        target.chaos = max(0, min(target.chaos_max, before + delta))
        changed, after, cap = target.chaos - before, target.chaos, target.chaos_max
    else:
        return _fail(spec, UNKNOWN_CATALOG_ID, f"unknown attribute: {spec.attribute}")

    message = f"{target.name} {attr} {changed:+d} ({after}/{cap})"
    log.append(f"[ATTR] {message}")
    return EffectResult(kind=spec.kind, success=True, message=message, amount=changed)


EffectHandler = Callable[[EffectSpec, ExecutionContext, Engine, List[str]], EffectResult]

EFFECT_HANDLERS: Dict[str, EffectHandler] = {
    "addBuff": _add_buff,
    "consumeBuff": _consume_buff,
    "clearBuff": _clear_buff,
    "triggerBuffEffect": _trigger_buff_effect,
    "heal": _heal,
    "dealDamage": _deal_damage,
    "modifyDice": _modify_dice,
    "restoreResource": _restore_resource,
    "deductResource": _deduct_resource,
    "changeAttribute": _change_attribute,
    "customBuff": _custom_buff,
}

SUPPORTED_EFFECT_KINDS = set(EFFECT_HANDLERS.keys())


def effect_condition_met(condition: Optional[str], ctx: ExecutionContext) -> bool:
    """An effect's condition names a context flag such as 'consumed'; '!consumed' negates it."""
    if not condition:
        return True
    text = condition.strip()
    if text.startswith("!"):
        return not ctx.flag(text[1:].strip())
    return ctx.flag(text)


def execute_effect(spec: EffectSpec, ctx: ExecutionContext, engine: Engine, log: List[str]) -> EffectResult:
    if not effect_condition_met(spec.condition, ctx):
        return EffectResult(kind=spec.kind, success=True, skipped=True, reason=f"condition '{spec.condition}' not met")

    handler = EFFECT_HANDLERS.get(spec.kind)
    if handler is None:
        ctx.warnings.append(f"UNIMPLEMENTED_EFFECT_KIND: {spec.kind}")
        return _fail(spec, UNKNOWN_EFFECT_KIND, f"unknown effect kind: {spec.kind}")

    try:
        return handler(spec, ctx, engine, log)
    except Exception as exc:
        logger.exception("Effect %s failed", spec.kind)
        return _fail(spec, EFFECT_ERROR, f"{spec.kind} raised {exc.__class__.__name__}: {exc}")


def execute_effects(
    effects: List[EffectSpec],
    ctx: ExecutionContext,
    engine: Engine,
    log: List[str],
) -> Tuple[List[EffectResult], bool]:
    """
    Run effects in order. A failed effect does not stop its siblings unless it
    is flagged critical; nothing already applied is rolled back.
    Returns (results, halted).
    """
    results: List[EffectResult] = []
    for spec in effects:
        result = execute_effect(spec, ctx, engine, log)
        results.append(result)
        if not result.success:
            log.append(f"[EFFECT] {spec.kind} failed: {result.reason}")
            if spec.critical:
                log.append(f"[EFFECT] critical {spec.kind} failed, remaining effects halted")
                return results, True
    return results, False

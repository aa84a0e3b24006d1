"""
Buffs that fire when something happens to their holder rather than at round end.

Only the current-round instance of a buff ever fires; next-round copies wait
for the round-advance to promote them.
"""
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .buffs import decrement_stack, get_stack
from .models import ActorState, DiceContext

HEAVY_HIT_THRESHOLD = 15
CRITICAL_HIT_THRESHOLD = 20


@dataclass
class TriggerOutcome:
    triggered: bool
    amount: int = 0
    message: str = ""
    multiplier: float = 1.0
    final_damage: int = 0
    crit_type: str = ""


def _layers_note(buff_name: str, left: int) -> str:
    if left <= 0:
        return f", {buff_name} faded"
    return f", {buff_name} -1 layer ({left} left)"


def _fixed_damage_trigger(buff_id: str, label: str) -> Callable[[ActorState, List[str]], TriggerOutcome]:
    def trigger(actor: ActorState, log: List[str]) -> TriggerOutcome:
        buff = get_stack(actor, buff_id)
        if buff is None:
            return TriggerOutcome(triggered=False)
        damage = actor.take_damage(buff.potency)
        left = decrement_stack(actor, buff)
        message = f"[{label}] {actor.name} takes {damage} fixed damage" + _layers_note(label, left)
        log.append(message)
        return TriggerOutcome(triggered=True, amount=damage, message=message)

    trigger.__name__ = f"trigger_{buff_id}"
    return trigger


# Bleed hurts its holder when they attack; rupture and burn when they are hit.
trigger_bleed = _fixed_damage_trigger("bleed", "Bleed")
trigger_rupture = _fixed_damage_trigger("rupture", "Rupture")
trigger_burn = _fixed_damage_trigger("burn", "Burn")


def trigger_corruption(actor: ActorState, log: List[str]) -> TriggerOutcome:
    buff = get_stack(actor, "corruption_effect")
    if buff is None:
        return TriggerOutcome(triggered=False)
    if actor.corruption_max > 0:
        before = actor.corruption
        actor.corruption = min(actor.corruption_max, before + buff.potency)
        amount = actor.corruption - before
        message = f"[Sinking] {actor.name} corruption +{amount} ({before} -> {actor.corruption})"
    else:
        amount = actor.take_damage(buff.potency)
        message = f"[Sinking] {actor.name} has no corruption track, takes {amount} damage"
    left = decrement_stack(actor, buff)
    message += _layers_note("Sinking", left)
    log.append(message)
    return TriggerOutcome(triggered=True, amount=amount, message=message)


def trigger_breath(attacker: ActorState, dice_roll: int, base_damage: int, log: List[str]) -> TriggerOutcome:
    """Dice roll plus breath potency over 15 is a heavy hit (x1.5), over 20 a critical (x2)."""
    buff = get_stack(attacker, "breath")
    if buff is None:
        return TriggerOutcome(triggered=False, final_damage=base_damage)

    judgement = dice_roll + buff.potency
    multiplier = 1.0
    crit_type = ""
    if judgement > CRITICAL_HIT_THRESHOLD:
        multiplier, crit_type = 2.0, "critical"
    elif judgement > HEAVY_HIT_THRESHOLD:
        multiplier, crit_type = 1.5, "heavy"
    final_damage = math.floor(base_damage * multiplier)

    if crit_type:
        message = (
            f"[Breath] {dice_roll} + {buff.potency} = {judgement}, {crit_type} hit! "
            f"damage {base_damage} x{multiplier:g} = {final_damage}"
        )
        left = decrement_stack(attacker, buff)
        message += _layers_note("Breath", left)
    else:
        message = f"[Breath] {dice_roll} + {buff.potency} = {judgement}, no critical"
    log.append(message)
    return TriggerOutcome(
        triggered=True,
        amount=final_damage - base_damage,
        message=message,
        multiplier=multiplier,
        final_damage=final_damage,
        crit_type=crit_type,
    )


def trigger_tremor_explode(target: ActorState, log: List[str]) -> TriggerOutcome:
    buff = get_stack(target, "tremor")
    if buff is None:
        return TriggerOutcome(triggered=False, message=f"{target.name} has no tremor")
    increase = max(0, buff.layers) * buff.potency
    before = target.chaos
    target.chaos = min(target.chaos_max, before + increase)
    actual = target.chaos - before
    target.buffs = [b for b in target.buffs if b is not buff]
    message = (
        f"[Tremor Burst] {target.name} tremor {buff.layers} x {buff.potency} = {increase} chaos "
        f"({before} -> {target.chaos}), tremor removed"
    )
    log.append(message)
    return TriggerOutcome(triggered=True, amount=actual, message=message)


def _breath_from_dice(actor: ActorState, log: List[str], dice: Optional[DiceContext] = None) -> TriggerOutcome:
    if dice is None:
        return TriggerOutcome(triggered=False, message="no dice roll to judge")
    outcome = trigger_breath(actor, dice.base_value, dice.final_value, log)
    if outcome.triggered:
        dice.final_value = outcome.final_damage
    return outcome


BUFF_TRIGGERS: Dict[str, Callable[..., TriggerOutcome]] = {
    "bleed": lambda actor, log, dice=None: trigger_bleed(actor, log),
    "rupture": lambda actor, log, dice=None: trigger_rupture(actor, log),
    "burn": lambda actor, log, dice=None: trigger_burn(actor, log),
    "corruption_effect": lambda actor, log, dice=None: trigger_corruption(actor, log),
    "tremor": lambda actor, log, dice=None: trigger_tremor_explode(actor, log),
    "breath": _breath_from_dice,
}


def fire_buff_trigger(
    buff_id: str,
    actor: ActorState,
    log: List[str],
    dice: Optional[DiceContext] = None,
) -> Optional[TriggerOutcome]:
    """Returns None when the buff has no on-demand effect."""
    trigger = BUFF_TRIGGERS.get(buff_id)
    if trigger is None:
        return None
    return trigger(actor, log, dice)

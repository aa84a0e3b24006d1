"""
Stacking-effect store: every read and write of an actor's buff instances goes
through these functions so the one-instance-per-key invariant holds.
"""
from typing import Dict, List, Optional

from .constants import ACTIVE_TIMINGS, CURRENT, CUSTOM_BUFF_ID, ROUND_TIMINGS
from .models import ActorState, BuffDef, BuffInstance


def find_buff_def(catalog: Dict[str, BuffDef], id_or_name: Optional[str]) -> Optional[BuffDef]:
    if not id_or_name:
        return None
    key = str(id_or_name).strip()
    if key in catalog:
        return catalog[key]
    for buff in catalog.values():
        if buff.name == key:
            return buff
    return None


def _matches(buff: BuffInstance, buff_id: str, name: Optional[str]) -> bool:
    if buff.id != buff_id:
        return False
    if buff_id == CUSTOM_BUFF_ID:
        return buff.name == (name or "")
    return True


def get_stack(
    actor: ActorState,
    buff_id: str,
    timing: str = CURRENT,
    name: Optional[str] = None,
) -> Optional[BuffInstance]:
    for buff in actor.buffs:
        if buff.timing == timing and _matches(buff, buff_id, name):
            return buff
    return None


def active_stacks(actor: ActorState, buff_id: str, name: Optional[str] = None) -> List[BuffInstance]:
    """Instances that count for this round, current before both."""
    return [
        buff
        for timing in ACTIVE_TIMINGS
        for buff in actor.buffs
        if buff.timing == timing and _matches(buff, buff_id, name)
    ]


def active_layers(actor: ActorState, buff_id: str, name: Optional[str] = None) -> int:
    return sum(max(0, b.layers) for b in active_stacks(actor, buff_id, name))


def active_potency(actor: ActorState, buff_id: str, name: Optional[str] = None) -> int:
    return sum(b.potency for b in active_stacks(actor, buff_id, name))


def has_stack(actor: ActorState, buff_id: str, name: Optional[str] = None) -> bool:
    return active_layers(actor, buff_id, name) > 0


def add_stack(
    actor: ActorState,
    buff_id: str,
    layers: int,
    potency: int = 0,
    timing: str = CURRENT,
    name: Optional[str] = None,
    max_layers: int = 0,
) -> BuffInstance:
    """Merge into the (id, timing) instance by summation, or create it."""
    if timing not in ROUND_TIMINGS:
        raise ValueError(f"Unknown round timing: {timing}")
    existing = get_stack(actor, buff_id, timing, name)
    if existing is not None:
        existing.layers += layers
        existing.potency += potency
        buff = existing
    else:
        buff = BuffInstance(
            id=buff_id,
            name=name or "",
            layers=layers,
            potency=potency,
            timing=timing,
        )
        actor.buffs.append(buff)
    if max_layers > 0 and buff.layers > max_layers:
        buff.layers = max_layers
    return buff


def consume_stack(actor: ActorState, buff_id: str, layers: int, name: Optional[str] = None) -> bool:
    """
    Remove ``layers`` from the active instances (current first, then both).
    All or nothing: returns False and leaves state untouched when short.
    """
    stacks = active_stacks(actor, buff_id, name)
    if layers < 0 or sum(max(0, b.layers) for b in stacks) < layers:
        return False
    remaining = layers
    for buff in stacks:
        if remaining <= 0:
            break
        taken = min(buff.layers, remaining)
        buff.layers -= taken
        remaining -= taken
    touched = {id(b) for b in stacks}
    actor.buffs = [b for b in actor.buffs if not (id(b) in touched and b.layers <= 0)]
    return True


def clear_stack(actor: ActorState, buff_id: str, name: Optional[str] = None) -> int:
    """Drop every instance of the buff regardless of timing; returns how many were removed."""
    before = len(actor.buffs)
    actor.buffs = [b for b in actor.buffs if not _matches(b, buff_id, name)]
    return before - len(actor.buffs)


def decrement_stack(actor: ActorState, buff: BuffInstance, amount: int = 1) -> int:
    """Take layers off one specific instance, dropping it at zero. Returns layers left."""
    buff.layers -= amount
    if buff.layers <= 0:
        actor.buffs = [b for b in actor.buffs if b is not buff]
        return 0
    return buff.layers


def describe_stacks(actor: ActorState, catalog: Optional[Dict[str, BuffDef]] = None) -> str:
    if not actor.buffs:
        return "none"
    parts = []
    for buff in actor.buffs:
        label = buff.name if buff.id == CUSTOM_BUFF_ID else buff.id
        if catalog and buff.id in catalog and buff.id != CUSTOM_BUFF_ID:
            label = catalog[buff.id].name
        timing = "" if buff.timing == CURRENT else f"@{buff.timing}"
        potency = f"/{buff.potency}" if buff.potency else ""
        parts.append(f"{label}x{buff.layers}{potency}{timing}")
    return ", ".join(parts)

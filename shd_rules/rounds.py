"""
End-of-round reconciliation of an actor's buff instances.

  1. split instances into current and upcoming (next / both)
  2. drop current one-round buffs
  3. current decaying buffs fire their round-end effect, then lose a layer
  4. drop current instances with no layers left
  5. merge each remaining non-decaying current instance with its upcoming
     counterparts (same id, or same name for custom buffs)
  6. upcoming instances that were not merged become current as they are
  7. everything left is current for the next round; instances that now
     share a key (a decayed buff and its upcoming stack, or next + both)
     are summed into one
"""
from typing import Dict, List, Optional

from .constants import CURRENT, CUSTOM_BUFF_ID, ONE_ROUND_BUFF_IDS, ROUND_END_DECAY_BUFF_IDS
from .models import ActorState, BuffDef, BuffInstance


def _label(buff: BuffInstance, catalog: Optional[Dict[str, BuffDef]]) -> str:
    if buff.id == CUSTOM_BUFF_ID:
        return buff.name or CUSTOM_BUFF_ID
    if catalog and buff.id in catalog:
        return catalog[buff.id].name
    return buff.id


def _before_decay(actor: ActorState, buff: BuffInstance, label: str, messages: List[str]) -> None:
    if buff.id == "burn" and buff.layers > 0:
        dealt = actor.take_damage(buff.potency)
        messages.append(f"{actor.name} takes {dealt} damage from {label} ({actor.hp}/{actor.hp_max})")


def advance_actor_round(
    actor: ActorState,
    log: Optional[List[str]] = None,
    catalog: Optional[Dict[str, BuffDef]] = None,
) -> List[str]:
    messages: List[str] = []

    current = [b for b in actor.buffs if b.timing == CURRENT]
    upcoming = [b for b in actor.buffs if b.timing != CURRENT]

    kept: List[BuffInstance] = []
    for buff in current:
        if buff.id in ONE_ROUND_BUFF_IDS:
            messages.append(f"{_label(buff, catalog)} has expired")
        else:
            kept.append(buff)

    survivors: List[BuffInstance] = []
    for buff in kept:
        label = _label(buff, catalog)
        if buff.id in ROUND_END_DECAY_BUFF_IDS:
            _before_decay(actor, buff, label, messages)
            buff.layers -= 1
            if buff.layers > 0:
                messages.append(f"{label} decreased by 1 ({buff.layers} left)")
        if buff.layers <= 0:
            messages.append(f"{label} has vanished")
            continue
        survivors.append(buff)

    merged_away = set()
    result: List[BuffInstance] = []
    for buff in survivors:
        if buff.id not in ROUND_END_DECAY_BUFF_IDS:
            for other in upcoming:
                if id(other) in merged_away or other.identity() != buff.identity():
                    continue
                buff.layers += other.layers
                buff.potency += other.potency
                merged_away.add(id(other))
                messages.append(f"{_label(buff, catalog)} merged with next round's stack ({buff.layers} layers)")
        result.append(buff)

    for other in upcoming:
        if id(other) not in merged_away:
            result.append(other)

    final: List[BuffInstance] = []
    by_key: Dict[tuple, BuffInstance] = {}
    for buff in result:
        buff.timing = CURRENT
        first = by_key.get(buff.identity())
        if first is None:
            by_key[buff.identity()] = buff
            final.append(buff)
            continue
        first.layers += buff.layers
        first.potency += buff.potency
        messages.append(f"{_label(first, catalog)} merged with next round's stack ({first.layers} layers)")
    actor.buffs = final

    if log is not None:
        for message in messages:
            log.append(f"[ROUND] {actor.name}: {message}")
    return messages


def advance_round(
    actors: List[ActorState],
    log: Optional[List[str]] = None,
    catalog: Optional[Dict[str, BuffDef]] = None,
) -> Dict[str, List[str]]:
    return {actor.actor_id: advance_actor_round(actor, log, catalog) for actor in actors}

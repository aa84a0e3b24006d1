from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .buffs import active_layers, consume_stack
from .constants import (
    CONSUME_NONE,
    CONSUME_OPTIONAL,
    INSUFFICIENT_RESOURCE,
    USER_CANCELLED,
)
from .models import ActorState, ConsumeOption, ConsumeSpec, ExecutionContext, Policy, ResourceCost


@dataclass
class ConsumeResult:
    success: bool
    failure: Optional[str] = None
    reason: str = ""
    selected_option: Optional[ConsumeOption] = None
    paid: List[str] = field(default_factory=list)


def _aggregate(costs: List[ResourceCost]) -> Dict[tuple, Tuple[ResourceCost, int]]:
    needs: Dict[tuple, Tuple[ResourceCost, int]] = {}
    for cost in costs:
        key = cost.key()
        first, total = needs.get(key, (cost, 0))
        needs[key] = (first, total + cost.amount)
    return needs


def _available(actor: ActorState, cost: ResourceCost) -> int:
    if cost.kind == "buff":
        return active_layers(actor, cost.buff_id, cost.name)
    return actor.pool.available(cost.pool)


def shortfalls(actor: ActorState, costs: List[ResourceCost]) -> List[str]:
    """Requirements the actor cannot cover, with repeated entries counted together."""
    missing = []
    for cost, total in _aggregate(costs).values():
        have = _available(actor, cost)
        if have < total:
            label = cost.label()
            missing.append(f"{label} (need {total}, have {have})")
    return missing


def can_afford(actor: ActorState, costs: List[ResourceCost]) -> bool:
    return not shortfalls(actor, costs)


def _deduct(actor: ActorState, costs: List[ResourceCost], log: List[str]) -> List[str]:
    paid = []
    for cost in costs:
        if cost.kind == "buff":
            if not consume_stack(actor, cost.buff_id, cost.amount, cost.name):
                raise RuntimeError(f"{actor.name} could not pay {cost.describe()} after it was checked")
        else:
            actor.pool.spend(cost.pool, cost.amount)
        paid.append(cost.describe())
        log.append(f"[COST] {actor.name} paid {cost.describe()}")
    return paid


def resolve_consumption(
    consume: ConsumeSpec,
    ctx: ExecutionContext,
    policy: Policy,
    log: List[str],
) -> ConsumeResult:
    """
    Validate everything first, then deduct once:
      - none: nothing to pay
      - mandatory: every listed resource, all or nothing
      - optional: the listed resources (if any) plus one affordable option;
        several affordable options go to the policy, which may cancel (None)
    """
    actor = ctx.actor
    if consume.mode == CONSUME_NONE or (not consume.resources and not consume.options):
        return ConsumeResult(success=True)

    mandatory = list(consume.resources)
    missing = shortfalls(actor, mandatory)
    if missing:
        return ConsumeResult(
            success=False,
            failure=INSUFFICIENT_RESOURCE,
            reason="insufficient " + ", ".join(missing),
        )

    selected: Optional[ConsumeOption] = None
    if consume.mode == CONSUME_OPTIONAL and consume.options:
        affordable = [opt for opt in consume.options if can_afford(actor, mandatory + list(opt.resources))]
        if not affordable:
            return ConsumeResult(
                success=False,
                failure=INSUFFICIENT_RESOURCE,
                reason="no affordable consume option",
            )
        if len(affordable) == 1:
            selected = affordable[0]
            log.append(f"[COST] {actor.name} auto-selected option '{selected.label}'")
        else:
            choice = policy.choose_consume_option(actor, affordable, ctx)
            if choice is None or not 0 <= choice < len(affordable):
                log.append(f"[COST] {actor.name} cancelled the consume choice")
                return ConsumeResult(success=False, failure=USER_CANCELLED, reason="consume choice cancelled")
            selected = affordable[choice]
            log.append(f"[COST] {actor.name} chose option '{selected.label}'")

    to_pay = mandatory + (list(selected.resources) if selected else [])
    paid = _deduct(actor, to_pay, log)
    ctx.consumed = bool(paid)
    ctx.selected_option = selected
    return ConsumeResult(success=True, selected_option=selected, paid=paid)

from typing import List, Optional

from .conditions import check_conditions, describe_condition
from .constants import (
    CONDITION_NOT_MET,
    PASSIVE,
    PASSIVE_MOMENTS,
    TRIGGER_MISMATCH,
    USAGE_LIMIT_EXCEEDED,
)
from .consumption import resolve_consumption
from .effects import execute_effects
from .models import Activity, ActivityResult, ActorState, Engine, ExecutionContext, Policy, Trigger


def trigger_matches(trigger: Trigger, ctx: ExecutionContext) -> bool:
    """
    A context without a trigger type is a direct use and matches anything.
    Passive activities answer to every moment a combat die is used in.
    """
    if ctx.trigger_type is not None:
        passive_hit = (trigger.passive or trigger.type == PASSIVE) and ctx.trigger_type in PASSIVE_MOMENTS
        if trigger.type != ctx.trigger_type and not passive_hit:
            return False
    if trigger.category and trigger.category != ctx.attack_category:
        return False
    return True


def _usage_counts(actor: ActorState, activity: Activity, ctx: ExecutionContext) -> dict:
    """Current counts; a counter stamped with another round or combat counts as zero."""
    round_entry = actor.usage.get(f"{activity.id}:round") or {}
    combat_entry = actor.usage.get(f"{activity.id}:combat") or {}
    total_entry = actor.usage.get(f"{activity.id}:total") or {}
    return {
        "round": round_entry.get("count", 0) if round_entry.get("round") == ctx.round else 0,
        "combat": combat_entry.get("count", 0) if combat_entry.get("combat_id") == ctx.combat_id else 0,
        "total": total_entry.get("count", 0),
    }


def usage_exceeded(actor: ActorState, activity: Activity, ctx: ExecutionContext) -> Optional[str]:
    limit = activity.usage_limit
    if limit is None:
        return None
    counts = _usage_counts(actor, activity, ctx)
    if limit.per_round is not None and counts["round"] >= limit.per_round:
        return f"used {counts['round']}/{limit.per_round} times this round"
    if limit.per_combat is not None and counts["combat"] >= limit.per_combat:
        return f"used {counts['combat']}/{limit.per_combat} times this combat"
    if limit.total is not None and counts["total"] >= limit.total:
        return f"used {counts['total']}/{limit.total} times"
    return None


def record_usage(actor: ActorState, activity: Activity, ctx: ExecutionContext) -> None:
    counts = _usage_counts(actor, activity, ctx)
    actor.usage[f"{activity.id}:round"] = {"round": ctx.round, "count": counts["round"] + 1}
    actor.usage[f"{activity.id}:combat"] = {"combat_id": ctx.combat_id, "count": counts["combat"] + 1}
    actor.usage[f"{activity.id}:total"] = {"count": counts["total"] + 1}


def execute_activity(
    activity: Activity,
    ctx: ExecutionContext,
    engine: Engine,
    policy: Optional[Policy] = None,
    log: Optional[List[str]] = None,
) -> ActivityResult:
    """usage check -> trigger check -> conditions -> consume -> effects -> usage update"""
    policy = policy or Policy()
    log = log if log is not None else []
    actor = ctx.actor
    warnings_before = len(ctx.warnings)

    def failed(failure: str, reason: str) -> ActivityResult:
        if failure != TRIGGER_MISMATCH:
            log.append(f"[ACT] {actor.name} {activity.name}: {reason}")
        return ActivityResult(activity.id, activity.name, success=False, failure=failure, reason=reason)

    over = usage_exceeded(actor, activity, ctx)
    if over:
        return failed(USAGE_LIMIT_EXCEEDED, over)

    if not trigger_matches(activity.trigger, ctx):
        return failed(TRIGGER_MISMATCH, f"trigger {activity.trigger.type} does not match {ctx.trigger_type}")

    blocking = check_conditions(activity.conditions, ctx, engine.config)
    if blocking is not None:
        return failed(CONDITION_NOT_MET, f"condition not met: {describe_condition(blocking)}")

    consumed = resolve_consumption(activity.consume, ctx, policy, log)
    if not consumed.success:
        return failed(consumed.failure, consumed.reason)

    log.append(f"[ACT] {actor.name} uses {activity.name}")
    results, halted = execute_effects(activity.effects, ctx, engine, log)
    if consumed.selected_option is not None and not halted:
        extra, halted = execute_effects(consumed.selected_option.effects, ctx, engine, log)
        results.extend(extra)

    record_usage(actor, activity, ctx)

    for w in ctx.warnings[warnings_before:]:
        log.append(f"[ACT] WARN {w}")

    return ActivityResult(
        activity.id,
        activity.name,
        success=True,
        effect_results=results,
        paid=consumed.paid,
        selected_option=consumed.selected_option.label if consumed.selected_option else None,
        halted=halted,
    )


def trigger_activities(
    activities: List[Activity],
    ctx: ExecutionContext,
    engine: Engine,
    policy: Optional[Policy] = None,
    log: Optional[List[str]] = None,
) -> List[ActivityResult]:
    """Run every activity the trigger fits; mismatches are skipped without a result."""
    results: List[ActivityResult] = []
    for activity in activities:
        if not trigger_matches(activity.trigger, ctx):
            continue
        ctx.consumed = False
        ctx.selected_option = None
        results.append(execute_activity(activity, ctx, engine, policy, log))
    return results


def trigger_item_activities(
    engine: Engine,
    item_id: str,
    ctx: ExecutionContext,
    policy: Optional[Policy] = None,
    log: Optional[List[str]] = None,
) -> List[ActivityResult]:
    ctx.item_id = item_id
    return trigger_activities(engine.activities_by_item.get(item_id, []), ctx, engine, policy, log)

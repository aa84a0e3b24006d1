import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from .buff_triggers import BUFF_TRIGGERS
from .conditions import SUPPORTED_CONDITION_KINDS
from .constants import (
    ACTIVITIES_JSON,
    ACTORS_JSON,
    ATTACK_CATEGORIES,
    BUFFS_CSV,
    CONSUME_MANDATORY,
    CONSUME_MODES,
    CONSUME_NONE,
    CONTEXT_FLAGS,
    CURRENT,
    CUSTOM_BUFF_ID,
    POOL_ALIASES,
    POOL_BONUS,
    POOL_TYPES,
    ROUND_TIMINGS,
    SELF,
    TARGET_NAMES,
    TRIGGER_TYPES,
)
from .effects import SUPPORTED_EFFECT_KINDS
from .expressions import validate
from .models import (
    Activity,
    ActorState,
    BuffDef,
    ConditionSpec,
    ConsumeOption,
    ConsumeSpec,
    EffectSpec,
    Engine,
    EngineConfig,
    ResourceCost,
    Trigger,
    UsageLimit,
)
from .rolls import is_dice_formula

PathLike = Union[str, Path]

# Condition kinds older activity data uses.
CONDITION_KIND_ALIASES = {"resource": "resourceCount"}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return None if s in ("", "nan", "None") else s


def _int(value: Any, default: int = 0) -> int:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    return int(float(value))


def _expression(value: Any, where: str) -> Any:
    """Numbers pass; strings must be dice formulas or valid expressions."""
    if value is None or isinstance(value, (int, float)) or is_dice_formula(value):
        return value
    check = validate(value)
    if not check["valid"]:
        raise ValueError(f"{where}: invalid expression {value!r} ({check['error']})")
    return value


def _target(raw: Dict[str, Any], where: str) -> str:
    target = _text(raw.get("target")) or SELF
    if target not in TARGET_NAMES:
        raise ValueError(f"{where}: unknown target {target!r}")
    return target


def _pool(name: Optional[str], where: str) -> str:
    pool = POOL_ALIASES.get(name or "", name)
    if pool not in POOL_TYPES:
        raise ValueError(f"{where}: unknown resource pool {name!r}")
    return pool


def load_buff_catalog(path: PathLike = BUFFS_CSV) -> Dict[str, BuffDef]:
    df = pd.read_csv(path)
    df = df.loc[:, ~df.columns.str.contains(r"^Unnamed")]

    catalog: Dict[str, BuffDef] = {}
    for _, r in df.iterrows():
        bid = str(r["id"]).strip()
        catalog[bid] = BuffDef(
            id=bid,
            name=_text(r.get("name")) or bid,
            group=_text(r.get("group")) or "",
            category=_text(r.get("category")) or "",
            description=_text(r.get("description")) or "",
            default_layers=_int(r.get("default_layers"), 1),
            default_potency=_int(r.get("default_potency"), 0),
            max_layers=_int(r.get("max_layers"), 0),
        )
    return catalog


def parse_trigger(raw: Any, where: str = "trigger") -> Trigger:
    """Accepts {'type', 'passive', 'category'} or the older bare string form."""
    if isinstance(raw, str):
        raw = {"type": raw}
    raw = raw or {}
    ttype = _text(raw.get("type"))
    if ttype not in TRIGGER_TYPES:
        raise ValueError(f"{where}: unknown trigger type {ttype!r}")
    category = _text(raw.get("category"))
    if category is not None and category not in ATTACK_CATEGORIES:
        raise ValueError(f"{where}: unknown attack category {category!r}")
    return Trigger(
        type=ttype,
        passive=bool(raw.get("passive", False)),
        category=category,
    )


def migrate_condition(raw: Dict[str, Any], owner: Optional[str] = None) -> Dict[str, Any]:
    """
    Older condition kinds in their current spelling:
      hasCost {amount}                  -> resourceCount on the bonus pool, >= amount
      roundLimit {activityId, maxCount} -> roundLimit with value = maxCount
    """
    kind = _text(raw.get("type") or raw.get("kind"))
    if kind == "hasCost":
        return {
            "type": "resourceCount",
            "target": raw.get("target") or SELF,
            "resource": POOL_BONUS,
            "operator": ">=",
            "value": raw.get("amount") or 1,
        }
    if kind == "roundLimit":
        out = dict(raw)
        out["activityId"] = _text(raw.get("activityId")) or owner
        if "value" not in raw:
            out["value"] = raw.get("maxCount", 1)
        return out
    return raw


def parse_condition(raw: Dict[str, Any], where: str = "condition", owner: Optional[str] = None) -> ConditionSpec:
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: condition must be an object, got {raw!r}")
    raw = migrate_condition(raw, owner)
    kind = _text(raw.get("type") or raw.get("kind")) or ""
    kind = CONDITION_KIND_ALIASES.get(kind, kind)
    if kind not in SUPPORTED_CONDITION_KINDS:
        raise ValueError(f"{where}: unknown condition kind {kind!r}")
    activity_id = _text(raw.get("activityId"))
    if kind == "roundLimit" and not activity_id:
        raise ValueError(f"{where}: roundLimit without an activity id")
    return ConditionSpec(
        kind=kind,
        target=_target(raw, where),
        buff_id=_text(raw.get("buffId")),
        name=_text(raw.get("customName") or raw.get("name")),
        operator=_text(raw.get("operator")) or ">=",
        value=_expression(raw.get("value", 0), where),
        resource=_text(raw.get("resource")),
        attribute=_text(raw.get("attribute")),
        expression=_expression(raw.get("expression"), where),
        activity_id=activity_id,
    )


def parse_resource(raw: Dict[str, Any], where: str = "resource") -> ResourceCost:
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: resource must be an object, got {raw!r}")
    rtype = _text(raw.get("type")) or ("buff" if raw.get("buffId") else "resource")
    if rtype == "buff":
        buff_id = _text(raw.get("buffId"))
        if not buff_id:
            raise ValueError(f"{where}: buff cost without buffId")
        return ResourceCost(
            kind="buff",
            amount=_int(raw.get("layers", raw.get("amount")), 1),
            buff_id=buff_id,
            name=_text(raw.get("customName") or raw.get("name")),
        )
    if rtype in ("resource", "pool"):
        return ResourceCost(
            kind="pool",
            amount=_int(raw.get("amount", raw.get("count")), 1),
            pool=_pool(_text(raw.get("resource") or raw.get("pool")), where),
        )
    raise ValueError(f"{where}: unsupported resource type {rtype!r}")


def parse_effect(raw: Dict[str, Any], where: str = "effect") -> EffectSpec:
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: effect must be an object, got {raw!r}")
    kind = _text(raw.get("type") or raw.get("kind")) or ""
    if kind not in SUPPORTED_EFFECT_KINDS:
        raise ValueError(f"{where}: unknown effect kind {kind!r}")
    timing = _text(raw.get("roundTiming")) or CURRENT
    if timing not in ROUND_TIMINGS:
        raise ValueError(f"{where}: unknown round timing {timing!r}")

    amount = raw.get("formula")
    if _text(amount) is None:
        amount = raw.get("amount", raw.get("value"))
    potency = raw.get("strength", raw.get("potency"))
    resource = _text(raw.get("resource"))
    condition = _text(raw.get("condition"))
    if condition and condition.lstrip("!").strip() not in CONTEXT_FLAGS:
        raise ValueError(f"{where}: unknown effect condition {condition!r}")

    return EffectSpec(
        kind=kind,
        buff_id=_text(raw.get("buffId")),
        name=_text(raw.get("customName") or raw.get("name")),
        layers=_expression(raw.get("layers", 1), where),
        potency=_expression(potency, where),
        target=_target(raw, where),
        timing=timing,
        amount=_expression(amount, where),
        resource=_pool(resource, where) if resource else POOL_BONUS,
        modify_type=_text(raw.get("modifyType")) or "finalValue",
        attribute=_text(raw.get("attribute")),
        damage_type=_text(raw.get("damageType")) or "direct",
        condition=condition,
        critical=bool(raw.get("critical", False)),
    )


def parse_usage_limit(raw: Any) -> Optional[UsageLimit]:
    """Accepts {'perRound', 'perCombat', 'total'} or the older {'type': 'perRound', 'count': n}."""
    if not raw:
        return None
    if "type" in raw:
        count = _int(raw.get("count"), 1)
        ltype = _text(raw.get("type"))
        if ltype == "perRound":
            return UsageLimit(per_round=count)
        if ltype == "perCombat":
            return UsageLimit(per_combat=count)
        if ltype == "total":
            return UsageLimit(total=count)
        raise ValueError(f"unknown usage limit type {ltype!r}")
    limit = UsageLimit(
        per_round=None if raw.get("perRound") is None else _int(raw["perRound"]),
        per_combat=None if raw.get("perCombat") is None else _int(raw["perCombat"]),
        total=None if raw.get("total") is None else _int(raw["total"]),
    )
    if limit == UsageLimit():
        return None
    return limit


def parse_consume(raw: Any, where: str = "consume") -> ConsumeSpec:
    raw = raw or {}
    resources = [parse_resource(r, f"{where}.resources[{i}]") for i, r in enumerate(raw.get("resources") or [])]
    options = []
    for i, opt in enumerate(raw.get("options") or []):
        options.append(
            ConsumeOption(
                label=_text(opt.get("label")) or f"option {i + 1}",
                resources=[
                    parse_resource(r, f"{where}.options[{i}].resources[{j}]")
                    for j, r in enumerate(opt.get("resources") or [])
                ],
                effects=[
                    parse_effect(e, f"{where}.options[{i}].effects[{j}]")
                    for j, e in enumerate(opt.get("effects") or [])
                ],
            )
        )
    mode = _text(raw.get("mode")) or (CONSUME_MANDATORY if resources else CONSUME_NONE)
    if mode not in CONSUME_MODES:
        raise ValueError(f"{where}: unknown consume mode {mode!r}")
    return ConsumeSpec(mode=mode, resources=resources, options=options)


# Fields of the older editor shape that migrate_activity folds into consume / effects.
LEGACY_ACTIVITY_FIELDS = ("hasConsume", "consumes", "effectsList", "customEffect", "target", "roundTiming")


def migrate_activity(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite an activity saved by the older editor into the current shape.

      - hasConsume + consumes       -> mandatory consume of buff layers
      - effects as {buffId: {...}}  -> one addBuff effect per entry
      - effectsList                 -> addBuff effects, appended
      - customEffect (enabled)      -> customBuff effect, appended

    The activity-level target and roundTiming become each migrated effect's
    own. Activities already in the current shape come back unchanged.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"activity must be an object, got {raw!r}")
    if not any(key in raw for key in LEGACY_ACTIVITY_FIELDS) and not isinstance(raw.get("effects"), dict):
        return raw

    where = f"activity {_text(raw.get('_id') or raw.get('id'))}"
    target = raw.get("target") or SELF
    timing = raw.get("roundTiming") or CURRENT

    def buff_effect(kind: str, buff_id: Any, data: Any, name_key: str = "buffId") -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValueError(f"{where}: legacy effect for {buff_id!r} must be an object, got {data!r}")
        return {
            "type": kind,
            name_key: buff_id,
            "layers": data.get("layers") or 0,
            "strength": data.get("strength") or 0,
            "target": target,
            "roundTiming": timing,
        }

    out = {k: v for k, v in raw.items() if k not in LEGACY_ACTIVITY_FIELDS}

    if raw.get("hasConsume") and raw.get("consumes"):
        out["consume"] = {
            "mode": CONSUME_MANDATORY,
            "resources": [
                {"type": "buff", "buffId": c.get("buffId"), "layers": c.get("layers") or 0}
                for c in raw["consumes"]
                if isinstance(c, dict)
            ],
        }

    effects = raw.get("effects")
    if isinstance(effects, dict):
        migrated = [buff_effect("addBuff", bid, data) for bid, data in effects.items() if bid and data]
    elif effects is None or isinstance(effects, list):
        migrated = list(effects or [])
    else:
        raise ValueError(f"{where}: effects must be a list or an object, got {effects!r}")

    for entry in raw.get("effectsList") or []:
        if isinstance(entry, dict) and entry.get("buffId"):
            migrated.append(buff_effect("addBuff", entry["buffId"], entry))

    custom = raw.get("customEffect") or {}
    if isinstance(custom, dict) and custom.get("enabled"):
        migrated.append(buff_effect("customBuff", custom.get("name"), custom, name_key="customName"))

    out["effects"] = migrated
    return out


def parse_activity(raw: Dict[str, Any]) -> Activity:
    raw = migrate_activity(raw)
    aid = _text(raw.get("_id") or raw.get("id"))
    if not aid:
        raise ValueError("activity without an id")
    where = f"activity {aid}"
    conditions = raw.get("conditions") or []
    effects = raw.get("effects") or []
    if not isinstance(conditions, list) or not isinstance(effects, list):
        raise ValueError(f"{where}: conditions and effects must be lists")
    return Activity(
        id=aid,
        name=_text(raw.get("name")) or aid,
        trigger=parse_trigger(raw.get("trigger"), f"{where}.trigger"),
        conditions=[parse_condition(c, f"{where}.conditions[{i}]", aid) for i, c in enumerate(conditions)],
        consume=parse_consume(raw.get("consume"), f"{where}.consume"),
        effects=[parse_effect(e, f"{where}.effects[{i}]") for i, e in enumerate(effects)],
        usage_limit=parse_usage_limit(raw.get("usageLimit")),
    )


def load_activities(path: PathLike = ACTIVITIES_JSON) -> Dict[str, List[Activity]]:
    """
    activities.json maps an item id to the activities it carries, either as a
    list or, as older item data stores them, as an object keyed by activity id.
    """
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    activities_by_item: Dict[str, List[Activity]] = {}
    for item_id, rows in payload.items():
        if isinstance(rows, dict):
            rows = [dict(row, _id=row.get("_id") or aid) if isinstance(row, dict) else row for aid, row in rows.items()]
        activities_by_item[str(item_id)] = [parse_activity(r) for r in rows]
    return activities_by_item


def load_actors(path: PathLike = ACTORS_JSON, config: Optional[EngineConfig] = None) -> Dict[str, ActorState]:
    with open(path, encoding="utf-8") as f:
        rows = json.load(f)
    actors = [ActorState.from_dict(r, config) for r in rows]
    return {a.actor_id: a for a in actors}


def _buff_refs(activity: Activity):
    for cond in activity.conditions:
        if cond.buff_id:
            yield "condition", cond.buff_id
    for cost in activity.consume.resources:
        if cost.kind == "buff":
            yield "consume", cost.buff_id
    for opt in activity.consume.options:
        for cost in opt.resources:
            if cost.kind == "buff":
                yield f"option '{opt.label}'", cost.buff_id
    for effect in list(activity.effects) + [e for opt in activity.consume.options for e in opt.effects]:
        if effect.kind in ("addBuff", "consumeBuff", "clearBuff"):
            yield effect.kind, effect.buff_id


def validate_activity(activity: Activity, catalog: Dict[str, BuffDef]) -> List[str]:
    """Problems that only show up against the buff catalog; empty when the activity is usable."""
    issues: List[str] = []
    for where, buff_id in _buff_refs(activity):
        if not buff_id:
            issues.append(f"{activity.id}: {where} without a buff id")
        elif buff_id not in catalog:
            issues.append(f"{activity.id}: {where} references unknown buff {buff_id!r}")

    effects = list(activity.effects) + [e for opt in activity.consume.options for e in opt.effects]
    for effect in effects:
        if effect.kind == "triggerBuffEffect" and effect.buff_id not in BUFF_TRIGGERS:
            issues.append(f"{activity.id}: {effect.buff_id!r} has no triggered effect")
        if effect.kind == "customBuff" and not effect.name:
            issues.append(f"{activity.id}: customBuff without a name")
        if effect.kind == "addBuff" and effect.buff_id == CUSTOM_BUFF_ID and not effect.name:
            issues.append(f"{activity.id}: custom addBuff without a name")
    return issues


def build_engine(
    buffs_csv: PathLike = BUFFS_CSV,
    activities_json: PathLike = ACTIVITIES_JSON,
    config: Optional[EngineConfig] = None,
) -> Engine:
    catalog = load_buff_catalog(buffs_csv)
    activities_by_item = load_activities(activities_json)

    issues = [
        issue
        for activities in activities_by_item.values()
        for activity in activities
        for issue in validate_activity(activity, catalog)
    ]
    if issues:
        raise ValueError("Invalid activity data:\n  " + "\n  ".join(issues))

    return Engine(
        buff_catalog=catalog,
        activities_by_item=activities_by_item,
        config=config or EngineConfig(),
    )

import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from shd_rules.loaders import (
    build_engine,
    load_activities,
    load_actors,
    load_buff_catalog,
    migrate_activity,
    parse_activity,
    parse_condition,
    parse_effect,
    parse_resource,
    parse_usage_limit,
    validate_activity,
)
from shd_rules.models import ActorState, UsageLimit


def test_buff_catalog_rows():
    catalog = load_buff_catalog()
    assert len(catalog) == 31
    assert catalog["charge"].max_layers == 20
    assert catalog["ammo"].default_layers == 10
    assert catalog["burn"].default_potency == 4
    assert catalog["corruption_effect"].name == "Sinking"
    assert catalog["strong_slash"].category == "slash"
    assert catalog["strong"].category == ""
    assert "custom" in catalog


def test_shipped_activities_load_and_validate():
    engine = build_engine()
    assert set(engine.activities_by_item) == {
        "iron_longsword",
        "chant_tome",
        "ember_staff",
        "field_medkit",
        "tremor_maul",
    }
    rally, edge = engine.activities_by_item["iron_longsword"]
    assert rally.usage_limit == UsageLimit(per_round=1)
    assert edge.trigger.passive and edge.trigger.category == "slash"
    verse = engine.activities_by_item["chant_tome"][0]
    assert verse.trigger.type == "onUse"
    assert verse.conditions[0].operator == "gte"
    medkit = engine.activities_by_item["field_medkit"][0]
    assert medkit.usage_limit == UsageLimit(per_round=1, per_combat=2)
    assert medkit.effects[0].amount == "1d6"
    focus = engine.activities_by_item["ember_staff"][0]
    assert focus.conditions[0].kind == "resourceCount"
    assert [o.label for o in focus.consume.options] == ["Crack the guard", "Overcharge"]
    assert focus.consume.options[1].effects[0].amount == 6
    assert focus.consume.options[0].resources[0].pool == "bonus"


def test_shipped_actors():
    actors = load_actors()
    vera = actors["vera"]
    assert vera.hp == 60 and vera.hp_max == 80
    assert vera.pool.bonus == [False, False, True]
    assert [(b.id, b.layers) for b in vera.buffs] == [("chant", 5), ("breath", 2)]
    warden = actors["warden"]
    assert warden.pool.primary == [False] * 6
    assert warden.buffs[0].timing == "next"


def test_actor_state_survives_dict_form():
    vera = load_actors()["vera"]
    vera.usage["rally:round"] = {"round": 1, "count": 1}
    again = ActorState.from_dict(vera.to_dict())
    assert again == vera


def test_effect_field_mapping():
    effect = parse_effect(
        {
            "type": "addBuff",
            "buffId": "burn",
            "layers": "{chant.layers}",
            "strength": 2,
            "target": "target",
            "roundTiming": "next",
            "critical": True,
        }
    )
    assert (effect.kind, effect.buff_id, effect.layers, effect.potency) == ("addBuff", "burn", "{chant.layers}", 2)
    assert (effect.target, effect.timing, effect.critical) == ("target", "next", True)
    dice = parse_effect({"type": "modifyDice", "value": 2, "formula": "{charge.layers}"})
    assert dice.amount == "{charge.layers}"
    restore = parse_effect({"type": "restoreResource", "resource": "extraCost", "amount": 1})
    assert restore.resource == "primary"


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "reuseDice"},
        {"type": "addBuff", "buffId": "burn", "roundTiming": "later"},
        {"type": "addBuff", "buffId": "burn", "layers": "{burn.layers"},
        {"type": "heal", "formula": "__import__('os')"},
        {"type": "addBuff", "buffId": "burn", "target": "everyone"},
        {"type": "restoreResource", "resource": "mana"},
    ],
)
def test_bad_effects_are_rejected_at_load(raw):
    with pytest.raises(ValueError):
        parse_effect(raw)


def test_condition_parsing():
    cond = parse_condition({"type": "resource", "resource": "ex", "operator": ">=", "value": 1})
    assert cond.kind == "resourceCount"
    with pytest.raises(ValueError):
        parse_condition({"type": "armorResistance", "category": "pierce", "value": "weak"})


def test_resource_parsing():
    assert parse_resource({"type": "buff", "buffId": "chant", "layers": 4}).amount == 4
    assert parse_resource({"type": "resource", "resource": "ex", "amount": 2}).pool == "bonus"
    with pytest.raises(ValueError):
        parse_resource({"type": "attribute", "attribute": "hp", "value": 10})


def test_usage_limit_shapes():
    assert parse_usage_limit(None) is None
    assert parse_usage_limit({}) is None
    assert parse_usage_limit({"type": "perCombat", "count": 2}) == UsageLimit(per_combat=2)
    assert parse_usage_limit({"total": 3}) == UsageLimit(total=3)
    with pytest.raises(ValueError):
        parse_usage_limit({"type": "perWeek", "count": 1})


def test_unknown_trigger_is_rejected():
    with pytest.raises(ValueError):
        parse_activity({"_id": "a", "trigger": {"type": "onSneeze"}})


def test_consume_mode_defaults_from_resources():
    activity = parse_activity(
        {"_id": "a", "trigger": "onUse", "consume": {"resources": [{"buffId": "chant", "layers": 1}]}}
    )
    assert activity.consume.mode == "mandatory"
    assert parse_activity({"_id": "b", "trigger": "onUse"}).consume.mode == "none"


def test_validate_activity_reports_unknown_buffs():
    catalog = load_buff_catalog()
    activity = parse_activity(
        {
            "_id": "bad",
            "trigger": "onUse",
            "conditions": [{"type": "hasBuff", "buffId": "grandMagic"}],
            "effects": [
                {"type": "addBuff", "buffId": "frostbite"},
                {"type": "triggerBuffEffect", "buffId": "guard"},
                {"type": "customBuff"},
            ],
        }
    )
    assert validate_activity(activity, catalog) == [
        "bad: condition references unknown buff 'grandMagic'",
        "bad: addBuff references unknown buff 'frostbite'",
        "bad: 'guard' has no triggered effect",
        "bad: customBuff without a name",
    ]


def test_build_engine_rejects_invalid_data(tmp_path):
    path = tmp_path / "activities.json"
    path.write_text(
        json.dumps({"wand": [{"_id": "zap", "trigger": "onUse", "effects": [{"type": "addBuff", "buffId": "zap"}]}]}),
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="unknown buff 'zap'"):
        build_engine(activities_json=path)
    assert load_activities(path)["wand"][0].id == "zap"


def test_effect_condition_must_name_a_context_flag():
    assert parse_effect({"type": "heal", "amount": 2, "condition": "!consumed"}).condition == "!consumed"
    with pytest.raises(ValueError, match="unknown effect condition"):
        parse_effect({"type": "heal", "amount": 2, "condition": "actor"})


def test_legacy_effects_object_becomes_add_buff_effects():
    activity = parse_activity(
        {
            "_id": "old",
            "trigger": "onUse",
            "target": "selected",
            "roundTiming": "next",
            "effects": {"strong": {"layers": 2}, "burn": {"layers": 1, "strength": 3}},
        }
    )
    assert [(e.kind, e.buff_id, e.layers, e.potency, e.target, e.timing) for e in activity.effects] == [
        ("addBuff", "strong", 2, 0, "selected", "next"),
        ("addBuff", "burn", 1, 3, "selected", "next"),
    ]


def test_legacy_consumes_effects_list_and_custom_effect():
    raw = {
        "_id": "old",
        "name": "Old Chant",
        "trigger": "onUse",
        "hasConsume": True,
        "consumes": [{"buffId": "chant", "layers": 2, "strength": 0}],
        "effectsList": [{"buffId": "charge", "layers": 3, "strength": 0}],
        "customEffect": {"enabled": True, "name": "Echo", "layers": 1, "strength": 2},
    }
    migrated = migrate_activity(raw)
    assert "hasConsume" not in migrated and "effectsList" not in migrated
    activity = parse_activity(raw)
    assert activity.consume.mode == "mandatory"
    assert [(r.buff_id, r.amount) for r in activity.consume.resources] == [("chant", 2)]
    assert [(e.kind, e.buff_id, e.name, e.layers, e.potency) for e in activity.effects] == [
        ("addBuff", "charge", None, 3, 0),
        ("customBuff", None, "Echo", 1, 2),
    ]


def test_disabled_custom_effect_and_unticked_consume_are_ignored():
    activity = parse_activity(
        {
            "_id": "old",
            "trigger": "onUse",
            "hasConsume": False,
            "consumes": [{"buffId": "chant", "layers": 2}],
            "customEffect": {"enabled": False, "name": "Echo", "layers": 1},
        }
    )
    assert activity.consume.mode == "none"
    assert activity.effects == []


def test_current_shape_passes_through_migration_unchanged():
    raw = {"_id": "new", "trigger": {"type": "onUse"}, "effects": [{"type": "heal", "amount": 2}]}
    assert migrate_activity(raw) is raw


@pytest.mark.parametrize(
    "raw",
    [
        {"_id": "old", "trigger": "onUse", "effects": "strong"},
        {"_id": "old", "trigger": "onUse", "effects": {"strong": 2}},
        {"_id": "old", "trigger": "onUse", "effects": ["strong"]},
        {"_id": "old", "trigger": "onUse", "conditions": ["hasBuff"]},
        {"_id": "old", "trigger": "onUse", "target": "everyone", "effects": {"strong": {"layers": 1}}},
    ],
)
def test_malformed_legacy_shapes_raise_value_error(raw):
    with pytest.raises(ValueError):
        parse_activity(raw)


def test_has_cost_and_round_limit_conditions():
    has_cost = parse_condition({"type": "hasCost", "amount": 2})
    assert (has_cost.kind, has_cost.resource, has_cost.operator, has_cost.value) == ("resourceCount", "bonus", ">=", 2)
    assert parse_condition({"type": "hasCost"}).value == 1
    activity = parse_activity({"_id": "zap", "trigger": "onUse", "conditions": [{"type": "roundLimit", "maxCount": 1}]})
    limit = activity.conditions[0]
    assert (limit.kind, limit.activity_id, limit.value) == ("roundLimit", "zap", 1)
    other = parse_condition({"type": "roundLimit", "activityId": "bolt", "maxCount": 3})
    assert (other.activity_id, other.value) == ("bolt", 3)
    with pytest.raises(ValueError):
        parse_condition({"type": "roundLimit", "maxCount": 1})


def test_activities_keyed_by_id_load_as_a_list(tmp_path):
    path = tmp_path / "activities.json"
    path.write_text(
        json.dumps({"wand": {"zap": {"name": "Zap", "trigger": "onUse", "effects": {"strong": {"layers": 1}}}}}),
        encoding="utf-8",
    )
    (zap,) = load_activities(path)["wand"]
    assert (zap.id, zap.name, zap.effects[0].buff_id) == ("zap", "Zap", "strong")

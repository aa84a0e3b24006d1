import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from shd_rules.buffs import active_layers
from shd_rules.constants import INSUFFICIENT_RESOURCE, USER_CANCELLED
from shd_rules.consumption import _deduct, resolve_consumption, shortfalls
from shd_rules.models import (
    ActorState,
    BuffInstance,
    CheapestFirstPolicy,
    ConsumeOption,
    ConsumeSpec,
    ExecutionContext,
    Policy,
    ResourceCost,
)


class ScriptedPolicy(Policy):
    def __init__(self, choice):
        self.choice = choice
        self.offered = []

    def choose_consume_option(self, actor, options, ctx):
        self.offered.append([opt.label for opt in options])
        return self.choice


class NeverAskPolicy(Policy):
    def choose_consume_option(self, actor, options, ctx):
        raise AssertionError("the player should not be asked")


def _ctx(*buffs):
    return ExecutionContext(actor=ActorState(actor_id="hero", buffs=list(buffs)))


def _buff(buff_id, amount):
    return ResourceCost(kind="buff", amount=amount, buff_id=buff_id)


def _pool(pool, amount):
    return ResourceCost(kind="pool", amount=amount, pool=pool)


def test_none_mode_is_free():
    ctx = _ctx()
    result = resolve_consumption(ConsumeSpec(), ctx, Policy(), [])
    assert result.success
    assert result.paid == []
    assert ctx.consumed is False


def test_mandatory_exact_amount_empties_stack():
    ctx = _ctx(BuffInstance(id="x", layers=3))
    result = resolve_consumption(ConsumeSpec(mode="mandatory", resources=[_buff("x", 3)]), ctx, Policy(), [])
    assert result.success
    assert ctx.actor.buffs == []
    assert ctx.consumed is True


def test_mandatory_shortfall_changes_nothing():
    ctx = _ctx(BuffInstance(id="x", layers=2))
    result = resolve_consumption(ConsumeSpec(mode="mandatory", resources=[_buff("x", 3)]), ctx, Policy(), [])
    assert not result.success
    assert result.failure == INSUFFICIENT_RESOURCE
    assert "x (need 3, have 2)" in result.reason
    assert ctx.actor.buffs[0].layers == 2
    assert ctx.consumed is False


def test_mandatory_is_all_or_nothing_across_entries():
    ctx = _ctx(BuffInstance(id="chant", layers=4))
    ctx.actor.pool.bonus = [True, True, True]
    spec = ConsumeSpec(mode="mandatory", resources=[_buff("chant", 2), _pool("bonus", 1)])
    result = resolve_consumption(spec, ctx, Policy(), [])
    assert not result.success
    assert active_layers(ctx.actor, "chant") == 4


def test_repeated_requirements_are_counted_together():
    actor = ActorState(actor_id="hero", buffs=[BuffInstance(id="chant", layers=3)])
    assert shortfalls(actor, [_buff("chant", 2), _buff("chant", 2)]) == ["chant (need 4, have 3)"]


def test_pool_deduction_takes_lowest_index_first():
    ctx = _ctx()
    ctx.actor.pool.bonus = [False, True, False]
    log = []
    result = resolve_consumption(ConsumeSpec(mode="mandatory", resources=[_pool("bonus", 1)]), ctx, Policy(), log)
    assert result.success
    assert ctx.actor.pool.bonus == [True, True, False]
    assert log == ["[COST] hero paid 1 bonus"]


def _two_options():
    return ConsumeSpec(
        mode="optional",
        options=[
            ConsumeOption(label="cheap", resources=[_pool("bonus", 1)]),
            ConsumeOption(label="dear", resources=[_pool("bonus", 2)]),
        ],
    )


def test_optional_with_several_choices_asks_and_can_be_cancelled():
    ctx = _ctx()
    policy = ScriptedPolicy(None)
    result = resolve_consumption(_two_options(), ctx, policy, [])
    assert policy.offered == [["cheap", "dear"]]
    assert not result.success
    assert result.failure == USER_CANCELLED
    assert ctx.actor.pool.bonus == [False, False, False]
    assert ctx.selected_option is None


def test_optional_pays_the_chosen_option():
    ctx = _ctx()
    result = resolve_consumption(_two_options(), ctx, ScriptedPolicy(1), [])
    assert result.success
    assert result.selected_option.label == "dear"
    assert ctx.selected_option.label == "dear"
    assert ctx.actor.pool.bonus == [True, True, False]


def test_out_of_range_choice_is_a_cancel():
    ctx = _ctx()
    result = resolve_consumption(_two_options(), ctx, ScriptedPolicy(5), [])
    assert result.failure == USER_CANCELLED
    assert ctx.actor.pool.bonus == [False, False, False]


def test_default_policy_never_picks_between_options():
    ctx = _ctx()
    log = []
    result = resolve_consumption(_two_options(), ctx, Policy(), log)
    assert result.failure == USER_CANCELLED
    assert ctx.actor.pool.bonus == [False, False, False]
    assert ctx.consumed is False
    assert log == ["[COST] hero cancelled the consume choice"]


def test_cheapest_first_bot_pays_the_cheapest_option():
    ctx = _ctx()
    result = resolve_consumption(_two_options(), ctx, CheapestFirstPolicy(), [])
    assert result.selected_option.label == "cheap"
    assert ctx.actor.pool.bonus == [True, False, False]


def test_single_affordable_option_is_auto_selected():
    ctx = _ctx()
    ctx.actor.pool.bonus = [True, False, True]
    result = resolve_consumption(_two_options(), ctx, NeverAskPolicy(), [])
    assert result.success
    assert result.selected_option.label == "cheap"
    assert ctx.actor.pool.bonus == [True, True, True]


def test_no_affordable_option_fails():
    ctx = _ctx()
    ctx.actor.pool.bonus = [True, True, True]
    result = resolve_consumption(_two_options(), ctx, NeverAskPolicy(), [])
    assert result.failure == INSUFFICIENT_RESOURCE


def test_mandatory_shortfall_stops_before_options_are_paid():
    ctx = _ctx(BuffInstance(id="chant", layers=1))
    spec = ConsumeSpec(
        mode="optional",
        resources=[_buff("chant", 2)],
        options=[ConsumeOption(label="only", resources=[_pool("bonus", 1)])],
    )
    result = resolve_consumption(spec, ctx, NeverAskPolicy(), [])
    assert result.failure == INSUFFICIENT_RESOURCE
    assert ctx.actor.pool.bonus == [False, False, False]
    assert active_layers(ctx.actor, "chant") == 1


def test_mandatory_and_option_are_paid_together():
    ctx = _ctx(BuffInstance(id="chant", layers=3))
    spec = ConsumeSpec(
        mode="optional",
        resources=[_buff("chant", 2)],
        options=[
            ConsumeOption(label="more chant", resources=[_buff("chant", 2)]),
            ConsumeOption(label="bonus", resources=[_pool("bonus", 1)]),
        ],
    )
    result = resolve_consumption(spec, ctx, NeverAskPolicy(), [])
    assert result.selected_option.label == "bonus"
    assert active_layers(ctx.actor, "chant") == 1
    assert ctx.actor.pool.bonus == [True, False, False]
    assert result.paid == ["2 chant", "1 bonus"]


def test_named_and_unnamed_catalog_costs_are_counted_together():
    ctx = _ctx(BuffInstance(id="chant", layers=3))
    named = ResourceCost(kind="buff", amount=2, buff_id="chant", name="Chant")
    spec = ConsumeSpec(mode="mandatory", resources=[named, _buff("chant", 2)])
    result = resolve_consumption(spec, ctx, Policy(), [])
    assert result.failure == INSUFFICIENT_RESOURCE
    assert result.reason == "insufficient chant (need 4, have 3)"
    assert active_layers(ctx.actor, "chant") == 3


def test_custom_costs_stay_apart_by_name():
    actor = ActorState(
        actor_id="hero",
        buffs=[
            BuffInstance(id="custom", name="Echo", layers=2),
            BuffInstance(id="custom", name="Ward", layers=2),
        ],
    )
    echo = ResourceCost(kind="buff", amount=2, buff_id="custom", name="Echo")
    ward = ResourceCost(kind="buff", amount=2, buff_id="custom", name="Ward")
    assert shortfalls(actor, [echo, ward]) == []


def test_unpayable_buff_cost_is_an_error_not_a_receipt():
    actor = ActorState(actor_id="hero", buffs=[BuffInstance(id="chant", layers=1)])
    log = []
    with pytest.raises(RuntimeError):
        _deduct(actor, [_buff("chant", 2)], log)
    assert log == []
    assert active_layers(actor, "chant") == 1

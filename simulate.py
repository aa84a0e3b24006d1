#!/usr/bin/env python3
"""
Scripted skirmish between the sample actors, for eyeballing rule changes.

Each round:
- round-start activities fire (the chant tome refills chant)
- the attacker uses the longsword, then attacks with the ember staff and
  the maul; passives, breath, bleed and rupture resolve around the hit
- the burning verse spends chant if there is enough of it
- the defender counters successfully, which may roll a medkit heal
- round end reconciles every actor's buffs
"""
import logging
import random
from typing import List

from shd_rules.activities import trigger_item_activities
from shd_rules.buff_triggers import trigger_bleed, trigger_breath, trigger_rupture
from shd_rules.buffs import describe_stacks
from shd_rules.constants import (
    ON_ATTACK,
    ON_COUNTER_SUCCESS,
    ON_HIT,
    ON_ROUND_START,
    ON_USE,
)
from shd_rules.loaders import build_engine, load_actors
from shd_rules.models import ActorState, CheapestFirstPolicy, DiceContext, Engine, ExecutionContext
from shd_rules.rolls import DiceRoller
from shd_rules.rounds import advance_round


def log_round_state(actors: List[ActorState], engine: Engine, log: List[str]) -> None:
    for a in actors:
        log.append(
            f"  {a.name}: hp={a.hp}/{a.hp_max} chaos={a.chaos}/{a.chaos_max} "
            f"bonus={a.pool.available('bonus')}/{len(a.pool.bonus)} buffs: {describe_stacks(a, engine.buff_catalog)}"
        )


def run_combat(seed: int = 7, rounds: int = 3) -> List[str]:
    roller = DiceRoller(random.Random(seed))
    engine = build_engine()
    actors = load_actors(config=engine.config)
    attacker, defender = actors["vera"], actors["warden"]
    policy = CheapestFirstPolicy()
    log: List[str] = []

    def context(round_no: int, trigger: str, **kwargs) -> ExecutionContext:
        return ExecutionContext(
            actor=kwargs.pop("actor", attacker),
            target=kwargs.pop("target", defender),
            round=round_no,
            combat_id=f"skirmish-{seed}",
            trigger_type=trigger,
            roller=roller,
            **kwargs,
        )

    for r in range(1, rounds + 1):
        log.append(f"=== Round {r} ===")
        log_round_state([attacker, defender], engine, log)

        trigger_item_activities(engine, "chant_tome", context(r, ON_ROUND_START), policy, log)
        for result in trigger_item_activities(engine, "iron_longsword", context(r, ON_USE), policy, log):
            log.append(f"  -> {result.summary()}")

        roll = roller.roll("2d6")
        dice = DiceContext(base_value=roll.total, final_value=roll.total, formula=roll.formula)
        log.append(f"[DICE] {attacker.name} rolls {roll.formula} = {roll.total} {roll.dice}")
        for item_id in ("ember_staff", "iron_longsword"):
            attack = context(r, ON_ATTACK, dice=dice, attack_category="slash")
            for result in trigger_item_activities(engine, item_id, attack, policy, log):
                log.append(f"  -> {result.summary()}")
        trigger_bleed(attacker, log)

        breath = trigger_breath(attacker, roll.total, dice.final_value, log)
        damage = breath.final_damage if breath.triggered else dice.final_value
        dealt = defender.take_damage(damage)
        log.append(f"[HIT] {attacker.name} hits {defender.name} for {dealt} ({defender.hp}/{defender.hp_max})")
        trigger_rupture(defender, log)
        for result in trigger_item_activities(engine, "tremor_maul", context(r, ON_HIT, dice=dice), policy, log):
            log.append(f"  -> {result.summary()}")

        for result in trigger_item_activities(engine, "chant_tome", context(r, ON_USE), policy, log):
            log.append(f"  -> {result.summary()}")

        counter = context(r, ON_COUNTER_SUCCESS, actor=defender, target=attacker)
        for result in trigger_item_activities(engine, "field_medkit", counter, policy, log):
            log.append(f"  -> {result.summary()}")
            for pending in result.pending_heals:
                healed = pending.confirm()
                log.append(f"[HEAL] {pending.target.name} confirms {pending.formula} heal: +{healed}")

        advance_round([attacker, defender], log, engine.buff_catalog)

    log.append("=== Final ===")
    log_round_state([attacker, defender], engine, log)
    return log


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    for line in run_combat(seed=7, rounds=3):
        print(line)

#!/usr/bin/env python3
import json
import sys
from typing import Any, Dict, List, Tuple

import pandas as pd

from shd_rules.buff_triggers import BUFF_TRIGGERS
from shd_rules.conditions import SUPPORTED_CONDITION_KINDS
from shd_rules.constants import ACTIVITIES_JSON, BUFFS_CSV, TRIGGER_TYPES
from shd_rules.effects import SUPPORTED_EFFECT_KINDS
from shd_rules.expressions import validate
from shd_rules.loaders import CONDITION_KIND_ALIASES, migrate_activity, migrate_condition
from shd_rules.rolls import is_dice_formula

# Fields of an effect or condition row that hold formulas.
EXPRESSION_FIELDS = ("layers", "strength", "potency", "formula", "amount", "value", "expression")


def _read_csv(path) -> pd.DataFrame:
    df = pd.read_csv(path)
    df = df.loc[:, ~df.columns.str.contains(r"^Unnamed")]
    return df


def _norm(x) -> str:
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return ""
    return str(x).strip()


def _flatten(payload: Dict[str, List[Dict[str, Any]]]) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """One row per activity, per effect (option effects included) and per condition."""
    activities, effects, conditions = [], [], []
    for item_id, rows in payload.items():
        if isinstance(rows, dict):
            rows = list(rows.values())
        for a in map(migrate_activity, rows):
            aid = _norm(a.get("_id") or a.get("id"))
            trigger = a.get("trigger")
            ttype = trigger if isinstance(trigger, str) else (trigger or {}).get("type")
            activities.append({"item": item_id, "activity": aid, "trigger": _norm(ttype)})
            for e in a.get("effects") or []:
                effects.append({"item": item_id, "activity": aid, "source": "effects", **e})
            for opt in (a.get("consume") or {}).get("options") or []:
                for e in opt.get("effects") or []:
                    effects.append({"item": item_id, "activity": aid, "source": f"option:{opt.get('label')}", **e})
            for c in a.get("conditions") or []:
                conditions.append({"item": item_id, "activity": aid, **migrate_condition(c, aid)})
    return pd.DataFrame(activities), pd.DataFrame(effects), pd.DataFrame(conditions)


def expression_likely_invalid(value) -> bool:
    if isinstance(value, (int, float)) or value is None:
        return False
    text = _norm(value)
    if text == "" or text.lower() == "nan" or is_dice_formula(text):
        return False
    return not validate(text)["valid"]


def main() -> int:
    buffs = _read_csv(BUFFS_CSV)
    with open(ACTIVITIES_JSON, encoding="utf-8") as f:
        payload = json.load(f)
    acts, eff, cond = _flatten(payload)
    known_buffs = set(buffs["id"].astype(str).str.strip())

    # ---------- TRIGGERS ----------
    bad_triggers = sorted(set(acts["trigger"]) - TRIGGER_TYPES) if not acts.empty else []

    # ---------- EFFECT KIND COVERAGE ----------
    effect_kinds = sorted(set(eff["type"].map(_norm))) if "type" in eff.columns else []
    unimplemented = sorted(set(effect_kinds) - SUPPORTED_EFFECT_KINDS)

    # ---------- CONDITION KIND COVERAGE ----------
    condition_kinds = []
    if "type" in cond.columns:
        condition_kinds = sorted(set(CONDITION_KIND_ALIASES.get(_norm(k), _norm(k)) for k in cond["type"]))
    unknown_conditions = sorted(set(condition_kinds) - SUPPORTED_CONDITION_KINDS)

    # ---------- BUFF REFERENCES ----------
    unknown_buffs: List[Tuple[str, str, str]] = []
    for frame, label in ((eff, "effect"), (cond, "condition")):
        if "buffId" not in frame.columns:
            continue
        for _, r in frame.iterrows():
            bid = _norm(r.get("buffId"))
            if not bid:
                continue
            if label == "effect" and _norm(r.get("type")) == "triggerBuffEffect":
                if bid not in BUFF_TRIGGERS:
                    unknown_buffs.append((r["activity"], label, bid))
            elif bid not in known_buffs:
                unknown_buffs.append((r["activity"], label, bid))

    # ---------- EXPRESSIONS ----------
    bad_expressions: List[Tuple[str, str, str]] = []
    for frame in (eff, cond):
        for field in EXPRESSION_FIELDS:
            if field not in frame.columns:
                continue
            for _, r in frame.iterrows():
                if expression_likely_invalid(r.get(field)):
                    bad_expressions.append((r["activity"], field, _norm(r.get(field))))

    # ---------- PRINT REPORT ----------
    print("=== Activity Audit ===\n")

    print(f"[1] Buff catalog: {len(buffs)} buffs")
    for group, count in buffs.groupby("group").size().sort_index().items():
        print(f"  - {group:<18} {count}")
    print()

    print(f"[2] Effect kinds found (total {len(effect_kinds)}):")
    counts = eff["type"].map(_norm).value_counts() if "type" in eff.columns else pd.Series(dtype=int)
    for k in effect_kinds:
        tag = "OK" if k in SUPPORTED_EFFECT_KINDS else "UNIMPLEMENTED"
        print(f"  - {k:<20} x{int(counts.get(k, 0)):<4} {tag}")
    print()

    print(f"[3] Condition kinds found (total {len(condition_kinds)}):")
    for k in condition_kinds:
        print(f"  - {k:<20} {'OK' if k in SUPPORTED_CONDITION_KINDS else 'UNKNOWN'}")
    print()

    print(f"[4] Unknown trigger types (total {len(bad_triggers)}):")
    print("  (none)" if not bad_triggers else "\n".join(f"  - {t}" for t in bad_triggers))
    print()

    print(f"[5] Unknown buff references (total {len(unknown_buffs)}):")
    if not unknown_buffs:
        print("  (none)")
    for aid, label, bid in unknown_buffs:
        print(f"  - [{aid}] {label}: {bid}")
    print()

    print(f"[6] Invalid expressions (total {len(bad_expressions)}):")
    if not bad_expressions:
        print("  (none)")
    for aid, field, text in bad_expressions:
        print(f"  - [{aid}] {field}: {text}")
    print()

    if bad_triggers or unimplemented or unknown_conditions or unknown_buffs or bad_expressions:
        print("STATUS: issues found")
        return 2
    print("STATUS: clean")
    return 0


if __name__ == "__main__":
    sys.exit(main())

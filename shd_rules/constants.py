from pathlib import Path

DATA_DIR = Path(__file__).resolve().parent / "data"
BUFFS_CSV = DATA_DIR / "buffs.csv"
ACTIVITIES_JSON = DATA_DIR / "activities.json"
ACTORS_JSON = DATA_DIR / "actors.json"

# Trigger moments
ON_USE = "onUse"
ON_EQUIP = "onEquip"
ON_UNEQUIP = "onUnequip"
ON_ATTACK = "onAttack"
ON_COUNTER = "onCounter"
ON_COUNTER_SUCCESS = "onCounterSuccess"
ON_COUNTER_FAIL = "onCounterFail"
ON_HIT = "onHit"
ON_DAMAGED = "onDamaged"
ON_KILL = "onKill"
ON_DEATH = "onDeath"
ON_ROUND_START = "onRoundStart"
ON_ROUND_END = "onRoundEnd"
ON_COMBAT_START = "onCombatStart"
ON_COMBAT_END = "onCombatEnd"
ON_TREMOR_EXPLODE = "onTremorExplode"
ON_BUFF_APPLIED = "onBuffApplied"
ON_BUFF_REMOVED = "onBuffRemoved"
PASSIVE = "passive"

TRIGGER_TYPES = {
    ON_USE,
    ON_EQUIP,
    ON_UNEQUIP,
    ON_ATTACK,
    ON_COUNTER,
    ON_COUNTER_SUCCESS,
    ON_COUNTER_FAIL,
    ON_HIT,
    ON_DAMAGED,
    ON_KILL,
    ON_DEATH,
    ON_ROUND_START,
    ON_ROUND_END,
    ON_COMBAT_START,
    ON_COMBAT_END,
    ON_TREMOR_EXPLODE,
    ON_BUFF_APPLIED,
    ON_BUFF_REMOVED,
    PASSIVE,
}

# A passive activity fires whenever a combat die is used in one of these moments.
PASSIVE_MOMENTS = {ON_USE, ON_ATTACK, ON_COUNTER}

ATTACK_CATEGORIES = {"slash", "pierce", "blunt"}

# Targets
SELF = "self"
TARGET = "target"
SELECTED = "selected"
OPPONENT = "opponent"
TARGET_NAMES = {SELF, TARGET, SELECTED, OPPONENT}

# Round timing
CURRENT = "current"
NEXT = "next"
BOTH = "both"
ROUND_TIMINGS = (CURRENT, NEXT, BOTH)
ACTIVE_TIMINGS = (CURRENT, BOTH)

# Context fields an effect condition may name.
CONTEXT_FLAGS = {"consumed", "selected_option", "dice", "target"}

# Consumption
CONSUME_NONE = "none"
CONSUME_MANDATORY = "mandatory"
CONSUME_OPTIONAL = "optional"
CONSUME_MODES = {CONSUME_NONE, CONSUME_MANDATORY, CONSUME_OPTIONAL}

POOL_PRIMARY = "primary"
POOL_BONUS = "bonus"
POOL_TYPES = {POOL_PRIMARY, POOL_BONUS}
# Older authored data names the pools after the sheet's resource tracks.
POOL_ALIASES = {
    "extraCost": POOL_PRIMARY,
    "cost": POOL_PRIMARY,
    "ex": POOL_BONUS,
    "exResources": POOL_BONUS,
}

# Buff catalog
CUSTOM_BUFF_ID = "custom"
ONE_ROUND_BUFF_IDS = {"strong", "weak", "guard", "vulnerable", "swift", "bound", "endure", "flaw"}
ROUND_END_DECAY_BUFF_IDS = {"burn", "breath", "charge", "chant"}

# Comparison operators, including the aliases older activity data uses.
OPERATOR_ALIASES = {
    "reach": "==",
    "equal": "==",
    "eq": "==",
    "neq": "!=",
    "gt": ">",
    "lt": "<",
    "gte": ">=",
    "lte": "<=",
}

# Failure tags
TRIGGER_MISMATCH = "trigger_mismatch"
USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"
CONDITION_NOT_MET = "condition_not_met"
INSUFFICIENT_RESOURCE = "insufficient_resource"
UNKNOWN_CATALOG_ID = "unknown_catalog_id"
USER_CANCELLED = "user_cancelled"
UNKNOWN_EFFECT_KIND = "unknown_effect_kind"
NO_TARGET = "no_target"
NO_DICE_CONTEXT = "no_dice_context"
INVALID_AMOUNT = "invalid_amount"
EFFECT_ERROR = "effect_error"

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import (
    CONSUME_NONE,
    CONTEXT_FLAGS,
    CURRENT,
    CUSTOM_BUFF_ID,
    OPPONENT,
    POOL_BONUS,
    POOL_PRIMARY,
    SELECTED,
    SELF,
    TARGET,
)


@dataclass(frozen=True)
class EngineConfig:
    primary_slots: int = 6
    bonus_slots: int = 3
    unknown_condition_passes: bool = False
    default_hp_max: int = 100


@dataclass(frozen=True)
class BuffDef:
    id: str
    name: str
    group: str
    category: str = ""
    description: str = ""
    default_layers: int = 1
    default_potency: int = 0
    max_layers: int = 0


@dataclass
class BuffInstance:
    id: str
    layers: int
    potency: int = 0
    timing: str = CURRENT
    name: str = ""

    def key(self) -> tuple:
        if self.id == CUSTOM_BUFF_ID:
            return (self.id, self.name, self.timing)
        return (self.id, self.timing)

    def identity(self) -> tuple:
        """Merge key without the timing tag."""
        if self.id == CUSTOM_BUFF_ID:
            return (self.id, self.name)
        return (self.id,)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "layers": self.layers,
            "potency": self.potency,
            "roundTiming": self.timing,
        }


@dataclass
class PooledResource:
    primary: List[bool] = field(default_factory=lambda: [False] * 6)
    bonus: List[bool] = field(default_factory=lambda: [False] * 3)

    def slots(self, pool: str) -> List[bool]:
        if pool == POOL_PRIMARY:
            return self.primary
        if pool == POOL_BONUS:
            return self.bonus
        raise KeyError(f"Unknown pool: {pool}")

    def available(self, pool: str) -> int:
        return sum(1 for spent in self.slots(pool) if not spent)

    def spent(self, pool: str) -> int:
        return sum(1 for spent in self.slots(pool) if spent)

    def spend(self, pool: str, count: int) -> int:
        """Mark up to ``count`` available slots spent, lowest index first."""
        slots = self.slots(pool)
        moved = 0
        for i, spent in enumerate(slots):
            if moved >= count:
                break
            if not spent:
                slots[i] = True
                moved += 1
        return moved

    def restore(self, pool: str, count: int) -> int:
        slots = self.slots(pool)
        moved = 0
        for i, spent in enumerate(slots):
            if moved >= count:
                break
            if spent:
                slots[i] = False
                moved += 1
        return moved


@dataclass
class ActorState:
    actor_id: str
    name: str = ""
    hp: int = 100
    hp_max: int = 100
    corruption: int = 0
    corruption_max: int = 0
    chaos: int = 0
    chaos_max: int = 10
    buffs: List[BuffInstance] = field(default_factory=list)
    pool: PooledResource = field(default_factory=PooledResource)
    usage: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.actor_id

    def take_damage(self, amount: int) -> int:
        before = self.hp
        self.hp = max(0, self.hp - max(0, amount))
        return before - self.hp

    def heal(self, amount: int) -> int:
        before = self.hp
        self.hp = min(self.hp_max, self.hp + max(0, amount))
        self.hp = max(self.hp, before)
        return self.hp - before

    def health_percent(self) -> float:
        if self.hp_max <= 0:
            return 0.0
        return 100.0 * self.hp / self.hp_max

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.actor_id,
            "name": self.name,
            "hp": {"value": self.hp, "max": self.hp_max},
            "corruption": {"value": self.corruption, "max": self.corruption_max},
            "chaos": {"value": self.chaos, "max": self.chaos_max},
            "combatState": {
                "buffs": [b.to_dict() for b in self.buffs],
                "primary": list(self.pool.primary),
                "bonus": list(self.pool.bonus),
            },
            "usage": {k: dict(v) for k, v in self.usage.items()},
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], config: Optional[EngineConfig] = None) -> "ActorState":
        config = config or EngineConfig()
        hp = payload.get("hp") or {}
        corruption = payload.get("corruption") or {}
        chaos = payload.get("chaos") or {}
        combat = payload.get("combatState") or {}
        primary = combat.get("primary")
        bonus = combat.get("bonus")
        buffs = [
            BuffInstance(
                id=str(b["id"]),
                name=str(b.get("name") or ""),
                layers=int(b.get("layers", 0)),
                potency=int(b.get("potency", b.get("strength", 0)) or 0),
                timing=str(b.get("roundTiming") or CURRENT),
            )
            for b in combat.get("buffs", [])
        ]
        hp_max = int(hp.get("max", config.default_hp_max))
        return cls(
            actor_id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            hp=int(hp.get("value", hp_max)),
            hp_max=hp_max,
            corruption=int(corruption.get("value", 0)),
            corruption_max=int(corruption.get("max", 0)),
            chaos=int(chaos.get("value", 0)),
            chaos_max=int(chaos.get("max", 10)),
            buffs=buffs,
            pool=PooledResource(
                primary=[bool(x) for x in primary] if primary is not None else [False] * config.primary_slots,
                bonus=[bool(x) for x in bonus] if bonus is not None else [False] * config.bonus_slots,
            ),
            usage={k: dict(v) for k, v in (payload.get("usage") or {}).items()},
        )


@dataclass(frozen=True)
class Trigger:
    type: str
    passive: bool = False
    category: Optional[str] = None


@dataclass(frozen=True)
class ConditionSpec:
    kind: str
    target: str = SELF
    buff_id: Optional[str] = None
    name: Optional[str] = None
    operator: str = ">="
    value: Any = 0
    resource: Optional[str] = None
    attribute: Optional[str] = None
    expression: Optional[str] = None
    activity_id: Optional[str] = None


@dataclass(frozen=True)
class ResourceCost:
    kind: str  # "buff" or "pool"
    amount: int
    buff_id: Optional[str] = None
    name: Optional[str] = None
    pool: Optional[str] = None

    def key(self) -> tuple:
        if self.kind == "buff":
            if self.buff_id == CUSTOM_BUFF_ID:
                return ("buff", self.buff_id, self.name or "")
            return ("buff", self.buff_id)
        return ("pool", self.pool)

    def label(self) -> str:
        if self.kind == "buff":
            return self.name if self.buff_id == CUSTOM_BUFF_ID and self.name else self.buff_id
        return self.pool

    def describe(self) -> str:
        return f"{self.amount} {self.label()}"


@dataclass(frozen=True)
class EffectSpec:
    kind: str
    buff_id: Optional[str] = None
    name: Optional[str] = None
    layers: Any = 1
    potency: Any = None
    target: str = SELF
    timing: str = CURRENT
    amount: Any = None
    resource: str = POOL_BONUS
    modify_type: str = "finalValue"
    attribute: Optional[str] = None
    damage_type: str = "direct"
    condition: Optional[str] = None
    critical: bool = False


@dataclass(frozen=True)
class ConsumeOption:
    label: str
    resources: List[ResourceCost] = field(default_factory=list)
    effects: List[EffectSpec] = field(default_factory=list)

    def total_cost(self) -> int:
        return sum(r.amount for r in self.resources)


@dataclass(frozen=True)
class ConsumeSpec:
    mode: str = CONSUME_NONE
    resources: List[ResourceCost] = field(default_factory=list)
    options: List[ConsumeOption] = field(default_factory=list)


@dataclass(frozen=True)
class UsageLimit:
    per_round: Optional[int] = None
    per_combat: Optional[int] = None
    total: Optional[int] = None


@dataclass(frozen=True)
class Activity:
    id: str
    name: str
    trigger: Trigger
    conditions: List[ConditionSpec] = field(default_factory=list)
    consume: ConsumeSpec = field(default_factory=ConsumeSpec)
    effects: List[EffectSpec] = field(default_factory=list)
    usage_limit: Optional[UsageLimit] = None


@dataclass
class DiceContext:
    base_value: int
    final_value: int
    formula: str = ""


@dataclass
class ExecutionContext:
    actor: ActorState
    target: Optional[ActorState] = None
    item_id: Optional[str] = None
    dice: Optional[DiceContext] = None
    round: int = 0
    combat_id: str = "default"
    trigger_type: Optional[str] = None
    attack_category: Optional[str] = None
    roller: Any = None
    consumed: bool = False
    selected_option: Optional[ConsumeOption] = None
    warnings: List[str] = field(default_factory=list)

    def get_target(self, name: Optional[str]) -> Optional[ActorState]:
        name = (name or SELF).strip()
        if name == SELF:
            return self.actor
        if name in (TARGET, SELECTED, OPPONENT):
            return self.target
        return None

    def flag(self, name: str) -> bool:
        if name not in CONTEXT_FLAGS:
            return False
        return bool(getattr(self, name))


@dataclass
class PendingHeal:
    """A rolled heal waiting for the player to apply it."""

    target: ActorState
    amount: int
    formula: str
    status: str = "pending"
    healed: int = 0

    def confirm(self) -> int:
        if self.status != "pending":
            return 0
        self.healed = self.target.heal(self.amount)
        self.status = "confirmed"
        return self.healed

    def abandon(self) -> None:
        if self.status == "pending":
            self.status = "abandoned"


@dataclass
class EffectResult:
    kind: str
    success: bool
    message: str = ""
    reason: str = ""
    failure: Optional[str] = None
    amount: int = 0
    pending: Optional[PendingHeal] = None
    skipped: bool = False


@dataclass
class ActivityResult:
    activity_id: str
    name: str
    success: bool
    failure: Optional[str] = None
    reason: str = ""
    effect_results: List[EffectResult] = field(default_factory=list)
    paid: List[str] = field(default_factory=list)
    selected_option: Optional[str] = None
    halted: bool = False

    @property
    def pending_heals(self) -> List[PendingHeal]:
        return [r.pending for r in self.effect_results if r.pending is not None]

    def summary(self) -> str:
        if not self.success:
            return f"{self.name}: failed ({self.reason or self.failure})"
        parts = [r.message for r in self.effect_results if r.success and r.message]
        failed = [r.reason for r in self.effect_results if not r.success]
        text = f"{self.name}: " + ("; ".join(parts) if parts else "no effect")
        if self.paid:
            text += f" [paid {', '.join(self.paid)}]"
        if failed:
            text += f" [failed: {'; '.join(failed)}]"
        return text


@dataclass
class Policy:
    """
    Stands in for the player when the engine needs a decision.

    The base policy never picks on its own: a choice between several
    affordable consume options comes back as None, which cancels the activity.
    """

    def choose_consume_option(
        self,
        actor: ActorState,
        options: List[ConsumeOption],
        ctx: ExecutionContext,
    ) -> Optional[int]:
        return None


@dataclass
class CheapestFirstPolicy(Policy):
    """Bot player for scripted runs: always pays the cheapest option."""

    def choose_consume_option(
        self,
        actor: ActorState,
        options: List[ConsumeOption],
        ctx: ExecutionContext,
    ) -> Optional[int]:
        if not options:
            return None
        ranked = sorted(range(len(options)), key=lambda i: (options[i].total_cost(), i))
        return ranked[0]


@dataclass
class Engine:
    buff_catalog: Dict[str, BuffDef]
    activities_by_item: Dict[str, List[Activity]] = field(default_factory=dict)
    config: EngineConfig = field(default_factory=EngineConfig)

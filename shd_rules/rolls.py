import random
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DICE_RE = re.compile(r"^\s*(\d*)\s*[dD]\s*(\d+)\s*(?:([+-])\s*(\d+))?\s*$")


@dataclass
class RollResult:
    formula: str
    total: int
    dice: List[int] = field(default_factory=list)
    modifier: int = 0


def parse_dice_formula(formula: str) -> Optional[Tuple[int, int, int]]:
    """
    Accepts: 'd6', '1d8', '2d6+3', '1d4 - 1'
    Returns (count, sides, modifier) or None if the text is not a dice formula.
    """
    m = DICE_RE.match(str(formula))
    if not m:
        return None
    count = int(m.group(1)) if m.group(1) else 1
    sides = int(m.group(2))
    modifier = int(m.group(4)) if m.group(4) else 0
    if m.group(3) == "-":
        modifier = -modifier
    if count <= 0 or sides <= 0:
        return None
    return count, sides, modifier


def is_dice_formula(value) -> bool:
    return isinstance(value, str) and parse_dice_formula(value) is not None


class DiceRoller:
    """Randomness collaborator: anything with ``roll(formula) -> .total`` will do."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def roll(self, formula: str) -> RollResult:
        parsed = parse_dice_formula(formula)
        if parsed is None:
            raise ValueError(f"Unparseable dice formula: {formula}")
        count, sides, modifier = parsed
        dice = [self.rng.randint(1, sides) for _ in range(count)]
        return RollResult(formula=str(formula).strip(), total=sum(dice) + modifier, dice=dice, modifier=modifier)

"""
Single-zero roulette.

The colour of each pocket comes from ``WHEEL``, listed in wheel order; it is
data, not derived from the number.
"""

import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional, Sequence

from core.ledger import BetRejected


class Pocket(NamedTuple):
    number: int
    color: str


WHEEL: List[Pocket] = [
    Pocket(0, "green"),
    Pocket(32, "red"),
    Pocket(15, "black"),
    Pocket(19, "red"),
    Pocket(4, "black"),
    Pocket(21, "red"),
    Pocket(2, "black"),
    Pocket(25, "red"),
    Pocket(17, "black"),
    Pocket(34, "red"),
    Pocket(6, "black"),
    Pocket(27, "red"),
    Pocket(13, "black"),
    Pocket(36, "red"),
    Pocket(11, "black"),
    Pocket(30, "red"),
    Pocket(8, "black"),
    Pocket(23, "red"),
    Pocket(10, "black"),
    Pocket(5, "red"),
    Pocket(24, "black"),
    Pocket(16, "red"),
    Pocket(33, "black"),
    Pocket(1, "red"),
    Pocket(20, "black"),
    Pocket(14, "red"),
    Pocket(31, "black"),
    Pocket(9, "red"),
    Pocket(22, "black"),
    Pocket(18, "red"),
    Pocket(29, "black"),
    Pocket(7, "red"),
    Pocket(28, "black"),
    Pocket(12, "red"),
    Pocket(35, "black"),
    Pocket(3, "red"),
    Pocket(26, "black"),
]

POCKETS: Dict[int, Pocket] = {p.number: p for p in WHEEL}

PAYOUT_RATIOS: Dict[str, int] = {
    "straight": 35,
    "red": 1,
    "black": 1,
    "odd": 1,
    "even": 1,
    "1to18": 1,
    "19to36": 1,
}


@dataclass
class RouletteBet:
    type: str
    amount: Decimal
    selection: Optional[int] = None

    def validate(self) -> None:
        if self.type not in PAYOUT_RATIOS:
            raise BetRejected(f"unknown roulette bet type: {self.type}")
        if self.amount <= 0:
            raise BetRejected("bet amount must be positive")
        if self.type == "straight":
            if self.selection is None or self.selection not in POCKETS:
                raise BetRejected("straight bets need a selection between 0 and 36")

    def wins(self, pocket: Pocket) -> bool:
        n = pocket.number
        if self.type == "straight":
            return n == self.selection
        if self.type in ("red", "black"):
            return pocket.color == self.type
        if self.type == "odd":
            return n != 0 and n % 2 == 1
        if self.type == "even":
            return n != 0 and n % 2 == 0
        if self.type == "1to18":
            return 1 <= n <= 18
        if self.type == "19to36":
            return 19 <= n <= 36
        return False

    def payout(self, pocket: Pocket) -> Decimal:
        if not self.wins(pocket):
            return Decimal("0")
        return self.amount * (PAYOUT_RATIOS[self.type] + 1)


def spin_wheel(rng: random.Random) -> Pocket:
    return rng.choice(WHEEL)


def resolve_bets(pocket: Pocket, bets: Sequence[RouletteBet]) -> Decimal:
    """Total returned to the player, stakes of winning bets included."""
    return sum((bet.payout(pocket) for bet in bets), Decimal("0"))

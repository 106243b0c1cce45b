"""
Three-reel slot machine.

Reels are drawn uniformly and independently from ``SYMBOLS``. Three of a kind
pays ``multiplier * 3``; any pair pays the multiplier of the middle reel,
whichever two symbols matched.
"""

import random
from decimal import Decimal
from typing import List, NamedTuple, Sequence


class Symbol(NamedTuple):
    symbol: str
    name: str
    multiplier: int


SYMBOLS: List[Symbol] = [
    Symbol("🍒", "Cherry", 2),
    Symbol("🍋", "Lemon", 3),
    Symbol("🍊", "Orange", 4),
    Symbol("🍇", "Grapes", 5),
    Symbol("🍉", "Watermelon", 5),
    Symbol("🔔", "Bell", 8),
    Symbol("💎", "Diamond", 10),
    Symbol("7️⃣", "Seven", 15),
    Symbol("🎰", "Jackpot", 20),
]

REELS = 3


def spin_reels(rng: random.Random) -> List[Symbol]:
    return [rng.choice(SYMBOLS) for _ in range(REELS)]


def payout_multiplier(reels: Sequence[Symbol]) -> int:
    first, middle, last = (s.symbol for s in reels)
    if first == middle == last:
        return reels[0].multiplier * 3
    if first == middle or middle == last or first == last:
        return reels[1].multiplier
    return 0


def slot_payout(reels: Sequence[Symbol], stake: Decimal) -> Decimal:
    return stake * payout_multiplier(reels)

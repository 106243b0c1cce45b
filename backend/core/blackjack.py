"""
Blackjack rules.

A round is a plain state object that can be rebuilt from its ``to_dict()``
form, so the server can keep the shoe between the player's requests.
"""

import random
from decimal import Decimal
from typing import List, NamedTuple, Optional, Sequence

from core.ledger import BetRejected


SUITS = ["♠", "♥", "♦", "♣"]
RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]

NATURAL_PAYOUT = Decimal("1.5")


class Card(NamedTuple):
    rank: str
    suit: str

    @property
    def value(self) -> int:
        if self.rank in ("J", "Q", "K"):
            return 10
        if self.rank == "A":
            return 11
        return int(self.rank)

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


def hand_value(cards: Sequence[Card]) -> int:
    value = sum(card.value for card in cards)
    aces = sum(1 for card in cards if card.rank == "A")
    while value > 21 and aces:
        value -= 10
        aces -= 1
    return value


def is_blackjack(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and hand_value(cards) == 21


def is_bust(cards: Sequence[Card]) -> bool:
    return hand_value(cards) > 21


def new_shoe(rng: random.Random) -> List[Card]:
    cards = [Card(rank, suit) for suit in SUITS for rank in RANKS]
    rng.shuffle(cards)
    return cards


class BlackjackGame:
    """One player hand against the dealer."""

    def __init__(
        self,
        stake: Decimal,
        deck: List[Card],
        player: Optional[List[Card]] = None,
        dealer: Optional[List[Card]] = None,
        result: Optional[str] = None,
        doubled: bool = False,
        natural: bool = False,
    ):
        self.stake = stake
        self.deck = deck
        self.player: List[Card] = player or []
        self.dealer: List[Card] = dealer or []
        self.result = result  # win | lose | push
        self.doubled = doubled
        self.natural = natural

    @classmethod
    def deal(cls, stake: Decimal, deck: List[Card]) -> "BlackjackGame":
        game = cls(stake, list(deck))
        game.player.append(game._draw())
        game.dealer.append(game._draw())
        game.player.append(game._draw())
        game.dealer.append(game._draw())

        if is_blackjack(game.player):
            game.natural = True
            game.result = "push" if is_blackjack(game.dealer) else "win"
        return game

    @property
    def game_over(self) -> bool:
        return self.result is not None

    def _draw(self) -> Card:
        if not self.deck:
            raise RuntimeError("shoe exhausted")
        return self.deck.pop(0)

    def _require_playing(self) -> None:
        if self.game_over:
            raise BetRejected("round is already finished")

    def hit(self) -> None:
        self._require_playing()
        self.player.append(self._draw())
        if is_bust(self.player):
            self.result = "lose"

    def stand(self) -> None:
        self._require_playing()
        # Dealer hits on 16, stands on any 17
        while hand_value(self.dealer) < 17:
            self.dealer.append(self._draw())

        player_val = hand_value(self.player)
        dealer_val = hand_value(self.dealer)
        if dealer_val > 21 or player_val > dealer_val:
            self.result = "win"
        elif player_val < dealer_val:
            self.result = "lose"
        else:
            self.result = "push"

    def can_double(self) -> bool:
        return not self.game_over and len(self.player) == 2

    def double(self) -> None:
        self._require_playing()
        if len(self.player) != 2:
            raise BetRejected("double down is only allowed on the first two cards")
        self.stake = self.stake * 2
        self.doubled = True
        self.player.append(self._draw())
        if is_bust(self.player):
            self.result = "lose"
        else:
            self.stand()

    def payout(self) -> Decimal:
        """Amount returned to the player, stake included."""
        if self.result == "win":
            if self.natural:
                return self.stake + self.stake * NATURAL_PAYOUT
            return self.stake * 2
        if self.result == "push":
            return self.stake
        return Decimal("0")

    def view(self) -> dict:
        dealer = self.dealer if self.game_over else self.dealer[:1]
        return {
            "player_cards": [str(c) for c in self.player],
            "player_value": hand_value(self.player),
            "dealer_cards": [str(c) for c in dealer],
            "dealer_value": hand_value(dealer),
            "dealer_hidden": 0 if self.game_over else len(self.dealer) - 1,
            "stake": str(self.stake),
            "doubled": self.doubled,
            "natural": self.natural,
            "result": self.result,
            "can_double": self.can_double(),
        }

    def to_dict(self) -> dict:
        return {
            "stake": str(self.stake),
            "deck": [list(c) for c in self.deck],
            "player": [list(c) for c in self.player],
            "dealer": [list(c) for c in self.dealer],
            "result": self.result,
            "doubled": self.doubled,
            "natural": self.natural,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BlackjackGame":
        return cls(
            stake=Decimal(data["stake"]),
            deck=[Card(*c) for c in data["deck"]],
            player=[Card(*c) for c in data["player"]],
            dealer=[Card(*c) for c in data["dealer"]],
            result=data.get("result"),
            doubled=data.get("doubled", False),
            natural=data.get("natural", False),
        )

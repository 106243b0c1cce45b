import logging
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from prometheus_client import Counter
from sqlalchemy import select

from core.blackjack import BlackjackGame, new_shoe
from core.ledger import BetRejected, Ledger, ledger_locks, to_amount, validate_currency, validate_stake
from core.roulette import RouletteBet, resolve_bets, spin_wheel
from core.slots import payout_multiplier, spin_reels
from models import Balance, CasinoBet, Transaction


logger = logging.getLogger(__name__)

# Server-side entropy; tests swap this for a seeded random.Random.
rng = secrets.SystemRandom()

GAMES = ("slots", "roulette", "blackjack")
BLACKJACK_ACTIONS = ("hit", "stand", "double")

ROUNDS_TOTAL = Counter(
    "casino_rounds_total",
    "Completed casino rounds by game and outcome",
    ["game", "outcome"],
)
STAKES_TOTAL = Counter(
    "casino_stakes_total",
    "Sum of stakes accepted by game and currency",
    ["game", "currency"],
)


class RoundNotFound(LookupError):
    pass


@dataclass
class RoundResult:
    bet: CasinoBet
    outcome: dict
    balance: Balance
    transaction: Transaction
    transactions: List[Transaction] = field(default_factory=list)
    replayed: bool = False


def _outcome_view(bet: CasinoBet) -> dict:
    data = dict(bet.game_data or {})
    if bet.game == "blackjack":
        return BlackjackGame.from_dict(data).view()
    return data


async def _find_round(ledger: Ledger, user_id: int, idempotency_key: Optional[str]) -> Optional[CasinoBet]:
    if not idempotency_key:
        return None
    res = await ledger.session.execute(
        select(CasinoBet).where(
            CasinoBet.user_id == user_id,
            CasinoBet.idempotency_key == idempotency_key,
        )
    )
    return res.scalar_one_or_none()


async def _round_transactions(ledger: Ledger, bet: CasinoBet) -> List[Transaction]:
    res = await ledger.session.execute(
        select(Transaction)
        .where(Transaction.bet_id == bet.id, Transaction.game_type == bet.game)
        .order_by(Transaction.id)
    )
    return list(res.scalars().all())


async def _replay(ledger: Ledger, bet: CasinoBet) -> RoundResult:
    logger.info("Replaying casino round %s for user %s", bet.id, bet.user_id)
    txs = await _round_transactions(ledger, bet)
    balance = await ledger.get_balance(bet.user_id, bet.currency)
    return RoundResult(
        bet=bet,
        outcome=_outcome_view(bet),
        balance=balance,
        transaction=txs[-1],
        transactions=txs,
        replayed=True,
    )


async def _settle_single_shot(
    ledger: Ledger,
    user_id: int,
    game: str,
    stake: Decimal,
    payout: Decimal,
    currency: str,
    game_data: dict,
    idempotency_key: Optional[str],
) -> RoundResult:
    balance = await ledger.apply_delta(user_id, currency, payout - stake)
    outcome = "win" if payout > 0 else "lose"
    bet = CasinoBet(
        user_id=user_id,
        game=game,
        currency=currency,
        stake=stake,
        payout=payout,
        outcome=outcome,
        status="completed",
        game_data=game_data,
        idempotency_key=idempotency_key,
    )
    ledger.session.add(bet)
    await ledger.session.flush()
    if payout > 0:
        tx = await ledger.append_transaction(user_id, "win", payout, currency, game_type=game, bet_id=bet.id)
    else:
        tx = await ledger.append_transaction(user_id, "bet", -stake, currency, game_type=game, bet_id=bet.id)

    await ledger.session.commit()

    ROUNDS_TOTAL.labels(game=game, outcome=outcome).inc()
    STAKES_TOTAL.labels(game=game, currency=currency).inc(float(stake))
    logger.info("%s round %s user=%s stake=%s payout=%s %s", game, bet.id, user_id, stake, payout, currency)
    return RoundResult(bet=bet, outcome=dict(game_data), balance=balance, transaction=tx, transactions=[tx])


async def play_slots(
    ledger: Ledger,
    user_id: int,
    stake,
    currency: str,
    idempotency_key: Optional[str] = None,
) -> RoundResult:
    stake = validate_stake(stake)
    currency = validate_currency(currency)

    async with ledger_locks.hold(user_id, currency):
        existing = await _find_round(ledger, user_id, idempotency_key)
        if existing is not None:
            return await _replay(ledger, existing)

        await ledger.ensure_funds(user_id, currency, stake)
        reels = spin_reels(rng)
        multiplier = payout_multiplier(reels)
        payout = stake * multiplier
        game_data = {
            "reels": [s._asdict() for s in reels],
            "multiplier": multiplier,
            "payout": str(payout),
        }
        return await _settle_single_shot(
            ledger, user_id, "slots", stake, payout, currency, game_data, idempotency_key
        )


async def play_roulette(
    ledger: Ledger,
    user_id: int,
    bets: Sequence[RouletteBet],
    currency: str,
    idempotency_key: Optional[str] = None,
) -> RoundResult:
    if not bets:
        raise BetRejected("place at least one roulette bet")
    for bet in bets:
        bet.validate()
    stake = validate_stake(sum((b.amount for b in bets), Decimal("0")))
    currency = validate_currency(currency)

    async with ledger_locks.hold(user_id, currency):
        existing = await _find_round(ledger, user_id, idempotency_key)
        if existing is not None:
            return await _replay(ledger, existing)

        await ledger.ensure_funds(user_id, currency, stake)
        pocket = spin_wheel(rng)
        payout = resolve_bets(pocket, bets)
        game_data = {
            "pocket": pocket._asdict(),
            "bets": [
                {
                    "type": b.type,
                    "amount": str(b.amount),
                    "selection": b.selection,
                    "won": b.wins(pocket),
                    "payout": str(b.payout(pocket)),
                }
                for b in bets
            ],
            "payout": str(payout),
        }
        return await _settle_single_shot(
            ledger, user_id, "roulette", stake, payout, currency, game_data, idempotency_key
        )


async def _finish_blackjack(ledger: Ledger, bet: CasinoBet, game: BlackjackGame) -> Optional[Transaction]:
    payout = game.payout()
    tx = None
    if game.result == "push":
        await ledger.apply_delta(bet.user_id, bet.currency, payout)
        tx = await ledger.append_transaction(
            bet.user_id, "refund", payout, bet.currency, game_type="blackjack", bet_id=bet.id
        )
    elif payout > 0:
        await ledger.apply_delta(bet.user_id, bet.currency, payout)
        tx = await ledger.append_transaction(
            bet.user_id, "win", payout, bet.currency, game_type="blackjack", bet_id=bet.id
        )
    bet.payout = payout
    bet.outcome = game.result
    bet.status = "completed"
    ROUNDS_TOTAL.labels(game="blackjack", outcome=game.result).inc()
    logger.info(
        "blackjack round %s user=%s result=%s stake=%s payout=%s %s",
        bet.id, bet.user_id, game.result, game.stake, payout, bet.currency,
    )
    return tx


async def start_blackjack(
    ledger: Ledger,
    user_id: int,
    stake,
    currency: str,
    idempotency_key: Optional[str] = None,
) -> RoundResult:
    stake = validate_stake(stake)
    currency = validate_currency(currency)

    async with ledger_locks.hold(user_id, currency):
        existing = await _find_round(ledger, user_id, idempotency_key)
        if existing is not None:
            return await _replay(ledger, existing)

        await ledger.apply_delta(user_id, currency, -stake)
        game = BlackjackGame.deal(stake, new_shoe(rng))
        bet = CasinoBet(
            user_id=user_id,
            game="blackjack",
            currency=currency,
            stake=stake,
            payout=Decimal("0"),
            status="in_progress",
            idempotency_key=idempotency_key,
        )
        ledger.session.add(bet)
        await ledger.session.flush()
        txs = [
            await ledger.append_transaction(user_id, "bet", -stake, currency, game_type="blackjack", bet_id=bet.id)
        ]
        if game.game_over:
            tx = await _finish_blackjack(ledger, bet, game)
            if tx is not None:
                txs.append(tx)
        bet.game_data = game.to_dict()

        await ledger.session.commit()

        STAKES_TOTAL.labels(game="blackjack", currency=currency).inc(float(stake))
        balance = await ledger.get_balance(user_id, currency)
        return RoundResult(bet=bet, outcome=game.view(), balance=balance, transaction=txs[-1], transactions=txs)


async def get_round(ledger: Ledger, user_id: int, round_id: int) -> CasinoBet:
    res = await ledger.session.execute(
        select(CasinoBet)
        .where(CasinoBet.id == round_id, CasinoBet.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    bet = res.scalar_one_or_none()
    if bet is None:
        raise RoundNotFound(f"round {round_id} not found")
    return bet


async def blackjack_action(ledger: Ledger, user_id: int, round_id: int, action: str) -> RoundResult:
    if action not in BLACKJACK_ACTIONS:
        raise BetRejected(f"unknown blackjack action: {action}")
    bet = await get_round(ledger, user_id, round_id)
    if bet.game != "blackjack":
        raise RoundNotFound(f"round {round_id} is not a blackjack round")

    async with ledger_locks.hold(user_id, bet.currency):
        bet = await get_round(ledger, user_id, round_id)
        if bet.status != "in_progress":
            raise BetRejected("round is already finished")
        game = BlackjackGame.from_dict(bet.game_data)
        txs: List[Transaction] = []

        if action == "hit":
            game.hit()
        elif action == "stand":
            game.stand()
        else:
            if not game.can_double():
                raise BetRejected("double down is only allowed on the first two cards")
            validate_stake(game.stake * 2)
            extra = game.stake
            await ledger.apply_delta(user_id, bet.currency, -extra)
            txs.append(
                await ledger.append_transaction(
                    user_id, "bet", -extra, bet.currency, game_type="blackjack", bet_id=bet.id
                )
            )
            game.double()
            bet.stake = game.stake
            STAKES_TOTAL.labels(game="blackjack", currency=bet.currency).inc(float(extra))

        if game.game_over:
            tx = await _finish_blackjack(ledger, bet, game)
            if tx is not None:
                txs.append(tx)
        bet.game_data = game.to_dict()
        await ledger.session.commit()

        balance = await ledger.get_balance(user_id, bet.currency)
        if not txs:
            txs = (await _round_transactions(ledger, bet))[-1:]
        return RoundResult(bet=bet, outcome=game.view(), balance=balance, transaction=txs[-1], transactions=txs)


async def place_bet(
    ledger: Ledger,
    user_id: int,
    game_type: str,
    stake,
    currency: str,
    bets: Optional[Sequence[RouletteBet]] = None,
    idempotency_key: Optional[str] = None,
) -> RoundResult:
    """Single entry point: the server draws the outcome for ``game_type``."""
    if game_type == "slots":
        return await play_slots(ledger, user_id, stake, currency, idempotency_key)
    if game_type == "blackjack":
        return await start_blackjack(ledger, user_id, stake, currency, idempotency_key)
    if game_type == "roulette":
        if not bets:
            raise BetRejected("roulette needs at least one bet")
        total = sum((b.amount for b in bets), Decimal("0"))
        if stake is not None and to_amount(stake) != total:
            raise BetRejected("stake must equal the sum of roulette bets")
        return await play_roulette(ledger, user_id, bets, currency, idempotency_key)
    raise BetRejected(f"unknown game type: {game_type}")


async def list_rounds(ledger: Ledger, user_id: int, limit: int = 20) -> List[CasinoBet]:
    res = await ledger.session.execute(
        select(CasinoBet)
        .where(CasinoBet.user_id == user_id)
        .order_by(CasinoBet.created_at.desc(), CasinoBet.id.desc())
        .limit(limit)
    )
    return list(res.scalars().all())

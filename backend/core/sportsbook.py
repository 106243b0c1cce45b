import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from prometheus_client import Counter
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.ledger import BetRejected, Ledger, ledger_locks, to_amount, validate_currency, validate_stake
from models import Balance, SportsBet, SportsMatch, Transaction, utcnow


logger = logging.getLogger(__name__)

SELECTIONS = ("home", "draw", "away")
RESULTS = SELECTIONS + ("void",)
ODDS_PLACES = Decimal("0.01")

BETS_PLACED = Counter(
    "sports_bets_placed_total",
    "Sports bets accepted",
    ["currency"],
)
BETS_SETTLED = Counter(
    "sports_bets_settled_total",
    "Sports bets moved out of pending",
    ["status"],
)

# external_id, sport, home, away, hours from now, live, status
SEED_MATCHES = [
    ("soccer-1", "Soccer", "Arsenal FC", "Chelsea FC", 2, True, "in_progress"),
    ("soccer-2", "Soccer", "Manchester United", "Liverpool", 24, False, "scheduled"),
    ("bball-1", "Basketball", "LA Lakers", "Golden State Warriors", 28, False, "scheduled"),
    ("esports-1", "eSports", "Fnatic", "G2 Esports", 32, False, "scheduled"),
]
DEFAULT_ODDS = {"home": Decimal("2.10"), "draw": Decimal("3.25"), "away": Decimal("3.60")}


class MatchNotFound(LookupError):
    pass


@dataclass
class SportsBetResult:
    bet: SportsBet
    balance: Balance
    transaction: Optional[Transaction]
    replayed: bool = False


async def seed_sports_matches(session: AsyncSession) -> int:
    res = await session.execute(select(SportsMatch.external_id))
    existing = set(res.scalars().all())
    now = utcnow()
    added = 0
    for external_id, sport, home, away, hours, live, status in SEED_MATCHES:
        if external_id in existing:
            continue
        session.add(
            SportsMatch(
                external_id=external_id,
                sport_type=sport,
                home_team=home,
                away_team=away,
                start_time=now + timedelta(hours=hours),
                is_live=live,
                status=status,
                home_odds=DEFAULT_ODDS["home"],
                draw_odds=DEFAULT_ODDS["draw"],
                away_odds=DEFAULT_ODDS["away"],
            )
        )
        added += 1
    await session.commit()
    if added:
        logger.info("Seeded %s sports matches", added)
    return added


async def list_matches(session: AsyncSession, sport_type: Optional[str] = None) -> List[SportsMatch]:
    stmt = select(SportsMatch).order_by(SportsMatch.start_time)
    if sport_type:
        stmt = stmt.where(SportsMatch.sport_type == sport_type)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_match(session: AsyncSession, external_id: str) -> SportsMatch:
    res = await session.execute(
        select(SportsMatch)
        .where(SportsMatch.external_id == external_id)
        .execution_options(populate_existing=True)
    )
    match = res.scalar_one_or_none()
    if match is None:
        raise MatchNotFound(f"match {external_id} not found")
    return match


def quoted_odds(match: SportsMatch, selection: str) -> Decimal:
    return to_amount(getattr(match, f"{selection}_odds")).quantize(ODDS_PLACES)


def parse_selection(selection_id: str, match_id: str) -> str:
    selection, _, target = (selection_id or "").partition("-")
    if selection not in SELECTIONS or target != match_id:
        raise BetRejected(f"invalid selection: {selection_id}")
    return selection


async def _find_bet(session: AsyncSession, user_id: int, idempotency_key: Optional[str]) -> Optional[SportsBet]:
    if not idempotency_key:
        return None
    res = await session.execute(
        select(SportsBet).where(
            SportsBet.user_id == user_id,
            SportsBet.idempotency_key == idempotency_key,
        )
    )
    return res.scalar_one_or_none()


async def place_sports_bet(
    ledger: Ledger,
    user_id: int,
    match_id: str,
    selection_id: str,
    odds,
    stake,
    currency: str,
    idempotency_key: Optional[str] = None,
) -> SportsBetResult:
    stake = validate_stake(stake)
    currency = validate_currency(currency)
    session = ledger.session

    async with ledger_locks.hold(user_id, currency):
        # a replay returns the stored bet even if the match has since closed or repriced
        existing = await _find_bet(session, user_id, idempotency_key)
        if existing is not None:
            res = await session.execute(
                select(Transaction).where(
                    Transaction.bet_id == existing.id,
                    Transaction.game_type == "sports",
                    Transaction.type == "bet",
                )
            )
            balance = await ledger.get_balance(user_id, existing.currency)
            return SportsBetResult(
                bet=existing, balance=balance, transaction=res.scalars().first(), replayed=True
            )

        match = await get_match(session, match_id)
        if match.status == "finished":
            raise BetRejected("match is closed for betting")
        selection = parse_selection(selection_id, match.external_id)
        odds = to_amount(odds).quantize(ODDS_PLACES)
        if odds != quoted_odds(match, selection):
            raise BetRejected("odds have changed")

        balance = await ledger.apply_delta(user_id, currency, -stake)
        bet = SportsBet(
            user_id=user_id,
            match_id=match.external_id,
            selection_id=selection_id,
            odds=odds,
            stake=stake,
            currency=currency,
            potential_win=stake * odds,
            status="pending",
            idempotency_key=idempotency_key,
        )
        session.add(bet)
        await session.flush()
        tx = await ledger.append_transaction(
            user_id, "bet", -stake, currency, game_type="sports", bet_id=bet.id
        )
        await session.commit()

    BETS_PLACED.labels(currency=currency).inc()
    logger.info("Sports bet %s user=%s %s @ %s stake=%s %s", bet.id, user_id, selection_id, odds, stake, currency)
    return SportsBetResult(bet=bet, balance=balance, transaction=tx)


async def list_bets(session: AsyncSession, user_id: int) -> List[SportsBet]:
    res = await session.execute(
        select(SportsBet)
        .where(SportsBet.user_id == user_id)
        .order_by(SportsBet.created_at.desc(), SportsBet.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


def bet_status_for(bet: SportsBet, result: str) -> str:
    if result == "void":
        return "void"
    selection = bet.selection_id.partition("-")[0]
    return "won" if selection == result else "lost"


async def settle_bet(ledger: Ledger, bet_id: int, result: str) -> Optional[str]:
    """Move one pending bet to its final state; returns None if it was already settled."""
    session = ledger.session
    res = await session.execute(
        select(SportsBet).where(SportsBet.id == bet_id).execution_options(populate_existing=True)
    )
    bet = res.scalar_one()

    async with ledger_locks.hold(bet.user_id, bet.currency):
        status = bet_status_for(bet, result)
        claimed = await session.execute(
            update(SportsBet)
            .where(SportsBet.id == bet_id, SportsBet.status == "pending")
            .values(status=status, settled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            return None

        if status == "won":
            await ledger.apply_delta(bet.user_id, bet.currency, bet.potential_win)
            await ledger.append_transaction(
                bet.user_id, "win", bet.potential_win, bet.currency, game_type="sports", bet_id=bet.id
            )
        elif status == "void":
            await ledger.apply_delta(bet.user_id, bet.currency, bet.stake)
            await ledger.append_transaction(
                bet.user_id, "refund", bet.stake, bet.currency, game_type="sports", bet_id=bet.id
            )
        await session.commit()

    BETS_SETTLED.labels(status=status).inc()
    logger.info("Settled sports bet %s for user %s as %s", bet_id, bet.user_id, status)
    return status


async def settle_pending_bets(ledger: Ledger, match: SportsMatch) -> List[Tuple[int, str]]:
    if match.status != "finished" or match.result not in RESULTS:
        return []
    res = await ledger.session.execute(
        select(SportsBet.id)
        .where(SportsBet.match_id == match.external_id, SportsBet.status == "pending")
        .order_by(SportsBet.id)
    )
    result = match.result
    settled = []
    for bet_id in res.scalars().all():
        status = await settle_bet(ledger, bet_id, result)
        if status is not None:
            settled.append((bet_id, status))
    return settled


async def record_match_result(ledger: Ledger, external_id: str, result: str) -> Tuple[SportsMatch, List[Tuple[int, str]]]:
    """Finish a match and settle its pending bets. Safe to repeat with the same result."""
    if result not in RESULTS:
        raise BetRejected(f"invalid result: {result}")
    session = ledger.session
    match = await get_match(session, external_id)
    if match.status == "finished" and match.result != result:
        raise BetRejected(f"match already finished with result {match.result}")
    if match.status != "finished":
        match.status = "finished"
        match.is_live = False
        match.result = result
        await session.commit()
        logger.info("Match %s finished with result %s", external_id, result)

    settled = await settle_pending_bets(ledger, match)
    return match, settled


async def finished_matches_with_pending_bets(session: AsyncSession) -> List[SportsMatch]:
    res = await session.execute(
        select(SportsMatch)
        .where(
            SportsMatch.status == "finished",
            SportsMatch.external_id.in_(
                select(SportsBet.match_id).where(SportsBet.status == "pending")
            ),
        )
        .order_by(SportsMatch.id)
    )
    return list(res.scalars().all())

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from core import casino
from core.casino import RoundNotFound, RoundResult
from core.ledger import Ledger, get_ledger
from core.roulette import RouletteBet
from models import User
from routes.auth import get_current_user
from schemas import (
    BetRequest,
    BetResultOut,
    CasinoRoundOut,
    RouletteBetIn,
    RouletteRequest,
    StakeRequest,
)

router = APIRouter()


def _roulette_bets(bets: Optional[List[RouletteBetIn]]) -> List[RouletteBet]:
    return [RouletteBet(type=b.type, amount=b.amount, selection=b.selection) for b in bets or []]


def _result(result: RoundResult) -> dict:
    return {
        "round": result.bet,
        "outcome": result.outcome,
        "new_balance": result.balance,
        "transaction": result.transaction,
        "transactions": result.transactions,
        "replayed": result.replayed,
    }


@router.post("/games/bet", response_model=BetResultOut)
async def place_bet(
    body: BetRequest,
    idempotency_key: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        result = await casino.place_bet(
            ledger,
            user.id,
            body.game_type,
            body.stake,
            body.currency,
            bets=_roulette_bets(body.bets),
            idempotency_key=idempotency_key,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _result(result)


@router.post("/games/slots", response_model=BetResultOut)
async def spin_slots(
    body: StakeRequest,
    idempotency_key: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        result = await casino.play_slots(ledger, user.id, body.stake, body.currency, idempotency_key)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _result(result)


@router.post("/games/roulette", response_model=BetResultOut)
async def spin_roulette(
    body: RouletteRequest,
    idempotency_key: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        result = await casino.play_roulette(
            ledger, user.id, _roulette_bets(body.bets), body.currency, idempotency_key
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _result(result)


@router.post("/games/blackjack", response_model=BetResultOut)
async def deal_blackjack(
    body: StakeRequest,
    idempotency_key: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        result = await casino.start_blackjack(ledger, user.id, body.stake, body.currency, idempotency_key)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _result(result)


@router.post("/games/blackjack/{round_id}/{action}", response_model=BetResultOut)
async def blackjack_action(
    round_id: int,
    action: str,
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        result = await casino.blackjack_action(ledger, user.id, round_id, action)
    except RoundNotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _result(result)


@router.get("/games/bets", response_model=List[CasinoRoundOut])
async def list_rounds(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    return await casino.list_rounds(ledger, user.id, limit=limit)

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from core.ledger import Ledger, get_ledger
from core.sportsbook import (
    MatchNotFound,
    list_bets,
    list_matches,
    place_sports_bet,
    record_match_result,
)
from db import get_session
from models import User
from routes.auth import admin_only, get_current_user
from schemas import (
    MatchResultOut,
    MatchResultRequest,
    SportsBetOut,
    SportsBetRequest,
    SportsBetResultOut,
    SportsMatchOut,
)

router = APIRouter()


@router.get("/sports/matches", response_model=List[SportsMatchOut])
async def matches(sport: Optional[str] = None, session: AsyncSession = Depends(get_session)):
    return await list_matches(session, sport)


@router.post("/sports/bets", response_model=SportsBetResultOut)
async def place_bet(
    body: SportsBetRequest,
    idempotency_key: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        result = await place_sports_bet(
            ledger,
            user.id,
            body.match_id,
            body.selection_id,
            body.odds,
            body.stake,
            body.currency,
            idempotency_key=idempotency_key,
        )
    except MatchNotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {
        "balance": result.balance,
        "bet": result.bet,
        "transaction": result.transaction,
        "replayed": result.replayed,
    }


@router.get("/sports/bets", response_model=List[SportsBetOut])
async def my_bets(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    return await list_bets(session, user.id)


@router.post("/sports/matches/{external_id}/result", response_model=MatchResultOut)
async def match_result(
    external_id: str,
    body: MatchResultRequest,
    _: User = Depends(admin_only),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        match, settled = await record_match_result(ledger, external_id, body.result)
    except MatchNotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {
        "match": match,
        "settled": [{"bet_id": bet_id, "status": status} for bet_id, status in settled],
    }


from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

# Auth

class SignupRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("passwords don't match")
        return self

class LoginRequest(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)

class UserOut(BaseModel):
    id: int
    username: str
    email: str
    wallet_address: Optional[str] = None
    is_admin: bool = False
    class Config:
        from_attributes = True

class TokenOut(BaseModel):
    token: str
    user: UserOut

# Wallet

class NonceRequest(BaseModel):
    address: str

class ConnectWalletRequest(BaseModel):
    address: str
    signature: str

class BalanceOut(BaseModel):
    currency: str
    amount: float
    updated_at: datetime
    class Config:
        from_attributes = True

class TransactionOut(BaseModel):
    id: int
    type: str
    amount: float
    currency: str
    game_type: Optional[str] = None
    status: str
    tx_hash: Optional[str] = None
    created_at: datetime
    class Config:
        from_attributes = True

class DepositRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    currency: str

class WithdrawRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    currency: str
    wallet_address: str = Field(min_length=1)

class LedgerEntryOut(BaseModel):
    balance: BalanceOut
    transaction: TransactionOut

class DepositAddressOut(BaseModel):
    currency: str
    address: str
    is_active: bool
    class Config:
        from_attributes = True

# Casino

class RouletteBetIn(BaseModel):
    type: Literal["straight", "red", "black", "odd", "even", "1to18", "19to36"]
    amount: Decimal = Field(gt=0)
    selection: Optional[int] = Field(default=None, ge=0, le=36)

class StakeRequest(BaseModel):
    stake: Decimal = Field(gt=0)
    currency: str

class RouletteRequest(BaseModel):
    currency: str
    bets: List[RouletteBetIn] = Field(min_length=1)

class BetRequest(BaseModel):
    stake: Optional[Decimal] = Field(default=None, gt=0)
    currency: str
    game_type: Literal["slots", "roulette", "blackjack"]
    bets: Optional[List[RouletteBetIn]] = None

    @model_validator(mode="after")
    def stake_or_bets(self):
        if self.game_type == "roulette":
            if not self.bets:
                raise ValueError("roulette needs at least one bet")
        elif self.stake is None:
            raise ValueError("stake is required")
        return self

class CasinoRoundOut(BaseModel):
    id: int
    game: str
    currency: str
    stake: float
    payout: float
    outcome: Optional[str] = None
    status: str
    created_at: datetime
    class Config:
        from_attributes = True

class BetResultOut(BaseModel):
    round: CasinoRoundOut
    outcome: dict
    new_balance: BalanceOut
    transaction: TransactionOut
    transactions: List[TransactionOut] = []
    replayed: bool = False

# Sports

class SportsMatchOut(BaseModel):
    id: int
    external_id: str
    sport_type: str
    home_team: str
    away_team: str
    start_time: datetime
    is_live: bool
    status: str
    home_odds: float
    draw_odds: float
    away_odds: float
    result: Optional[str] = None
    class Config:
        from_attributes = True

class SportsBetRequest(BaseModel):
    match_id: str
    selection_id: str
    odds: Decimal = Field(gt=1)
    stake: Decimal = Field(gt=0)
    currency: str

class SportsBetOut(BaseModel):
    id: int
    match_id: str
    selection_id: str
    odds: float
    stake: float
    currency: str
    potential_win: float
    status: str
    settled_at: Optional[datetime] = None
    created_at: datetime
    class Config:
        from_attributes = True

class SportsBetResultOut(BaseModel):
    balance: BalanceOut
    bet: SportsBetOut
    transaction: Optional[TransactionOut] = None
    replayed: bool = False

class MatchResultRequest(BaseModel):
    result: Literal["home", "draw", "away", "void"]

class SettledBetOut(BaseModel):
    bet_id: int
    status: str

class MatchResultOut(BaseModel):
    match: SportsMatchOut
    settled: List[SettledBetOut]

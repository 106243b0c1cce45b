from datetime import datetime, timezone

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from db import Base

AMOUNT = Numeric(24, 8)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    wallet_address: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow)

class Balance(Base):
    __tablename__ = "balances"
    __table_args__ = (UniqueConstraint("user_id", "currency", name="uq_balance_user_currency"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    currency: Mapped[str] = mapped_column(String(16))
    amount: Mapped[Numeric] = mapped_column(AMOUNT, default=0)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class Transaction(Base):
    __tablename__ = "transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(16))  # deposit | withdrawal | bet | win | refund
    amount: Mapped[Numeric] = mapped_column(AMOUNT)
    currency: Mapped[str] = mapped_column(String(16))
    game_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="completed")
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    bet_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)  # casino_bets.id or sports_bets.id, by game_type
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

class CasinoBet(Base):
    __tablename__ = "casino_bets"
    __table_args__ = (UniqueConstraint("user_id", "idempotency_key", name="uq_casino_bet_idempotency"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    game: Mapped[str] = mapped_column(String(16))  # slots | blackjack | roulette
    currency: Mapped[str] = mapped_column(String(16))
    stake: Mapped[Numeric] = mapped_column(AMOUNT)
    payout: Mapped[Numeric] = mapped_column(AMOUNT, default=0)
    outcome: Mapped[str | None] = mapped_column(String(8), nullable=True)  # win | lose | push
    status: Mapped[str] = mapped_column(String(16), default="completed")
    game_data: Mapped[dict] = mapped_column(JSON, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class SportsMatch(Base):
    __tablename__ = "sports_matches"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    sport_type: Mapped[str] = mapped_column(String(50), index=True)
    home_team: Mapped[str] = mapped_column(String(200))
    away_team: Mapped[str] = mapped_column(String(200))
    start_time: Mapped[DateTime] = mapped_column(DateTime(timezone=True))
    is_live: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(16), default="scheduled")  # scheduled | in_progress | finished
    home_odds: Mapped[Numeric] = mapped_column(Numeric(10, 2))
    draw_odds: Mapped[Numeric] = mapped_column(Numeric(10, 2))
    away_odds: Mapped[Numeric] = mapped_column(Numeric(10, 2))
    result: Mapped[str | None] = mapped_column(String(8), nullable=True)  # home | draw | away | void
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow)

class SportsBet(Base):
    __tablename__ = "sports_bets"
    __table_args__ = (UniqueConstraint("user_id", "idempotency_key", name="uq_sports_bet_idempotency"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    match_id: Mapped[str] = mapped_column(ForeignKey("sports_matches.external_id"), index=True)
    selection_id: Mapped[str] = mapped_column(String(128))
    odds: Mapped[Numeric] = mapped_column(Numeric(10, 2))
    stake: Mapped[Numeric] = mapped_column(AMOUNT)
    currency: Mapped[str] = mapped_column(String(16))
    potential_win: Mapped[Numeric] = mapped_column(AMOUNT)
    status: Mapped[str] = mapped_column(String(8), default="pending", index=True)  # pending | won | lost | void
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    settled_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow)

class WalletAddress(Base):
    __tablename__ = "wallet_addresses"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    currency: Mapped[str] = mapped_column(String(16))
    address: Mapped[str] = mapped_column(String(128), unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow)

class WalletAuth(Base):
    __tablename__ = "wallet_auth"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    nonce: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

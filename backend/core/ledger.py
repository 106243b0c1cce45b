import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from models import Balance, Transaction, utcnow
from settings import get_settings


logger = logging.getLogger(__name__)
settings = get_settings()


class BetRejected(ValueError):
    """A wager or ledger request that fails validation before any mutation."""


class InsufficientBalance(BetRejected):
    def __init__(self, currency: str):
        super().__init__("insufficient balance")
        self.currency = currency


def to_amount(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def validate_currency(currency: str) -> str:
    currency = (currency or "").upper()
    if currency not in settings.supported_currencies:
        raise BetRejected(f"unsupported currency: {currency}")
    return currency


def validate_stake(stake) -> Decimal:
    stake = to_amount(stake)
    if stake <= 0:
        raise BetRejected("stake must be positive")
    if stake < settings.min_stake:
        raise BetRejected(f"minimum stake is {settings.min_stake}")
    if stake > settings.max_stake:
        raise BetRejected(f"maximum stake is {settings.max_stake}")
    return stake


class LedgerLocks:
    """One asyncio.Lock per (user, currency); serializes read-check-write sequences.

    A lock lives only while some task holds or waits on it, so the map stays
    as small as the number of keys currently in use.
    """

    def __init__(self) -> None:
        self._locks: Dict[Tuple[int, str], asyncio.Lock] = {}
        self._holders: Dict[Tuple[int, str], int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, user_id: int, currency: str) -> AsyncIterator[None]:
        key = (user_id, currency)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)

    def reset(self) -> None:
        self._locks.clear()
        self._holders.clear()


ledger_locks = LedgerLocks()


class Ledger:
    """Balances and the append-only transaction log, bound to one session.

    Nothing here commits; callers own the unit of work so that a balance
    delta, its transaction row and any bet row land together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, user_id: int, currency: str) -> Optional[Balance]:
        res = await self.session.execute(
            select(Balance)
            .where(Balance.user_id == user_id, Balance.currency == currency)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def list_balances(self, user_id: int) -> List[Balance]:
        res = await self.session.execute(
            select(Balance).where(Balance.user_id == user_id).order_by(Balance.currency)
        )
        return list(res.scalars().all())

    async def set_balance(self, user_id: int, currency: str, amount) -> Balance:
        amount = to_amount(amount)
        if amount < 0:
            raise BetRejected("balance cannot be negative")
        balance = await self.get_balance(user_id, currency)
        if balance is None:
            balance = Balance(user_id=user_id, currency=currency, amount=amount, version=1)
            self.session.add(balance)
        else:
            balance.amount = amount
            balance.version = balance.version + 1
            balance.updated_at = utcnow()
        await self.session.flush()
        return balance

    async def apply_delta(self, user_id: int, currency: str, delta) -> Balance:
        """Atomically add ``delta`` to a balance, refusing to go below zero."""
        delta = to_amount(delta)
        res = await self.session.execute(
            update(Balance)
            .where(
                Balance.user_id == user_id,
                Balance.currency == currency,
                Balance.amount + delta >= 0,
            )
            .values(
                amount=Balance.amount + delta,
                version=Balance.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            existing = await self.get_balance(user_id, currency)
            if existing is not None or delta < 0:
                raise InsufficientBalance(currency)
            self.session.add(Balance(user_id=user_id, currency=currency, amount=delta, version=1))
            await self.session.flush()
        balance = await self.get_balance(user_id, currency)
        if balance is None:
            raise LookupError(f"balance {user_id}/{currency} vanished after update")
        return balance

    async def ensure_funds(self, user_id: int, currency: str, amount) -> Balance:
        balance = await self.get_balance(user_id, currency)
        if balance is None or to_amount(balance.amount) < to_amount(amount):
            raise InsufficientBalance(currency)
        return balance

    async def append_transaction(
        self,
        user_id: int,
        type_: str,
        amount,
        currency: str,
        game_type: Optional[str] = None,
        status: str = "completed",
        tx_hash: Optional[str] = None,
        bet_id: Optional[int] = None,
    ) -> Transaction:
        tx = Transaction(
            user_id=user_id,
            type=type_,
            amount=to_amount(amount),
            currency=currency,
            game_type=game_type,
            status=status,
            tx_hash=tx_hash,
            bet_id=bet_id,
        )
        self.session.add(tx)
        await self.session.flush()
        logger.debug("ledger tx user=%s type=%s amount=%s %s", user_id, type_, amount, currency)
        return tx

    async def list_transactions(self, user_id: int, limit: Optional[int] = None) -> List[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        res = await self.session.execute(stmt)
        return list(res.scalars().all())


async def get_ledger(session: AsyncSession = Depends(get_session)) -> Ledger:
    return Ledger(session)

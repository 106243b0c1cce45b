import logging
import secrets
import time
from typing import Tuple

from sqlalchemy import select

from core.ledger import BetRejected, Ledger, ledger_locks, to_amount, validate_currency
from models import Balance, Transaction, WalletAddress


logger = logging.getLogger(__name__)

ADDRESS_PREFIXES = {
    "BTC": "1",
    "ETH": "0x",
    "SOL": "So1",
    "USDT": "0x",
    "LTC": "L",
}


def generate_address(currency: str) -> str:
    prefix = ADDRESS_PREFIXES.get(currency, "0x")
    return f"{prefix}{secrets.token_hex(20)}"


def generate_tx_hash() -> str:
    return f"tx-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


async def get_or_create_deposit_address(ledger: Ledger, user_id: int, currency: str) -> WalletAddress:
    """Deposit addresses are generated locally; nothing watches the chain for them."""
    currency = validate_currency(currency)
    session = ledger.session
    res = await session.execute(
        select(WalletAddress)
        .where(
            WalletAddress.user_id == user_id,
            WalletAddress.currency == currency,
            WalletAddress.is_active.is_(True),
        )
        .order_by(WalletAddress.id)
    )
    existing = res.scalars().first()
    if existing is not None:
        return existing

    address = WalletAddress(user_id=user_id, currency=currency, address=generate_address(currency), is_active=True)
    session.add(address)
    await session.commit()
    logger.info("Issued %s deposit address for user %s", currency, user_id)
    return address


def _positive(amount):
    amount = to_amount(amount)
    if amount <= 0:
        raise BetRejected("amount must be positive")
    return amount


async def deposit(ledger: Ledger, user_id: int, amount, currency: str) -> Tuple[Balance, Transaction]:
    amount = _positive(amount)
    currency = validate_currency(currency)
    async with ledger_locks.hold(user_id, currency):
        balance = await ledger.apply_delta(user_id, currency, amount)
        tx = await ledger.append_transaction(
            user_id, "deposit", amount, currency, tx_hash=generate_tx_hash()
        )
        await ledger.session.commit()
    logger.info("Deposit user=%s amount=%s %s", user_id, amount, currency)
    return balance, tx


async def withdraw(ledger: Ledger, user_id: int, amount, currency: str) -> Tuple[Balance, Transaction]:
    amount = _positive(amount)
    currency = validate_currency(currency)
    async with ledger_locks.hold(user_id, currency):
        balance = await ledger.apply_delta(user_id, currency, -amount)
        tx = await ledger.append_transaction(
            user_id, "withdrawal", -amount, currency, tx_hash=generate_tx_hash()
        )
        await ledger.session.commit()
    logger.info("Withdrawal user=%s amount=%s %s", user_id, amount, currency)
    return balance, tx

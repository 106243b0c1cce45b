import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.ledger import Ledger, get_ledger
from core.wallets import deposit, get_or_create_deposit_address, withdraw
from db import get_session
from models import User, WalletAuth
from routes.auth import enforce_rate_limit, get_current_user
from schemas import (
    BalanceOut,
    ConnectWalletRequest,
    DepositAddressOut,
    DepositRequest,
    LedgerEntryOut,
    NonceRequest,
    TransactionOut,
    UserOut,
    WithdrawRequest,
)
from settings import get_settings


logger = logging.getLogger(__name__)
settings = get_settings()


router = APIRouter()


def _normalize_address(addr: str) -> str:
    if not isinstance(addr, str) or not addr.startswith("0x") or len(addr) != 42:
        raise HTTPException(400, "invalid address")
    return addr.lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _with_timezone(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _is_nonce_expired(wa: WalletAuth) -> bool:
    ts = _with_timezone(wa.updated_at)
    if not ts:
        return False
    return _utcnow() - ts > timedelta(seconds=settings.nonce_ttl_seconds)


def link_message(nonce: str) -> str:
    return f"Sign this message to link your wallet: {nonce}"


async def _owner_of(session: AsyncSession, address: str) -> Optional[User]:
    res = await session.execute(select(User).where(User.wallet_address == address))
    return res.scalar_one_or_none()


@router.post("/wallet/nonce")
async def get_nonce(
    body: NonceRequest,
    _: None = Depends(enforce_rate_limit),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    address = _normalize_address(body.address)
    owner = await _owner_of(session, address)
    if owner and owner.id != user.id:
        raise HTTPException(400, "address linked to another account")

    nonce = secrets.token_hex(16)
    existing = await session.execute(select(WalletAuth).where(WalletAuth.address == address))
    wa = existing.scalar_one_or_none()
    if wa:
        wa.nonce = nonce
        wa.user_id = user.id
    else:
        wa = WalletAuth(address=address, nonce=nonce, user_id=user.id)
        session.add(wa)
    wa.updated_at = _utcnow()
    await session.commit()
    return {"address": address, "nonce": nonce, "message": link_message(nonce)}


@router.post("/wallet/connect", response_model=UserOut)
async def connect_wallet(
    body: ConnectWalletRequest,
    _: None = Depends(enforce_rate_limit),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    address = _normalize_address(body.address)
    res = await session.execute(select(WalletAuth).where(WalletAuth.address == address))
    wa = res.scalar_one_or_none()
    if not wa or wa.user_id != user.id:
        raise HTTPException(400, "no nonce for address")

    if _is_nonce_expired(wa):
        wa.nonce = secrets.token_hex(16)
        wa.updated_at = _utcnow()
        await session.commit()
        raise HTTPException(400, "nonce expired; request a new one")

    msg = encode_defunct(text=link_message(wa.nonce))
    try:
        recovered = Account.recover_message(msg, signature=body.signature)
    except Exception:
        raise HTTPException(400, "invalid signature")

    if recovered.lower() != address:
        raise HTTPException(400, "signature mismatch")

    owner = await _owner_of(session, address)
    if owner and owner.id != user.id:
        raise HTTPException(400, "address linked to another account")

    # rotate nonce so the signature cannot be replayed
    wa.nonce = secrets.token_hex(16)
    wa.updated_at = _utcnow()
    user.wallet_address = address
    await session.commit()
    logger.info("User %s linked wallet %s", user.id, address)
    return user


@router.get("/wallet/balances", response_model=List[BalanceOut])
async def balances(
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    return await ledger.list_balances(user.id)


@router.get("/wallet/deposit-address/{currency}", response_model=DepositAddressOut)
async def deposit_address(
    currency: str,
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        return await get_or_create_deposit_address(ledger, user.id, currency)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/wallet/deposit", response_model=LedgerEntryOut)
async def deposit_funds(
    body: DepositRequest,
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        balance, tx = await deposit(ledger, user.id, body.amount, body.currency)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"balance": balance, "transaction": tx}


@router.post("/wallet/withdraw", response_model=LedgerEntryOut)
async def withdraw_funds(
    body: WithdrawRequest,
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    try:
        balance, tx = await withdraw(ledger, user.id, body.amount, body.currency)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"balance": balance, "transaction": tx}


@router.get("/transactions", response_model=List[TransactionOut])
async def transactions(
    limit: Optional[int] = Query(None, ge=1),
    user: User = Depends(get_current_user),
    ledger: Ledger = Depends(get_ledger),
):
    return await ledger.list_transactions(user.id, limit=limit)

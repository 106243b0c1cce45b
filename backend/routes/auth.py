import logging
import time
from collections import defaultdict, deque
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import create_jwt, hash_password, verify_jwt, verify_password
from core.ledger import Ledger
from db import get_session
from models import User
from schemas import LoginRequest, SignupRequest, TokenOut, UserOut
from settings import get_settings


logger = logging.getLogger(__name__)
settings = get_settings()


router = APIRouter()


class SlidingWindowRateLimiter:
    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def allow(self, key: str) -> bool:
        if self.max_requests <= 0:
            return True
        now = time.monotonic()
        window = self._hits[key]
        while window and now - window[0] > self.window_seconds:
            window.popleft()
        if len(window) >= self.max_requests:
            return False
        window.append(now)
        return True

    def reset(self) -> None:
        self._hits.clear()


rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.auth_rate_limit_max_requests,
    window_seconds=settings.auth_rate_limit_window_seconds,
)


async def enforce_rate_limit(request: Request):
    client_host = request.client.host if request.client else "anonymous"
    key = f"{client_host}:{request.url.path}"
    if not rate_limiter.allow(key):
        raise HTTPException(429, "too many requests")


async def get_current_user(
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(401, "missing bearer token")
    token = authorization.split(" ", 1)[1]
    user_id = verify_jwt(token)
    if user_id is None:
        raise HTTPException(401, "invalid token")
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(401, "user not found")
    return user


async def admin_only(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(403, "admin only")
    return user


async def _find_user(session: AsyncSession, column, value: str) -> Optional[User]:
    res = await session.execute(select(User).where(func.lower(column) == value.lower()))
    return res.scalar_one_or_none()


@router.post("/auth/signup", response_model=TokenOut, status_code=201)
async def signup(
    body: SignupRequest,
    _: None = Depends(enforce_rate_limit),
    session: AsyncSession = Depends(get_session),
):
    if await _find_user(session, User.username, body.username):
        raise HTTPException(400, "username already taken")
    if await _find_user(session, User.email, body.email):
        raise HTTPException(400, "email already registered")

    user = User(
        username=body.username,
        email=body.email,
        password_hash=hash_password(body.password),
    )
    session.add(user)
    await session.flush()

    ledger = Ledger(session)
    for currency, amount in settings.signup_balances.items():
        await ledger.set_balance(user.id, currency, amount)
    await session.commit()
    logger.info("User %s signed up", user.id)

    return {"token": create_jwt(user.id), "user": user}


@router.post("/auth/login", response_model=TokenOut)
async def login(
    body: LoginRequest,
    _: None = Depends(enforce_rate_limit),
    session: AsyncSession = Depends(get_session),
):
    user = await _find_user(session, User.username, body.username)
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(401, "invalid username or password")
    return {"token": create_jwt(user.id), "user": user}


@router.get("/auth/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user

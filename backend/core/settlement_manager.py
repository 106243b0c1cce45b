import asyncio
import logging
import random
import time
from typing import Optional

from prometheus_client import Counter, Histogram

from core.ledger import Ledger
from core.sportsbook import finished_matches_with_pending_bets, settle_pending_bets
from db import SessionLocal
from settings import get_settings


logger = logging.getLogger(__name__)
settings = get_settings()


SWEEP_DURATION = Histogram(
    "settlement_sweep_duration_seconds",
    "Runtime of each settlement sweep",
)
SWEEP_SUCCESS = Counter(
    "settlement_sweep_success_total",
    "Number of successful settlement sweeps",
)
SWEEP_ERRORS = Counter(
    "settlement_sweep_error_total",
    "Number of failed settlement sweeps",
)


class SettlementManager:
    """Background loop settling pending sports bets on finished matches."""

    def __init__(self) -> None:
        self.task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> int:
        settled = 0
        async with SessionLocal() as session:
            ledger = Ledger(session)
            for match in await finished_matches_with_pending_bets(session):
                results = await settle_pending_bets(ledger, match)
                settled += len(results)
                if results:
                    logger.info("Sweep settled %s bets on match %s", len(results), match.external_id)
        return settled

    async def _run_loop(self) -> None:
        backoff = settings.settlement_interval_seconds

        while True:
            started = time.perf_counter()
            try:
                await self.sweep_once()
                backoff = settings.settlement_interval_seconds
                SWEEP_SUCCESS.inc()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - error path exercised in integration
                SWEEP_ERRORS.inc()
                logger.exception("Settlement sweep failed: %s", exc)
                backoff = min(
                    backoff * settings.settlement_retry_backoff_seconds,
                    settings.settlement_max_backoff_seconds,
                )
            finally:
                SWEEP_DURATION.observe(time.perf_counter() - started)

            jitter = random.uniform(0, max(0.05, backoff * 0.1))
            await asyncio.sleep(backoff + jitter)

    async def start(self) -> None:
        if self.task and not self.task.done():
            return
        self.task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        task = self.task
        if not task:
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.task = None


settlement_manager = SettlementManager()

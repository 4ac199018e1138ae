"""
lifecycle.py - Round lifecycle manager.

Hands out the current active round of a raffle, rotating it when it has
expired: the old round is marked ended and round N+1 is inserted with a fresh
24h window. Rotations for one raffle are single-flight inside the process;
across processes the store's unique indexes decide, and the loser re-reads
the winner's round.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from raffle_platform.clock import SystemClock
from raffle_platform.config import ROUND_DURATION_SEC
from raffle_platform.domain import Round, RoundStatus, new_round_id
from raffle_platform.errors import DuplicateRound, StoreUnavailable
from raffle_platform.locks import KeyedSingleFlight

if TYPE_CHECKING:
    from raffle_platform.storage import RoundRepo

logger = logging.getLogger("lifecycle")

STORE_RETRY_ATTEMPTS = 3
STORE_RETRY_BACKOFF_SEC = 0.1

RoundHook = Callable[[Round], Awaitable[object]]


class RoundLifecycleManager:
    """Guarantees a valid active round per raffle."""

    def __init__(
        self,
        round_repo: "RoundRepo",
        clock=None,
        duration_sec: float = ROUND_DURATION_SEC,
        retry_attempts: int = STORE_RETRY_ATTEMPTS,
        retry_backoff_sec: float = STORE_RETRY_BACKOFF_SEC,
    ):
        self._rounds = round_repo
        self._clock = clock or SystemClock()
        self.duration_sec = duration_sec
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff_sec = retry_backoff_sec
        self._rotations = KeyedSingleFlight()
        self._hooks: List[RoundHook] = []

    def on_round_created(self, hook: RoundHook):
        self._hooks.append(hook)

    async def ensure_current_round(self, raffle_id: str, now: Optional[float] = None) -> Round:
        now = self._clock.now() if now is None else now
        delay = self._retry_backoff_sec
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return await self._ensure(raffle_id, now)
            except StoreUnavailable:
                if attempt == self._retry_attempts:
                    logger.error(
                        "Store unavailable resolving round for raffle %s after %d attempts",
                        raffle_id, attempt,
                    )
                    raise
                logger.warning(
                    "Store unavailable resolving round for raffle %s (attempt %d/%d), retrying in %.2fs",
                    raffle_id, attempt, self._retry_attempts, delay,
                )
                await asyncio.sleep(delay)
                delay *= 2

    async def _ensure(self, raffle_id: str, now: float) -> Round:
        current = await self._rounds.get_active(raffle_id)
        if current is not None and not current.is_expired(now):
            return current
        return await self._rotations.run(raffle_id, lambda: self._rotate(raffle_id, now))

    async def _rotate(self, raffle_id: str, now: float) -> Round:
        current = await self._rounds.get_active(raffle_id)
        if current is not None:
            if not current.is_expired(now):
                return current
            await self._rounds.mark_ended(current.id)
            logger.info(
                "Round %s (raffle %s #%d) ended with %d tickets sold",
                current.id, raffle_id, current.round_number, current.total_tickets_sold,
            )

        next_number = await self._rounds.max_round_number(raffle_id) + 1
        candidate = Round(
            id=new_round_id(),
            raffle_id=raffle_id,
            round_number=next_number,
            start_time=now,
            end_time=now + self.duration_sec,
            status=RoundStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self._rounds.insert(candidate)
        except DuplicateRound:
            existing = await self._rounds.get_active(raffle_id)
            if existing is None:
                raise
            logger.info(
                "Rotation of raffle %s lost to another writer, using round %s (#%d)",
                raffle_id, existing.id, existing.round_number,
            )
            return existing

        logger.info(
            "Created round %s (raffle %s #%d) ending at %.0f",
            created.id, raffle_id, created.round_number, created.end_time,
        )
        await self._run_hooks(created)
        return created

    async def _run_hooks(self, rnd: Round):
        for hook in self._hooks:
            try:
                await hook(rnd)
            except Exception:
                logger.exception("Round-created hook failed for round %s", rnd.id)

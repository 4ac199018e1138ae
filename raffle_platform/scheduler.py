"""
scheduler.py - Periodic round maintenance.

Each tick:
 - makes sure every raffle has a current round (rotating expired ones)
 - tops up missing commitments
 - settles pending entries and repairs lagging round totals
 - draws ended rounds once their grace period has passed and none of their
   entries is still waiting on the chain

Rounds that cannot be drawn (no entrants, broken commitment) are parked and
left for an operator; they are not retried on every tick.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Optional, Set

from raffle_platform.clock import SystemClock
from raffle_platform.config import DRAW_GRACE_SEC, SCHEDULER_INTERVAL_SEC
from raffle_platform.domain import Raffle, RoundStatus
from raffle_platform.errors import CommitMismatch, CommitMissing, NoEntrants, RaffleError

if TYPE_CHECKING:
    from raffle_platform.fairdraw import FairDrawEngine
    from raffle_platform.lifecycle import RoundLifecycleManager
    from raffle_platform.reconciler import Reconciler
    from raffle_platform.storage import RoundRepo

logger = logging.getLogger("scheduler")


class RoundScheduler:

    def __init__(
        self,
        raffles: Dict[str, Raffle],
        lifecycle: "RoundLifecycleManager",
        draw_engine: "FairDrawEngine",
        reconciler: "Reconciler",
        round_repo: "RoundRepo",
        clock=None,
        auto_draw: bool = True,
        draw_grace_sec: float = DRAW_GRACE_SEC,
        interval_sec: float = SCHEDULER_INTERVAL_SEC,
    ):
        self._raffles = raffles
        self._lifecycle = lifecycle
        self._draws = draw_engine
        self._reconciler = reconciler
        self._rounds = round_repo
        self._clock = clock or SystemClock()
        self.auto_draw = auto_draw
        self.draw_grace_sec = draw_grace_sec
        self.interval_sec = interval_sec
        self.parked: Dict[str, str] = {}
        self._task: Optional[asyncio.Task] = None

    async def tick(self) -> dict:
        now = self._clock.now()
        summary = {"rounds": {}, "drawn": [], "parked": [], "deferred": []}

        for raffle_id in self._raffles:
            try:
                rnd = await self._lifecycle.ensure_current_round(raffle_id, now)
                await self._draws.ensure_commitment(rnd)
                summary["rounds"][raffle_id] = rnd.id
            except RaffleError as exc:
                logger.error("Could not maintain raffle %s: %s", raffle_id, exc.message)

        summary["reconcile"] = await self._reconciler.run_once(now)

        if self.auto_draw:
            for rnd in await self._rounds.list_by_status(RoundStatus.ENDED.value):
                if rnd.id in self.parked or rnd.end_time + self.draw_grace_sec > now:
                    continue
                unsettled = await self._reconciler.unsettled_entries(rnd.id)
                if unsettled:
                    logger.info("Round %s draw deferred, %d entries still settling", rnd.id, len(unsettled))
                    summary["deferred"].append(rnd.id)
                    continue
                try:
                    winner = await self._draws.draw_winner(rnd.id)
                except NoEntrants:
                    self._park(rnd.id, "no_entrants", summary)
                except (CommitMismatch, CommitMissing) as exc:
                    logger.error("Round %s cannot be drawn: %s", rnd.id, exc.message)
                    self._park(rnd.id, exc.kind, summary)
                else:
                    summary["drawn"].append(winner.round_id)
        return summary

    def _park(self, round_id: str, reason: str, summary: dict):
        self.parked[round_id] = reason
        summary["parked"].append(round_id)
        logger.info("Round %s parked (%s)", round_id, reason)

    async def run(self):
        logger.info("Round scheduler started (interval=%.0fs, auto_draw=%s)",
                    self.interval_sec, self.auto_draw)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in round scheduler tick")
            await asyncio.sleep(self.interval_sec)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

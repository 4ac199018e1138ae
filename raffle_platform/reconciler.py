"""
reconciler.py - Repairs round totals and settles pending entries.

Round aggregates are a cache over the ledger. ``reconcile_round`` re-derives
them from confirmed entries and raises stored values that lag behind (they
never go down). ``settle_pending`` asks the gateway about every pending
entry and confirms or fails it; entries nobody can confirm within the
pending window are failed. A ticket purchase that only confirms after its
round was drawn had no slot in the draw, so it is failed and refunded.
"""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from raffle_platform.clock import SystemClock
from raffle_platform.config import PENDING_WINDOW_SEC, TREASURY_ADDRESS
from raffle_platform.domain import Entry, EntryStatus, EntryType, Raffle, RoundStatus, normalize_address
from raffle_platform.errors import PaymentError, RaffleError, RoundNotFound
from raffle_platform.ledger import refund_entry
from raffle_platform.payments import PaymentStatus

if TYPE_CHECKING:
    from raffle_platform.ledger import EntryLedger
    from raffle_platform.payments import PaymentGateway
    from raffle_platform.storage import RoundRepo

logger = logging.getLogger("reconciler")


class Reconciler:

    def __init__(
        self,
        raffles: Dict[str, Raffle],
        round_repo: "RoundRepo",
        ledger: "EntryLedger",
        gateway: "PaymentGateway",
        clock=None,
        pending_window: float = PENDING_WINDOW_SEC,
        treasury_address: str = TREASURY_ADDRESS,
    ):
        self._raffles = raffles
        self._rounds = round_repo
        self._ledger = ledger
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self.pending_window = pending_window
        self.treasury_address = normalize_address(treasury_address)

    async def reconcile_round(self, round_id: str) -> dict:
        rnd = await self._rounds.get(round_id)
        if rnd is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
        raffle = self._raffles.get(rnd.raffle_id)
        tickets, pool = await self._ledger.round_totals(round_id)
        if raffle is not None:
            tickets = min(tickets, raffle.capacity)

        corrected = False
        if rnd.status != RoundStatus.DRAWN:
            if tickets > rnd.total_tickets_sold or (
                tickets == rnd.total_tickets_sold and pool > rnd.total_prize_pool
            ):
                await self._rounds.update_aggregates(round_id, tickets, pool)
                corrected = True
                logger.info(
                    "Round %s totals raised from %d/%.8f to %d/%.8f",
                    round_id, rnd.total_tickets_sold, rnd.total_prize_pool, tickets, pool,
                )
            elif tickets < rnd.total_tickets_sold:
                logger.warning(
                    "Round %s stores %d tickets but the ledger confirms only %d",
                    round_id, rnd.total_tickets_sold, tickets,
                )
        return {
            "round_id": round_id,
            "tickets_sold": max(tickets, rnd.total_tickets_sold),
            "ledger_tickets": tickets,
            "prize_pool": max(pool, rnd.total_prize_pool),
            "corrected": corrected,
        }

    async def reconcile_open_rounds(self) -> List[dict]:
        results = []
        for status in (RoundStatus.ACTIVE.value, RoundStatus.ENDED.value):
            for rnd in await self._rounds.list_by_status(status):
                results.append(await self.reconcile_round(rnd.id))
        return results

    async def settle_pending(self, now: Optional[float] = None) -> dict:
        now = self._clock.now() if now is None else now
        summary = {"confirmed": 0, "failed": 0, "pending": 0}
        for entry in await self._ledger.list_pending():
            outcome = await self._settle_entry(entry, now)
            summary[outcome] += 1
        if summary["confirmed"] or summary["failed"]:
            logger.info(
                "Settled pending entries: %d confirmed, %d failed, %d still pending",
                summary["confirmed"], summary["failed"], summary["pending"],
            )
        return summary

    async def _settle_entry(self, entry: Entry, now: float) -> str:
        status = PaymentStatus.PENDING.value
        if entry.tx_hash:
            try:
                status = await self._gateway.confirm_payment(entry.tx_hash)
            except PaymentError as exc:
                logger.warning("Could not check tx %s for entry #%d: %s", entry.tx_hash, entry.id, exc.message)

        if status == PaymentStatus.CONFIRMED:
            raffle = self._raffles.get(entry.raffle_id)
            if (
                entry.entry_type == EntryType.RAFFLE_ENTRY
                and raffle is not None
                and raffle.is_free
                and await self._ledger.has_entered(entry.wallet_address, entry.raffle_id, entry.round_id)
            ):
                logger.warning(
                    "Entry #%d duplicates a confirmed free entry of %s, failing it",
                    entry.id, entry.wallet_address,
                )
                await self._ledger.settle(entry.id, EntryStatus.FAILED.value)
                return "failed"
            if entry.entry_type == EntryType.RAFFLE_ENTRY and await self._round_drawn(entry.round_id):
                return await self._refund_late_entry(entry, now)
            if not await self._ledger.settle(entry.id, EntryStatus.CONFIRMED.value):
                return "pending"
            if entry.entry_type == EntryType.RAFFLE_ENTRY and raffle is not None:
                try:
                    await self._rounds.increment_aggregates(
                        entry.round_id, entry.ticket_count, entry.amount, raffle.capacity,
                    )
                except RaffleError as exc:
                    logger.warning("Late entry #%d not counted in round %s: %s",
                                   entry.id, entry.round_id, exc.message)
            return "confirmed"

        if status == PaymentStatus.FAILED or now - entry.created_at >= self.pending_window:
            if await self._ledger.settle(entry.id, EntryStatus.FAILED.value):
                return "failed"
        return "pending"

    async def unsettled_entries(self, round_id: str) -> List[Entry]:
        """Ticket purchases of a round still waiting on the chain."""
        return await self._ledger.pending_for_round(round_id)

    async def _round_drawn(self, round_id: str) -> bool:
        rnd = await self._rounds.get(round_id)
        return rnd is not None and rnd.status == RoundStatus.DRAWN

    async def _refund_late_entry(self, entry: Entry, now: float) -> str:
        if not await self._ledger.settle(entry.id, EntryStatus.FAILED.value):
            return "pending"
        logger.warning(
            "Entry #%d of %s confirmed after round %s was drawn, refunding %.8f",
            entry.id, entry.wallet_address, entry.round_id, entry.amount,
        )
        if entry.amount <= 0:
            return "failed"
        tx_hash, status = "", EntryStatus.PENDING
        try:
            tx_hash = await self._gateway.submit_payment(
                self.treasury_address, entry.wallet_address, entry.amount,
            )
        except PaymentError as exc:
            status = EntryStatus.FAILED
            logger.error("Refund of entry #%d to %s failed: %s", entry.id, entry.wallet_address, exc.message)
        await self._ledger.record_entry(refund_entry(
            entry.wallet_address, entry.raffle_id, entry.round_id,
            entry.amount, tx_hash, status.value, now,
        ))
        return "failed"

    async def run_once(self, now: Optional[float] = None) -> dict:
        settled = await self.settle_pending(now)
        rounds = await self.reconcile_open_rounds()
        return {
            "settled": settled,
            "rounds_checked": len(rounds),
            "rounds_corrected": sum(1 for r in rounds if r["corrected"]),
        }

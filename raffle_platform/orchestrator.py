"""
orchestrator.py - Raffle entry orchestrator.

One ticket purchase, end to end:
 1. resolve the raffle and its current round (rotating if needed)
 2. validate the ticket count (free raffles: make sure the wallet has not
    entered yet) and reserve the tickets against the round capacity
 3. submit the payment to the treasury and wait for confirmation, bounded
    by the caller's timeout
 4. record the entry (confirmed / pending / failed)
 5. add the purchase to the round totals with one atomic, capacity-clamped
    update, then release the reservation

Payments are never retried or rolled back here. Anything left pending is
settled later by the Reconciler. Prize claims run the same payment flow in
the other direction.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Dict, Optional, Set

from raffle_platform.clock import SystemClock
from raffle_platform.config import PAYMENT_TIMEOUT_SEC, TREASURY_ADDRESS
from raffle_platform.domain import (
    Entry,
    EntryStatus,
    EntryType,
    Raffle,
    Round,
    RoundStatus,
    normalize_address,
)
from raffle_platform.errors import (
    Abandoned,
    AlreadyClaimed,
    AlreadyEntered,
    InvalidTicketCount,
    InvalidWallet,
    NoActiveRound,
    NotWinner,
    PaymentError,
    PaymentRejected,
    PaymentTimeout,
    RaffleError,
    RaffleNotFound,
    RoundClosed,
    RoundNotEnded,
    RoundNotFound,
    StoreUnavailable,
)
from raffle_platform.ledger import claim_entry
from raffle_platform.locks import KeyedLock
from raffle_platform.payments import PaymentStatus

if TYPE_CHECKING:
    from raffle_platform.fairdraw import FairDrawEngine
    from raffle_platform.ledger import EntryLedger
    from raffle_platform.lifecycle import RoundLifecycleManager
    from raffle_platform.payments import PaymentGateway
    from raffle_platform.storage import RoundRepo

logger = logging.getLogger("orchestrator")

CONFIRMATION_POLL_SEC = 0.5


class RaffleEntryOrchestrator:
    """Validates, pays, records and counts raffle entries."""

    def __init__(
        self,
        raffles: Dict[str, Raffle],
        lifecycle: "RoundLifecycleManager",
        round_repo: "RoundRepo",
        ledger: "EntryLedger",
        gateway: "PaymentGateway",
        draw_engine: Optional["FairDrawEngine"] = None,
        clock=None,
        treasury_address: str = TREASURY_ADDRESS,
        payment_timeout: float = PAYMENT_TIMEOUT_SEC,
        poll_interval: float = CONFIRMATION_POLL_SEC,
    ):
        self.raffles = raffles
        self._lifecycle = lifecycle
        self._rounds = round_repo
        self._ledger = ledger
        self._gateway = gateway
        self._draws = draw_engine
        self._clock = clock or SystemClock()
        self.treasury_address = normalize_address(treasury_address)
        self.payment_timeout = payment_timeout
        self._poll_interval = poll_interval
        self._locks = KeyedLock()
        self._reserved: Dict[str, Dict[str, int]] = {}
        self._late_submits: Set[asyncio.Task] = set()

    def get_raffle(self, raffle_id: str) -> Raffle:
        raffle = self.raffles.get(str(raffle_id))
        if raffle is None:
            raise RaffleNotFound(f"Raffle {raffle_id} not found", raffle_id=raffle_id)
        return raffle

    # ── Entry ─────────────────────────────────────────────────────────────

    async def enter(
        self,
        wallet: str,
        raffle_id: str,
        ticket_count: int = 1,
        timeout: Optional[float] = None,
        abandoned: Optional[asyncio.Event] = None,
    ) -> Entry:
        wallet = normalize_address(wallet)
        if not wallet:
            raise InvalidWallet("Connect a wallet before entering a raffle")
        raffle = self.get_raffle(raffle_id)
        try:
            rnd = await self._lifecycle.ensure_current_round(raffle.id)
        except StoreUnavailable as exc:
            raise NoActiveRound(
                f"No active round for {raffle.name} right now, please try again",
                raffle_id=raffle.id,
            ) from exc

        if raffle.is_free:
            async with self._locks.hold(("entry", rnd.id, wallet)):
                return await self._enter_round(wallet, raffle, rnd, 1, timeout, abandoned)
        return await self._enter_round(wallet, raffle, rnd, ticket_count, timeout, abandoned)

    async def _enter_round(
        self, wallet: str, raffle: Raffle, rnd: Round, ticket_count: int,
        timeout: Optional[float], abandoned: Optional[asyncio.Event],
    ) -> Entry:
        if rnd.is_expired(self._clock.now()):
            raise RoundClosed(
                f"Round {rnd.round_number} of {raffle.name} is closed", round_id=rnd.id,
            )
        if raffle.is_free:
            if await self._ledger.has_entered(wallet, raffle.id, rnd.id):
                raise AlreadyEntered(
                    "You have already entered this free raffle round", round_id=rnd.id,
                )
        elif not isinstance(ticket_count, int) or ticket_count < 1:
            raise InvalidTicketCount("Buy at least one ticket")

        await self._reserve(wallet, raffle, rnd, ticket_count)
        try:
            return await self._pay_and_record(wallet, raffle, rnd, ticket_count, timeout, abandoned)
        finally:
            self._release(rnd.id, wallet, ticket_count)

    async def _reserve(self, wallet: str, raffle: Raffle, rnd: Round, ticket_count: int):
        """Hold round capacity for a purchase until its entry is in the ledger.

        Capacity taken = max(stored total, confirmed + pending ledger tickets)
        plus purchases reserved but not yet recorded.
        """
        async with self._locks.hold(("capacity", rnd.id)):
            held = self._reserved.get(rnd.id, {})
            current = await self._rounds.get(rnd.id) or rnd
            if current.status != RoundStatus.ACTIVE:
                raise RoundClosed(
                    f"Round {rnd.round_number} of {raffle.name} is closed", round_id=rnd.id,
                )
            committed = await self._ledger.committed_tickets(rnd.id)
            taken = max(current.total_tickets_sold, committed) + sum(held.values())
            if taken >= raffle.capacity:
                raise RoundClosed(
                    f"Round {rnd.round_number} of {raffle.name} is sold out", round_id=rnd.id,
                )
            remaining = raffle.capacity - taken
            if ticket_count > remaining:
                raise InvalidTicketCount(
                    f"Only {remaining} tickets left in this round", remaining=remaining,
                )
            if raffle.max_tickets_per_wallet:
                owned = await self._ledger.tickets_for_wallet(wallet, rnd.id) + held.get(wallet, 0)
                if owned + ticket_count > raffle.max_tickets_per_wallet:
                    raise InvalidTicketCount(
                        f"Limit is {raffle.max_tickets_per_wallet} tickets per wallet per round, "
                        f"you already hold {owned}",
                    )
            wallets = self._reserved.setdefault(rnd.id, {})
            wallets[wallet] = wallets.get(wallet, 0) + ticket_count

    def _release(self, round_id: str, wallet: str, ticket_count: int):
        wallets = self._reserved.get(round_id)
        if not wallets:
            return
        left = wallets.get(wallet, 0) - ticket_count
        if left > 0:
            wallets[wallet] = left
        else:
            wallets.pop(wallet, None)
        if not wallets:
            del self._reserved[round_id]

    async def _pay_and_record(
        self, wallet: str, raffle: Raffle, rnd: Round, ticket_count: int,
        timeout: Optional[float], abandoned: Optional[asyncio.Event],
    ) -> Entry:
        amount = raffle.cost(ticket_count)
        deadline = self._deadline(timeout)
        # shielded so a submit still in flight at the deadline can report its hash later
        submit = asyncio.ensure_future(
            self._gateway.submit_payment(wallet, self.treasury_address, amount)
        )
        tx_hash = ""
        try:
            tx_hash = await self._bounded(asyncio.shield(submit), deadline, abandoned)
            status = await self._await_confirmation(tx_hash, deadline, abandoned)
        except PaymentError as exc:
            await self._record(wallet, raffle, rnd, ticket_count, amount, tx_hash, EntryStatus.FAILED)
            logger.warning("Payment from %s for round %s rejected: %s", wallet, rnd.id, exc.message)
            raise PaymentRejected(exc.message, reason=exc.kind) from exc
        except PaymentTimeout:
            entry = await self._record(wallet, raffle, rnd, ticket_count, amount, tx_hash, EntryStatus.PENDING)
            if tx_hash:
                logger.warning("Payment %s from %s timed out, left pending", tx_hash, wallet)
            else:
                logger.warning(
                    "Submit of %.8f from %s to %s timed out, entry #%d waits for its tx hash",
                    amount, wallet, self.treasury_address, entry.id,
                )
                self._track_late_submit(entry, submit)
            raise
        except Abandoned:
            if tx_hash:
                await self._record(wallet, raffle, rnd, ticket_count, amount, tx_hash, EntryStatus.PENDING)
            elif not submit.done():
                submit.cancel()
                logger.warning(
                    "Entry of %s abandoned while submitting %.8f to %s, "
                    "the transfer may still reach the chain",
                    wallet, amount, self.treasury_address,
                )
            logger.info("Entry of %s into round %s abandoned (tx=%s)", wallet, rnd.id, tx_hash or "none")
            raise

        if status == PaymentStatus.FAILED:
            await self._record(wallet, raffle, rnd, ticket_count, amount, tx_hash, EntryStatus.FAILED)
            raise PaymentRejected("Transaction failed on chain", reason="reverted")

        entry = await self._record(wallet, raffle, rnd, ticket_count, amount, tx_hash, EntryStatus.CONFIRMED)
        try:
            await self._rounds.increment_aggregates(rnd.id, ticket_count, amount, raffle.capacity)
        except RaffleError as exc:
            # the entry itself is durable; the reconciler re-derives totals
            logger.error(
                "Entry #%d confirmed but round %s totals not updated: %s",
                entry.id, rnd.id, exc.message,
            )
        return entry

    def _track_late_submit(self, entry: Entry, submit: asyncio.Future):
        task = asyncio.ensure_future(self._attach_late_hash(entry, submit))
        self._late_submits.add(task)
        task.add_done_callback(self._late_submits.discard)

    async def _attach_late_hash(self, entry: Entry, submit: asyncio.Future):
        try:
            try:
                tx_hash = await submit
            except PaymentError as exc:
                logger.warning("Late submit for entry #%d failed: %s", entry.id, exc.message)
                await self._ledger.settle(entry.id, EntryStatus.FAILED.value)
            else:
                await self._ledger.attach_tx_hash(entry.id, tx_hash)
        except RaffleError as exc:
            logger.error("Could not update entry #%d after its late submit: %s", entry.id, exc.message)

    async def wait_late_submits(self):
        """Wait for submits that outlived their entry call to report back."""
        if self._late_submits:
            await asyncio.gather(*list(self._late_submits), return_exceptions=True)

    async def _record(
        self, wallet: str, raffle: Raffle, rnd: Round, ticket_count: int,
        amount: float, tx_hash: str, status: EntryStatus,
    ) -> Entry:
        return await self._ledger.record_entry(Entry(
            wallet_address=wallet,
            raffle_id=raffle.id,
            round_id=rnd.id,
            ticket_count=ticket_count,
            amount=amount,
            status=status.value,
            tx_hash=tx_hash,
            entry_type=EntryType.RAFFLE_ENTRY.value,
            created_at=self._clock.now(),
        ))

    async def try_enter(self, wallet: str, raffle_id: str, ticket_count: int = 1,
                        timeout: Optional[float] = None) -> dict:
        """UI-facing variant of enter(): never raises core errors."""
        try:
            entry = await self.enter(wallet, raffle_id, ticket_count, timeout=timeout)
        except RaffleError as exc:
            return exc.to_dict()
        return {"success": True, "entry": entry.to_dict()}

    # ── Payment plumbing ──────────────────────────────────────────────────

    def _deadline(self, timeout: Optional[float]) -> float:
        loop = asyncio.get_running_loop()
        return loop.time() + (self.payment_timeout if timeout is None else timeout)

    async def _bounded(self, work: Awaitable, deadline: float,
                       abandoned: Optional[asyncio.Event]):
        """Await *work* until the deadline or until the caller abandons."""
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(work)
        waiters = {task}
        abandon_waiter = None
        if abandoned is not None:
            abandon_waiter = asyncio.ensure_future(abandoned.wait())
            waiters.add(abandon_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=max(deadline - loop.time(), 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if abandon_waiter is not None:
                abandon_waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        if abandon_waiter is not None and abandon_waiter in done:
            raise Abandoned("Entry was abandoned before the payment settled")
        raise PaymentTimeout("Payment did not confirm in time, it will be settled shortly")

    async def _await_confirmation(self, tx_hash: str, deadline: float,
                                  abandoned: Optional[asyncio.Event]) -> str:
        loop = asyncio.get_running_loop()
        while True:
            status = await self._bounded(self._gateway.confirm_payment(tx_hash), deadline, abandoned)
            if status != PaymentStatus.PENDING:
                return status
            if loop.time() + self._poll_interval >= deadline:
                raise PaymentTimeout("Payment did not confirm in time, it will be settled shortly")
            await self._bounded(asyncio.sleep(self._poll_interval), deadline, abandoned)

    # ── Prize claims ──────────────────────────────────────────────────────

    async def claim_prize(self, wallet: str, round_id: str, timeout: Optional[float] = None) -> Entry:
        if self._draws is None:
            raise RuntimeError("Prize claims need a draw engine")
        wallet = normalize_address(wallet)
        if not wallet:
            raise InvalidWallet("Connect a wallet to claim a prize")
        winner = await self._draws.get_winner(round_id)
        if winner is None:
            rnd = await self._rounds.get(round_id)
            if rnd is None:
                raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
            raise RoundNotEnded("This round has not been drawn yet", round_id=round_id)
        if winner.wallet_address != wallet:
            raise NotWinner(round_id=round_id)

        async with self._locks.hold(("claim", round_id)):
            if await self._ledger.has_claimed(round_id):
                raise AlreadyClaimed(round_id=round_id)
            deadline = self._deadline(timeout)
            tx_hash = ""
            try:
                tx_hash = await self._bounded(
                    self._gateway.submit_payment(self.treasury_address, wallet, winner.prize_amount),
                    deadline, None,
                )
                status = await self._await_confirmation(tx_hash, deadline, None)
            except PaymentError as exc:
                await self._record_claim(winner, tx_hash, EntryStatus.FAILED)
                logger.error("Prize payout for round %s failed: %s", round_id, exc.message)
                raise PaymentRejected(exc.message, reason=exc.kind) from exc
            except PaymentTimeout:
                await self._record_claim(winner, tx_hash, EntryStatus.PENDING)
                raise
            if status == PaymentStatus.FAILED:
                await self._record_claim(winner, tx_hash, EntryStatus.FAILED)
                raise PaymentRejected("Prize transfer failed on chain", reason="reverted")
            entry = await self._record_claim(winner, tx_hash, EntryStatus.CONFIRMED)
        logger.info("Prize of %.8f for round %s paid to %s", winner.prize_amount, round_id, wallet)
        return entry

    async def _record_claim(self, winner, tx_hash: str, status: EntryStatus) -> Entry:
        return await self._ledger.record_entry(claim_entry(
            winner.wallet_address, winner.raffle_id, winner.round_id,
            winner.prize_amount, tx_hash, status.value, self._clock.now(),
        ))

"""
ledger.py - Entry ledger service.

Records ticket purchases and prize claims per wallet, raffle and round, and
answers membership and statistics queries. Backed by EntryRepo. Statistics
are always derived from confirmed entries at read time.
"""

import logging
from typing import TYPE_CHECKING, List, Optional, Tuple

from raffle_platform.domain import Entry, EntryStatus, EntryType, normalize_address

if TYPE_CHECKING:
    from raffle_platform.storage import EntryRepo

logger = logging.getLogger("ledger")

LEADERBOARD_PERIODS = {
    "all": None,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
}


class EntryLedger:
    """Entry ledger backed by SQLite via EntryRepo."""

    def __init__(self, repo: "EntryRepo"):
        self._repo = repo

    async def record_entry(self, entry: Entry) -> Entry:
        entry.wallet_address = normalize_address(entry.wallet_address)
        stored = await self._repo.insert(entry)
        logger.info(
            "Recorded %s entry #%d wallet=%s round=%s tickets=%d amount=%.8f status=%s",
            stored.entry_type, stored.id, stored.wallet_address, stored.round_id,
            stored.ticket_count, stored.amount, stored.status,
        )
        return stored

    async def has_entered(self, wallet: str, raffle_id: str, round_id: str) -> bool:
        return await self._repo.exists(
            normalize_address(wallet), round_id, raffle_id=raffle_id,
        )

    async def list_entries(self, wallet: str, limit: Optional[int] = None) -> List[Entry]:
        """All entries of a wallet, newest first."""
        return await self._repo.list_for_wallet(normalize_address(wallet), limit=limit)

    async def aggregate_stats(self, wallet: str) -> dict:
        wallet = normalize_address(wallet)
        stats = await self._repo.wallet_summary(wallet)
        stats["wallet"] = wallet
        return stats

    async def confirmed_for_round(self, round_id: str) -> List[Entry]:
        """Confirmed ticket purchases of a round in (created_at, id) order."""
        return await self._repo.list_confirmed_for_round(round_id)

    async def tickets_for_wallet(self, wallet: str, round_id: str) -> int:
        """Tickets a wallet holds or has in flight for a round."""
        return await self._repo.wallet_tickets(normalize_address(wallet), round_id)

    async def committed_tickets(self, round_id: str) -> int:
        """Tickets of a round that are confirmed or still awaiting settlement."""
        return await self._repo.committed_tickets(round_id)

    async def round_totals(self, round_id: str) -> Tuple[int, float]:
        return await self._repo.round_totals(round_id)

    async def settle(self, entry_id: int, status: str, tx_hash: Optional[str] = None) -> bool:
        if status not in (EntryStatus.CONFIRMED, EntryStatus.FAILED):
            raise ValueError(f"Entries can only settle to confirmed or failed, not {status}")
        settled = await self._repo.settle(entry_id, EntryStatus(status).value, tx_hash)
        if settled:
            logger.info("Entry #%d settled as %s", entry_id, status)
        else:
            logger.debug("Entry #%d was not pending, left unchanged", entry_id)
        return settled

    async def list_pending(self, limit: Optional[int] = None) -> List[Entry]:
        return await self._repo.list_by_status(EntryStatus.PENDING.value, limit=limit)

    async def pending_for_round(self, round_id: str) -> List[Entry]:
        return await self._repo.list_pending_for_round(round_id)

    async def attach_tx_hash(self, entry_id: int, tx_hash: str) -> bool:
        attached = await self._repo.attach_tx_hash(entry_id, tx_hash)
        if attached:
            logger.info("Entry #%d now tracks tx %s", entry_id, tx_hash)
        return attached

    async def has_claimed(self, round_id: str) -> bool:
        """True once a prize claim for the round is confirmed or in flight."""
        return await self._repo.claim_exists(round_id)

    async def leaderboard(
        self, period: str = "all", limit: int = 10, now: Optional[float] = None,
    ) -> List[dict]:
        if period not in LEADERBOARD_PERIODS:
            raise ValueError(f"Unknown leaderboard period: {period}")
        window = LEADERBOARD_PERIODS[period]
        since = None
        if window is not None:
            if now is None:
                raise ValueError("A reference time is required for windowed leaderboards")
            since = now - window
        rows = await self._repo.leaderboard(since=since, limit=limit)
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank
        return rows


def claim_entry(wallet: str, raffle_id: str, round_id: str, amount: float,
                tx_hash: str, status: str, created_at: float) -> Entry:
    return Entry(
        wallet_address=normalize_address(wallet),
        raffle_id=raffle_id,
        round_id=round_id,
        ticket_count=0,
        amount=amount,
        status=status,
        tx_hash=tx_hash,
        entry_type=EntryType.PRIZE_CLAIM.value,
        created_at=created_at,
    )


def refund_entry(wallet: str, raffle_id: str, round_id: str, amount: float,
                 tx_hash: str, status: str, created_at: float) -> Entry:
    entry = claim_entry(wallet, raffle_id, round_id, amount, tx_hash, status, created_at)
    entry.entry_type = EntryType.REFUND.value
    return entry

"""
fairdraw.py - Commit-reveal draw engine.

When a round opens, a random payload {nonce, secret, timestamp} is sealed and
only its SHA-256 commit hash is published. At draw time the payload is
re-hashed and checked against the commitment, then the winning slot is

    int(HMAC-SHA256(key=secret, msg="{nonce}:{timestamp}:{total_slots}"), 16) % total_slots

Each confirmed entry owns ``ticket_count`` consecutive slots in
(created_at, id) order, so anyone holding the revealed payload and the entry
list can recompute the winner. Free raffles give every wallet one slot.
"""

import bisect
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from raffle_platform.clock import SystemClock
from raffle_platform.config import RAKE
from raffle_platform.domain import Raffle, Round, RoundStatus, Winner, round_amount
from raffle_platform.errors import (
    CommitMismatch,
    CommitMissing,
    NoEntrants,
    RaffleNotFound,
    RoundNotEnded,
    RoundNotFound,
)
from raffle_platform.locks import KeyedSingleFlight

if TYPE_CHECKING:
    from raffle_platform.domain import Entry
    from raffle_platform.ledger import EntryLedger
    from raffle_platform.storage import DrawRepo, RoundRepo

logger = logging.getLogger("fairdraw")

NONCE_BYTES = 16
SECRET_BYTES = 32
FULL_PRIZE_SOLD_RATIO = 0.5


# ---------------------------------------------------------------------------
# Pure functions
# ---------------------------------------------------------------------------

def generate_payload(now: float) -> dict:
    return {
        "nonce": secrets.token_hex(NONCE_BYTES),
        "secret": secrets.token_hex(SECRET_BYTES),
        "timestamp": int(now),
    }


def serialize_payload(payload: dict) -> str:
    canonical = {
        "nonce": str(payload["nonce"]),
        "secret": str(payload["secret"]),
        "timestamp": int(payload["timestamp"]),
    }
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"))


def commit_hash(payload: dict) -> str:
    return hashlib.sha256(serialize_payload(payload).encode("utf-8")).hexdigest()


def verify_reveal(payload: dict, expected_hash: str) -> bool:
    return hmac.compare_digest(commit_hash(payload), expected_hash.lower())


def derive_slot(payload: dict, total_slots: int) -> int:
    if total_slots <= 0:
        raise ValueError("total_slots must be positive")
    message = f"{payload['nonce']}:{int(payload['timestamp'])}:{total_slots}"
    digest = hmac.new(
        str(payload["secret"]).encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return int(digest, 16) % total_slots


@dataclass(frozen=True)
class SlotRange:
    """Slots [start, end) owned by one wallet."""

    wallet_address: str
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


def build_slots(entries: Iterable["Entry"], free: bool = False) -> Tuple[List[SlotRange], int]:
    ranges: List[SlotRange] = []
    seen = set()
    cursor = 0
    for entry in entries:
        if free:
            if entry.wallet_address in seen:
                continue
            seen.add(entry.wallet_address)
            weight = 1
        else:
            weight = entry.ticket_count
        if weight <= 0:
            continue
        ranges.append(SlotRange(entry.wallet_address, cursor, cursor + weight))
        cursor += weight
    return ranges, cursor


def select_winner(ranges: List[SlotRange], slot: int) -> SlotRange:
    ends = [r.end for r in ranges]
    idx = bisect.bisect_right(ends, slot)
    if idx >= len(ranges) or slot < 0:
        raise ValueError(f"Slot {slot} is outside the {len(ends)} ranges")
    return ranges[idx]


def compute_payout(raffle: Raffle, tickets_sold: int, prize_pool: float, rake: float = RAKE) -> float:
    """Advertised prize for free raffles and rounds at least half sold, else the pot minus rake."""
    if raffle.is_free or tickets_sold >= raffle.capacity * FULL_PRIZE_SOLD_RATIO:
        return raffle.prize_amount
    return round_amount(prize_pool * (1 - rake))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class FairDrawEngine:
    """Seals a commitment per round and draws winners from the ledger."""

    def __init__(
        self,
        raffles: Dict[str, Raffle],
        round_repo: "RoundRepo",
        draw_repo: "DrawRepo",
        ledger: "EntryLedger",
        clock=None,
        rake: float = RAKE,
    ):
        self._raffles = raffles
        self._rounds = round_repo
        self._draws = draw_repo
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self.rake = rake
        self._inflight = KeyedSingleFlight()

    async def commit(self, rnd: Round) -> dict:
        """Seal the round's payload. Idempotent: one commitment per round."""
        existing = await self._draws.get_commitment(rnd.id)
        if existing is not None:
            return self._public(existing)
        payload = generate_payload(self._clock.now())
        stored = await self._draws.save_commitment(rnd.id, commit_hash(payload), payload)
        logger.info(
            "Committed round %s (raffle %s #%d): %s",
            rnd.id, rnd.raffle_id, rnd.round_number, stored["commit_hash"],
        )
        return self._public(stored)

    async def ensure_commitment(self, rnd: Round) -> Optional[dict]:
        """Commit for rounds still taking entries; drawn rounds keep what they have."""
        if rnd.status == RoundStatus.DRAWN:
            return await self.get_commitment_view(rnd.id)
        return await self.commit(rnd)

    async def get_commitment_view(self, round_id: str) -> Optional[dict]:
        stored = await self._draws.get_commitment(round_id)
        return self._public(stored) if stored else None

    @staticmethod
    def _public(stored: dict) -> dict:
        view = {
            "round_id": stored["round_id"],
            "commit_hash": stored["commit_hash"],
            "committed_at": stored["created_at"],
            "revealed": stored["revealed_at"] is not None,
        }
        if view["revealed"]:
            view["reveal"] = dict(stored["payload"])
            view["revealed_at"] = stored["revealed_at"]
        return view

    async def draw_winner(self, round_id: str) -> Winner:
        return await self._inflight.run(round_id, lambda: self._draw(round_id))

    async def _draw(self, round_id: str) -> Winner:
        rnd = await self._rounds.get(round_id)
        if rnd is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
        if rnd.status == RoundStatus.DRAWN:
            winner = await self._draws.get_winner(round_id)
            if winner is not None:
                return winner
        if rnd.status != RoundStatus.ENDED:
            raise RoundNotEnded(
                f"Round {rnd.round_number} is still {rnd.status}", round_id=round_id,
            )

        commitment = await self._draws.get_commitment(round_id)
        if commitment is None:
            logger.error("Round %s has no commitment, refusing to draw", round_id)
            raise CommitMissing(f"Round {round_id} has no commitment", round_id=round_id)
        payload = commitment["payload"]
        if not verify_reveal(payload, commitment["commit_hash"]):
            logger.error(
                "Commitment mismatch for round %s: stored %s, payload hashes to %s",
                round_id, commitment["commit_hash"], commit_hash(payload),
            )
            raise CommitMismatch(
                f"Stored payload for round {round_id} does not match its commitment",
                round_id=round_id,
            )

        raffle = self._raffles.get(rnd.raffle_id)
        if raffle is None:
            raise RaffleNotFound(f"Raffle {rnd.raffle_id} not found", raffle_id=rnd.raffle_id)

        entries = await self._ledger.confirmed_for_round(round_id)
        ranges, total_slots = build_slots(entries, free=raffle.is_free)
        if total_slots == 0:
            logger.warning("Round %s (raffle %s) ended with no entrants", round_id, rnd.raffle_id)
            raise NoEntrants(f"Round {rnd.round_number} has no entrants", round_id=round_id)

        slot = derive_slot(payload, total_slots)
        owner = select_winner(ranges, slot)
        prize_pool = round_amount(sum(e.amount for e in entries))
        now = self._clock.now()
        winner = Winner(
            round_id=round_id,
            raffle_id=rnd.raffle_id,
            wallet_address=owner.wallet_address,
            prize_amount=compute_payout(raffle, total_slots, prize_pool, self.rake),
            total_slots=total_slots,
            winning_slot=slot,
            commit_hash=commitment["commit_hash"],
            reveal=dict(payload),
            drawn_at=now,
        )

        try:
            await self._rounds.record_winner(round_id, winner)
        except RoundNotEnded:
            stored = await self._draws.get_winner(round_id)
            if stored is None:
                raise
            logger.info("Round %s was drawn concurrently, using stored winner", round_id)
            return stored
        await self._draws.mark_revealed(round_id, now)
        logger.info(
            "Round %s drawn: slot %d/%d -> %s prize=%.8f",
            round_id, slot, total_slots, winner.wallet_address, winner.prize_amount,
        )
        return winner

    async def get_winner(self, round_id: str) -> Optional[Winner]:
        return await self._draws.get_winner(round_id)

    async def list_winners(self, limit: int = 20, raffle_id: Optional[str] = None) -> List[Winner]:
        return await self._draws.list_winners(limit=limit, raffle_id=raffle_id)

    @staticmethod
    def verify_winner(winner: Winner) -> bool:
        """Recompute the slot from the revealed payload and check the commitment."""
        if not verify_reveal(winner.reveal, winner.commit_hash):
            return False
        return derive_slot(winner.reveal, winner.total_slots) == winner.winning_slot

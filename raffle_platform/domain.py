"""
domain.py - Core records shared by the storage layer and the services.

Raffles are immutable configuration. Rounds, entries and winners are durable
records owned by their repos; services pass these dataclasses around and
routers serialize them with ``to_dict``.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

AMOUNT_PRECISION = 8


class RoundStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    DRAWN = "drawn"


class EntryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class EntryType(str, Enum):
    RAFFLE_ENTRY = "raffle_entry"
    PRIZE_CLAIM = "prize_claim"
    REFUND = "refund"


def normalize_address(address: Optional[str]) -> str:
    """Strip whitespace and lower-case EVM style ``0x`` addresses."""
    if not address:
        return ""
    address = address.strip()
    if address[:2].lower() == "0x":
        return address.lower()
    return address


def round_amount(value: float) -> float:
    return round(float(value), AMOUNT_PRECISION)


def new_round_id() -> str:
    return f"round-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Raffle:
    id: str
    name: str
    ticket_price: float
    capacity: int
    prize_amount: float
    max_tickets_per_wallet: Optional[int] = None
    currency: str = "BNB"

    @property
    def is_free(self) -> bool:
        return self.ticket_price <= 0

    def cost(self, ticket_count: int) -> float:
        return round_amount(self.ticket_price * ticket_count)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["is_free"] = self.is_free
        return d


@dataclass
class Round:
    id: str
    raffle_id: str
    round_number: int
    start_time: float
    end_time: float
    status: str = RoundStatus.ACTIVE.value
    total_tickets_sold: int = 0
    total_prize_pool: float = 0.0
    winner_address: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return self.end_time <= now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def view(self, raffle: Raffle) -> Dict[str, Any]:
        """Public round summary shown next to a raffle card."""
        return {
            "id": self.id,
            "raffle_id": self.raffle_id,
            "round_number": self.round_number,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "tickets_sold": self.total_tickets_sold,
            "capacity": raffle.capacity,
            "prize_pool": self.total_prize_pool,
            "status": self.status,
            "winner_address": self.winner_address,
        }


@dataclass
class Entry:
    wallet_address: str
    raffle_id: str
    round_id: str
    ticket_count: int
    amount: float
    status: str
    tx_hash: str = ""
    entry_type: str = EntryType.RAFFLE_ENTRY.value
    created_at: float = 0.0
    updated_at: float = 0.0
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Winner:
    round_id: str
    raffle_id: str
    wallet_address: str
    prize_amount: float
    total_slots: int
    winning_slot: int
    commit_hash: str
    reveal: Dict[str, Any] = field(default_factory=dict)
    drawn_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "raffle_id": self.raffle_id,
            "winner": self.wallet_address,
            "prize_amount": self.prize_amount,
            "total_slots": self.total_slots,
            "winning_slot": self.winning_slot,
            "commit_hash": self.commit_hash,
            "reveal": dict(self.reveal),
            "drawn_at": self.drawn_at,
        }

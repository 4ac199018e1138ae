"""
config.py - Raffle catalog and platform tunables.

Tunables come from environment variables with product defaults; the
server's CLI flags override them. The catalog can be replaced by a JSON file
holding a list of raffle objects::

    [{"id": "1", "name": "0.0389 BNB", "ticket_price": 0.0023,
      "capacity": 80, "prize_amount": 0.0389}]
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional

from raffle_platform.domain import Raffle

logger = logging.getLogger("config")

# Round timing
ROUND_DURATION_SEC = int(os.getenv("RAFFLE_ROUND_DURATION_SEC", str(24 * 60 * 60)))
DRAW_GRACE_SEC = float(os.getenv("RAFFLE_DRAW_GRACE_SEC", "60"))
SCHEDULER_INTERVAL_SEC = float(os.getenv("RAFFLE_TICK_INTERVAL_SEC", "30"))

# Payouts: share of the pot kept by the house when a round sells under half
RAKE = float(os.getenv("RAFFLE_RAKE", "0.10"))

# Payments
PAYMENT_TIMEOUT_SEC = float(os.getenv("RAFFLE_PAYMENT_TIMEOUT_SEC", "120"))
PENDING_WINDOW_SEC = float(os.getenv("RAFFLE_PENDING_WINDOW_SEC", "900"))
TREASURY_ADDRESS = os.getenv(
    "RAFFLE_TREASURY_ADDRESS", "0xac121224D3F41fEc0f6444b1cEBB8feE81988664"
)
TREASURY_SEED_BALANCE = float(os.getenv("RAFFLE_TREASURY_SEED", "100.0"))

# Admin
ADMIN_KEY = os.getenv("RAFFLE_ADMIN_KEY", "admin-test-key-do-not-use-in-production")

CATALOG_FILE = os.getenv("RAFFLE_CATALOG_FILE", "")

DEFAULT_MAX_TICKETS_PER_WALLET = 100

DEFAULT_RAFFLES = (
    Raffle(id="1", name="0.0389 BNB", ticket_price=0.0023, capacity=80,
           prize_amount=0.0389, max_tickets_per_wallet=DEFAULT_MAX_TICKETS_PER_WALLET),
    Raffle(id="2", name="0.0777 BNB", ticket_price=0.0078, capacity=50,
           prize_amount=0.0777, max_tickets_per_wallet=DEFAULT_MAX_TICKETS_PER_WALLET),
    Raffle(id="3", name="0.23 BNB", ticket_price=0.0194, capacity=20,
           prize_amount=0.23, max_tickets_per_wallet=DEFAULT_MAX_TICKETS_PER_WALLET),
    Raffle(id="4", name="0.322 BNB", ticket_price=0.0, capacity=100,
           prize_amount=0.322, max_tickets_per_wallet=1),
)


def catalog(raffles: Iterable[Raffle]) -> Dict[str, Raffle]:
    result: Dict[str, Raffle] = {}
    for raffle in raffles:
        if raffle.id in result:
            raise ValueError(f"Duplicate raffle id in catalog: {raffle.id}")
        result[raffle.id] = raffle
    return result


def _raffle_from_dict(data: dict) -> Raffle:
    try:
        raffle = Raffle(
            id=str(data["id"]),
            name=str(data.get("name") or f"Raffle {data['id']}"),
            ticket_price=float(data.get("ticket_price", 0.0)),
            capacity=int(data["capacity"]),
            prize_amount=float(data["prize_amount"]),
            max_tickets_per_wallet=(
                int(data["max_tickets_per_wallet"])
                if data.get("max_tickets_per_wallet") is not None else None
            ),
            currency=str(data.get("currency", "BNB")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid raffle definition {data!r}: {exc}") from exc
    if raffle.capacity < 1:
        raise ValueError(f"Raffle {raffle.id} must have a positive capacity")
    if raffle.ticket_price < 0 or raffle.prize_amount < 0:
        raise ValueError(f"Raffle {raffle.id} has a negative price or prize")
    return raffle


def load_raffles(path: Optional[str] = None) -> Dict[str, Raffle]:
    """Load the raffle catalog from *path*, or the default catalog."""
    path = path or CATALOG_FILE
    if not path:
        return catalog(DEFAULT_RAFFLES)
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"Raffle catalog {path} must be a non-empty JSON list")
    raffles = catalog(_raffle_from_dict(item) for item in raw)
    logger.info("Loaded %d raffles from %s", len(raffles), path)
    return raffles

import json
import logging
import time
from typing import List, Optional

import aiosqlite

from raffle_platform.domain import Round, RoundStatus, Winner
from raffle_platform.errors import (
    AggregateRegression,
    DuplicateRound,
    InvalidTransition,
    RoundNotEnded,
    RoundNotFound,
)

from ._guard import guarded

logger = logging.getLogger("storage")

_COLUMNS = (
    "round_id, raffle_id, round_number, start_time, end_time, status, "
    "total_tickets_sold, total_prize_pool, winner_address, created_at, updated_at"
)


def _row_to_round(row) -> Round:
    return Round(
        id=row[0],
        raffle_id=row[1],
        round_number=row[2],
        start_time=row[3],
        end_time=row[4],
        status=row[5],
        total_tickets_sold=row[6],
        total_prize_pool=row[7],
        winner_address=row[8],
        created_at=row[9],
        updated_at=row[10],
    )


class RoundRepo:
    """Durable round records. Status only moves active -> ended -> drawn."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    @guarded
    async def get(self, round_id: str) -> Optional[Round]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM rounds WHERE round_id = ?", (round_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_round(row) if row else None

    @guarded
    async def get_active(self, raffle_id: str) -> Optional[Round]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM rounds WHERE raffle_id = ? AND status = 'active'",
            (raffle_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_round(row) if row else None

    @guarded
    async def max_round_number(self, raffle_id: str) -> int:
        async with self._db.execute(
            "SELECT MAX(round_number) FROM rounds WHERE raffle_id = ?", (raffle_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0

    @guarded
    async def insert(self, rnd: Round) -> Round:
        now = time.time()
        try:
            await self._db.execute(
                f"INSERT INTO rounds ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    rnd.id, rnd.raffle_id, rnd.round_number, rnd.start_time,
                    rnd.end_time, rnd.status, rnd.total_tickets_sold,
                    rnd.total_prize_pool, rnd.winner_address,
                    rnd.created_at or now, rnd.updated_at or now,
                ),
            )
        except aiosqlite.IntegrityError as exc:
            existing = await self.get(rnd.id)
            if existing is not None:
                logger.debug("Round %s already stored, returning existing record", rnd.id)
                return existing
            raise DuplicateRound(
                f"Round {rnd.round_number} of raffle {rnd.raffle_id} conflicts "
                f"with an existing round",
                raffle_id=rnd.raffle_id,
                round_number=rnd.round_number,
            ) from exc
        await self._db.commit()
        return await self.get(rnd.id)

    @guarded
    async def mark_ended(self, round_id: str):
        cursor = await self._db.execute(
            "UPDATE rounds SET status = 'ended', updated_at = ? "
            "WHERE round_id = ? AND status = 'active'",
            (time.time(), round_id),
        )
        await self._db.commit()
        if cursor.rowcount == 1:
            return
        current = await self.get(round_id)
        if current is not None and current.status == RoundStatus.ENDED:
            return
        raise InvalidTransition(
            f"Cannot end round {round_id} from status "
            f"{current.status if current else 'missing'}",
            round_id=round_id,
        )

    @guarded
    async def update_aggregates(self, round_id: str, tickets_sold: int, prize_pool: float):
        cursor = await self._db.execute(
            "UPDATE rounds SET total_tickets_sold = ?, total_prize_pool = ?, updated_at = ? "
            "WHERE round_id = ? AND total_tickets_sold <= ?",
            (tickets_sold, round(prize_pool, 8), time.time(), round_id, tickets_sold),
        )
        await self._db.commit()
        if cursor.rowcount == 1:
            return
        current = await self.get(round_id)
        if current is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
        raise AggregateRegression(
            f"Round {round_id} already sold {current.total_tickets_sold} tickets, "
            f"refusing to set {tickets_sold}",
            round_id=round_id,
        )

    @guarded
    async def increment_aggregates(
        self, round_id: str, tickets: int, amount: float, capacity: int,
    ) -> Round:
        """Atomically add a purchase to the round totals, clamped to capacity."""
        cursor = await self._db.execute(
            "UPDATE rounds SET "
            "total_tickets_sold = MIN(total_tickets_sold + ?, ?), "
            "total_prize_pool = ROUND(total_prize_pool + ?, 8), "
            "updated_at = ? "
            "WHERE round_id = ? AND status != 'drawn'",
            (tickets, capacity, amount, time.time(), round_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            current = await self.get(round_id)
            if current is None:
                raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
            raise InvalidTransition(
                f"Round {round_id} is already drawn, totals are frozen",
                round_id=round_id,
            )
        return await self.get(round_id)

    @guarded
    async def record_winner(self, round_id: str, winner: Winner):
        """Move an ended round to drawn and store its winner in one commit."""
        cursor = await self._db.execute(
            "UPDATE rounds SET status = 'drawn', winner_address = ?, updated_at = ? "
            "WHERE round_id = ? AND status = 'ended'",
            (winner.wallet_address, time.time(), round_id),
        )
        if cursor.rowcount == 0:
            current = await self.get(round_id)
            if current is None:
                raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
            raise RoundNotEnded(
                f"Round {round_id} is {current.status}, only ended rounds can be drawn",
                round_id=round_id,
                status=current.status,
            )
        try:
            await self._db.execute(
                "INSERT INTO winners (round_id, raffle_id, wallet_address, prize_amount, "
                "total_slots, winning_slot, commit_hash, reveal_json, drawn_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    round_id, winner.raffle_id, winner.wallet_address,
                    winner.prize_amount, winner.total_slots, winner.winning_slot,
                    winner.commit_hash, json.dumps(winner.reveal, sort_keys=True),
                    winner.drawn_at,
                ),
            )
        except aiosqlite.Error:
            await self._db.rollback()
            raise
        await self._db.commit()

    @guarded
    async def list_for_raffle(self, raffle_id: str, limit: Optional[int] = None) -> List[Round]:
        sql = f"SELECT {_COLUMNS} FROM rounds WHERE raffle_id = ? ORDER BY round_number DESC"
        params: tuple = (raffle_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_round(r) for r in rows]

    @guarded
    async def list_by_status(self, status: str) -> List[Round]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM rounds WHERE status = ? ORDER BY end_time ASC",
            (status,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_round(r) for r in rows]

    @guarded
    async def count_by_status(self) -> dict:
        async with self._db.execute(
            "SELECT status, COUNT(*) FROM rounds GROUP BY status"
        ) as cursor:
            rows = await cursor.fetchall()
        counts = {s.value: 0 for s in RoundStatus}
        for status, count in rows:
            counts[status] = count
        return counts

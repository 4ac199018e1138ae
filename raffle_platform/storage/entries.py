import time
from typing import List, Optional, Tuple

import aiosqlite

from raffle_platform.domain import Entry

from ._guard import guarded

_COLUMNS = (
    "id, wallet_address, raffle_id, round_id, entry_type, ticket_count, "
    "amount, tx_hash, status, created_at, updated_at"
)


def _row_to_entry(row) -> Entry:
    return Entry(
        id=row[0],
        wallet_address=row[1],
        raffle_id=row[2],
        round_id=row[3],
        entry_type=row[4],
        ticket_count=row[5],
        amount=row[6],
        tx_hash=row[7],
        status=row[8],
        created_at=row[9],
        updated_at=row[10],
    )


class EntryRepo:
    """Append-only entries table; only pending rows may change status."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    @guarded
    async def insert(self, entry: Entry) -> Entry:
        created_at = entry.created_at or time.time()
        cursor = await self._db.execute(
            "INSERT INTO entries (wallet_address, raffle_id, round_id, entry_type, "
            "ticket_count, amount, tx_hash, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.wallet_address, entry.raffle_id, entry.round_id,
                entry.entry_type, entry.ticket_count, entry.amount,
                entry.tx_hash, entry.status, created_at, created_at,
            ),
        )
        await self._db.commit()
        return await self.get(cursor.lastrowid)

    @guarded
    async def get(self, entry_id: int) -> Optional[Entry]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM entries WHERE id = ?", (entry_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_entry(row) if row else None

    @guarded
    async def settle(self, entry_id: int, status: str, tx_hash: Optional[str] = None) -> bool:
        cursor = await self._db.execute(
            "UPDATE entries SET status = ?, tx_hash = COALESCE(?, tx_hash), updated_at = ? "
            "WHERE id = ? AND status = 'pending'",
            (status, tx_hash, time.time(), entry_id),
        )
        await self._db.commit()
        return cursor.rowcount == 1

    @guarded
    async def attach_tx_hash(self, entry_id: int, tx_hash: str) -> bool:
        """Fill in the hash of a pending entry recorded before its submit returned."""
        cursor = await self._db.execute(
            "UPDATE entries SET tx_hash = ?, updated_at = ? "
            "WHERE id = ? AND status = 'pending' AND COALESCE(tx_hash, '') = ''",
            (tx_hash, time.time(), entry_id),
        )
        await self._db.commit()
        return cursor.rowcount == 1

    @guarded
    async def exists(
        self,
        wallet: str,
        round_id: str,
        entry_type: str = "raffle_entry",
        statuses: Tuple[str, ...] = ("confirmed",),
        raffle_id: Optional[str] = None,
    ) -> bool:
        placeholders = ", ".join("?" for _ in statuses)
        sql = (
            "SELECT 1 FROM entries WHERE wallet_address = ? AND round_id = ? "
            f"AND entry_type = ? AND status IN ({placeholders})"
        )
        params: tuple = (wallet, round_id, entry_type) + tuple(statuses)
        if raffle_id is not None:
            sql += " AND raffle_id = ?"
            params += (raffle_id,)
        async with self._db.execute(sql + " LIMIT 1", params) as cursor:
            row = await cursor.fetchone()
        return row is not None

    @guarded
    async def claim_exists(self, round_id: str) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM entries WHERE round_id = ? AND entry_type = 'prize_claim' "
            "AND status IN ('pending', 'confirmed') LIMIT 1",
            (round_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row is not None

    @guarded
    async def list_for_wallet(self, wallet: str, limit: Optional[int] = None) -> List[Entry]:
        sql = (
            f"SELECT {_COLUMNS} FROM entries WHERE wallet_address = ? "
            "ORDER BY created_at DESC, id DESC"
        )
        params: tuple = (wallet,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(r) for r in rows]

    @guarded
    async def list_confirmed_for_round(
        self, round_id: str, entry_type: str = "raffle_entry",
    ) -> List[Entry]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM entries WHERE round_id = ? AND entry_type = ? "
            "AND status = 'confirmed' ORDER BY created_at ASC, id ASC",
            (round_id, entry_type),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(r) for r in rows]

    @guarded
    async def list_by_status(self, status: str, limit: Optional[int] = None) -> List[Entry]:
        sql = f"SELECT {_COLUMNS} FROM entries WHERE status = ? ORDER BY created_at ASC, id ASC"
        params: tuple = (status,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(r) for r in rows]

    @guarded
    async def wallet_tickets(self, wallet: str, round_id: str) -> int:
        async with self._db.execute(
            "SELECT COALESCE(SUM(ticket_count), 0) FROM entries "
            "WHERE wallet_address = ? AND round_id = ? AND entry_type = 'raffle_entry' "
            "AND status IN ('pending', 'confirmed')",
            (wallet, round_id),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0]

    @guarded
    async def committed_tickets(self, round_id: str) -> int:
        async with self._db.execute(
            "SELECT COALESCE(SUM(ticket_count), 0) FROM entries "
            "WHERE round_id = ? AND entry_type = 'raffle_entry' "
            "AND status IN ('pending', 'confirmed')",
            (round_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0]

    @guarded
    async def list_pending_for_round(self, round_id: str) -> List[Entry]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM entries WHERE round_id = ? "
            "AND entry_type = 'raffle_entry' AND status = 'pending' "
            "ORDER BY created_at ASC, id ASC",
            (round_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(r) for r in rows]

    @guarded
    async def round_totals(self, round_id: str) -> Tuple[int, float]:
        async with self._db.execute(
            "SELECT COALESCE(SUM(ticket_count), 0), COALESCE(SUM(amount), 0.0) FROM entries "
            "WHERE round_id = ? AND entry_type = 'raffle_entry' AND status = 'confirmed'",
            (round_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0], round(row[1], 8)

    @guarded
    async def wallet_summary(self, wallet: str) -> dict:
        async with self._db.execute(
            "SELECT "
            "COALESCE(SUM(CASE WHEN entry_type = 'raffle_entry' THEN ticket_count END), 0), "
            "COALESCE(SUM(CASE WHEN entry_type = 'raffle_entry' THEN amount END), 0.0), "
            "COUNT(DISTINCT CASE WHEN entry_type = 'raffle_entry' THEN raffle_id END), "
            "COUNT(CASE WHEN entry_type = 'prize_claim' THEN 1 END), "
            "COALESCE(SUM(CASE WHEN entry_type = 'prize_claim' THEN amount END), 0.0) "
            "FROM entries WHERE wallet_address = ? AND status = 'confirmed'",
            (wallet,),
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "tickets_purchased": row[0],
            "total_spent": round(row[1], 8),
            "raffles_entered": row[2],
            "raffles_won": row[3],
            "total_winnings": round(row[4], 8),
        }

    @guarded
    async def leaderboard(self, since: Optional[float] = None, limit: int = 10) -> List[dict]:
        sql = (
            "SELECT wallet_address, "
            "COALESCE(SUM(CASE WHEN entry_type = 'prize_claim' THEN amount END), 0.0) AS winnings, "
            "COUNT(CASE WHEN entry_type = 'prize_claim' THEN 1 END) AS wins, "
            "COALESCE(SUM(CASE WHEN entry_type = 'raffle_entry' THEN ticket_count END), 0) AS tickets, "
            "COALESCE(SUM(CASE WHEN entry_type = 'raffle_entry' THEN amount END), 0.0) AS spent "
            "FROM entries WHERE status = 'confirmed'"
        )
        params: tuple = ()
        if since is not None:
            sql += " AND created_at >= ?"
            params += (since,)
        sql += " GROUP BY wallet_address ORDER BY winnings DESC, tickets DESC, wallet_address ASC LIMIT ?"
        params += (limit,)
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [
            {
                "wallet": r[0],
                "total_winnings": round(r[1], 8),
                "raffles_won": r[2],
                "tickets_purchased": r[3],
                "total_spent": round(r[4], 8),
            }
            for r in rows
        ]

import json
import time
from typing import List, Optional

import aiosqlite

from raffle_platform.domain import Winner

from ._guard import guarded

_WINNER_COLUMNS = (
    "round_id, raffle_id, wallet_address, prize_amount, total_slots, "
    "winning_slot, commit_hash, reveal_json, drawn_at"
)


def _row_to_winner(row) -> Winner:
    return Winner(
        round_id=row[0],
        raffle_id=row[1],
        wallet_address=row[2],
        prize_amount=row[3],
        total_slots=row[4],
        winning_slot=row[5],
        commit_hash=row[6],
        reveal=json.loads(row[7]),
        drawn_at=row[8],
    )


class DrawRepo:
    """Commitments per round and the winners written when rounds are drawn."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    @guarded
    async def save_commitment(self, round_id: str, commit_hash: str, payload: dict) -> dict:
        """Store a commitment; the first one written for a round wins."""
        await self._db.execute(
            "INSERT OR IGNORE INTO commitments (round_id, commit_hash, nonce, secret, "
            "payload_timestamp, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                round_id, commit_hash, payload["nonce"], payload["secret"],
                int(payload["timestamp"]), time.time(),
            ),
        )
        await self._db.commit()
        return await self.get_commitment(round_id)

    @guarded
    async def get_commitment(self, round_id: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT round_id, commit_hash, nonce, secret, payload_timestamp, "
            "created_at, revealed_at FROM commitments WHERE round_id = ?",
            (round_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "round_id": row[0],
            "commit_hash": row[1],
            "payload": {"nonce": row[2], "secret": row[3], "timestamp": row[4]},
            "created_at": row[5],
            "revealed_at": row[6],
        }

    @guarded
    async def mark_revealed(self, round_id: str, revealed_at: Optional[float] = None):
        await self._db.execute(
            "UPDATE commitments SET revealed_at = ? WHERE round_id = ? AND revealed_at IS NULL",
            (revealed_at or time.time(), round_id),
        )
        await self._db.commit()

    @guarded
    async def get_winner(self, round_id: str) -> Optional[Winner]:
        async with self._db.execute(
            f"SELECT {_WINNER_COLUMNS} FROM winners WHERE round_id = ?", (round_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_winner(row) if row else None

    @guarded
    async def list_winners(self, limit: int = 20, raffle_id: Optional[str] = None) -> List[Winner]:
        sql = f"SELECT {_WINNER_COLUMNS} FROM winners"
        params: tuple = ()
        if raffle_id is not None:
            sql += " WHERE raffle_id = ?"
            params += (raffle_id,)
        sql += " ORDER BY drawn_at DESC, id DESC LIMIT ?"
        params += (limit,)
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_winner(r) for r in rows]

    @guarded
    async def count_winners(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM winners") as cursor:
            row = await cursor.fetchone()
        return row[0]

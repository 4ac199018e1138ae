"""Users router: per-wallet stats and entry history, leaderboard."""

from typing import Optional

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from raffle_platform.deps import get_server

router = APIRouter()


@router.get("/api/users/{wallet}/stats")
async def user_stats(wallet: str, request: Request):
    srv = get_server(request)
    return await srv.ledger.aggregate_stats(wallet)


@router.get("/api/users/{wallet}/entries")
async def user_entries(wallet: str, request: Request, limit: Optional[int] = 50):
    srv = get_server(request)
    entries = await srv.ledger.list_entries(wallet, limit=limit)
    return [e.to_dict() for e in entries]


@router.get("/api/leaderboard")
async def leaderboard(request: Request, period: str = "all", limit: int = 10):
    srv = get_server(request)
    try:
        return await srv.ledger.leaderboard(
            period=period, limit=max(1, min(limit, 100)), now=srv.clock.now(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

"""Rounds router: round detail, commitments, winners and prize claims."""

from typing import Optional

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from raffle_platform.deps import get_server, http_error
from raffle_platform.errors import RaffleError
from raffle_platform.models import ClaimRequest

router = APIRouter()


def _winner_view(srv, winner) -> dict:
    view = winner.to_dict()
    view["verified"] = srv.draws.verify_winner(winner)
    return view


@router.get("/api/rounds/{round_id}")
async def get_round(round_id: str, request: Request):
    srv = get_server(request)
    rnd = await srv.storage.rounds.get(round_id)
    if rnd is None:
        raise HTTPException(status_code=404, detail="Round not found")
    raffle = srv.raffles.get(rnd.raffle_id)
    return rnd.view(raffle) if raffle else rnd.to_dict()


@router.get("/api/rounds/{round_id}/commitment")
async def get_commitment(round_id: str, request: Request):
    srv = get_server(request)
    view = await srv.draws.get_commitment_view(round_id)
    if view is None:
        raise HTTPException(status_code=404, detail="No commitment for this round")
    return view


@router.get("/api/rounds/{round_id}/winner")
async def get_winner(round_id: str, request: Request):
    srv = get_server(request)
    winner = await srv.draws.get_winner(round_id)
    if winner is None:
        raise HTTPException(status_code=404, detail="Round has not been drawn")
    return _winner_view(srv, winner)


@router.post("/api/rounds/{round_id}/claim")
async def claim_prize(round_id: str, req: ClaimRequest, request: Request):
    srv = get_server(request)
    try:
        entry = await srv.orchestrator.claim_prize(req.wallet, round_id)
    except RaffleError as exc:
        raise http_error(exc)
    return {"success": True, "entry": entry.to_dict()}


@router.get("/api/winners")
async def recent_winners(request: Request, limit: int = 20, raffle_id: Optional[str] = None):
    srv = get_server(request)
    winners = await srv.draws.list_winners(limit=max(1, min(limit, 100)), raffle_id=raffle_id)
    return [_winner_view(srv, w) for w in winners]

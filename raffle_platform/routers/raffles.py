"""Raffles router: catalog, current rounds, round history and ticket purchases."""

from fastapi import APIRouter, HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from raffle_platform.deps import get_server, http_error
from raffle_platform.errors import RaffleError, http_status_for
from raffle_platform.models import EnterRequest

router = APIRouter()


def _raffle_or_404(srv, raffle_id: str):
    try:
        return srv.orchestrator.get_raffle(raffle_id)
    except RaffleError as exc:
        raise http_error(exc)


@router.get("/api/raffles")
async def list_raffles(request: Request):
    srv = get_server(request)
    return [r.to_dict() for r in srv.raffles.values()]


@router.get("/api/raffles/{raffle_id}")
async def get_raffle(raffle_id: str, request: Request):
    srv = get_server(request)
    raffle = _raffle_or_404(srv, raffle_id)
    result = raffle.to_dict()
    rnd = await srv.storage.rounds.get_active(raffle.id)
    result["current_round"] = rnd.view(raffle) if rnd else None
    return result


@router.get("/api/raffles/{raffle_id}/round")
async def current_round(raffle_id: str, request: Request):
    srv = get_server(request)
    raffle = _raffle_or_404(srv, raffle_id)
    try:
        rnd = await srv.lifecycle.ensure_current_round(raffle.id)
    except RaffleError as exc:
        raise http_error(exc)
    view = rnd.view(raffle)
    commitment = await srv.draws.get_commitment_view(rnd.id)
    view["commit_hash"] = commitment["commit_hash"] if commitment else None
    return view


@router.get("/api/raffles/{raffle_id}/rounds")
async def round_history(raffle_id: str, request: Request, limit: int = 10):
    srv = get_server(request)
    raffle = _raffle_or_404(srv, raffle_id)
    rounds = await srv.storage.rounds.list_for_raffle(raffle.id, limit=max(1, min(limit, 100)))
    return [r.view(raffle) for r in rounds]


@router.post("/api/raffles/{raffle_id}/enter")
async def enter_raffle(raffle_id: str, req: EnterRequest, request: Request):
    srv = get_server(request)
    result = await srv.orchestrator.try_enter(
        req.wallet, raffle_id, req.ticket_count, timeout=req.timeout_sec,
    )
    if not result["success"]:
        return JSONResponse(status_code=http_status_for(result["error"]), content=result)
    return result


@router.get("/api/raffles/{raffle_id}/entered")
async def has_entered(raffle_id: str, wallet: str, request: Request, round_id: str = ""):
    srv = get_server(request)
    raffle = _raffle_or_404(srv, raffle_id)
    if not round_id:
        rnd = await srv.storage.rounds.get_active(raffle.id)
        if rnd is None:
            raise HTTPException(status_code=404, detail="No active round")
        round_id = rnd.id
    entered = await srv.ledger.has_entered(wallet, raffle.id, round_id)
    return {"wallet": wallet, "raffle_id": raffle.id, "round_id": round_id, "entered": entered}

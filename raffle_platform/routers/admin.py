"""Admin router: manual draws and reconciliation (X-API-Key required)."""

from fastapi import APIRouter, Header
from starlette.requests import Request

from raffle_platform.deps import get_server, http_error
from raffle_platform.errors import RaffleError

router = APIRouter()


@router.post("/api/admin/rounds/{round_id}/draw")
async def draw_round(round_id: str, request: Request, x_api_key: str = Header(default="")):
    srv = get_server(request)
    srv.auth.require_admin(x_api_key)
    try:
        winner = await srv.draws.draw_winner(round_id)
    except RaffleError as exc:
        raise http_error(exc)
    srv.scheduler.parked.pop(round_id, None)
    view = winner.to_dict()
    view["verified"] = srv.draws.verify_winner(winner)
    return view


@router.post("/api/admin/reconcile")
async def reconcile(request: Request, x_api_key: str = Header(default="")):
    srv = get_server(request)
    srv.auth.require_admin(x_api_key)
    try:
        return await srv.reconciler.run_once()
    except RaffleError as exc:
        raise http_error(exc)

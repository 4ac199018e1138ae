"""Overview router: / and /api/status."""

from fastapi import APIRouter
from starlette.requests import Request

from raffle_platform import __version__
from raffle_platform.deps import get_server

router = APIRouter()


@router.get("/")
async def root(request: Request):
    srv = get_server(request)
    return {
        "service": "Raffle Platform",
        "version": __version__,
        "api_port": srv.api_port,
        "payment_backend": srv.gateway.name,
        "raffles": len(srv.raffles),
        "uptime": "running",
    }


@router.get("/api/status")
async def server_status(request: Request):
    srv = get_server(request)
    return {
        "rounds": await srv.storage.rounds.count_by_status(),
        "pending_entries": len(await srv.ledger.list_pending()),
        "winners": await srv.storage.draws.count_winners(),
        "parked_rounds": dict(srv.scheduler.parked),
        "auto_draw": srv.scheduler.auto_draw,
    }

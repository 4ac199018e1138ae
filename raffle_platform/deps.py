"""Dependency helpers for router modules."""

from fastapi import HTTPException
from starlette.requests import Request

from raffle_platform.errors import RaffleError


def get_server(request: Request):
    return request.app.state.server


def http_error(exc: RaffleError) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=exc.to_dict())

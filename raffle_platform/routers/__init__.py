"""Router package: collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from raffle_platform.routers import (
    overview,
    raffles,
    rounds,
    users,
    admin,
)


def register_all_routers(app: FastAPI):
    app.include_router(overview.router)
    app.include_router(raffles.router)
    app.include_router(rounds.router)
    app.include_router(users.router)
    app.include_router(admin.router)

"""
Shared fixtures for raffle platform integration tests.

Provides:
 - A fully wired RafflePlatformServer on in-memory SQLite with a ManualClock
   and the embedded chain simulator (scheduler loop not started)
 - A TestClient over the server's FastAPI app
 - Funded player wallets and the admin header
"""

import pytest
import pytest_asyncio

from raffle_platform.clock import ManualClock
from raffle_platform.server import RafflePlatformServer


# ── Constants ───────────────────────────────────────────────────────────────

T0 = 1_700_000_000.0
DAY = 24 * 60 * 60
ADMIN_KEY = "integration-admin-key"
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest_asyncio.fixture
async def server(clock):
    srv = RafflePlatformServer(db_path=":memory:", admin_key=ADMIN_KEY, clock=clock)
    await srv.init_services()
    for wallet in (ALICE, BOB, CAROL):
        srv.chain.faucet(wallet, 10.0)
    yield srv
    await srv.stop()


@pytest.fixture
def client(server):
    from fastapi.testclient import TestClient
    return TestClient(server.app)


@pytest.fixture
def admin_headers():
    return {"X-API-Key": ADMIN_KEY}

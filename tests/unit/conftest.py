"""
Shared fixtures for raffle platform unit tests.

Every service runs against an in-memory StorageManager, a ManualClock pinned
to T0 and an embedded ChainSimulator, so tests are deterministic and offline.
"""

import pytest
import pytest_asyncio

from raffle_platform.chain_simulator import ChainSimulator
from raffle_platform.clock import ManualClock
from raffle_platform.config import DEFAULT_RAFFLES, catalog
from raffle_platform.domain import Entry, Round, new_round_id
from raffle_platform.fairdraw import FairDrawEngine
from raffle_platform.ledger import EntryLedger
from raffle_platform.lifecycle import RoundLifecycleManager
from raffle_platform.orchestrator import RaffleEntryOrchestrator
from raffle_platform.payments import SimulatedChainGateway
from raffle_platform.reconciler import Reconciler
from raffle_platform.storage import StorageManager


# ── Constants ───────────────────────────────────────────────────────────────

T0 = 1_700_000_000.0
DAY = 24 * 60 * 60
TREASURY = "0x" + "7e" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


# ── Core fixtures ───────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def raffles():
    return catalog(DEFAULT_RAFFLES)


@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest.fixture
def ledger(storage):
    return EntryLedger(storage.entries)


@pytest.fixture
def lifecycle(storage, clock):
    return RoundLifecycleManager(storage.rounds, clock=clock, duration_sec=DAY,
                                 retry_backoff_sec=0)


@pytest.fixture
def draw_engine(raffles, storage, ledger, clock):
    return FairDrawEngine(raffles, storage.rounds, storage.draws, ledger,
                          clock=clock, rake=0.10)


@pytest.fixture
def chain():
    sim = ChainSimulator()
    for wallet in (ALICE, BOB, CAROL):
        sim.faucet(wallet, 10.0)
    sim.faucet(TREASURY, 5.0)
    return sim


@pytest.fixture
def gateway(chain):
    return SimulatedChainGateway(chain)


@pytest.fixture
def orchestrator(raffles, lifecycle, storage, ledger, gateway, draw_engine, clock):
    lifecycle.on_round_created(draw_engine.commit)
    return RaffleEntryOrchestrator(
        raffles, lifecycle, storage.rounds, ledger, gateway,
        draw_engine=draw_engine, clock=clock, treasury_address=TREASURY,
        payment_timeout=2.0, poll_interval=0.01,
    )


@pytest.fixture
def reconciler(raffles, storage, ledger, gateway, clock):
    return Reconciler(raffles, storage.rounds, ledger, gateway, clock=clock,
                      pending_window=900, treasury_address=TREASURY)


# ── Factories ───────────────────────────────────────────────────────────────

@pytest.fixture
def make_round(storage):
    async def _make(raffle_id="1", round_number=1, status="active", start=T0,
                    duration=DAY, tickets=0, pool=0.0):
        rnd = Round(
            id=new_round_id(), raffle_id=raffle_id, round_number=round_number,
            start_time=start, end_time=start + duration, status=status,
            total_tickets_sold=tickets, total_prize_pool=pool,
            created_at=start, updated_at=start,
        )
        return await storage.rounds.insert(rnd)
    return _make


@pytest.fixture
def add_entry(ledger):
    async def _add(rnd, wallet, tickets=1, amount=None, status="confirmed",
                   created_at=T0, tx_hash="", entry_type="raffle_entry"):
        if amount is None:
            amount = round(0.0023 * tickets, 8)
        return await ledger.record_entry(Entry(
            wallet_address=wallet, raffle_id=rnd.raffle_id, round_id=rnd.id,
            ticket_count=tickets, amount=amount, status=status, tx_hash=tx_hash,
            entry_type=entry_type, created_at=created_at,
        ))
    return _add

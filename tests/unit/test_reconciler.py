"""
test_reconciler.py - Round total repair and pending entry settlement.

Tests:
 - lagging round totals are raised to the confirmed ledger totals
 - totals never go down; drawn rounds are left alone
 - pending entries settle from the chain (confirmed / failed / expired)
 - a late duplicate free entry is failed instead of confirmed
 - a purchase confirming after its round was drawn is failed and refunded
"""

import pytest

from raffle_platform.chain_simulator import ChainSimulator
from raffle_platform.payments import SimulatedChainGateway
from raffle_platform.reconciler import Reconciler

pytestmark = pytest.mark.asyncio

T0 = 1_700_000_000.0
TREASURY = "0x" + "7e" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


class TestReconcileRound:

    async def test_raises_lagging_totals(self, reconciler, make_round, add_entry, storage):
        rnd = await make_round()
        await add_entry(rnd, ALICE, tickets=5)
        await add_entry(rnd, BOB, tickets=2)
        await add_entry(rnd, BOB, tickets=9, status="failed")

        result = await reconciler.reconcile_round(rnd.id)
        assert result["corrected"] is True
        assert result["tickets_sold"] == 7
        stored = await storage.rounds.get(rnd.id)
        assert stored.total_tickets_sold == 7
        assert stored.total_prize_pool == pytest.approx(0.0161)

    async def test_matching_totals_untouched(self, reconciler, make_round, add_entry):
        rnd = await make_round(tickets=5, pool=0.0115)
        await add_entry(rnd, ALICE, tickets=5)
        result = await reconciler.reconcile_round(rnd.id)
        assert result["corrected"] is False

    async def test_never_lowers_totals(self, reconciler, make_round, add_entry, storage):
        rnd = await make_round(tickets=10, pool=0.023)
        await add_entry(rnd, ALICE, tickets=5)
        result = await reconciler.reconcile_round(rnd.id)
        assert result["corrected"] is False
        assert result["ledger_tickets"] == 5
        assert result["tickets_sold"] == 10
        assert (await storage.rounds.get(rnd.id)).total_tickets_sold == 10

    async def test_clamps_to_capacity(self, reconciler, make_round, add_entry, storage):
        rnd = await make_round(raffle_id="3")
        await add_entry(rnd, ALICE, tickets=15, amount=0.291)
        await add_entry(rnd, BOB, tickets=10, amount=0.194)
        await reconciler.reconcile_round(rnd.id)
        assert (await storage.rounds.get(rnd.id)).total_tickets_sold == 20

    async def test_drawn_rounds_skipped(self, reconciler, make_round, add_entry, storage):
        rnd = await make_round(status="drawn")
        await add_entry(rnd, ALICE, tickets=5)
        result = await reconciler.reconcile_round(rnd.id)
        assert result["corrected"] is False
        assert (await storage.rounds.get(rnd.id)).total_tickets_sold == 0

    async def test_open_rounds(self, reconciler, make_round, add_entry):
        active = await make_round(raffle_id="1")
        ended = await make_round(raffle_id="2", status="ended")
        await add_entry(active, ALICE, tickets=1)
        await add_entry(ended, ALICE, tickets=1, amount=0.0078)
        results = await reconciler.reconcile_open_rounds()
        assert {r["round_id"] for r in results} == {active.id, ended.id}
        assert all(r["corrected"] for r in results)


class TestSettlePending:

    async def test_confirms_mined_payment(self, reconciler, chain, make_round, add_entry,
                                          ledger, storage):
        rnd = await make_round()
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.0069)
        entry = await add_entry(rnd, ALICE, tickets=3, status="pending", tx_hash=tx_hash)

        summary = await reconciler.settle_pending(now=T0 + 10)
        assert summary == {"confirmed": 1, "failed": 0, "pending": 0}
        assert [e.id for e in await ledger.confirmed_for_round(rnd.id)] == [entry.id]
        assert (await storage.rounds.get(rnd.id)).total_tickets_sold == 3

    async def test_fails_reverted_payment(self, raffles, storage, ledger, clock,
                                          make_round, add_entry):
        chain = ChainSimulator(auto_mine=False)
        chain.faucet(ALICE, 1.0)
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.0023)
        chain.revert_transaction(tx_hash)
        reconciler = Reconciler(raffles, storage.rounds, ledger, SimulatedChainGateway(chain),
                                clock=clock)
        rnd = await make_round()
        await add_entry(rnd, ALICE, status="pending", tx_hash=tx_hash)

        summary = await reconciler.settle_pending(now=T0)
        assert summary["failed"] == 1
        assert [e.status for e in await ledger.list_entries(ALICE)] == ["failed"]

    async def test_recent_unknown_payment_stays_pending(self, reconciler, make_round, add_entry):
        rnd = await make_round()
        await add_entry(rnd, ALICE, status="pending", tx_hash="0x" + "00" * 32)
        summary = await reconciler.settle_pending(now=T0 + 60)
        assert summary == {"confirmed": 0, "failed": 0, "pending": 1}

    async def test_expired_pending_entry_fails(self, reconciler, make_round, add_entry, ledger):
        rnd = await make_round()
        await add_entry(rnd, ALICE, status="pending", tx_hash="0x" + "00" * 32)
        await add_entry(rnd, BOB, status="pending")
        summary = await reconciler.settle_pending(now=T0 + 900)
        assert summary["failed"] == 2
        assert await ledger.list_pending() == []

    async def test_duplicate_free_entry_is_failed(self, reconciler, chain, make_round,
                                                  add_entry, ledger, storage):
        rnd = await make_round(raffle_id="4", tickets=1)
        await add_entry(rnd, ALICE, amount=0.0)
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.0)
        late = await add_entry(rnd, ALICE, amount=0.0, status="pending", tx_hash=tx_hash)

        summary = await reconciler.settle_pending(now=T0)
        assert summary["failed"] == 1
        statuses = {e.id: e.status for e in await ledger.list_entries(ALICE)}
        assert statuses[late.id] == "failed"
        assert (await storage.rounds.get(rnd.id)).total_tickets_sold == 1

    async def test_run_once(self, reconciler, chain, make_round, add_entry):
        rnd = await make_round()
        await add_entry(rnd, ALICE, tickets=2)
        tx_hash = chain.send_transaction(BOB, TREASURY, 0.0023)
        await add_entry(rnd, BOB, status="pending", tx_hash=tx_hash)

        result = await reconciler.run_once(now=T0)
        assert result["settled"]["confirmed"] == 1
        assert result["rounds_checked"] == 1
        # the settled entry bumps the totals to 1; the repair lifts them to 3
        assert result["rounds_corrected"] == 1

    async def test_entry_confirmed_after_draw_is_refunded(self, reconciler, chain, make_round,
                                                          add_entry, ledger, storage):
        rnd = await make_round(status="drawn")
        tx_hash = chain.send_transaction(BOB, TREASURY, 0.0161)
        await add_entry(rnd, BOB, tickets=7, status="pending", tx_hash=tx_hash)

        summary = await reconciler.settle_pending(now=T0 + 10)
        assert summary == {"confirmed": 0, "failed": 1, "pending": 0}
        assert await ledger.confirmed_for_round(rnd.id) == []
        by_type = {e.entry_type: e for e in await ledger.list_entries(BOB)}
        assert by_type["raffle_entry"].status == "failed"
        assert by_type["refund"].status == "pending"
        assert by_type["refund"].amount == pytest.approx(0.0161)
        assert chain.get_balance(BOB) == pytest.approx(10.0)

        summary = await reconciler.settle_pending(now=T0 + 20)
        assert summary == {"confirmed": 1, "failed": 0, "pending": 0}
        assert (await ledger.aggregate_stats(BOB))["tickets_purchased"] == 0
        assert (await storage.rounds.get(rnd.id)).total_tickets_sold == 0

    async def test_free_entry_after_draw_is_failed(self, reconciler, chain, make_round,
                                                   add_entry, ledger):
        rnd = await make_round(raffle_id="4", status="drawn")
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.0)
        await add_entry(rnd, ALICE, amount=0.0, status="pending", tx_hash=tx_hash)

        summary = await reconciler.settle_pending(now=T0)
        assert summary["failed"] == 1
        assert [e.entry_type for e in await ledger.list_entries(ALICE)] == ["raffle_entry"]

"""
test_chain_simulator.py - Chain simulator balances, mining and JSON-RPC.
"""

import pytest

from raffle_platform.chain_simulator import ChainSimulator
from raffle_platform.errors import InsufficientFunds, UserRejected
from raffle_platform.payments import to_wei

ALICE = "0x" + "a1" * 20
TREASURY = "0x" + "7e" * 20


@pytest.fixture
def sim():
    chain = ChainSimulator()
    chain.faucet(ALICE, 1.0)
    return chain


class TestTransfers:

    def test_transfer_moves_funds(self, sim):
        tx_hash = sim.send_transaction(ALICE, TREASURY, 0.25)
        assert tx_hash.startswith("0x") and len(tx_hash) == 66
        assert sim.get_balance(ALICE) == pytest.approx(0.75)
        assert sim.get_balance(TREASURY) == pytest.approx(0.25)
        assert sim.get_transaction_status(tx_hash) == "confirmed"
        assert sim.block_number == 1

    def test_addresses_are_case_insensitive(self, sim):
        assert sim.get_balance(ALICE.upper().replace("0X", "0x")) == 1.0

    def test_insufficient_funds(self, sim):
        with pytest.raises(InsufficientFunds):
            sim.send_transaction(ALICE, TREASURY, 2.0)
        assert sim.get_balance(ALICE) == 1.0

    def test_rejecting_wallet(self, sim):
        sim.reject_from(ALICE)
        with pytest.raises(UserRejected):
            sim.send_transaction(ALICE, TREASURY, 0.1)
        sim.reject_from(ALICE, rejecting=False)
        sim.send_transaction(ALICE, TREASURY, 0.1)

    def test_manual_mining(self):
        chain = ChainSimulator(auto_mine=False)
        chain.faucet(ALICE, 1.0)
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.5)
        assert chain.get_transaction_status(tx_hash) == "pending"
        assert chain.get_balance(TREASURY) == 0.0
        assert chain.mine() == 1
        assert chain.get_transaction_status(tx_hash) == "confirmed"
        assert chain.get_balance(TREASURY) == pytest.approx(0.5)
        assert chain.mine() == 0

    def test_revert_refunds_sender(self):
        chain = ChainSimulator(auto_mine=False)
        chain.faucet(ALICE, 1.0)
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.5)
        assert chain.revert_transaction(tx_hash)
        assert chain.get_transaction_status(tx_hash) == "failed"
        assert chain.get_balance(ALICE) == pytest.approx(1.0)
        assert not chain.revert_transaction(tx_hash)

    def test_unknown_hash_reads_pending(self, sim):
        assert sim.get_transaction_status("0xdead") == "pending"

    def test_faucet_rejects_non_positive(self, sim):
        with pytest.raises(ValueError):
            sim.faucet(ALICE, 0)

    def test_stats(self, sim):
        sim.send_transaction(ALICE, TREASURY, 0.1)
        stats = sim.get_stats()
        assert stats["transactions"] == 1
        assert stats["by_status"]["confirmed"] == 1
        assert stats["accounts"] == 2


class TestJsonRpc:

    def _rpc(self, sim, method, params):
        return sim.handle_rpc({"jsonrpc": "2.0", "id": 7, "method": method, "params": params})

    def test_send_and_receipt(self, sim):
        reply = self._rpc(sim, "eth_sendTransaction",
                          [{"from": ALICE, "to": TREASURY, "value": hex(to_wei(0.0023))}])
        assert reply["id"] == 7
        tx_hash = reply["result"]
        receipt = self._rpc(sim, "eth_getTransactionReceipt", [tx_hash])["result"]
        assert receipt["status"] == "0x1"
        assert receipt["transactionHash"] == tx_hash
        assert sim.get_balance(TREASURY) == pytest.approx(0.0023)

    def test_pending_receipt_is_null(self):
        chain = ChainSimulator(auto_mine=False)
        chain.faucet(ALICE, 1.0)
        tx_hash = chain.send_transaction(ALICE, TREASURY, 0.1)
        reply = chain.handle_rpc({"id": 1, "method": "eth_getTransactionReceipt", "params": [tx_hash]})
        assert reply["result"] is None

    def test_rejection_code(self, sim):
        sim.reject_from(ALICE)
        reply = self._rpc(sim, "eth_sendTransaction",
                          [{"from": ALICE, "to": TREASURY, "value": "0x1"}])
        assert reply["error"]["code"] == 4001

    def test_insufficient_funds_message(self, sim):
        reply = self._rpc(sim, "eth_sendTransaction",
                          [{"from": ALICE, "to": TREASURY, "value": hex(to_wei(5))}])
        assert reply["error"]["code"] == -32000
        assert "insufficient funds" in reply["error"]["message"]

    def test_balance_and_chain_info(self, sim):
        assert self._rpc(sim, "eth_getBalance", [ALICE])["result"] == hex(10 ** 18)
        assert self._rpc(sim, "eth_chainId", [])["result"] == hex(56)
        assert self._rpc(sim, "eth_blockNumber", [])["result"] == "0x0"

    def test_unknown_method(self, sim):
        assert self._rpc(sim, "eth_mining", [])["error"]["code"] == -32601

    def test_malformed_params(self, sim):
        assert self._rpc(sim, "eth_sendTransaction", [])["error"]["code"] == -32000

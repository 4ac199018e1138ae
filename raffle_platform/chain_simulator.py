"""
chain_simulator.py - BNB-style chain simulator.

Simulates the slice of an EVM chain the raffle platform touches, for fully
offline testing:
 - GET  /chain/balance/{address}  -> native balance for an address
 - POST /chain/faucet             -> credit an address
 - GET  /chain/tx/{tx_hash}       -> transaction record and status
 - POST /chain/mine               -> include pending transactions in a block
 - GET  /chain/stats              -> chain summary
 - POST /rpc                      -> JSON-RPC subset (eth_sendTransaction,
                                     eth_getTransactionReceipt, eth_getBalance,
                                     eth_blockNumber, eth_chainId)

Transfers debit the sender when submitted. With ``auto_mine`` (the default)
they are included in a block immediately; otherwise they stay pending until
``mine()`` runs. ``reject_from`` makes a wallet refuse to sign, the way a
user dismissing the wallet prompt would.

Usage (standalone):
    python -m raffle_platform.chain_simulator --port 8545

Usage (integrated into the raffle server):
    from raffle_platform.chain_simulator import ChainSimulator
    chain = ChainSimulator()
    chain.register_routes(fastapi_app)
"""

import argparse
import hashlib
import itertools
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from raffle_platform.domain import normalize_address, round_amount
from raffle_platform.errors import InsufficientFunds, PaymentError, UserRejected
from raffle_platform.payments import PaymentStatus, from_wei, to_wei

logger = logging.getLogger("chain")

BSC_CHAIN_ID = 56
RPC_USER_REJECTED = 4001
RPC_SERVER_ERROR = -32000
RPC_METHOD_NOT_FOUND = -32601


@dataclass
class ChainTransaction:
    tx_hash: str
    from_address: str
    to_address: str
    value: float
    status: str
    submitted_at: float
    block_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "status": self.status,
            "submitted_at": self.submitted_at,
            "block_number": self.block_number,
        }

    def receipt(self) -> Optional[dict]:
        if self.status == PaymentStatus.PENDING:
            return None
        return {
            "transactionHash": self.tx_hash,
            "from": self.from_address,
            "to": self.to_address,
            "blockNumber": hex(self.block_number or 0),
            "status": "0x1" if self.status == PaymentStatus.CONFIRMED else "0x0",
        }


# ---------------------------------------------------------------------------
# Chain Simulator
# ---------------------------------------------------------------------------


class ChainSimulator:
    """In-memory native-coin ledger with transactions and receipts."""

    def __init__(self, chain_id: int = BSC_CHAIN_ID, auto_mine: bool = True):
        self.chain_id = chain_id
        self.auto_mine = auto_mine
        self._balances: Dict[str, float] = {}
        self._transactions: Dict[str, ChainTransaction] = {}
        self._pending: List[str] = []
        self._rejecting: Set[str] = set()
        self._block_number = 0
        self._nonce = itertools.count(1)

        logger.info("Chain simulator initialized (chain_id=%d, auto_mine=%s)", chain_id, auto_mine)

    # -------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------

    @property
    def block_number(self) -> int:
        return self._block_number

    def get_balance(self, address: str) -> float:
        return self._balances.get(normalize_address(address), 0.0)

    def faucet(self, address: str, amount: float) -> float:
        if amount <= 0:
            raise ValueError("Faucet amount must be positive")
        address = normalize_address(address)
        self._balances[address] = round_amount(self._balances.get(address, 0.0) + amount)
        logger.info("Faucet credited %s with %.8f (balance %.8f)", address, amount, self._balances[address])
        return self._balances[address]

    def reject_from(self, address: str, rejecting: bool = True):
        address = normalize_address(address)
        if rejecting:
            self._rejecting.add(address)
        else:
            self._rejecting.discard(address)

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    def send_transaction(self, from_address: str, to_address: str, value: float) -> str:
        sender = normalize_address(from_address)
        recipient = normalize_address(to_address)
        if value < 0:
            raise PaymentError("Transaction value cannot be negative")
        if sender in self._rejecting:
            raise UserRejected("User rejected the request")
        balance = self._balances.get(sender, 0.0)
        if balance + 1e-12 < value:
            raise InsufficientFunds(
                f"Insufficient funds: balance {balance:.8f}, required {value:.8f}"
            )

        now = time.time()
        seed = f"{sender}:{recipient}:{value}:{next(self._nonce)}:{now}"
        tx_hash = "0x" + hashlib.sha256(seed.encode("utf-8")).hexdigest()
        self._balances[sender] = round_amount(balance - value)
        self._transactions[tx_hash] = ChainTransaction(
            tx_hash=tx_hash,
            from_address=sender,
            to_address=recipient,
            value=value,
            status=PaymentStatus.PENDING.value,
            submitted_at=now,
        )
        self._pending.append(tx_hash)
        logger.info("Tx %s: %s -> %s value=%.8f", tx_hash[:18], sender, recipient, value)

        if self.auto_mine:
            self.mine()
        return tx_hash

    def mine(self) -> int:
        """Include every pending transaction in a new block. Returns how many."""
        if not self._pending:
            return 0
        self._block_number += 1
        included = 0
        for tx_hash in self._pending:
            tx = self._transactions[tx_hash]
            if tx.status != PaymentStatus.PENDING:
                continue
            tx.status = PaymentStatus.CONFIRMED.value
            tx.block_number = self._block_number
            self._balances[tx.to_address] = round_amount(
                self._balances.get(tx.to_address, 0.0) + tx.value
            )
            included += 1
        self._pending = []
        logger.debug("Mined block %d with %d transactions", self._block_number, included)
        return included

    def revert_transaction(self, tx_hash: str) -> bool:
        """Fail a pending transaction and refund the sender."""
        tx = self._transactions.get(tx_hash)
        if tx is None or tx.status != PaymentStatus.PENDING:
            return False
        tx.status = PaymentStatus.FAILED.value
        self._balances[tx.from_address] = round_amount(
            self._balances.get(tx.from_address, 0.0) + tx.value
        )
        self._pending = [h for h in self._pending if h != tx_hash]
        logger.info("Tx %s reverted", tx_hash[:18])
        return True

    def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        return self._transactions.get(tx_hash)

    def get_transaction_status(self, tx_hash: str) -> str:
        """Unknown hashes read as pending, like a receipt that has not landed yet."""
        tx = self._transactions.get(tx_hash)
        if tx is None:
            return PaymentStatus.PENDING.value
        return tx.status

    def get_stats(self) -> dict:
        statuses = {s.value: 0 for s in PaymentStatus}
        for tx in self._transactions.values():
            statuses[tx.status] += 1
        return {
            "chain_id": self.chain_id,
            "block_number": self._block_number,
            "transactions": len(self._transactions),
            "by_status": statuses,
            "accounts": len(self._balances),
        }

    # -------------------------------------------------------------------
    # JSON-RPC
    # -------------------------------------------------------------------

    def handle_rpc(self, request: dict) -> dict:
        rpc_id = request.get("id")
        method = request.get("method", "")
        params = request.get("params") or []

        def error(code: int, message: str) -> dict:
            return {"jsonrpc": "2.0", "id": rpc_id, "error": {"code": code, "message": message}}

        try:
            if method == "eth_sendTransaction":
                tx = params[0]
                value = from_wei(int(tx.get("value", "0x0"), 16))
                result = self.send_transaction(tx["from"], tx["to"], value)
            elif method == "eth_getTransactionReceipt":
                tx = self._transactions.get(params[0])
                result = tx.receipt() if tx else None
            elif method == "eth_getBalance":
                result = hex(to_wei(self.get_balance(params[0])))
            elif method == "eth_blockNumber":
                result = hex(self._block_number)
            elif method == "eth_chainId":
                result = hex(self.chain_id)
            else:
                return error(RPC_METHOD_NOT_FOUND, f"Method {method} not supported")
        except UserRejected as exc:
            return error(RPC_USER_REJECTED, exc.message)
        except InsufficientFunds:
            return error(RPC_SERVER_ERROR, "insufficient funds for transfer")
        except (PaymentError, KeyError, IndexError, ValueError, TypeError) as exc:
            return error(RPC_SERVER_ERROR, f"invalid request: {exc}")
        return {"jsonrpc": "2.0", "id": rpc_id, "result": result}

    # -------------------------------------------------------------------
    # FastAPI routes
    # -------------------------------------------------------------------

    def register_routes(self, app):
        """Register chain endpoints on an existing FastAPI app."""
        from fastapi import HTTPException

        @app.get("/chain/stats")
        async def chain_stats():
            return self.get_stats()

        @app.get("/chain/balance/{address}")
        async def chain_balance(address: str):
            return {"address": normalize_address(address), "balance": self.get_balance(address)}

        @app.post("/chain/faucet")
        async def chain_faucet(payload: dict):
            address = payload.get("address", "")
            try:
                amount = float(payload.get("amount", 1.0))
                balance = self.faucet(address, amount)
            except (TypeError, ValueError) as exc:
                raise HTTPException(status_code=400, detail=str(exc))
            return {"address": normalize_address(address), "balance": balance}

        @app.get("/chain/tx/{tx_hash}")
        async def chain_tx(tx_hash: str):
            tx = self.get_transaction(tx_hash)
            if tx is None:
                raise HTTPException(status_code=404, detail="Transaction not found")
            return tx.to_dict()

        @app.post("/chain/mine")
        async def chain_mine():
            return {"included": self.mine(), "block_number": self._block_number}

        @app.post("/rpc")
        async def rpc(payload: dict):
            return self.handle_rpc(payload)

        logger.info("Chain simulator routes registered on FastAPI app")


# ---------------------------------------------------------------------------
# Standalone mode
# ---------------------------------------------------------------------------

def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="BNB Chain Simulator (standalone)")
    parser.add_argument("--port", type=int, default=8545, help="HTTP port (default: 8545)")
    parser.add_argument("--chain-id", type=int, default=BSC_CHAIN_ID, help=f"Chain id (default: {BSC_CHAIN_ID})")
    parser.add_argument("--manual-mine", action="store_true", help="Keep transactions pending until /chain/mine")
    args = parser.parse_args()

    from fastapi import FastAPI
    import uvicorn

    app = FastAPI(title="BNB Chain Simulator", version="1.0.0")
    chain = ChainSimulator(chain_id=args.chain_id, auto_mine=not args.manual_mine)
    chain.register_routes(app)

    @app.get("/")
    async def root():
        stats = chain.get_stats()
        stats["service"] = "BNB Chain Simulator"
        stats["port"] = args.port
        return stats

    logger.info("=" * 50)
    logger.info("  BNB Chain Simulator")
    logger.info("  Port: %d", args.port)
    logger.info("  Chain id: %d", args.chain_id)
    logger.info("=" * 50)

    uvicorn.run(app, host="0.0.0.0", port=args.port, log_level="info")


if __name__ == "__main__":
    main()

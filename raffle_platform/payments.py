"""
payments.py - Payment gateways.

The orchestrator only sees PaymentGateway: ``submit_payment`` hands a
transfer to the chain and returns its tx hash, ``confirm_payment`` reports
confirmed / pending / failed for a hash. Failures surface as PaymentError
subclasses (UserRejected, InsufficientFunds, NetworkError).

Variants:
 - SimulatedChainGateway: talks to an in-process ChainSimulator.
 - JsonRpcGateway: EVM JSON-RPC (eth_sendTransaction /
   eth_getTransactionReceipt) over HTTP using requests.

``build_gateway`` picks the variant once from configuration.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import requests

from raffle_platform.errors import InsufficientFunds, NetworkError, UserRejected

if TYPE_CHECKING:
    from raffle_platform.chain_simulator import ChainSimulator

logger = logging.getLogger("payments")

WEI_PER_UNIT = Decimal(10) ** 18
RPC_TIMEOUT_SEC = 10.0
USER_REJECTED_CODE = 4001


class PaymentStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


def to_wei(amount: float) -> int:
    return int(Decimal(str(amount)) * WEI_PER_UNIT)


def from_wei(wei: int) -> float:
    return float(Decimal(wei) / WEI_PER_UNIT)


class PaymentGateway(ABC):
    name = "abstract"

    @abstractmethod
    async def submit_payment(self, from_address: str, to_address: str, amount: float) -> str:
        """Submit a transfer and return its transaction hash."""

    @abstractmethod
    async def confirm_payment(self, tx_hash: str) -> str:
        """Return the PaymentStatus value of a submitted transfer."""


class SimulatedChainGateway(PaymentGateway):
    name = "simulated"

    def __init__(self, chain: "ChainSimulator", latency_sec: float = 0.0):
        self._chain = chain
        self._latency_sec = latency_sec

    async def submit_payment(self, from_address: str, to_address: str, amount: float) -> str:
        if self._latency_sec:
            await asyncio.sleep(self._latency_sec)
        return self._chain.send_transaction(from_address, to_address, amount)

    async def confirm_payment(self, tx_hash: str) -> str:
        return self._chain.get_transaction_status(tx_hash)


class JsonRpcGateway(PaymentGateway):
    name = "jsonrpc"

    def __init__(self, rpc_url: str, timeout: float = RPC_TIMEOUT_SEC,
                 session: Optional[requests.Session] = None):
        self.rpc_url = rpc_url
        self._timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(self.rpc_url, json=body, timeout=self._timeout)
            response.raise_for_status()
            reply = response.json()
        except requests.RequestException as exc:
            logger.warning("RPC %s to %s failed: %s", method, self.rpc_url, exc)
            raise NetworkError(f"RPC node unreachable: {exc}") from exc
        except ValueError as exc:
            raise NetworkError(f"RPC node returned invalid JSON: {exc}") from exc

        error = reply.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "RPC error")
            if code == USER_REJECTED_CODE or "rejected" in message.lower():
                raise UserRejected(message)
            if "insufficient funds" in message.lower():
                raise InsufficientFunds(message)
            raise NetworkError(f"RPC error {code}: {message}")
        return reply.get("result")

    async def submit_payment(self, from_address: str, to_address: str, amount: float) -> str:
        tx = {"from": from_address, "to": to_address, "value": hex(to_wei(amount))}
        tx_hash = await asyncio.to_thread(self._call, "eth_sendTransaction", [tx])
        if not tx_hash:
            raise NetworkError("RPC node returned no transaction hash")
        return tx_hash

    async def confirm_payment(self, tx_hash: str) -> str:
        receipt = await asyncio.to_thread(self._call, "eth_getTransactionReceipt", [tx_hash])
        if receipt is None:
            return PaymentStatus.PENDING.value
        if int(receipt.get("status", "0x0"), 16) == 1:
            return PaymentStatus.CONFIRMED.value
        return PaymentStatus.FAILED.value


def build_gateway(
    backend: str,
    chain: Optional["ChainSimulator"] = None,
    rpc_url: str = "",
) -> PaymentGateway:
    if backend == SimulatedChainGateway.name:
        if chain is None:
            raise ValueError("The simulated payment backend needs a ChainSimulator")
        gateway: PaymentGateway = SimulatedChainGateway(chain)
    elif backend == JsonRpcGateway.name:
        if not rpc_url:
            raise ValueError("The jsonrpc payment backend needs --rpc-url")
        gateway = JsonRpcGateway(rpc_url)
    else:
        raise ValueError(f"Unknown payment backend: {backend}")
    logger.info("Payment backend: %s", gateway.name)
    return gateway

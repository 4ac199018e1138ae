"""
server.py - Raffle platform server entry point.

Single-process server combining:
 - SQLite persistent storage via StorageManager
 - Round lifecycle, entry ledger, fair draw engine, entry orchestrator
 - Round scheduler (rotation, commitments, auto-draw, reconciliation)
 - Embedded BNB chain simulator (simulated payment backend)
 - REST API (FastAPI on uvicorn, port 8080)

Usage:
    python -m raffle_platform.server [--api-port 8080] [--db-path data/raffles.db]
    python raffle_platform/server.py [--api-port 8080] [--db-path data/raffles.db]
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional

# Ensure project root is on sys.path so imports work both ways
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI
import uvicorn

from raffle_platform import __version__, config
from raffle_platform.auth import AdminAuth
from raffle_platform.chain_simulator import ChainSimulator
from raffle_platform.clock import SystemClock
from raffle_platform.domain import Raffle
from raffle_platform.fairdraw import FairDrawEngine
from raffle_platform.ledger import EntryLedger
from raffle_platform.lifecycle import RoundLifecycleManager
from raffle_platform.orchestrator import RaffleEntryOrchestrator
from raffle_platform.payments import PaymentGateway, SimulatedChainGateway, build_gateway
from raffle_platform.reconciler import Reconciler
from raffle_platform.routers import register_all_routers
from raffle_platform.scheduler import RoundScheduler
from raffle_platform.storage import StorageManager

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("server")


class RafflePlatformServer:
    """Single-process raffle server: storage, services, scheduler and REST API."""

    def __init__(
        self,
        api_port: int = 8080,
        db_path: str = "data/raffles.db",
        raffles: Optional[Dict[str, Raffle]] = None,
        payment_backend: str = SimulatedChainGateway.name,
        rpc_url: str = "",
        tick_interval: float = config.SCHEDULER_INTERVAL_SEC,
        auto_draw: bool = True,
        admin_key: str = config.ADMIN_KEY,
        clock=None,
        gateway: Optional[PaymentGateway] = None,
    ):
        self.api_port = api_port
        self.db_path = db_path
        self.raffles = raffles if raffles is not None else config.load_raffles()
        self.payment_backend = payment_backend
        self.rpc_url = rpc_url
        self.tick_interval = tick_interval
        self.auto_draw = auto_draw
        self.clock = clock or SystemClock()
        self.auth = AdminAuth(admin_key)

        # Storage + services are initialized async in start()
        self.storage: Optional[StorageManager] = None
        self.ledger: Optional[EntryLedger] = None
        self.lifecycle: Optional[RoundLifecycleManager] = None
        self.draws: Optional[FairDrawEngine] = None
        self.orchestrator: Optional[RaffleEntryOrchestrator] = None
        self.reconciler: Optional[Reconciler] = None
        self.scheduler: Optional[RoundScheduler] = None

        # Chain simulator (embedded when payments are simulated)
        self.chain: Optional[ChainSimulator] = None
        self.gateway: Optional[PaymentGateway] = gateway

        # FastAPI app
        self.app = FastAPI(title="Raffle Platform", version=__version__)
        self.app.state.server = self
        register_all_routers(self.app)

        if self.gateway is None:
            if payment_backend == SimulatedChainGateway.name:
                self.chain = ChainSimulator()
                self.chain.register_routes(self.app)
                logger.info("Chain simulator embedded on raffle server")
            self.gateway = build_gateway(payment_backend, chain=self.chain, rpc_url=rpc_url)

        self._uvicorn_server: Optional[uvicorn.Server] = None

    async def init_services(self):
        """Initialize storage and wire up services (must be called in async context)."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()

        self.ledger = EntryLedger(self.storage.entries)
        self.lifecycle = RoundLifecycleManager(
            self.storage.rounds, clock=self.clock, duration_sec=config.ROUND_DURATION_SEC,
        )
        self.draws = FairDrawEngine(
            self.raffles, self.storage.rounds, self.storage.draws, self.ledger,
            clock=self.clock, rake=config.RAKE,
        )
        self.lifecycle.on_round_created(self.draws.commit)
        self.orchestrator = RaffleEntryOrchestrator(
            self.raffles, self.lifecycle, self.storage.rounds, self.ledger, self.gateway,
            draw_engine=self.draws, clock=self.clock,
            treasury_address=config.TREASURY_ADDRESS,
            payment_timeout=config.PAYMENT_TIMEOUT_SEC,
        )
        self.reconciler = Reconciler(
            self.raffles, self.storage.rounds, self.ledger, self.gateway,
            clock=self.clock, pending_window=config.PENDING_WINDOW_SEC,
            treasury_address=config.TREASURY_ADDRESS,
        )
        self.scheduler = RoundScheduler(
            self.raffles, self.lifecycle, self.draws, self.reconciler, self.storage.rounds,
            clock=self.clock, auto_draw=self.auto_draw,
            draw_grace_sec=config.DRAW_GRACE_SEC, interval_sec=self.tick_interval,
        )

        if self.chain is not None and config.TREASURY_SEED_BALANCE > 0:
            self.chain.faucet(config.TREASURY_ADDRESS, config.TREASURY_SEED_BALANCE)

        logger.info("Services initialized (db=%s, raffles=%d)", self.db_path, len(self.raffles))

    async def start(self):
        """Start storage, scheduler, and API server."""
        await self.init_services()

        self.scheduler.start()

        uv_config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(uv_config)
        logger.info("REST API starting on port %d", self.api_port)
        await self._uvicorn_server.serve()

    async def stop(self):
        """Stop the scheduler, storage, and the API server."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.orchestrator is not None:
            await self.orchestrator.wait_late_submits()
        if self.storage:
            await self.storage.close()
        if self._uvicorn_server is not None:
            self._uvicorn_server.should_exit = True


def main():
    """CLI entry point for the raffle server."""
    parser = argparse.ArgumentParser(description="Raffle Platform Server")
    parser.add_argument("--api-port", type=int, default=8080, help="REST API port (default: 8080)")
    parser.add_argument("--db-path", default="data/raffles.db", help="SQLite database path (default: data/raffles.db)")
    parser.add_argument("--raffles", default=config.CATALOG_FILE, help="JSON raffle catalog (default: built-in catalog)")
    parser.add_argument("--tick-interval", type=float, default=config.SCHEDULER_INTERVAL_SEC,
                        help=f"Scheduler interval in seconds (default: {config.SCHEDULER_INTERVAL_SEC:.0f})")
    parser.add_argument("--payment-backend", choices=("simulated", "jsonrpc"), default="simulated",
                        help="Payment gateway (default: simulated)")
    parser.add_argument("--rpc-url", default="", help="EVM JSON-RPC endpoint for --payment-backend jsonrpc")
    parser.add_argument("--no-auto-draw", action="store_true", help="Only draw rounds through the admin API")
    parser.add_argument("--admin-key", default=config.ADMIN_KEY, help="Admin API key")
    args = parser.parse_args()

    server = RafflePlatformServer(
        api_port=args.api_port,
        db_path=args.db_path,
        raffles=config.load_raffles(args.raffles),
        payment_backend=args.payment_backend,
        rpc_url=args.rpc_url,
        tick_interval=args.tick_interval,
        auto_draw=not args.no_auto_draw,
        admin_key=args.admin_key,
    )

    logger.info("=" * 60)
    logger.info("  Raffle Platform Server")
    logger.info("  REST API:    http://localhost:%d", args.api_port)
    logger.info("  Database:    %s", args.db_path)
    logger.info("  Raffles:     %s", ", ".join(sorted(server.raffles)))
    logger.info("  Payments:    %s", server.gateway.name)
    logger.info("  Auto-draw:   %s", "enabled" if not args.no_auto_draw else "disabled")
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()

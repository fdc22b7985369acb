"""Application factory and context for the platform relay API.

This module provides a factory for creating the FastAPI app without
import-time side effects. All runtime state lives in an AppContext.

Design Decision:
----------------
One process serves two roles. It is an *instance* (it owns a simulation
host, ticks it and exposes ``/api/instance/...``) and a *controller* (it
orchestrates transfers between itself and the peers named in
``RELAY_INSTANCES`` and exposes ``/api/transfers``).

Usage:
------
    # For production (uses default settings from environment)
    app = create_app()

    # For testing (custom configuration)
    app = create_app(context=AppContext(instance_id="alpha", tick_rate=0))
"""

import logging
import os
import platform
import socket
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import psutil
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay_core.config.relay_config import RelayConfig
from relay_core.simhost import MemoryHost, build_demo_platform
from relay_backend import __version__
from relay_backend.export_store import BaseExportStore, FileExportStore, MemoryExportStore
from relay_backend.gateways import InstanceGateway, LocalInstanceGateway
from relay_backend.instance_client import HttpInstanceGateway
from relay_backend.instance_service import DEFAULT_TICK_RATE, InstanceService, TickLoop
from relay_backend.logging_config import configure_logging
from relay_backend.orchestrator import TransferOrchestrator
from relay_backend.subscriptions import EventBroadcaster
from relay_backend.transaction_log import TransactionLog
from relay_backend.transfer_registry import TransferRegistry

DEFAULT_API_PORT = 8000


def parse_instance_map(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``RELAY_INSTANCES`` (``id=url,id=url``) into a dict."""
    peers: Dict[str, str] = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        instance_id, sep, url = item.partition("=")
        if not sep or not instance_id.strip() or not url.strip():
            raise ValueError(f"Invalid RELAY_INSTANCES entry: {item!r} (expected id=url)")
        peers[instance_id.strip()] = url.strip()
    return peers


def _env_path(name: str) -> Optional[Path]:
    raw = os.getenv(name)
    return Path(raw) if raw else None


@dataclass
class AppContext:
    """Runtime context holding all application state."""

    # Configuration
    instance_id: str = field(default_factory=lambda: os.getenv("RELAY_INSTANCE_ID", "local"))
    api_port: int = field(
        default_factory=lambda: int(os.getenv("RELAY_API_PORT", str(DEFAULT_API_PORT)))
    )
    data_dir: Optional[Path] = field(default_factory=lambda: _env_path("RELAY_DATA_DIR"))
    peers: Dict[str, str] = field(
        default_factory=lambda: parse_instance_map(os.getenv("RELAY_INSTANCES"))
    )
    tick_rate: float = field(
        default_factory=lambda: float(os.getenv("RELAY_TICK_RATE", str(DEFAULT_TICK_RATE)))
    )
    seed_demo: bool = field(
        default_factory=lambda: os.getenv("RELAY_SEED_DEMO", "false").lower() == "true"
    )
    allowed_origins: list = field(
        default_factory=lambda: os.getenv("ALLOWED_ORIGINS", "*").split(",")
    )
    config: RelayConfig = field(default_factory=RelayConfig.from_env)
    version: str = __version__

    # Services (created by build())
    service: Optional[InstanceService] = None
    gateways: Dict[str, InstanceGateway] = field(default_factory=dict)
    export_store: Optional[BaseExportStore] = None
    orchestrator: Optional[TransferOrchestrator] = None
    tick_loop: Optional[TickLoop] = None

    # Timing
    server_start_time: float = field(default_factory=time.time)

    # Logging
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("relay_backend"))

    def build(self) -> None:
        """Create the instance service, gateways and orchestrator (idempotent)."""
        if self.service is None:
            host = MemoryHost()
            if self.seed_demo:
                build_demo_platform(host)
            instance_dir = self.data_dir / "instance" if self.data_dir else None
            self.service = InstanceService(self.instance_id, host, self.config, instance_dir)

        if self.instance_id not in self.gateways:
            self.gateways[self.instance_id] = LocalInstanceGateway(self.service)
        for peer_id, url in self.peers.items():
            if peer_id not in self.gateways:
                self.gateways[peer_id] = HttpInstanceGateway(peer_id, url)

        if self.orchestrator is None:
            if self.export_store is None:
                self.export_store = (
                    FileExportStore(self.data_dir / "exports") if self.data_dir else MemoryExportStore()
                )
            registry = TransferRegistry(
                self.data_dir / "transfers.json" if self.data_dir else None,
                max_records=self.config.transport.max_transfer_records,
            )
            txlog = TransactionLog(self.data_dir / "transactions.jsonl" if self.data_dir else None)
            self.orchestrator = TransferOrchestrator(
                self.gateways,
                self.export_store,
                registry,
                txlog,
                EventBroadcaster(),
                self.config.transport,
            )

        if self.tick_loop is None:
            self.tick_loop = TickLoop(self.service, self.tick_rate)

    def get_server_info(self) -> Dict[str, Any]:
        """Get information about this process and machine."""
        uptime = time.time() - self.server_start_time
        cpu_percent = None
        memory_mb = None
        try:
            process = psutil.Process()
            cpu_percent = process.cpu_percent(interval=None)
            memory_mb = round(process.memory_info().rss / 1024 / 1024, 1)
        except psutil.Error as e:
            self.logger.debug("Could not get resource usage: %s", e)

        return {
            "hostname": socket.gethostname(),
            "port": self.api_port,
            "version": self.version,
            "uptime_seconds": round(uptime, 1),
            "cpu_percent": cpu_percent,
            "memory_mb": memory_mb,
            "platform": platform.system(),
            "logical_cpus": psutil.cpu_count(),
            "peers": sorted(self.peers),
        }


def create_app(
    *,
    instance_id: Optional[str] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        instance_id: Override instance ID (default: from RELAY_INSTANCE_ID env var)
        context: Pre-configured AppContext (for testing). If None, creates a new one.

    Returns:
        Configured FastAPI application with context attached as app.state.context
    """
    logger = configure_logging()

    if context is None:
        context = AppContext()
    if instance_id is not None:
        context.instance_id = instance_id
    context.logger = logger
    context.build()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        ctx: AppContext = app.state.context
        try:
            resumed = ctx.service.resume()
            recovered = ctx.orchestrator.recover()
            ctx.logger.info(
                "Instance %s starting: %d jobs resumed, %d failed on resume, %d transfers recovered",
                ctx.instance_id,
                len(resumed["resumed"]),
                len(resumed["failed"]),
                len(recovered),
            )
            ctx.tick_loop.start()
            yield
            ctx.logger.info("LIFESPAN: Received shutdown signal")
        finally:
            await ctx.orchestrator.shutdown()
            await ctx.tick_loop.stop()
            for gateway in ctx.gateways.values():
                if isinstance(gateway, HttpInstanceGateway):
                    await gateway.close()

    app = FastAPI(title="Platform Relay API", version=context.version, lifespan=lifespan)
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    _setup_routers(app, context)
    return app


def _setup_routers(app: FastAPI, ctx: AppContext) -> None:
    """Setup and include all API routers."""
    from relay_backend.routers import instance, transfers

    app.include_router(instance.setup_router(ctx.service, ctx.get_server_info))
    app.include_router(transfers.setup_router(ctx.orchestrator))

    @app.get("/health")
    async def health():
        return {"status": "ok", "instance_id": ctx.instance_id, "tick": ctx.service.host.tick}

    ctx.logger.info("API routers configured successfully")

#!/usr/bin/env python3
"""Standalone Access Sweep Scheduler for NetGate.

Runs the access sweep at a fixed interval as its own process, for
deployments where the API server runs with ENFORCEMENT_SWEEP_IN_APP=false.
Each sweep reconciles every subscriber's firewall rule and purges expired
payment correlations.

Architecture:
    - Simple asyncio loop with sleep (no external scheduler)
    - Graceful shutdown on SIGTERM/SIGINT: no new reconciliations start,
      in-flight remote commands complete
    - Health check endpoint via a minimal HTTP server

Per-subscriber serialization only holds within one process. Do not run
this scheduler alongside an API server that also sweeps.

Environment Variables:
    SWEEP_INTERVAL_MINUTES: Minutes between sweeps (default: 60)
    SWEEP_ON_STARTUP: Run a sweep immediately on startup (default: true)
    SWEEP_MAX_CONCURRENCY: Reconciliations at once (default: 10)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)

    Remote gateway:
        SSH_HOST, SSH_PORT, SSH_USER, SSH_PASS or SSH_KEY_FILE,
        FIREWALL_CHAIN, FIREWALL_USE_SUDO

    Database:
        DATABASE_URL

Example:
    # Sweep every 15 minutes
    SWEEP_INTERVAL_MINUTES=15 python scheduler.py

Docker Usage:
    docker run -e SWEEP_INTERVAL_MINUTES=60 -e DATABASE_URL=... netgate-scheduler
"""
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.netgate.api.exceptions import NetGateError
from src.netgate.enforcement.background import SweepState, sweep_loop
from src.netgate.enforcement.config import EnforcementConfig
from src.netgate.enforcement.container import EnforcementContainer, create_container
from src.netgate.enforcement.domain.entities import SweepResult

# Initialize logger
logger = logging.getLogger(__name__)


# ============================================
# Health Check Server
# ============================================

def health_body(state: SweepState) -> tuple[int, str]:
    """Build the health response status code and JSON body."""
    last = state.last_result
    body = {
        "status": "healthy" if state.healthy else "unhealthy",
        "uptime_seconds": round((datetime.now(timezone.utc) - state.started_at).total_seconds()),
        "total_sweeps": state.total_sweeps,
        "failed_sweeps": state.failed_sweeps,
        "last_sweep_at": state.last_sweep_at.isoformat() if state.last_sweep_at else "never",
        "last_sweep": last.to_dict() if last else None,
    }
    return (200 if state.healthy else 503), json.dumps(body)


async def health_check_handler(reader, writer, state: SweepState):
    """Handle HTTP health check requests."""
    # Read request (we don't care about the content)
    await reader.read(1024)

    http_status, body = health_body(state)
    response = (
        f"HTTP/1.1 {http_status} {'OK' if http_status == 200 else 'Service Unavailable'}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body.encode())}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
        f"{body}"
    )

    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(port: int, state: SweepState):
    """Start the health check HTTP server."""
    if port <= 0:
        return None

    async def handler(reader, writer):
        await health_check_handler(reader, writer, state)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    print(f"[Scheduler] Health check server listening on port {port}")
    return server


# ============================================
# Main Scheduler Loop
# ============================================

def print_sweep_result(result: SweepResult) -> None:
    """Progress line for one finished sweep."""
    print(
        f"[Scheduler] Sweep complete at {datetime.now(timezone.utc).isoformat()}: "
        f"success={result.success}, blocked={result.blocked}, unblocked={result.unblocked}, "
        f"deferred={result.deferred}, failed={result.failed}, "
        f"duration={result.duration_seconds:.1f}s"
    )


async def scheduler_loop(
    config: EnforcementConfig,
    container: EnforcementContainer,
    state: SweepState,
    shutdown_event: asyncio.Event,
):
    """Main scheduling loop.

    Args:
        config: Enforcement configuration
        container: Wired use cases
        state: Shared health state
        shutdown_event: Event to signal shutdown
    """
    print(f"[Scheduler] Sweeping every {config.sweep_interval_minutes} minutes")
    await sweep_loop(
        container.sweep,
        config.sweep_interval_minutes,
        shutdown_event,
        state,
        run_on_startup=config.sweep_on_startup,
        on_result=print_sweep_result,
    )
    print("[Scheduler] Shutdown requested, exiting loop")


# ============================================
# Main Entry Point
# ============================================

async def main():
    """Main entry point for the scheduler."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    print("=" * 60)
    print("NetGate Access Sweep Scheduler")
    print("=" * 60)

    config = EnforcementConfig()
    print(f"[Scheduler] Config: {config}")

    try:
        container = await create_container(config)
    except NetGateError as e:
        print(f"[Scheduler] ERROR: {e}")
        sys.exit(1)

    state = SweepState()
    shutdown_event = container.shutdown_event

    def handle_shutdown(signum, frame):
        print(f"\n[Scheduler] Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    health_server = await start_health_server(config.health_check_port, state)

    try:
        await scheduler_loop(
            config=config,
            container=container,
            state=state,
            shutdown_event=shutdown_event,
        )
    finally:
        print("[Scheduler] Cleaning up...")

        if health_server:
            health_server.close()
            await health_server.wait_closed()

        await container.close()

        print("[Scheduler] Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())

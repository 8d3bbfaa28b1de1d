#!/usr/bin/env python3
"""NetGate Access Enforcement CLI.

Operator commands for the enforcement core, run against the configured
database and network gateway.

Architecture:
    - Builds the same container as the API server and scheduler
    - Each command runs one use case and prints its result as JSON

Environment Variables Required:
    - DATABASE_URL: PostgreSQL connection string
    - SSH_HOST, SSH_USER, SSH_PASS or SSH_KEY_FILE: Remote gateway

Example Usage:
    $ python main.py --sweep                  # Reconcile every subscriber once
    $ python main.py --reconcile SUB-001      # Reconcile one subscriber
    $ python main.py --probe SUB-001          # Show the rule state, change nothing
    $ python main.py --purge                  # Drop expired payment correlations
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.netgate.api.exceptions import EnforcementFailure, NetGateError
from src.netgate.enforcement.container import EnforcementContainer, create_container
from src.netgate.enforcement.domain.entities import is_blocked


def print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_sweep(container: EnforcementContainer) -> int:
    print("[Main] Sweeping all subscribers...")
    result = await container.sweep.execute()
    print_json(result.to_dict())
    return 0 if result.success else 1


async def run_reconcile(container: EnforcementContainer, subscriber_id: str) -> int:
    subscriber = await container.subscriber_repo.get_subscriber(subscriber_id)
    if subscriber is None:
        print(f"[Main] Subscriber '{subscriber_id}' not found")
        return 1
    if not subscriber.has_address:
        print(f"[Main] Subscriber '{subscriber_id}' has no network address")
        return 1

    try:
        result = await container.reconciler.reconcile(subscriber)
    except EnforcementFailure as e:
        print(f"[Main] Enforcement failed: {e}")
        return 1

    print_json(result.to_dict())
    return 0


async def run_probe(container: EnforcementContainer, subscriber_id: str) -> int:
    subscriber = await container.subscriber_repo.get_subscriber(subscriber_id)
    if subscriber is None:
        print(f"[Main] Subscriber '{subscriber_id}' not found")
        return 1
    if not subscriber.has_address:
        print(f"[Main] Subscriber '{subscriber_id}' has no network address")
        return 1

    now = datetime.now(timezone.utc)
    state = await container.firewall.exists(subscriber.ip_address, subscriber.subscriber_id)
    print_json({
        "subscriber_id": subscriber.subscriber_id,
        "address": subscriber.ip_address,
        "status": subscriber.status.value,
        "subscription_start": subscriber.subscription_start.isoformat(),
        "subscription_end": subscriber.subscription_end.isoformat(),
        "desired_blocked": is_blocked(subscriber, now),
        "rule": state.value,
    })
    return 0


async def run_purge(container: EnforcementContainer) -> int:
    result = await container.sweep.purge()
    print_json({
        "purged_correlations": result.purged_correlations,
        "purged_confirmations": result.purged_confirmations,
        "errors": result.error_details,
    })
    return 0 if not result.error_details else 1


async def run_command(args: argparse.Namespace) -> int:
    """Build the container, run the selected command, clean up."""
    start_time = datetime.now(timezone.utc)

    try:
        container = await create_container()
    except NetGateError as e:
        print(f"[Main] Configuration error: {e}")
        return 1

    try:
        if args.sweep:
            code = await run_sweep(container)
        elif args.reconcile:
            code = await run_reconcile(container, args.reconcile)
        elif args.probe:
            code = await run_probe(container, args.probe)
        else:
            code = await run_purge(container)
    finally:
        await container.close()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.1f} seconds")
    return code


def main():
    parser = argparse.ArgumentParser(
        description="Reconcile subscriber firewall rules with their entitlement windows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --sweep                  # Reconcile every subscriber once
  python main.py --reconcile SUB-001      # Reconcile one subscriber
  python main.py --probe SUB-001          # Show rule state without changing it
  python main.py --purge                  # Purge expired payment correlations
        """
    )

    commands = parser.add_mutually_exclusive_group(required=True)
    commands.add_argument(
        "--sweep",
        action="store_true",
        help="Reconcile every subscriber once"
    )
    commands.add_argument(
        "--reconcile",
        type=str,
        metavar="SUBSCRIBER_ID",
        help="Reconcile one subscriber"
    )
    commands.add_argument(
        "--probe",
        type=str,
        metavar="SUBSCRIBER_ID",
        help="Show desired and actual rule state without changing anything"
    )
    commands.add_argument(
        "--purge",
        action="store_true",
        help="Delete expired payment correlations and old confirmation records"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    sys.exit(asyncio.run(run_command(args)))


if __name__ == "__main__":
    main()

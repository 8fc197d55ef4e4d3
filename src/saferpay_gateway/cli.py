#!/usr/bin/env python3
"""Command-line interface for back-office payment operations.

Usage:
    python -m saferpay_gateway.cli init-db
    python -m saferpay_gateway.cli reconcile --order 0f6c3d0e-5a3b-4d8e-9a57-2f0f1b5c9e11
"""

import argparse
import asyncio
import logging
import sys

from .api import build_gateway
from .config import GatewayConfig
from .connectors.base import ProviderError
from .database import OrderRepository, close_db, get_db_context, init_db
from .locking import reconcile_lock_name

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 2


async def init_db_async() -> int:
    await init_db(create_tables=True)
    await close_db()
    print("Database tables created.")
    return EXIT_OK


async def reconcile_order_async(order_uuid: str) -> int:
    """Reconcile one order by hand, e.g. after a lost notification.

    Args:
        order_uuid: Stable unique identifier of the order.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    await init_db(create_tables=False)
    gateway = build_gateway(GatewayConfig.from_env())
    lock_name = reconcile_lock_name(order_uuid)
    try:
        async with get_db_context() as session:
            order = await OrderRepository(session).get_by_uuid(order_uuid)
            if order is None:
                print(f"Error: order {order_uuid} not found", file=sys.stderr)
                return EXIT_FAILED

            token = await gateway.lock_manager.try_acquire(lock_name)
            if token is None:
                print(f"Order {order_uuid} is being reconciled by another process.", file=sys.stderr)
                return EXIT_LOCKED
            try:
                async with gateway.lock_manager.keep_alive(lock_name, token):
                    result = await gateway.reconciliation_service(session).reconcile(order)
            finally:
                await gateway.lock_manager.release(lock_name, token)
    except ProviderError as e:
        logger.error(f"Reconciliation of order {order_uuid} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        await gateway.client.aclose()
        await close_db()

    if not result.accepted:
        print(f"Rejected: {result.reason.value} (status: {result.remote_status or 'n/a'})")
        return EXIT_FAILED

    payment = result.payment
    print(f"Recorded {payment.state} payment {payment.id} (transaction {payment.remote_id}).")
    return EXIT_OK


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Saferpay payment page gateway tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create the database tables")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Assert and record the payment of one order",
    )
    reconcile_parser.add_argument(
        "--order",
        required=True,
        help="Order UUID",
    )
    reconcile_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return EXIT_FAILED

    if args.command == "init-db":
        return asyncio.run(init_db_async())

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    return asyncio.run(reconcile_order_async(args.order))


if __name__ == "__main__":
    sys.exit(main())

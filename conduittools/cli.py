import argparse
import asyncio
from typing import Optional

import pandas as pd
from loguru import logger

from conduittools.models.models import PaymentStatus
from conduittools.utilities.mirror_repository import MirrorRepository
from conduittools.utilities.setup_utilities import (
    init_db,
    update_credentials,
)

def list_payments(status: Optional[str] = None, url: Optional[str] = None, limit: int = 50) -> pd.DataFrame:
    """Print mirrored payments, newest first"""
    db_manager = init_db.resolve_mirror_url(url)
    credential_key = None
    if not db_manager.url:
        credential_key = init_db.get_agent_config().mirror_credential_key
    mirror = MirrorRepository(db_manager=db_manager, credential_key=credential_key)

    payments = mirror.get_payments_dataframe(
        status=PaymentStatus(status) if status else None,
        limit=limit
    )
    db_manager.close()

    if payments.empty:
        print("No payments found.")
    else:
        with pd.option_context('display.max_columns', None, 'display.width', 200):
            print(payments[['payment_id', 'status', 'amount', 'principal', 'worker', 'verifier', 'deadline', 'condition_text']].to_string(index=False))
    return payments

def run_node():
    """Start the reconciler and verifier agent for the configured node"""
    from conduittools.container.service_container import ServiceContainer

    container = ServiceContainer.initialize()
    try:
        asyncio.run(container.run())
    except KeyboardInterrupt:
        logger.info("run_node: Interrupted, shutting down")

def main():
    parser = argparse.ArgumentParser(description="Conduit conditional payment tools")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    init_db_parser = subparsers.add_parser('init-db', help='Initialize the mirror database')
    init_db_parser.add_argument("--drop-tables", action="store_true",
                               help="Drop and recreate tables (WARNING: Destructive)")
    init_db_parser.add_argument("--url", help="SQLAlchemy URL of the mirror database")

    subparsers.add_parser('update-creds', help='Add, update or delete credentials')

    list_parser = subparsers.add_parser('list-payments', help='List mirrored payments')
    list_parser.add_argument("--status", choices=[status.value for status in PaymentStatus],
                             help="Only show payments in this status")
    list_parser.add_argument("--url", help="SQLAlchemy URL of the mirror database")
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum number of payments to show")

    subparsers.add_parser('run', help='Run the reconciler and verifier agent')

    args = parser.parse_args()

    if args.command == 'init-db':
        init_db.main(drop_tables=args.drop_tables, url=args.url)
    elif args.command == 'update-creds':
        update_credentials.main()
    elif args.command == 'list-payments':
        list_payments(status=args.status, url=args.url, limit=args.limit)
    elif args.command == 'run':
        run_node()
    else:
        parser.print_help()

if __name__ == "__main__":
    main()

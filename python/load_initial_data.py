#!/usr/bin/env python3
"""
Initial Data Loading Script for the Officer Credit Ledger

Loads demo data into the database including:
- Demo officers from the admin console
- An opening Renewal per officer
- Settled OSINT/PRO queries so each officer ends at its demo balance

Everything goes through the Ledger and OfficerDirectory, so seeded
snapshots satisfy the same invariants as live data.

Usage:
    python load_initial_data.py [--database-url sqlite:///ledger.db] [--verbose]
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from database.connection import DatabaseSettings, init_db, close_db
from database.models import OfficerStatus, QueryStatus, QueryType
from ledger import Ledger, OfficerDirectory, OfficerLockRegistry, QueryLog, Renewal

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

OPENING_CREDITS = 50
PRO_QUERY_COST = 2
OSINT_QUERY_COST = 1

DEMO_OFFICERS: List[Dict[str, Any]] = [
    {
        "name": "Inspector Ramesh Kumar",
        "mobile": "+91 9791103607",
        "telegram_id": "@rameshcop",
        "rank": "Inspector",
        "status": OfficerStatus.ACTIVE,
        "credits_remaining": 32,
    },
    {
        "name": "ASI Priya Sharma",
        "mobile": "+91 9876543210",
        "telegram_id": "@priyacop",
        "rank": "ASI",
        "status": OfficerStatus.ACTIVE,
        "credits_remaining": 45,
    },
    {
        "name": "SI Rajesh Patel",
        "mobile": "+91 9123456789",
        "telegram_id": "@rajeshcop",
        "rank": "SI",
        "status": OfficerStatus.SUSPENDED,
        "credits_remaining": 12,
    },
    {
        "name": "Constable Anita Singh",
        "mobile": "+91 9987654321",
        "telegram_id": "@anitacop",
        "rank": "Constable",
        "status": OfficerStatus.ACTIVE,
        "credits_remaining": 38,
    },
]


def _query_costs(credits_to_use: int) -> List[int]:
    """Split a credit total into PRO (2) and OSINT (1) query costs."""
    costs = [PRO_QUERY_COST] * (credits_to_use // PRO_QUERY_COST)
    if credits_to_use % PRO_QUERY_COST:
        costs.append(OSINT_QUERY_COST)
    return costs


def load_demo_officers(
    directory: OfficerDirectory,
    ledger: Ledger,
    query_log: QueryLog,
    processed_by: str = "seed"
) -> int:
    """Register demo officers and replay their credit history.

    Officers whose mobile number is already registered are skipped.

    Returns:
        Number of officers created
    """
    created = 0
    for demo in DEMO_OFFICERS:
        existing = directory.list_officers(search=demo["mobile"])
        if existing["total"]:
            logger.info(f"Officer already exists: {demo['name']}")
            continue

        officer = ledger.open_account(
            demo["name"],
            demo["mobile"],
            Renewal(OPENING_CREDITS, payment_mode="Department Budget", processed_by=processed_by),
            telegram_id=demo["telegram_id"],
            rank=demo["rank"],
        )

        for index, cost in enumerate(_query_costs(OPENING_CREDITS - demo["credits_remaining"])):
            query = query_log.record(
                officer.id,
                QueryType.PRO if cost == PRO_QUERY_COST else QueryType.OSINT,
                input=f"+91 90000{index:05d}",
                source="Telegram Bot",
                status=QueryStatus.SUCCESS,
                credits_used=cost,
                result_summary="Demo lookup",
                platform="telegram",
            )
            ledger.settle_query(query.id, processed_by=processed_by)

        # One failed lookup per officer; failed queries are never charged
        query_log.record(
            officer.id,
            QueryType.OSINT,
            input="+91 9000099999",
            source="Telegram Bot",
            status=QueryStatus.FAILED,
            error_message="Source timed out",
            platform="telegram",
        )

        if demo["status"] != OfficerStatus.ACTIVE:
            directory.set_status(officer.id, demo["status"])

        created += 1
        logger.info(
            f"Created officer: {demo['name']} "
            f"({directory.credits_remaining(officer.id)}/{OPENING_CREDITS} credits)"
        )

    return created


def main():
    parser = argparse.ArgumentParser(description="Load demo data into the credit ledger database")
    parser.add_argument("--database-url", help="SQLAlchemy URL (defaults to DB_* environment variables)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("Credit Ledger Initial Data Loading")
    logger.info("=" * 50)

    settings = DatabaseSettings.from_env()
    if args.database_url:
        settings.url = args.database_url

    try:
        db = init_db(settings=settings)
        db.create_tables()

        locks = OfficerLockRegistry()
        directory = OfficerDirectory(db, locks=locks)
        ledger = Ledger(db, locks=locks)
        query_log = QueryLog(db)

        logger.info("Loading demo officers...")
        officers_created = load_demo_officers(directory, ledger, query_log)
        logger.info(f"Officers created: {officers_created}")

        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()

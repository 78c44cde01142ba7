# seed_db.py
"""
Database Seeding Script
=======================

Seeds a demo clinic (providers, chairs, patients and one presented
treatment plan per patient) so the booking, case acceptance and claim
endpoints have something to work on.

Usage:
    python seed_db.py demo --clinic-id clinic-demo --patients 20
    python seed_db.py demo --clinic-id clinic-demo --patients 20 --create-schema --export-csv

Requirements:
    - A valid database configuration (DB_* environment variables or .env).
    - For PostgreSQL, migrations applied (`alembic upgrade head`).
"""

import sys
import argparse
import asyncio
from scripts.db import create_schema, seed_clinic, DEFAULT_CLINIC_TEMPLATE
from app.db import DbManager
from common.config import DatabaseConfig, get_config, initialize_config
from common.api_error import ConfigurationError
from dotenv import load_dotenv


def get_db_config() -> DatabaseConfig:
    """
    Raises:
        SystemExit: If configuration cannot be loaded or has no database.
    """
    try:
        initialize_config()
    except ConfigurationError as e:
        print(f"FATAL: Configuration error:\n{e}")
        sys.exit(1)

    db_cfg = get_config().database
    if db_cfg is None:
        print("FATAL: Database configuration required (set DB_DRIVER and DB_NAME)")
        sys.exit(1)
    return db_cfg


async def run_seed_demo(
    _db_config: DatabaseConfig,
    clinic_id: str,
    patients: int,
    create_tables: bool,
    export_csv: bool,
    csv_dir: str,
):
    db_manager = DbManager.from_config(_db_config)
    await db_manager.verify_connection()
    try:
        if create_tables:
            await create_schema(db_manager)
        seeded = await seed_clinic(
            db_manager=db_manager,
            clinic_id=clinic_id,
            data_template=DEFAULT_CLINIC_TEMPLATE,
            patients=patients,
            export_csv=export_csv,
            csv_dir=csv_dir,
        )
    finally:
        await db_manager.dispose()

    for table, rows in seeded.items():
        print(f"{table}: {len(rows)}")


def main():
    parser = argparse.ArgumentParser(description="Seed database manager")
    subparsers = parser.add_subparsers(dest="mode", required=True)

    demo_parser = subparsers.add_parser("demo", help="Seed one demo clinic")
    demo_parser.add_argument(
        "--clinic-id", type=str, required=True, help="Tenant id to seed (REQUIRED)"
    )
    demo_parser.add_argument(
        "--patients", type=int, default=20, help="Number of patients to generate"
    )
    demo_parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables from the models first (SQLite development databases)",
    )
    demo_parser.add_argument(
        "--export-csv", action="store_true", help="Export seeded patients/providers to CSV"
    )
    demo_parser.add_argument(
        "--csv-dir", type=str, default="data/seed", help="Directory to export CSV files"
    )

    args = parser.parse_args()
    if args.patients < 1:
        parser.error("--patients must be at least 1")

    _db_config = get_db_config()
    asyncio.run(
        run_seed_demo(
            _db_config,
            args.clinic_id,
            args.patients,
            args.create_schema,
            args.export_csv,
            args.csv_dir,
        )
    )


if __name__ == "__main__":
    load_dotenv()
    main()

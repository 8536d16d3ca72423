"""Seed script for rate tables.

Run with:
    python scripts/seed_rate_tables.py
    python scripts/seed_rate_tables.py --dir ./extra_tables

Creates the schema if needed and stores the bundled PTKP/TER/BPJS tables
(plus any JSON tables in --dir or RATE_TABLE_DIR).
"""

from __future__ import annotations

import argparse
import asyncio

from payroll_tax_engine.calculators.rate_store import RateTableStore
from payroll_tax_engine.config import get_settings
from payroll_tax_engine.database import create_tables, get_session


async def main(directory: str | None = None) -> None:
    """Run seed script."""
    print("Seeding rate tables...")
    store = RateTableStore.load(directory or get_settings().rate_table_dir)

    await create_tables()
    async with get_session() as session:
        added = await store.persist(session)

    for snapshot in store.versions():
        print(f"  {snapshot.version} (effective {snapshot.effective_date}) {snapshot.fingerprint[:12]}")
    print(f"\nDone! {added} new rate table(s) stored.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Store rate tables in the database")
    parser.add_argument("--dir", help="Directory of extra rate-table JSON files")
    asyncio.run(main(parser.parse_args().dir))

"""
Region Seed
===========
Creates the demo store's regions so checkout can resolve a region for
every shipping country the storefront offers.

- United States: us
- International: gb, de, fr, ca, au, jp, cn, sg

Safe to run repeatedly: regions whose name already exists are skipped.

Usage:
    python -m tasks.seed_regions          # uses ORDER_STORE (memory|postgres)
"""

import asyncio
import os
from typing import Any, Dict, List

import structlog

from storage.order_store import IOrderStore

logger = structlog.get_logger(component="seed_regions")


DEFAULT_REGIONS: List[Dict[str, Any]] = [
    {
        "name": "United States",
        "currency_code": "usd",
        "countries": ["us"],
        "payment_providers": ["pp_airwallex"],
    },
    {
        "name": "International",
        "currency_code": "usd",
        "countries": ["gb", "de", "fr", "ca", "au", "jp", "cn", "sg"],
        "payment_providers": ["pp_airwallex"],
    },
]


async def seed_regions(
    store: IOrderStore,
    regions: List[Dict[str, Any]] = DEFAULT_REGIONS,
) -> int:
    """
    Create any of `regions` missing from `store`.

    Returns:
        Number of regions created
    """
    logger.info("seeding_regions", requested=len(regions))

    existing = {region.name for region in await store.list_regions()}
    missing = [data for data in regions if data["name"] not in existing]

    if not missing:
        logger.info("regions_already_seeded", existing=len(existing))
        return 0

    created = await store.create_regions(missing)
    for region in created:
        logger.info("region_created", region_id=region.id, name=region.name,
                    countries=region.countries)

    logger.info("finished_seeding_regions", created=len(created))
    return len(created)


async def main():
    backend = os.getenv("ORDER_STORE", "memory")

    if backend == "postgres":
        from database import PostgresOrderStore, init_database, close_database

        await init_database()
        try:
            await seed_regions(PostgresOrderStore())
        finally:
            await close_database()
    else:
        from storage.order_store import InMemoryOrderStore

        logger.warning("seeding_in_memory_store", note="regions are lost on exit")
        await seed_regions(InMemoryOrderStore())


if __name__ == "__main__":
    asyncio.run(main())

"""
Create tables in the root store or in one tenant database
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.logging import setup_logging
from core.tenant import TenantRouter
# Importing the package registers every model on Base.metadata
from models import Base

logger = logging.getLogger(__name__)


async def init_database(tenant_key: int = 0):
    router = TenantRouter()
    try:
        handle = await router.resolve(tenant_key)
        if handle.context.is_fallback:
            logger.warning(f"Tenant {tenant_key} has no database mapping; creating tables in the root store")

        logger.info(f"Creating tables in database {handle.context.db_name}...")
        async with handle.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")
    finally:
        await router.dispose()
        await router.root_engine.dispose()


if __name__ == "__main__":
    setup_logging()
    parser = argparse.ArgumentParser(description="Create SQP ingestion tables")
    parser.add_argument("--tenant-key", type=int, default=0, help="Tenant key; 0 targets the root store")
    args = parser.parse_args()
    asyncio.run(init_database(args.tenant_key))

"""
Run Rollover Script

Runs the auto-resume sweep and daily rollover once, for one shop or for
every shop with open subscriptions.

Usage:
    cd backend
    python scripts/run_rollover.py
    python scripts/run_rollover.py --shop example.myshopify.com
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from subscribe_save.infrastructure.db.database import close_db
from subscribe_save.infrastructure.services.rollover_service import RolloverService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def run(shop: str = None):
    service = RolloverService()
    try:
        if shop:
            resumed = await service.run_auto_resume_sweep(shop)
            result = await service.run_daily_rollover(shop)
            print(f"\n{shop}: resumed={resumed} processed={result.processed} "
                  f"created={result.created} errors={len(result.errors)}")
            for error in result.errors:
                print(f"  {error.subscription_id}: {error.message}")
            return

        results = await service.run_all_shops()
        print(f"\nProcessed {len(results)} shop(s)")
        for item in results:
            print(f"  {item.shop}: resumed={item.resumed} processed={item.processed} "
                  f"created={item.created} errors={len(item.errors)}")
            for error in item.errors:
                print(f"    {error.subscription_id}: {error.message}")
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Run the daily subscription rollover")
    parser.add_argument("--shop", help="Only process this shop domain")
    args = parser.parse_args()

    asyncio.run(run(args.shop))


if __name__ == "__main__":
    main()

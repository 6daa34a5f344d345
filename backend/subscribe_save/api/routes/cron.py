"""
Cron API Routes

Trigger for the daily auto-resume and rollover sweep, for deployments that
schedule it externally instead of running the worker.
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from subscribe_save.api.dependencies import get_rollover_service, verify_cron_secret
from subscribe_save.infrastructure.services.rollover_service import RolloverService


logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post("/cron/process-subscriptions")
async def process_subscriptions(
    service: RolloverService = Depends(get_rollover_service),
):
    results = await service.run_all_shops()
    logger.info(f"Cron sweep finished for {len(results)} shop(s)")
    return {
        "success": True,
        "shops": [
            {**asdict(result), "errors": [
                {"subscription_id": str(e.subscription_id), "message": e.message}
                for e in result.errors
            ]}
            for result in results
        ],
    }

"""Cron trigger for scheduled calls."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from outbound_caller.core.config import settings
from outbound_caller.core.dependencies import get_dispatcher
from outbound_caller.services.scheduling.dispatcher import ScheduledCallDispatcher

router = APIRouter()
logger = logging.getLogger(__name__)


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require 'Bearer <CRON_SECRET>' when a secret is configured."""
    if not settings.cron_secret:
        return
    if authorization != f"Bearer {settings.cron_secret}":
        logger.warning("[CRON] Rejected request with missing or wrong secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route(
    "/api/cron/process-scheduled-calls",
    methods=["GET", "POST"],
    dependencies=[Depends(verify_cron_secret)],
)
async def process_scheduled_calls(
    request: Request,
    dispatcher: ScheduledCallDispatcher = Depends(get_dispatcher),
):
    """Dial every pending call task that is due now."""
    logger.info(
        f"[CRON] Processing scheduled calls - Client: {request.client.host if request.client else 'unknown'}"
    )
    report = await dispatcher.run()
    return {
        "success": True,
        "processed": report.processed,
        "results": [result.model_dump() for result in report.results],
    }

"""
Cron trigger for the provisioning queue.

GET  /cron/process-queue  → run one dispatcher tick
POST /cron/process-queue  → same, for schedulers that only POST

The scheduler calls this every minute with `Authorization: Bearer <CRON_SECRET>`.
The handler is a plain `def`: the dispatcher blocks on provider calls and
sleeps between jobs, so FastAPI runs it in its threadpool instead of on
the event loop.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_dispatcher, verify_cron_secret
from api.schemas.cron import DispatchResponse
from scheduler.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)]
)


@router.api_route("/process-queue", methods=["GET", "POST"], response_model=DispatchResponse)
def process_queue(dispatcher: Dispatcher = Depends(get_dispatcher)):
    try:
        summary = dispatcher.run_once()
    except Exception as e:
        logger.error(f"process-queue error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e) or "Unknown error"})

    message = "Another instance is already processing" if summary.skipped else None
    return DispatchResponse(message=message, **summary.to_response())

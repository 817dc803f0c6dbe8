"""Delivery callback route.

The queue POSTs each job here. The signature header is checked against
the raw body before anything is parsed. Handler errors surface as 5xx so
the queue redelivers; the state machine makes redelivery safe.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from reqloom.core.queue import SIGNATURE_HEADER, JobMessage, verify_signature

from ..deps import get_engine, get_signing_keys

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/worker", tags=["worker"])


@router.post("/process")
async def process(
    request: Request,
    engine=Depends(get_engine),
    keys=Depends(get_signing_keys),
):
    body = await request.body()
    verify_signature(body, request.headers.get(SIGNATURE_HEADER), keys)
    message = JobMessage.from_json(body)

    logger.info(f"Delivery received for analysis {message.analysis_id}")
    await asyncio.to_thread(engine.process, message)
    return {"success": True, "analysisId": message.analysis_id}

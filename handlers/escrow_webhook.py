"""
Escrow Webhook Handler

Entry point for on-chain escrow events reported by the indexer. Authenticated
with a shared secret in the X-Webhook-Secret header.
"""

import logging
from typing import Any, Dict, Optional

import orjson
from fastapi import APIRouter, HTTPException, Request, Header
from starlette.concurrency import run_in_threadpool

from config import Config
from services.escrow_service import escrow_service
from services.webhook_security_service import WebhookSecurityService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/escrows/webhook")
async def escrow_webhook(
    request: Request,
    x_webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
):
    """Apply an escrow status change reported by the on-chain indexer"""
    auth = WebhookSecurityService.validate_shared_secret(x_webhook_secret, Config.WEBHOOK_SECRET)
    if not auth["valid"]:
        raise HTTPException(status_code=auth["status_code"], detail=auth["error"])

    event = await _parse_escrow_event(request)

    escrow = await run_in_threadpool(
        escrow_service.process_event,
        event["escrow_id"],
        event["status"],
        event["tx_hash"],
    )
    return {"success": True, "data": escrow.to_dict()}


async def _parse_escrow_event(request: Request) -> Dict[str, Any]:
    body = await request.body()

    if not body:
        raise HTTPException(status_code=400, detail="Empty request body")
    if not WebhookSecurityService.validate_payload_size(body):
        raise HTTPException(status_code=413, detail="Payload too large")

    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        logger.error(f"❌ ESCROW_WEBHOOK_JSON: Invalid JSON format: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON format")

    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    escrow_id = data.get("escrowId")
    status = data.get("status")
    if not isinstance(escrow_id, str) or not escrow_id.strip():
        raise HTTPException(status_code=400, detail="escrowId is required")
    if not isinstance(status, str) or not status.strip():
        raise HTTPException(status_code=400, detail="status is required")

    tx_hash = data.get("txHash") or data.get("stellarTxHash")
    if tx_hash is not None and not isinstance(tx_hash, str):
        raise HTTPException(status_code=400, detail="txHash must be a string")

    logger.info(f"📥 ESCROW_WEBHOOK: escrow={escrow_id} status={status} tx={tx_hash}")
    return {"escrow_id": escrow_id.strip(), "status": status, "tx_hash": tx_hash}

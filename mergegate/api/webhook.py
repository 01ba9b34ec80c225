"""
POST /webhook/push
==================
Trigger input. Accepts a GitHub push webhook (or a flat {"branch", "commit"}
body) and hands it to the TriggerListener.

Responses:
    202 — {"decision": started | queued | superseded | duplicate | ignored, ...}
    400 — body is not UTF-8 JSON
    401 — WEBHOOK_SECRET is set and X-Hub-Signature-256 does not match

A push to any other branch is answered with "ignored", never an error.
"""
import hmac
import json
import hashlib
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from mergegate.core.config import WEBHOOK_SECRET
from mergegate.models.push_event import PushEvent
from mergegate.services.pipeline_service import PipelineService, get_pipeline_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Trigger"])

_SIGNATURE_PREFIX = "sha256="


class WebhookResponse(BaseModel):
    decision: str
    branch: Optional[str] = None
    commit: Optional[str] = None


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of a GitHub X-Hub-Signature-256 header."""
    if not signature or not signature.startswith(_SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len(_SIGNATURE_PREFIX):])


@router.post("/push", status_code=202, response_model=WebhookResponse)
async def receive_push(
    request: Request,
    service: PipelineService = Depends(get_pipeline_service),
    x_hub_signature_256: Optional[str] = Header(default=None),
    x_github_event: Optional[str] = Header(default=None),
):
    body = await request.body()

    if WEBHOOK_SECRET and not verify_signature(WEBHOOK_SECRET, body, x_hub_signature_256):
        logger.warning("Rejected webhook with missing or invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    if x_github_event and x_github_event != "push":
        return WebhookResponse(decision="ignored")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError (non UTF-8 body)
        raise HTTPException(status_code=400, detail="Body must be UTF-8 JSON")

    event = PushEvent.from_payload(payload)
    decision = service.listener.submit(event)

    logger.info(
        "Webhook push %s@%s → %s",
        event.branch if event else "?",
        event.commit[:12] if event else "?",
        decision.value,
    )
    return WebhookResponse(
        decision=decision.value,
        branch=event.branch if event else None,
        commit=event.commit if event else None,
    )
